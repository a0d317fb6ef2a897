from .machines import DirectionFSM, SessionFSM, YamlStateMachine

__all__ = [
    "DirectionFSM",
    "SessionFSM",
    "YamlStateMachine",
]
