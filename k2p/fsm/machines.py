import yaml
from pathlib import Path
from transitions import Machine


class YamlStateMachine:
    """
    Finite State Machine whose structure is loaded from a YAML file.

    The machine is queued: triggers fired from inside an on_enter callback
    run after the current callback returns, so long chains of states (one
    lap per captured page) do not grow the call stack.
    """

    default_config = "states.yaml"

    def __init__(self, config_path=None, callbacks=None):
        """
        :param config_path: Optional path to the YAML FSM definition.
        :param callbacks: Optional dict of callbacks for state entry actions.
                          Example: {"on_enter_capturing": some_function}
        """
        self.config_path = config_path or Path(__file__).parent / self.default_config
        self.callbacks = callbacks or {}

        with open(self.config_path, "r") as f:
            fsm_config = yaml.safe_load(f)

        states = fsm_config.get("states", [])
        transitions = fsm_config.get("transitions", [])
        initial = fsm_config.get("initial", "idle")

        self.machine = Machine(
            model=self,
            states=states,
            transitions=transitions,
            initial=initial,
            auto_transitions=False,
            queued=True,
        )

        # Registered on the states directly; Machine only picks up bound methods of the model by name.
        for name, func in self.callbacks.items():
            if not callable(func):
                raise ValueError(f"Callback '{name}' must be callable, got {type(func)}")
            if not name.startswith(("on_enter_", "on_exit_")):
                raise ValueError(f"Callback name '{name}' should start with 'on_enter_' or 'on_exit_' (e.g., 'on_enter_capturing')")
            kind, _, state = name[len("on_"):].partition("_")
            self.machine.get_state(state).add_callback(kind, func)

    @property
    def is_terminal(self) -> bool:
        return not self.machine.get_triggers(self.state)


class SessionFSM(YamlStateMachine):
    """Capture session: probe, then capture / evaluate / advance / wait until a terminal state."""

    default_config = "states.yaml"

    def __init__(self, config_path=None, callbacks=None, max_pages: int = 1000):
        self.max_pages = max_pages
        self.page_count = 0
        super().__init__(config_path=config_path, callbacks=callbacks)

    # -------------------- Condition Methods --------------------

    def is_below_page_limit(self):
        """Referenced in states.yaml: another page may be captured."""
        return self.page_count < self.max_pages


class DirectionFSM(YamlStateMachine):
    """Page-turn direction probe: forward first, then reverse, then give up."""

    default_config = "direction_states.yaml"
