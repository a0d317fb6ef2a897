from .base import AutomationDriver, Direction
from .kindle import KindleDriver

__all__ = [
    "AutomationDriver",
    "Direction",
    "KindleDriver",
]
