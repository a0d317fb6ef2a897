from .base import Capturer
from .screen import ScreenCapturer

__all__ = [
    "Capturer",
    "ScreenCapturer",
]
