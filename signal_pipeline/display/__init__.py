"""Display utilities for signal pipeline output."""

from .colors import Colors
from .formatters import format_event, format_status, health_badge, signal_color, strength_bar

__all__ = [
    "Colors",
    "signal_color",
    "strength_bar",
    "health_badge",
    "format_event",
    "format_status",
]
