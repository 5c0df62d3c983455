"""UI controllers for the main window."""

from .listener_controller import ListenerController, format_uptime

__all__ = ["ListenerController", "format_uptime"]
