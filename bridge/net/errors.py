"""Exceptions raised by the UDP listener service."""
from __future__ import annotations


class ListenerError(Exception):
    """Base class for listener failures."""


class ConfigurationError(ListenerError, ValueError):
    """The listener address or port is not usable."""


class BindError(ListenerError, OSError):
    """The operating system refused to bind the listener socket."""


class ReceiveLoopError(ListenerError):
    """Wraps the exception that terminated a running receive loop."""
