"""Background services that consume listener output."""

from .api_forwarder import ApiForwarder

__all__ = ["ApiForwarder"]
