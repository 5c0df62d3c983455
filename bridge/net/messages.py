"""Value types passed between the listener and its subscribers."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Tuple


@dataclass(frozen=True)
class Endpoint:
    """Simple UDP endpoint descriptor."""

    ip: str
    port: int

    @classmethod
    def from_sockaddr(cls, sockaddr: Tuple) -> "Endpoint":
        # IPv6 socket addresses carry flowinfo/scope_id after host and port.
        return cls(str(sockaddr[0]), int(sockaddr[1]))

    def __str__(self) -> str:
        if ":" in self.ip:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


@dataclass(frozen=True)
class InboundMessage:
    """One decoded datagram."""

    payload: bytes
    text: str
    source: Endpoint
    received_at: datetime = field(default_factory=lambda: datetime.now().astimezone())

    @classmethod
    def from_datagram(cls, data: bytes, sockaddr: Tuple) -> "InboundMessage":
        """Decode *data* as UTF-8, substituting U+FFFD for invalid sequences."""

        return cls(
            payload=bytes(data),
            text=bytes(data).decode("utf-8", errors="replace"),
            source=Endpoint.from_sockaddr(sockaddr),
        )
