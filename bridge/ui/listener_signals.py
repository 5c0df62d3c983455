"""Re-emit listener events as Qt signals on the GUI thread."""
from __future__ import annotations

from typing import Optional, TYPE_CHECKING

from PySide6 import QtCore

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from ..net.subscriptions import Subscription
    from ..net.udp_listener import UdpListenerService


class ListenerSignals(QtCore.QObject):
    """Qt adapter around a listener subscription.

    The subscription callbacks run on a worker thread; emitting a signal from
    there queues delivery to slots owned by the GUI thread.
    """

    message_received = QtCore.Signal(object)
    state_changed = QtCore.Signal(object)

    def __init__(self, parent: QtCore.QObject | None = None) -> None:
        super().__init__(parent)
        self._subscription: Optional["Subscription"] = None

    def attach(self, service: "UdpListenerService") -> None:
        self.detach()
        self._subscription = service.subscribe(
            self.message_received.emit,
            self.state_changed.emit,
            name="ListenerSignals",
        )

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
