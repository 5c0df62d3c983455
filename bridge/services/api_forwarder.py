"""Forward received simulator messages to the remote bridge API."""
from __future__ import annotations

import logging
import threading
from typing import Optional, TYPE_CHECKING

import requests

from ..config.settings import AppSettings
from ..net.messages import InboundMessage
from ..version import APP_VERSION

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from ..net.subscriptions import Subscription
    from ..net.udp_listener import UdpListenerService

logger = logging.getLogger(__name__)


class ApiForwarder:
    """POSTs every inbound message to ``settings.api_url``.

    Requests run on the forwarder's subscription thread, so a slow API only
    backs up the forwarder's own bounded queue and never the listener.
    """

    def __init__(
        self,
        settings: AppSettings,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 5.0,
        queue_size: int = 256,
    ) -> None:
        self.timeout = timeout
        self.queue_size = queue_size
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = f"dcs-sc-bridge/{APP_VERSION}"
        self._lock = threading.Lock()
        self._settings = settings
        self._subscription: Optional["Subscription"] = None
        self.sent = 0
        self.failed = 0

    @property
    def enabled(self) -> bool:
        with self._lock:
            return bool(self._settings.api_url.strip())

    def reconfigure(self, settings: AppSettings) -> None:
        with self._lock:
            self._settings = settings

    def attach(self, service: "UdpListenerService") -> None:
        if self._subscription is not None and not self._subscription.closed:
            return
        self._subscription = service.subscribe(
            self.forward, maxsize=self.queue_size, name="ApiForwarder"
        )

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def forward(self, message: InboundMessage) -> bool:
        """Send one message; returns ``True`` when the API accepted it."""

        with self._lock:
            url = self._settings.api_url.strip()
            token = self._settings.api_token
        if not url:
            return False

        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        body = {
            "message": message.text,
            "received_at": message.received_at.isoformat(),
            "source": str(message.source),
        }
        try:
            response = self._session.post(url, json=body, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            self.failed += 1
            logger.warning("Forwarding message to %s failed: %s", url, exc)
            return False
        self.sent += 1
        return True

    def close(self) -> None:
        self.detach()
        self._session.close()
