from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, TYPE_CHECKING

from ...config.settings import AppSettings
from ...net.errors import ListenerError
from ...net.udp_listener import ListenerState

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from ...net.messages import InboundMessage
    from ...net.udp_listener import UdpListenerService
    from ...services.api_forwarder import ApiForwarder
    from ..main_window import MainWindow

logger = logging.getLogger(__name__)

STATUS_RUNNING = "Running"
STATUS_STOPPED = "Stopped"
STATUS_ERROR = "Error"


def format_uptime(seconds: float) -> str:
    total = max(0, int(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


class ListenerController:
    """Drives the listener from the main window and mirrors its activity."""

    def __init__(
        self,
        *,
        service: "UdpListenerService",
        view: "MainWindow",
        settings: AppSettings,
        forwarder: Optional["ApiForwarder"] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._service = service
        self._view = view
        self._settings = settings
        self._forwarder = forwarder
        self._clock = clock
        self._start_time: Optional[datetime] = None
        self.message_count = 0

    @property
    def settings(self) -> AppSettings:
        return self._settings

    # -------------------- Initialization --------------------
    def initialize_view(self) -> None:
        self._view.set_status(STATUS_STOPPED)
        self._view.set_message_count(0)
        self._view.set_last_message("None")
        self._view.set_uptime(format_uptime(0))
        self._view.set_running_controls(False)

    # -------------------- Button hooks --------------------
    def start(self) -> bool:
        ip, port = self._settings.listener_ip, self._settings.listener_port
        self._start_time = self._clock()
        self.message_count = 0
        self._view.set_message_count(0)
        self._view.set_last_message("None")
        self._view.clear_log()
        try:
            self._service.start(ip, port)
        except ListenerError as exc:
            self._start_time = None
            self._view.append_log(f"Error: {exc}")
            self._view.set_status(STATUS_ERROR)
            self._view.set_running_controls(False)
            return False
        if not self._service.is_running:
            # start() is a no-op while a failed listener still holds its socket.
            self._start_time = None
            self._view.append_log("Error: listener is in error state; stop it before starting again")
            self._view.set_status(STATUS_ERROR)
            self._view.set_running_controls(True)
            return False

        self._view.set_status(STATUS_RUNNING)
        self._view.set_running_controls(True)
        self._view.append_log(f"Listener started on {self._service.bound_address or f'{ip}:{port}'}")
        return True

    def stop(self) -> None:
        self._service.stop()
        self._start_time = None
        self._view.set_status(STATUS_STOPPED)
        self._view.set_running_controls(False)
        self._view.append_log("Listener stopped")

    def apply_settings(self, settings: AppSettings) -> None:
        """Swap settings; a running listener is stopped first."""

        if self._service.state is not ListenerState.IDLE:
            self.stop()
        self._settings = settings
        if self._forwarder is not None:
            self._forwarder.reconfigure(settings)

    # -------------------- Listener hooks (GUI thread) --------------------
    def on_message(self, message: "InboundMessage") -> None:
        # Signals queued before stop() may still arrive afterwards.
        if self._start_time is None:
            return
        self.message_count += 1
        stamp = message.received_at.strftime("%H:%M:%S")
        self._view.set_message_count(self.message_count)
        self._view.set_last_message(stamp)
        self._view.append_log(f"[{stamp}] Received: {message.text}")

    def on_state_changed(self, state: ListenerState) -> None:
        if state is not ListenerState.ERROR:
            return
        error = self._service.last_error
        logger.warning("Listener reported failure: %s", error)
        self._start_time = None
        self._view.set_status(STATUS_ERROR)
        # Stop stays enabled so the user can release the failed socket.
        self._view.set_running_controls(True)
        self._view.append_log(f"Error: listener failed: {error}")

    # -------------------- Timer hook --------------------
    def tick_uptime(self) -> Optional[str]:
        if self._start_time is None:
            return None
        text = format_uptime((self._clock() - self._start_time).total_seconds())
        self._view.set_uptime(text)
        return text

    # -------------------- Shutdown --------------------
    def shutdown(self) -> None:
        if self._forwarder is not None:
            self._forwarder.close()
        self._service.shutdown()
