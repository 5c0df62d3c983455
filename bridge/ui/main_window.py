# ui/main_window.py
from __future__ import annotations

import logging
from typing import Optional

from PySide6 import QtCore, QtGui, QtWidgets

from ..config.settings import AppSettings, SettingsStore
from ..net.udp_listener import UdpListenerService
from ..services.api_forwarder import ApiForwarder
from ..version import APP_NAME, APP_VERSION
from .configuration_window import ConfigurationWindow
from .controllers import ListenerController
from .controllers.listener_controller import STATUS_ERROR, STATUS_RUNNING
from .listener_signals import ListenerSignals

logger = logging.getLogger(__name__)

_STATUS_COLORS = {
    STATUS_RUNNING: "#2e7d32",
    STATUS_ERROR: "#c62828",
}
_STOPPED_COLOR = "#c62828"


class MainWindow(QtWidgets.QMainWindow):
    def __init__(
        self,
        *,
        settings: AppSettings,
        store: Optional[SettingsStore] = None,
        service: Optional[UdpListenerService] = None,
        forwarder: Optional[ApiForwarder] = None,
    ) -> None:
        super().__init__()
        self.setWindowTitle(f"{APP_NAME} {APP_VERSION}")
        self.resize(640, 420)

        self._store = store or SettingsStore()
        self.service = service or UdpListenerService()
        self.forwarder = forwarder

        self._init_central_widgets()
        self._init_controllers(settings)
        self._wire_signals()
        self.controller.initialize_view()

    def _init_central_widgets(self) -> None:
        central = QtWidgets.QWidget(self)
        vbox = QtWidgets.QVBoxLayout(central)
        vbox.setContentsMargins(8, 8, 8, 8)
        vbox.setSpacing(6)

        grid = QtWidgets.QGridLayout()
        self.lbl_status = QtWidgets.QLabel(self)
        self.lbl_message_count = QtWidgets.QLabel(self)
        self.lbl_last_message = QtWidgets.QLabel(self)
        self.lbl_uptime = QtWidgets.QLabel(self)
        for row, (caption, label) in enumerate(
            (
                ("Status", self.lbl_status),
                ("Messages", self.lbl_message_count),
                ("Last message", self.lbl_last_message),
                ("Uptime", self.lbl_uptime),
            )
        ):
            grid.addWidget(QtWidgets.QLabel(caption, self), row, 0)
            grid.addWidget(label, row, 1)
        vbox.addLayout(grid)

        self.txt_log = QtWidgets.QPlainTextEdit(self)
        self.txt_log.setReadOnly(True)
        self.txt_log.setMaximumBlockCount(5000)
        vbox.addWidget(self.txt_log, 1)

        buttons = QtWidgets.QHBoxLayout()
        self.btn_start = QtWidgets.QPushButton("Start", self)
        self.btn_stop = QtWidgets.QPushButton("Stop", self)
        self.btn_settings = QtWidgets.QPushButton("Settings", self)
        buttons.addWidget(self.btn_start)
        buttons.addWidget(self.btn_stop)
        buttons.addStretch(1)
        buttons.addWidget(self.btn_settings)
        vbox.addLayout(buttons)

        self.setCentralWidget(central)

        self._uptime_timer = QtCore.QTimer(self)
        self._uptime_timer.setInterval(1000)

    def _init_controllers(self, settings: AppSettings) -> None:
        self.listener_signals = ListenerSignals(self)
        self.listener_signals.attach(self.service)
        if self.forwarder is not None:
            self.forwarder.attach(self.service)
        self.controller = ListenerController(
            service=self.service,
            view=self,
            settings=settings,
            forwarder=self.forwarder,
        )

    def _wire_signals(self) -> None:
        self.btn_start.clicked.connect(self._on_start)
        self.btn_stop.clicked.connect(self._on_stop)
        self.btn_settings.clicked.connect(self._on_settings)
        self._uptime_timer.timeout.connect(self.controller.tick_uptime)
        self.listener_signals.message_received.connect(self.controller.on_message)
        self.listener_signals.state_changed.connect(self.controller.on_state_changed)

    # -------------------- Button handlers --------------------
    def _on_start(self) -> None:
        if self.controller.start():
            self._uptime_timer.start()

    def _on_stop(self) -> None:
        self.controller.stop()
        self._uptime_timer.stop()

    def _on_settings(self) -> None:
        dialog = ConfigurationWindow(self._store, parent=self)
        dialog.exec()
        if dialog.saved_settings is not None:
            self._uptime_timer.stop()
            self.controller.apply_settings(dialog.saved_settings)
            self.append_log("Settings updated")

    # -------------------- View interface --------------------
    def set_status(self, text: str) -> None:
        self.lbl_status.setText(text)
        color = _STATUS_COLORS.get(text, _STOPPED_COLOR)
        self.lbl_status.setStyleSheet(f"color: {color}; font-weight: bold;")

    def set_message_count(self, count: int) -> None:
        self.lbl_message_count.setText(str(count))

    def set_last_message(self, text: str) -> None:
        self.lbl_last_message.setText(text)

    def set_uptime(self, text: str) -> None:
        self.lbl_uptime.setText(text)

    def set_running_controls(self, running: bool) -> None:
        self.btn_start.setEnabled(not running)
        self.btn_stop.setEnabled(running)

    def append_log(self, line: str) -> None:
        self.txt_log.appendPlainText(line)
        self.txt_log.moveCursor(QtGui.QTextCursor.End)

    def clear_log(self) -> None:
        self.txt_log.clear()

    # -------------------- Qt events --------------------
    def closeEvent(self, event: QtGui.QCloseEvent) -> None:
        self._uptime_timer.stop()
        self.listener_signals.detach()
        self.controller.shutdown()
        super().closeEvent(event)
