"""Dialog for editing the listener and API settings."""
from __future__ import annotations

import logging
from typing import Optional

from PySide6 import QtCore, QtWidgets

from ..config.settings import (
    AppSettings,
    SettingsError,
    SettingsStore,
    SettingsValidationError,
    validate_settings,
)

logger = logging.getLogger(__name__)


class ConfigurationWindow(QtWidgets.QDialog):
    """Collects listener IP/port and API URL/token, then saves them."""

    settings_saved = QtCore.Signal(object)

    def __init__(self, store: SettingsStore, parent: QtWidgets.QWidget | None = None) -> None:
        super().__init__(parent)
        self.setWindowTitle("Bridge Configuration")
        self._store = store
        self.saved_settings: Optional[AppSettings] = None

        form = QtWidgets.QFormLayout()
        self.txt_ip = QtWidgets.QLineEdit(self)
        self.txt_ip.setPlaceholderText("127.0.0.1")
        form.addRow("Listener IP", self.txt_ip)

        self.txt_port = QtWidgets.QLineEdit(self)
        self.txt_port.setPlaceholderText("10310")
        form.addRow("Listener Port", self.txt_port)

        self.txt_api_url = QtWidgets.QLineEdit(self)
        self.txt_api_url.setPlaceholderText("https://")
        form.addRow("API URL", self.txt_api_url)

        self.txt_token = QtWidgets.QLineEdit(self)
        self.txt_token.setEchoMode(QtWidgets.QLineEdit.Password)
        form.addRow("API Token", self.txt_token)

        self.lbl_error = QtWidgets.QLabel("", self)
        self.lbl_error.setStyleSheet("color: #d9534f;")
        self.lbl_error.setWordWrap(True)

        self.btn_save = QtWidgets.QPushButton("Save", self)
        self.btn_cancel = QtWidgets.QPushButton("Cancel", self)
        buttons = QtWidgets.QHBoxLayout()
        buttons.addStretch(1)
        buttons.addWidget(self.btn_save)
        buttons.addWidget(self.btn_cancel)

        layout = QtWidgets.QVBoxLayout(self)
        layout.addLayout(form)
        layout.addWidget(self.lbl_error)
        layout.addLayout(buttons)

        self.btn_save.clicked.connect(self._on_save)
        self.btn_cancel.clicked.connect(self.reject)

        self.set_settings(store.load())

    def set_settings(self, settings: AppSettings) -> None:
        self.txt_ip.setText(settings.listener_ip)
        self.txt_port.setText(str(settings.listener_port))
        self.txt_api_url.setText(settings.api_url)
        # The token is never echoed back into the form.
        self.txt_token.clear()

    def _on_save(self) -> None:
        self.lbl_error.setText("")
        try:
            settings = validate_settings(
                self.txt_ip.text(),
                self.txt_port.text(),
                self.txt_api_url.text(),
                self.txt_token.text(),
            )
            self._store.save(settings)
        except SettingsValidationError as exc:
            self.lbl_error.setText(str(exc))
            return
        except SettingsError as exc:
            logger.error("%s", exc)
            self.lbl_error.setText(f"Failed to save settings: {exc}")
            return

        self.saved_settings = settings
        self.settings_saved.emit(settings)
        self.accept()
