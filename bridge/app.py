import logging
import os
import sys
from pathlib import Path

from PySide6 import QtWidgets

if __package__ is None or __package__ == "":
    # Ensure the project root is on sys.path so absolute imports succeed when
    # the script is executed as a top-level entry point (e.g., from PyInstaller).
    sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from bridge.config.settings import SettingsStore
from bridge.net.udp_listener import UdpListenerService
from bridge.services.api_forwarder import ApiForwarder
from bridge.ui.configuration_window import ConfigurationWindow
from bridge.ui.main_window import MainWindow

LOG_LEVEL_ENV = "DCS_BRIDGE_LOG_LEVEL"


def configure_logging() -> None:
    level_name = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def main():
    configure_logging()
    logger = logging.getLogger("bridge")
    app = QtWidgets.QApplication(sys.argv)

    store = SettingsStore()
    settings = store.load()
    if not settings.is_complete:
        logger.info("First run - showing configuration window")
        dialog = ConfigurationWindow(store)
        dialog.exec()
        if dialog.saved_settings is None:
            return 0
        settings = dialog.saved_settings
    else:
        logger.info("Settings loaded from %s", store.path)

    service = UdpListenerService()
    forwarder = ApiForwarder(settings)
    win = MainWindow(settings=settings, store=store, service=service, forwarder=forwarder); win.show()
    return app.exec()

if __name__ == "__main__": sys.exit(main())
