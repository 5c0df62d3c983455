import os
import socket
import time
from typing import Callable

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

try:  # pragma: no cover - exercised only when Qt is available
    from PySide6 import QtWidgets
    from PySide6.QtTest import QTest
except Exception:  # pragma: no cover - exercised in headless CI where Qt is missing
    QtWidgets = None  # type: ignore[assignment]
    QTest = None  # type: ignore[assignment]


class _QtBot:
    """Minimal stand-in for pytest-qt's qtbot fixture."""

    def __init__(self) -> None:
        self._widgets = []

    def addWidget(self, widget) -> None:  # pragma: no cover - simple storage
        self._widgets.append(widget)

    def _process_events(self) -> None:
        if QtWidgets is None:
            return
        app = QtWidgets.QApplication.instance()
        if app is not None:
            app.processEvents()

    def waitUntil(self, condition: Callable[[], bool], timeout: int = 1000, interval: int = 10) -> None:
        deadline = time.monotonic() + timeout / 1000.0
        while True:
            # Queued cross-thread signals only arrive while the event loop runs.
            self._process_events()
            if condition():
                return
            if time.monotonic() > deadline:
                raise AssertionError("condition not met before timeout")
            time.sleep(interval / 1000.0)

    def wait(self, ms: int) -> None:
        """Process events for the requested amount of milliseconds."""

        deadline = time.monotonic() + max(0, ms) / 1000.0
        while True:
            self._process_events()
            if time.monotonic() >= deadline:
                return
            time.sleep(0.005)

    def mouseClick(self, widget, button, delay: int = 0) -> None:
        """Send a mouse click to *widget* if Qt testing helpers are available."""

        if delay:
            self.wait(delay)

        if QTest is not None:  # pragma: no branch - simple gate
            QTest.mouseClick(widget, button)
            return

        raise RuntimeError("qtbot.mouseClick requires PySide6.QtTest")


_qt_app = None


@pytest.fixture
def qtbot() -> _QtBot:
    global _qt_app
    if QtWidgets is not None and QtWidgets.QApplication.instance() is None:
        _qt_app = QtWidgets.QApplication([])
    return _QtBot()


def _get_free_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def free_udp_port() -> int:
    return _get_free_port()
