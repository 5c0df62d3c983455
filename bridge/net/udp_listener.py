"""Threaded UDP listener service that publishes decoded text datagrams."""
from __future__ import annotations

import enum
import ipaddress
import logging
import operator
import selectors
import socket
import threading
from dataclasses import dataclass
from typing import Optional

from .errors import BindError, ConfigurationError, ReceiveLoopError
from .messages import Endpoint, InboundMessage
from .subscriptions import MessageCallback, StateCallback, SubscriberSet, Subscription

logger = logging.getLogger(__name__)

MAX_DATAGRAM_SIZE = 65535


class ListenerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass(frozen=True)
class ListenerConfiguration:
    """Validated address and port for a single bind."""

    address: str
    port: int

    @property
    def family(self) -> int:
        if ipaddress.ip_address(self.address).version == 6:
            return socket.AF_INET6
        return socket.AF_INET

    @classmethod
    def parse(cls, address, port) -> "ListenerConfiguration":
        """Validate user input, raising :class:`ConfigurationError` on bad values."""

        if not isinstance(address, str):
            raise ConfigurationError(f"Listener address must be a string, got {address!r}")
        try:
            parsed = ipaddress.ip_address(address.strip())
        except ValueError as exc:
            raise ConfigurationError(f"Invalid listener address: {address!r}") from exc

        if isinstance(port, bool):
            raise ConfigurationError(f"Invalid listener port: {port!r}")
        try:
            port_value = operator.index(port)
        except TypeError as exc:
            raise ConfigurationError(f"Invalid listener port: {port!r}") from exc
        if not 1 <= port_value <= 65535:
            raise ConfigurationError(f"Listener port {port_value} is outside 1-65535")

        return cls(str(parsed), port_value)


class CancellationContext:
    """One-shot cancellation signal that can interrupt a selector wait.

    A socket pair is used as the wake-up channel so the same selector that
    waits for datagrams also wakes up when :meth:`cancel` is called.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reader, self._writer = socket.socketpair()
        self._reader.setblocking(False)
        self._writer.setblocking(False)

    @property
    def reader(self) -> socket.socket:
        return self._reader

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        try:
            self._writer.send(b"\x00")
        except OSError:
            # Already closed or the wake-up buffer is full; either way the
            # event is set and the loop will observe it.
            pass

    def close(self) -> None:
        self._event.set()
        self._reader.close()
        self._writer.close()


class UdpListenerService:
    """A background thread that receives UTF-8 datagrams and publishes them.

    ``start`` binds synchronously and returns as soon as the receive thread
    is scheduled. ``stop`` signals cancellation, waits for the thread to
    exit and only then releases the socket.
    """

    def __init__(self, *, drain_timeout: float = 1.0) -> None:
        self.drain_timeout = drain_timeout
        self._subscribers = SubscriberSet()
        # Serialises start/stop; never taken by the receive thread.
        self._lifecycle_lock = threading.Lock()
        # Guards the fields below, shared with the receive thread.
        self._state_lock = threading.Lock()
        self._state = ListenerState.IDLE
        self._sock: Optional[socket.socket] = None
        self._cancel: Optional[CancellationContext] = None
        self._thread: Optional[threading.Thread] = None
        self._bound_address: Optional[Endpoint] = None
        self._last_error: Optional[ReceiveLoopError] = None

    # -------------------- Queries --------------------
    @property
    def state(self) -> ListenerState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state is ListenerState.RUNNING

    @property
    def bound_address(self) -> Optional[Endpoint]:
        with self._state_lock:
            return self._bound_address

    @property
    def last_error(self) -> Optional[ReceiveLoopError]:
        with self._state_lock:
            return self._last_error

    # -------------------- Subscriptions --------------------
    def subscribe(
        self,
        on_message: MessageCallback,
        on_state_changed: Optional[StateCallback] = None,
        *,
        maxsize: int = 1024,
        name: Optional[str] = None,
    ) -> Subscription:
        """Register callbacks; they run on the subscription's own thread."""

        return self._subscribers.add(
            Subscription(on_message, on_state_changed, maxsize=maxsize, name=name)
        )

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()

    # -------------------- Lifecycle --------------------
    def start(self, address: str, port: int) -> None:
        """Bind to ``address:port`` and start the receive thread.

        Raises :class:`ConfigurationError` or :class:`BindError`; in both
        cases the service stays idle and no socket is left open.
        """

        with self._lifecycle_lock:
            current = self.state
            if current is ListenerState.RUNNING:
                logger.info("UDP listener already running on %s", self.bound_address)
                return
            if current is ListenerState.ERROR:
                logger.warning(
                    "UDP listener is in error state (%s); call stop() before starting again",
                    self.last_error,
                )
                return

            try:
                config = ListenerConfiguration.parse(address, port)
            except ConfigurationError as exc:
                logger.error("UDP listener configuration rejected: %s", exc)
                raise

            sock = self._bind(config)
            bound = Endpoint.from_sockaddr(sock.getsockname())
            try:
                cancel = CancellationContext()
            except OSError:
                sock.close()
                raise
            thread = threading.Thread(
                target=self._run,
                args=(sock, cancel, bound),
                name="UdpListenerService",
                daemon=True,
            )
            with self._state_lock:
                self._sock = sock
                self._cancel = cancel
                self._thread = thread
                self._bound_address = bound
                self._last_error = None
                self._state = ListenerState.RUNNING
            self._subscribers.publish_state(ListenerState.RUNNING)
            try:
                thread.start()
            except RuntimeError:
                logger.exception("Could not start the UDP listener thread for %s", bound)
                with self._state_lock:
                    self._sock = None
                    self._cancel = None
                    self._thread = None
                    self._bound_address = None
                    self._state = ListenerState.IDLE
                sock.close()
                cancel.close()
                self._subscribers.publish_state(ListenerState.IDLE)
                raise
            logger.info("UDP listener started on %s", bound)

    def stop(self) -> None:
        """Stop the receive thread and release the socket. Safe to repeat.

        Messages received before the stop are delivered before this returns;
        subscribers that cannot keep up within ``drain_timeout`` lose them.
        """

        with self._lifecycle_lock:
            with self._state_lock:
                if self._state is ListenerState.IDLE:
                    return
                self._state = ListenerState.STOPPING
                sock, cancel, thread = self._sock, self._cancel, self._thread
                bound = self._bound_address
            self._subscribers.publish_state(ListenerState.STOPPING)

            if cancel is not None:
                cancel.cancel()
            if thread is not None and thread is not threading.current_thread():
                thread.join()
            if sock is not None:
                sock.close()
            if cancel is not None:
                cancel.close()
            self._subscribers.flush(self.drain_timeout)

            with self._state_lock:
                self._sock = None
                self._cancel = None
                self._thread = None
                self._bound_address = None
                self._state = ListenerState.IDLE
            self._subscribers.publish_state(ListenerState.IDLE)
            logger.info("UDP listener on %s released", bound)

    def shutdown(self) -> None:
        """Stop the listener and detach every subscriber."""

        self.stop()
        self._subscribers.close_all()

    # -------------------- Internals --------------------
    @staticmethod
    def _bind(config: ListenerConfiguration) -> socket.socket:
        sock = socket.socket(config.family, socket.SOCK_DGRAM)
        try:
            sock.bind((config.address, config.port))
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            message = f"Cannot bind UDP listener to {config.address}:{config.port}: {exc.strerror or exc}"
            logger.error("%s", message)
            if exc.errno is not None:
                raise BindError(exc.errno, message) from exc
            raise BindError(message) from exc
        return sock

    def _run(self, sock: socket.socket, cancel: CancellationContext, bound: Endpoint) -> None:
        selector = selectors.DefaultSelector()
        try:
            selector.register(sock, selectors.EVENT_READ)
            selector.register(cancel.reader, selectors.EVENT_READ)
            while not cancel.is_cancelled():
                events = selector.select()
                if cancel.is_cancelled():
                    break
                for key, _ in events:
                    if key.fileobj is not sock:
                        continue
                    try:
                        data, sockaddr = sock.recvfrom(MAX_DATAGRAM_SIZE)
                    except (BlockingIOError, InterruptedError):
                        continue
                    message = InboundMessage.from_datagram(data, sockaddr)
                    logger.debug("Received UDP message from %s: %s", message.source, message.text)
                    self._subscribers.publish(message)
            logger.info("UDP listener on %s stopped", bound)
        except Exception as exc:
            logger.exception("UDP listener on %s failed: %s", bound, exc)
            self._enter_error(exc)
        finally:
            selector.close()

    def _enter_error(self, exc: BaseException) -> None:
        error = ReceiveLoopError(f"{type(exc).__name__}: {exc}")
        error.__cause__ = exc
        with self._state_lock:
            # A concurrent stop() owns the transition back to IDLE.
            if self._state is not ListenerState.RUNNING:
                return
            self._last_error = error
            self._state = ListenerState.ERROR
        self._subscribers.publish_state(ListenerState.ERROR)
