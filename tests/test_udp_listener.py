import logging
import socket
import threading
import time

import pytest

from bridge.net import (
    BindError,
    ConfigurationError,
    InboundMessage,
    ListenerState,
    UdpListenerService,
)


class Collector:
    """Records messages and lets tests wait for a given count."""

    def __init__(self) -> None:
        self.messages: list[InboundMessage] = []
        self.states: list[ListenerState] = []
        self._cond = threading.Condition()

    def on_message(self, message: InboundMessage) -> None:
        with self._cond:
            self.messages.append(message)
            self._cond.notify_all()

    def on_state(self, state: ListenerState) -> None:
        with self._cond:
            self.states.append(state)
            self._cond.notify_all()

    def wait_for(self, count: int, timeout: float = 1.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: len(self.messages) >= count, timeout)

    def wait_for_state(self, state: ListenerState, timeout: float = 1.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: state in self.states, timeout)

    @property
    def texts(self) -> list[str]:
        return [m.text for m in self.messages]


def _send(port: int, *payloads: bytes) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sender:
        for payload in payloads:
            sender.sendto(payload, ("127.0.0.1", port))


@pytest.fixture
def service():
    svc = UdpListenerService()
    try:
        yield svc
    finally:
        svc.shutdown()


def test_start_then_stop_without_traffic(service: UdpListenerService, free_udp_port: int) -> None:
    service.start("127.0.0.1", free_udp_port)
    assert service.state is ListenerState.RUNNING
    assert service.bound_address is not None
    assert service.bound_address.port == free_udp_port

    started = time.monotonic()
    service.stop()
    assert time.monotonic() - started < 1.0
    assert service.state is ListenerState.IDLE
    assert service.bound_address is None


def test_hello_is_published_once(service: UdpListenerService, free_udp_port: int) -> None:
    collector = Collector()
    service.subscribe(collector.on_message)
    service.start("127.0.0.1", free_udp_port)

    _send(free_udp_port, "HELLO".encode("utf-8"))

    assert collector.wait_for(1)
    message = collector.messages[0]
    assert message.text == "HELLO"
    assert message.payload == b"HELLO"
    assert message.source.ip == "127.0.0.1"
    assert message.received_at.tzinfo is not None

    service.stop()
    _send(free_udp_port, b"AFTER")
    time.sleep(0.2)
    assert collector.texts == ["HELLO"]


def test_messages_arrive_in_send_order(service: UdpListenerService, free_udp_port: int) -> None:
    collector = Collector()
    service.subscribe(collector.on_message)
    service.start("127.0.0.1", free_udp_port)

    expected = [f"packet-{i}" for i in range(50)]
    _send(free_udp_port, *(text.encode("utf-8") for text in expected))

    assert collector.wait_for(len(expected), timeout=2.0)
    assert collector.texts == expected


def test_invalid_utf8_is_replaced_not_dropped(service: UdpListenerService, free_udp_port: int) -> None:
    collector = Collector()
    service.subscribe(collector.on_message)
    service.start("127.0.0.1", free_udp_port)

    _send(free_udp_port, b"ok\xff\xfeend")

    assert collector.wait_for(1)
    assert collector.texts == ["ok" + "\N{REPLACEMENT CHARACTER}" * 2 + "end"]
    assert service.state is ListenerState.RUNNING


def test_utf8_text_is_decoded(service: UdpListenerService, free_udp_port: int) -> None:
    collector = Collector()
    service.subscribe(collector.on_message)
    service.start("127.0.0.1", free_udp_port)

    _send(free_udp_port, "Höhe 1500 м".encode("utf-8"))

    assert collector.wait_for(1)
    assert collector.texts == ["Höhe 1500 м"]


@pytest.mark.parametrize("port", [0, -1, 65536, 100000, "10310", 10.5, True, None])
def test_out_of_range_or_non_integer_port_is_rejected(service: UdpListenerService, port) -> None:
    with pytest.raises(ConfigurationError):
        service.start("127.0.0.1", port)
    assert service.state is ListenerState.IDLE
    assert service.bound_address is None


@pytest.mark.parametrize("address", ["", "localhost", "256.1.1.1", "1.2.3", "not an ip", None])
def test_malformed_address_is_rejected(service: UdpListenerService, address, free_udp_port: int) -> None:
    with pytest.raises(ConfigurationError):
        service.start(address, free_udp_port)
    assert service.state is ListenerState.IDLE


def test_configuration_error_is_a_value_error(service: UdpListenerService) -> None:
    with pytest.raises(ValueError):
        service.start("127.0.0.1", 70000)


def test_bind_conflict_raises_bind_error_and_stays_idle(service: UdpListenerService) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as occupant:
        occupant.bind(("127.0.0.1", 0))
        port = occupant.getsockname()[1]

        with pytest.raises(BindError) as excinfo:
            service.start("127.0.0.1", port)

        assert isinstance(excinfo.value, OSError)
        assert isinstance(excinfo.value.__cause__, OSError)
        assert service.state is ListenerState.IDLE
        assert service.bound_address is None

    # The failed attempt must not have left a socket behind.
    service.start("127.0.0.1", port)
    assert service.state is ListenerState.RUNNING


def test_bind_failure_is_logged(service: UdpListenerService, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR)
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as occupant:
        occupant.bind(("127.0.0.1", 0))
        port = occupant.getsockname()[1]
        with pytest.raises(BindError):
            service.start("127.0.0.1", port)

    assert any("Cannot bind" in message for _, __, message in caplog.record_tuples)


def test_start_logs_bind_address(
    service: UdpListenerService, free_udp_port: int, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO)
    service.start("127.0.0.1", free_udp_port)
    assert any(
        f"started on 127.0.0.1:{free_udp_port}" in message
        for _, __, message in caplog.record_tuples
    )


def test_second_start_does_not_duplicate_delivery(service: UdpListenerService, free_udp_port: int) -> None:
    collector = Collector()
    service.subscribe(collector.on_message)
    service.start("127.0.0.1", free_udp_port)
    service.start("127.0.0.1", free_udp_port)
    service.start("127.0.0.1", free_udp_port + 1 if free_udp_port < 65535 else 1)

    assert service.bound_address.port == free_udp_port
    _send(free_udp_port, b"one", b"two")

    assert collector.wait_for(2)
    time.sleep(0.1)
    assert collector.texts == ["one", "two"]
    assert sum(t.name == "UdpListenerService" for t in threading.enumerate()) == 1


def test_concurrent_starts_bind_once(service: UdpListenerService, free_udp_port: int) -> None:
    errors: list[BaseException] = []
    barrier = threading.Barrier(8)

    def _start() -> None:
        barrier.wait()
        try:
            service.start("127.0.0.1", free_udp_port)
        except BaseException as exc:  # pragma: no cover - failure path
            errors.append(exc)

    threads = [threading.Thread(target=_start) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert service.state is ListenerState.RUNNING
    assert sum(t.name == "UdpListenerService" for t in threading.enumerate()) == 1


def test_stop_is_idempotent(service: UdpListenerService, free_udp_port: int) -> None:
    service.stop()
    service.start("127.0.0.1", free_udp_port)
    service.stop()
    service.stop()
    assert service.state is ListenerState.IDLE


def test_restart_on_same_port(service: UdpListenerService, free_udp_port: int) -> None:
    collector = Collector()
    service.subscribe(collector.on_message)

    service.start("127.0.0.1", free_udp_port)
    service.stop()
    service.start("127.0.0.1", free_udp_port)

    _send(free_udp_port, b"again")
    assert collector.wait_for(1)
    assert collector.texts == ["again"]


def test_state_changes_are_published(service: UdpListenerService, free_udp_port: int) -> None:
    collector = Collector()
    service.subscribe(collector.on_message, collector.on_state)

    service.start("127.0.0.1", free_udp_port)
    service.stop()

    assert collector.wait_for_state(ListenerState.IDLE)
    assert collector.states == [
        ListenerState.RUNNING,
        ListenerState.STOPPING,
        ListenerState.IDLE,
    ]


def test_receive_failure_enters_error_state(
    service: UdpListenerService,
    free_udp_port: int,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.ERROR)
    collector = Collector()
    service.subscribe(collector.on_message, collector.on_state)

    def _broken(data, sockaddr):
        raise RuntimeError("decoder exploded")

    monkeypatch.setattr(InboundMessage, "from_datagram", staticmethod(_broken))
    service.start("127.0.0.1", free_udp_port)
    _send(free_udp_port, b"boom")

    assert collector.wait_for_state(ListenerState.ERROR)
    assert service.state is ListenerState.ERROR
    assert "decoder exploded" in str(service.last_error)
    assert isinstance(service.last_error.__cause__, RuntimeError)
    assert any("failed" in message for _, __, message in caplog.record_tuples)

    # start() does not recover from ERROR on its own.
    service.start("127.0.0.1", free_udp_port)
    assert service.state is ListenerState.ERROR

    monkeypatch.undo()
    service.stop()
    assert service.state is ListenerState.IDLE
    service.start("127.0.0.1", free_udp_port)
    _send(free_udp_port, b"recovered")
    assert collector.wait_for(1)
    assert collector.texts == ["recovered"]
    assert service.last_error is None


def test_slow_subscriber_does_not_stall_intake(service: UdpListenerService, free_udp_port: int) -> None:
    release = threading.Event()
    fast = Collector()

    def _slow(_message: InboundMessage) -> None:
        release.wait(2.0)

    slow_sub = service.subscribe(_slow, maxsize=2)
    service.subscribe(fast.on_message)
    service.start("127.0.0.1", free_udp_port)

    _send(free_udp_port, *(f"m{i}".encode() for i in range(10)))

    assert fast.wait_for(10)
    assert slow_sub.dropped > 0
    release.set()


def test_unsubscribed_callback_receives_nothing(service: UdpListenerService, free_udp_port: int) -> None:
    kept = Collector()
    removed = Collector()
    service.subscribe(kept.on_message)
    subscription = service.subscribe(removed.on_message)
    service.start("127.0.0.1", free_udp_port)

    service.unsubscribe(subscription)
    _send(free_udp_port, b"x")

    assert kept.wait_for(1)
    time.sleep(0.05)
    assert removed.texts == []
    assert subscription.closed


def test_failing_subscriber_is_isolated(
    service: UdpListenerService, free_udp_port: int, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.ERROR)
    collector = Collector()

    def _boom(_message: InboundMessage) -> None:
        raise ValueError("subscriber bug")

    service.subscribe(_boom)
    service.subscribe(collector.on_message)
    service.start("127.0.0.1", free_udp_port)

    _send(free_udp_port, b"a", b"b")

    assert collector.wait_for(2)
    assert service.state is ListenerState.RUNNING


def test_ipv6_loopback(service: UdpListenerService) -> None:
    if not socket.has_ipv6:
        pytest.skip("IPv6 unavailable")
    try:
        service.start("::1", _free_ipv6_port())
    except BindError:
        pytest.skip("IPv6 loopback not bindable here")

    collector = Collector()
    service.subscribe(collector.on_message)
    with socket.socket(socket.AF_INET6, socket.SOCK_DGRAM) as sender:
        sender.sendto(b"v6", ("::1", service.bound_address.port))
    assert collector.wait_for(1)
    assert collector.messages[0].source.ip == "::1"


def _free_ipv6_port() -> int:
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_DGRAM) as sock:
            sock.bind(("::1", 0))
            return sock.getsockname()[1]
    except OSError:
        pytest.skip("IPv6 loopback not bindable here")


def test_slow_subscriber_gets_nothing_after_stop_returns(free_udp_port: int) -> None:
    service = UdpListenerService(drain_timeout=0.5)
    calls: list[tuple[float, str]] = []
    first_call = threading.Event()
    states = Collector()

    def _slow(message: InboundMessage) -> None:
        calls.append((time.monotonic(), message.text))
        first_call.set()
        time.sleep(0.3)

    service.subscribe(_slow, states.on_state)
    try:
        service.start("127.0.0.1", free_udp_port)
        _send(free_udp_port, *(f"m{i}".encode() for i in range(10)))
        assert first_call.wait(1.0)
        time.sleep(0.1)

        started = time.monotonic()
        service.stop()
        returned = time.monotonic()

        assert returned - started < 1.0
        time.sleep(1.0)
        assert [text for at, text in calls if at > returned] == []
        assert len(calls) < 10
        assert states.wait_for_state(ListenerState.IDLE)
    finally:
        service.shutdown()


def test_failed_thread_start_rolls_back(
    service: UdpListenerService, free_udp_port: int, monkeypatch: pytest.MonkeyPatch
) -> None:
    states = Collector()
    service.subscribe(states.on_message, states.on_state)

    class _RefusingThread(threading.Thread):
        def start(self) -> None:
            if self.name == "UdpListenerService":
                raise RuntimeError("can't start new thread")
            super().start()

    monkeypatch.setattr(threading, "Thread", _RefusingThread)
    with pytest.raises(RuntimeError):
        service.start("127.0.0.1", free_udp_port)
    monkeypatch.undo()

    assert service.state is ListenerState.IDLE
    assert service.bound_address is None
    assert states.wait_for_state(ListenerState.IDLE)
    assert states.states == [ListenerState.RUNNING, ListenerState.IDLE]

    # The socket was released, so the port can be bound again.
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as reuse:
        reuse.bind(("127.0.0.1", free_udp_port))

    service.start("127.0.0.1", free_udp_port)
    assert service.state is ListenerState.RUNNING


def test_racing_start_and_stop_keep_one_loop(service: UdpListenerService, free_udp_port: int) -> None:
    errors: list[BaseException] = []
    barrier = threading.Barrier(6)

    def _worker(action) -> None:
        barrier.wait()
        try:
            for _ in range(20):
                action()
                assert sum(t.name == "UdpListenerService" for t in threading.enumerate()) <= 1
        except BaseException as exc:  # pragma: no cover - failure path
            errors.append(exc)

    threads = [
        threading.Thread(target=_worker, args=(lambda: service.start("127.0.0.1", free_udp_port),))
        for _ in range(3)
    ] + [threading.Thread(target=_worker, args=(service.stop,)) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10.0)

    assert errors == []
    assert service.state in (ListenerState.IDLE, ListenerState.RUNNING)
    alive = sum(t.name == "UdpListenerService" for t in threading.enumerate())
    assert alive == (1 if service.state is ListenerState.RUNNING else 0)
