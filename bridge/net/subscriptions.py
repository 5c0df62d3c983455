"""Fan-out of listener events to independent subscribers.

Each subscription owns a bounded queue and a dispatch thread, so a slow
callback only ever delays itself. When a queue is full the oldest pending
event is discarded to make room for the newest one, mirroring how the UDP
transport itself behaves under load.
"""
from __future__ import annotations

import collections
import itertools
import logging
import threading
import time
from typing import Any, Callable, Deque, List, Optional, Tuple

from .messages import InboundMessage

logger = logging.getLogger(__name__)

MessageCallback = Callable[[InboundMessage], None]
StateCallback = Callable[[Any], None]

_MESSAGE = "message"
_STATE = "state"

_ids = itertools.count(1)


class Subscription:
    """A registered consumer of listener messages and state changes."""

    def __init__(
        self,
        on_message: MessageCallback,
        on_state_changed: Optional[StateCallback] = None,
        *,
        maxsize: int = 1024,
        name: Optional[str] = None,
    ) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.on_message = on_message
        self.on_state_changed = on_state_changed
        self.maxsize = int(maxsize)
        self.name = name or f"Subscription-{next(_ids)}"
        self.dropped = 0

        self._pending: Deque[Tuple[str, Any]] = collections.deque()
        self._cond = threading.Condition()
        self._busy = False
        self._closed = False
        self._on_close: Optional[Callable[["Subscription"], None]] = None
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------- Producer side --------------------
    def deliver_message(self, message: InboundMessage) -> bool:
        return self._put(_MESSAGE, message)

    def deliver_state(self, state: Any) -> bool:
        if self.on_state_changed is None:
            return False
        return self._put(_STATE, state)

    def _put(self, kind: str, payload: Any) -> bool:
        with self._cond:
            if self._closed:
                return False
            if len(self._pending) >= self.maxsize:
                self._pending.popleft()
                self.dropped += 1
                if self.dropped == 1 or self.dropped % 100 == 0:
                    logger.warning(
                        "%s is falling behind; %d events dropped so far",
                        self.name,
                        self.dropped,
                    )
            self._pending.append((kind, payload))
            self._cond.notify_all()
        return True

    # -------------------- Lifecycle --------------------
    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued event has been handled.

        Returns ``False`` if *timeout* expired first. Calling this from the
        subscription's own callback returns immediately.
        """

        if threading.current_thread() is self._thread:
            return True
        with self._cond:
            return self._cond.wait_for(
                lambda: self._closed or (not self._pending and not self._busy),
                timeout,
            )

    def discard_messages(self) -> int:
        """Drop queued messages but keep queued state changes.

        A callback that is already running is left to finish.
        """

        with self._cond:
            kept = collections.deque(item for item in self._pending if item[0] != _MESSAGE)
            discarded = len(self._pending) - len(kept)
            self._pending = kept
            self.dropped += discarded
            self._cond.notify_all()
        return discarded

    def close(self, timeout: Optional[float] = 1.0) -> None:
        """Detach the subscription; queued events are discarded."""

        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._pending.clear()
            self._cond.notify_all()
            on_close, self._on_close = self._on_close, None
        if on_close is not None:
            on_close(self)
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=timeout)

    # -------------------- Dispatch --------------------
    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._pending and not self._closed:
                    self._cond.wait()
                if self._closed:
                    return
                kind, payload = self._pending.popleft()
                self._busy = True
            try:
                if kind == _MESSAGE:
                    self.on_message(payload)
                elif self.on_state_changed is not None:
                    self.on_state_changed(payload)
            except Exception:
                logger.exception("%s callback failed while handling %s event", self.name, kind)
            finally:
                with self._cond:
                    self._busy = False
                    self._cond.notify_all()


class SubscriberSet:
    """Thread-safe collection of subscriptions with a single publish point."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def add(self, subscription: Subscription) -> Subscription:
        with self._lock:
            if subscription not in self._subscriptions:
                self._subscriptions.append(subscription)
        subscription._on_close = self.remove
        return subscription

    def remove(self, subscription: Subscription) -> None:
        with self._lock:
            try:
                self._subscriptions.remove(subscription)
            except ValueError:
                pass

    def snapshot(self) -> List[Subscription]:
        with self._lock:
            return list(self._subscriptions)

    def publish(self, message: InboundMessage) -> None:
        for subscription in self.snapshot():
            subscription.deliver_message(message)

    def publish_state(self, state: Any) -> None:
        for subscription in self.snapshot():
            subscription.deliver_state(state)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for every subscription to drain within one shared *timeout*.

        Subscriptions still behind when the time is up lose their queued
        messages, so nothing published so far is delivered afterwards.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        drained = True
        for subscription in self.snapshot():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if subscription.flush(remaining):
                continue
            discarded = subscription.discard_messages()
            logger.warning(
                "%s did not drain within %.1fs; discarded %d queued messages",
                subscription.name,
                timeout,
                discarded,
            )
            drained = False
        return drained

    def close_all(self) -> None:
        for subscription in self.snapshot():
            subscription.close()
