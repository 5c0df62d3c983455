"""Networking for the bridge: the UDP listener and its subscribers."""

from .errors import BindError, ConfigurationError, ListenerError, ReceiveLoopError
from .messages import Endpoint, InboundMessage
from .subscriptions import SubscriberSet, Subscription
from .udp_listener import ListenerConfiguration, ListenerState, UdpListenerService

__all__ = [
    "BindError",
    "ConfigurationError",
    "Endpoint",
    "InboundMessage",
    "ListenerConfiguration",
    "ListenerError",
    "ListenerState",
    "ReceiveLoopError",
    "SubscriberSet",
    "Subscription",
    "UdpListenerService",
]
