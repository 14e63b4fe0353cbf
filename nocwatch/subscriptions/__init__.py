"""Subscription management — server-side fan-out and observer-side link upkeep."""

from nocwatch.subscriptions.hub import Subscription, SubscriptionHub
from nocwatch.subscriptions.observer import ObserverClient
from nocwatch.subscriptions.state import LinkState, LinkStatus, LinkTrigger, transition
from nocwatch.subscriptions.transports import (
    PollingSession,
    PushSession,
    WebSocketSession,
    open_session,
)

__all__ = [
    "LinkState",
    "LinkStatus",
    "LinkTrigger",
    "ObserverClient",
    "PollingSession",
    "PushSession",
    "Subscription",
    "SubscriptionHub",
    "WebSocketSession",
    "open_session",
    "transition",
]
