"""
In-process fan-out of newly stored chat messages.

Each Subscription is an explicit handle scoped to one match. Every
subscription receives its own copy of every message published to that match
after it was registered, in publish order. Nothing is replayed: clients
hydrate history with the message list endpoint first.

Delivery registrations must be released with cancel() (or by leaving the
``with`` block); there is no timeout and no automatic resume.
"""

import logging
import threading
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

MessageCallback = Callable[[dict], None]


class Subscription:
    """Registration of one callback for one match."""

    def __init__(self, broker: "MessageBroker", match_id: str, callback: MessageCallback):
        self.broker = broker
        self.match_id = match_id
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self.broker._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()


class MessageBroker:
    """
    Registry of per-match subscriptions.

    publish() is called after the message row is committed, so subscribers
    never see a message that is missing from the history.
    """

    def __init__(self):
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, match_id: str, callback: MessageCallback) -> Subscription:
        subscription = Subscription(self, match_id, callback)
        with self._lock:
            self._subscriptions.setdefault(match_id, []).append(subscription)
        logger.debug(f"Subscribed to match={match_id}, subscribers={self.subscriber_count(match_id)}")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.match_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.match_id, None)
        logger.debug(f"Unsubscribed from match={subscription.match_id}")

    def subscriber_count(self, match_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(match_id, []))

    def publish(self, match_id: str, payload: dict) -> int:
        """
        Deliver payload to every active subscription of match_id.

        A subscription whose callback raises is cancelled; the others still
        receive the payload.

        Returns:
            Number of subscriptions the payload was delivered to
        """
        with self._lock:
            subscribers = list(self._subscriptions.get(match_id, []))

        delivered = 0
        for subscription in subscribers:
            try:
                subscription.callback(payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Dropping subscription on match={match_id}: {e}")
                subscription.cancel()
        return delivered


# Shared broker for the application process
broker = MessageBroker()
