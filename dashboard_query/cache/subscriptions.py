"""
Subscription registry: observers of cache entries.

Callbacks subscribe under a query key and receive entry snapshots for
that key and for every key below it in the hierarchy (a subscription on
``["mlModels"]`` sees changes to ``["mlModels", "list", ...]``).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from dashboard_query.core.keys import QueryHash, QueryKey, format_key, hash_key
from dashboard_query.core.logging import EventType, get_logger, log_event
from dashboard_query.core.protocols import EntryListener, Unsubscribe

if TYPE_CHECKING:
    from dashboard_query.cache.store import CacheEntry

logger = get_logger(__name__)


@dataclass(eq=False)
class Subscription:
    """One registered callback; ``active`` is the liveness flag."""

    query_hash: QueryHash
    callback: EntryListener
    active: bool = True


class SubscriptionRegistry:
    """Keyed observer lists with prefix fan-out.

    Notification iterates over a snapshot of the matching subscriptions and
    skips any that were deactivated during the pass, so an observer that
    unsubscribes another from inside its callback never triggers the
    removed callback for the current notification.
    """

    def __init__(self, *, normalize_keys: bool = True) -> None:
        self._normalize_keys = normalize_keys
        self._subscriptions: dict[QueryHash, list[Subscription]] = {}
        # Called with a hash when its last exact subscriber leaves
        self.on_idle: Callable[[QueryHash], None] | None = None

    def hash(self, key: QueryKey) -> QueryHash:
        """Hash a subscription key; the empty key subscribes to everything."""
        return hash_key(key, sort_fields=self._normalize_keys, allow_empty=True)

    def subscribe(self, key: QueryKey, callback: EntryListener) -> Unsubscribe:
        """Register ``callback`` under ``key``.

        Returns:
            Idempotent function removing the subscription.
        """
        return self.subscribe_hash(self.hash(key), callback)

    def subscribe_hash(self, query_hash: QueryHash, callback: EntryListener) -> Unsubscribe:
        """Register ``callback`` under an already hashed key."""
        subscription = Subscription(query_hash, callback)
        self._subscriptions.setdefault(query_hash, []).append(subscription)

        def unsubscribe() -> None:
            self._remove(subscription)

        return unsubscribe

    def _remove(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        subscription.active = False
        query_hash = subscription.query_hash
        remaining = [s for s in self._subscriptions.get(query_hash, []) if s is not subscription]
        if remaining:
            self._subscriptions[query_hash] = remaining
            return
        self._subscriptions.pop(query_hash, None)
        if self.on_idle is not None:
            self.on_idle(query_hash)

    def notify(self, query_hash: QueryHash, entry: CacheEntry) -> int:
        """Deliver ``entry`` to every exact or ancestor subscription.

        Args:
            query_hash: Hash of the entry that changed.
            entry: Snapshot to deliver.

        Returns:
            Number of callbacks invoked.
        """
        targets: list[Subscription] = []
        for depth in range(len(query_hash) + 1):
            targets.extend(self._subscriptions.get(query_hash[:depth], ()))

        delivered = 0
        for subscription in targets:
            if not subscription.active:
                continue
            try:
                subscription.callback(entry)
            except Exception as e:
                log_event(
                    logger,
                    logging.ERROR,
                    EventType.OBSERVER_ERROR,
                    format_key(query_hash),
                    f"observer callback raised {type(e).__name__}: {e}",
                )
                logger.debug("Observer traceback", exc_info=True)
            delivered += 1
        return delivered

    def observer_count(self, query_hash: QueryHash) -> int:
        """Number of live subscriptions registered exactly under ``query_hash``."""
        return len(self._subscriptions.get(query_hash, ()))

    def has_observers(self, query_hash: QueryHash) -> bool:
        """Whether anything is subscribed exactly under ``query_hash``."""
        return query_hash in self._subscriptions

    def clear(self) -> None:
        """Deactivate and drop every subscription."""
        for subscriptions in self._subscriptions.values():
            for subscription in subscriptions:
                subscription.active = False
        self._subscriptions.clear()

    def __len__(self) -> int:
        return sum(len(s) for s in self._subscriptions.values())
