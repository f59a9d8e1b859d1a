"""
Mutation runner: writes followed by cache invalidation.

A mutation is a coroutine function that changes server-side state. Once
it succeeds, the query keys its descriptor declares are invalidated in
the same step, before the result is handed back. Refetches triggered by
that invalidation are scheduled on the event loop and are not awaited by
the mutation caller. A failed mutation invalidates nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from dashboard_query.cache.store import CacheEntry, CacheStore
from dashboard_query.core.keys import QueryKey, validate_key
from dashboard_query.core.logging import EventType, get_logger, log_event
from dashboard_query.core.protocols import MutationFn, describe_callable

logger = get_logger(__name__)

R = TypeVar("R")

InvalidateFn = Callable[[Iterable[QueryKey], bool], Sequence[CacheEntry]]


@dataclass(frozen=True)
class MutationDescriptor:
    """Keys a mutation makes stale when it succeeds.

    Attributes:
        invalidates: Query keys (or key prefixes) to invalidate.
        exact: Match keys exactly instead of by prefix.
    """

    invalidates: tuple[QueryKey, ...] = ()
    exact: bool = False

    def __post_init__(self) -> None:
        keys = tuple(validate_key(key, allow_empty=True) for key in self.invalidates)
        object.__setattr__(self, "invalidates", keys)

    @classmethod
    def of(cls, *keys: QueryKey, exact: bool = False) -> MutationDescriptor:
        """Shorthand: ``MutationDescriptor.of(["mlModels", "list"])``."""
        return cls(invalidates=keys, exact=exact)


NO_INVALIDATION = MutationDescriptor()


class MutationRunner:
    """Executes mutations and applies their invalidations.

    Args:
        store: Cache store whose entries get invalidated.
        invalidate: Invalidation hook, called as ``invalidate(keys, exact)``.
            Defaults to ``store.invalidate``; the QueryClient passes its own
            so that invalidation also triggers refetches.
    """

    def __init__(self, store: CacheStore, *, invalidate: InvalidateFn | None = None) -> None:
        self.store = store
        self._invalidate = invalidate or (lambda keys, exact: self.store.invalidate(keys, exact=exact))
        self._pending = 0

    @property
    def is_mutating(self) -> int:
        """Number of mutations currently running."""
        return self._pending

    async def mutate(
        self,
        fn: MutationFn[R],
        descriptor: MutationDescriptor | None = None,
        *args: Any,
        **kwargs: Any,
    ) -> R:
        """Run ``fn(*args, **kwargs)`` and invalidate on success.

        Args:
            fn: Coroutine function performing the write.
            descriptor: Keys to invalidate; nothing when None.
            *args: Positional mutation variables passed to ``fn``.
            **kwargs: Keyword mutation variables passed to ``fn``.

        Returns:
            Whatever ``fn`` returned.

        Raises:
            Exception: Any error raised by ``fn``, unchanged.
        """
        descriptor = descriptor or NO_INVALIDATION
        name = describe_callable(fn)
        self._pending += 1
        try:
            result = await fn(*args, **kwargs)
        except Exception as e:
            log_event(logger, logging.DEBUG, EventType.MUTATION_ERROR, name, f"{type(e).__name__}: {e}")
            raise
        finally:
            self._pending -= 1

        invalidated: Sequence[CacheEntry] = ()
        if descriptor.invalidates:
            invalidated = self._invalidate(descriptor.invalidates, descriptor.exact)
        log_event(
            logger,
            logging.DEBUG,
            EventType.MUTATION_SUCCESS,
            name,
            f"{len(invalidated)} entries invalidated",
        )
        return result
