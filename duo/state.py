"""Observer base class for state containers and the optimistic-update helper."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from duo.errors import DuoError
from duo.metrics import OPTIMISTIC_ROLLBACKS

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[Any], None]


class Observable:
    """A state container that notifies subscribers after every transition."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; it receives the container on each change.

        Returns a callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self) -> None:
        """Call every listener with this container."""
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("State listener failed for %s", type(self).__name__)


async def optimistic_update(
    store: Observable,
    mutate: Callable[[], None],
    request: Callable[[], Awaitable[T]],
    *,
    undo: Callable[[], None],
    action: str,
) -> T:
    """Apply *mutate* locally, then await *request*; call *undo* on failure.

    *undo* reverts only what *mutate* changed, so other changes that landed
    while the request was in flight survive the rollback.  The failure is
    re-raised after the store has been rolled back and its subscribers
    notified.
    """
    mutate()
    store.notify()
    try:
        return await request()
    except Exception as e:
        if isinstance(e, DuoError):
            logger.warning("%s failed, rolling back: %s", action, e)
        else:
            logger.exception("%s raised unexpectedly, rolling back", action)
        undo()
        OPTIMISTIC_ROLLBACKS.labels(action=action).inc()
        store.notify()
        raise
