"""
Change observers and keyed subscriptions.

``ChangeObserver`` is the callback interface a live query drives while it
applies a change batch. ``ObserverRegistry`` keeps at most one active
subscription per key: registering under a key that is already taken cancels
the old subscription before installing the new one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Generic, Hashable, Protocol, TypeVar

if TYPE_CHECKING:
    from notebook_engine.changes import ChangeKind, IndexPath

P = TypeVar("P")

logger = logging.getLogger(__name__)


class ChangeObserver(Protocol):
    """Receives one bracketed batch of result-set changes at a time."""

    def on_batch_begin(self) -> None:
        """Called first in every batch."""
        ...

    def on_section_change(self, kind: ChangeKind, index: int) -> None:
        """Called for each inserted or deleted section, before any row change."""
        ...

    def on_row_change(
        self, kind: ChangeKind, old_index: IndexPath | None, new_index: IndexPath | None
    ) -> None:
        """Called for each row-level change, in emission order."""
        ...

    def on_batch_end(self) -> None:
        """Called last in every batch."""
        ...


@dataclass(eq=False)
class Subscription(Generic[P]):
    """Handle for one registered callback."""

    key: Hashable
    callback: Callable[[P], None]
    _registry: ObserverRegistry[P] | None = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        """True until the subscription is cancelled or replaced."""
        return self._registry is not None

    def cancel(self) -> None:
        """De-register this subscription. Cancelling twice is a no-op."""
        registry, self._registry = self._registry, None
        if registry is not None:
            registry._discard(self)


class ObserverRegistry(Generic[P]):
    """Mapping from key to a single active subscription."""

    def __init__(self) -> None:
        self._subscriptions: dict[Hashable, Subscription[P]] = {}

    def register(self, key: Hashable, callback: Callable[[P], None]) -> Subscription[P]:
        """
        Install ``callback`` under ``key``.

        Any subscription already registered under ``key`` is cancelled first.
        """
        previous = self._subscriptions.get(key)
        if previous is not None:
            logger.debug("Replacing observer registered under %r", key)
            previous.cancel()
        subscription: Subscription[P] = Subscription(key=key, callback=callback, _registry=self)
        self._subscriptions[key] = subscription
        return subscription

    def unregister(self, key: Hashable) -> None:
        """Cancel the subscription under ``key``, if any."""
        subscription = self._subscriptions.get(key)
        if subscription is not None:
            subscription.cancel()

    def notify(self, payload: P) -> None:
        """Invoke every active callback with ``payload``."""
        for subscription in list(self._subscriptions.values()):
            if subscription.active:
                subscription.callback(payload)

    def keys(self) -> list[Hashable]:
        """Return the keys of active subscriptions."""
        return list(self._subscriptions)

    def __len__(self) -> int:
        return len(self._subscriptions)

    def _discard(self, subscription: Subscription[P]) -> None:
        if self._subscriptions.get(subscription.key) is subscription:
            del self._subscriptions[subscription.key]
