"""Bounded mapping that evicts the least recently touched key."""

from __future__ import annotations

from collections import OrderedDict
from typing import Generic, Hashable, Iterator, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class RecencyStore(Generic[K, V]):
    """Capacity-bounded store ordered by last access, oldest first.

    Backed by :class:`collections.OrderedDict`, whose ``move_to_end`` and
    ``popitem(last=False)`` are O(1), so every operation here is O(1).
    Not synchronised; callers serialise access.
    """

    def __init__(self, max_size: int) -> None:
        """Create an empty store holding at most ``max_size`` entries."""
        self._entries: "OrderedDict[K, V]" = OrderedDict()
        self._max_size = max(1, int(max_size))

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> Iterator[K]:
        """Iterate keys from least to most recently touched."""
        return iter(self._entries)

    def get(self, key: K) -> Optional[V]:
        """Return the stored value and mark ``key`` as most recently used."""
        if key not in self._entries:
            return None
        self._entries.move_to_end(key)
        return self._entries[key]

    def set(self, key: K, value: V) -> None:
        """Insert or replace ``key``, evicting the oldest entry when full."""
        if key in self._entries:
            self._entries[key] = value
            self._entries.move_to_end(key)
            return
        if len(self._entries) >= self._max_size:
            self.evict_oldest()
        self._entries[key] = value

    def evict_oldest(self) -> None:
        """Drop the least recently touched entry; no-op when empty."""
        if self._entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()
