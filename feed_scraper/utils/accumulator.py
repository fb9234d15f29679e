from typing import Dict, Generic, Iterable, Iterator, List, Optional, Tuple, TypeVar

T = TypeVar("T")


class Accumulator(Generic[T]):
    """
    Keyed, insertion-ordered, capped store.

    Adding a key that's already there is a no-op, so seeding from a previous
    attempt and then re-seeing the same items is harmless.
    """

    def __init__(self, limit: int, seed: Optional[Iterable[Tuple[str, T]]] = None):
        self.limit = limit
        self._items: Dict[str, T] = {}
        for key, item in seed or ():
            if self.full:
                break
            self._items.setdefault(key, item)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    @property
    def full(self) -> bool:
        return len(self._items) >= self.limit

    def add(self, key: str, item: T) -> bool:
        """Returns True only when the item was actually stored."""
        if key in self._items or self.full:
            return False
        self._items[key] = item
        return True

    def tighten(self, total: int):
        """Lower the quota when upstream says there are fewer items than requested."""
        if 0 < total < self.limit:
            self.limit = total

    def get(self, key: str) -> Optional[T]:
        return self._items.get(key)

    def values(self) -> List[T]:
        return list(self._items.values())

    def snapshot(self) -> List[Tuple[str, T]]:
        return list(self._items.items())
