"""Bounded list of recently viewed project summaries."""

from collections import OrderedDict

from gowalker.models import PkgInfo


class RecentProjects:
    """Insertion-ordered cache keyed by import path.

    Updating a present key replaces it and makes it the newest entry. A new
    key is appended; when that pushes the size past ``max_size`` the oldest
    entry is dropped.
    """

    def __init__(self, max_size: int = 20):
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._items: OrderedDict[str, PkgInfo] = OrderedDict()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, import_path: str) -> bool:
        return import_path in self._items

    def get(self, import_path: str) -> PkgInfo | None:
        return self._items.get(import_path)

    def upsert(self, info: PkgInfo) -> None:
        key = info.import_path
        if key in self._items:
            self._items[key] = info
            self._items.move_to_end(key)
            return
        self._items[key] = info
        if len(self._items) > self.max_size:
            self._items.popitem(last=False)

    def evict(self, import_path: str) -> bool:
        return self._items.pop(import_path, None) is not None

    def items(self) -> list[PkgInfo]:
        """Oldest first."""
        return list(self._items.values())
