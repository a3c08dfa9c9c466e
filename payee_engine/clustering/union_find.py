"""
Disjoint-set forest over payee ids.
"""

from typing import Iterable


class UnionFind:
    """
    Union by rank with path halving.

    find() walks the chain in a loop, so long chains are safe. Unknown ids
    are registered as singletons on first lookup.
    """

    def __init__(self, ids: Iterable[str] = ()):
        self._parent: dict[str, str] = {}
        self._rank: dict[str, int] = {}
        for item in ids:
            self.add(item)

    def __len__(self) -> int:
        return len(self._parent)

    def __contains__(self, item: str) -> bool:
        return item in self._parent

    def add(self, item: str) -> None:
        if item not in self._parent:
            self._parent[item] = item
            self._rank[item] = 0

    def find(self, item: str) -> str:
        """Representative id of the set containing item."""
        self.add(item)
        while self._parent[item] != item:
            self._parent[item] = self._parent[self._parent[item]]  # path halving
            item = self._parent[item]
        return item

    def union(self, a: str, b: str) -> bool:
        """Merge the sets of a and b. Returns False if they were already joined."""
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return False
        if self._rank[ra] < self._rank[rb]:
            ra, rb = rb, ra
        self._parent[rb] = ra
        if self._rank[ra] == self._rank[rb]:
            self._rank[ra] += 1
        return True

    def connected(self, a: str, b: str) -> bool:
        return self.find(a) == self.find(b)

    def groups(self) -> dict[str, list[str]]:
        """Representative id -> member ids, members in insertion order."""
        result: dict[str, list[str]] = {}
        for item in list(self._parent):
            result.setdefault(self.find(item), []).append(item)
        return result
