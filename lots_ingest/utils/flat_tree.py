"""Document-order view of a tree with index and ancestor lookup.

``FlatTree`` flattens any tree (pre-order, parents before children) given a
``children`` callable, remembering each node's position and parent. The
main query is ``nearest_preceding``: walk backward from a node and return the
first earlier node satisfying a predicate, skipping the node's own
ancestors. Ancestors come earlier in document order but *contain* the start
node, so their text would include it; excluding them keeps the answer
restricted to content that genuinely precedes the node.

Node identity is by ``id()``, so node types with value-based ``__eq__``
(BeautifulSoup tags, for example) are handled correctly.
"""
from __future__ import annotations

from typing import Callable, Generic, Iterable, Iterator, Optional, TypeVar

N = TypeVar("N")


class FlatTree(Generic[N]):
    def __init__(self, root: N, children: Callable[[N], Iterable[N]], *, include_root: bool = True) -> None:
        self._nodes: list[N] = []
        self._index: dict[int, int] = {}
        self._parent: dict[int, Optional[N]] = {}

        stack: list[tuple[N, Optional[N]]] = [(root, None)]
        while stack:
            node, parent = stack.pop()
            self._parent[id(node)] = parent
            if include_root or node is not root:
                self._index[id(node)] = len(self._nodes)
                self._nodes.append(node)
            kids = list(children(node))
            # reversed so the first child is popped (and numbered) first
            for child in reversed(kids):
                stack.append((child, node))

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[N]:
        return iter(self._nodes)

    def __getitem__(self, position: int) -> N:
        return self._nodes[position]

    def __contains__(self, node: object) -> bool:
        return id(node) in self._index

    def index_of(self, node: N) -> int:
        try:
            return self._index[id(node)]
        except KeyError:
            raise KeyError("node is not part of this tree") from None

    def parent_of(self, node: N) -> Optional[N]:
        return self._parent.get(id(node))

    def ancestors(self, node: N) -> list[N]:
        chain: list[N] = []
        current = self._parent.get(id(node))
        while current is not None:
            chain.append(current)
            current = self._parent.get(id(current))
        return chain

    def nearest_preceding(
        self,
        node: N,
        predicate: Callable[[N], bool],
        *,
        include_self: bool = False,
        skip_ancestors: bool = True,
    ) -> Optional[N]:
        start = self.index_of(node)
        skip = {id(a) for a in self.ancestors(node)} if skip_ancestors else set()
        first = start if include_self else start - 1
        for i in range(first, -1, -1):
            candidate = self._nodes[i]
            if id(candidate) in skip:
                continue
            if predicate(candidate):
                return candidate
        return None

    def nearest_ancestor(self, node: N, predicate: Callable[[N], bool]) -> Optional[N]:
        for ancestor in self.ancestors(node):
            if predicate(ancestor):
                return ancestor
        return None


__all__ = ["FlatTree"]
