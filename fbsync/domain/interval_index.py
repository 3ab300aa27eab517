"""
Augmented interval tree used to find busy blocks overlapping an appointment.

The tree is an AVL tree keyed by (start, end). Every node also stores the
latest end time found in its subtree, which lets overlap queries skip whole
subtrees that finish before the query begins.
"""

from typing import Generic, Iterator, List, Optional, Tuple, TypeVar

from .models import TimeRange

T = TypeVar("T")


class _Node(Generic[T]):
    __slots__ = ("time_range", "payload", "max_end", "height", "left", "right")

    def __init__(self, time_range: TimeRange, payload: T):
        self.time_range = time_range
        self.payload = payload
        self.max_end = time_range.end
        self.height = 1
        self.left: Optional["_Node[T]"] = None
        self.right: Optional["_Node[T]"] = None


def _height(node: Optional[_Node]) -> int:
    return node.height if node else 0


def _update(node: _Node) -> None:
    node.height = 1 + max(_height(node.left), _height(node.right))
    node.max_end = node.time_range.end
    for child in (node.left, node.right):
        if child is not None and child.max_end > node.max_end:
            node.max_end = child.max_end


def _rotate_right(node: _Node) -> _Node:
    pivot = node.left
    node.left = pivot.right
    pivot.right = node
    _update(node)
    _update(pivot)
    return pivot


def _rotate_left(node: _Node) -> _Node:
    pivot = node.right
    node.right = pivot.left
    pivot.left = node
    _update(node)
    _update(pivot)
    return pivot


def _rebalance(node: _Node) -> _Node:
    _update(node)
    balance = _height(node.left) - _height(node.right)

    if balance > 1:
        if _height(node.left.left) < _height(node.left.right):
            node.left = _rotate_left(node.left)
        return _rotate_right(node)

    if balance < -1:
        if _height(node.right.right) < _height(node.right.left):
            node.right = _rotate_right(node.right)
        return _rotate_left(node)

    return node


class IntervalIndex(Generic[T]):
    """
    Container of (TimeRange, payload) pairs supporting overlap queries.

    Built once per reconciliation and thrown away afterwards; it is not
    thread-safe.
    """

    def __init__(self) -> None:
        self._root: Optional[_Node[T]] = None
        self._size = 0

    def insert(self, time_range: TimeRange, payload: T) -> None:
        """Insert a payload under its range. Equal ranges are kept side by side."""
        self._root = self._insert(self._root, _Node(time_range, payload))
        self._size += 1

    def _insert(self, node: Optional[_Node[T]], new: _Node[T]) -> _Node[T]:
        if node is None:
            return new

        if new.time_range.sort_key() < node.time_range.sort_key():
            node.left = self._insert(node.left, new)
        else:
            node.right = self._insert(node.right, new)

        return _rebalance(node)

    def find_overlapping(self, query: TimeRange) -> List[T]:
        """
        Return every payload whose range overlaps ``query``.

        Overlap is open-interval: ``start < query.end and end > query.start``.
        Result order is unspecified.
        """
        matches: List[T] = []
        stack: List[Optional[_Node[T]]] = [self._root]

        while stack:
            node = stack.pop()

            # Nothing in this subtree ends after the query starts
            if node is None or node.max_end <= query.start:
                continue

            stack.append(node.left)

            # Right subtree only holds later starts
            if node.time_range.start < query.end:
                if node.time_range.end > query.start:
                    matches.append(node.payload)
                stack.append(node.right)

        return matches

    @property
    def height(self) -> int:
        return _height(self._root)

    def __iter__(self) -> Iterator[Tuple[TimeRange, T]]:
        """Yield (range, payload) pairs in (start, end) order."""
        stack: List[_Node[T]] = []
        node = self._root
        while stack or node is not None:
            while node is not None:
                stack.append(node)
                node = node.left
            node = stack.pop()
            yield node.time_range, node.payload
            node = node.right

    def __len__(self) -> int:
        return self._size

    def __bool__(self) -> bool:
        return self._size > 0
