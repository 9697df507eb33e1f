"""
Node identifiers and the allocator that hands them out.

Every fragment that may later be combined with another must draw its ids
from the same IdAllocator. Ids only ever grow, so an operation node always
gets a larger id than both of its operands. The executable graph relies on
that ordering to evaluate with one forward scan and differentiate with one
reverse scan.
"""

from __future__ import annotations
from typing import NewType


NodeId = NewType("NodeId", int)


class IdAllocator:
    """
    Issues strictly increasing node ids starting from ``origin``.

    The allocator is not safe to share between threads. Parallel training
    units should each own an allocator; give them disjoint ``origin`` values
    if their ids must never collide.

    Example:
        >>> ids = IdAllocator()
        >>> ids.next(), ids.next()
        (0, 1)
    """

    __slots__ = ("_origin", "_next")

    def __init__(self, origin: int = 0) -> None:
        if not isinstance(origin, int) or origin < 0:
            raise ValueError(f"origin must be a non-negative int, got {origin!r}")
        self._origin = origin
        self._next = origin

    @property
    def origin(self) -> int:
        return self._origin

    def next(self) -> NodeId:
        """Return a fresh id, larger than every id issued before."""
        node_id = NodeId(self._next)
        self._next += 1
        return node_id

    def peek(self) -> NodeId:
        """Return the id the next call to next() will issue."""
        return NodeId(self._next)

    def __len__(self) -> int:
        return self._next - self._origin

    def __repr__(self) -> str:
        return f"IdAllocator(origin={self._origin}, issued={len(self)})"
