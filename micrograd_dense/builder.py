"""
Graph Builder
=============

Immutable expression fragments that compose into a computation graph.

A fragment is a root node plus every node reachable from it. Combining two
fragments allocates exactly one new node and links to both operands, so
earlier structure is shared rather than copied or re-walked. The same
fragment (an input, say) can appear inside any number of larger
expressions; its nodes are deduplicated by id when the graph is frozen.

Example:
    >>> ids = IdAllocator()
    >>> a = GraphBuilder.input(ids)
    >>> b = GraphBuilder.input(ids)
    >>> out = ((a + b) * 2.0).relu()
    >>> graph = freeze(out)
"""

from __future__ import annotations
import numbers
from typing import Dict, Iterable, List, Tuple, Union

import numpy as np

from .errors import PreconditionError
from .ids import IdAllocator, NodeId
from .node import Immediate, Input, Node, Op, Operation


# Type alias for numeric inputs
Numeric = Union[int, float, np.floating]


def _check_numeric(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise TypeError(
            f"Immediate value must be numeric, got {type(value).__name__}"
        )
    return float(value)


class GraphBuilder:
    """
    One sub-expression and everything it depends on.

    Fragments never change once created; every combinator returns a new
    one. All fragments that are combined or frozen together must share a
    single IdAllocator.

    Attributes:
        root: Id of the node this fragment evaluates to.
        node: The root node itself.
        allocator: The IdAllocator this fragment draws ids from.
    """

    __slots__ = ('_allocator', '_node', '_operands')

    def __init__(
        self,
        allocator: IdAllocator,
        node: Node,
        operands: Tuple[GraphBuilder, ...] = ()
    ) -> None:
        self._allocator = allocator
        self._node = node
        self._operands = operands

    # =========================================================================
    # Leaf constructors
    # =========================================================================

    @classmethod
    def input(cls, allocator: IdAllocator) -> GraphBuilder:
        """Return a fragment rooted at a fresh Input node."""
        return cls(allocator, Input(allocator.next()))

    @classmethod
    def immediate(cls, allocator: IdAllocator, value: Numeric) -> GraphBuilder:
        """
        Return a fragment rooted at a fresh Immediate node.

        Raises:
            TypeError: If value is not a real number.
        """
        value = _check_numeric(value)
        return cls(allocator, Immediate(allocator.next(), value))

    # =========================================================================
    # Combinators
    # =========================================================================

    @staticmethod
    def combine(op: Op, left: GraphBuilder, right: GraphBuilder) -> GraphBuilder:
        """
        Return a fragment rooted at ``Operation(op, left.root, right.root)``.

        Raises:
            PreconditionError: If the operands use different allocators.
        """
        if left._allocator is not right._allocator:
            raise PreconditionError(
                "Cannot combine fragments built from different allocators"
            )
        allocator = left._allocator
        node = Operation(allocator.next(), op, left.root, right.root)
        return GraphBuilder(allocator, node, (left, right))

    @staticmethod
    def with_scalar(
        op: Op,
        fragment: GraphBuilder,
        value: Numeric,
        scalar_first: bool = False
    ) -> GraphBuilder:
        """
        Combine ``fragment`` with a new immediate holding ``value``.

        The immediate is the right operand unless ``scalar_first`` is set,
        which is how ``2.0 - x`` keeps its operand order.
        """
        scalar = GraphBuilder.immediate(fragment._allocator, value)
        if scalar_first:
            return GraphBuilder.combine(op, scalar, fragment)
        return GraphBuilder.combine(op, fragment, scalar)

    def _apply(self, op: Op, other: Union[GraphBuilder, Numeric]) -> GraphBuilder:
        if isinstance(other, GraphBuilder):
            return GraphBuilder.combine(op, self, other)
        return GraphBuilder.with_scalar(op, self, other)

    def add(self, other: Union[GraphBuilder, Numeric]) -> GraphBuilder:
        return self._apply(Op.ADD, other)

    def sub(self, other: Union[GraphBuilder, Numeric]) -> GraphBuilder:
        return self._apply(Op.SUB, other)

    def mul(self, other: Union[GraphBuilder, Numeric]) -> GraphBuilder:
        return self._apply(Op.MUL, other)

    def div(self, other: Union[GraphBuilder, Numeric]) -> GraphBuilder:
        return self._apply(Op.DIV, other)

    def pow(self, other: Union[GraphBuilder, Numeric]) -> GraphBuilder:
        return self._apply(Op.POW, other)

    def relu(self) -> GraphBuilder:
        """Rectified Linear Unit: max(self, 0), with a zero immediate as right operand."""
        return GraphBuilder.with_scalar(Op.RELU, self, 0.0)

    # =========================================================================
    # Operator sugar
    # =========================================================================

    def _reflected(self, op: Op, other: object) -> GraphBuilder:
        if not isinstance(other, numbers.Real):
            return NotImplemented
        return GraphBuilder.with_scalar(op, self, other, scalar_first=True)

    def __add__(self, other):
        if not isinstance(other, (GraphBuilder, numbers.Real)):
            return NotImplemented
        return self.add(other)

    def __radd__(self, other):
        return self._reflected(Op.ADD, other)

    def __sub__(self, other):
        if not isinstance(other, (GraphBuilder, numbers.Real)):
            return NotImplemented
        return self.sub(other)

    def __rsub__(self, other):
        return self._reflected(Op.SUB, other)

    def __neg__(self) -> GraphBuilder:
        """Negation: 0 - self."""
        return GraphBuilder.with_scalar(Op.SUB, self, 0.0, scalar_first=True)

    def __mul__(self, other):
        if not isinstance(other, (GraphBuilder, numbers.Real)):
            return NotImplemented
        return self.mul(other)

    def __rmul__(self, other):
        return self._reflected(Op.MUL, other)

    def __truediv__(self, other):
        if not isinstance(other, (GraphBuilder, numbers.Real)):
            return NotImplemented
        return self.div(other)

    def __rtruediv__(self, other):
        return self._reflected(Op.DIV, other)

    def __pow__(self, other):
        if not isinstance(other, (GraphBuilder, numbers.Real)):
            return NotImplemented
        return self.pow(other)

    def __rpow__(self, other):
        return self._reflected(Op.POW, other)

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def root(self) -> NodeId:
        return self._node.id

    @property
    def node(self) -> Node:
        return self._node

    @property
    def allocator(self) -> IdAllocator:
        return self._allocator

    def nodes(self) -> Dict[NodeId, Node]:
        """
        Return every node reachable from the root, keyed by id.

        A node shared by several sub-expressions is visited once.
        """
        return collect_nodes([self])

    def __repr__(self) -> str:
        kind = type(self._node).__name__
        return f"GraphBuilder(root={self.root}, {kind})"


def collect_nodes(fragments: Iterable[GraphBuilder]) -> Dict[NodeId, Node]:
    """
    Merge the reachable nodes of several fragments, deduplicated by id.

    Walks operand links with an explicit stack and one visited map shared
    across all fragments, so common structure is visited once in total.
    """
    nodes: Dict[NodeId, Node] = {}
    stack: List[GraphBuilder] = list(fragments)
    while stack:
        fragment = stack.pop()
        node = fragment._node
        if node.id in nodes:
            continue
        nodes[node.id] = node
        stack.extend(fragment._operands)
    return nodes
