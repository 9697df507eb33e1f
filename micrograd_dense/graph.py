"""
Executable Graph
================

A frozen, array-indexed computation graph built from one or more
GraphBuilder fragments.

Node ids are handed out in increasing order and an operation is always
created after both of its operands. Laying the nodes out in id order
therefore gives a valid topological order for free:

- forward: one scan in increasing id order computes every operation from
  operands that were already computed earlier in the same scan.
- backward: one scan in decreasing id order hands each operation's
  gradient to its operands after every consumer of that operation has
  already contributed to it.

No recursion, no visited sets, and shared sub-expressions are computed
exactly once per scan.
"""

from __future__ import annotations
import logging
import numbers
import operator
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .builder import GraphBuilder, collect_nodes
from .errors import PreconditionError, UnsupportedBackwardError
from .ids import NodeId
from .node import Data, Immediate, Input, Node, Op, Operation

logger = logging.getLogger(__name__)


def _divide(left: float, right: float) -> float:
    return float(np.divide(left, right))


def _power(left: float, right: float) -> float:
    return float(np.power(left, right))


def _relu(left: float, right: float) -> float:
    return 0.0 if left < 0.0 else left


_FORWARD: Dict[Op, Callable[[float, float], float]] = {
    Op.ADD: operator.add,
    Op.SUB: operator.sub,
    Op.MUL: operator.mul,
    Op.DIV: _divide,
    Op.POW: _power,
    Op.RELU: _relu,
}


class ExecutableGraph:
    """
    Dense, id-ordered graph with one value and one gradient slot per node.

    Slot ``i`` holds node ``base + i`` where ``base`` is the smallest id in
    the graph. Ids inside that range that none of the frozen fragments
    reach are vacant: they are never evaluated and every id-taking method
    rejects them.

    Typical training step:
        >>> graph.set_input(x_id, 1.5)
        >>> [pred] = graph.evaluate()
        >>> graph.zero_grads()
        >>> graph.backward([(graph.outputs[0], pred - target)])
        >>> graph.update_weights(optimiser)

    Attributes:
        data: Values and gradients, indexed by slot.
        outputs: Output root ids in the order they were frozen.
    """

    def __init__(self, nodes: Sequence[Optional[Node]], base: int, outputs: Sequence[NodeId]) -> None:
        self._nodes: List[Optional[Node]] = list(nodes)
        self._base = base
        self._outputs: Tuple[NodeId, ...] = tuple(outputs)

        self.data = Data.zeros(len(self._nodes))

        forward = []
        parameters = []
        inputs = []
        for slot, node in enumerate(self._nodes):
            if isinstance(node, Operation):
                forward.append((slot, node.op, node.left - base, node.right - base))
            elif isinstance(node, Immediate):
                self.data.value[slot] = node.value
                parameters.append(slot)
            elif isinstance(node, Input):
                inputs.append(node.id)

        self._forward = [
            (slot, _FORWARD[op], left, right) for slot, op, left, right in forward
        ]
        self._reverse = forward[::-1]
        self._parameters = np.array(parameters, dtype=np.intp)
        self._inputs: Tuple[NodeId, ...] = tuple(inputs)

    @classmethod
    def freeze(cls, *fragments: GraphBuilder) -> ExecutableGraph:
        """
        Merge fragments into one executable graph.

        Each fragment's root becomes an output, in the order given. Nodes
        reachable from several fragments are stored once.

        Raises:
            PreconditionError: If no fragment is given or the fragments
                use different allocators.
        """
        if not fragments:
            raise PreconditionError("freeze() needs at least one fragment")
        allocator = fragments[0].allocator
        if any(f.allocator is not allocator for f in fragments[1:]):
            raise PreconditionError(
                "Cannot freeze fragments built from different allocators"
            )

        merged = collect_nodes(fragments)
        base = min(merged)
        nodes: List[Optional[Node]] = [None] * (max(merged) - base + 1)
        for node_id, node in merged.items():
            nodes[node_id - base] = node

        graph = cls(nodes, base, [f.root for f in fragments])
        logger.debug(
            "Froze graph: %d nodes in %d slots, %d inputs, %d parameters, outputs=%s",
            len(merged), len(nodes), len(graph.input_ids),
            graph.num_parameters(), list(graph.outputs)
        )
        return graph

    # =========================================================================
    # Lookup
    # =========================================================================

    def slot(self, node_id: NodeId) -> int:
        """
        Return the array index holding ``node_id``.

        Raises:
            PreconditionError: If the id is not a node of this graph.
        """
        if isinstance(node_id, bool) or not isinstance(node_id, numbers.Integral):
            raise PreconditionError(f"Node id must be an int, got {node_id!r}")
        slot = int(node_id) - self._base
        if not 0 <= slot < len(self._nodes) or self._nodes[slot] is None:
            raise PreconditionError(f"Unknown node id {node_id}")
        return slot

    def node(self, node_id: NodeId) -> Node:
        return self._nodes[self.slot(node_id)]

    def node_ids(self) -> List[NodeId]:
        """Ids of every node in the graph, in increasing order."""
        return [node.id for node in self._nodes if node is not None]

    def value(self, node_id: NodeId) -> float:
        return float(self.data.value[self.slot(node_id)])

    def gradient(self, node_id: NodeId) -> float:
        return float(self.data.gradient[self.slot(node_id)])

    @property
    def outputs(self) -> Tuple[NodeId, ...]:
        return self._outputs

    @property
    def input_ids(self) -> Tuple[NodeId, ...]:
        """Ids of all Input nodes, in increasing order."""
        return self._inputs

    @property
    def parameter_ids(self) -> List[NodeId]:
        """Ids of all Immediate nodes, in the order update_weights hands them out."""
        return [NodeId(int(slot) + self._base) for slot in self._parameters]

    def num_parameters(self) -> int:
        """Number of Immediate nodes, i.e. the size optimiser state must have."""
        return len(self._parameters)

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return (
            f"ExecutableGraph(slots={len(self)}, inputs={len(self._inputs)}, "
            f"parameters={self.num_parameters()}, outputs={list(self._outputs)})"
        )

    # =========================================================================
    # Forward
    # =========================================================================

    def set_input(self, node_id: NodeId, value: float) -> None:
        """
        Write the value of an Input node.

        Raises:
            PreconditionError: If ``node_id`` is not an Input node.
        """
        slot = self.slot(node_id)
        if not isinstance(self._nodes[slot], Input):
            raise PreconditionError(
                f"Node {node_id} is a {type(self._nodes[slot]).__name__}, not an Input"
            )
        self.data.value[slot] = value

    def evaluate(self, output_ids: Optional[Iterable[NodeId]] = None) -> List[float]:
        """
        Recompute every operation and return the requested values.

        Args:
            output_ids: Nodes to read after the sweep, in the order wanted.
                Defaults to the graph's outputs.

        Returns:
            One float per requested id. Division by zero and similar
            produce inf/NaN rather than raising.
        """
        slots = [self.slot(i) for i in (self._outputs if output_ids is None else output_ids)]

        values = self.data.value.tolist()
        with np.errstate(all='ignore'):
            for slot, fn, left, right in self._forward:
                values[slot] = fn(values[left], values[right])
        self.data.value[:] = values

        return [values[slot] for slot in slots]

    # =========================================================================
    # Backward
    # =========================================================================

    def backward(self, seeds: Iterable[Tuple[NodeId, float]]) -> None:
        """
        Accumulate gradients from seeded outputs back to every node.

        Each seed's gradient is added to its node, so seeding a node twice
        sums the contributions. Gradients are added to whatever is already
        stored; call zero_grads() first at the start of a training step.

        Args:
            seeds: (node id, upstream gradient) pairs.

        Raises:
            PreconditionError: If a seed names an unknown node.
            UnsupportedBackwardError: If a Sub, Div or Pow node is reachable
                from a seed. Gradients are left unchanged in that case.
        """
        seeded = [(self.slot(node_id), float(seed)) for node_id, seed in seeds]

        values = self.data.value.tolist()
        grads = self.data.gradient.tolist()
        reached = [False] * len(grads)
        for slot, seed in seeded:
            grads[slot] += seed
            reached[slot] = True

        for slot, op, left, right in self._reverse:
            g = grads[slot]
            if op is Op.ADD:
                grads[left] += g
                grads[right] += g
            elif op is Op.MUL:
                grads[left] += values[right] * g
                grads[right] += values[left] * g
            elif op is Op.RELU:
                # right operand is the constant zero
                if values[left] > 0.0:
                    grads[left] += g
            elif reached[slot]:
                raise UnsupportedBackwardError(op, NodeId(slot + self._base))
            else:
                continue
            if reached[slot]:
                reached[left] = reached[right] = True

        self.data.gradient[:] = grads

    def zero_grads(self) -> None:
        """Reset every gradient to 0.0."""
        self.data.gradient.fill(0.0)

    def update_weights(self, optimiser) -> None:
        """
        Let ``optimiser`` update the value of every Immediate node.

        The optimiser sees a Data block with one entry per parameter, in
        increasing id order, and must update ``value`` from ``gradient``.
        """
        params = self._parameters
        block = Data(self.data.value[params], self.data.gradient[params])
        optimiser.optimise(block)
        self.data.value[params] = block.value


def freeze(*fragments: GraphBuilder) -> ExecutableGraph:
    """Shorthand for ExecutableGraph.freeze(*fragments)."""
    return ExecutableGraph.freeze(*fragments)


def draw_graph(graph: ExecutableGraph, format: str = 'text') -> str:
    """
    Render an executable graph with its current values and gradients.

    Args:
        graph: Graph to render.
        format: 'text' for one line per node, 'dot' for Graphviz DOT.

    Returns:
        String representation of the graph.
    """
    nodes = [graph.node(i) for i in graph.node_ids()]
    outputs = set(graph.outputs)

    def label(node: Node) -> str:
        if isinstance(node, Input):
            return f'x{node.id}'
        if isinstance(node, Immediate):
            return f'c{node.id}'
        return f'v{node.id}'

    if format == 'dot':
        lines = ['digraph G {', '  rankdir=LR;']
        for node in nodes:
            nid = node.id
            extra = ', peripheries=2' if nid in outputs else ''
            lines.append(
                f'  n{nid} [label="{label(node)}\\n'
                f'data={graph.value(nid):.4f}\\n'
                f'grad={graph.gradient(nid):.4f}", shape=box{extra}];'
            )
            if isinstance(node, Operation):
                op_id = f'op{nid}'
                lines.append(f'  {op_id} [label="{node.op.value}", shape=circle];')
                lines.append(f'  {op_id} -> n{nid};')
                lines.append(f'  n{node.left} -> {op_id};')
                if node.op is not Op.RELU:
                    lines.append(f'  n{node.right} -> {op_id};')
        lines.append('}')
        return '\n'.join(lines)

    if format != 'text':
        raise ValueError(f"Unknown format {format!r}, expected 'text' or 'dot'")

    lines = ['Computation Graph:', '=' * 50]
    for node in reversed(nodes):
        nid = node.id
        name = label(node) + ('*' if nid in outputs else '')
        op_str = ''
        if isinstance(node, Operation):
            left = label(graph.node(node.left))
            if node.op is Op.RELU:
                op_str = f' = relu({left})'
            else:
                op_str = f' = {node.op.value}({left}, {label(graph.node(node.right))})'
        lines.append(
            f'{name:>10}: data={graph.value(nid):>10.4f}, '
            f'grad={graph.gradient(nid):>10.4f}{op_str}'
        )
    return '\n'.join(lines)
