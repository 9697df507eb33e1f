"""
Unit Tests: Graph Construction and Forward Evaluation
=====================================================

Test coverage:
- Id allocation and the operand-before-operation ordering
- Fragment composition (operators, scalars, merging, immutability)
- Freezing one or many fragments into an executable graph
- Forward evaluation, including IEEE inf/NaN results
- Precondition errors and graph rendering

Run with: pytest tests/test_engine.py -v
"""

import math

import numpy as np
import pytest

from micrograd_dense import (
    ExecutableGraph,
    GraphBuilder,
    IdAllocator,
    Immediate,
    Input,
    Op,
    Operation,
    PreconditionError,
    draw_graph,
    freeze,
)


def build_random_expression(seed: int, size: int = 30) -> GraphBuilder:
    """Combine random picks from a growing pool of fragments."""
    rng = np.random.default_rng(seed)
    ids = IdAllocator()
    pool = [GraphBuilder.input(ids) for _ in range(3)]
    pool += [GraphBuilder.immediate(ids, float(v)) for v in rng.uniform(-1, 1, 3)]
    for _ in range(size):
        left = pool[rng.integers(len(pool))]
        right = pool[rng.integers(len(pool))]
        op = list(Op)[rng.integers(len(Op))]
        if op is Op.RELU:
            pool.append(left.relu())
        else:
            pool.append(GraphBuilder.combine(op, left, right))
    return pool[-1]


# =============================================================================
# Id Allocation
# =============================================================================

class TestIdAllocator:
    """Test the id allocator."""

    def test_ids_increase_from_origin(self) -> None:
        """Ids start at the origin and grow by one."""
        ids = IdAllocator()
        assert [ids.next() for _ in range(3)] == [0, 1, 2]
        assert len(ids) == 3

    def test_custom_origin(self) -> None:
        """An allocator can start at any non-negative origin."""
        ids = IdAllocator(origin=100)
        assert ids.peek() == 100
        assert ids.next() == 100
        assert ids.next() == 101

    def test_negative_origin_rejected(self) -> None:
        """Negative origins are invalid."""
        with pytest.raises(ValueError):
            IdAllocator(origin=-1)


# =============================================================================
# Graph Builder
# =============================================================================

class TestGraphBuilder:
    """Test fragment construction and composition."""

    def test_input_allocates_one_id(self) -> None:
        """Each input gets a fresh id and an Input node."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        b = GraphBuilder.input(ids)
        assert (a.root, b.root) == (0, 1)
        assert isinstance(a.node, Input)

    def test_immediate_holds_value(self) -> None:
        """Immediates store their construction-time value."""
        ids = IdAllocator()
        w = GraphBuilder.immediate(ids, 0.25)
        assert w.node == Immediate(w.root, 0.25)

    def test_immediate_rejects_non_numeric(self) -> None:
        """Non-numeric immediates raise TypeError."""
        ids = IdAllocator()
        with pytest.raises(TypeError):
            GraphBuilder.immediate(ids, "not a number")

    def test_scalar_is_allocated_before_operation(self) -> None:
        """x + 1.0 allocates the immediate, then the addition."""
        ids = IdAllocator()
        x = GraphBuilder.input(ids)
        y = x + 1.0
        nodes = y.nodes()
        assert sorted(nodes) == [0, 1, 2]
        assert nodes[1] == Immediate(1, 1.0)
        assert nodes[2] == Operation(2, Op.ADD, 0, 1)

    def test_reflected_scalar_keeps_operand_order(self) -> None:
        """2.0 - x puts the immediate on the left."""
        ids = IdAllocator()
        x = GraphBuilder.input(ids)
        y = 2.0 - x
        assert y.node.op is Op.SUB
        assert isinstance(y.nodes()[y.node.left], Immediate)
        assert y.node.right == x.root

    def test_negation_is_subtraction_from_zero(self) -> None:
        """-x is 0 - x."""
        ids = IdAllocator()
        x = GraphBuilder.input(ids)
        y = -x
        assert y.node.op is Op.SUB
        assert y.nodes()[y.node.left] == Immediate(y.node.left, 0.0)

    def test_relu_uses_zero_immediate(self) -> None:
        """relu() is a binary op whose right operand is 0.0."""
        ids = IdAllocator()
        x = GraphBuilder.input(ids)
        y = x.relu()
        assert y.node.op is Op.RELU
        assert y.nodes()[y.node.right] == Immediate(y.node.right, 0.0)

    def test_named_methods_match_operators(self) -> None:
        """add/sub/mul/div/pow build the same ops as the operators."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        b = GraphBuilder.input(ids)
        assert a.add(b).node.op is Op.ADD
        assert a.sub(b).node.op is Op.SUB
        assert a.mul(b).node.op is Op.MUL
        assert a.div(b).node.op is Op.DIV
        assert a.pow(3).node.op is Op.POW

    def test_fragments_are_not_mutated(self) -> None:
        """Combining leaves the operands as they were."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        b = GraphBuilder.input(ids)
        c = a * b
        _ = c + a
        assert list(a.nodes()) == [a.root]
        assert len(c.nodes()) == 3

    def test_shared_nodes_deduplicate(self) -> None:
        """a * a contains a once."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        assert len((a * a).nodes()) == 2

    def test_different_allocators_rejected(self) -> None:
        """Fragments from different allocators cannot be combined."""
        a = GraphBuilder.input(IdAllocator())
        b = GraphBuilder.input(IdAllocator())
        with pytest.raises(PreconditionError):
            a + b

    def test_unsupported_operand_type(self) -> None:
        """Combining with a non-number raises TypeError."""
        a = GraphBuilder.input(IdAllocator())
        with pytest.raises(TypeError):
            a + "x"

    @pytest.mark.parametrize("seed", range(5))
    def test_operands_precede_operation(self, seed: int) -> None:
        """Every operation id is larger than both operand ids."""
        expr = build_random_expression(seed)
        for node_id, node in expr.nodes().items():
            if isinstance(node, Operation):
                assert node.left < node_id
                assert node.right < node_id

    def test_ordering_holds_across_merged_fragments(self) -> None:
        """Fragments built separately and merged keep the ordering."""
        ids = IdAllocator()
        x = GraphBuilder.input(ids)
        first = (x * 2.0).relu()
        y = GraphBuilder.input(ids)
        second = y + x
        merged = first * second + first
        for node_id, node in merged.nodes().items():
            if isinstance(node, Operation):
                assert max(node.left, node.right) < node_id

    def test_operation_rejects_forward_reference(self) -> None:
        """An Operation cannot name an operand with a larger id."""
        with pytest.raises(ValueError):
            Operation(1, Op.ADD, 0, 2)


# =============================================================================
# Freezing
# =============================================================================

class TestFreeze:
    """Test conversion of fragments into an executable graph."""

    def test_single_fragment(self) -> None:
        """A frozen fragment has one slot per node and one output."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        out = a * 3.0
        graph = freeze(out)
        assert len(graph) == 3
        assert graph.outputs == (out.root,)
        assert graph.input_ids == (a.root,)

    def test_immediates_initialise_values(self) -> None:
        """Immediate values are loaded, everything else starts at zero."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        w = GraphBuilder.immediate(ids, 3.0)
        graph = freeze(a * w)
        assert graph.value(w.root) == 3.0
        assert graph.value(a.root) == 0.0
        assert np.all(graph.data.gradient == 0.0)

    def test_multiple_outputs_share_nodes(self) -> None:
        """Two outputs over one input store the input once."""
        ids = IdAllocator()
        x = GraphBuilder.input(ids)
        o1 = x * 2.0
        o2 = x + 1.0
        graph = ExecutableGraph.freeze(o1, o2)
        assert graph.outputs == (o1.root, o2.root)
        assert graph.node_ids() == sorted(set(o1.nodes()) | set(o2.nodes()))

    def test_unreached_ids_are_vacant(self) -> None:
        """Ids allocated for other fragments are rejected."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        unused = GraphBuilder.input(ids)
        b = GraphBuilder.input(ids)
        graph = freeze(a + b)
        assert len(graph) == 4
        assert unused.root not in graph.node_ids()
        with pytest.raises(PreconditionError):
            graph.set_input(unused.root, 1.0)
        with pytest.raises(PreconditionError):
            graph.evaluate([unused.root])

    def test_graph_starting_above_zero(self) -> None:
        """Slots are offset by the smallest id in the graph."""
        ids = IdAllocator(origin=50)
        a = GraphBuilder.input(ids)
        graph = freeze(a + 1.0)
        assert len(graph) == 3
        assert graph.slot(a.root) == 0
        graph.set_input(a.root, 4.0)
        assert graph.evaluate() == [5.0]

    def test_freeze_requires_fragment(self) -> None:
        """freeze() with nothing to freeze is a precondition error."""
        with pytest.raises(PreconditionError):
            freeze()

    def test_freeze_rejects_mixed_allocators(self) -> None:
        """All frozen fragments must share an allocator."""
        a = GraphBuilder.input(IdAllocator())
        b = GraphBuilder.input(IdAllocator())
        with pytest.raises(PreconditionError):
            freeze(a + 1.0, b + 1.0)


# =============================================================================
# Forward Evaluation
# =============================================================================

class TestForward:
    """Test forward evaluation."""

    def test_sum_times_scalar(self) -> None:
        """(a + b) * 2 with a=1, b=2 is 6."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        b = GraphBuilder.input(ids)
        graph = freeze((a + b) * 2)
        graph.set_input(a.root, 1.0)
        graph.set_input(b.root, 2.0)
        assert graph.evaluate() == [6.0]

    def test_power(self) -> None:
        """a ** 3 with a=2 is 8."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        graph = freeze(a ** 3)
        graph.set_input(a.root, 2.0)
        assert graph.evaluate() == [8.0]

    def test_relu(self) -> None:
        """relu clamps negatives to zero and passes positives."""
        ids = IdAllocator()
        x = GraphBuilder.input(ids)
        graph = freeze(x.relu())
        graph.set_input(x.root, -5.0)
        assert graph.evaluate() == [0.0]
        graph.set_input(x.root, 5.0)
        assert graph.evaluate() == [5.0]

    def test_subtraction_and_division(self) -> None:
        """Sub and Div evaluate left to right."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        b = GraphBuilder.input(ids)
        graph = freeze(a - b, a / b, 1.0 / b)
        graph.set_input(a.root, 6.0)
        graph.set_input(b.root, 2.0)
        assert graph.evaluate() == [4.0, 3.0, 0.5]

    def test_reused_sub_expressions(self) -> None:
        """Sub-expressions used several times evaluate consistently."""
        ids = IdAllocator()
        x1 = GraphBuilder.input(ids)
        x2 = GraphBuilder.input(ids)
        g1 = x1 + 1.0
        g2 = x2 + 2.0
        g3 = g1 + g2 + x1
        g4 = g1 * g2 * x2
        graph = freeze(g3 + g4)
        graph.set_input(x1.root, 1.5)
        graph.set_input(x2.root, 2.5)
        # g3 = 2.5 + 4.5 + 1.5, g4 = 2.5 * 4.5 * 2.5
        assert graph.evaluate() == [36.625]

    def test_mixed_expression(self) -> None:
        """A longer expression mixing every operator."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        b = GraphBuilder.input(ids)
        c = a + b
        d = a * b + b ** 3
        c = c + 1.0
        c = 1.0 + c + (-a)
        d = d * 2.0 + (b + a).relu()
        d = 3.0 * d + (b - a).relu()
        e = c - d
        f = e ** 2
        g = f / 2.0 + 10.0 / f
        graph = freeze(g)
        graph.set_input(a.root, -4.0)
        graph.set_input(b.root, 2.0)
        # c = 4, d = 6, e = -2, f = 4, g = 2 + 2.5
        assert graph.evaluate() == [4.5]

    def test_intermediate_values_are_stored(self) -> None:
        """Every operation node keeps its value after evaluate."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        s = a + 1.0
        out = s * 3.0
        graph = freeze(out)
        graph.set_input(a.root, 2.0)
        graph.evaluate()
        assert graph.value(s.root) == 3.0
        assert graph.value(out.root) == 9.0

    def test_requested_output_order(self) -> None:
        """Values come back in the order the ids were requested."""
        ids = IdAllocator()
        x = GraphBuilder.input(ids)
        o1 = x * 2.0
        o2 = x + 10.0
        graph = freeze(o1, o2)
        graph.set_input(x.root, 1.0)
        assert graph.evaluate([o2.root, o1.root]) == [11.0, 2.0]
        assert graph.evaluate() == [2.0, 11.0]

    def test_evaluation_is_repeatable(self) -> None:
        """Same inputs give the same outputs without weight updates."""
        expr = build_random_expression(3)
        graph = freeze(expr)
        for i, node_id in enumerate(graph.input_ids):
            graph.set_input(node_id, 0.1 * (i + 1))
        first = graph.evaluate()
        np.testing.assert_array_equal(graph.evaluate(), first)

    def test_inputs_default_to_zero(self) -> None:
        """Unset inputs read as 0.0."""
        ids = IdAllocator()
        x = GraphBuilder.input(ids)
        graph = freeze(x + 1.0)
        assert graph.evaluate() == [1.0]


class TestNumericEdgeCases:
    """Degenerate arithmetic yields IEEE values instead of raising."""

    def test_division_by_zero(self) -> None:
        """x / 0 is inf, 0 / 0 is NaN."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        b = GraphBuilder.input(ids)
        graph = freeze(a / b)
        graph.set_input(a.root, 1.0)
        assert graph.evaluate() == [math.inf]
        graph.set_input(a.root, 0.0)
        assert math.isnan(graph.evaluate()[0])

    def test_zero_to_negative_power(self) -> None:
        """0 ** -1 is inf."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        graph = freeze(a ** -1)
        assert graph.evaluate() == [math.inf]

    def test_negative_base_fractional_power(self) -> None:
        """(-8) ** 0.5 is NaN, not a complex number."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        graph = freeze(a ** 0.5)
        graph.set_input(a.root, -8.0)
        assert math.isnan(graph.evaluate()[0])

    def test_nan_propagates_through_relu(self) -> None:
        """relu(NaN) stays NaN."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        graph = freeze((a / a).relu())
        assert math.isnan(graph.evaluate()[0])

    def test_large_values(self) -> None:
        """Overflow gives inf."""
        ids = IdAllocator()
        a = GraphBuilder.input(ids)
        graph = freeze(a * a)
        graph.set_input(a.root, 1e200)
        assert graph.evaluate() == [math.inf]


# =============================================================================
# Preconditions
# =============================================================================

class TestPreconditions:
    """Test that contract violations raise PreconditionError."""

    def test_set_input_on_immediate(self) -> None:
        """Only Input nodes accept set_input."""
        ids = IdAllocator()
        x = GraphBuilder.input(ids)
        w = GraphBuilder.immediate(ids, 1.0)
        out = x * w
        graph = freeze(out)
        with pytest.raises(PreconditionError):
            graph.set_input(w.root, 2.0)
        with pytest.raises(PreconditionError):
            graph.set_input(out.root, 2.0)

    def test_out_of_range_id(self) -> None:
        """Ids outside the graph are rejected everywhere."""
        ids = IdAllocator()
        x = GraphBuilder.input(ids)
        graph = freeze(x + 1.0)
        with pytest.raises(PreconditionError):
            graph.set_input(99, 1.0)
        with pytest.raises(PreconditionError):
            graph.evaluate([99])
        with pytest.raises(PreconditionError):
            graph.backward([(99, 1.0)])
        with pytest.raises(PreconditionError):
            graph.value(-1)

    def test_non_integer_id(self) -> None:
        """Ids must be integers."""
        ids = IdAllocator()
        x = GraphBuilder.input(ids)
        graph = freeze(x + 1.0)
        with pytest.raises(PreconditionError):
            graph.value(0.5)

    def test_precondition_error_is_value_error(self) -> None:
        """Callers may catch PreconditionError as ValueError."""
        assert issubclass(PreconditionError, ValueError)


# =============================================================================
# Rendering
# =============================================================================

class TestDrawGraph:
    """Test graph rendering."""

    def _graph(self) -> ExecutableGraph:
        ids = IdAllocator()
        x = GraphBuilder.input(ids)
        y = GraphBuilder.input(ids)
        graph = freeze((x * y + x).relu())
        graph.set_input(x.root, 2.0)
        graph.set_input(y.root, 3.0)
        graph.evaluate()
        return graph

    def test_text_format(self) -> None:
        """Text output lists every node, root first."""
        text = draw_graph(self._graph())
        lines = text.splitlines()
        assert lines[0] == 'Computation Graph:'
        assert len(lines) == 2 + 6
        assert 'relu(' in lines[2]
        assert '*' in lines[2].split(':')[0]

    def test_dot_format(self) -> None:
        """DOT output is a digraph with one op node per operation."""
        dot = draw_graph(self._graph(), format='dot')
        assert dot.startswith('digraph G {')
        assert dot.endswith('}')
        assert dot.count('shape=circle') == 3

    def test_unknown_format(self) -> None:
        """Unknown formats raise ValueError."""
        with pytest.raises(ValueError):
            draw_graph(self._graph(), format='svg')


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
