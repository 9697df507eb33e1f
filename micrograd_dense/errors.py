"""Exceptions raised by the graph engine."""


class GraphError(Exception):
    """Base class for errors raised deliberately by micrograd_dense."""


class PreconditionError(GraphError, ValueError):
    """
    The caller broke an API contract.

    Raised for wrong node kinds, unknown node ids, fragments built from
    different allocators, input-length mismatches and optimiser state that
    does not match the parameter count. These are programming errors and
    are not meant to be retried.
    """


class UnsupportedBackwardError(GraphError, NotImplementedError):
    """
    The reverse sweep reached an operation with no gradient rule.

    Only Add, Mul and Relu are differentiated. Losses that need Sub, Div
    or Pow must be computed outside the graph and their gradient supplied
    as the seed of backward().
    """

    def __init__(self, op, node_id: int) -> None:
        super().__init__(
            f"No backward rule for {op.name} (node {node_id}); "
            f"compute this part outside the graph and seed its gradient"
        )
        self.op = op
        self.node_id = node_id
