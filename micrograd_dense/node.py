"""
Node Model
==========

The three kinds of graph vertex and the per-node run-time state.

- Input: a scalar supplied by the caller before each evaluation.
- Immediate: a scalar fixed at construction. Trainable weights and biases
  are immediates whose stored value the optimiser updates.
- Operation: a binary operator over two earlier nodes. Relu is binary too;
  its right operand is a zero immediate that is never read.

Nodes are immutable. Run-time values and gradients live in a separate
Data block owned by the executable graph.
"""

from __future__ import annotations
import enum
from dataclasses import dataclass
from typing import Union

import numpy as np

from .ids import NodeId


class Op(enum.Enum):
    """Binary operators an Operation node can apply."""

    ADD = '+'
    SUB = '-'
    MUL = '*'
    DIV = '/'
    POW = '**'
    RELU = 'relu'


@dataclass(frozen=True)
class Input:
    id: NodeId


@dataclass(frozen=True)
class Immediate:
    id: NodeId
    value: float


@dataclass(frozen=True)
class Operation:
    """
    Applies ``op`` to the nodes ``left`` and ``right``.

    Both operand ids are strictly smaller than ``id``.
    """

    id: NodeId
    op: Op
    left: NodeId
    right: NodeId

    def __post_init__(self) -> None:
        if not (self.left < self.id and self.right < self.id):
            raise ValueError(
                f"Operation {self.id} must come after its operands "
                f"({self.left}, {self.right})"
            )


Node = Union[Input, Immediate, Operation]


class Data:
    """
    Values and gradients for a block of node slots.

    Stored column-wise: ``value[i]`` and ``gradient[i]`` belong to slot i.
    Optimisers receive a Data block and update ``value`` in place.

    Attributes:
        value: float64 array of node values.
        gradient: float64 array of accumulated gradients.
    """

    __slots__ = ('value', 'gradient')

    def __init__(self, value: np.ndarray, gradient: np.ndarray) -> None:
        if value.shape != gradient.shape:
            raise ValueError(
                f"value and gradient must have the same shape, "
                f"got {value.shape} and {gradient.shape}"
            )
        self.value = value
        self.gradient = gradient

    @classmethod
    def zeros(cls, size: int) -> Data:
        return cls(np.zeros(size, dtype=np.float64), np.zeros(size, dtype=np.float64))

    def __len__(self) -> int:
        return len(self.value)

    def __repr__(self) -> str:
        return f"Data(size={len(self)})"
