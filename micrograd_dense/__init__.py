"""micrograd-dense: a reverse-mode autodiff engine over a dense, id-ordered scalar graph."""

from .errors import GraphError, PreconditionError, UnsupportedBackwardError
from .ids import IdAllocator, NodeId
from .node import Op, Input, Immediate, Operation, Data
from .builder import GraphBuilder
from .graph import ExecutableGraph, freeze, draw_graph
from .optim import Optimiser, SGD, Adam
from .losses import mse_loss, hinge_loss, cross_entropy
from .nn import Module, Neuron, Layer, MLP
from .training import TrainingConfig, fit, accuracy

__all__ = [
    "GraphError",
    "PreconditionError",
    "UnsupportedBackwardError",
    "IdAllocator",
    "NodeId",
    "Op",
    "Input",
    "Immediate",
    "Operation",
    "Data",
    "GraphBuilder",
    "ExecutableGraph",
    "freeze",
    "draw_graph",
    "Optimiser",
    "SGD",
    "Adam",
    "mse_loss",
    "hinge_loss",
    "cross_entropy",
    "Module",
    "Neuron",
    "Layer",
    "MLP",
    "TrainingConfig",
    "fit",
    "accuracy",
]
