"""
Neural Network Module
=====================

Multi-layer perceptrons assembled from graph fragments.

Each neuron is built once as an expression over the network's input
fragments, and the whole network is frozen into a single ExecutableGraph
whose outputs are the last layer's neurons. Training a step then means:

    preds = model.forward(x)
    loss, grads = mse_loss(preds, y)
    model.zero_grads()
    model.backward(grads)
    model.update_weights(optimiser)

Only ReLU is available as a nonlinearity, since it is the only
activation the graph can differentiate.
"""

from __future__ import annotations
import logging
from typing import List, Optional, Sequence

import numpy as np

from .builder import GraphBuilder
from .errors import PreconditionError
from .graph import ExecutableGraph, freeze
from .ids import IdAllocator, NodeId
from .optim import Optimiser

logger = logging.getLogger(__name__)


class Module:
    """
    Base class for network components.

    parameters() returns the ids of the weight and bias nodes the module
    owns.
    """

    def parameters(self) -> List[NodeId]:
        return []

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class Neuron(Module):
    """
    A single artificial neuron.

    Computes: output = relu(sum(w_i * x_i) + b), or the linear sum when
    ``nonlin`` is False.

    Attributes:
        w: Weight fragments, one per input.
        b: Bias fragment.
        out: Fragment for the neuron's output.
        nonlin: Whether ReLU is applied.
    """

    def __init__(
        self,
        inputs: Sequence[GraphBuilder],
        nonlin: bool = True,
        rng: Optional[np.random.Generator] = None
    ) -> None:
        """
        Build a neuron over ``inputs``.

        Args:
            inputs: Fragments feeding this neuron. They must share an allocator.
            nonlin: Whether to apply ReLU.
            rng: Random generator for weight initialisation.
        """
        if not inputs:
            raise ValueError("A neuron needs at least one input")
        rng = rng if rng is not None else np.random.default_rng()
        allocator = inputs[0].allocator

        # He initialisation
        scale = (2.0 / len(inputs)) ** 0.5
        self.w: List[GraphBuilder] = [
            GraphBuilder.immediate(allocator, rng.uniform(-1, 1) * scale)
            for _ in inputs
        ]
        self.b: GraphBuilder = GraphBuilder.immediate(allocator, 0.0)
        self.nonlin: bool = nonlin

        act = sum((wi * xi for wi, xi in zip(self.w, inputs)), start=self.b)
        self.out: GraphBuilder = act.relu() if nonlin else act

    def parameters(self) -> List[NodeId]:
        """Return weight ids then the bias id."""
        return [w.root for w in self.w] + [self.b.root]

    def __repr__(self) -> str:
        act = 'ReLU' if self.nonlin else 'Linear'
        return f"Neuron({len(self.w)}, {act})"


class Layer(Module):
    """
    A fully connected layer of neurons that all read the same inputs.

    Attributes:
        neurons: List of Neuron objects.
        outputs: One output fragment per neuron.
    """

    def __init__(
        self,
        inputs: Sequence[GraphBuilder],
        nout: int,
        nonlin: bool = True,
        rng: Optional[np.random.Generator] = None
    ) -> None:
        self.neurons: List[Neuron] = [
            Neuron(inputs, nonlin=nonlin, rng=rng)
            for _ in range(nout)
        ]

    @property
    def outputs(self) -> List[GraphBuilder]:
        return [n.out for n in self.neurons]

    def parameters(self) -> List[NodeId]:
        return [p for n in self.neurons for p in n.parameters()]

    def __repr__(self) -> str:
        return f"Layer({len(self.neurons[0].w)} -> {len(self.neurons)})"


class MLP(Module):
    """
    Multi-Layer Perceptron frozen into one executable graph.

    Hidden layers use ReLU; the output layer is linear so that losses
    such as softmax cross-entropy can be applied to raw outputs.

    Attributes:
        layers: List of Layer objects.
        input_ids: Input node ids, in feature order.
        output_ids: Output node ids, in output order.
        graph: The executable graph holding values and gradients.

    Example:
        >>> # 3 inputs -> 4 hidden -> 4 hidden -> 2 outputs
        >>> model = MLP(3, [4, 4, 2], seed=0)
        >>> preds = model.forward([1.0, 2.0, 3.0])
    """

    def __init__(
        self,
        nin: int,
        nouts: Sequence[int],
        seed: Optional[int] = None
    ) -> None:
        """
        Initialize an MLP.

        Args:
            nin: Number of input features.
            nouts: Layer sizes. The last element is the output size.
            seed: Seed for weight initialisation.
        """
        if nin < 1 or not nouts or min(nouts) < 1:
            raise ValueError(f"Invalid MLP sizes: nin={nin}, nouts={list(nouts)}")

        rng = np.random.default_rng(seed)
        allocator = IdAllocator()

        inputs = [GraphBuilder.input(allocator) for _ in range(nin)]
        self.input_ids: List[NodeId] = [x.root for x in inputs]

        x = inputs
        self.layers: List[Layer] = []
        for i, nout in enumerate(nouts):
            # Last layer is linear (no activation)
            is_output = (i == len(nouts) - 1)
            layer = Layer(x, nout, nonlin=not is_output, rng=rng)
            self.layers.append(layer)
            x = layer.outputs

        self.graph: ExecutableGraph = freeze(*x)
        self.output_ids: List[NodeId] = list(self.graph.outputs)
        logger.debug("Built %r with %d graph slots", self, len(self.graph))

    def forward(self, x: Sequence[float]) -> np.ndarray:
        """
        Evaluate the network on one feature vector.

        Raises:
            PreconditionError: If len(x) differs from the input count.
        """
        if len(x) != len(self.input_ids):
            raise PreconditionError(
                f"Expected {len(self.input_ids)} inputs, got {len(x)}"
            )
        for node_id, value in zip(self.input_ids, x):
            self.graph.set_input(node_id, value)
        return np.array(self.graph.evaluate(self.output_ids))

    __call__ = forward

    def backward(self, out_grads: Sequence[float]) -> None:
        """
        Seed one upstream gradient per output and backpropagate.

        Raises:
            PreconditionError: If len(out_grads) differs from the output count.
        """
        if len(out_grads) != len(self.output_ids):
            raise PreconditionError(
                f"Expected {len(self.output_ids)} output gradients, got {len(out_grads)}"
            )
        self.graph.backward(zip(self.output_ids, out_grads))

    def zero_grads(self) -> None:
        self.graph.zero_grads()

    def update_weights(self, optimiser: Optimiser) -> None:
        self.graph.update_weights(optimiser)

    def num_parameters(self) -> int:
        """
        Size of the optimiser state this network needs.

        Counts every immediate in the graph, including the zero constants
        behind each ReLU, so it is larger than len(parameters()).
        """
        return self.graph.num_parameters()

    def parameters(self) -> List[NodeId]:
        """Return all weight and bias ids from all layers."""
        return [p for layer in self.layers for p in layer.parameters()]

    def __repr__(self) -> str:
        layer_strs = [str(layer) for layer in self.layers]
        return f"MLP([{', '.join(layer_strs)}])"
