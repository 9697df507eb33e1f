"""
Optimizers
==========

Rules that turn accumulated gradients into parameter updates.

An optimiser receives a Data block (one entry per trainable node, in a
fixed order) from ExecutableGraph.update_weights() and updates ``value``
in place. It never touches ``gradient``; resetting gradients is the job
of ExecutableGraph.zero_grads().
"""

from __future__ import annotations
import logging

import numpy as np

from .errors import PreconditionError
from .node import Data

logger = logging.getLogger(__name__)


class Optimiser:
    """Base class for update rules."""

    def optimise(self, data: Data) -> None:
        """Update ``data.value`` from ``data.gradient``."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class SGD(Optimiser):
    """
    Plain gradient descent.

    Updates parameters: p = p - lr * grad

    Attributes:
        lr: Learning rate.
    """

    def __init__(self, lr: float = 0.01) -> None:
        self.lr = lr

    def optimise(self, data: Data) -> None:
        data.value -= self.lr * data.gradient

    def __repr__(self) -> str:
        return f"SGD(lr={self.lr})"


class Adam(Optimiser):
    """
    Adam optimizer: Adaptive Moment Estimation.

    Keeps one first-moment and one second-moment accumulator per
    parameter, indexed by position in the Data block, so the block must
    have the same size and order on every call.

    Update rules, with t counting calls to optimise():
        m = beta1 * m + (1 - beta1) * grad
        v = beta2 * v + (1 - beta2) * grad^2
        lr_t = lr * sqrt(1 - beta2^t) / (1 - beta1^t)
        p = p - lr_t * m / (sqrt(v) + eps)

    Attributes:
        lr: Learning rate.
        beta1: Exponential decay rate for first moment.
        beta2: Exponential decay rate for second moment.
        eps: Small constant for numerical stability.
        m: First moment estimates.
        v: Second moment estimates.
        t: Number of steps taken.

    Example:
        >>> adam = Adam(graph.num_parameters())
        >>> graph.update_weights(adam)
    """

    def __init__(
        self,
        num_params: int,
        lr: float = 0.001,
        beta1: float = 0.9,
        beta2: float = 0.999,
        eps: float = 1e-8
    ) -> None:
        """
        Initialize Adam optimizer.

        Args:
            num_params: Number of parameters it will update, usually
                ExecutableGraph.num_parameters().
            lr: Learning rate.
            beta1: First moment decay (default 0.9).
            beta2: Second moment decay (default 0.999).
            eps: Numerical stability constant.
        """
        if num_params < 0:
            raise ValueError(f"num_params must be non-negative, got {num_params}")
        self.lr = lr
        self.beta1 = beta1
        self.beta2 = beta2
        self.eps = eps

        self.m = np.zeros(num_params, dtype=np.float64)
        self.v = np.zeros(num_params, dtype=np.float64)
        self.t = 0
        logger.debug("Adam state allocated for %d parameters", num_params)

    def optimise(self, data: Data) -> None:
        """
        Perform one Adam step.

        Raises:
            PreconditionError: If the block size differs from num_params.
        """
        if len(data) != len(self.m):
            raise PreconditionError(
                f"Adam was sized for {len(self.m)} parameters, got {len(data)}"
            )
        self.t += 1
        g = data.gradient

        self.m *= self.beta1
        self.m += (1 - self.beta1) * g
        self.v *= self.beta2
        self.v += (1 - self.beta2) * g ** 2

        lr_t = self.lr * np.sqrt(1 - self.beta2 ** self.t) / (1 - self.beta1 ** self.t)
        data.value -= lr_t * self.m / (np.sqrt(self.v) + self.eps)

    def __repr__(self) -> str:
        return f"Adam(params={len(self.m)}, lr={self.lr}, t={self.t})"
