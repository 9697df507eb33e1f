"""
Loss Functions
==============

Closed-form losses computed outside the graph.

The graph only differentiates Add, Mul and Relu, so losses are evaluated
here with NumPy and return their gradient with respect to each network
output. That gradient is what gets passed to backward() as the seeds.

Every function returns ``(loss, grads)`` where ``grads[i]`` is
d(loss)/d(predictions[i]).
"""

from __future__ import annotations
from typing import Sequence, Tuple

import numpy as np

from .errors import PreconditionError


def _as_pair(predictions: Sequence[float], targets: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    p = np.asarray(predictions, dtype=np.float64)
    t = np.asarray(targets, dtype=np.float64)
    if p.shape != t.shape:
        raise PreconditionError(
            f"Expected {len(p)} targets, got {len(t)}"
        )
    return p, t


def mse_loss(predictions: Sequence[float], targets: Sequence[float]) -> Tuple[float, np.ndarray]:
    """
    Mean Squared Error loss.

    MSE = (1/n) * sum((pred_i - target_i)^2)

    Args:
        predictions: Network outputs.
        targets: Ground truth values.

    Returns:
        Loss and its gradient 2 * (pred - target) / n.
    """
    p, t = _as_pair(predictions, targets)
    diff = p - t
    n = len(diff)
    return float(np.mean(diff ** 2)), 2.0 * diff / n


def hinge_loss(predictions: Sequence[float], targets: Sequence[float]) -> Tuple[float, np.ndarray]:
    """
    Hinge loss for SVM-style classification.

    Hinge = (1/n) * sum(max(0, 1 - y * pred))

    Targets should be -1 or +1.
    """
    p, t = _as_pair(predictions, targets)
    margin = 1.0 - t * p
    n = len(p)
    grads = np.where(margin > 0, -t / n, 0.0)
    return float(np.mean(np.maximum(margin, 0.0))), grads


def cross_entropy(logits: Sequence[float], label: int) -> Tuple[float, np.ndarray]:
    """
    Softmax followed by negative log-likelihood of ``label``.

    Uses the max-shifted log-sum-exp so large logits do not overflow.

    Args:
        logits: One raw network output per class.
        label: Index of the correct class.

    Returns:
        Loss and its gradient softmax(logits) - onehot(label).

    Raises:
        PreconditionError: If label is not a valid class index.
    """
    z = np.asarray(logits, dtype=np.float64)
    if not 0 <= label < len(z):
        raise PreconditionError(f"Label {label} out of range for {len(z)} classes")
    shifted = z - np.max(z)
    log_sum = np.log(np.sum(np.exp(shifted)))
    probs = np.exp(shifted - log_sum)

    grads = probs.copy()
    grads[label] -= 1.0
    return float(log_sum - shifted[label]), grads
