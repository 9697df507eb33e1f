"""Training loop and its configuration."""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

from .errors import PreconditionError
from .losses import mse_loss
from .nn import MLP
from .optim import SGD, Adam, Optimiser

logger = logging.getLogger(__name__)

LossFn = Callable[[np.ndarray, Any], Tuple[float, np.ndarray]]

OPTIMISERS = ('sgd', 'adam')


@dataclass(frozen=True)
class TrainingConfig:
    """Immutable training configuration.

    Args:
        epochs: Number of passes over the data
        learning_rate: Step size handed to the optimiser
        optimiser: 'sgd' or 'adam'
        seed: Seed for the per-epoch shuffle
        log_every: Log the mean loss every N epochs (None = never)
    """
    epochs: int
    learning_rate: float = 0.01
    optimiser: str = 'sgd'
    seed: int = 42
    log_every: Optional[int] = None

    def __post_init__(self) -> None:
        if self.epochs < 1:
            raise ValueError(f"epochs must be positive, got {self.epochs}")
        if self.learning_rate <= 0:
            raise ValueError(f"learning_rate must be positive, got {self.learning_rate}")
        if self.optimiser not in OPTIMISERS:
            raise ValueError(
                f"Unsupported optimiser {self.optimiser!r}, expected one of {OPTIMISERS}"
            )
        if self.log_every is not None and self.log_every < 1:
            raise ValueError(f"log_every must be positive, got {self.log_every}")


def make_optimiser(config: TrainingConfig, num_params: int) -> Optimiser:
    if config.optimiser == 'adam':
        return Adam(num_params, lr=config.learning_rate)
    return SGD(lr=config.learning_rate)


def fit(
    model: MLP,
    X: Sequence[Sequence[float]],
    Y: Sequence[Any],
    config: TrainingConfig,
    loss_fn: LossFn = mse_loss
) -> List[float]:
    """
    Train ``model`` one example at a time.

    Every example runs forward, computes the loss outside the graph,
    zeroes gradients, backpropagates the loss gradient and applies one
    optimiser step. Examples are shuffled each epoch.

    Args:
        model: Network to train in place.
        X: Feature vectors.
        Y: One target per example, in whatever form ``loss_fn`` expects
            (target vector for mse_loss, class index for cross_entropy).
        config: Training configuration.
        loss_fn: Callable returning (loss, gradient per output).

    Returns:
        Mean loss of each epoch.
    """
    if len(X) != len(Y):
        raise PreconditionError(f"Got {len(X)} examples but {len(Y)} targets")
    if len(X) == 0:
        raise PreconditionError("Cannot train on an empty dataset")

    optimiser = make_optimiser(config, model.num_parameters())
    rng = np.random.default_rng(config.seed)
    history: List[float] = []

    for epoch in range(config.epochs):
        total = 0.0
        for i in rng.permutation(len(X)):
            preds = model.forward(X[i])
            loss, grads = loss_fn(preds, Y[i])

            model.zero_grads()
            model.backward(grads)
            model.update_weights(optimiser)
            total += loss

        mean_loss = total / len(X)
        history.append(mean_loss)

        if not np.isfinite(mean_loss):
            logger.warning("Epoch %d produced a non-finite loss: %s", epoch + 1, mean_loss)
        if config.log_every and (epoch + 1) % config.log_every == 0:
            logger.info("Epoch %4d | Loss: %.4f", epoch + 1, mean_loss)

    return history


def accuracy(model: MLP, X: Sequence[Sequence[float]], labels: Sequence[int]) -> float:
    """Fraction of examples whose largest output is at the label's index."""
    if len(X) != len(labels):
        raise PreconditionError(f"Got {len(X)} examples but {len(labels)} labels")
    correct = sum(
        int(np.argmax(model.forward(x)) == label)
        for x, label in zip(X, labels)
    )
    return correct / len(labels)
