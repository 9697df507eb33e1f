#!/usr/bin/env python3
"""
micrograd-dense Demo: Training a Network on a Dense Graph
=========================================================

This demo shows the complete workflow:
1. Build an expression from fragments and differentiate it
2. Print the frozen graph
3. Train an MLP on the moons dataset and plot the results

Run: python examples/demo.py
"""

import logging
from typing import List, Tuple

import matplotlib.pyplot as plt
import numpy as np

from micrograd_dense import (
    MLP,
    GraphBuilder,
    IdAllocator,
    TrainingConfig,
    draw_graph,
    fit,
    freeze,
    hinge_loss,
)


def make_moons(
    n_samples: int = 100,
    noise: float = 0.1,
    seed: int = 42
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate two interleaved half-circles that are not linearly separable.

    Returns:
        X: Features array of shape (n_samples, 2)
        y: Labels array of shape (n_samples,) with values -1 or 1
    """
    rng = np.random.default_rng(seed)
    n_each = n_samples // 2

    theta = np.linspace(0, np.pi, n_each)
    top = np.column_stack([np.cos(theta), np.sin(theta)])
    bottom = np.column_stack([1 - np.cos(theta), 0.5 - np.sin(theta)])

    X = np.vstack([top, bottom])
    X += rng.normal(size=X.shape) * noise
    y = np.array([1.0] * n_each + [-1.0] * n_each)
    return X, y


def sign_accuracy(model: MLP, X: np.ndarray, y: np.ndarray) -> float:
    preds = np.array([model.forward(xi)[0] for xi in X])
    return float(np.mean(np.where(preds > 0, 1.0, -1.0) == y))


def plot_decision_boundary(model: MLP, X: np.ndarray, y: np.ndarray, title: str) -> None:
    h = 0.05
    x_min, x_max = X[:, 0].min() - 0.5, X[:, 0].max() + 0.5
    y_min, y_max = X[:, 1].min() - 0.5, X[:, 1].max() + 0.5
    xx, yy = np.meshgrid(np.arange(x_min, x_max, h), np.arange(y_min, y_max, h))

    Z = np.array([
        model.forward([x1, x2])[0] for x1, x2 in zip(xx.ravel(), yy.ravel())
    ]).reshape(xx.shape)

    plt.figure(figsize=(10, 8))
    plt.contourf(xx, yy, Z, levels=50, cmap='RdBu', alpha=0.8)
    plt.colorbar(label='Model output')
    plt.contour(xx, yy, Z, levels=[0], colors='black', linewidths=2)
    plt.scatter(X[:, 0], X[:, 1], c=y, cmap='RdBu', edgecolors='black', s=50)
    plt.xlabel('x1')
    plt.ylabel('x2')
    plt.title(title)
    plt.tight_layout()
    plt.savefig('./decision_boundary.png', dpi=150)
    plt.close()
    print("Saved decision boundary plot to: decision_boundary.png")


def plot_loss_curve(losses: List[float]) -> None:
    plt.figure(figsize=(10, 6))
    plt.plot(losses, 'b-', linewidth=2)
    plt.xlabel('Epoch')
    plt.ylabel('Loss')
    plt.title('Training Loss Curve')
    plt.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig('./loss_curve.png', dpi=150)
    plt.close()
    print("Saved loss curve to: loss_curve.png")


def demo_gradient_computation():
    """f(x) = x*x + 2x + 1 at x = 3."""
    print("=" * 60)
    print("DEMO 1: Gradient Computation")
    print("=" * 60)
    print()

    ids = IdAllocator()
    x = GraphBuilder.input(ids)
    f = x * x + 2 * x + 1
    graph = freeze(f)
    graph.set_input(x.root, 3.0)

    [value] = graph.evaluate()
    graph.backward([(f.root, 1.0)])

    print(f"f(3) = {value}")
    print(f"df/dx at x=3 = {graph.gradient(x.root)}")
    print("(Analytical: df/dx = 2x + 2 = 8)")
    print()


def demo_graph_visualization():
    """relu(x*y + x) at x=2, y=3."""
    print("=" * 60)
    print("DEMO 2: Computation Graph")
    print("=" * 60)
    print()

    ids = IdAllocator()
    x = GraphBuilder.input(ids)
    y = GraphBuilder.input(ids)
    out = (x * y + x).relu()
    graph = freeze(out)
    graph.set_input(x.root, 2.0)
    graph.set_input(y.root, 3.0)
    graph.evaluate()
    graph.backward([(out.root, 1.0)])

    print(f"d(out)/dx = {graph.gradient(x.root):.1f}  (y + 1)")
    print(f"d(out)/dy = {graph.gradient(y.root):.1f}  (x)")
    print()
    print(draw_graph(graph, format='text'))
    print()


def demo_neural_network():
    print("=" * 60)
    print("DEMO 3: Training a Neural Network")
    print("=" * 60)
    print()

    X, y = make_moons(n_samples=100, noise=0.15)
    model = MLP(2, [16, 16, 1], seed=0)
    print(f"{model}: {len(model.parameters())} weights and biases, "
          f"{len(model.graph)} graph slots")

    config = TrainingConfig(epochs=50, learning_rate=0.01, optimiser='adam', log_every=10)
    losses = fit(model, X, [[yi] for yi in y], config, loss_fn=hinge_loss)

    final_acc = sign_accuracy(model, X, y)
    print(f"Final training accuracy: {final_acc:.2%}")
    print()

    plot_decision_boundary(model, X, y, f"Decision Boundary (Accuracy: {final_acc:.1%})")
    plot_loss_curve(losses)
    print()


def main():
    logging.basicConfig(level=logging.INFO, format='%(name)s: %(message)s')

    demo_gradient_computation()
    demo_graph_visualization()
    demo_neural_network()


if __name__ == "__main__":
    main()
