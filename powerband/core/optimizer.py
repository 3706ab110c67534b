"""
Adam-style full-batch optimizer shared by both quantile fitters.

Every parameter keeps its own first/second moment accumulators; steps are
bias-corrected and strictly sequential.
"""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np


class AdamOptimizer:
    def __init__(
        self,
        n_params: int,
        learning_rate: float = 0.02,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-9,
    ) -> None:
        self.learning_rate = float(learning_rate)
        self.beta1 = float(beta1)
        self.beta2 = float(beta2)
        self.epsilon = float(epsilon)
        self.m = np.zeros(n_params, dtype=float)
        self.v = np.zeros(n_params, dtype=float)
        self.t = 0

    def step(self, params: np.ndarray, grad: np.ndarray) -> np.ndarray:
        """Return updated parameters for one gradient evaluation."""
        self.t += 1
        self.m = self.beta1 * self.m + (1.0 - self.beta1) * grad
        self.v = self.beta2 * self.v + (1.0 - self.beta2) * grad * grad
        m_hat = self.m / (1.0 - self.beta1**self.t)
        v_hat = self.v / (1.0 - self.beta2**self.t)
        return params - self.learning_rate * (m_hat / (np.sqrt(v_hat) + self.epsilon))


def run_adam(
    params: np.ndarray,
    grad_fn: Callable[[np.ndarray], np.ndarray],
    iterations: int,
    learning_rate: float = 0.02,
    beta1: float = 0.9,
    beta2: float = 0.999,
    epsilon: float = 1e-9,
    project: Optional[Callable[[np.ndarray], np.ndarray]] = None,
) -> np.ndarray:
    """
    Run ``iterations`` Adam steps from ``params``.

    Args:
        params: Initial parameter vector (not modified).
        grad_fn: Mean gradient of the loss at the given parameters.
        iterations: Number of full-batch steps.
        project: Optional hook applied after every step (e.g. clamping).

    Returns:
        Final parameter vector.
    """
    opt = AdamOptimizer(params.size, learning_rate=learning_rate, beta1=beta1, beta2=beta2, epsilon=epsilon)
    current = np.array(params, dtype=float)
    for _ in range(int(iterations)):
        current = opt.step(current, grad_fn(current))
        if project is not None:
            current = project(current)
    return current


__all__ = ["AdamOptimizer", "run_adam"]
