import logging
import weakref
from abc import ABC, abstractmethod
from typing import Dict, Optional

import numpy as np

logger = logging.getLogger(__name__)


class Updater(ABC):
    """Turns a parameter gradient into an in-place parameter update.

    Layers call ``update`` once per parameter buffer during backpropagation,
    passing the gradient, the matching Hessian-diagonal accumulator and the
    buffer itself. Any state the algorithm needs is kept here, never in the
    layer.
    """

    requires_hessian = False

    def __init__(self, alpha: float, name: Optional[str] = None) -> None:
        if alpha <= 0:
            raise ValueError("Learning rate must be positive.")

        self.alpha = alpha
        self.name = name or self.__class__.__name__

    def update(self, dW: np.ndarray, hessian: np.ndarray,
               W: np.ndarray) -> None:
        if dW.shape != W.shape:
            raise ValueError(
                f"Shape mismatch between parameter ({W.shape}) and its "
                f"gradient ({dW.shape}).")

        if W.size == 0:
            return

        self._apply(dW, hessian, W)

        logger.debug("%s updated parameter buffer of shape %s.", self.name,
                     W.shape)

    @abstractmethod
    def _apply(self, dW: np.ndarray, hessian: np.ndarray,
               W: np.ndarray) -> None:
        pass


class GradientDescent(Updater):

    def __init__(self,
                 alpha: float = 0.01,
                 lambda_: float = 0.0,
                 name: Optional[str] = None) -> None:
        super().__init__(alpha, name)

        if lambda_ < 0.0:
            raise ValueError("Weight decay must be non-negative.")

        self.lambda_ = lambda_

        logger.info("%s initialized with alpha=%.0e, lambda=%.0e.", self.name,
                    self.alpha, self.lambda_)

    def _apply(self, dW: np.ndarray, hessian: np.ndarray,
               W: np.ndarray) -> None:
        W -= self.alpha * (dW + self.lambda_ * W)


class GradientDescentLevenbergMarquardt(Updater):
    """Per-parameter learning rates scaled by the Hessian diagonal.

    Each weight moves by ``alpha / (h + mu)`` times its gradient, where ``h``
    is the averaged second derivative estimated by a separate curvature pass.
    """

    requires_hessian = True

    def __init__(self,
                 alpha: float = 0.00085,
                 mu: float = 0.02,
                 name: Optional[str] = None) -> None:
        super().__init__(alpha, name)

        if mu <= 0.0:
            raise ValueError("Damping term mu must be positive.")

        self.mu = mu

        logger.info("%s initialized with alpha=%.0e, mu=%.3f.", self.name,
                    self.alpha, self.mu)

    def _apply(self, dW: np.ndarray, hessian: np.ndarray,
               W: np.ndarray) -> None:
        if hessian.shape != W.shape:
            raise ValueError(
                f"Shape mismatch between parameter ({W.shape}) and its "
                f"Hessian diagonal ({hessian.shape}).")

        W -= self.alpha / (hessian + self.mu) * dW


class Momentum(Updater):

    def __init__(self,
                 alpha: float = 0.01,
                 lambda_: float = 0.0,
                 mu: float = 0.9,
                 name: Optional[str] = None) -> None:
        super().__init__(alpha, name)

        if not 0.0 <= mu < 1.0:
            raise ValueError("Momentum mu must be in [0, 1).")

        if lambda_ < 0.0:
            raise ValueError("Weight decay must be non-negative.")

        self.lambda_ = lambda_
        self.mu = mu

        self.velocity: Dict[int, np.ndarray] = {}

        logger.info("%s initialized with alpha=%.0e, lambda=%.0e, mu=%.3f.",
                    self.name, self.alpha, self.lambda_, self.mu)

    def _apply(self, dW: np.ndarray, hessian: np.ndarray,
               W: np.ndarray) -> None:
        key = id(W)
        if key not in self.velocity:
            self.velocity[key] = np.zeros_like(W)
            # ids are reused once a buffer is freed
            weakref.finalize(W, self.velocity.pop, key, None)
            logger.debug("%s initialized velocity for buffer of shape %s.",
                         self.name, W.shape)

        v = self.velocity[key]
        v *= self.mu
        v -= self.alpha * (dW + self.lambda_ * W)
        W += v
