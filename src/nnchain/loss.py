import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


class Loss(ABC):

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = name or self.__class__.__name__

    @abstractmethod
    def forward(self, y: np.ndarray, t: np.ndarray) -> float:
        pass

    @abstractmethod
    def backward(self, y: np.ndarray, t: np.ndarray) -> np.ndarray:
        pass

    @abstractmethod
    def backward_2nd(self, y: np.ndarray) -> np.ndarray:
        pass

    @staticmethod
    def _check_shapes(y: np.ndarray, t: np.ndarray) -> None:
        if y.shape != t.shape:
            raise ValueError(
                f"Shape mismatch between outputs ({y.shape}) and targets "
                f"({t.shape}).")


class MeanSquaredError(Loss):
    """Half the summed squared error of a single sample."""

    def __init__(self, name: Optional[str] = None) -> None:
        super().__init__(name)
        logger.info("%s initialized.", self.name)

    def forward(self, y: np.ndarray, t: np.ndarray) -> float:
        self._check_shapes(y, t)

        loss = 0.5 * float(np.sum((y - t)**2))

        logger.debug("%s forward pass: shape=%s, loss=%.6f", self.name,
                     y.shape, loss)

        return loss

    def backward(self, y: np.ndarray, t: np.ndarray) -> np.ndarray:
        self._check_shapes(y, t)

        return y - t

    def backward_2nd(self, y: np.ndarray) -> np.ndarray:
        return np.ones_like(y)
