import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


class Activation(ABC):
    """Element-wise activation function.

    Derivatives are expressed in terms of the activation's output ``y``, so
    layers only need to keep their cached output around for backpropagation.
    """

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = name or self.__class__.__name__

    @abstractmethod
    def forward(self, z: np.ndarray) -> np.ndarray:
        pass

    @abstractmethod
    def derivative(self, y: np.ndarray) -> np.ndarray:
        pass

    def backward(self, dL_dy: np.ndarray, y: np.ndarray) -> np.ndarray:
        if dL_dy.shape != y.shape:
            raise ValueError(
                f"Shape mismatch between output gradients ({dL_dy.shape}) and "
                f"output ({y.shape}). They must be identical.")

        dL_dz = dL_dy * self.derivative(y)

        logger.debug(
            "%s backward pass: dL_dy_shape=%s, y_shape=%s, "
            "dL_dz_shape=%s.", self.name, dL_dy.shape, y.shape, dL_dz.shape)

        return dL_dz


class Identity(Activation):

    def forward(self, z: np.ndarray) -> np.ndarray:
        return z

    def derivative(self, y: np.ndarray) -> np.ndarray:
        return np.ones_like(y)


class Tanh(Activation):

    def __init__(self, name: Optional[str] = None) -> None:
        super().__init__(name)
        logger.info("%s activation function initialized.", self.name)

    def forward(self, z: np.ndarray) -> np.ndarray:
        y = np.tanh(z)

        logger.debug("%s forward pass: input_shape=%s, output_shape=%s.",
                     self.name, z.shape, y.shape)

        return y

    def derivative(self, y: np.ndarray) -> np.ndarray:
        return 1 - y**2


class Sigmoid(Activation):

    def __init__(self, name: Optional[str] = None) -> None:
        super().__init__(name)
        logger.info("%s activation function initialized.", self.name)

    def forward(self, z: np.ndarray) -> np.ndarray:
        y = 1.0 / (1.0 + np.exp(-z))

        logger.debug("%s forward pass: input_shape=%s, output_shape=%s.",
                     self.name, z.shape, y.shape)

        return y

    def derivative(self, y: np.ndarray) -> np.ndarray:
        return y * (1 - y)


class ReLU(Activation):

    def __init__(self, name: Optional[str] = None) -> None:
        super().__init__(name)
        logger.info("%s activation function initialized.", self.name)

    def forward(self, z: np.ndarray) -> np.ndarray:
        return np.maximum(z, 0.0)

    def derivative(self, y: np.ndarray) -> np.ndarray:
        return (y > 0.0).astype(y.dtype)
