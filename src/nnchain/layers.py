import logging
import weakref
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional

import numpy as np

from nnchain.activations import Activation, Identity
from nnchain.exceptions import DimensionMismatch
from nnchain.initializers import uniform_rand
from nnchain.updaters import Updater

logger = logging.getLogger(__name__)

FLOAT_T = np.float64


class LayerBase(ABC):
    """Base class of all kinds of layers.

    A layer owns its parameters (weight and bias), the caches written by the
    last forward and backward passes (output, delta, delta2) and the diagonal
    Hessian accumulators used by second-order updaters. Every buffer is a flat
    ``float64`` array sized at construction and only ever written in place.

    Layers are linked head to tail with ``connect``. The successor is held
    through ``next``; the predecessor through a weak reference, so a layer
    never keeps the layers before it alive. Ownership belongs to the
    ``Layers`` chain that holds them.

    The contract for the propagation methods:

    * ``forward(x)`` computes this layer's output from an ``in_size`` input,
      caches it and returns the cached buffer.
    * ``back_propagation(delta, updater)`` takes dE/d(output), hands every
      parameter gradient to ``updater`` and returns dE/d(input).
    * ``back_propagation_2nd(delta2)`` takes the diagonal d2E/d(output)2, adds
      its contribution to the Hessian buffers and returns d2E/d(input)2. It
      never touches the parameters.
    """

    def __init__(self,
                 in_dim: int,
                 out_dim: int,
                 weight_dim: int,
                 bias_dim: int,
                 name: Optional[str] = None) -> None:
        for label, dim in (("in_dim", in_dim), ("out_dim", out_dim),
                           ("weight_dim", weight_dim), ("bias_dim",
                                                        bias_dim)):
            if dim < 0:
                raise ValueError(f"{label} must be non-negative, got {dim}.")

        self.name = name or self.__class__.__name__
        self.next: Optional["LayerBase"] = None
        self._prev_ref: Optional["weakref.ReferenceType[LayerBase]"] = None

        self._set_size(in_dim, out_dim, weight_dim, bias_dim)

    def connect(self, next_layer: "LayerBase") -> None:
        if self.out_size != 0 and next_layer.in_size != self.out_size:
            logger.error(
                "Cannot connect %s (out_size=%d) to %s (in_size=%d).",
                self.name, self.out_size, next_layer.name,
                next_layer.in_size)
            raise DimensionMismatch(self.out_size, next_layer.in_size)

        if self.next is not None and self.next is not next_layer:
            self.next.prev = None

        self.next = next_layer
        next_layer.prev = self

        if self.out_size == 0:
            self._adopt_size(next_layer.in_size)

        logger.debug("%s connected to %s.", self.name, next_layer.name)

    @property
    def prev(self) -> Optional["LayerBase"]:
        return self._prev_ref() if self._prev_ref is not None else None

    @prev.setter
    def prev(self, layer: Optional["LayerBase"]) -> None:
        self._prev_ref = weakref.ref(layer) if layer is not None else None

    def init_weight(self, rng: Optional[np.random.Generator] = None) -> None:
        weight_base = 0.5 / np.sqrt(self.fan_in_size)

        uniform_rand(self._W, -weight_base, weight_base, rng)
        uniform_rand(self._b, -weight_base, weight_base, rng)
        self._Whessian.fill(0.0)
        self._bhessian.fill(0.0)

        logger.debug("%s weights initialized within +/-%.4f.", self.name,
                     weight_base)

    def reset(self, rng: Optional[np.random.Generator] = None) -> None:
        self.init_weight(rng)

    def divide_hessian(self, denominator: int) -> None:
        if denominator == 0:
            logger.error("%s cannot divide Hessian by zero.", self.name)
            raise ZeroDivisionError(
                "Hessian denominator must be non-zero; guard against empty "
                "batches.")

        self._Whessian /= denominator
        self._bhessian /= denominator

    @property
    def in_size(self) -> int:
        return self._in_size

    @property
    def out_size(self) -> int:
        return self._out_size

    @property
    def param_size(self) -> int:
        return self._W.size + self._b.size

    @property
    @abstractmethod
    def fan_in_size(self) -> int:
        pass

    @property
    @abstractmethod
    def connection_size(self) -> int:
        pass

    @property
    @abstractmethod
    def activation_function(self) -> Activation:
        pass

    @property
    def output(self) -> np.ndarray:
        return self._output

    @property
    def delta(self) -> np.ndarray:
        return self._prev_delta

    @property
    def delta2(self) -> np.ndarray:
        return self._prev_delta2

    @property
    def weight(self) -> np.ndarray:
        return self._W

    @property
    def bias(self) -> np.ndarray:
        return self._b

    @property
    def weight_hessian(self) -> np.ndarray:
        return self._Whessian

    @property
    def bias_hessian(self) -> np.ndarray:
        return self._bhessian

    @property
    def params(self) -> Dict[str, np.ndarray]:
        if self.param_size == 0:
            return {}

        return {"W": self._W, "b": self._b}

    def forward_propagation(self, x: np.ndarray) -> np.ndarray:
        """Runs this layer and every layer after it, in order.

        Each layer's output is cached on the way, so a single call on the
        head of a chain leaves everything backpropagation needs in place.
        Returns the last layer's output buffer.
        """
        layer: Optional[LayerBase] = self
        out = np.asarray(x, dtype=FLOAT_T)

        while layer is not None:
            out = layer.forward(out)
            layer = layer.next

        return out

    @abstractmethod
    def forward(self, x: np.ndarray) -> np.ndarray:
        pass

    @abstractmethod
    def back_propagation(self, current_delta: np.ndarray,
                         updater: Updater) -> np.ndarray:
        pass

    @abstractmethod
    def back_propagation_2nd(self, current_delta2: np.ndarray) -> np.ndarray:
        pass

    def _adopt_size(self, size: int) -> None:
        pass

    def _check_vector(self, v: np.ndarray, size: int,
                      label: str) -> np.ndarray:
        v = np.asarray(v, dtype=FLOAT_T)

        if v.shape != (size,):
            logger.error("%s %s shape mismatch. Expected (%d,), got %s.",
                         self.name, label, size, v.shape)
            raise ValueError(f"{label} shape mismatch. Expected ({size},), "
                             f"got {v.shape}.")

        return v

    def _set_size(self, in_dim: int, out_dim: int, weight_dim: int,
                  bias_dim: int) -> None:
        self._in_size = in_dim
        self._out_size = out_dim
        self._output = np.zeros(out_dim, dtype=FLOAT_T)
        self._prev_delta = np.zeros(in_dim, dtype=FLOAT_T)
        self._W = np.zeros(weight_dim, dtype=FLOAT_T)
        self._b = np.zeros(bias_dim, dtype=FLOAT_T)
        self._Whessian = np.zeros(weight_dim, dtype=FLOAT_T)
        self._bhessian = np.zeros(bias_dim, dtype=FLOAT_T)
        self._prev_delta2 = np.zeros(in_dim, dtype=FLOAT_T)


class Layer(LayerBase):
    """Layer bound to a single activation function.

    Concrete layers derive from this and only implement the propagation
    methods together with ``fan_in_size`` and ``connection_size``.
    """

    def __init__(self,
                 in_dim: int,
                 out_dim: int,
                 weight_dim: int,
                 bias_dim: int,
                 activation: Optional[Activation] = None,
                 name: Optional[str] = None) -> None:
        super().__init__(in_dim, out_dim, weight_dim, bias_dim, name)
        self._activation = activation if activation is not None else Identity()

    @property
    def activation_function(self) -> Activation:
        return self._activation


class InputLayer(Layer):
    """Pass-through layer that anchors every chain.

    Created without a size, it adopts the input size of whatever it is
    connected to; until then it forwards vectors of any length.
    """

    def __init__(self, in_dim: int = 0, name: Optional[str] = None) -> None:
        super().__init__(in_dim, in_dim, 0, 0, Identity(), name)

        logger.info("%s initialized with in_dim=%d.", self.name, in_dim)

    @property
    def fan_in_size(self) -> int:
        return 1

    @property
    def connection_size(self) -> int:
        return self.in_size

    def forward(self, x: np.ndarray) -> np.ndarray:
        if self.in_size == 0:
            self._output = np.array(x, dtype=FLOAT_T)
        else:
            self._output[:] = self._check_vector(x, self.in_size, "Input")

        return self._output

    def back_propagation(self, current_delta: np.ndarray,
                         updater: Updater) -> np.ndarray:
        if self.in_size != 0:
            self._prev_delta[:] = current_delta

        return current_delta

    def back_propagation_2nd(self, current_delta2: np.ndarray) -> np.ndarray:
        if self.in_size != 0:
            self._prev_delta2[:] = current_delta2

        return current_delta2

    def _adopt_size(self, size: int) -> None:
        if self.in_size == 0 and size > 0:
            self._set_size(size, size, 0, 0)
            logger.info("%s sized to %d on connect.", self.name, size)


class FullyConnectedLayer(Layer):
    """Dense layer computing ``h(x @ W + b)``.

    The weight buffer holds a row-major ``(in_size, out_size)`` matrix, so
    ``W[c * out_size + r]`` connects input ``c`` to output ``r``.
    """

    def __init__(self,
                 in_dim: int,
                 out_dim: int,
                 activation: Optional[Activation] = None,
                 name: Optional[str] = None) -> None:
        if in_dim <= 0:
            raise ValueError(
                f"Input dimension (in_dim) must be positive, got {in_dim}.")

        if out_dim <= 0:
            raise ValueError(
                f"Output dimension (out_dim) must be positive, got {out_dim}.")

        super().__init__(in_dim, out_dim, in_dim * out_dim, out_dim,
                         activation, name)

        self._last_x: Optional[np.ndarray] = None

        logger.info("%s initialized with in_dim=%d, out_dim=%d, activation=%s.",
                    self.name, in_dim, out_dim, self._activation.name)

    @property
    def fan_in_size(self) -> int:
        return self.in_size

    @property
    def connection_size(self) -> int:
        return self.in_size * self.out_size + self.out_size

    @property
    def weight_matrix(self) -> np.ndarray:
        return self._W.reshape(self.in_size, self.out_size)

    def forward(self, x: np.ndarray) -> np.ndarray:
        x = self._check_vector(x, self.in_size, "Input")
        self._last_x = x.copy()

        z = x @ self.weight_matrix + self._b
        self._output[:] = self._activation.forward(z)

        logger.debug("%s forward pass: in_size=%d, out_size=%d.", self.name,
                     self.in_size, self.out_size)

        return self._output

    def back_propagation(self, current_delta: np.ndarray,
                         updater: Updater) -> np.ndarray:
        if self._last_x is None:
            raise RuntimeError("Must call forward() before back_propagation().")

        current_delta = self._check_vector(current_delta, self.out_size,
                                           "Delta")

        dL_dz = self._activation.backward(current_delta, self._output)

        dL_dW = np.outer(self._last_x, dL_dz).ravel()
        dL_db = dL_dz

        self._prev_delta[:] = self.weight_matrix @ dL_dz

        updater.update(dL_dW, self._Whessian, self._W)
        updater.update(dL_db, self._bhessian, self._b)

        logger.debug("%s backward pass: delta_norm=%.6f.", self.name,
                     float(np.linalg.norm(self._prev_delta)))

        return self._prev_delta

    def back_propagation_2nd(self, current_delta2: np.ndarray) -> np.ndarray:
        if self._last_x is None:
            raise RuntimeError(
                "Must call forward() before back_propagation_2nd().")

        current_delta2 = self._check_vector(current_delta2, self.out_size,
                                            "Second-order delta")

        d2L_dz2 = current_delta2 * self._activation.derivative(
            self._output)**2

        self._Whessian += np.outer(self._last_x**2, d2L_dz2).ravel()
        self._bhessian += d2L_dz2

        self._prev_delta2[:] = self.weight_matrix**2 @ d2L_dz2

        logger.debug("%s second-order backward pass completed.", self.name)

        return self._prev_delta2


class Layers:
    """Ordered chain of layers, always starting with an ``InputLayer``.

    The chain only grows at its tail. It owns every layer added to it.
    """

    def __init__(self, in_dim: int = 0) -> None:
        self._layers: List[LayerBase] = []
        self._head: Optional[LayerBase] = None
        self._tail: Optional[LayerBase] = None

        self.add(InputLayer(in_dim))

    def add(self, new_tail: LayerBase) -> None:
        if any(layer is new_tail for layer in self._layers):
            raise ValueError(f"Layer '{new_tail.name}' is already part of "
                             "this chain.")

        if new_tail.prev is not None:
            raise ValueError(f"Layer '{new_tail.name}' is already connected "
                             f"after '{new_tail.prev.name}'.")

        if new_tail.next is not None:
            raise ValueError(f"Layer '{new_tail.name}' is already connected "
                             f"before '{new_tail.next.name}'.")

        if self._tail is not None:
            self._tail.connect(new_tail)

        if self._head is None:
            self._head = new_tail

        self._layers.append(new_tail)
        self._tail = new_tail

        logger.info("Added %s to chain (in_size=%d, out_size=%d, %d layers).",
                    new_tail.name, new_tail.in_size, new_tail.out_size,
                    len(self._layers))

    @property
    def empty(self) -> bool:
        return self._head is None

    @property
    def head(self) -> LayerBase:
        if self._head is None:
            raise RuntimeError("Layer chain is empty.")

        return self._head

    @property
    def tail(self) -> LayerBase:
        if self._tail is None:
            raise RuntimeError("Layer chain is empty.")

        return self._tail

    def reset(self, seed: Optional[int] = None) -> None:
        rng = np.random.default_rng(seed) if seed is not None else None

        for layer in self:
            layer.reset(rng)

        logger.info("Reset %d layers (seed=%s).", len(self._layers),
                    seed if seed is not None else "None")

    def divide_hessian(self, denominator: int) -> None:
        for layer in self:
            layer.divide_hessian(denominator)

        logger.debug("Divided Hessian of %d layers by %d.", len(self._layers),
                     denominator)

    def forward_propagation(self, x: np.ndarray) -> np.ndarray:
        return self.head.forward_propagation(x)

    def __len__(self) -> int:
        return len(self._layers)

    def __getitem__(self, index: int) -> LayerBase:
        return self._layers[index]

    def __iter__(self) -> Iterator[LayerBase]:
        return iter(self._layers)

    def __reversed__(self) -> Iterator[LayerBase]:
        return reversed(self._layers)
