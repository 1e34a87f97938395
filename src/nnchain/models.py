import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import numpy as np

from nnchain.layers import LayerBase, Layers
from nnchain.loss import Loss, MeanSquaredError
from nnchain.updaters import Updater

logger = logging.getLogger(__name__)

_HESSIAN_SUFFIXES = (".W_hessian", ".b_hessian")


class Network:
    """Feed-forward network trained one sample at a time.

    Forward passes are delegated to the head of the layer chain. Backward
    passes walk the chain explicitly from tail to head, feeding each layer's
    returned delta into the layer before it.
    """

    def __init__(self,
                 loss: Optional[Loss] = None,
                 in_dim: int = 0,
                 name: Optional[str] = None) -> None:
        self.name = name or self.__class__.__name__
        self.loss = loss if loss is not None else MeanSquaredError()
        self.layers = Layers(in_dim)

        logger.info("%s initialized with loss function: %s.", self.name,
                    self.loss.name)

    def add(self, layer: LayerBase) -> "Network":
        self.layers.add(layer)
        return self

    @property
    def in_size(self) -> int:
        return self.layers.head.in_size

    @property
    def out_size(self) -> int:
        return self.layers.tail.out_size

    def init_weight(self, seed: Optional[int] = None) -> None:
        self.layers.reset(seed)

    def predict(self, x: np.ndarray) -> np.ndarray:
        return self.fprop(x).copy()

    def fprop(self, x: np.ndarray) -> np.ndarray:
        return self.layers.forward_propagation(x)

    def bprop(self, y: np.ndarray, t: np.ndarray, updater: Updater) -> None:
        delta = self.loss.backward(y, t)

        for layer in self._reversed_trainable():
            delta = layer.back_propagation(delta, updater)

    def bprop_2nd(self, y: np.ndarray) -> None:
        delta2 = self.loss.backward_2nd(y)

        for layer in self._reversed_trainable():
            delta2 = layer.back_propagation_2nd(delta2)

    def _reversed_trainable(self) -> Iterator[LayerBase]:
        # the head is a pass-through; stop before it
        for layer in reversed(self.layers):
            if layer is self.layers.head:
                return
            yield layer

    def calc_hessian(self,
                     inputs: np.ndarray,
                     size_initialize_hessian: int = 500) -> int:
        """Estimates the Hessian diagonal over the first samples of ``inputs``.

        Curvature is accumulated per sample and then averaged over the number
        of samples used, which is returned.
        """
        size = min(len(inputs), size_initialize_hessian)

        for i in range(size):
            y = self.fprop(inputs[i])
            self.bprop_2nd(y)

        if size > 0:
            self.layers.divide_hessian(size)
        else:
            logger.warning("No samples available for Hessian estimation.")

        logger.debug("%s Hessian estimated over %d samples.", self.name, size)

        return size

    def train_once(self, x: np.ndarray, t: np.ndarray,
                   updater: Updater) -> float:
        y = self.fprop(x)
        t = np.asarray(t, dtype=y.dtype)

        loss = self.loss.forward(y, t)
        self.bprop(y, t, updater)

        return loss

    def fit(self,
            inputs: np.ndarray,
            targets: np.ndarray,
            updater: Updater,
            num_epochs: int = 1,
            log_interval: int = 1,
            reset_weights: bool = True,
            shuffle: bool = True,
            seed: Optional[int] = None) -> List[float]:
        if num_epochs <= 0:
            raise ValueError("Number of epochs must be positive.")

        if log_interval <= 0:
            raise ValueError("Log interval must be positive.")

        inputs = np.asarray(inputs, dtype=np.float64)
        targets = np.asarray(targets, dtype=np.float64)

        if inputs.shape[0] != targets.shape[0]:
            raise ValueError(
                f"Number of inputs ({inputs.shape[0]}) must match number of "
                f"targets ({targets.shape[0]}).")

        num_samples = inputs.shape[0]
        if num_samples == 0:
            logger.warning("Training data is empty. Skipping training.")
            return []

        if reset_weights:
            self.init_weight(seed)

        rng = np.random.default_rng(seed)
        history: List[float] = []

        logger.info(
            "Starting training for %s: %d epochs, %d samples, updater=%s.",
            self.name, num_epochs, num_samples, updater.name)

        for epoch in range(1, num_epochs + 1):
            if updater.requires_hessian:
                self.calc_hessian(inputs)

            order = (rng.permutation(num_samples)
                     if shuffle else np.arange(num_samples))

            epoch_losses = [
                self.train_once(inputs[i], targets[i], updater) for i in order
            ]

            avg_loss = float(np.mean(epoch_losses))
            history.append(avg_loss)

            if epoch % log_interval == 0:
                logger.info("Epoch %d/%d - Average Training Loss: %.6f", epoch,
                            num_epochs, avg_loss)

        logger.info("Training finished for network %s.", self.name)

        return history

    def save_weights(self, path: Path, include_hessian: bool = True) -> None:
        """Writes every layer's parameters to a compressed ``.npz`` archive.

        With ``include_hessian`` the curvature accumulators are stored as
        well, so a Levenberg-Marquardt run can resume without re-estimating
        them.
        """
        buffers = self._buffers(include_hessian)

        if not buffers:
            raise ValueError(f"Network '{self.name}' has no trainable "
                             "parameters to save.")

        path.parent.mkdir(parents=True, exist_ok=True)

        try:
            np.savez_compressed(path, **buffers)
        except IOError as e:
            raise IOError(f"Failed to save weights to '{path}': {e}") from e

        logger.info("%s saved %d arrays to '%s' (hessian=%s).", self.name,
                    len(buffers), path, include_hessian)

    def load_weights(self, path: Path) -> None:
        """Restores parameters, and Hessian buffers when the file has them.

        Every parameter must be present with a matching shape; nothing is
        written until the whole archive has been validated.
        """
        if not path.is_file():
            raise FileNotFoundError(f"Weights file not found at '{path}'.")

        with np.load(path, allow_pickle=False) as archive:
            stored = {key: archive[key] for key in archive.files}

        targets = self._buffers(include_hessian=True)

        for key, buffer in targets.items():
            if key not in stored:
                if key.endswith(_HESSIAN_SUFFIXES):
                    continue

                raise ValueError(
                    f"Parameter '{key}' not found in weights file '{path}'.")

            if stored[key].shape != buffer.shape:
                raise ValueError(
                    f"Shape mismatch for '{key}': network expects "
                    f"{buffer.shape}, file contains {stored[key].shape}.")

        restored = 0
        for key, buffer in targets.items():
            if key in stored:
                buffer[:] = stored[key]
                restored += 1

        unused = sorted(set(stored) - set(targets))
        if unused:
            logger.warning("Weights file '%s' contains unused arrays: %s.",
                           path, unused)

        logger.info("%s restored %d arrays from '%s'.", self.name, restored,
                    path)

    def _buffers(self, include_hessian: bool) -> Dict[str, np.ndarray]:
        buffers: Dict[str, np.ndarray] = {}

        for i, layer in enumerate(self.layers):
            if layer.param_size == 0:
                continue

            prefix = f"{i}.{layer.name}"
            buffers[f"{prefix}.W"] = layer.weight
            buffers[f"{prefix}.b"] = layer.bias

            if include_hessian:
                buffers[f"{prefix}.W_hessian"] = layer.weight_hessian
                buffers[f"{prefix}.b_hessian"] = layer.bias_hessian

        return buffers
