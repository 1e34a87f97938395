import logging
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

_default_rng = np.random.default_rng()


def set_seed(seed: Optional[int]) -> None:
    global _default_rng  # pylint: disable=global-statement
    _default_rng = np.random.default_rng(seed)

    logger.info("Default generator reseeded with seed=%s.",
                seed if seed is not None else "None")


def default_rng() -> np.random.Generator:
    return _default_rng


def uniform_rand(buffer: np.ndarray,
                 low: float,
                 high: float,
                 rng: Optional[np.random.Generator] = None) -> None:
    """Fills ``buffer`` in place with draws from ``[low, high)``."""
    if low > high:
        raise ValueError("Minimum value must not exceed maximum value, got "
                         f"low={low}, high={high}.")

    if buffer.size == 0:
        return

    rng = rng if rng is not None else _default_rng
    buffer[...] = rng.uniform(low, high, buffer.shape)

    logger.debug("Filled buffer of shape %s from uniform [%.4f, %.4f).",
                 buffer.shape, low, high)
