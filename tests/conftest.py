import numpy as np
import pytest

from nnchain.layers import FullyConnectedLayer, Layers
from nnchain.updaters import Updater


class RecordingUpdater(Updater):
    """Records every gradient it is handed and leaves parameters alone."""

    def __init__(self) -> None:
        super().__init__(alpha=1.0)
        self.calls = []

    def _apply(self, dW, hessian, W):
        self.calls.append((dW.copy(), hessian.copy(), W))


@pytest.fixture
def recording_updater():
    return RecordingUpdater()


@pytest.fixture
def chain_3_2():
    chain = Layers()
    chain.add(FullyConnectedLayer(3, 2))
    chain.reset(seed=7)
    return chain


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
