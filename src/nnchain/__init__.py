from nnchain.exceptions import DimensionMismatch, NNError
from nnchain.layers import (FullyConnectedLayer, InputLayer, Layer, LayerBase,
                            Layers)
from nnchain.models import Network

__all__ = [
    "DimensionMismatch",
    "FullyConnectedLayer",
    "InputLayer",
    "Layer",
    "LayerBase",
    "Layers",
    "NNError",
    "Network",
]
