class NNError(Exception):
    """Base class of errors raised by nnchain."""


class DimensionMismatch(NNError, ValueError):
    """Raised when two layers are linked with incompatible sizes."""

    def __init__(self, out_size: int, in_size: int) -> None:
        super().__init__(
            f"Dimension mismatch: output size {out_size} of the current layer "
            f"does not match input size {in_size} of the next layer.")
        self.out_size = out_size
        self.in_size = in_size
