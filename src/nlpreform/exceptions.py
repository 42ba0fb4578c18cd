"""Exceptions raised within the `nlpreform` library."""


class DimensionError(ValueError):
    """Raised when an input vector does not match the expected block structure.

    Derived models split their inputs into an original-variable block and an
    introduced-variable block. Inputs of the wrong length are rejected before
    any evaluation takes place, they are never truncated or padded.
    """

    def __init__(self, name: str, expected: int, actual: int) -> None:
        """Initialize the DimensionError exception.

        Args:
            name:     The name of the offending argument.
            expected: The expected length.
            actual:   The length that was passed.
        """
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"size mismatch for `{name}`: expected length {expected}, got {actual}"
        )


class UnsupportedModelError(TypeError):
    """Raised when a model kind is not supported by a transformation.

    This signals that a specialized constructor, or a representation-dependent
    operation, was used with a model whose representation it was not written
    for. It is raised at construction time, not lazily at the first
    evaluation.
    """
