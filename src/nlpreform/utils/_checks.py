"""Argument checks shared by the models."""

from __future__ import annotations

from typing import Any

import numpy as np
from numpy.typing import ArrayLike, NDArray

from nlpreform.exceptions import DimensionError


def check_vector(vector: ArrayLike, size: int, name: str) -> NDArray[Any]:
    """Convert a vector to a 1D array and check its length.

    Args:
        vector: The input vector.
        size:   The required length.
        name:   The argument name, used in the error message.

    Returns:
        The vector as a `numpy` array. No copy is made if the input already is
        a one-dimensional array.

    Raises:
        DimensionError: If the vector is not one-dimensional or has the wrong
                        length.
    """
    array = np.asarray(vector)
    if array.ndim != 1:
        raise DimensionError(name, size, array.size)
    if array.shape[0] != size:
        raise DimensionError(name, size, array.shape[0])
    return array


def check_index(index: int, size: int, name: str) -> int:
    """Check that an index addresses an entry of a vector of given length.

    Args:
        index: The index.
        size:  The length of the indexed vector.
        name:  The argument name, used in the error message.

    Returns:
        The index as a Python integer.

    Raises:
        IndexError: If the index is out of range.
    """
    if not 0 <= index < size:
        msg = f"`{name}` must be in the range [0, {size}), got {index}"
        raise IndexError(msg)
    return int(index)


def store(value: NDArray[Any], out: NDArray[Any] | None) -> NDArray[Any]:
    """Store a computed vector in an optional output array.

    Args:
        value: The computed vector.
        out:   Optional output array of the same length.

    Returns:
        `out` after copying `value` into it, or `value` if `out` is `None`.

    Raises:
        DimensionError: If `out` does not have the length of `value`.
    """
    if out is None:
        return value
    check_vector(out, value.shape[0], "out")
    out[...] = value
    return out


def float_dtype(*arrays: NDArray[Any]) -> np.dtype[Any]:
    """Return the floating point type for results computed from the arrays."""
    return np.result_type(*arrays, np.float16)
