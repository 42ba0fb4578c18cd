"""Utilities for checking and converting model metadata values.

These helpers are used within the Pydantic validation logic of the metadata
classes. They convert inputs into immutable NumPy arrays and broadcast scalar
values to the length required by the model dimensions.
"""

from typing import Any

import numpy as np
from numpy.typing import ArrayLike, NDArray
from pydantic import BaseModel


def immutable_array(
    array_like: ArrayLike,
    **kwargs: Any,  # noqa: ANN401
) -> NDArray[Any]:
    """Convert input to an immutable NumPy array.

    This function takes various array-like inputs (e.g., lists, tuples, other
    NumPy arrays) and converts them into a NumPy array. It then sets the
    `writeable` flag of the resulting array to `False`, making it immutable.

    Args:
        array_like: The input data to convert (e.g., list, tuple, NumPy array).
        kwargs:     Additional keyword arguments passed directly to `numpy.array`.

    Returns:
        A new NumPy array, with its `writeable` flag set to `False`.
    """
    array = np.array(array_like, **kwargs)
    array.setflags(write=False)
    return array


def broadcast_1d_array(array: NDArray[Any], name: str, size: int) -> NDArray[Any]:
    """Broadcast an array to a 1D array of a specific size and make it immutable.

    This allows metadata values such as bounds to be given as a single scalar
    that applies to all variables or constraints.

    Args:
        array: The input NumPy array or array-like object.
        name:  A descriptive name for the array (used in error messages).
        size:  The target size (number of elements) for the 1D array.

    Returns:
        A new, immutable 1D NumPy array of the specified `size`.

    Raises:
        ValueError: If the input `array` cannot be broadcast to the target `size`.
    """
    if size == 0:
        return immutable_array([], dtype=array.dtype)
    try:
        return immutable_array(np.broadcast_to(array, (size,)))
    except ValueError as err:
        msg = f"{name} cannot be broadcasted to a length of {size}"
        raise ValueError(msg) from err


def check_indices(indices: NDArray[np.intp], name: str, size: int) -> None:
    """Check that an index array addresses unique entries of a vector.

    Args:
        indices: The index array.
        name:    A descriptive name for the array (used in error messages).
        size:    The length of the vector that is indexed.

    Raises:
        ValueError: If an index is out of range or occurs more than once.
    """
    if np.any(indices < 0) or np.any(indices >= size):
        msg = f"{name} contains indices outside of the range [0, {size})"
        raise ValueError(msg)
    if np.unique(indices).size != indices.size:
        msg = f"{name} contains duplicate indices"
        raise ValueError(msg)


def _convert_1d_array(array: ArrayLike | None) -> NDArray[np.float64] | None:
    if array is None:
        return array
    return immutable_array(array, dtype=np.float64, ndmin=1)


def _convert_1d_array_intp(array: ArrayLike | None) -> NDArray[np.intp] | None:
    if array is None:
        return array
    return immutable_array(array, dtype=np.intp, ndmin=1)


class ImmutableBaseModel(BaseModel):
    """Base model providing manual immutability control.

    This class offers an alternative to Pydantic's `frozen=True` configuration.
    It allows instances to be mutable during initialization (e.g., within
    `@model_validator(mode='after')`) and then explicitly made immutable
    afterwards by calling the `_immutable()` method.
    """

    _is_immutable: bool = False

    def _immutable(self) -> None:
        self._is_immutable = True

    def _mutable(self) -> None:
        self._is_immutable = False

    def __setattr__(self, name: str, value: Any) -> None:  # noqa: ANN401
        """Set an attribute's value, enforcing immutability.

        Args:
            name:  The name of the attribute to set.
            value: The value to assign to the attribute.

        Raises:
            AttributeError: If attempting to set an attribute on an immutable instance.
        """
        if name != "_is_immutable" and self._is_immutable:
            msg = f"{self.__class__.__name__} is immutable"
            raise AttributeError(msg)
        super().__setattr__(name, value)
