"""Annotated types for Pydantic models providing input conversion and validation.

These types leverage Pydantic's `BeforeValidator` to automatically convert
input values (like lists or scalars) into immutable NumPy arrays during model
initialization.

- [`Array1D`][nlpreform.meta.validated_types.Array1D]: Converts input to an
  immutable 1D `np.float64` array.
- [`Array1DIndex`][nlpreform.meta.validated_types.Array1DIndex]: Converts
  input to an immutable 1D `np.intp` array, suitable for indexing.
"""

from typing import Annotated

import numpy as np
from numpy.typing import NDArray
from pydantic import BeforeValidator

from .utils import _convert_1d_array, _convert_1d_array_intp

Array1D = Annotated[NDArray[np.float64], BeforeValidator(_convert_1d_array)]
"""Convert to an immutable 1D numpy array of floating point values."""

Array1DIndex = Annotated[NDArray[np.intp], BeforeValidator(_convert_1d_array_intp)]
"""Convert to an immutable 1D numpy array of index values."""
