"""Utility functions shared by the models and transforms."""

from ._checks import check_index, check_vector, float_dtype, store

__all__ = [
    "check_index",
    "check_vector",
    "float_dtype",
    "store",
]
