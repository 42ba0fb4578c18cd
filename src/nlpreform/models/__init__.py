"""Optimization models and the evaluation contract they implement.

The abstract base classes define the operators that every model provides:

- [`AbstractNLPModel`][nlpreform.models.AbstractNLPModel]: Objective,
  constraints, Jacobians and Lagrangian Hessians, in coordinate, matrix,
  product and operator form, plus evaluation counters and resource handling.
- [`AbstractNLSModel`][nlpreform.models.AbstractNLSModel]: Adds the residual
  of a least-squares problem and its derivatives.

Three concrete model kinds are provided:

- [`FunctionNLPModel`][nlpreform.models.FunctionNLPModel] and
  [`FunctionNLSModel`][nlpreform.models.FunctionNLSModel]: Models defined by
  closed-form callables.
- [`LLSModel`][nlpreform.models.LLSModel]: Linear least-squares models over
  dense, sparse or operator matrices.
"""

from ._function import FunctionNLPModel, FunctionNLSModel
from ._lls import LLSModel
from .base import AbstractNLPModel, AbstractNLSModel

__all__ = [
    "AbstractNLPModel",
    "AbstractNLSModel",
    "FunctionNLPModel",
    "FunctionNLSModel",
    "LLSModel",
]
