"""Metadata class for nonlinear optimization models."""

from __future__ import annotations

from typing import Self

import numpy as np
from numpy.typing import NDArray
from pydantic import ConfigDict, NonNegativeInt, model_validator

from .utils import (
    ImmutableBaseModel,
    broadcast_1d_array,
    check_indices,
    immutable_array,
)
from .validated_types import Array1D, Array1DIndex  # noqa: TC001


class NLPModelMeta(ImmutableBaseModel):
    r"""Metadata of a nonlinear optimization model.

    An `NLPModelMeta` object describes the shape of the problem

    $$
    \begin{align}
        \min \quad & f(x) \\
        \textrm{s.t.} \quad & c_L \leq c(x) \leq c_U \\
        & \ell \leq x \leq u
    \end{align}
    $$

    with `nvar` variables and `ncon` constraints. It does not contain any
    evaluation logic, that is provided by the models that own the metadata
    (see [`AbstractNLPModel`][nlpreform.models.AbstractNLPModel]).

    Bound vectors and initial values are broadcasted to the required length,
    allowing a single scalar to be used for all entries. By default the
    variables and constraints are unbounded, and the initial point and the
    initial multipliers are zero. All arrays are stored as immutable `numpy`
    arrays.

    The constraints are partitioned into four mutually exclusive index sets,
    which are available as read-only properties after validation:

    - `jfix`:  Equality constraints, $c_L = c_U$.
    - `jrng`:  Range constraints with finite $c_L < c_U$.
    - `jupp`:  Constraints bounded above only, $c_L = -\infty$.
    - `jlow`:  All other constraints, $c_U = +\infty$. This includes
               constraints that are unbounded on both sides.

    The variables are similarly partitioned into `ifix`, `irng`, `iupp`,
    `ilow` and `ifree`.

    Attributes:
        nvar:     The number of variables.
        x0:       The initial point (default: 0).
        lvar:     Lower bounds on the variables (default: $-\infty$).
        uvar:     Upper bounds on the variables (default: $+\infty$).
        ncon:     The number of general constraints.
        lcon:     Lower bounds on the constraints (default: $-\infty$).
        ucon:     Upper bounds on the constraints (default: $+\infty$).
        y0:       Initial Lagrange multipliers (default: 0).
        lin:      Indices of the linear constraints.
        nln:      Indices of the nonlinear constraints (default: all
                  constraints not listed in `lin`).
        nnzj:     Number of nonzeros in the constraint Jacobian (default:
                  `nvar * ncon`).
        nnzh:     Number of nonzeros in the Lagrangian Hessian (default:
                  `nvar * nvar`).
        minimize: Whether the objective is minimized.
        name:     The name of the model.
    """

    nvar: NonNegativeInt
    x0: Array1D = np.array(0.0)
    lvar: Array1D = np.array(-np.inf)
    uvar: Array1D = np.array(np.inf)
    ncon: NonNegativeInt = 0
    lcon: Array1D = np.array(-np.inf)
    ucon: Array1D = np.array(np.inf)
    y0: Array1D = np.array(0.0)
    lin: Array1DIndex = np.array([], dtype=np.intp)
    nln: Array1DIndex | None = None
    nnzj: NonNegativeInt | None = None
    nnzh: NonNegativeInt | None = None
    minimize: bool = True
    name: str = "Generic"

    _jlow: NDArray[np.intp]
    _jupp: NDArray[np.intp]
    _jrng: NDArray[np.intp]
    _jfix: NDArray[np.intp]
    _ilow: NDArray[np.intp]
    _iupp: NDArray[np.intp]
    _irng: NDArray[np.intp]
    _ifix: NDArray[np.intp]
    _ifree: NDArray[np.intp]

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        extra="forbid",
        validate_default=True,
    )

    @model_validator(mode="after")
    def _broadcast_and_partition(self) -> Self:
        self._mutable()

        self.x0 = broadcast_1d_array(self.x0, "x0", self.nvar)
        self.lvar = broadcast_1d_array(self.lvar, "lvar", self.nvar)
        self.uvar = broadcast_1d_array(self.uvar, "uvar", self.nvar)
        if np.any(self.lvar > self.uvar):
            msg = "The lower bounds are larger than the upper bounds."
            raise ValueError(msg)

        self.lcon = broadcast_1d_array(self.lcon, "lcon", self.ncon)
        self.ucon = broadcast_1d_array(self.ucon, "ucon", self.ncon)
        self.y0 = broadcast_1d_array(self.y0, "y0", self.ncon)
        if np.any(self.lcon > self.ucon):
            msg = "The lower constraint bounds are larger than the upper bounds."
            raise ValueError(msg)

        check_indices(self.lin, "lin", self.ncon)
        if self.nln is None:
            self.nln = immutable_array(
                np.setdiff1d(np.arange(self.ncon), self.lin), dtype=np.intp
            )
        check_indices(self.nln, "nln", self.ncon)
        if np.intersect1d(self.lin, self.nln).size > 0:
            msg = "A constraint cannot be both linear and nonlinear."
            raise ValueError(msg)

        if self.nnzj is None:
            self.nnzj = self.nvar * self.ncon
        if self.nnzh is None:
            self.nnzh = self.nvar * self.nvar

        self._jfix, self._jrng, self._jupp, self._jlow = _partition(
            self.lcon, self.ucon
        )
        self._ifix, self._irng, self._iupp, self._ilow = _partition(
            self.lvar, self.uvar
        )
        self._ifree = immutable_array(
            np.flatnonzero(np.isneginf(self.lvar) & np.isposinf(self.uvar))
        )
        # Variables without any bounds are reported in ifree only.
        self._ilow = immutable_array(np.setdiff1d(self._ilow, self._ifree))

        self._immutable()

        return self

    @property
    def jlow(self) -> NDArray[np.intp]:
        """Indices of the constraints with an infinite upper bound."""
        return self._jlow

    @property
    def jupp(self) -> NDArray[np.intp]:
        """Indices of the constraints bounded above only."""
        return self._jupp

    @property
    def jrng(self) -> NDArray[np.intp]:
        """Indices of the range constraints."""
        return self._jrng

    @property
    def jfix(self) -> NDArray[np.intp]:
        """Indices of the equality constraints."""
        return self._jfix

    @property
    def ilow(self) -> NDArray[np.intp]:
        """Indices of the variables bounded below only."""
        return self._ilow

    @property
    def iupp(self) -> NDArray[np.intp]:
        """Indices of the variables bounded above only."""
        return self._iupp

    @property
    def irng(self) -> NDArray[np.intp]:
        """Indices of the variables with finite lower and upper bounds."""
        return self._irng

    @property
    def ifix(self) -> NDArray[np.intp]:
        """Indices of the fixed variables."""
        return self._ifix

    @property
    def ifree(self) -> NDArray[np.intp]:
        """Indices of the unbounded variables."""
        return self._ifree

    @property
    def nlin(self) -> int:
        """The number of linear constraints."""
        return int(self.lin.size)

    @property
    def nnln(self) -> int:
        """The number of nonlinear constraints."""
        assert self.nln is not None
        return int(self.nln.size)


def _partition(
    lower: NDArray[np.float64], upper: NDArray[np.float64]
) -> tuple[NDArray[np.intp], NDArray[np.intp], NDArray[np.intp], NDArray[np.intp]]:
    fixed = lower == upper
    ranged = np.isfinite(lower) & np.isfinite(upper) & ~fixed
    upper_only = np.isneginf(lower) & np.isfinite(upper)
    lower_only = ~(fixed | ranged | upper_only)
    return (
        immutable_array(np.flatnonzero(fixed)),
        immutable_array(np.flatnonzero(ranged)),
        immutable_array(np.flatnonzero(upper_only)),
        immutable_array(np.flatnonzero(lower_only)),
    )
