"""This module defines the abstract base classes for optimization models.

Every model presents its problem through a fixed set of evaluation operators.
Solvers, and the transformations in [`nlpreform.transforms`][nlpreform.transforms],
only rely on these operators, never on the internal representation of a
model.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Self

import numpy as np
from scipy.sparse.linalg import LinearOperator

from nlpreform.counters import Counters, NLSCounters
from nlpreform.utils import check_index, check_vector, float_dtype
from nlpreform.utils.linalg import from_coordinates

if TYPE_CHECKING:
    from types import TracebackType

    from numpy.typing import ArrayLike, NDArray

    from nlpreform.enums import EvaluationCounter
    from nlpreform.meta import NLPModelMeta, NLSMeta
    from nlpreform.utils.linalg import Matrix

logger = logging.getLogger(__name__)


class AbstractNLPModel(ABC):
    r"""Abstract base class for nonlinear optimization models.

    A model represents the problem

    $$
    \begin{align}
        \min \quad & f(x) \\
        \textrm{s.t.} \quad & c_L \leq c(x) \leq c_U \\
        & \ell \leq x \leq u
    \end{align}
    $$

    whose dimensions and bounds are described by an
    [`NLPModelMeta`][nlpreform.meta.NLPModelMeta] object. Subclasses provide the
    evaluation operators. The objective and its gradient must always be
    implemented, the remaining operators raise `NotImplementedError` unless
    overridden. Methods that materialize the Jacobian or the Hessian are
    derived from the corresponding coordinate methods by default.

    The Lagrangian used by the Hessian methods is

    $$ L(x, y) = w f(x) + \sum_j y_j c_j(x), $$

    where $w$ is passed as `obj_weight`, and $y$ as `y`.

    Methods that return vectors accept an optional `out` argument. If given,
    the result is written into `out`, which is then returned.

    Each model counts its evaluations in a
    [`Counters`][nlpreform.counters.Counters] object. Concrete models increment
    the counters in their evaluation methods.

    Models may hold resources. They are released by calling
    [`close`][nlpreform.models.AbstractNLPModel.close], or by using the model
    as a context manager.
    """

    def __init__(self, meta: NLPModelMeta, counters: Counters | None = None) -> None:
        """Initialize the model.

        Args:
            meta:     The metadata of the model.
            counters: Optional initial counters.
        """
        self._meta = meta
        self._counters = Counters() if counters is None else counters
        self._closed = False

    @property
    def meta(self) -> NLPModelMeta:
        """The metadata of the model."""
        return self._meta

    @property
    def counters(self) -> Counters:
        """The evaluation counters of the model."""
        return self._counters

    def increment(self, counter: str | EvaluationCounter) -> None:
        """Increment an evaluation counter.

        Args:
            counter: The name of the counter.
        """
        self.counters.increment(counter)

    def neval(self, counter: str | EvaluationCounter) -> int:
        """Return the value of an evaluation counter.

        Args:
            counter: The name of the counter.

        Returns:
            The number of evaluations.
        """
        return self.counters.get(counter)

    def sum_counters(self) -> int:
        """Return the total number of evaluations of all kinds."""
        return self.counters.sum()

    def reset(self) -> Self:
        """Set all evaluation counters to zero.

        Returns:
            The model itself.
        """
        self.counters.reset()
        return self

    @abstractmethod
    def objective(self, x: ArrayLike) -> float:
        """Evaluate the objective function.

        Args:
            x: The variables.

        Returns:
            The objective value.
        """

    @abstractmethod
    def gradient(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the gradient of the objective function.

        Args:
            x:   The variables.
            out: Optional output vector.

        Returns:
            The gradient.
        """

    def objective_and_gradient(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> tuple[float, NDArray[np.float64]]:
        """Evaluate the objective function and its gradient.

        Args:
            x:   The variables.
            out: Optional output vector for the gradient.

        Returns:
            The objective value and the gradient.
        """
        return self.objective(x), self.gradient(x, out)

    def constraints(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the constraint functions.

        Args:
            x:   The variables.
            out: Optional output vector.

        Returns:
            The constraint values.
        """
        msg = f"{self.__class__.__name__} does not provide constraints."
        raise NotImplementedError(msg)

    def jacobian_coordinates(
        self, x: ArrayLike
    ) -> tuple[NDArray[np.intp], NDArray[np.intp], NDArray[np.float64]]:
        """Evaluate the constraint Jacobian in coordinate format.

        Args:
            x: The variables.

        Returns:
            The row indices, column indices and values of the nonzero entries.
        """
        msg = f"{self.__class__.__name__} does not provide a constraint Jacobian."
        raise NotImplementedError(msg)

    def jacobian(self, x: ArrayLike) -> Matrix:
        """Evaluate the constraint Jacobian.

        The default implementation builds a sparse matrix from the output of
        [`jacobian_coordinates`][nlpreform.models.AbstractNLPModel.jacobian_coordinates].

        Args:
            x: The variables.

        Returns:
            The Jacobian as a dense array, a sparse matrix or a linear operator.
        """
        rows, cols, values = self.jacobian_coordinates(x)
        return from_coordinates(rows, cols, values, (self.meta.ncon, self.meta.nvar))

    def jacobian_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the constraint Jacobian with a vector.

        Args:
            x:   The variables.
            v:   The vector, with one entry per variable.
            out: Optional output vector.

        Returns:
            The product, with one entry per constraint.
        """
        msg = f"{self.__class__.__name__} does not provide a constraint Jacobian."
        raise NotImplementedError(msg)

    def jacobian_transpose_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the transposed constraint Jacobian with a vector.

        Args:
            x:   The variables.
            v:   The vector, with one entry per constraint.
            out: Optional output vector.

        Returns:
            The product, with one entry per variable.
        """
        msg = f"{self.__class__.__name__} does not provide a constraint Jacobian."
        raise NotImplementedError(msg)

    def jacobian_operator(self, x: ArrayLike) -> LinearOperator:
        """Return the constraint Jacobian as a linear operator.

        The operator evaluates products on demand, using
        [`jacobian_vector_product`][nlpreform.models.AbstractNLPModel.jacobian_vector_product]
        and
        [`jacobian_transpose_vector_product`][nlpreform.models.AbstractNLPModel.jacobian_transpose_vector_product].
        Each application of the operator is counted as a product.

        Args:
            x: The variables.

        Returns:
            The Jacobian operator.
        """
        x = check_vector(x, self.meta.nvar, "x").copy()
        return LinearOperator(
            (self.meta.ncon, self.meta.nvar),
            matvec=lambda v: self.jacobian_vector_product(x, np.ravel(v)),
            rmatvec=lambda v: self.jacobian_transpose_vector_product(x, np.ravel(v)),
            dtype=float_dtype(x),
        )

    def hessian_coordinates(
        self,
        x: ArrayLike,
        *,
        obj_weight: float = 1.0,
        y: ArrayLike | None = None,
    ) -> tuple[NDArray[np.intp], NDArray[np.intp], NDArray[np.float64]]:
        """Evaluate the Lagrangian Hessian in coordinate format.

        Hessians are reported as full symmetric matrices, i.e. both triangles
        are included.

        Args:
            x:          The variables.
            obj_weight: The weight of the objective.
            y:          The Lagrange multipliers (default: 0).

        Returns:
            The row indices, column indices and values of the nonzero entries.
        """
        msg = f"{self.__class__.__name__} does not provide a Hessian."
        raise NotImplementedError(msg)

    def hessian(
        self,
        x: ArrayLike,
        *,
        obj_weight: float = 1.0,
        y: ArrayLike | None = None,
    ) -> Matrix:
        """Evaluate the Lagrangian Hessian.

        The default implementation builds a sparse matrix from the output of
        [`hessian_coordinates`][nlpreform.models.AbstractNLPModel.hessian_coordinates].

        Args:
            x:          The variables.
            obj_weight: The weight of the objective.
            y:          The Lagrange multipliers (default: 0).

        Returns:
            The Hessian as a dense array, a sparse matrix or a linear operator.
        """
        rows, cols, values = self.hessian_coordinates(x, obj_weight=obj_weight, y=y)
        return from_coordinates(rows, cols, values, (self.meta.nvar, self.meta.nvar))

    def hessian_vector_product(
        self,
        x: ArrayLike,
        v: ArrayLike,
        out: NDArray[np.float64] | None = None,
        *,
        obj_weight: float = 1.0,
        y: ArrayLike | None = None,
    ) -> NDArray[np.float64]:
        """Evaluate the product of the Lagrangian Hessian with a vector.

        Args:
            x:          The variables.
            v:          The vector.
            out:        Optional output vector.
            obj_weight: The weight of the objective.
            y:          The Lagrange multipliers (default: 0).

        Returns:
            The product.
        """
        msg = f"{self.__class__.__name__} does not provide a Hessian."
        raise NotImplementedError(msg)

    def hessian_operator(
        self,
        x: ArrayLike,
        *,
        obj_weight: float = 1.0,
        y: ArrayLike | None = None,
    ) -> LinearOperator:
        """Return the Lagrangian Hessian as a linear operator.

        Args:
            x:          The variables.
            obj_weight: The weight of the objective.
            y:          The Lagrange multipliers (default: 0).

        Returns:
            The Hessian operator.
        """
        x = check_vector(x, self.meta.nvar, "x").copy()
        y = self._multipliers(y).copy()

        def _matvec(v: NDArray[np.float64]) -> NDArray[np.float64]:
            return self.hessian_vector_product(
                x, np.ravel(v), obj_weight=obj_weight, y=y
            )

        return LinearOperator(
            (self.meta.nvar, self.meta.nvar),
            matvec=_matvec,
            rmatvec=_matvec,
            dtype=float_dtype(x),
        )

    def close(self) -> None:
        """Release the resources held by the model.

        Calling `close` more than once has no effect.
        """
        if self._closed:
            return
        self._closed = True
        logger.debug("Closing %s", self.__class__.__name__)
        self._release()

    def _release(self) -> None:
        """Release resources, called once by `close`."""

    @property
    def closed(self) -> bool:
        """Whether the model has been closed."""
        return self._closed

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def _multipliers(self, y: ArrayLike | None) -> NDArray[Any]:
        if y is None:
            return np.zeros(self.meta.ncon)
        return check_vector(y, self.meta.ncon, "y")


class AbstractNLSModel(AbstractNLPModel):
    r"""Abstract base class for nonlinear least-squares models.

    A least-squares model is an optimization model with the objective

    $$ f(x) = \frac{1}{2}\|F(x)\|^2, $$

    where $F$ is the residual, described by an
    [`NLSMeta`][nlpreform.meta.NLSMeta] object. Subclasses provide the residual
    and its derivatives, the objective and its gradient are derived from them
    by default.

    Least-squares models count their evaluations in a
    [`NLSCounters`][nlpreform.counters.NLSCounters] object.
    """

    def __init__(
        self,
        meta: NLPModelMeta,
        nls_meta: NLSMeta,
        counters: NLSCounters | None = None,
    ) -> None:
        """Initialize the model.

        Args:
            meta:     The metadata of the model.
            nls_meta: The metadata of the residual.
            counters: Optional initial counters.
        """
        super().__init__(meta, NLSCounters() if counters is None else counters)
        self._nls_meta = nls_meta

    @property
    def nls_meta(self) -> NLSMeta:
        """The metadata of the residual."""
        return self._nls_meta

    @property
    def counters(self) -> NLSCounters:
        """The evaluation counters of the model."""
        assert isinstance(self._counters, NLSCounters)
        return self._counters

    def objective(self, x: ArrayLike) -> float:
        """Evaluate the objective function `0.5 * ||F(x)||^2`.

        Args:
            x: The variables.

        Returns:
            The objective value.
        """
        x = check_vector(x, self.meta.nvar, "x")
        self.increment("neval_obj")
        residual = self.residual(x)
        return residual.dtype.type(np.dot(residual, residual) / 2)

    def gradient(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the gradient `J(x)^T F(x)` of the objective.

        Args:
            x:   The variables.
            out: Optional output vector.

        Returns:
            The gradient.
        """
        x = check_vector(x, self.meta.nvar, "x")
        self.increment("neval_grad")
        residual = self.residual(x)
        return self.residual_jacobian_transpose_vector_product(x, residual, out)

    def objective_and_gradient(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> tuple[float, NDArray[np.float64]]:
        """Evaluate the objective and its gradient, sharing the residual.

        Args:
            x:   The variables.
            out: Optional output vector for the gradient.

        Returns:
            The objective value and the gradient.
        """
        x = check_vector(x, self.meta.nvar, "x")
        self.increment("neval_obj")
        self.increment("neval_grad")
        residual = self.residual(x)
        gradient = self.residual_jacobian_transpose_vector_product(x, residual, out)
        return residual.dtype.type(np.dot(residual, residual) / 2), gradient

    @abstractmethod
    def residual(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the residual.

        Args:
            x:   The variables.
            out: Optional output vector.

        Returns:
            The residual, with `nls_meta.nequ` entries.
        """

    @abstractmethod
    def residual_jacobian(self, x: ArrayLike) -> Matrix:
        """Evaluate the Jacobian of the residual.

        Args:
            x: The variables.

        Returns:
            The Jacobian as a dense array, a sparse matrix or a linear operator.
        """

    @abstractmethod
    def residual_jacobian_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the residual Jacobian with a vector.

        Args:
            x:   The variables.
            v:   The vector, with one entry per variable.
            out: Optional output vector.

        Returns:
            The product, with one entry per residual component.
        """

    @abstractmethod
    def residual_jacobian_transpose_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the transposed residual Jacobian with a vector.

        Args:
            x:   The variables.
            v:   The vector, with one entry per residual component.
            out: Optional output vector.

        Returns:
            The product, with one entry per variable.
        """

    @abstractmethod
    def residual_hessian(self, x: ArrayLike, i: int) -> Matrix:
        """Evaluate the Hessian of a residual component.

        Args:
            x: The variables.
            i: The index of the residual component.

        Returns:
            The Hessian of `F_i` as a dense array or a sparse matrix.
        """

    @abstractmethod
    def residual_hessian_vector_product(
        self,
        x: ArrayLike,
        i: int,
        v: ArrayLike,
        out: NDArray[np.float64] | None = None,
    ) -> NDArray[np.float64]:
        """Evaluate the product of the Hessian of a residual component with a vector.

        Args:
            x:   The variables.
            i:   The index of the residual component.
            v:   The vector.
            out: Optional output vector.

        Returns:
            The product.
        """

    def residual_jacobian_operator(self, x: ArrayLike) -> LinearOperator:
        """Return the residual Jacobian as a linear operator.

        Args:
            x: The variables.

        Returns:
            The operator, applying the residual Jacobian products on demand.
        """
        x = check_vector(x, self.meta.nvar, "x").copy()
        return LinearOperator(
            (self.nls_meta.nequ, self.nls_meta.nvar),
            matvec=lambda v: self.residual_jacobian_vector_product(x, np.ravel(v)),
            rmatvec=lambda v: self.residual_jacobian_transpose_vector_product(
                x, np.ravel(v)
            ),
            dtype=float_dtype(x),
        )

    def residual_hessian_operator(self, x: ArrayLike, i: int) -> LinearOperator:
        """Return the Hessian of a residual component as a linear operator.

        Args:
            x: The variables.
            i: The index of the residual component.

        Returns:
            The operator, applying the Hessian products on demand.
        """
        x = check_vector(x, self.meta.nvar, "x").copy()
        i = check_index(i, self.nls_meta.nequ, "i")

        def _matvec(v: NDArray[np.float64]) -> NDArray[np.float64]:
            return self.residual_hessian_vector_product(x, i, np.ravel(v))

        return LinearOperator(
            (self.nls_meta.nvar, self.nls_meta.nvar),
            matvec=_matvec,
            rmatvec=_matvec,
            dtype=float_dtype(x),
        )
