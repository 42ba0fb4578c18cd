"""Models defined by closed-form callables."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

import numpy as np
from scipy import sparse

from nlpreform.utils import check_index, check_vector, store
from nlpreform.utils.linalg import add, coordinates, matvec, rmatvec

from .base import AbstractNLPModel, AbstractNLSModel

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from nlpreform.counters import Counters, NLSCounters
    from nlpreform.meta import NLPModelMeta, NLSMeta
    from nlpreform.utils.linalg import Matrix

VectorFunction = Callable[[Any], Any]
"""A callable mapping a variable vector to a vector or a matrix."""

ConstraintHessian = Callable[[Any, Any], Any]
"""A callable mapping variables and multipliers to `sum_j y_j H_j(x)`."""


class _FunctionConstraints:
    """Constraint evaluation shared by the function models."""

    meta: NLPModelMeta
    c: VectorFunction | None
    jac: VectorFunction | None
    chess: ConstraintHessian | None

    def constraints(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the constraint functions.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        self.increment("neval_cons")
        return store(np.asarray(self._c()(x)), out)

    def jacobian_coordinates(
        self, x: ArrayLike
    ) -> tuple[NDArray[np.intp], NDArray[np.intp], NDArray[np.float64]]:
        """Evaluate the constraint Jacobian in coordinate format.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        return coordinates(self.jacobian(x))

    def jacobian(self, x: ArrayLike) -> Matrix:
        """Evaluate the constraint Jacobian.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        self.increment("neval_jac")
        return self._jac()(x)

    def jacobian_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the constraint Jacobian with a vector.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        v = check_vector(v, self.meta.nvar, "v")
        self.increment("neval_jprod")
        return store(matvec(self._jac()(x), v), out)

    def jacobian_transpose_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the transposed constraint Jacobian with a vector.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        v = check_vector(v, self.meta.ncon, "v")
        self.increment("neval_jtprod")
        return store(rmatvec(self._jac()(x), v), out)

    def _constraint_hessian(
        self, x: NDArray[Any], y: ArrayLike | None
    ) -> Matrix | None:
        y = self._multipliers(y)
        if self.meta.ncon == 0 or self.chess is None:
            return None
        return self.chess(x, y)

    def _c(self) -> VectorFunction:
        if self.c is None:
            msg = f"{self.__class__.__name__} has no constraint function."
            raise NotImplementedError(msg)
        return self.c

    def _jac(self) -> VectorFunction:
        if self.jac is None:
            msg = f"{self.__class__.__name__} has no constraint Jacobian function."
            raise NotImplementedError(msg)
        return self.jac


class FunctionNLPModel(_FunctionConstraints, AbstractNLPModel):
    """An optimization model defined by closed-form callables.

    The objective, the constraints and their derivatives are given as
    callables that accept a `numpy` vector of variables:

    - `f(x)`: The objective value.
    - `grad(x)`: The objective gradient.
    - `hess(x)`: The objective Hessian, as a dense array or sparse matrix.
    - `c(x)`: The constraint values.
    - `jac(x)`: The constraint Jacobian, as a dense array, a sparse matrix
      or a linear operator.
    - `chess(x, y)`: The sum of the constraint Hessians weighted by the
      multipliers `y`.

    Derivative callables that are not given make the corresponding model
    methods raise `NotImplementedError`.

    The callables are available as attributes with the same names, which
    allows transformations to build new callables on top of them.
    """

    def __init__(  # noqa: PLR0913
        self,
        meta: NLPModelMeta,
        f: Callable[[Any], float],
        grad: VectorFunction,
        hess: VectorFunction | None = None,
        c: VectorFunction | None = None,
        jac: VectorFunction | None = None,
        chess: ConstraintHessian | None = None,
        counters: Counters | None = None,
    ) -> None:
        """Initialize the model.

        Args:
            meta:     The metadata of the model.
            f:        The objective function.
            grad:     The objective gradient.
            hess:     The objective Hessian.
            c:        The constraint functions.
            jac:      The constraint Jacobian.
            chess:    The weighted sum of the constraint Hessians.
            counters: Optional initial counters.
        """
        super().__init__(meta, counters)
        self.f = f
        self.grad = grad
        self.hess = hess
        self.c = c
        self.jac = jac
        self.chess = chess

    def objective(self, x: ArrayLike) -> float:
        """Evaluate the objective function.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        self.increment("neval_obj")
        return self.f(x)

    def gradient(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the gradient of the objective function.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        self.increment("neval_grad")
        return store(np.asarray(self.grad(x)), out)

    def hessian_coordinates(
        self,
        x: ArrayLike,
        *,
        obj_weight: float = 1.0,
        y: ArrayLike | None = None,
    ) -> tuple[NDArray[np.intp], NDArray[np.intp], NDArray[np.float64]]:
        """Evaluate the Lagrangian Hessian in coordinate format.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        return coordinates(self.hessian(x, obj_weight=obj_weight, y=y))

    def hessian(
        self,
        x: ArrayLike,
        *,
        obj_weight: float = 1.0,
        y: ArrayLike | None = None,
    ) -> Matrix:
        """Evaluate the Lagrangian Hessian.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        y = self._multipliers(y)
        self.increment("neval_hess")
        return self._lagrangian_hessian(x, obj_weight, y)

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

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        v = check_vector(v, self.meta.nvar, "v")
        y = self._multipliers(y)
        self.increment("neval_hprod")
        return store(matvec(self._lagrangian_hessian(x, obj_weight, y), v), out)

    def _lagrangian_hessian(
        self, x: NDArray[Any], obj_weight: float, y: ArrayLike | None
    ) -> Matrix:
        if self.hess is None:
            msg = f"{self.__class__.__name__} has no Hessian function."
            raise NotImplementedError(msg)
        hessian = obj_weight * self.hess(x)
        constraint_hessian = self._constraint_hessian(x, y)
        if constraint_hessian is None:
            return hessian
        return add(hessian, constraint_hessian)


class FunctionNLSModel(_FunctionConstraints, AbstractNLSModel):
    r"""A least-squares model defined by closed-form callables.

    The residual and its derivatives are given as callables:

    - `F(x)`: The residual vector.
    - `jac_F(x)`: The residual Jacobian, as a dense array, a sparse matrix
      or a linear operator.
    - `hess_F(x, i)`: The Hessian of the `i`-th residual component.

    Constraints are defined by the optional callables `c`, `jac` and `chess`,
    as in [`FunctionNLPModel`][nlpreform.models.FunctionNLPModel].

    The Lagrangian Hessian is given by

    $$ w \left(J_F^T J_F + \sum_i F_i \nabla^2 F_i\right) + \sum_j y_j \nabla^2 c_j. $$
    """

    def __init__(  # noqa: PLR0913
        self,
        meta: NLPModelMeta,
        nls_meta: NLSMeta,
        F: VectorFunction,  # noqa: N803
        jac_F: VectorFunction,  # noqa: N803
        hess_F: Callable[[Any, int], Any] | None = None,  # noqa: N803
        c: VectorFunction | None = None,
        jac: VectorFunction | None = None,
        chess: ConstraintHessian | None = None,
        counters: NLSCounters | None = None,
    ) -> None:
        """Initialize the model.

        Args:
            meta:     The metadata of the model.
            nls_meta: The metadata of the residual.
            F:        The residual.
            jac_F:    The residual Jacobian.
            hess_F:   The Hessians of the residual components.
            c:        The constraint functions.
            jac:      The constraint Jacobian.
            chess:    The weighted sum of the constraint Hessians.
            counters: Optional initial counters.
        """
        super().__init__(meta, nls_meta, counters)
        self.F = F
        self.jac_F = jac_F
        self.hess_F = hess_F
        self.c = c
        self.jac = jac
        self.chess = chess

    def residual(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the residual.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        self.increment("neval_residual")
        return store(np.asarray(self.F(x)), out)

    def residual_jacobian(self, x: ArrayLike) -> Matrix:
        """Evaluate the Jacobian of the residual.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        self.increment("neval_jac_residual")
        return self.jac_F(x)

    def residual_jacobian_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the residual Jacobian with a vector.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        v = check_vector(v, self.meta.nvar, "v")
        self.increment("neval_jprod_residual")
        return store(matvec(self.jac_F(x), v), out)

    def residual_jacobian_transpose_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the transposed residual Jacobian with a vector.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        v = check_vector(v, self.nls_meta.nequ, "v")
        self.increment("neval_jtprod_residual")
        return store(rmatvec(self.jac_F(x), v), out)

    def residual_hessian(self, x: ArrayLike, i: int) -> Matrix:
        """Evaluate the Hessian of a residual component.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        i = check_index(i, self.nls_meta.nequ, "i")
        self.increment("neval_hess_residual")
        return self._hess_F()(x, i)

    def residual_hessian_vector_product(
        self,
        x: ArrayLike,
        i: int,
        v: ArrayLike,
        out: NDArray[np.float64] | None = None,
    ) -> NDArray[np.float64]:
        """Evaluate the product of the Hessian of a residual component with a vector.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        i = check_index(i, self.nls_meta.nequ, "i")
        v = check_vector(v, self.meta.nvar, "v")
        self.increment("neval_hprod_residual")
        return store(matvec(self._hess_F()(x, i), v), out)

    def hessian_coordinates(
        self,
        x: ArrayLike,
        *,
        obj_weight: float = 1.0,
        y: ArrayLike | None = None,
    ) -> tuple[NDArray[np.intp], NDArray[np.intp], NDArray[np.float64]]:
        """Evaluate the Lagrangian Hessian in coordinate format.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        return coordinates(self.hessian(x, obj_weight=obj_weight, y=y))

    def hessian(
        self,
        x: ArrayLike,
        *,
        obj_weight: float = 1.0,
        y: ArrayLike | None = None,
    ) -> Matrix:
        """Evaluate the Lagrangian Hessian.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        y = self._multipliers(y)
        self.increment("neval_hess")
        hessian: Matrix = None
        if obj_weight != 0.0:
            jacobian = self.jac_F(x)
            residual = np.asarray(self.F(x))
            hessian = jacobian.T @ jacobian
            for idx, value in enumerate(residual):
                hessian = add(hessian, value * self._hess_F()(x, idx))
            hessian = obj_weight * hessian
        constraint_hessian = self._constraint_hessian(x, y)
        if constraint_hessian is not None:
            if hessian is None:
                hessian = constraint_hessian
            else:
                hessian = add(hessian, constraint_hessian)
        if hessian is None:
            return sparse.csr_matrix((self.meta.nvar, self.meta.nvar))
        return hessian

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

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        v = check_vector(v, self.meta.nvar, "v")
        y = self._multipliers(y)
        self.increment("neval_hprod")
        result = np.zeros(self.meta.nvar, dtype=np.result_type(x, v, np.float16))
        if obj_weight != 0.0:
            jacobian = self.jac_F(x)
            residual = np.asarray(self.F(x))
            result += rmatvec(jacobian, matvec(jacobian, v))
            for idx, value in enumerate(residual):
                result += value * matvec(self._hess_F()(x, idx), v)
            result *= obj_weight
        constraint_hessian = self._constraint_hessian(x, y)
        if constraint_hessian is not None:
            result += matvec(constraint_hessian, v)
        return store(result, out)

    def _hess_F(self) -> Callable[[Any, int], Any]:  # noqa: N802
        if self.hess_F is None:
            msg = f"{self.__class__.__name__} has no residual Hessian function."
            raise NotImplementedError(msg)
        return self.hess_F
