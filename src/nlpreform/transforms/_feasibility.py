"""This module defines the residual-as-constraints transformation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np
from scipy import sparse

from nlpreform.counters import NLSCounters
from nlpreform.exceptions import UnsupportedModelError
from nlpreform.meta import NLPModelMeta, NLSMeta
from nlpreform.models import AbstractNLSModel
from nlpreform.utils import check_index, check_vector, float_dtype
from nlpreform.utils.linalg import (
    add,
    coordinates,
    hstack_operators,
    is_operator,
    vstack_operators,
)

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from nlpreform.utils.linalg import Matrix

logger = logging.getLogger(__name__)


def residual_as_constraints_meta(
    meta: NLPModelMeta, nls_meta: NLSMeta
) -> tuple[NLPModelMeta, NLSMeta]:
    """Build the metadata of a least-squares model with residual variables.

    The variables `r` are appended to the original variables, and the
    constraints `F(x) - r = 0` are placed before the original constraints.
    The residual variables are unbounded and start at zero. The new
    constraints are nonlinear, and the indices of the original linear and
    nonlinear constraints are shifted accordingly.

    The input metadata is not modified.

    Args:
        meta:     The metadata of the least-squares model.
        nls_meta: The metadata of its residual.

    Returns:
        The metadata of the transformed model and of its residual.
    """
    nequ = nls_meta.nequ
    nvar = meta.nvar + nequ
    assert meta.nln is not None
    x0 = np.concatenate([meta.x0, np.zeros(nequ)])
    new_meta = NLPModelMeta(
        nvar=nvar,
        x0=x0,
        lvar=np.concatenate([meta.lvar, np.full(nequ, -np.inf)]),
        uvar=np.concatenate([meta.uvar, np.full(nequ, np.inf)]),
        ncon=meta.ncon + nequ,
        lcon=np.concatenate([np.zeros(nequ), meta.lcon]),
        ucon=np.concatenate([np.zeros(nequ), meta.ucon]),
        y0=np.concatenate([np.zeros(nequ), meta.y0]),
        lin=meta.lin + nequ,
        nln=np.concatenate([np.arange(nequ), meta.nln + nequ]),
        nnzj=nls_meta.nnzj + nequ + meta.nnzj,
        nnzh=meta.nnzh + nls_meta.nnzh + nequ,
        minimize=True,
        name=meta.name,
    )
    new_nls_meta = NLSMeta(nequ=nequ, nvar=nvar, x0=x0, nnzj=nequ, nnzh=0)
    return new_meta, new_nls_meta


class ResidualAsConstraintsModel(AbstractNLSModel):
    r"""Reformulate a least-squares problem with residual variables.

    A least-squares model with residual $F(x)$,

    $$
    \begin{align}
        \min \quad & \frac{1}{2}\|F(x)\|^2 \\
        \textrm{s.t.} \quad & c_L \leq c(x) \leq c_U \\
        & \ell \leq x \leq u
    \end{align}
    $$

    is presented as the equivalent problem

    $$
    \begin{align}
        \min \quad & \frac{1}{2}\|r\|^2 \\
        \textrm{s.t.} \quad & F(x) - r = 0 \\
        & c_L \leq c(x) \leq c_U \\
        & \ell \leq x \leq u
    \end{align}
    $$

    over the variables $[x; r]$. The constraints are ordered as
    $[F(x) - r; c(x)]$. The evaluation of $F$ and $c$, and of their
    derivatives, is delegated to the wrapped model.

    The transformed model is itself a least-squares model, whose residual is
    the vector $r$ of residual variables.

    The model keeps its own evaluation counters. The counters of the wrapped
    model are only incremented by the evaluations that are delegated to it.

    Closing this model closes the wrapped model.
    """

    def __init__(self, model: AbstractNLSModel) -> None:
        """Initialize the model.

        Args:
            model: The least-squares model to transform.

        Raises:
            UnsupportedModelError: If the model is not a least-squares model.
        """
        if not isinstance(model, AbstractNLSModel):
            msg = (
                f"{self.__class__.__name__} requires a least-squares model, "
                f"got {model.__class__.__name__}."
            )
            raise UnsupportedModelError(msg)
        meta, nls_meta = residual_as_constraints_meta(model.meta, model.nls_meta)
        super().__init__(meta, nls_meta, NLSCounters())
        self._model = model
        logger.debug(
            "Introducing %d residual variables for %s",
            nls_meta.nequ,
            model.__class__.__name__,
        )

    @property
    def model(self) -> AbstractNLSModel:
        """The wrapped least-squares model."""
        return self._model

    def objective(self, x: ArrayLike) -> float:
        """Evaluate the objective function.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        _, r = self._split(x)
        self.increment("neval_obj")
        return np.dot(r, r) / 2

    def gradient(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the gradient of the objective function.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        xr = check_vector(x, self.meta.nvar, "x")
        gradient = self._gradient(xr, out)
        self.increment("neval_grad")
        return gradient

    def objective_and_gradient(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> tuple[float, NDArray[np.float64]]:
        """Evaluate the objective function and its gradient.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        xr = check_vector(x, self.meta.nvar, "x")
        gradient = self._gradient(xr, out)
        self.increment("neval_obj")
        self.increment("neval_grad")
        r = xr[self._model.meta.nvar :]
        return np.dot(r, r) / 2, gradient

    def constraints(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the constraint functions.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        xr = check_vector(x, self.meta.nvar, "x")
        x, r = self._split(xr)
        nequ = self.nls_meta.nequ
        result = self._output(out, self.meta.ncon, xr)
        self.increment("neval_cons")
        self._model.residual(x, out=result[:nequ])
        result[:nequ] -= r
        if self._model.meta.ncon > 0:
            self._model.constraints(x, out=result[nequ:])
        return result

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

        The Jacobian has the block structure `[[J_F, -I], [J_c, 0]]`. It is
        returned as a sparse matrix if either of the wrapped Jacobians is
        sparse, and as a dense array if both are dense. If either of them is
        a linear operator, the Jacobian is returned as an operator.

        Args:
            x: The variables.

        Returns:
            The Jacobian.
        """
        x, _ = self._split(x)
        nequ = self.nls_meta.nequ
        ncon = self._model.meta.ncon
        self.increment("neval_jac")
        jac_residual = self._model.residual_jacobian(x)
        jac_constraints = self._model.jacobian(x) if ncon > 0 else None
        if is_operator(jac_residual) or is_operator(jac_constraints):
            top = hstack_operators(jac_residual, -sparse.identity(nequ, format="csr"))
            if jac_constraints is None:
                return top
            return vstack_operators(
                top, hstack_operators(jac_constraints, sparse.csr_matrix((ncon, nequ)))
            )
        if sparse.issparse(jac_residual) or sparse.issparse(jac_constraints):
            blocks: list[list[Any]] = [
                [sparse.csr_matrix(jac_residual), -sparse.identity(nequ, format="csr")]
            ]
            if jac_constraints is not None:
                blocks.append([sparse.csr_matrix(jac_constraints), None])
            return sparse.bmat(blocks, format="csr")
        top = np.hstack([np.asarray(jac_residual), -np.eye(nequ)])
        if jac_constraints is None:
            return top
        bottom = np.hstack([np.asarray(jac_constraints), np.zeros((ncon, nequ))])
        return np.vstack([top, bottom])

    def jacobian_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the constraint Jacobian with a vector.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x, _ = self._split(x)
        v = check_vector(v, self.meta.nvar, "v")
        n = self._model.meta.nvar
        nequ = self.nls_meta.nequ
        result = self._output(out, self.meta.ncon, x, v)
        self.increment("neval_jprod")
        self._model.residual_jacobian_vector_product(x, v[:n], out=result[:nequ])
        result[:nequ] -= v[n:]
        if self._model.meta.ncon > 0:
            self._model.jacobian_vector_product(x, v[:n], out=result[nequ:])
        return result

    def jacobian_transpose_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the transposed constraint Jacobian with a vector.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x, _ = self._split(x)
        v = check_vector(v, self.meta.ncon, "v")
        n = self._model.meta.nvar
        nequ = self.nls_meta.nequ
        result = self._output(out, self.meta.nvar, x, v)
        self.increment("neval_jtprod")
        self._model.residual_jacobian_transpose_vector_product(
            x, v[:nequ], out=result[:n]
        )
        if self._model.meta.ncon > 0:
            result[:n] += self._model.jacobian_transpose_vector_product(x, v[nequ:])
        result[n:] = -v[:nequ]
        return result

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
        r"""Evaluate the Lagrangian Hessian.

        The Hessian is block diagonal:

        $$
        \begin{bmatrix}
            \sum_j y_{c,j} \nabla^2 c_j(x) + \sum_i y_{F,i} \nabla^2 F_i(x) & 0 \\
            0 & w I
        \end{bmatrix}
        $$

        where $y_F$ are the multipliers of the residual constraints and $y_c$
        those of the original constraints. If the Hessian of the wrapped model
        is only available as an operator, an operator is returned.

        Args:
            x:          The variables.
            obj_weight: The weight of the objective.
            y:          The Lagrange multipliers (default: 0).

        Returns:
            The Hessian.
        """
        x, _ = self._split(x)
        y = self._multipliers(y)
        n = self._model.meta.nvar
        nequ = self.nls_meta.nequ
        self.increment("neval_hess")
        hessian: Matrix = sparse.csr_matrix((n, n))
        if self._model.meta.ncon > 0:
            hessian = self._model.hessian(x, obj_weight=0.0, y=y[nequ:])
            if is_operator(hessian):
                return self.hessian_operator(
                    np.concatenate([x, np.zeros(nequ)]), obj_weight=obj_weight, y=y
                )
        for idx in range(nequ):
            hessian = add(hessian, y[idx] * self._model.residual_hessian(x, idx))
        if sparse.issparse(hessian):
            return sparse.block_diag(
                [hessian, obj_weight * sparse.identity(nequ, format="csr")],
                format="csr",
            )
        result = np.zeros((n + nequ, n + nequ), dtype=hessian.dtype)
        result[:n, :n] = hessian
        result[n:, n:] = obj_weight * np.eye(nequ)
        return result

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
        x, _ = self._split(x)
        v = check_vector(v, self.meta.nvar, "v")
        y = self._multipliers(y)
        n = self._model.meta.nvar
        nequ = self.nls_meta.nequ
        result = self._output(out, self.meta.nvar, x, v)
        self.increment("neval_hprod")
        if self._model.meta.ncon > 0:
            self._model.hessian_vector_product(
                x, v[:n], out=result[:n], obj_weight=0.0, y=y[nequ:]
            )
        else:
            result[:n] = 0.0
        for idx in range(nequ):
            result[:n] += y[idx] * self._model.residual_hessian_vector_product(
                x, idx, v[:n]
            )
        result[n:] = obj_weight * v[n:]
        return result

    def residual(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the residual.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        x, r = self._split(x)
        result = self._output(out, self.nls_meta.nequ, x)
        self.increment("neval_residual")
        result[:] = r
        return result

    def residual_jacobian(self, x: ArrayLike) -> Matrix:
        """Evaluate the Jacobian of the residual.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        self._split(x)
        n = self._model.meta.nvar
        nequ = self.nls_meta.nequ
        self.increment("neval_jac_residual")
        return sparse.hstack(
            [sparse.csr_matrix((nequ, n)), sparse.identity(nequ, format="csr")],
            format="csr",
        )

    def residual_jacobian_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the residual Jacobian with a vector.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        x, _ = self._split(x)
        v = check_vector(v, self.meta.nvar, "v")
        result = self._output(out, self.nls_meta.nequ, x, v)
        self.increment("neval_jprod_residual")
        result[:] = v[self._model.meta.nvar :]
        return result

    def residual_jacobian_transpose_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the transposed residual Jacobian with a vector.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        xr = check_vector(x, self.meta.nvar, "x")
        v = check_vector(v, self.nls_meta.nequ, "v")
        n = self._model.meta.nvar
        result = self._output(out, self.meta.nvar, xr, v)
        self.increment("neval_jtprod_residual")
        result[:n] = 0.0
        result[n:] = v
        return result

    def residual_hessian(self, x: ArrayLike, i: int) -> Matrix:
        """Evaluate the Hessian of a residual component.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        self._split(x)
        check_index(i, self.nls_meta.nequ, "i")
        self.increment("neval_hess_residual")
        return sparse.csr_matrix((self.meta.nvar, self.meta.nvar))

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
        xr = check_vector(x, self.meta.nvar, "x")
        check_index(i, self.nls_meta.nequ, "i")
        v = check_vector(v, self.meta.nvar, "v")
        result = self._output(out, self.meta.nvar, xr, v)
        self.increment("neval_hprod_residual")
        result[:] = 0.0
        return result

    def _release(self) -> None:
        self._model.close()

    def _split(self, x: ArrayLike) -> tuple[NDArray[Any], NDArray[Any]]:
        xr = check_vector(x, self.meta.nvar, "x")
        n = self._model.meta.nvar
        return xr[:n], xr[n:]

    def _gradient(
        self, xr: NDArray[Any], out: NDArray[Any] | None
    ) -> NDArray[Any]:
        n = self._model.meta.nvar
        gradient = self._output(out, self.meta.nvar, xr)
        gradient[:n] = 0.0
        gradient[n:] = xr[n:]
        return gradient

    @staticmethod
    def _output(
        out: NDArray[Any] | None, size: int, *arrays: NDArray[Any]
    ) -> NDArray[Any]:
        if out is None:
            return np.empty(size, dtype=float_dtype(*arrays))
        return check_vector(out, size, "out")
