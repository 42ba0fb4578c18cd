"""Linear least-squares models."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
from scipy import sparse

from nlpreform.meta import NLPModelMeta, NLSMeta
from nlpreform.utils import check_index, check_vector, store
from nlpreform.utils.linalg import coordinates, is_operator, matvec, rmatvec

from .base import AbstractNLSModel

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from nlpreform.counters import NLSCounters
    from nlpreform.utils.linalg import Matrix


class LLSModel(AbstractNLSModel):
    r"""A linear least-squares model with linear constraints.

    This model represents the problem

    $$
    \begin{align}
        \min \quad & \frac{1}{2}\|A x - b\|^2 \\
        \textrm{s.t.} \quad & c_L \leq C x \leq c_U \\
        & \ell \leq x \leq u
    \end{align}
    $$

    The matrices `A` and `C` can be dense `numpy` arrays, `scipy.sparse`
    matrices, or `scipy.sparse.linalg.LinearOperator` objects. Jacobians and
    Hessians are returned in the representation of the matrices they are
    derived from. Coordinate formats are not available for operators.

    All constraints of the model are linear.
    """

    def __init__(  # noqa: PLR0913
        self,
        A: Matrix,  # noqa: N803
        b: ArrayLike,
        C: Matrix | None = None,  # noqa: N803
        *,
        meta: NLPModelMeta | None = None,
        nls_meta: NLSMeta | None = None,
        counters: NLSCounters | None = None,
        **kwargs: Any,  # noqa: ANN401
    ) -> None:
        """Initialize the model.

        If no metadata is given, it is constructed from the shapes of the
        matrices, and from any additional keyword arguments, which are passed
        to [`NLPModelMeta`][nlpreform.meta.NLPModelMeta] (e.g. `lcon`, `ucon`,
        `lvar`, `uvar`, `x0`).

        Args:
            A:        The residual matrix.
            b:        The residual right-hand-side.
            C:        Optional constraint matrix.
            meta:     Optional metadata of the model.
            nls_meta: Optional metadata of the residual.
            counters: Optional initial counters.
            kwargs:   Additional arguments for the metadata.
        """
        nequ, nvar = A.shape
        ncon = 0 if C is None else C.shape[0]
        if C is not None and C.shape[1] != nvar:
            msg = "The residual and constraint matrices have different column counts."
            raise ValueError(msg)
        if meta is None:
            meta = NLPModelMeta(
                nvar=nvar,
                ncon=ncon,
                lin=np.arange(ncon),
                nnzj=0 if C is None else _nnz(C),
                nnzh=nvar * nvar,
                **kwargs,
            )
        if nls_meta is None:
            nls_meta = NLSMeta(nequ=nequ, nvar=nvar, x0=meta.x0, nnzj=_nnz(A), nnzh=0)
        super().__init__(meta, nls_meta, counters)
        self.A = A
        self.b = check_vector(np.asarray(b, dtype=np.float64), nequ, "b")
        self.C = C

    def residual(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the residual.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        self.increment("neval_residual")
        return store(matvec(self.A, x) - self.b, out)

    def residual_jacobian(self, x: ArrayLike) -> Matrix:
        """Evaluate the Jacobian of the residual.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        check_vector(x, self.meta.nvar, "x")
        self.increment("neval_jac_residual")
        return self.A

    def residual_jacobian_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the residual Jacobian with a vector.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        check_vector(x, self.meta.nvar, "x")
        v = check_vector(v, self.meta.nvar, "v")
        self.increment("neval_jprod_residual")
        return store(matvec(self.A, v), out)

    def residual_jacobian_transpose_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the transposed residual Jacobian with a vector.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        check_vector(x, self.meta.nvar, "x")
        v = check_vector(v, self.nls_meta.nequ, "v")
        self.increment("neval_jtprod_residual")
        return store(rmatvec(self.A, v), out)

    def residual_hessian(self, x: ArrayLike, i: int) -> Matrix:
        """Evaluate the Hessian of a residual component.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        check_vector(x, self.meta.nvar, "x")
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
        check_vector(x, self.meta.nvar, "x")
        check_index(i, self.nls_meta.nequ, "i")
        v = check_vector(v, self.meta.nvar, "v")
        self.increment("neval_hprod_residual")
        return store(np.zeros_like(v, dtype=np.result_type(v, np.float16)), out)

    def constraints(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the constraint functions.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = check_vector(x, self.meta.nvar, "x")
        self.increment("neval_cons")
        return store(matvec(self._constraint_matrix(), x), out)

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
        check_vector(x, self.meta.nvar, "x")
        self.increment("neval_jac")
        return self._constraint_matrix()

    def jacobian_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the constraint Jacobian with a vector.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        check_vector(x, self.meta.nvar, "x")
        v = check_vector(v, self.meta.nvar, "v")
        self.increment("neval_jprod")
        return store(matvec(self._constraint_matrix(), v), out)

    def jacobian_transpose_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the transposed constraint Jacobian with a vector.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        check_vector(x, self.meta.nvar, "x")
        v = check_vector(v, self.meta.ncon, "v")
        self.increment("neval_jtprod")
        return store(rmatvec(self._constraint_matrix(), v), out)

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
        check_vector(x, self.meta.nvar, "x")
        self._multipliers(y)
        self.increment("neval_hess")
        if is_operator(self.A):
            return obj_weight * (self.A.H @ self.A)
        if sparse.issparse(self.A):
            return (obj_weight * (self.A.T @ self.A)).tocsr()
        dense = np.asarray(self.A)
        return obj_weight * (dense.T @ dense)

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
        check_vector(x, self.meta.nvar, "x")
        v = check_vector(v, self.meta.nvar, "v")
        self._multipliers(y)
        self.increment("neval_hprod")
        return store(obj_weight * rmatvec(self.A, matvec(self.A, v)), out)

    def _constraint_matrix(self) -> Matrix:
        if self.C is None:
            msg = f"{self.__class__.__name__} has no constraints."
            raise NotImplementedError(msg)
        return self.C


def _nnz(matrix: Matrix) -> int:
    if is_operator(matrix):
        return int(matrix.shape[0] * matrix.shape[1])
    if sparse.issparse(matrix):
        return int(matrix.nnz)
    return int(np.count_nonzero(matrix))
