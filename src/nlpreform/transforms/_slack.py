"""This module defines the slack variable transformation."""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any, Callable

import numpy as np
from scipy import sparse

from nlpreform.exceptions import UnsupportedModelError
from nlpreform.meta import NLPModelMeta, NLSMeta
from nlpreform.models import (
    AbstractNLPModel,
    AbstractNLSModel,
    FunctionNLPModel,
    FunctionNLSModel,
    LLSModel,
)
from nlpreform.utils import check_vector, float_dtype
from nlpreform.utils.linalg import (
    hstack_blocks,
    is_operator,
    pad_columns,
    pad_square,
    selection_matrix,
    selection_operator,
)

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from nlpreform.utils.linalg import Matrix

logger = logging.getLogger(__name__)

SlackBuilder = Callable[[Any], AbstractNLPModel]
"""A callable building the slack form of a model of a specific kind."""

_SPECIALIZATIONS: list[tuple[type[AbstractNLPModel], SlackBuilder]] = []


def slack_rows(meta: NLPModelMeta) -> NDArray[np.intp]:
    """Return the constraint rows that receive a slack variable.

    The rows are ordered as `[jlow; jupp; jrng]`, which is also the order of
    the slack variables. Equality constraints do not receive a slack.

    Args:
        meta: The metadata of the model.

    Returns:
        The constraint index of each slack variable.
    """
    return np.concatenate([meta.jlow, meta.jupp, meta.jrng]).astype(np.intp)


def slack_meta(meta: NLPModelMeta) -> NLPModelMeta:
    """Build the metadata of the slack form of a model.

    A slack variable `s` is added for each constraint that is not an equality
    constraint, and the constraint `c_L <= c(x) <= c_U` is replaced by
    `c(x) - s = 0` and `c_L <= s <= c_U`. The bounds of the slack variables
    are copied verbatim from the constraint bounds, and the slack variables
    start at zero. Equality constraints are kept as they are.

    The input metadata is not modified.

    Args:
        meta: The metadata of the model.

    Returns:
        The metadata of the slack form.
    """
    rows = slack_rows(meta)
    lcon = np.zeros(meta.ncon)
    ucon = np.zeros(meta.ncon)
    lcon[meta.jfix] = meta.lcon[meta.jfix]
    ucon[meta.jfix] = meta.ucon[meta.jfix]
    assert meta.nnzj is not None
    return NLPModelMeta(
        nvar=meta.nvar + rows.size,
        x0=np.concatenate([meta.x0, np.zeros(rows.size)]),
        lvar=np.concatenate([meta.lvar, meta.lcon[rows]]),
        uvar=np.concatenate([meta.uvar, meta.ucon[rows]]),
        ncon=meta.ncon,
        lcon=lcon,
        ucon=ucon,
        y0=meta.y0,
        lin=meta.lin,
        nln=meta.nln,
        nnzj=meta.nnzj + rows.size,
        nnzh=meta.nnzh,
        minimize=meta.minimize,
        name=meta.name,
    )


def _has_inequalities(model: AbstractNLPModel) -> bool:
    if model.meta.ncon == model.meta.jfix.size:
        logger.debug(
            "%s has no inequality constraints, no slack variables are added",
            model.__class__.__name__,
        )
        return False
    return True


class SlackBoundModel(AbstractNLPModel):
    r"""Convert inequality constraints to equalities with bounded slacks.

    The problem

    $$
    \begin{align}
        \min \quad & f(x) \\
        \textrm{s.t.} \quad & c_L \leq c(x) \leq c_U \\
        & \ell \leq x \leq u
    \end{align}
    $$

    is presented as the equivalent problem

    $$
    \begin{align}
        \min \quad & f(x) \\
        \textrm{s.t.} \quad & c(x) - E s = 0 \\
        & c_L \leq s \leq c_U \\
        & \ell \leq x \leq u
    \end{align}
    $$

    over the variables $[x; s]$, where $E$ scatters the slack variables into
    the rows of the inequality constraints. The slacks are ordered by the
    index sets `jlow`, `jupp` and `jrng` of the model metadata. The rows
    `[jlow; jupp; jrng]` are computed once, on construction, and every
    evaluation subtracts the slacks from them in a single pass. Equality
    constraints are kept and do not receive a slack. All evaluations are
    delegated to the wrapped model.

    If the wrapped model has no inequality constraints, no transformation is
    needed, and the constructor returns the wrapped model itself. If the
    wrapped model is a least-squares model, a
    [`SlackBoundNLSModel`][nlpreform.transforms.SlackBoundNLSModel] is
    returned, which also provides the residual.

    This model does not keep counters of its own: the
    [`counters`][nlpreform.transforms.SlackBoundModel.counters] property
    returns the counters of the wrapped model, which are incremented by the
    delegated evaluations.

    Closing this model closes the wrapped model.
    """

    def __new__(cls, model: AbstractNLPModel) -> Any:  # noqa: ANN401, PYI034
        """Create the model, or return the wrapped model if it has no slacks.

        Args:
            model: The model to transform.

        Returns:
            A new slack model, or the model itself.
        """
        if not _has_inequalities(model):
            return model
        if cls is SlackBoundModel and isinstance(model, AbstractNLSModel):
            return super().__new__(SlackBoundNLSModel)
        return super().__new__(cls)

    def __init__(self, model: AbstractNLPModel) -> None:
        """Initialize the model.

        Args:
            model: The model to transform.
        """
        if self is model:
            return
        AbstractNLPModel.__init__(self, slack_meta(model.meta), model.counters)
        self._model = model
        self._slack_rows = slack_rows(model.meta)
        logger.debug(
            "Adding %d slack variables to %s",
            self._slack_rows.size,
            model.__class__.__name__,
        )

    @property
    def model(self) -> AbstractNLPModel:
        """The wrapped model."""
        return self._model

    @property
    def counters(self) -> Any:  # noqa: ANN401
        """The evaluation counters of the wrapped model."""
        return self._model.counters

    @property
    def nslack(self) -> int:
        """The number of slack variables."""
        return int(self._slack_rows.size)

    def objective(self, x: ArrayLike) -> float:
        """Evaluate the objective function.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        return self._model.objective(self._variables(x))

    def gradient(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the gradient of the objective function.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = self._variables(x)
        result = self._output(out, self.meta.nvar, x)
        self._model.gradient(x, out=result[: x.size])
        result[x.size :] = 0.0
        return result

    def objective_and_gradient(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> tuple[float, NDArray[np.float64]]:
        """Evaluate the objective function and its gradient.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = self._variables(x)
        result = self._output(out, self.meta.nvar, x)
        value, _ = self._model.objective_and_gradient(x, out=result[: x.size])
        result[x.size :] = 0.0
        return value, result

    def constraints(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the constraint functions.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x, s = self._split(x)
        result = self._output(out, self.meta.ncon, x)
        self._model.constraints(x, out=result)
        result[self._slack_rows] -= s
        return result

    def jacobian_coordinates(
        self, x: ArrayLike
    ) -> tuple[NDArray[np.intp], NDArray[np.intp], NDArray[np.float64]]:
        """Evaluate the constraint Jacobian in coordinate format.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = self._variables(x)
        rows, cols, values = self._model.jacobian_coordinates(x)
        return (
            np.concatenate([rows, self._slack_rows]).astype(np.intp),
            np.concatenate([cols, x.size + np.arange(self.nslack)]).astype(np.intp),
            np.concatenate([values, np.full(self.nslack, -1.0, dtype=values.dtype)]),
        )

    def jacobian(self, x: ArrayLike) -> Matrix:
        """Evaluate the constraint Jacobian `[J, -E]`.

        The Jacobian is returned as a sparse matrix, unless the wrapped model
        returns a linear operator, in which case an operator is returned.

        Args:
            x: The variables.

        Returns:
            The Jacobian.
        """
        jacobian = self._model.jacobian(self._variables(x))
        if is_operator(jacobian):
            selection = selection_operator(self._slack_rows, self.meta.ncon, sign=-1.0)
            return hstack_blocks(jacobian, selection)
        return hstack_blocks(
            jacobian, selection_matrix(self._slack_rows, self.meta.ncon, sign=-1.0)
        )

    def jacobian_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the constraint Jacobian with a vector.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = self._variables(x)
        v = check_vector(v, self.meta.nvar, "v")
        result = self._output(out, self.meta.ncon, x, v)
        self._model.jacobian_vector_product(x, v[: x.size], out=result)
        result[self._slack_rows] -= v[x.size :]
        return result

    def jacobian_transpose_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the transposed constraint Jacobian with a vector.

        See the [nlpreform.models.AbstractNLPModel][] abstract base class.

        # noqa
        """
        x = self._variables(x)
        v = check_vector(v, self.meta.ncon, "v")
        result = self._output(out, self.meta.nvar, x, v)
        self._model.jacobian_transpose_vector_product(x, v, out=result[: x.size])
        result[x.size :] = -v[self._slack_rows]
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
        return self._model.hessian_coordinates(
            self._variables(x), obj_weight=obj_weight, y=y
        )

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
        hessian = self._model.hessian(self._variables(x), obj_weight=obj_weight, y=y)
        return pad_square(hessian, self.nslack)

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
        x = self._variables(x)
        v = check_vector(v, self.meta.nvar, "v")
        result = self._output(out, self.meta.nvar, x, v)
        self._model.hessian_vector_product(
            x, v[: x.size], out=result[: x.size], obj_weight=obj_weight, y=y
        )
        result[x.size :] = 0.0
        return result

    def _release(self) -> None:
        self._model.close()

    def _split(self, x: ArrayLike) -> tuple[NDArray[Any], NDArray[Any]]:
        xs = check_vector(x, self.meta.nvar, "x")
        n = self._model.meta.nvar
        return xs[:n], xs[n:]

    def _variables(self, x: ArrayLike) -> NDArray[Any]:
        return self._split(x)[0]

    @staticmethod
    def _output(
        out: NDArray[Any] | None, size: int, *arrays: NDArray[Any]
    ) -> NDArray[Any]:
        if out is None:
            return np.empty(size, dtype=float_dtype(*arrays))
        return check_vector(out, size, "out")


class SlackBoundNLSModel(SlackBoundModel, AbstractNLSModel):
    """The slack form of a least-squares model.

    This model adds slack variables in the same way as
    [`SlackBoundModel`][nlpreform.transforms.SlackBoundModel], and exposes the
    residual of the wrapped model as a function of the extended variables. The
    residual does not depend on the slack variables, hence its derivatives are
    padded with zeros.
    """

    def __init__(self, model: AbstractNLSModel) -> None:
        """Initialize the model.

        Args:
            model: The least-squares model to transform.

        Raises:
            UnsupportedModelError: If the model is not a least-squares model.
        """
        if self is model:
            return
        if not isinstance(model, AbstractNLSModel):
            msg = (
                f"{self.__class__.__name__} requires a least-squares model, "
                f"got {model.__class__.__name__}."
            )
            raise UnsupportedModelError(msg)
        super().__init__(model)
        nls_meta = model.nls_meta
        self._nls_meta = NLSMeta(
            nequ=nls_meta.nequ,
            nvar=self.meta.nvar,
            x0=self.meta.x0,
            nnzj=nls_meta.nnzj,
            nnzh=nls_meta.nnzh,
        )

    @property
    def model(self) -> AbstractNLSModel:
        """The wrapped least-squares model."""
        assert isinstance(self._model, AbstractNLSModel)
        return self._model

    def residual(
        self, x: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the residual.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        x = self._variables(x)
        if out is not None:
            check_vector(out, self.nls_meta.nequ, "out")
        return self.model.residual(x, out=out)

    def residual_jacobian(self, x: ArrayLike) -> Matrix:
        """Evaluate the Jacobian of the residual.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        jacobian = self.model.residual_jacobian(self._variables(x))
        return pad_columns(jacobian, self.nslack)

    def residual_jacobian_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the residual Jacobian with a vector.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        x = self._variables(x)
        v = check_vector(v, self.meta.nvar, "v")
        if out is not None:
            check_vector(out, self.nls_meta.nequ, "out")
        return self.model.residual_jacobian_vector_product(x, v[: x.size], out=out)

    def residual_jacobian_transpose_vector_product(
        self, x: ArrayLike, v: ArrayLike, out: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Evaluate the product of the transposed residual Jacobian with a vector.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        x = self._variables(x)
        v = check_vector(v, self.nls_meta.nequ, "v")
        result = self._output(out, self.meta.nvar, x, v)
        self.model.residual_jacobian_transpose_vector_product(
            x, v, out=result[: x.size]
        )
        result[x.size :] = 0.0
        return result

    def residual_hessian(self, x: ArrayLike, i: int) -> Matrix:
        """Evaluate the Hessian of a residual component.

        See the [nlpreform.models.AbstractNLSModel][] abstract base class.

        # noqa
        """
        hessian = self.model.residual_hessian(self._variables(x), i)
        return pad_square(hessian, self.nslack)

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
        x = self._variables(x)
        v = check_vector(v, self.meta.nvar, "v")
        result = self._output(out, self.meta.nvar, x, v)
        self.model.residual_hessian_vector_product(
            x, i, v[: x.size], out=result[: x.size]
        )
        result[x.size :] = 0.0
        return result


def register_slack_specialization(
    model_type: type[AbstractNLPModel], builder: SlackBuilder
) -> None:
    """Register a specialized slack builder for a kind of model.

    The [`slack_model`][nlpreform.transforms.slack_model] factory uses the
    builder for models that are instances of `model_type`. Registrations are
    consulted in reverse order, hence a later registration takes precedence
    over an earlier one for the same type, or for a base type.

    Args:
        model_type: The model class handled by the builder.
        builder:    A callable returning the slack form of a model.
    """
    _SPECIALIZATIONS.append((model_type, builder))


def slack_model(model: AbstractNLPModel) -> AbstractNLPModel:
    """Return the slack form of a model.

    If a specialized builder is registered for the kind of the model, it is
    used to produce a new model of the same kind. Otherwise, the model is
    wrapped in a [`SlackBoundModel`][nlpreform.transforms.SlackBoundModel].
    Models without inequality constraints are returned unchanged.

    Args:
        model: The model to transform.

    Returns:
        The slack form of the model.
    """
    if not _has_inequalities(model):
        return model
    for model_type, builder in reversed(_SPECIALIZATIONS):
        if isinstance(model, model_type):
            logger.debug(
                "Using %s for %s", builder.__name__, model.__class__.__name__
            )
            return builder(model)
    logger.debug("Using the generic slack wrapper for %s", model.__class__.__name__)
    return SlackBoundModel(model)


def slack_function_model(
    model: FunctionNLPModel | FunctionNLSModel,
) -> FunctionNLPModel | FunctionNLSModel:
    """Build the slack form of a model defined by callables.

    The result is a new model of the same kind, whose callables evaluate the
    original callables on the leading variables and account for the slack
    variables in closed form. The constraint Jacobian is `[J, -E]`, dense if
    the original Jacobian is dense, sparse if it is sparse. Derivatives with
    respect to the slack variables of the objective and the residual are zero.

    The new model starts with a copy of the counters of the original model.
    The original model is not referenced by the result.

    Args:
        model: The function model to transform.

    Returns:
        The slack form, or the model itself if it has no inequalities.

    Raises:
        UnsupportedModelError: If the model is not a function model.
    """
    if not isinstance(model, (FunctionNLPModel, FunctionNLSModel)):
        msg = f"Expected a function model, got {model.__class__.__name__}."
        raise UnsupportedModelError(msg)
    if not _has_inequalities(model):
        return model

    meta = slack_meta(model.meta)
    rows = slack_rows(model.meta)
    n = model.meta.nvar
    ns = rows.size
    ncon = model.meta.ncon
    c, jac, chess = model.c, model.jac, model.chess

    def _constraints(x: NDArray[Any]) -> NDArray[Any]:
        assert c is not None
        values = np.array(c(x[:n]))
        values[rows] -= x[n:]
        return values

    def _jacobian(x: NDArray[Any]) -> Matrix:
        assert jac is not None
        jacobian = jac(x[:n])
        if is_operator(jacobian):
            return hstack_blocks(
                jacobian, selection_operator(rows, ncon, sign=-1.0)
            )
        return hstack_blocks(
            jacobian,
            selection_matrix(
                rows, ncon, sign=-1.0, dense=not sparse.issparse(jacobian)
            ),
        )

    def _constraint_hessian(x: NDArray[Any], y: NDArray[Any]) -> Matrix:
        assert chess is not None
        return pad_square(chess(x[:n], y), ns)

    constraint_functions: dict[str, Any] = {
        "c": None if c is None else _constraints,
        "jac": None if jac is None else _jacobian,
        "chess": None if chess is None else _constraint_hessian,
    }
    counters = copy.deepcopy(model.counters)
    logger.debug("Adding %d slack variables to the function model", ns)

    if isinstance(model, FunctionNLSModel):
        residual, residual_jacobian = model.F, model.jac_F
        residual_hessian = model.hess_F
        nls_meta = NLSMeta(
            nequ=model.nls_meta.nequ,
            nvar=meta.nvar,
            x0=meta.x0,
            nnzj=model.nls_meta.nnzj,
            nnzh=model.nls_meta.nnzh,
        )
        return FunctionNLSModel(
            meta,
            nls_meta,
            lambda x: residual(x[:n]),
            lambda x: pad_columns(residual_jacobian(x[:n]), ns),
            hess_F=(
                None
                if residual_hessian is None
                else lambda x, i: pad_square(residual_hessian(x[:n], i), ns)
            ),
            counters=counters,
            **constraint_functions,
        )

    f, grad, hess = model.f, model.grad, model.hess

    def _gradient(x: NDArray[Any]) -> NDArray[Any]:
        gradient = np.asarray(grad(x[:n]))
        return np.concatenate([gradient, np.zeros(ns, dtype=gradient.dtype)])

    return FunctionNLPModel(
        meta,
        lambda x: f(x[:n]),
        _gradient,
        hess=None if hess is None else lambda x: pad_square(hess(x[:n]), ns),
        counters=counters,
        **constraint_functions,
    )


def slack_linear_least_squares_model(model: LLSModel) -> LLSModel:
    """Build the slack form of a linear least-squares model.

    The result is a new linear least-squares model with the residual matrix
    `[A, 0]` and the constraint matrix `[C, -E]`. The matrices keep the
    representation of the original matrices: dense, sparse, or linear
    operators.

    The new model starts with a copy of the counters of the original model.
    The original model is not referenced by the result.

    Args:
        model: The linear least-squares model to transform.

    Returns:
        The slack form, or the model itself if it has no inequalities.

    Raises:
        UnsupportedModelError: If the model is not a linear least-squares model.
    """
    if not isinstance(model, LLSModel):
        msg = f"Expected a linear least-squares model, got {model.__class__.__name__}."
        raise UnsupportedModelError(msg)
    if not _has_inequalities(model):
        return model

    meta = slack_meta(model.meta)
    rows = slack_rows(model.meta)
    ncon = model.meta.ncon
    constraint_matrix = model.C
    assert constraint_matrix is not None
    if is_operator(constraint_matrix):
        selection = selection_operator(rows, ncon, sign=-1.0)
    else:
        selection = selection_matrix(
            rows, ncon, sign=-1.0, dense=not sparse.issparse(constraint_matrix)
        )
    counters = copy.deepcopy(model.counters)
    nls_meta = NLSMeta(
        nequ=model.nls_meta.nequ,
        nvar=meta.nvar,
        x0=meta.x0,
        nnzj=model.nls_meta.nnzj,
        nnzh=0,
    )
    logger.debug(
        "Adding %d slack variables to the linear least-squares model", rows.size
    )
    return LLSModel(
        pad_columns(model.A, rows.size),
        model.b,
        hstack_blocks(constraint_matrix, selection),
        meta=meta,
        nls_meta=nls_meta,
        counters=counters,
    )


register_slack_specialization(FunctionNLPModel, slack_function_model)
register_slack_specialization(FunctionNLSModel, slack_function_model)
register_slack_specialization(LLSModel, slack_linear_least_squares_model)
