from typing import Any

import numpy as np
import pytest
from scipy import sparse
from scipy.sparse.linalg import LinearOperator

from nlpreform.exceptions import DimensionError, UnsupportedModelError
from nlpreform.models import (
    AbstractNLPModel,
    FunctionNLPModel,
    FunctionNLSModel,
    LLSModel,
)
from nlpreform.transforms import (
    ResidualAsConstraintsModel,
    SlackBoundModel,
    SlackBoundNLSModel,
)


def test_nls_objective_and_gradient(nls_model: Any) -> None:
    x = nls_model.meta.x0
    assert np.allclose(nls_model.residual(x), [-0.5, 0.75])
    assert np.isclose(nls_model.objective(x), 0.40625)
    assert np.allclose(nls_model.gradient(x), [0.25, -0.25, 2.25])
    value, gradient = nls_model.objective_and_gradient(x)
    assert np.isclose(value, 0.40625)
    assert np.allclose(gradient, [0.25, -0.25, 2.25])
    assert nls_model.neval("neval_obj") == 2
    assert nls_model.neval("neval_grad") == 2
    assert nls_model.neval("neval_residual") == 4
    assert nls_model.neval("neval_jtprod_residual") == 2


def test_output_argument(nls_model: Any) -> None:
    x = nls_model.meta.x0
    out = np.zeros(nls_model.meta.ncon)
    result = nls_model.constraints(x, out=out)
    assert result is out
    assert np.allclose(out, [3.0, 1.25, -1.0, 1.5])


@pytest.mark.parametrize("model_name", ["nls_model", "sparse_nls_model", "nlp_model"])
def test_function_model_derivatives(
    model_name: str, request: Any, rng: Any, dense: Any
) -> None:
    model = request.getfixturevalue(model_name)
    x = rng.standard_normal(model.meta.nvar)
    v = rng.standard_normal(model.meta.nvar)
    w = rng.standard_normal(model.meta.ncon)
    y = rng.standard_normal(model.meta.ncon)

    jacobian = dense(model.jacobian(x))
    assert np.allclose(model.jacobian_vector_product(x, v), jacobian @ v)
    assert np.allclose(model.jacobian_transpose_vector_product(x, w), jacobian.T @ w)
    assert np.allclose(dense(model.jacobian_operator(x)), jacobian)
    rows, cols, values = model.jacobian_coordinates(x)
    assert np.allclose(
        sparse.coo_matrix((values, (rows, cols)), shape=jacobian.shape).toarray(),
        jacobian,
    )

    hessian = dense(model.hessian(x, obj_weight=0.5, y=y))
    assert np.allclose(hessian, hessian.T)
    assert np.allclose(
        model.hessian_vector_product(x, v, obj_weight=0.5, y=y), hessian @ v
    )
    assert np.allclose(dense(model.hessian_operator(x, obj_weight=0.5, y=y)), hessian)
    rows, cols, values = model.hessian_coordinates(x, obj_weight=0.5, y=y)
    assert np.allclose(
        sparse.coo_matrix((values, (rows, cols)), shape=hessian.shape).toarray(),
        hessian,
    )


def test_nls_hessian(nls_model: Any) -> None:
    x = np.array([1.0, 2.0, 3.0])
    residual = nls_model.residual(x)
    jacobian = nls_model.residual_jacobian(x)
    expected = jacobian.T @ jacobian + sum(
        residual[idx] * nls_model.residual_hessian(x, idx) for idx in range(2)
    )
    assert np.allclose(nls_model.hessian(x), expected)
    assert np.allclose(nls_model.hessian(x, obj_weight=0.0), 0.0)


def test_nls_residual_operators(nls_model: Any, rng: Any, dense: Any) -> None:
    x = rng.standard_normal(3)
    jacobian = nls_model.residual_jacobian(x)
    assert np.allclose(dense(nls_model.residual_jacobian_operator(x)), jacobian)
    for idx in range(2):
        assert np.allclose(
            dense(nls_model.residual_hessian_operator(x, idx)),
            nls_model.residual_hessian(x, idx),
        )


def test_dimension_errors(nls_model: Any) -> None:
    with pytest.raises(
        DimensionError, match="size mismatch for `x`: expected length 3, got 2"
    ):
        nls_model.objective(np.zeros(2))
    with pytest.raises(DimensionError, match="size mismatch for `v`"):
        nls_model.jacobian_vector_product(np.zeros(3), np.zeros(4))
    with pytest.raises(DimensionError, match="size mismatch for `y`"):
        nls_model.hessian(np.zeros(3), y=np.zeros(3))
    with pytest.raises(DimensionError, match="size mismatch for `x`"):
        nls_model.residual(np.zeros((3, 1)))
    assert nls_model.counters.sum() == 0


def test_output_size_errors(single_residual_model: Any, lls_factory: Any) -> None:
    x = np.zeros(3)
    with pytest.raises(DimensionError, match="expected length 1, got 4"):
        single_residual_model.residual(x, out=np.full(4, 7.0))
    with pytest.raises(DimensionError, match="size mismatch for `out`"):
        single_residual_model.gradient(x, out=np.zeros(5))
    with pytest.raises(DimensionError, match="size mismatch for `out`"):
        single_residual_model.constraints(x, out=np.zeros(2))
    with pytest.raises(DimensionError, match="size mismatch for `out`"):
        lls_factory("dense").residual(x, out=np.zeros(3))


def test_residual_index_error(nls_model: Any) -> None:
    with pytest.raises(IndexError, match=r"`i` must be in the range \[0, 2\)"):
        nls_model.residual_hessian(np.zeros(3), 2)


def test_missing_operations(unconstrained_nls_model: Any) -> None:
    x = np.zeros(3)
    with pytest.raises(NotImplementedError, match="has no constraint function"):
        unconstrained_nls_model.constraints(x)

    model = FunctionNLPModel(
        unconstrained_nls_model.meta, lambda x: float(x @ x), lambda x: 2 * x
    )
    with pytest.raises(NotImplementedError, match="has no Hessian function"):
        model.hessian(x)


def test_abstract_defaults(unconstrained_nls_model: Any) -> None:
    class _Quadratic(AbstractNLPModel):
        def objective(self, x: Any) -> float:
            return float(np.dot(x, x))

        def gradient(self, x: Any, out: Any = None) -> Any:
            return 2 * np.asarray(x)

    model = _Quadratic(unconstrained_nls_model.meta)
    assert model.objective([1.0, 1.0, 1.0]) == 3.0
    assert np.allclose(model.objective_and_gradient(np.ones(3))[1], 2.0)
    with pytest.raises(NotImplementedError, match="does not provide constraints"):
        model.constraints(np.zeros(3))
    with pytest.raises(NotImplementedError, match="does not provide a constraint"):
        model.jacobian(np.zeros(3))
    with pytest.raises(NotImplementedError, match="does not provide a Hessian"):
        model.hessian(np.zeros(3))


def test_counters_reset(nls_model: Any) -> None:
    nls_model.objective(nls_model.meta.x0)
    nls_model.constraints(nls_model.meta.x0)
    assert nls_model.sum_counters() == 3
    assert nls_model.reset() is nls_model
    assert nls_model.sum_counters() == 0


def test_close(nls_model: Any) -> None:
    assert not nls_model.closed
    with nls_model as model:
        assert model is nls_model
    assert nls_model.closed
    nls_model.close()
    assert nls_model.closed


def test_lls_model(lls_model: Any, dense: Any) -> None:
    x = np.array([1.0, -1.0, 0.5])
    a_matrix = dense(lls_model.A)
    c_matrix = dense(lls_model.C)
    residual = a_matrix @ x - lls_model.b
    assert lls_model.meta.nvar == 3
    assert lls_model.meta.ncon == 3
    assert lls_model.nls_meta.nequ == 4
    assert np.array_equal(lls_model.meta.lin, [0, 1, 2])
    assert lls_model.meta.nln.size == 0
    assert np.allclose(lls_model.residual(x), residual)
    assert np.isclose(lls_model.objective(x), residual @ residual / 2)
    assert np.allclose(lls_model.gradient(x), a_matrix.T @ residual)
    assert np.allclose(lls_model.constraints(x), c_matrix @ x)
    assert np.allclose(dense(lls_model.jacobian(x)), c_matrix)
    assert np.allclose(
        dense(lls_model.hessian(x, obj_weight=2.0)), 2 * a_matrix.T @ a_matrix
    )
    v = np.array([0.5, 2.0, -1.0])
    assert np.allclose(
        lls_model.hessian_vector_product(x, v, obj_weight=2.0),
        2 * a_matrix.T @ a_matrix @ v,
    )
    assert np.allclose(
        lls_model.residual_hessian_vector_product(x, 1, v), np.zeros(3)
    )


def test_lls_representation(lls_factory: Any) -> None:
    x = np.zeros(3)
    assert isinstance(lls_factory("dense").jacobian(x), np.ndarray)
    assert sparse.issparse(lls_factory("sparse").jacobian(x))
    model = lls_factory("operator")
    assert isinstance(model.jacobian(x), LinearOperator)
    assert isinstance(model.hessian(x), LinearOperator)
    with pytest.raises(
        UnsupportedModelError, match="not available for a linear operator"
    ):
        model.jacobian_coordinates(x)


def test_lls_without_constraints() -> None:
    model = LLSModel(np.eye(2), [1.0, 2.0])
    assert model.meta.ncon == 0
    assert np.isclose(model.objective([0.0, 0.0]), 2.5)
    with pytest.raises(NotImplementedError, match="LLSModel has no constraints"):
        model.constraints([0.0, 0.0])


def test_lls_shape_mismatch() -> None:
    with pytest.raises(ValueError, match="different column counts"):
        LLSModel(np.eye(2), [1.0, 2.0], np.ones((1, 3)))


@pytest.mark.parametrize(
    "cls",
    [
        FunctionNLPModel,
        FunctionNLSModel,
        LLSModel,
        ResidualAsConstraintsModel,
        SlackBoundModel,
        SlackBoundNLSModel,
    ],
)
def test_public_methods_documented(cls: type) -> None:
    undocumented = [
        name
        for name, member in vars(cls).items()
        if not name.startswith("_")
        and callable(member)
        and not (member.__doc__ or "").strip()
    ]
    assert undocumented == []
