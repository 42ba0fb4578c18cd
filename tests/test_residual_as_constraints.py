from typing import Any

import numpy as np
import pytest
from scipy import sparse
from scipy.sparse.linalg import LinearOperator, aslinearoperator

from nlpreform.exceptions import DimensionError, UnsupportedModelError
from nlpreform.meta import NLPModelMeta, NLSMeta
from nlpreform.models import FunctionNLSModel, LLSModel
from nlpreform.transforms import ResidualAsConstraintsModel


def test_residual_as_constraints_meta(nls_model: Any) -> None:
    model = ResidualAsConstraintsModel(nls_model)
    meta = model.meta
    assert meta.nvar == 5
    assert meta.ncon == 6
    assert np.allclose(meta.x0, [0.5, 1.0, 1.5, 0.0, 0.0])
    assert np.all(np.isneginf(meta.lvar))
    assert np.all(np.isposinf(meta.uvar))
    assert np.allclose(meta.lcon, [0.0, 0.0, 1.0, -np.inf, 0.5, -1.0])
    assert np.allclose(meta.ucon, [0.0, 0.0, np.inf, 4.0, 0.5, 2.0])
    assert np.allclose(meta.y0, [0.0, 0.0, 0.1, 0.2, 0.3, 0.4])
    assert np.array_equal(meta.lin, [2, 4])
    assert np.array_equal(meta.nln, [0, 1, 3, 5])
    assert np.array_equal(meta.jfix, [0, 1, 4])
    assert meta.nnzj == 20
    assert meta.nnzh == 20
    assert model.nls_meta.nequ == 2
    assert model.nls_meta.nvar == 5
    assert np.allclose(model.nls_meta.x0, meta.x0)
    assert model.nls_meta.nnzj == 2
    assert model.nls_meta.nnzh == 0
    assert model.model is nls_model


def test_residual_as_constraints_bounds_kept() -> None:
    wrapped = FunctionNLSModel(
        NLPModelMeta(nvar=2, x0=[1.0, 2.0], lvar=[0.0, -1.0], uvar=[3.0, np.inf]),
        NLSMeta(nequ=1, nvar=2),
        lambda x: np.array([x[0] - x[1]]),
        lambda _: np.array([[1.0, -1.0]]),
    )
    meta = ResidualAsConstraintsModel(wrapped).meta
    assert np.allclose(meta.lvar, [0.0, -1.0, -np.inf])
    assert np.allclose(meta.uvar, [3.0, np.inf, np.inf])
    assert np.allclose(meta.x0, [1.0, 2.0, 0.0])


def test_residual_as_constraints_example(unconstrained_nls_model: Any) -> None:
    model = ResidualAsConstraintsModel(unconstrained_nls_model)
    x = np.array([1.0, 1.0, 1.0, 0.5, -0.5])
    residual = unconstrained_nls_model.residual(x[:3])
    assert np.isclose(model.objective(x), 0.25)
    assert np.allclose(model.constraints(x), [residual[0] - 0.5, residual[1] + 0.5])
    assert np.allclose(model.constraints(x), [-0.5, 0.5])


@pytest.mark.parametrize(
    "residuals", [[0.0, 0.0], [-1.0, -2.0], [3.0, -4.0]]
)
def test_residual_as_constraints_objective(
    unconstrained_nls_model: Any, residuals: list[float]
) -> None:
    model = ResidualAsConstraintsModel(unconstrained_nls_model)
    x = np.concatenate([[0.3, -0.2, 1.1], residuals])
    r = np.array(residuals)
    value = model.objective(x)
    assert value >= 0.0
    assert value == np.dot(r, r) / 2
    assert np.allclose(model.gradient(x), [0.0, 0.0, 0.0, *residuals])
    value, gradient = model.objective_and_gradient(x)
    assert value == np.dot(r, r) / 2
    assert np.allclose(gradient, [0.0, 0.0, 0.0, *residuals])
    assert unconstrained_nls_model.counters.sum() == 0


def test_residual_as_constraints_round_trip(nls_model: Any, rng: Any) -> None:
    model = ResidualAsConstraintsModel(nls_model)
    for _ in range(5):
        x = rng.standard_normal(3)
        r = rng.standard_normal(2)
        constraints = model.constraints(np.concatenate([x, r]))
        assert np.array_equal(constraints[:2], nls_model.residual(x) - r)
        assert np.array_equal(constraints[2:], nls_model.constraints(x))


@pytest.mark.parametrize(
    "model_name", ["nls_model", "sparse_nls_model", "unconstrained_nls_model"]
)
def test_residual_as_constraints_jacobian(
    model_name: str, request: Any, rng: Any, dense: Any
) -> None:
    wrapped = request.getfixturevalue(model_name)
    model = ResidualAsConstraintsModel(wrapped)
    x = rng.standard_normal(model.meta.nvar)
    v = rng.standard_normal(model.meta.nvar)
    w = rng.standard_normal(model.meta.ncon)

    jacobian = model.jacobian(x)
    if model_name == "sparse_nls_model":
        assert sparse.issparse(jacobian)
    else:
        assert isinstance(jacobian, np.ndarray)
    jacobian = dense(jacobian)
    assert jacobian.shape == (model.meta.ncon, model.meta.nvar)
    assert np.allclose(jacobian[:2, :3], dense(wrapped.residual_jacobian(x[:3])))
    assert np.allclose(jacobian[:2, 3:], -np.eye(2))
    assert np.allclose(jacobian[2:, 3:], 0.0)
    assert np.allclose(model.jacobian_vector_product(x, v), jacobian @ v)
    assert np.allclose(model.jacobian_transpose_vector_product(x, w), jacobian.T @ w)
    assert np.allclose(dense(model.jacobian_operator(x)), jacobian)
    rows, cols, values = model.jacobian_coordinates(x)
    assert np.allclose(
        sparse.coo_matrix((values, (rows, cols)), shape=jacobian.shape).toarray(),
        jacobian,
    )


def test_residual_as_constraints_lls(lls_model: Any, rng: Any, dense: Any) -> None:
    model = ResidualAsConstraintsModel(lls_model)
    x = rng.standard_normal(model.meta.nvar)
    v = rng.standard_normal(model.meta.nvar)
    w = rng.standard_normal(model.meta.ncon)
    y = rng.standard_normal(model.meta.ncon)

    jacobian = dense(model.jacobian(x))
    expected = np.block(
        [
            [dense(lls_model.A), -np.eye(4)],
            [dense(lls_model.C), np.zeros((3, 4))],
        ]
    )
    assert np.allclose(jacobian, expected)
    assert np.allclose(model.jacobian_vector_product(x, v), expected @ v)
    assert np.allclose(model.jacobian_transpose_vector_product(x, w), expected.T @ w)

    hessian = dense(model.hessian(x, obj_weight=0.5, y=y))
    expected = np.zeros((7, 7))
    expected[3:, 3:] = 0.5 * np.eye(4)
    assert np.allclose(hessian, expected)
    assert np.allclose(
        model.hessian_vector_product(x, v, obj_weight=0.5, y=y), expected @ v
    )


def test_residual_as_constraints_operator(lls_factory: Any) -> None:
    model = ResidualAsConstraintsModel(lls_factory("operator"))
    x = np.zeros(model.meta.nvar)
    assert isinstance(model.jacobian(x), LinearOperator)
    with pytest.raises(UnsupportedModelError):
        model.jacobian_coordinates(x)


def test_residual_as_constraints_operator_jacobian(
    lls_factory: Any, rng: Any, dense: Any
) -> None:
    reference = lls_factory("dense")
    wrapped = lls_factory("operator")
    model = ResidualAsConstraintsModel(wrapped)
    x = rng.standard_normal(model.meta.nvar)
    v = rng.standard_normal(model.meta.nvar)
    w = rng.standard_normal(model.meta.ncon)
    expected = np.block(
        [
            [reference.A, -np.eye(4)],
            [reference.C, np.zeros((3, 4))],
        ]
    )

    jacobian = model.jacobian(x)
    assert isinstance(jacobian, LinearOperator)
    assert jacobian.shape == (7, 7)
    assert np.allclose(dense(jacobian), expected)
    assert np.allclose(jacobian.matvec(v), expected @ v)
    assert np.allclose(jacobian.rmatvec(w), expected.T @ w)
    assert model.neval("neval_jac") == 1
    assert wrapped.neval("neval_jac") == 1
    assert wrapped.neval("neval_jac_residual") == 1


def test_residual_as_constraints_operator_jacobian_unconstrained(dense: Any) -> None:
    model = ResidualAsConstraintsModel(
        LLSModel(aslinearoperator(np.array([[1.0, 2.0], [0.0, 3.0]])), [1.0, 2.0])
    )
    jacobian = model.jacobian(np.zeros(4))
    assert isinstance(jacobian, LinearOperator)
    assert np.allclose(
        dense(jacobian), [[1.0, 2.0, -1.0, 0.0], [0.0, 3.0, 0.0, -1.0]]
    )
    assert model.model.neval("neval_jac_residual") == 1
    assert model.model.neval("neval_jac") == 0


@pytest.mark.parametrize("model_name", ["nls_model", "sparse_nls_model"])
def test_residual_as_constraints_hessian(
    model_name: str, request: Any, rng: Any, dense: Any
) -> None:
    wrapped = request.getfixturevalue(model_name)
    model = ResidualAsConstraintsModel(wrapped)
    x = rng.standard_normal(model.meta.nvar)
    v = rng.standard_normal(model.meta.nvar)
    y = rng.standard_normal(model.meta.ncon)

    expected = np.zeros((5, 5))
    expected[:3, :3] = dense(wrapped.hessian(x[:3], obj_weight=0.0, y=y[2:])) + sum(
        y[idx] * dense(wrapped.residual_hessian(x[:3], idx)) for idx in range(2)
    )
    expected[3:, 3:] = 0.7 * np.eye(2)

    hessian = dense(model.hessian(x, obj_weight=0.7, y=y))
    assert np.allclose(hessian, expected)
    assert np.allclose(
        model.hessian_vector_product(x, v, obj_weight=0.7, y=y), expected @ v
    )
    assert np.allclose(dense(model.hessian_operator(x, obj_weight=0.7, y=y)), expected)
    rows, cols, values = model.hessian_coordinates(x, obj_weight=0.7, y=y)
    assert np.allclose(
        sparse.coo_matrix((values, (rows, cols)), shape=(5, 5)).toarray(), expected
    )
    assert np.allclose(dense(model.hessian(x, obj_weight=0.0)), 0.0)


def test_residual_as_constraints_residual(nls_model: Any, rng: Any, dense: Any) -> None:
    model = ResidualAsConstraintsModel(nls_model)
    x = rng.standard_normal(5)
    v = rng.standard_normal(5)
    w = rng.standard_normal(2)
    assert np.allclose(model.residual(x), x[3:])
    jacobian = dense(model.residual_jacobian(x))
    assert np.allclose(jacobian, np.hstack([np.zeros((2, 3)), np.eye(2)]))
    assert np.allclose(model.residual_jacobian_vector_product(x, v), v[3:])
    assert np.allclose(
        model.residual_jacobian_transpose_vector_product(x, w), [0.0, 0.0, 0.0, *w]
    )
    assert np.allclose(dense(model.residual_hessian(x, 1)), np.zeros((5, 5)))
    assert np.allclose(model.residual_hessian_vector_product(x, 0, v), 0.0)
    assert model.neval("neval_residual") == 1
    assert model.neval("neval_jac_residual") == 1
    assert nls_model.counters.sum() == 0


def test_residual_as_constraints_counters(nls_model: Any) -> None:
    model = ResidualAsConstraintsModel(nls_model)
    x = model.meta.x0
    for _ in range(3):
        model.constraints(x)
    assert model.neval("neval_cons") == 3
    assert model.neval("neval_residual") == 0
    assert nls_model.neval("neval_residual") == 3
    assert nls_model.neval("neval_cons") == 3
    assert nls_model.neval("neval_obj") == 0
    assert model.counters is not nls_model.counters

    model.hessian_vector_product(x, np.ones(5))
    assert model.neval("neval_hprod") == 1

    model.reset()
    assert model.sum_counters() == 0
    assert nls_model.neval("neval_residual") == 3


def test_residual_as_constraints_unconstrained_counters(
    unconstrained_nls_model: Any,
) -> None:
    model = ResidualAsConstraintsModel(unconstrained_nls_model)
    model.constraints(model.meta.x0)
    model.jacobian_vector_product(model.meta.x0, np.ones(5))
    assert unconstrained_nls_model.neval("neval_residual") == 1
    assert unconstrained_nls_model.neval("neval_jprod_residual") == 1
    assert unconstrained_nls_model.neval("neval_cons") == 0
    assert unconstrained_nls_model.neval("neval_jprod") == 0


def test_residual_as_constraints_dimension_errors(nls_model: Any) -> None:
    model = ResidualAsConstraintsModel(nls_model)
    with pytest.raises(DimensionError, match="expected length 5, got 3"):
        model.constraints(np.zeros(3))
    with pytest.raises(DimensionError, match="expected length 6, got 5"):
        model.jacobian_transpose_vector_product(np.zeros(5), np.zeros(5))
    with pytest.raises(DimensionError, match="size mismatch for `out`"):
        model.constraints(np.zeros(5), out=np.zeros(5))
    with pytest.raises(DimensionError, match="size mismatch for `y`"):
        model.hessian(np.zeros(5), y=np.zeros(4))
    assert model.counters.sum() == 0
    assert nls_model.counters.sum() == 0


def test_residual_as_constraints_output_size(single_residual_model: Any) -> None:
    model = ResidualAsConstraintsModel(single_residual_model)
    x = np.array([0.0, 0.0, 3.0, 2.0])
    with pytest.raises(
        DimensionError, match="size mismatch for `out`: expected length 1, got 4"
    ):
        model.residual(x, out=np.full(4, 7.0))
    with pytest.raises(DimensionError, match="size mismatch for `out`"):
        model.gradient(x, out=np.zeros(7))
    with pytest.raises(DimensionError, match="size mismatch for `out`"):
        model.objective_and_gradient(x, out=np.zeros(3))
    with pytest.raises(DimensionError, match="size mismatch for `out`"):
        model.residual_jacobian_vector_product(x, np.ones(4), out=np.zeros(4))
    assert model.counters.sum() == 0
    assert single_residual_model.counters.sum() == 0

    out = np.full(1, 7.0)
    assert model.residual(x, out=out) is out
    assert np.array_equal(out, [2.0])
    out = np.full(4, 7.0)
    assert model.gradient(x, out=out) is out
    assert np.array_equal(out, [0.0, 0.0, 0.0, 2.0])


def test_residual_as_constraints_unsupported(nlp_model: Any) -> None:
    with pytest.raises(UnsupportedModelError, match="requires a least-squares model"):
        ResidualAsConstraintsModel(nlp_model)


def test_residual_as_constraints_float32(nls_model: Any) -> None:
    model = ResidualAsConstraintsModel(nls_model)
    x = np.array([1.0, 1.0, 1.0, 0.5, -0.5], dtype=np.float32)
    v = np.ones(5, dtype=np.float32)
    assert model.constraints(x).dtype == np.float32
    assert np.asarray(model.objective(x)).dtype == np.float32
    assert model.gradient(x).dtype == np.float32
    assert model.jacobian_vector_product(x, v).dtype == np.float32
    assert np.isclose(model.objective(x), 0.25)


def test_residual_as_constraints_close(nls_model: Any) -> None:
    with ResidualAsConstraintsModel(nls_model) as model:
        model.objective(model.meta.x0)
    assert model.closed
    assert nls_model.closed
