from typing import Any, Callable, Sequence

import numpy as np
import pytest
from numpy.typing import NDArray
from scipy import sparse
from scipy.sparse.linalg import aslinearoperator

from nlpreform.meta import NLPModelMeta, NLSMeta
from nlpreform.models import FunctionNLPModel, FunctionNLSModel, LLSModel

# Constraint bounds covering all four constraint classes:
# row 0 in jlow, row 1 in jupp, row 2 in jfix, row 3 in jrng.
LCON = [1.0, -np.inf, 0.5, -1.0]
UCON = [np.inf, 4.0, 0.5, 2.0]


def pytest_addoption(parser: Any) -> Any:
    parser.addoption(
        "--run-slow", action="store_true", default=False, help="run slow tests"
    )


def pytest_collection_modifyitems(config: Any, items: Sequence[Any]) -> None:
    if not config.getoption("--run-slow"):
        skip_slow = pytest.mark.skip(reason="need --run-slow option to run")
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


def _constraints(x: NDArray[Any]) -> NDArray[Any]:
    return np.array(
        [x[0] + x[1] + x[2], x[0] ** 2 + x[1] ** 2, x[0] - x[2], x[1] * x[2]]
    )


def _jacobian(x: NDArray[Any]) -> NDArray[np.float64]:
    return np.array(
        [
            [1.0, 1.0, 1.0],
            [2 * x[0], 2 * x[1], 0.0],
            [1.0, 0.0, -1.0],
            [0.0, x[2], x[1]],
        ]
    )


def _constraint_hessian(
    x: NDArray[Any],  # noqa: ARG001
    y: NDArray[Any],
) -> NDArray[np.float64]:
    return y[1] * np.diag([2.0, 2.0, 0.0]) + y[3] * np.array(
        [[0.0, 0.0, 0.0], [0.0, 0.0, 1.0], [0.0, 1.0, 0.0]]
    )


def _residual(x: NDArray[Any]) -> NDArray[Any]:
    return np.array([x[0] * x[1] - 1, x[2] ** 2 + x[0] - 2])


def _residual_jacobian(x: NDArray[Any]) -> NDArray[np.float64]:
    return np.array([[x[1], x[0], 0.0], [1.0, 0.0, 2 * x[2]]])


def _residual_hessian(x: NDArray[Any], i: int) -> NDArray[np.float64]:  # noqa: ARG001
    if i == 0:
        return np.array([[0.0, 1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 0.0]])
    return np.diag([0.0, 0.0, 2.0])


def _objective(x: NDArray[Any]) -> Any:
    return (x[0] - 1) ** 2 + (x[1] - 2) ** 2 + x[2] ** 4


def _gradient(x: NDArray[Any]) -> NDArray[Any]:
    return np.array([2 * (x[0] - 1), 2 * (x[1] - 2), 4 * x[2] ** 3])


def _hessian(x: NDArray[Any]) -> NDArray[np.float64]:
    return np.diag([2.0, 2.0, 12 * x[2] ** 2])


def _make_nls_model(
    *, constrained: bool = True, sparse_jacobians: bool = False
) -> FunctionNLSModel:
    """Build a least-squares model with two residuals and three variables."""
    if not constrained:
        return FunctionNLSModel(
            NLPModelMeta(nvar=3, x0=[0.5, 1.0, 1.5], lvar=-10.0, uvar=10.0),
            NLSMeta(nequ=2, nvar=3),
            _residual,
            _residual_jacobian,
            _residual_hessian,
        )

    def _to_sparse(function: Callable[..., Any]) -> Callable[..., Any]:
        return lambda *args: sparse.csr_matrix(function(*args))

    return FunctionNLSModel(
        NLPModelMeta(
            nvar=3,
            x0=[0.5, 1.0, 1.5],
            ncon=4,
            lcon=LCON,
            ucon=UCON,
            y0=[0.1, 0.2, 0.3, 0.4],
            lin=[0, 2],
        ),
        NLSMeta(nequ=2, nvar=3),
        _residual,
        _to_sparse(_residual_jacobian) if sparse_jacobians else _residual_jacobian,
        _residual_hessian,
        c=_constraints,
        jac=_to_sparse(_jacobian) if sparse_jacobians else _jacobian,
        chess=_constraint_hessian,
    )


def _make_nlp_model(*, equality_only: bool = False) -> FunctionNLPModel:
    """Build a general model with three variables."""
    if equality_only:
        return FunctionNLPModel(
            NLPModelMeta(nvar=3, ncon=1, lcon=0.0, ucon=0.0),
            _objective,
            _gradient,
            _hessian,
            c=lambda x: np.array([x[0] - x[2]]),
            jac=lambda _: np.array([[1.0, 0.0, -1.0]]),
            chess=lambda _x, _y: np.zeros((3, 3)),
        )
    return FunctionNLPModel(
        NLPModelMeta(
            nvar=3,
            x0=[0.5, 1.0, 1.5],
            lvar=[-1.0, -np.inf, 0.0],
            uvar=[1.0, np.inf, np.inf],
            ncon=4,
            lcon=LCON,
            ucon=UCON,
            lin=[0, 2],
        ),
        _objective,
        _gradient,
        _hessian,
        c=_constraints,
        jac=_jacobian,
        chess=_constraint_hessian,
    )


LLS_A = np.array(
    [[1.0, 2.0, 0.0], [0.0, 1.0, -1.0], [3.0, 0.0, 1.0], [1.0, 1.0, 1.0]]
)
LLS_B = np.array([1.0, -1.0, 2.0, 0.5])
LLS_C = np.array([[1.0, 1.0, 0.0], [0.0, 1.0, 1.0], [1.0, 0.0, -1.0]])


def _make_lls_model(kind: str) -> LLSModel:
    """Build a linear least-squares model, with matrices of the given kind."""
    convert: Callable[[NDArray[np.float64]], Any] = {
        "dense": np.array,
        "sparse": sparse.csr_matrix,
        "operator": aslinearoperator,
    }[kind]
    return LLSModel(
        convert(LLS_A),
        LLS_B,
        convert(LLS_C),
        lcon=[-1.0, -np.inf, 0.5],
        ucon=[np.inf, 2.0, 0.5],
        x0=[0.1, 0.2, 0.3],
    )


@pytest.fixture(name="nls_model")
def nls_model_fixture() -> FunctionNLSModel:
    return _make_nls_model()


@pytest.fixture(name="unconstrained_nls_model")
def unconstrained_nls_model_fixture() -> FunctionNLSModel:
    return _make_nls_model(constrained=False)


@pytest.fixture(name="nlp_model")
def nlp_model_fixture() -> FunctionNLPModel:
    return _make_nlp_model()


@pytest.fixture(name="rng")
def rng_fixture() -> np.random.Generator:
    return np.random.default_rng(123)


@pytest.fixture(scope="session")
def dense() -> Callable[[Any], NDArray[np.float64]]:
    def _dense(matrix: Any) -> NDArray[np.float64]:
        if sparse.issparse(matrix):
            return matrix.toarray()
        if hasattr(matrix, "matvec"):
            return np.column_stack(
                [matrix.matvec(column) for column in np.eye(matrix.shape[1])]
            )
        return np.asarray(matrix)

    return _dense


@pytest.fixture(name="sparse_nls_model")
def sparse_nls_model_fixture() -> FunctionNLSModel:
    return _make_nls_model(sparse_jacobians=True)


@pytest.fixture(name="equality_nlp_model")
def equality_nlp_model_fixture() -> FunctionNLPModel:
    return _make_nlp_model(equality_only=True)


@pytest.fixture(name="lls_model", params=["dense", "sparse", "operator"])
def lls_model_fixture(request: Any) -> LLSModel:
    return _make_lls_model(request.param)


@pytest.fixture(scope="session")
def lls_factory() -> Callable[[str], LLSModel]:
    return _make_lls_model


@pytest.fixture(name="single_residual_model")
def single_residual_model_fixture() -> FunctionNLSModel:
    return FunctionNLSModel(
        NLPModelMeta(nvar=3, ncon=1, lcon=0.0),
        NLSMeta(nequ=1, nvar=3),
        lambda x: np.array([x[0] - 1.0]),
        lambda _: np.array([[1.0, 0.0, 0.0]]),
        lambda _x, _i: np.zeros((3, 3)),
        c=lambda x: np.array([x[1] + x[2]]),
        jac=lambda _: np.array([[0.0, 1.0, 1.0]]),
        chess=lambda _x, _y: np.zeros((3, 3)),
    )
