"""Block assembly helpers for dense, sparse and operator matrices.

Models may return their Jacobians and Hessians as `numpy` arrays, as
`scipy.sparse` matrices, or as `scipy.sparse.linalg.LinearOperator` objects
that only support products. The functions in this module extend such matrices
with zero or selection blocks while keeping their representation: sparse
input produces sparse output, dense input dense output, and operators produce
operators.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import LinearOperator, aslinearoperator

from nlpreform.exceptions import UnsupportedModelError

if TYPE_CHECKING:
    from numpy.typing import NDArray

Matrix = Any
"""A dense array, a sparse matrix, or a linear operator."""


def is_operator(matrix: Matrix) -> bool:
    """Check if a matrix is only available as a linear operator."""
    return isinstance(matrix, LinearOperator)


def coordinates(
    matrix: Matrix,
) -> tuple[NDArray[np.intp], NDArray[np.intp], NDArray[Any]]:
    """Return the coordinate triples of the nonzero entries of a matrix.

    Args:
        matrix: A dense array or a sparse matrix.

    Returns:
        The row indices, column indices and values of the nonzero entries.

    Raises:
        UnsupportedModelError: If the matrix is a linear operator.
    """
    if is_operator(matrix):
        msg = "Coordinates are not available for a linear operator."
        raise UnsupportedModelError(msg)
    if sparse.issparse(matrix):
        coo = sparse.coo_matrix(matrix)
        coo.sum_duplicates()
        mask = coo.data != 0
        return (
            coo.row[mask].astype(np.intp),
            coo.col[mask].astype(np.intp),
            coo.data[mask],
        )
    dense = np.asarray(matrix)
    rows, cols = np.nonzero(dense)
    return rows.astype(np.intp), cols.astype(np.intp), dense[rows, cols]


def from_coordinates(
    rows: NDArray[np.intp],
    cols: NDArray[np.intp],
    values: NDArray[Any],
    shape: tuple[int, int],
) -> sparse.csr_matrix:
    """Build a sparse matrix from coordinate triples, summing duplicates."""
    return sparse.coo_matrix((values, (rows, cols)), shape=shape).tocsr()


def pad_columns(matrix: Matrix, ncols: int) -> Matrix:
    """Append zero columns to a matrix.

    Args:
        matrix: The matrix to extend.
        ncols:  The number of zero columns to append.

    Returns:
        The extended matrix, in the representation of the input.
    """
    nrows = matrix.shape[0]
    if is_operator(matrix):
        return hstack_operators(matrix, _zero_operator(nrows, ncols, matrix.dtype))
    if sparse.issparse(matrix):
        return sparse.hstack(
            [matrix, sparse.csr_matrix((nrows, ncols), dtype=matrix.dtype)],
            format="csr",
        )
    dense = np.asarray(matrix)
    return np.hstack([dense, np.zeros((nrows, ncols), dtype=dense.dtype)])


def pad_square(matrix: Matrix, size: int) -> Matrix:
    """Extend a square matrix with zero rows and columns.

    The result is the block diagonal matrix `[[matrix, 0], [0, 0]]`, where the
    zero block on the diagonal has `size` rows and columns.
    """
    n = matrix.shape[0]
    if is_operator(matrix):
        return LinearOperator(
            (n + size, n + size),
            matvec=lambda v: np.concatenate(
                [matrix.matvec(np.ravel(v)[:n]), np.zeros(size)]
            ),
            rmatvec=lambda v: np.concatenate(
                [matrix.rmatvec(np.ravel(v)[:n]), np.zeros(size)]
            ),
            dtype=matrix.dtype,
        )
    if sparse.issparse(matrix):
        return sparse.block_diag(
            [matrix, sparse.csr_matrix((size, size), dtype=matrix.dtype)],
            format="csr",
        )
    dense = np.asarray(matrix)
    result = np.zeros((n + size, n + size), dtype=dense.dtype)
    result[:n, :n] = dense
    return result


def selection_matrix(
    rows: NDArray[np.intp], nrows: int, *, sign: float = 1.0, dense: bool = False
) -> Matrix:
    """Return a matrix that scatters a short vector into selected rows.

    The result `E` has `nrows` rows and `rows.size` columns, with
    `E[rows[k], k] = sign`, and zeros elsewhere.

    Args:
        rows:  The target rows, one per column.
        nrows: The number of rows.
        sign:  The value of the nonzero entries.
        dense: Return a `numpy` array instead of a sparse matrix.

    Returns:
        The selection matrix.
    """
    ncols = rows.size
    if dense:
        result = np.zeros((nrows, ncols))
        result[rows, np.arange(ncols)] = sign
        return result
    return sparse.csr_matrix(
        (np.full(ncols, sign), (rows, np.arange(ncols))), shape=(nrows, ncols)
    )


def selection_operator(
    rows: NDArray[np.intp], nrows: int, *, sign: float = 1.0
) -> LinearOperator:
    """Return the selection matrix of `selection_matrix` as an operator."""
    ncols = rows.size

    def _matvec(v: NDArray[Any]) -> NDArray[Any]:
        result = np.zeros(nrows, dtype=np.result_type(v, np.float64))
        result[rows] = sign * np.ravel(v)
        return result

    def _rmatvec(v: NDArray[Any]) -> NDArray[Any]:
        return sign * np.ravel(v)[rows]

    return LinearOperator(
        (nrows, ncols), matvec=_matvec, rmatvec=_rmatvec, dtype=np.float64
    )


def hstack_blocks(left: Matrix, right: Matrix) -> Matrix:
    """Horizontally concatenate two matrices with the same number of rows.

    If either block is an operator the result is an operator, if either block
    is sparse the result is sparse, otherwise it is a dense array.
    """
    if is_operator(left) or is_operator(right):
        return hstack_operators(left, right)
    if sparse.issparse(left) or sparse.issparse(right):
        return sparse.hstack(
            [sparse.csr_matrix(left), sparse.csr_matrix(right)], format="csr"
        )
    return np.hstack([np.asarray(left), np.asarray(right)])


def hstack_operators(left: Matrix, right: Matrix) -> LinearOperator:
    """Horizontally concatenate two matrices as a linear operator."""
    left = _as_operator(left)
    right = _as_operator(right)
    nrows = left.shape[0]
    nleft = left.shape[1]
    ncols = nleft + right.shape[1]

    def _matvec(v: NDArray[Any]) -> NDArray[Any]:
        v = np.ravel(v)
        return np.ravel(left.matvec(v[:nleft])) + np.ravel(right.matvec(v[nleft:]))

    def _rmatvec(v: NDArray[Any]) -> NDArray[Any]:
        v = np.ravel(v)
        return np.concatenate([np.ravel(left.rmatvec(v)), np.ravel(right.rmatvec(v))])

    return LinearOperator(
        (nrows, ncols),
        matvec=_matvec,
        rmatvec=_rmatvec,
        dtype=np.result_type(left.dtype, right.dtype),
    )


def vstack_operators(top: Matrix, bottom: Matrix) -> LinearOperator:
    """Vertically concatenate two matrices as a linear operator."""
    top = _as_operator(top)
    bottom = _as_operator(bottom)
    ntop = top.shape[0]
    nrows = ntop + bottom.shape[0]
    ncols = top.shape[1]

    def _matvec(v: NDArray[Any]) -> NDArray[Any]:
        v = np.ravel(v)
        return np.concatenate([np.ravel(top.matvec(v)), np.ravel(bottom.matvec(v))])

    def _rmatvec(v: NDArray[Any]) -> NDArray[Any]:
        v = np.ravel(v)
        return np.ravel(top.rmatvec(v[:ntop])) + np.ravel(bottom.rmatvec(v[ntop:]))

    return LinearOperator(
        (nrows, ncols),
        matvec=_matvec,
        rmatvec=_rmatvec,
        dtype=np.result_type(top.dtype, bottom.dtype),
    )


def _as_operator(matrix: Matrix) -> LinearOperator:
    if is_operator(matrix):
        return matrix
    return aslinearoperator(matrix)


def _zero_operator(nrows: int, ncols: int, dtype: Any) -> LinearOperator:  # noqa: ANN401
    return LinearOperator(
        (nrows, ncols),
        matvec=lambda _: np.zeros(nrows, dtype=dtype),
        rmatvec=lambda _: np.zeros(ncols, dtype=dtype),
        dtype=dtype,
    )


def matvec(matrix: Matrix, vector: NDArray[Any]) -> NDArray[Any]:
    """Multiply a matrix with a vector, returning a 1D array."""
    if is_operator(matrix):
        return np.ravel(matrix.matvec(vector))
    return np.ravel(np.asarray(matrix @ vector))


def rmatvec(matrix: Matrix, vector: NDArray[Any]) -> NDArray[Any]:
    """Multiply the transpose of a matrix with a vector, returning a 1D array."""
    if is_operator(matrix):
        return np.ravel(matrix.rmatvec(vector))
    return np.ravel(np.asarray(matrix.T @ vector))


def add(left: Matrix, right: Matrix) -> Matrix:
    """Add two matrices of the same shape.

    The sum of two sparse matrices is sparse, any other combination of dense
    and sparse matrices is returned as a dense array.

    Raises:
        UnsupportedModelError: If either matrix is a linear operator.
    """
    if is_operator(left) or is_operator(right):
        msg = "Linear operators cannot be added to materialized matrices."
        raise UnsupportedModelError(msg)
    if sparse.issparse(left) and sparse.issparse(right):
        return (left + right).tocsr()
    return _dense(left) + _dense(right)


def _dense(matrix: Matrix) -> NDArray[Any]:
    if sparse.issparse(matrix):
        return matrix.toarray()
    return np.asarray(matrix)
