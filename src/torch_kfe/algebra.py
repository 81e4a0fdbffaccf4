"""Algebra traits of the filter engine.

The filter never hard-codes its operand types: it only relies on the small set of
operations defined here, over scalars (0-d tensors) and matrices (2-d tensors).

Shape conventions:
- A vector of size ``k`` is a **column vector** of shape ``(k, 1)``, or a scalar
  (shape ``()``) when ``k == 1``.
- The matrix A·Bᵀ of two vectors of sizes ``a`` and ``b`` has shape ``(a, b)``, or
  is a scalar when ``a == b == 1``. Row vectors ``(1, b)`` and column vectors
  ``(a, 1)`` are kept as 2-d matrices.

Intermediate products can have a different (but compatible) layout than the quantity
they are assigned to, e.g. ``H·X`` is ``(1, 1)`` for a single measure. `evaluate`
materialises them back into the declared shape.

The five customisable operators (transpose, symmetrise, divide, identity, zero) are
bundled in :class:`Operators` so that a filter can swap any of them.
"""

from __future__ import annotations

import dataclasses
import math
from typing import Any, Callable, Tuple

import torch
import torch.linalg

from . import config
from .errors import ShapeMismatchError, SingularError

Shape = Tuple[int, ...]

# Dtypes the linear solvers do not support, solved in float32
_REDUCED_PRECISION = (torch.float16, torch.bfloat16)


def vector_shape(dim: int) -> Shape:
    """Shape of a column vector of size ``dim`` (collapsed to a scalar for 1)."""
    if dim < 1:
        raise ShapeMismatchError(f"Vector dimension must be positive, got {dim}")
    return () if dim == 1 else (dim, 1)


def matrix_shape(rows: int, columns: int) -> Shape:
    """Shape of a ``rows x columns`` matrix (collapsed to a scalar for 1x1)."""
    if rows < 1 or columns < 1:
        raise ShapeMismatchError(f"Matrix dimensions must be positive, got {rows}x{columns}")
    if rows == 1 and columns == 1:
        return ()
    return (rows, columns)


def deduce_matrix(rows: Shape, columns: Shape) -> Shape:
    """Deduce the shape of A·Bᵀ from the vector shapes of A and B.

    It names every derived shape of the filter, for instance the gain
    ``deduce_matrix(x, z)`` or the innovation uncertainty ``deduce_matrix(z, z)``.

    Args:
        rows (Shape): Vector shape of A.
        columns (Shape): Vector shape of B.

    Returns:
        Shape: Matrix shape of A·Bᵀ.
    """
    return matrix_shape(math.prod(rows), math.prod(columns))


def evaluate(
    value: Any, shape: Shape, *, dtype: torch.dtype | None = None, device: torch.device | None = None
) -> torch.Tensor:
    """Materialise an operand into a tensor of the given shape.

    Numbers, nested sequences (possibly holding 0-d tensors) and tensors are accepted.
    Only the non-singleton dimensions have to match: a flat sequence fills a column
    vector and a ``(1, 1)`` product fills a scalar, but a ``2x3`` matrix is never
    reinterpreted as a ``3x2`` one.

    Notes:
        The result may share memory with ``value``. Clone it before storing it.

    Args:
        value (Any): Operand to evaluate.
        shape (Shape): Declared shape.
        dtype (torch.dtype | None): Target dtype. Default to the module-wide dtype.
        device (torch.device | None): Target device.
            Default: the device of ``value`` if it is a tensor, else the cpu.

    Returns:
        torch.Tensor: The operand with the declared shape.

    Raises:
        ShapeMismatchError: If the operand does not conform to ``shape``.
    """
    if dtype is None:
        dtype = config.get_dtype()

    if isinstance(value, (list, tuple)) and any(isinstance(element, torch.Tensor) for element in value):
        tensor = torch.stack([torch.as_tensor(element, dtype=dtype, device=device) for element in value])
    else:
        tensor = torch.as_tensor(value, dtype=dtype, device=device)

    if tuple(tensor.shape) != tuple(shape):
        if [d for d in tensor.shape if d != 1] != [d for d in shape if d != 1]:
            raise ShapeMismatchError(f"Cannot evaluate an operand of shape {tuple(tensor.shape)} as {tuple(shape)}")
        tensor = tensor.reshape(shape)

    return tensor


def multiply(lhs: torch.Tensor, rhs: torch.Tensor) -> torch.Tensor:
    """Multiply two operands.

    Scalars scale the other operand, matrices are multiplied with ``@``.

    Raises:
        ShapeMismatchError: If the matrix shapes do not conform.
    """
    if lhs.dim() == 0 or rhs.dim() == 0:
        return lhs * rhs
    if lhs.shape[-1] != rhs.shape[-2]:
        raise ShapeMismatchError(f"Cannot multiply shapes {tuple(lhs.shape)} and {tuple(rhs.shape)}")
    return lhs @ rhs


def transpose(value: torch.Tensor) -> torch.Tensor:
    """Transpose a matrix. A scalar is its own transpose."""
    if value.dim() < 2:  # noqa: PLR2004
        return value
    return value.mT


def symmetrise(value: torch.Tensor) -> torch.Tensor:
    """Return the symmetric part (A + Aᵀ) / 2 of a square matrix."""
    return (value + transpose(value)) / 2


def identity(shape: Shape, *, dtype: torch.dtype | None = None, device: torch.device | None = None) -> torch.Tensor:
    """Multiplicative identity of the given shape.

    1 for scalars, Iₖ for ``k x k`` matrices and the rectangular identity (ones on the
    main diagonal) otherwise.
    """
    if dtype is None:
        dtype = config.get_dtype()
    if not shape:
        return torch.ones((), dtype=dtype, device=device)
    return torch.eye(*shape, dtype=dtype, device=device)


def zero(shape: Shape, *, dtype: torch.dtype | None = None, device: torch.device | None = None) -> torch.Tensor:
    """Additive identity of the given shape."""
    if dtype is None:
        dtype = config.get_dtype()
    return torch.zeros(shape, dtype=dtype, device=device)


def divide(numerator: torch.Tensor, denominator: torch.Tensor) -> torch.Tensor:
    """Right division: find C such that C·B = A.

    A scalar denominator is an ordinary division. Otherwise the system Bᵀ·Cᵀ = Aᵀ is
    solved with a rank-revealing QR decomposition with column pivoting (``gelsy``
    driver of ``torch.linalg.lstsq``). This driver is only available on cpu; other
    devices fall back to a LU decomposition with partial pivoting. Half precision
    operands are solved in float32.

    Args:
        numerator (torch.Tensor): A.
            Shape: ``()`` or ``(n, m)``
        denominator (torch.Tensor): B.
            Shape: ``()`` or ``(m, m)``

    Returns:
        torch.Tensor: C.
            Shape: ``(n, m)`` (or the numerator shape for a scalar denominator)

    Raises:
        SingularError: If the denominator is not invertible.
        ShapeMismatchError: If the shapes do not conform.
    """
    if denominator.dim() == 0:
        if denominator == 0:
            raise SingularError("Division by a null scalar")
        return numerator / denominator

    if denominator.dtype in _REDUCED_PRECISION:
        return divide(numerator.float(), denominator.float()).to(denominator.dtype)

    if numerator.dim() == 0 or numerator.shape[-1] != denominator.shape[-1]:
        raise ShapeMismatchError(f"Cannot divide shape {tuple(numerator.shape)} by {tuple(denominator.shape)}")

    if denominator.device.type == "cpu":
        result = torch.linalg.lstsq(denominator.mT, numerator.mT, driver="gelsy")
        if result.rank < min(denominator.shape[-2:]):
            raise SingularError(f"Rank deficient denominator (rank {int(result.rank)})")
        return result.solution.mT

    solution, info = torch.linalg.solve_ex(denominator.mT, numerator.mT)
    if info.any():
        raise SingularError("Singular denominator")
    return solution.mT


def cholesky_divide(numerator: torch.Tensor, denominator: torch.Tensor) -> torch.Tensor:
    """Right division for symmetric positive definite denominators.

    Find C without inversing B but by solving the linear system B Cᵀ = Aᵀ with a
    Cholesky decomposition (B is symmetric). It may be slightly more robust than QR
    but is only valid for SPD denominators such as the innovation uncertainty S.

    Raises:
        SingularError: If the Cholesky decomposition fails.
    """
    if denominator.dim() == 0:
        return divide(numerator, denominator)

    if denominator.dtype in _REDUCED_PRECISION:
        return cholesky_divide(numerator.float(), denominator.float()).to(denominator.dtype)

    if numerator.dim() == 0 or numerator.shape[-1] != denominator.shape[-1]:
        raise ShapeMismatchError(f"Cannot divide shape {tuple(numerator.shape)} by {tuple(denominator.shape)}")

    chol_decomposition, info = torch.linalg.cholesky_ex(denominator)
    if info.any():
        raise SingularError("Denominator is not positive definite")
    return torch.cholesky_solve(numerator.mT, chol_decomposition).mT


@dataclasses.dataclass(frozen=True)
class Operators:
    """Customisable operators used by the filter.

    Attributes:
        transpose (Callable): ``transpose(A) -> Aᵀ``
        symmetrise (Callable): ``symmetrise(P) -> P'``, applied to P after each step.
        divide (Callable): ``divide(A, B) -> C`` with C·B = A.
        identity (Callable): ``identity(shape, *, dtype, device)``
        zero (Callable): ``zero(shape, *, dtype, device)``
    """

    transpose: Callable[[torch.Tensor], torch.Tensor] = transpose
    symmetrise: Callable[[torch.Tensor], torch.Tensor] = symmetrise
    divide: Callable[[torch.Tensor, torch.Tensor], torch.Tensor] = divide
    identity: Callable[..., torch.Tensor] = identity
    zero: Callable[..., torch.Tensor] = zero


DEFAULT_OPERATORS = Operators()
