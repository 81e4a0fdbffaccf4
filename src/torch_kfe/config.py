"""Module-wide floating-point precision configuration.

Provides ``set_dtype`` and ``get_dtype`` to control the float dtype used by
new filters and by :func:`~torch_kfe.algebra.evaluate` when no explicit dtype
is requested. The default is ``torch.float64``: the engine is mostly used
with small matrices, where double precision is cheap and keeps the Joseph
update well conditioned.

The dtype is resolved once, when a filter is built. Changing it later does
not affect existing filters (use :meth:`~torch_kfe.KalmanFilter.to` to
convert them).
"""

from __future__ import annotations

import torch

_VALID_DTYPES = (torch.float16, torch.bfloat16, torch.float32, torch.float64)

_dtype = torch.float64


def set_dtype(dtype: torch.dtype) -> None:
    """Set the module-wide float dtype for torch_kfe.

    Args:
        dtype (torch.dtype): One of ``torch.float16``, ``torch.bfloat16``,
            ``torch.float32`` or ``torch.float64``.

    Raises:
        ValueError: If ``dtype`` is not a supported float type.
    """
    global _dtype  # noqa: PLW0603
    if dtype not in _VALID_DTYPES:
        raise ValueError(
            f"Unsupported dtype {dtype}. Must be one of: torch.float16, torch.bfloat16, torch.float32, torch.float64"
        )
    _dtype = dtype


def get_dtype() -> torch.dtype:
    """Return the current module-wide float dtype.

    Returns:
        torch.dtype: The active float dtype (default ``torch.float64``).
    """
    return _dtype
