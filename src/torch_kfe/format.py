"""Structured rendering of a filter.

A filter is rendered as a single record of its canonical quantities, in the fixed key
order ``f, g, h, k, p, q, r, s, u, x, y, z``. ``g`` and ``u`` only exist for filters
with a control input. The last prediction (resp. update) arguments are inserted as
``prediction_<i>`` after ``p`` (resp. ``update_<i>`` after ``u``) when the filter
declares prediction (resp. update) types.

Example:
    >>> kf = KalmanFilter(State(0.0), Output(4), Input(3))
    >>> format_filter(kf)
    '{"f": 1, "g": [1, 0, 0], "h": [[1], [0], [0], [0]], "k": [1, 0, 0, 0], "p": 1, "q": 0, ...}'

Values are rendered as follows:
- Scalars and ``1x1`` matrices are bare numbers, integral values without decimals.
- Row vectors are flat lists.
- Other matrices are nested row-major lists (column vectors are lists of singletons).
"""

from __future__ import annotations

import json
import math
import numbers
from typing import Any

import torch


def format_scalar(value: float) -> str:
    """Shortest round-trip representation of a number, without ``.0`` for integral values."""
    if math.isfinite(value) and value.is_integer() and abs(value) < 1e16:  # noqa: PLR2004
        return str(int(value))
    return repr(value)


def format_tensor(value: torch.Tensor) -> str:
    """Render a scalar, vector or matrix."""
    value = value.detach().cpu()
    if value.numel() == 1:
        return format_scalar(float(value.item()))
    if value.dim() == 1 or (value.dim() == 2 and value.shape[0] == 1):  # noqa: PLR2004
        return "[" + ", ".join(format_scalar(float(element)) for element in value.flatten().tolist()) + "]"
    return "[" + ", ".join(format_tensor(row) if row.numel() > 1 else f"[{format_tensor(row)}]" for row in value) + "]"


def format_value(value: Any) -> str:
    """Render any value of a record."""
    if value is None:
        return "null"
    if isinstance(value, torch.Tensor):
        return format_tensor(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, numbers.Integral):
        return str(int(value))
    if isinstance(value, numbers.Real):
        return format_scalar(float(value))
    return json.dumps(str(value))


def to_record(kalman_filter) -> dict[str, Any]:
    """Collect the quantities of a filter in the canonical key order.

    Args:
        kalman_filter (KalmanFilter): The filter (or a decorated filter) to render.

    Returns:
        dict[str, Any]: Ordered record of the filter quantities.
    """
    has_input = kalman_filter.input_dim > 0

    record: dict[str, Any] = {"f": kalman_filter.f()}
    if has_input:
        record["g"] = kalman_filter.g()
    record["h"] = kalman_filter.h()
    record["k"] = kalman_filter.k()
    record["p"] = kalman_filter.p()
    for position, argument in enumerate(kalman_filter.prediction_arguments()):
        record[f"prediction_{position}"] = argument
    record["q"] = kalman_filter.q()
    record["r"] = kalman_filter.r()
    record["s"] = kalman_filter.s()
    if has_input:
        record["u"] = kalman_filter.u()
    for position, argument in enumerate(kalman_filter.update_arguments()):
        record[f"update_{position}"] = argument
    record["x"] = kalman_filter.x()
    record["y"] = kalman_filter.y()
    record["z"] = kalman_filter.z()
    return record


def format_filter(kalman_filter) -> str:
    """Render a filter as a single line structured record."""
    return "{" + ", ".join(f'"{key}": {format_value(value)}' for key, value in to_record(kalman_filter).items()) + "}"
