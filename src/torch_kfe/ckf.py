"""Model helpers for constant-derivative motion.

The state of such a model holds, for each spatial dimension, a value and its
derivatives up to ``order``: constant position (order 0), constant velocity (order 1),
constant acceleration (order 2), ...

The state transition F follows from a Taylor expansion of the value. The process
uncertainty Q depends on how the highest derivative is assumed to vary:

- **constant model** (default): the order-th derivative is constant over a step, up to
  an additive noise of standard deviation ``process_std``.
- **expected model**: the (order+1)-th derivative is a zero-mean white noise of standard
  deviation ``process_std``. For order 1 this is the classical piecewise white
  acceleration model ``Q = σ²·[[dt⁴/4, dt³/2], [dt³/2, dt²]]``.

The matrices can be used on their own with the carriers of a filter, or assembled into
a ready-to-use :class:`~torch_kfe.KalmanFilter` with :func:`constant_kalman_filter`.
"""

from __future__ import annotations

import torch

from . import config
from .carriers import (
    EstimateUncertainty,
    Output,
    OutputModel,
    OutputUncertainty,
    ProcessUncertainty,
    State,
    StateTransition,
)
from .kalman_filter import KalmanFilter


def interleave(x: torch.Tensor, size: int) -> torch.Tensor:
    """Interleave the rows of a tensor by blocks of ``size``.

    Rows ``0, 1, ..., k*size-1`` are reordered as
    ``0, size, ..., (k-1)*size, 1, 1+size, ..., size-1, ..., k*size-1``.

    Example:
        >>> interleave(torch.arange(6)[:, None], 3).flatten()
        tensor([0, 3, 1, 4, 2, 5])

    Args:
        x (torch.Tensor): Tensor to reorder.
            Shape: ``(k * size, ...)``
        size (int): Block size. Must divide the first dimension.

    Returns:
        torch.Tensor: Reordered tensor.
            Shape: ``(k * size, ...)``
    """
    shape = list(x.shape)
    return x.reshape([-1, size, *shape[1:]]).transpose(0, 1).reshape([-1, *shape[1:]])


def _taylor_coefficients(length: int, dt: float) -> torch.Tensor:
    # (1, dt, dt^2 / 2, ..., dt^(length-1) / (length-1)!)
    factorials = torch.arange(length, dtype=config.get_dtype())
    factorials[0] = 1
    powers = torch.tensor([dt**k for k in range(length)], dtype=config.get_dtype())
    return powers / factorials.cumprod(0)


def create_ckf_process_matrix(order: int, dt=1.0, approximate=False) -> torch.Tensor:
    r"""Build the state transition F of a single dimension.

    x^{(i)}(t + dt) = \sum_{k=0}^{order - i} \frac{dt^k}{k!} x^{(i+k)}(t)

    For instance ``order=1`` gives ``[[1, dt], [0, 1]]``.

    Args:
        order (int): Highest derivative in the state.
        dt (float): Time step.
            Default: 1.0
        approximate (bool): Keep only the first order terms
            ``x^{(i)}(t+dt) = x^{(i)}(t) + dt x^{(i+1)}(t)``.
            Default: False

    Returns:
        torch.Tensor: State transition F.
            Shape: ``(order + 1, order + 1)``
    """
    coefficients = _taylor_coefficients(order + 1, dt)
    if approximate:
        coefficients[2:] = 0

    process_matrix = torch.zeros(order + 1, order + 1, dtype=config.get_dtype())
    for k, coefficient in enumerate(coefficients):
        process_matrix += torch.diag(coefficient.repeat(order + 1 - k), k)
    return process_matrix


def create_ckf_process_noise(
    process_std: float, order: int, dt=1.0, expected_model=False, approximate=False
) -> torch.Tensor:
    """Build the process uncertainty Q of a single dimension.

    The noise of the highest derivative is propagated to the lower ones through the
    Taylor expansion, which gives the rank one matrix ``σ² c cᵀ``.

    Args:
        process_std (float): Standard deviation of the order-th derivative noise (constant
            model) or of the (order+1)-th derivative (expected model).
        order (int): Highest derivative in the state.
        dt (float): Time step.
            Default: 1.0
        expected_model (bool): Use the zero-mean (order+1)-th derivative model.
            Default: False
        approximate (bool): Only the highest derivative receives noise.
            Default: False

    Returns:
        torch.Tensor: Process uncertainty Q.
            Shape: ``(order + 1, order + 1)``
    """
    coefficients = _taylor_coefficients(order + 1 + expected_model, dt)
    if approximate:
        coefficients[1 + expected_model :] = 0

    # The expected model is shifted by one derivative
    coefficients = coefficients[expected_model:].flip(0)
    return process_std**2 * coefficients[:, None] @ coefficients[None]


def constant_kalman_filter(
    measurement_std: float | torch.Tensor,
    process_std: float | torch.Tensor,
    *,
    dim=2,
    order=1,
    dt=1.0,
    expected_model=False,
    order_by_dim=False,
    approximate=False,
    initial_std: float | None = None,
) -> KalmanFilter:
    """Build a constant-derivative filter over ``dim`` independent dimensions.

    Only the values are measured. The state dimension is ``(order + 1) * dim`` and the
    output dimension ``dim``.

    Args:
        measurement_std (float | torch.Tensor): Standard deviation of the measures.
            Shape: broadcastable to ``(dim,)``
        process_std (float | torch.Tensor): Standard deviation of the process noise
            (see :func:`create_ckf_process_noise`).
            Shape: broadcastable to ``(dim,)``
        dim (int): Number of spatial dimensions.
            Default: 2
        order (int): Highest derivative in the state.
            Default: 1 (constant velocity)
        dt (float): Time step.
            Default: 1.0
        expected_model (bool): Use the zero-mean (order+1)-th derivative model.
            Default: False
        order_by_dim (bool): Order the state by dimension (``x, x', y, y'``) instead of
            by derivative (``x, y, x', y'``).
            Default: False
        approximate (bool): Keep only the first order terms.
            Default: False
        initial_std (float | None): Standard deviation of the initial (null) state
            estimate. The default identity P is kept if None.
            Default: None

    Returns:
        KalmanFilter: The configured filter, starting from a null state.
    """
    dtype = config.get_dtype()
    measurement_std = torch.broadcast_to(torch.as_tensor(measurement_std, dtype=dtype), (dim,))
    process_std = torch.broadcast_to(torch.as_tensor(process_std, dtype=dtype), (dim,))

    state_dim = (order + 1) * dim

    # Only the values are measured, independently in each dimension
    output_model = torch.eye(dim, state_dim, dtype=dtype)
    output_noise = torch.diag(measurement_std**2)

    transition = torch.block_diag(*(create_ckf_process_matrix(order, dt, approximate) for _ in range(dim)))
    process_noise = torch.block_diag(
        *(create_ckf_process_noise(process_std[k].item(), order, dt, expected_model, approximate) for k in range(dim))
    )

    if order_by_dim:
        output_model = interleave(output_model.T, dim).T
    else:
        transition = interleave(interleave(transition, order + 1).T, order + 1).T
        process_noise = interleave(interleave(process_noise, order + 1).T, order + 1).T

    named_parameters = [
        State(torch.zeros(state_dim, dtype=dtype)),
        Output(dim),
        StateTransition(transition.contiguous()),
        ProcessUncertainty(process_noise.contiguous()),
        OutputModel(output_model.contiguous()),
        OutputUncertainty(output_noise.contiguous()),
    ]
    if initial_std is not None:
        named_parameters.append(EstimateUncertainty(torch.eye(state_dim, dtype=dtype) * initial_std**2))
    return KalmanFilter(*named_parameters)
