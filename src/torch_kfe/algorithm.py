"""Predict and update recursions of the Kalman filter.

These are pure functions over the algebra of :mod:`torch_kfe.algebra`: they never
mutate their operands and return the new quantities, which may still have an
intermediate layout (e.g. ``(1, 1)`` instead of a scalar). The
:class:`~torch_kfe.KalmanFilter` evaluates them into the declared shapes,
symmetrises P and commits them.

Predict:

    X = F X + G U
    P = F P Fᵀ + Q

Update:

    Y = Z - H X
    S = H P Hᵀ + R
    K = P Hᵀ / S
    X = X + K Y
    P = (I - K H) P (I - K H)ᵀ + K R Kᵀ   (Joseph form, default)
    P = (I - K H) P                       (optimal gain form)
"""

from __future__ import annotations

from typing import NamedTuple

import torch

from .algebra import DEFAULT_OPERATORS, Operators, deduce_matrix, multiply


class UpdateResult(NamedTuple):
    """Quantities computed by an update step.

    Attributes:
        x: Updated state estimate X.
        p: Updated estimate uncertainty P (not symmetrised).
        k: Gain K.
        s: Innovation uncertainty S.
        y: Innovation Y.
    """

    x: torch.Tensor
    p: torch.Tensor
    k: torch.Tensor
    s: torch.Tensor
    y: torch.Tensor


def predict_state(
    f: torch.Tensor, x: torch.Tensor, g: torch.Tensor | None = None, u: torch.Tensor | None = None
) -> torch.Tensor:
    """Extrapolate the state: X = F X (+ G U)."""
    if g is None or u is None:
        return multiply(f, x)
    return multiply(f, x) + multiply(g, u)


def predict_covariance(
    f: torch.Tensor, p: torch.Tensor, q: torch.Tensor, *, operators: Operators = DEFAULT_OPERATORS
) -> torch.Tensor:
    """Extrapolate the estimate uncertainty: P = F P Fᵀ + Q."""
    return multiply(multiply(f, p), operators.transpose(f)) + q


def predict(
    f: torch.Tensor,
    p: torch.Tensor,
    q: torch.Tensor,
    x: torch.Tensor,
    g: torch.Tensor | None = None,
    u: torch.Tensor | None = None,
    *,
    operators: Operators = DEFAULT_OPERATORS,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Compute the predicted (prior) state and estimate uncertainty.

    Args:
        f (torch.Tensor): State transition F.
        p (torch.Tensor): Estimate uncertainty P.
        q (torch.Tensor): Process uncertainty Q.
        x (torch.Tensor): State estimate X.
        g (torch.Tensor | None): Input control G. Omitted without input.
        u (torch.Tensor | None): Input U. Omitted without input.
        operators (Operators): Customisable operators.

    Returns:
        torch.Tensor: Predicted state X.
        torch.Tensor: Predicted estimate uncertainty P.
    """
    return predict_state(f, x, g, u), predict_covariance(f, p, q, operators=operators)


def _gain(
    h: torch.Tensor,
    p: torch.Tensor,
    r: torch.Tensor,
    x: torch.Tensor,
    z: torch.Tensor,
    expected: torch.Tensor | None,
    operators: Operators,
) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    y = z - (multiply(h, x) if expected is None else expected)
    h_t = operators.transpose(h)
    s = multiply(multiply(h, p), h_t) + r
    if s.numel() == 1:
        # Single measure: S is a scalar and the gain an ordinary division
        s = s.reshape(())
    k = operators.divide(multiply(p, h_t), s)
    return k, s, y


def _identity_of(x: torch.Tensor, operators: Operators) -> torch.Tensor:
    return operators.identity(deduce_matrix(tuple(x.shape), tuple(x.shape)), dtype=x.dtype, device=x.device)


def update(
    h: torch.Tensor,
    p: torch.Tensor,
    r: torch.Tensor,
    x: torch.Tensor,
    z: torch.Tensor,
    *,
    expected: torch.Tensor | None = None,
    operators: Operators = DEFAULT_OPERATORS,
) -> UpdateResult:
    """Update a state estimate with a new measure, using the Joseph form.

    The Joseph form keeps P symmetric positive semi-definite even when K is not
    exactly the optimal gain (truncation, user supplied H or R).

    Args:
        h (torch.Tensor): Output model H.
        p (torch.Tensor): Estimate uncertainty P.
        r (torch.Tensor): Output uncertainty R.
        x (torch.Tensor): State estimate X.
        z (torch.Tensor): Measure Z.
        expected (torch.Tensor | None): Optional expected measure of an extended
            filter, replacing H X in the innovation.
        operators (Operators): Customisable operators.

    Returns:
        UpdateResult: Updated X and P, with the gain, innovation uncertainty and innovation.

    Raises:
        SingularError: If S is not invertible.
    """
    k, s, y = _gain(h, p, r, x, z, expected, operators)
    factor = _identity_of(x, operators) - multiply(k, h)
    covariance = multiply(multiply(factor, p), operators.transpose(factor)) + multiply(
        multiply(k, r), operators.transpose(k)
    )
    return UpdateResult(x + multiply(k, y), covariance, k, s, y)


def update_optimal(
    h: torch.Tensor,
    p: torch.Tensor,
    r: torch.Tensor,
    x: torch.Tensor,
    z: torch.Tensor,
    *,
    expected: torch.Tensor | None = None,
    operators: Operators = DEFAULT_OPERATORS,
) -> UpdateResult:
    """Update a state estimate with a new measure, using the optimal gain form.

    P = (I - K H) P is cheaper than the Joseph form but only valid for the optimal
    gain and may lose symmetry or positiveness with floating errors.

    Same arguments and results as :func:`update`.
    """
    k, s, y = _gain(h, p, r, x, z, expected, operators)
    factor = _identity_of(x, operators) - multiply(k, h)
    return UpdateResult(x + multiply(k, y), multiply(factor, p), k, s, y)
