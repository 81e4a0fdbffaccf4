"""Exceptions raised by the filter engine.

Errors are surfaced to the caller and never logged by the engine. Failures of
user-supplied callables are not wrapped: they propagate unchanged.
"""


class KalmanError(Exception):
    """Base class of every error raised by torch_kfe."""


class ShapeMismatchError(KalmanError, ValueError):
    """An operand does not conform to the shape declared for it."""


class SingularError(KalmanError, ArithmeticError):
    """A denominator (usually the innovation uncertainty S) is not invertible."""
