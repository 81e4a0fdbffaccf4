"""Torch-KFE: a generic Kalman filter engine in PyTorch.

torch-kfe implements the classic (linear, Gaussian) Kalman filter for a single
system of any dimension, with scalar and matrix operands handled alike: a one
dimensional state or a single measure are plain scalars, larger ones are column
vectors and matrices.

Key features
------------
- **Self-describing configuration**: a filter is declared with named parameter
  carriers (``State``, ``Output``, ``Input``, ``EstimateUncertainty``, ...).
- **Variable models**: F, G, Q, H and R can be callables recomputed at each step
  from the state and typed extra arguments (e.g. a time step).
- **Extended filters**: user supplied transition and observation functions with
  their Jacobians as F and H.
- **Customisable operators**: transpose, symmetrise, divide, identity and zero.
- **Decorators**: ``kalman_filter | printer`` logs every step as a structured record.

Numerical notes
---------------
torch-kfe runs in ``float64`` by default (see :func:`~torch_kfe.set_dtype`). The
update uses the Joseph form, P is symmetrised after each step and the gain is
computed with a rank-revealing QR decomposition.

Getting started
---------------
The core API consists of :class:`~torch_kfe.KalmanFilter` with its
:meth:`~torch_kfe.KalmanFilter.predict` and :meth:`~torch_kfe.KalmanFilter.update`
steps, and the accessors of the filter quantities (``x()``, ``p()``, ``k()``, ...).
The :mod:`torch_kfe.ckf` module builds standard constant-derivative models.

Notes on shapes
---------------
torch-kfe uses column vectors ``(dim, 1)``. Any dimension of size 1 collapses:
see :mod:`torch_kfe.algebra`.
"""

from .algebra import DEFAULT_OPERATORS, Operators, cholesky_divide, divide
from .carriers import (
    EstimateUncertainty,
    Input,
    InputControl,
    Observation,
    Output,
    OutputModel,
    OutputUncertainty,
    PredictionTypes,
    ProcessUncertainty,
    State,
    StateTransition,
    Transition,
    UpdateTypes,
)
from .config import get_dtype, set_dtype
from .decorator import FilterDecorator, Printer, printer
from .errors import KalmanError, ShapeMismatchError, SingularError
from .format import format_filter, to_record
from .kalman_filter import KalmanFilter

__all__ = [
    "DEFAULT_OPERATORS",
    "EstimateUncertainty",
    "FilterDecorator",
    "Input",
    "InputControl",
    "KalmanError",
    "KalmanFilter",
    "Observation",
    "Operators",
    "Output",
    "OutputModel",
    "OutputUncertainty",
    "PredictionTypes",
    "Printer",
    "ProcessUncertainty",
    "ShapeMismatchError",
    "SingularError",
    "State",
    "StateTransition",
    "Transition",
    "UpdateTypes",
    "cholesky_divide",
    "divide",
    "format_filter",
    "get_dtype",
    "printer",
    "set_dtype",
    "to_record",
]
__version__ = "0.1.0"
