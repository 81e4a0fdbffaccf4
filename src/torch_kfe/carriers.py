"""Named parameter carriers used to configure a :class:`~torch_kfe.KalmanFilter`.

Each carrier wraps one configuration value so that the filter can be declared with
self-describing arguments in any order:

```python
kf = KalmanFilter(
    State([0.0, 0.0]),
    Output(1),
    Input(1),
    EstimateUncertainty([[500.0, 0.0], [0.0, 500.0]]),
    OutputModel([1.0, 0.0]),
    OutputUncertainty(400.0),
    PredictionTypes(float),
)
```

Only :class:`State` and :class:`Output` (and :class:`Input` for filters with a
control input) are mandatory. Matrices that may be recomputed at each step
(F, G, Q, H, R) accept either a value or a callable.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Callable, Tuple


@dataclasses.dataclass(frozen=True)
class State:
    """Initial state estimate X. Its size defines the state dimension."""

    value: Any


@dataclasses.dataclass(frozen=True)
class EstimateUncertainty:
    """Initial estimate uncertainty P."""

    value: Any


@dataclasses.dataclass(frozen=True)
class ProcessUncertainty:
    """Process uncertainty Q, or ``q(x, *prediction_args) -> Q``."""

    value: Any


@dataclasses.dataclass(frozen=True)
class OutputUncertainty:
    """Output uncertainty R, or ``r(x, *update_args) -> R``."""

    value: Any


@dataclasses.dataclass(frozen=True)
class OutputModel:
    """Output model H, or ``h(x, *update_args) -> H``."""

    value: Any


@dataclasses.dataclass(frozen=True)
class StateTransition:
    """State transition F, or ``f(x, [u,] *prediction_args) -> F``."""

    value: Any


@dataclasses.dataclass(frozen=True)
class InputControl:
    """Input control G, or ``g(*prediction_args) -> G``."""

    value: Any


@dataclasses.dataclass(frozen=True)
class Transition:
    """Extended state transition function ``f(x, [u,] *prediction_args) -> X``."""

    value: Callable[..., Any]


@dataclasses.dataclass(frozen=True)
class Observation:
    """Extended observation function ``h(x, *update_args) -> Z``."""

    value: Callable[..., Any]


@dataclasses.dataclass(frozen=True)
class Input:
    """Shape tag of the control input U.

    Attributes:
        dim (int): Dimension of the input. Must be positive.
    """

    dim: int = 1


@dataclasses.dataclass(frozen=True)
class Output:
    """Shape tag of the output (measurement) Z.

    Attributes:
        dim (int): Dimension of the output. Must be positive.
    """

    dim: int = 1


class _ArgumentTypes:
    """Ordered pack of types of the extra arguments given to a filter step."""

    __slots__ = ("types",)

    def __init__(self, *types: type) -> None:
        self.types: Tuple[type, ...] = types

    def __len__(self) -> int:
        return len(self.types)

    def __iter__(self):
        return iter(self.types)

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.types == other.types  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self), self.types))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({', '.join(kind.__name__ for kind in self.types)})"

    def convert(self, arguments: Tuple[Any, ...]) -> Tuple[Any, ...]:
        """Convert arguments to the declared types.

        An argument that is not an instance of its declared type is converted by
        calling the type on it. Conversion errors propagate unchanged.
        """
        return tuple(
            argument if isinstance(argument, kind) else kind(argument) for kind, argument in zip(self.types, arguments)
        )


class UpdateTypes(_ArgumentTypes):
    """Types of the extra arguments of ``update``, forwarded to the H and R callables."""

    __slots__ = ()


class PredictionTypes(_ArgumentTypes):
    """Types of the extra arguments of ``predict``, forwarded to the F, G and Q callables."""

    __slots__ = ()


CARRIERS = (
    State,
    EstimateUncertainty,
    ProcessUncertainty,
    OutputUncertainty,
    OutputModel,
    StateTransition,
    InputControl,
    Transition,
    Observation,
    Input,
    Output,
    UpdateTypes,
    PredictionTypes,
)


def collect(carriers: Tuple[Any, ...]) -> dict[type, Any]:
    """Index carriers by their type.

    Raises:
        TypeError: On a non carrier argument or a duplicated carrier.
    """
    collected: dict[type, Any] = {}
    for carrier in carriers:
        kind = type(carrier)
        if kind not in CARRIERS:
            raise TypeError(f"Expected a named parameter carrier, got {kind.__name__}")
        if kind in collected:
            raise TypeError(f"Duplicated carrier: {kind.__name__}")
        collected[kind] = carrier
    return collected
