"""Pipe-composable decorators of a :class:`~torch_kfe.KalmanFilter`.

A decorator wraps a filter (or another decorator), forwards every operation to it and
is notified of the filter events through :meth:`FilterDecorator.on_event`:

- ``construction`` once the decorator is built,
- ``x`` and ``p`` after the state estimate or estimate uncertainty is written,
- ``predict`` and ``update`` after each step,
- ``destruction`` when the decorator is closed.

Decorators are applied with the pipe operator and can be stacked:

```python
import logging

from torch_kfe import KalmanFilter, Output, State, printer

logging.basicConfig(level=logging.INFO)

kf = KalmanFilter(State(0.0), Output(1)) | printer
kf.update(1.0)  # {"event": "update", "filter": {"f": 1, "h": 1, ...}}
```
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import torch

from .format import format_filter

logger = logging.getLogger(__name__)


class FilterDecorator:
    """Forward every operation of a filter and report its events.

    Attributes:
        decorated (KalmanFilter | FilterDecorator): The wrapped filter.
    """

    def __init__(self, decorated) -> None:
        self.decorated = decorated
        self._closed = False
        self.on_event("construction")

    def on_event(self, event: str) -> None:
        """Called after each event of the filter. Does nothing by default."""

    def close(self) -> None:
        """Report the destruction of the filter, then close the decorated layers.

        Only the first call has an effect.
        """
        if self._closed:
            return
        self._closed = True
        self.on_event("destruction")
        if isinstance(self.decorated, FilterDecorator):
            self.decorated.close()

    def __enter__(self) -> FilterDecorator:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __del__(self) -> None:
        # Partially built decorators and interpreter shutdown report nothing
        if "_closed" in self.__dict__ and not sys.is_finalizing():
            self.close()

    @property
    def state_dim(self) -> int:
        return self.decorated.state_dim

    @property
    def output_dim(self) -> int:
        return self.decorated.output_dim

    @property
    def input_dim(self) -> int:
        return self.decorated.input_dim

    @property
    def dtype(self) -> torch.dtype:
        return self.decorated.dtype

    @property
    def device(self) -> torch.device:
        return self.decorated.device

    @property
    def prediction_types(self):
        return self.decorated.prediction_types

    @property
    def update_types(self):
        return self.decorated.update_types

    @property
    def joseph_update(self) -> bool:
        return self.decorated.joseph_update

    @joseph_update.setter
    def joseph_update(self, value: bool) -> None:
        self.decorated.joseph_update = value

    @property
    def operators(self):
        return self.decorated.operators

    @operators.setter
    def operators(self, value) -> None:
        self.decorated.operators = value

    def x(self, *values):
        if not values:
            return self.decorated.x()
        self.decorated.x(*values)
        self.on_event("x")
        return None

    def p(self, *values):
        if not values:
            return self.decorated.p()
        self.decorated.p(*values)
        self.on_event("p")
        return None

    def f(self, *values):
        return self.decorated.f(*values)

    def g(self, *values):
        return self.decorated.g(*values)

    def q(self, *values):
        return self.decorated.q(*values)

    def h(self, *values):
        return self.decorated.h(*values)

    def r(self, *values):
        return self.decorated.r(*values)

    def u(self) -> torch.Tensor:
        return self.decorated.u()

    def k(self) -> torch.Tensor:
        return self.decorated.k()

    def s(self) -> torch.Tensor:
        return self.decorated.s()

    def y(self) -> torch.Tensor:
        return self.decorated.y()

    def z(self) -> torch.Tensor:
        return self.decorated.z()

    def transition(self, function) -> None:
        self.decorated.transition(function)

    def observation(self, function) -> None:
        self.decorated.observation(function)

    def prediction_arguments(self) -> tuple[Any, ...]:
        return self.decorated.prediction_arguments()

    def update_arguments(self) -> tuple[Any, ...]:
        return self.decorated.update_arguments()

    def predict(self, *arguments: Any) -> None:
        self.decorated.predict(*arguments)
        self.on_event("predict")

    def update(self, *arguments: Any) -> None:
        self.decorated.update(*arguments)
        self.on_event("update")

    def __call__(self, *arguments: Any) -> None:
        # Route through this layer so that both steps are reported
        count = len(self.prediction_types) + (1 if self.input_dim else 0)
        self.predict(*arguments[:count])
        self.update(*arguments[count:])

    def clone(self) -> FilterDecorator:
        """Decorate an independent copy of the decorated filter with the same decorator."""
        return type(self)(self.decorated.clone())

    def to(self, fmt) -> FilterDecorator:
        """Decorate a converted copy of the decorated filter (see :meth:`KalmanFilter.to`)."""
        return type(self)(self.decorated.to(fmt))

    def __str__(self) -> str:
        return format_filter(self)

    def __format__(self, format_spec: str) -> str:
        return format(str(self), format_spec)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.decorated!r})"


class Printer(FilterDecorator):
    """Log one structured record per event of the filter, at INFO level.

    Records have the form ``{"event": "<name>", "filter": <record>}`` where the filter
    record is rendered by :func:`~torch_kfe.format_filter`.
    """

    def on_event(self, event: str) -> None:
        logger.info('{"event": "%s", "filter": %s}', event, format_filter(self))


class _PrinterFactory:
    """Apply a :class:`Printer` with ``kalman_filter | printer``."""

    def __ror__(self, kalman_filter) -> Printer:
        return Printer(kalman_filter)

    def __call__(self, kalman_filter) -> Printer:
        return Printer(kalman_filter)

    def __repr__(self) -> str:
        return "printer"


printer = _PrinterFactory()
