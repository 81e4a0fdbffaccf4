from __future__ import annotations

import contextlib
import copy
from typing import Any, Callable, overload

import torch

from . import algebra, algorithm, carriers, config
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
from .errors import ShapeMismatchError
from .format import format_filter

if hasattr(torch._tensor_str, "printoptions"):  # noqa: SLF001
    printoptions = torch._tensor_str.printoptions  # noqa: SLF001
else:

    @contextlib.contextmanager
    def printoptions(**kwargs):
        """Change pytorch printoptions temporarily. From the future of pytorch."""
        old_printoptions = torch._tensor_str.PRINT_OPTS  # noqa: SLF001
        torch.set_printoptions(**kwargs)
        try:
            yield
        finally:
            torch._tensor_str.PRINT_OPTS = old_printoptions  # noqa: SLF001


class KalmanFilter:
    """Kalman filter engine over scalar and matrix operands.

    This class estimates the latent state of a linear dynamical system under Gaussian noise:

        x_k = F x_{k-1} + G u_k + w_k,   w_k ~ N(0, Q)
        z_k = H x_k               + v_k,   v_k ~ N(0, R)

    where:
    - ``x_k`` is the hidden state (dimension ``n = state_dim``),
    - ``z_k`` is the output/measure (dimension ``m = output_dim``),
    - ``u_k`` is the optional control input (dimension ``p = input_dim``, 0 without input),
    - ``F`` is the state transition, ``G`` the input control, ``Q`` the process uncertainty,
    - ``H`` is the output model, ``R`` the output uncertainty.

    The filter owns the twelve canonical quantities (F, G, H, K, P, Q, R, S, U, X, Y, Z)
    and mutates them in place with `predict` and `update`, which can be called in any order.
    F, G, Q, H and R are either fixed values or callables recomputing them at each step
    from the state and the extra step arguments declared with
    :class:`~torch_kfe.PredictionTypes` and :class:`~torch_kfe.UpdateTypes`.

    Shape conventions:
    - Dimensions are fixed at construction and each write is checked against them.
    - Vectors are **column vectors** ``(dim, 1)``, matrices are ``(rows, columns)``.
    - Any dimension of size 1 collapses: a single measure is a scalar, as is the
      estimate uncertainty of a one dimensional state.

    Numerical notes:
    - The update uses the Joseph form by default, which keeps P symmetric positive
      semi-definite even for a sub-optimal gain. The optimal gain form ``(I - KH)P``
      can be selected with ``joseph_update=False``.
    - P is symmetrised ``(P + Pᵀ)/2`` after every step.
    - The gain is computed by right division ``K = PHᵀ / S`` with a rank-revealing QR,
      a singular S raises :class:`~torch_kfe.SingularError`.

    Error handling:
    A step (`predict` or `update`) either succeeds or leaves the filter untouched: all the
    new quantities are computed before any of them is stored. Errors of user callables
    propagate unchanged.

    Example:
    ```python
        kf = KalmanFilter(State(60.0), Output(1), EstimateUncertainty(225.0), OutputUncertainty(25.0))
        for height in (48.54, 47.11, 55.01):
            kf.update(height)
        kf.x()  # tensor(50.02..., dtype=torch.float64)
    ```

    Attributes:
        joseph_update (bool): If True, use the Joseph form covariance update.
            Default: True
        operators (Operators): Customisable transpose, symmetrise, divide, identity and
            zero operators.
            Default: :data:`~torch_kfe.algebra.DEFAULT_OPERATORS`
        update_types (UpdateTypes): Types of the extra update arguments.
        prediction_types (PredictionTypes): Types of the extra prediction arguments.
    """

    _REPR_SPLIT_LENGTH = 110

    def __init__(
        self,
        *named_parameters: Any,
        joseph_update: bool = True,
        operators: algebra.Operators | None = None,
    ) -> None:
        collected = carriers.collect(named_parameters)
        if collected and (State not in collected or Output not in collected):
            raise TypeError("State and Output are mandatory named parameters")

        self.joseph_update = joseph_update
        self.operators = algebra.DEFAULT_OPERATORS if operators is None else operators
        self.update_types: UpdateTypes = collected.get(UpdateTypes, UpdateTypes())
        self.prediction_types: PredictionTypes = collected.get(PredictionTypes, PredictionTypes())

        # Dimensions are deduced from the initial state and the shape tags
        state = torch.as_tensor(collected.get(State, State(0.0)).value, dtype=config.get_dtype())
        self._dtype = state.dtype
        self._device = state.device
        self._state_dim = state.numel()
        self._output_dim = collected.get(Output, Output()).dim
        self._input_dim = collected[Input].dim if Input in collected else 0
        if self._output_dim < 1 or self._input_dim < 0 or (Input in collected and self._input_dim < 1):
            raise ShapeMismatchError("Output and Input dimensions must be positive")

        x_shape = algebra.vector_shape(self._state_dim)
        z_shape = algebra.vector_shape(self._output_dim)
        self._shapes: dict[str, algebra.Shape] = {
            "x": x_shape,
            "p": algebra.deduce_matrix(x_shape, x_shape),
            "f": algebra.deduce_matrix(x_shape, x_shape),
            "q": algebra.deduce_matrix(x_shape, x_shape),
            "h": algebra.deduce_matrix(z_shape, x_shape),
            "r": algebra.deduce_matrix(z_shape, z_shape),
            "k": algebra.deduce_matrix(x_shape, z_shape),
            "s": algebra.deduce_matrix(z_shape, z_shape),
            "y": z_shape,
            "z": z_shape,
        }
        if self._input_dim:
            u_shape = algebra.vector_shape(self._input_dim)
            self._shapes["u"] = u_shape
            self._shapes["g"] = algebra.deduce_matrix(x_shape, u_shape)

        identity = self.operators.identity
        zero = self.operators.zero
        self._x = self._evaluate("x", state).clone()
        self._p = identity(self._shapes["p"], dtype=self._dtype, device=self._device)
        self._f = identity(self._shapes["f"], dtype=self._dtype, device=self._device)
        self._q = zero(self._shapes["q"], dtype=self._dtype, device=self._device)
        self._h = identity(self._shapes["h"], dtype=self._dtype, device=self._device)
        self._r = zero(self._shapes["r"], dtype=self._dtype, device=self._device)
        self._k = identity(self._shapes["k"], dtype=self._dtype, device=self._device)
        self._s = identity(self._shapes["s"], dtype=self._dtype, device=self._device)
        self._y = zero(self._shapes["y"], dtype=self._dtype, device=self._device)
        self._z = zero(self._shapes["z"], dtype=self._dtype, device=self._device)
        self._g: torch.Tensor | None = None
        self._u: torch.Tensor | None = None
        if self._input_dim:
            self._g = identity(self._shapes["g"], dtype=self._dtype, device=self._device)
            self._u = zero(self._shapes["u"], dtype=self._dtype, device=self._device)

        self._ff: Callable[..., Any] | None = None
        self._gg: Callable[..., Any] | None = None
        self._qq: Callable[..., Any] | None = None
        self._hh: Callable[..., Any] | None = None
        self._rr: Callable[..., Any] | None = None
        self._transition: Callable[..., Any] | None = None
        self._observation: Callable[..., Any] | None = None

        self._prediction_arguments: tuple[Any, ...] = (None,) * len(self.prediction_types)
        self._update_arguments: tuple[Any, ...] = (None,) * len(self.update_types)

        if EstimateUncertainty in collected:
            self.p(collected[EstimateUncertainty].value)
        if ProcessUncertainty in collected:
            self.q(collected[ProcessUncertainty].value)
        if OutputUncertainty in collected:
            self.r(collected[OutputUncertainty].value)
        if OutputModel in collected:
            self.h(collected[OutputModel].value)
        if StateTransition in collected:
            self.f(collected[StateTransition].value)
        if InputControl in collected:
            self.g(collected[InputControl].value)
        if Transition in collected:
            self.transition(collected[Transition].value)
        if Observation in collected:
            self.observation(collected[Observation].value)

    @property
    def state_dim(self) -> int:
        """Dimension of the state variable."""
        return self._state_dim

    @property
    def output_dim(self) -> int:
        """Dimension of the measured variable."""
        return self._output_dim

    @property
    def input_dim(self) -> int:
        """Dimension of the control input (0 without input)."""
        return self._input_dim

    @property
    def device(self) -> torch.device:
        """Device of the Kalman filter."""
        return self._device

    @property
    def dtype(self) -> torch.dtype:
        """Dtype of the Kalman filter."""
        return self._dtype

    def _evaluate(self, name: str, value: Any) -> torch.Tensor:
        return algebra.evaluate(value, self._shapes[name], dtype=self._dtype, device=self._device)

    def _assign(self, name: str, values: tuple[Any, ...]) -> torch.Tensor:
        # Several values are the coefficients of a vector: x(0.0, 0.0)
        value = values[0] if len(values) == 1 else list(values)
        return self._evaluate(name, value).clone()

    def _require_input(self, name: str) -> None:
        if not self._input_dim:
            raise AttributeError(f"{name} is not available for a filter without input")

    # Characteristics

    @overload
    def x(self) -> torch.Tensor: ...

    @overload
    def x(self, value: Any, *values: Any) -> None: ...

    def x(self, *values):
        """Get or set the state estimate X.

        Args:
            *values (Any): New state estimate. Several values are the coefficients of the vector.

        Returns:
            torch.Tensor | None: The current X when called without values.
        """
        if not values:
            return self._x
        self._x = self._assign("x", values)
        return None

    @overload
    def p(self) -> torch.Tensor: ...

    @overload
    def p(self, value: Any, *values: Any) -> None: ...

    def p(self, *values):
        """Get or set the estimate uncertainty P."""
        if not values:
            return self._p
        self._p = self._assign("p", values)
        return None

    def f(self, *values):
        """Get or set the state transition F.

        F can be set to a callable ``f(x, [u,] *prediction_args) -> F`` evaluated at each
        prediction (``u`` only for filters with input). The stored F is then refreshed
        with the returned value.
        """
        if not values:
            return self._f
        if len(values) == 1 and callable(values[0]):
            self._ff = values[0]
        else:
            self._f = self._assign("f", values)
            self._ff = None
        return None

    def g(self, *values):
        """Get or set the input control G, or ``g(*prediction_args) -> G``.

        Raises:
            AttributeError: For a filter without input.
        """
        self._require_input("g")
        if not values:
            return self._g
        if len(values) == 1 and callable(values[0]):
            self._gg = values[0]
        else:
            self._g = self._assign("g", values)
            self._gg = None
        return None

    def q(self, *values):
        """Get or set the process uncertainty Q, or ``q(x, *prediction_args) -> Q``."""
        if not values:
            return self._q
        if len(values) == 1 and callable(values[0]):
            self._qq = values[0]
        else:
            self._q = self._assign("q", values)
            self._qq = None
        return None

    def h(self, *values):
        """Get or set the output model H, or ``h(x, *update_args) -> H``."""
        if not values:
            return self._h
        if len(values) == 1 and callable(values[0]):
            self._hh = values[0]
        else:
            self._h = self._assign("h", values)
            self._hh = None
        return None

    def r(self, *values):
        """Get or set the output uncertainty R, or ``r(x, *update_args) -> R``."""
        if not values:
            return self._r
        if len(values) == 1 and callable(values[0]):
            self._rr = values[0]
        else:
            self._r = self._assign("r", values)
            self._rr = None
        return None

    def u(self) -> torch.Tensor:
        """Last control input U.

        Raises:
            AttributeError: For a filter without input.
        """
        self._require_input("u")
        return self._u

    def k(self) -> torch.Tensor:
        """Last gain K."""
        return self._k

    def s(self) -> torch.Tensor:
        """Last innovation uncertainty S."""
        return self._s

    def y(self) -> torch.Tensor:
        """Last innovation Y."""
        return self._y

    def z(self) -> torch.Tensor:
        """Last output (measure) Z."""
        return self._z

    def transition(self, function: Callable[..., Any] | None) -> None:
        """Set the extended state transition function.

        ``function(x, [u,] *prediction_args) -> X`` replaces ``F X (+ G U)`` on prediction.
        F is still used to extrapolate P and should be its Jacobian. ``None`` restores the
        linear transition.
        """
        self._transition = function

    def observation(self, function: Callable[..., Any] | None) -> None:
        """Set the extended observation function.

        ``function(x, *update_args) -> Z`` replaces ``H X`` in the innovation. H is still
        used for S, K and P and should be its Jacobian. ``None`` restores the linear model.
        """
        self._observation = function

    def prediction_arguments(self) -> tuple[Any, ...]:
        """Last arguments given to `predict`, in the order of the prediction types."""
        return self._prediction_arguments

    def update_arguments(self) -> tuple[Any, ...]:
        """Last arguments given to `update`, in the order of the update types."""
        return self._update_arguments

    # Filtering

    def _split_arguments(
        self, arguments: tuple[Any, ...], types: carriers.UpdateTypes | carriers.PredictionTypes
    ) -> tuple[tuple[Any, ...], tuple[Any, ...]]:
        count = len(types)
        if len(arguments) < count:
            raise TypeError(f"Expected {count} leading {types!r} arguments, got {len(arguments)}")
        return types.convert(arguments[:count]), arguments[count:]

    def predict(self, *arguments: Any) -> None:
        """Predict the next state estimate and estimate uncertainty.

        Implements the total probability theorem:

            X = F X + G U
            P = F P Fᵀ + Q

        then symmetrises P. The F, G and Q callables (if any) are evaluated first, with the
        pre-prediction state.

        Args:
            *arguments (Any): The prediction arguments (as declared by the prediction types),
                followed by the input U for filters with input (several values are the
                coefficients of U).

        Raises:
            TypeError: If the arguments do not match the prediction types and input.
            ShapeMismatchError: If an argument or computed value does not conform.
        """
        prediction_arguments, inputs = self._split_arguments(arguments, self.prediction_types)
        x = self._x

        u = None
        if self._input_dim:
            if not inputs:
                raise TypeError("predict() requires the input U")
            u = self._assign("u", inputs)
            state_arguments: tuple[Any, ...] = (x, u, *prediction_arguments)
        else:
            if inputs:
                raise TypeError(f"predict() got {len(inputs)} unexpected input arguments")
            state_arguments = (x, *prediction_arguments)

        f = self._f if self._ff is None else self._assign("f", (self._ff(*state_arguments),))
        q = self._q if self._qq is None else self._assign("q", (self._qq(x, *prediction_arguments),))
        g = self._g
        if self._gg is not None:
            g = self._assign("g", (self._gg(*prediction_arguments),))

        if self._transition is None:
            x = algorithm.predict_state(f, x, g, u)
        else:
            x = self._transition(*state_arguments)
        p = algorithm.predict_covariance(f, self._p, q, operators=self.operators)

        x = self._evaluate("x", x)
        p = self.operators.symmetrise(self._evaluate("p", p))

        # Commit
        self._x, self._p, self._f, self._q = x, p, f, q
        if self._input_dim:
            self._g, self._u = g, u
        self._prediction_arguments = prediction_arguments

    def update(self, *arguments: Any) -> None:
        """Update the estimates with the outcome of a measurement.

        Implements the Bayes' theorem:

            Y = Z - H X
            S = H P Hᵀ + R
            K = P Hᵀ / S
            X = X + K Y
            P = (I - K H) P (I - K H)ᵀ + K R Kᵀ

        then symmetrises P. The H and R callables (if any) are evaluated first, with the
        pre-update state.

        Args:
            *arguments (Any): The update arguments (as declared by the update types),
                followed by the measure Z (several values are the coefficients of Z).

        Raises:
            TypeError: If the arguments do not match the update types and output.
            ShapeMismatchError: If an argument or computed value does not conform.
            SingularError: If the innovation uncertainty S is not invertible.
        """
        update_arguments, outputs = self._split_arguments(arguments, self.update_types)
        if not outputs:
            raise TypeError("update() requires the output Z")
        x = self._x

        h = self._h if self._hh is None else self._assign("h", (self._hh(x, *update_arguments),))
        r = self._r if self._rr is None else self._assign("r", (self._rr(x, *update_arguments),))
        z = self._assign("z", outputs)
        expected = None
        if self._observation is not None:
            expected = self._evaluate("z", self._observation(x, *update_arguments))

        step = algorithm.update if self.joseph_update else algorithm.update_optimal
        result = step(h, self._p, r, x, z, expected=expected, operators=self.operators)

        k = self._evaluate("k", result.k)
        s = self._evaluate("s", result.s)
        y = self._evaluate("y", result.y)
        x = self._evaluate("x", result.x)
        p = self.operators.symmetrise(self._evaluate("p", result.p))

        # Commit
        self._x, self._p, self._h, self._r = x, p, h, r
        self._k, self._s, self._y, self._z = k, s, y, z
        self._update_arguments = update_arguments

    def __call__(self, *arguments: Any) -> None:
        """Run a full filter step: `predict` then `update`.

        Args:
            *arguments (Any): The prediction arguments, the input U (a single value, for
                filters with input), the update arguments and finally the measure Z.
        """
        count = len(self.prediction_types) + (1 if self._input_dim else 0)
        self.predict(*arguments[:count])
        self.update(*arguments[count:])

    # Conversions

    def clone(self) -> KalmanFilter:
        """Return an independent deep copy of the filter.

        Tensors are copied. Callables are shared.
        """
        return copy.deepcopy(self)

    @overload
    def to(self, dtype: torch.dtype) -> KalmanFilter: ...

    @overload
    def to(self, device: torch.device) -> KalmanFilter: ...

    def to(self, fmt):
        """Convert a Kalman filter to a specific device or dtype.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the filter to.

        Returns:
            KalmanFilter: An independent filter with the right format
        """
        other = self.clone()
        for name in ("x", "p", "f", "q", "g", "u", "h", "r", "k", "s", "y", "z"):
            value = getattr(other, f"_{name}")
            if value is not None:
                setattr(other, f"_{name}", value.to(fmt))
        if isinstance(fmt, torch.dtype):
            other._dtype = fmt  # noqa: SLF001
        else:
            other._device = torch.device(fmt)  # noqa: SLF001
        return other

    def __str__(self) -> str:
        return format_filter(self)

    def __format__(self, format_spec: str) -> str:
        return format(str(self), format_spec)

    def __repr__(self) -> str:
        """Convert the Kalman filter model into a readable string."""
        header = (
            f"Kalman Filter (State dimension: {self.state_dim}, Output dimension: {self.output_dim}"
            f", Input dimension: {self.input_dim})"
        )
        blocks = [header]
        for title, first, second in (("Process", "F", "Q"), ("Output", "H", "R")):
            with printoptions(profile="short", sci_mode=False, linewidth=80):
                matrix_repr = str(getattr(self, f"_{first.lower()}")).split("\n")
                noise_repr = str(getattr(self, f"_{second.lower()}")).split("\n")

            prefix = f"{title}: {first} = "
            indent = " " * len(prefix)
            max_char_matrix = max(len(line) for line in matrix_repr)
            max_char_noise = max(len(line) for line in noise_repr)
            if max_char_matrix + max_char_noise <= self._REPR_SPLIT_LENGTH:  # Single line
                matrix_repr = [line + " " * (max_char_matrix - len(line)) for line in matrix_repr]
                noise_repr = noise_repr + [""] * (len(matrix_repr) - len(noise_repr))
                matrix_repr = matrix_repr + [" " * max_char_matrix] * (len(noise_repr) - len(matrix_repr))
                headers = [prefix] + [indent] * (len(matrix_repr) - 1)
                separators = [f"  &  {second} = "] + ["         "] * (len(matrix_repr) - 1)
                block = "\n".join(
                    "".join(lines).rstrip() for lines in zip(headers, matrix_repr, separators, noise_repr)
                )
            else:  # Two lines
                second_prefix = " " * (len(prefix) - len(f"{second} = ")) + f"{second} = "
                headers = [prefix] + [indent] * (len(matrix_repr) - 1)
                headers += ["", second_prefix] + [indent] * (len(noise_repr) - 1)
                block = "\n".join("".join(lines) for lines in zip(headers, [*matrix_repr, "", *noise_repr]))
            blocks.append(block)

            if title == "Process" and self._input_dim:
                with printoptions(profile="short", sci_mode=False, linewidth=80):
                    control_repr = str(self._g).split("\n")
                headers = ["Input: G = "] + [" " * len("Input: G = ")] * (len(control_repr) - 1)
                blocks.append("\n".join("".join(lines) for lines in zip(headers, control_repr)))

        n_char = max(len(line) for line in "\n".join(blocks).split("\n"))
        return ("\n" + "-" * n_char + "\n").join(blocks)
