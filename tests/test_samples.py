"""Reference trajectories of classical one and two dimensional filters."""

import datetime

import pytest
import torch

from torch_kfe import (
    EstimateUncertainty,
    Input,
    InputControl,
    KalmanFilter,
    Output,
    OutputUncertainty,
    PredictionTypes,
    ProcessUncertainty,
    State,
    StateTransition,
)


def _relative_error(value, expected: float) -> float:
    return abs(1 - float(value) / expected)


def test_building_height():
    kf = KalmanFilter(State(60.0), Output(1), EstimateUncertainty(225.0), OutputUncertainty(25.0))

    for height in (48.54, 47.11, 55.01, 55.15, 49.89, 40.85, 46.72, 50.05, 51.27, 49.95):
        kf.update(height)

    assert _relative_error(kf.x(), 49.57) < 0.001


def test_liquid_temperature():
    kf = KalmanFilter()
    kf.x(10.0)
    kf.p(100 * 100.0)
    kf.q(0.0001)

    kf.predict()

    # Constant dynamics: the prediction keeps the estimate and adds the process uncertainty
    assert kf.x() == 10
    assert kf.p() == 10000.0001

    kf.r(0.1 * 0.1)
    kf.update(49.95)

    assert _relative_error(kf.k(), 0.999999) < 0.0001

    for temperature in (49.967, 50.1, 50.106, 49.992, 49.819, 49.933, 50.007, 50.023, 49.99):
        kf.predict()
        kf.update(temperature)

    assert _relative_error(kf.p(), 0.0013) < 0.05
    assert _relative_error(kf.x(), 49.988) < 0.001
    assert _relative_error(kf.k(), 0.1265) < 0.001


def test_dog_position():
    kf = KalmanFilter(
        State(0.0),
        Output(1),
        Input(1),
        EstimateUncertainty(20 * 20.0),
        ProcessUncertainty(1.0),
        OutputUncertainty(2.0),
        InputControl(1.0),
    )

    for position in (1.354, 1.882, 4.341, 7.156, 6.939, 6.844, 9.847, 12.553, 16.273, 14.8):
        kf.predict(1.0)
        kf.update(position)

    assert _relative_error(kf.x(), 15.053) < 0.001


def _assert_state(kf: KalmanFilter, expected, tolerance: float) -> None:
    for value, reference in zip(kf.x().flatten().tolist(), expected):
        assert _relative_error(value, reference) < tolerance


def _assert_uncertainty(kf: KalmanFilter, expected, tolerance: float) -> None:
    p = kf.p()
    assert torch.equal(p, p.mT)
    for value, reference in zip(p.flatten().tolist(), torch.tensor(expected).flatten().tolist()):
        assert _relative_error(value, reference) < tolerance


@pytest.fixture
def rocket() -> KalmanFilter:
    def process_uncertainty(x, delta_time):
        dt = delta_time.total_seconds()
        return 0.1 * 0.1 * torch.tensor([[dt**4 / 4, dt**3 / 2], [dt**3 / 2, dt**2]], dtype=torch.float64)

    def state_transition(x, u, delta_time):
        dt = delta_time.total_seconds()
        return [[1.0, dt], [0.0, 1.0]]

    def input_control(delta_time):
        return [0.0313, delta_time.total_seconds()]

    return KalmanFilter(
        State([0.0, 0.0]),
        Output(1),
        Input(1),
        PredictionTypes(datetime.timedelta),
        EstimateUncertainty([[500.0, 0.0], [0.0, 500.0]]),
        ProcessUncertainty(process_uncertainty),
        StateTransition(state_transition),
        InputControl(input_control),
    )


def test_rocket_altitude(rocket: KalmanFilter):
    gravity = -9.8
    delta_time = datetime.timedelta(milliseconds=250)

    rocket.predict(delta_time, -gravity)

    _assert_state(rocket, (0.3, 2.45), 0.03)
    _assert_uncertainty(rocket, [[531.25, 125.0], [125.0, 500.0]], 0.001)

    rocket.h([1.0, 0.0])
    rocket.r(400.0)
    rocket.update(-32.4)

    _assert_state(rocket, (-18.35, -1.94), 0.001)
    _assert_uncertainty(rocket, [[228.2, 53.7], [53.7, 483.2]], 0.001)

    rocket.predict(delta_time, 39.72 + gravity)

    _assert_state(rocket, (-17.9, 5.54), 0.001)
    _assert_uncertainty(rocket, [[285.2, 174.5], [174.5, 483.2]], 0.001)

    rocket.update(-11.1)
    rocket.predict(delta_time, 40.02 + gravity)

    _assert_state(rocket, (-12.3, 14.8), 0.002)
    _assert_uncertainty(rocket, [[244.9, 211.6], [211.6, 438.8]], 0.001)

    for altitude, acceleration in (
        (18.0, 39.97),
        (22.9, 39.81),
        (19.5, 39.75),
        (28.5, 39.6),
        (46.5, 39.77),
        (68.9, 39.83),
        (48.2, 39.73),
        (56.1, 39.87),
        (90.5, 39.81),
        (104.9, 39.92),
        (140.9, 39.78),
        (148.0, 39.98),
        (187.6, 39.76),
        (209.2, 39.86),
        (244.6, 39.61),
        (276.4, 39.86),
        (323.5, 39.74),
        (357.3, 39.87),
        (357.4, 39.63),
        (398.3, 39.67),
        (446.7, 39.96),
        (465.1, 39.8),
        (529.4, 39.89),
        (570.4, 39.85),
        (636.8, 39.9),
        (693.3, 39.81),
        (707.3, 39.81),
    ):
        rocket.update(altitude)
        rocket.predict(delta_time, acceleration + gravity)

    rocket.update(748.5)

    assert _relative_error(rocket.p()[0, 0], 49.3) < 0.001

    rocket.predict(delta_time, 39.68 + gravity)

    _assert_state(rocket, (831.5, 222.94), 0.001)
    _assert_uncertainty(rocket, [[54.3, 10.4], [10.4, 2.6]], 0.01)
    assert rocket.prediction_arguments() == (delta_time,)
    assert rocket.u() == 39.68 + gravity
