"""Test mathematical concepts about KF."""

import torch

from torch_kfe import (
    EstimateUncertainty,
    Input,
    KalmanFilter,
    Output,
    OutputModel,
    OutputUncertainty,
    ProcessUncertainty,
    State,
    StateTransition,
)


def _spd_matrix(dim: int) -> torch.Tensor:
    # Construct a symmetric positive definite covariance.
    cov = torch.randn(dim, dim, dtype=torch.float64)
    return cov @ cov.mT + 1e-2 * torch.eye(dim, dtype=torch.float64)


def random_kf(dim_x: int, dim_z: int) -> KalmanFilter:
    return KalmanFilter(
        State(torch.randn(dim_x, 1)),
        Output(dim_z),
        StateTransition(torch.randn(dim_x, dim_x)),
        OutputModel(torch.randn(dim_z, dim_x)),
        ProcessUncertainty(_spd_matrix(dim_x)),
        OutputUncertainty(_spd_matrix(dim_z)),
        EstimateUncertainty(_spd_matrix(dim_x)),
    )


def test_predict_increase_uncertainty():
    kf = random_kf(3, 1)
    # Unit determinant transition
    kf.f(torch.eye(3) + torch.diag(torch.ones(2), 1))

    det = torch.linalg.det(kf.p())
    kf.predict()

    assert torch.linalg.det(kf.p()) > det

    det = torch.linalg.det(kf.p())
    kf.predict()

    assert torch.linalg.det(kf.p()) > det


def test_update_reduce_uncertainty():
    kf = random_kf(2, 1)
    measure = torch.randn(1)

    det = torch.linalg.det(kf.p())
    kf.update(measure)

    assert torch.linalg.det(kf.p()) < det

    det = torch.linalg.det(kf.p())
    kf.update(measure)

    assert torch.linalg.det(kf.p()) < det


def test_update_is_order_independent():
    kf = random_kf(4, 2)
    kf_2 = kf.clone()
    measure = torch.randn(2, 1)
    measure_2 = torch.randn(2, 1)

    kf.update(measure)
    kf.update(measure_2)
    kf_2.update(measure_2)
    kf_2.update(measure)

    assert torch.allclose(kf.x(), kf_2.x())
    assert torch.allclose(kf.p(), kf_2.p())


def test_several_predict_can_be_reduced_to_one():
    kf = random_kf(3, 2)
    kf_2 = kf.clone()
    f, q = kf.f(), kf.q()

    kf.predict()
    kf.predict()

    kf_2.f(f @ f)
    kf_2.q(f @ q @ f.mT + q)
    kf_2.predict()

    assert torch.allclose(kf.x(), kf_2.x())
    assert torch.allclose(kf.p(), kf_2.p())


def test_filter_covariance_convergence():
    kf = random_kf(2, 2)

    for _ in range(50):
        kf(torch.randn(2, 1))

    covariance = kf.p()

    kf(torch.randn(2, 1))

    assert torch.allclose(covariance, kf.p())


def test_filter_mean_convergence_for_converged_measure():
    kf = random_kf(6, 2)

    # Always the same measure, and process is identity. It should converge
    measure = torch.randn(2, 1, dtype=torch.float64)
    kf.f(torch.eye(6))
    kf.r(torch.eye(2) * 1e-2)

    for _ in range(100):
        kf(measure)

    assert torch.allclose(kf.h() @ kf.x(), measure)


def test_perfect_measure_is_adopted():
    kf = KalmanFilter(
        State(torch.randn(3)),
        Output(3),
        OutputModel(torch.eye(3)),
        ProcessUncertainty(torch.zeros(3, 3)),
        OutputUncertainty(torch.zeros(3, 3)),
    )
    measure = torch.randn(3, 1, dtype=torch.float64)

    kf.update(measure)

    assert torch.allclose(kf.x(), measure)
    assert torch.allclose(kf.p(), torch.zeros(3, 3, dtype=torch.float64))


def test_uninformative_measure_is_ignored():
    kf = random_kf(3, 2)
    kf.r(torch.eye(2) * 1e12)
    x = kf.x()

    kf.update(torch.randn(2, 1))

    assert torch.allclose(kf.x(), x, atol=1e-6)


def test_estimate_uncertainty_stays_symmetric():
    kf = random_kf(4, 2)

    for _ in range(20):
        kf.predict()
        assert torch.equal(kf.p(), kf.p().mT)

        kf.update(torch.randn(2, 1))
        assert torch.equal(kf.p(), kf.p().mT)


def test_shapes_are_preserved():
    kf = KalmanFilter(State([0.0, 0.0, 0.0]), Output(1), Input(2), OutputUncertainty(1.0))

    for _ in range(3):
        kf(torch.randn(2), torch.randn(()))

    assert kf.x().shape == (3, 1)
    assert kf.p().shape == (3, 3)
    assert kf.k().shape == (3, 1)
    assert kf.s().shape == ()
    assert kf.y().shape == ()
    assert kf.z().shape == ()
    assert kf.u().shape == (2, 1)
    assert kf.g().shape == (3, 2)
