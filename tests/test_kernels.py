import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trackprop.kernels import chi2, robust_cholesky, similarity, transport_step_matrix


def test_similarity_matches_dense_product():
    rng = np.random.default_rng(1)
    J = rng.normal(size=(6, 8))
    A = rng.normal(size=(8, 8))
    C = A @ A.T
    out = similarity(J, C)
    np.testing.assert_allclose(out, J @ C @ J.T, rtol=1e-10, atol=1e-10)
    np.testing.assert_array_equal(out, out.T)


def test_similarity_shape_check():
    with pytest.raises(ValueError):
        similarity(np.eye(3), np.eye(4))


@pytest.mark.parametrize("q", [-1.0, 1.0, 2.0])
def test_transport_step_matrix(q):
    h, m, p = 5.0, 0.14, 2.0
    dtds = np.hypot(1.0, m / p)
    D = transport_step_matrix(h, m, q, p, dtds)
    expected = np.eye(8)
    expected[0:3, 4:7] = h * np.eye(3)
    expected[3, 7] = h * m * m / (p * q * dtds)
    np.testing.assert_allclose(D, expected)


def test_transport_time_term_matches_derivative():
    # t(q/p) = h * sqrt(1 + m^2 (q/p)^2 / q^2) for a step of length h
    h, m, q, qop = 5.0, 0.5, 2.0, 0.8

    def time_of(x):
        return h * np.hypot(1.0, m * x / q)

    p = q / qop
    D = transport_step_matrix(h, m, q, p, np.hypot(1.0, m / p))
    eps = 1e-7
    numeric = (time_of(qop + eps) - time_of(qop - eps)) / (2 * eps)
    assert D[3, 7] == pytest.approx(numeric, rel=1e-6)


def test_robust_cholesky_handles_semidefinite():
    S = np.array([[1.0, 1.0], [1.0, 1.0]])
    L = robust_cholesky(S)
    np.testing.assert_allclose(L @ L.T, S, atol=1e-6)


def test_chi2():
    S = np.diag([4.0, 1.0])
    assert chi2(np.array([2.0, 3.0]), S) == pytest.approx(1.0 + 9.0)
    assert chi2(np.array([]), np.zeros((0, 0))) == 0.0
