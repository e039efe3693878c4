from __future__ import annotations

import numpy as np
from numba import njit


__all__ = [
    "similarity",
    "transport_step_matrix",
    "robust_cholesky",
    "chi2",
]


@njit(cache=True)
def _similarity_kernel(J: np.ndarray, C: np.ndarray) -> np.ndarray:
    n = J.shape[0]
    m = J.shape[1]
    JC = np.zeros((n, m), dtype=np.float64)
    for i in range(n):
        for k in range(m):
            jik = J[i, k]
            if jik == 0.0:
                continue
            for j in range(m):
                JC[i, j] += jik * C[k, j]
    out = np.zeros((n, n), dtype=np.float64)
    for i in range(n):
        for j in range(i, n):
            acc = 0.0
            for k in range(m):
                acc += JC[i, k] * J[j, k]
            out[i, j] = acc
            out[j, i] = acc
    return out


def similarity(J: np.ndarray, C: np.ndarray) -> np.ndarray:
    r"""
    Chain-rule transport of a covariance, :math:`J\,C\,J^\top`.

    Parameters
    ----------
    J : ndarray, shape (n, m)
        Jacobian of the map.
    C : ndarray, shape (m, m)
        Symmetric covariance in the source frame.

    Returns
    -------
    ndarray, shape (n, n)
        Covariance in the target frame. The result is exactly symmetric: only
        the upper triangle is accumulated and mirrored.

    Notes
    -----
    The numba kernel skips structurally-zero Jacobian entries, which are the
    majority for the sparse bound/free transport matrices.
    """
    J = np.ascontiguousarray(J, dtype=np.float64)
    C = np.ascontiguousarray(C, dtype=np.float64)
    if J.shape[1] != C.shape[0] or C.shape[0] != C.shape[1]:
        raise ValueError(f"incompatible shapes for similarity: J{J.shape}, C{C.shape}")
    return _similarity_kernel(J, C)


@njit(cache=True)
def transport_step_matrix(h: float, mass: float, q: float, p: float, dtds: float) -> np.ndarray:
    r"""
    Free-frame transport matrix :math:`D` of one straight-line step.

    .. math::

        D = \mathbb{1}_8,\quad
        D_{0:3,\,4:7} = h\,\mathbb{1}_3,\quad
        D_{3,7} = \frac{\partial t}{\partial (q/p)}
                = \frac{h\,m^2}{p\,q\;\mathrm{d}t/\mathrm{d}s}.

    Parameters
    ----------
    h : float
        Signed step length.
    mass : float
        Particle mass (GeV).
    q : float
        Charge entering q/p, i.e. 1 for neutral particles whose q/p is 1/p.
    p : float
        Momentum magnitude (GeV).
    dtds : float
        Inverse velocity :math:`\sqrt{1 + m^2/p^2}`.
    """
    D = np.eye(8)
    D[0, 4] = h
    D[1, 5] = h
    D[2, 6] = h
    D[3, 7] = h * mass * mass / (p * q * dtds)
    return D


def robust_cholesky(S: np.ndarray) -> np.ndarray:
    r"""
    Cholesky factor of a symmetric matrix with jitter escalation and SPD fallback.

    Attempts ``np.linalg.cholesky(S)``; on failure retries with
    :math:`S + \varepsilon I` where :math:`\varepsilon` grows geometrically.
    If all retries fail an eigenvalue floor is applied:

    .. math::
        S_\text{fix} = V\;\mathrm{diag}(\max(w,\; w_\max\,10^{-15}))\;V^\top.

    Parameters
    ----------
    S : ndarray, shape (n, n)

    Returns
    -------
    L : ndarray, shape (n, n)
        Lower-triangular factor with :math:`L L^\top \approx S`.
    """
    S = np.asarray(S, dtype=np.float64)
    try:
        return np.linalg.cholesky(S)
    except np.linalg.LinAlgError:
        I = np.eye(S.shape[0], dtype=S.dtype)
        eps = 1e-12
        for _ in range(8):
            try:
                return np.linalg.cholesky(S + eps * I)
            except np.linalg.LinAlgError:
                eps *= 10.0
        w, V = np.linalg.eigh(S)
        w = np.clip(w, max(w.max(), 1e-300) * 1e-15, None)
        return np.linalg.cholesky((V * w) @ V.T)


def chi2(residual: np.ndarray, S: np.ndarray) -> float:
    r"""
    Mahalanobis distance :math:`r^\top S^{-1} r` via two triangular solves.

    Parameters
    ----------
    residual : ndarray, shape (n,)
    S : ndarray, shape (n, n)
        Residual covariance.

    Returns
    -------
    float
    """
    r = np.asarray(residual, dtype=np.float64).reshape(-1)
    if r.size == 0:
        return 0.0
    L = robust_cholesky(S)
    y = np.linalg.solve(L, r)
    return float(y @ y)
