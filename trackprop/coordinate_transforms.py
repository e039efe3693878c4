r"""
Bound / curvilinear / free coordinate maps and their Jacobians.

Conventions
-----------
A direction is parametrised by the azimuth :math:`\phi` and polar angle
:math:`\theta`:

.. math::

    \hat d = (\cos\phi\sin\theta,\; \sin\phi\sin\theta,\; \cos\theta).

A *reference frame* is a rotation matrix whose columns are the local
:math:`x`, :math:`y` axes and the measurement normal. The bound-to-free
Jacobian (8×6) and the free-to-bound Jacobian (6×8) only depend on this frame
and on the direction; :class:`~trackprop.surfaces.Surface` builds both from
its own frame, the curvilinear functions below from :func:`curvilinear_frame`.

Surfaces are used through ``local_to_global`` / ``global_to_local`` only, so
this module does not import :mod:`trackprop.surfaces`.
"""
from __future__ import annotations

from typing import Tuple

import numpy as np

from trackprop.definitions import (
    BOUND_SIZE,
    CURVILINEAR_PROJ_TOLERANCE,
    FREE_SIZE,
    BoundIndices,
    FreeIndices,
)
from trackprop.errors import SurfaceError


__all__ = [
    "direction_from_angles",
    "angles_from_direction",
    "curvilinear_frame",
    "bound_to_free_jacobian",
    "free_to_bound_jacobian",
    "curvilinear_to_free_jacobian",
    "free_to_curvilinear_jacobian",
    "bound_to_free",
    "free_to_bound",
    "free_vector",
]

_UNIT_X = np.array([1.0, 0.0, 0.0])
_UNIT_Z = np.array([0.0, 0.0, 1.0])


def direction_from_angles(phi: float, theta: float) -> np.ndarray:
    """Unit direction for azimuth ``phi`` and polar angle ``theta``."""
    st = np.sin(theta)
    return np.array([np.cos(phi) * st, np.sin(phi) * st, np.cos(theta)], dtype=np.float64)


def angles_from_direction(direction: np.ndarray) -> Tuple[float, float]:
    r"""
    Return :math:`(\phi, \theta)` of ``direction`` (need not be normalised).

    :math:`\theta` is computed as ``atan2(perp, z)`` which stays accurate close
    to the beam axis.
    """
    d = np.asarray(direction, dtype=np.float64)
    perp = np.hypot(d[0], d[1])
    return float(np.arctan2(d[1], d[0])), float(np.arctan2(perp, d[2]))


def _trig(direction: np.ndarray) -> Tuple[float, float, float, float]:
    # cos(phi), sin(phi), cos(theta), sin(theta) without calling trig functions
    x, y, z = direction
    sin_theta = np.hypot(x, y)
    if sin_theta == 0.0:
        # phi = atan2(0, 0) = 0 on the z axis
        return 1.0, 0.0, z, 0.0
    inv = 1.0 / sin_theta
    return x * inv, y * inv, z, sin_theta


def curvilinear_frame(direction: np.ndarray) -> np.ndarray:
    r"""
    Rotation matrix ``[U V T]`` of the curvilinear frame of ``direction``.

    :math:`T` is the direction, :math:`U = \hat z \times T / |\hat z\times T|`
    and :math:`V = T\times U`. Close to the :math:`z` axis
    (:math:`|T_z| \ge 0.999995`) :math:`U` is built from :math:`\hat x`
    instead, where the default construction becomes numerically unstable.
    """
    T = np.asarray(direction, dtype=np.float64)
    T = T / np.linalg.norm(T)
    if abs(T[2]) < CURVILINEAR_PROJ_TOLERANCE:
        U = np.cross(_UNIT_Z, T)
    else:
        U = np.cross(_UNIT_X, T)
    U /= np.linalg.norm(U)
    V = np.cross(T, U)
    return np.column_stack([U, V, T])


def bound_to_free_jacobian(rframe: np.ndarray, direction: np.ndarray) -> np.ndarray:
    r"""
    Seed Jacobian :math:`\partial(\text{free})/\partial(\text{bound})`, shape (8, 6).

    The local coordinates map onto the first two frame axes; the angles
    follow from differentiating :func:`direction_from_angles`:

    .. math::

        \frac{\partial \hat d}{\partial\phi} = (-\sin\theta\sin\phi,\; \sin\theta\cos\phi,\; 0),\qquad
        \frac{\partial \hat d}{\partial\theta} = (\cos\theta\cos\phi,\; \cos\theta\sin\phi,\; -\sin\theta).
    """
    cos_phi, sin_phi, cos_theta, sin_theta = _trig(direction)
    jac = np.zeros((FREE_SIZE, BOUND_SIZE), dtype=np.float64)
    jac[0:3, 0:2] = np.asarray(rframe)[:, 0:2]
    jac[FreeIndices.TIME, BoundIndices.TIME] = 1.0
    jac[FreeIndices.DIR0, BoundIndices.PHI] = -sin_theta * sin_phi
    jac[FreeIndices.DIR0, BoundIndices.THETA] = cos_theta * cos_phi
    jac[FreeIndices.DIR1, BoundIndices.PHI] = sin_theta * cos_phi
    jac[FreeIndices.DIR1, BoundIndices.THETA] = cos_theta * sin_phi
    jac[FreeIndices.DIR2, BoundIndices.THETA] = -sin_theta
    jac[FreeIndices.QOP, BoundIndices.QOP] = 1.0
    return jac


def free_to_bound_jacobian(rframe_t: np.ndarray, direction: np.ndarray) -> np.ndarray:
    r"""
    Projection Jacobian :math:`\partial(\text{bound})/\partial(\text{free})`, shape (6, 8).

    ``rframe_t`` is the *transposed* reference frame; its first two rows
    project a global displacement onto the local axes.
    """
    cos_phi, sin_phi, cos_theta, sin_theta = _trig(direction)
    if sin_theta == 0.0:
        raise SurfaceError("azimuth is undefined for a direction along the z axis")
    inv_sin_theta = 1.0 / sin_theta
    jac = np.zeros((BOUND_SIZE, FREE_SIZE), dtype=np.float64)
    jac[0:2, 0:3] = np.asarray(rframe_t)[0:2, :]
    jac[BoundIndices.TIME, FreeIndices.TIME] = 1.0
    jac[BoundIndices.PHI, FreeIndices.DIR0] = -sin_phi * inv_sin_theta
    jac[BoundIndices.PHI, FreeIndices.DIR1] = cos_phi * inv_sin_theta
    jac[BoundIndices.THETA, FreeIndices.DIR0] = cos_phi * cos_theta
    jac[BoundIndices.THETA, FreeIndices.DIR1] = sin_phi * cos_theta
    jac[BoundIndices.THETA, FreeIndices.DIR2] = -sin_theta
    jac[BoundIndices.QOP, FreeIndices.QOP] = 1.0
    return jac


def curvilinear_to_free_jacobian(direction: np.ndarray) -> np.ndarray:
    """Seed Jacobian for parameters anchored in the curvilinear frame of ``direction``."""
    d = np.asarray(direction, dtype=np.float64)
    d = d / np.linalg.norm(d)
    return bound_to_free_jacobian(curvilinear_frame(d), d)


def free_to_curvilinear_jacobian(direction: np.ndarray) -> np.ndarray:
    """Projection of free perturbations onto the curvilinear frame of ``direction``."""
    d = np.asarray(direction, dtype=np.float64)
    d = d / np.linalg.norm(d)
    return free_to_bound_jacobian(curvilinear_frame(d).T, d)


def free_vector(position: np.ndarray, time: float, direction: np.ndarray, qop: float) -> np.ndarray:
    """Assemble ``[x, y, z, t, dx, dy, dz, q/p]``."""
    out = np.empty(FREE_SIZE, dtype=np.float64)
    out[0:3] = position
    out[FreeIndices.TIME] = time
    out[4:7] = direction
    out[FreeIndices.QOP] = qop
    return out


def bound_to_free(gctx, bound: np.ndarray, surface) -> np.ndarray:
    r"""
    Map a bound vector on ``surface`` to the free frame.

    The local coordinates go through the surface's local-to-global map, the
    angle pair becomes a unit direction; :math:`q/p` and :math:`t` pass through.

    Parameters
    ----------
    gctx : GeometryContext
        Forwarded to the surface untouched.
    bound : ndarray, shape (6,)
    surface : Surface

    Returns
    -------
    ndarray, shape (8,)
    """
    b = np.asarray(bound, dtype=np.float64)
    direction = direction_from_angles(b[BoundIndices.PHI], b[BoundIndices.THETA])
    position = surface.local_to_global(gctx, b[0:2], direction)
    return free_vector(position, b[BoundIndices.TIME], direction, b[BoundIndices.QOP])


def free_to_bound(gctx, free: np.ndarray, surface, check: bool = True) -> np.ndarray:
    r"""
    Inverse of :func:`bound_to_free`.

    Parameters
    ----------
    gctx : GeometryContext
    free : ndarray, shape (8,)
    surface : Surface
    check : bool, optional
        Forwarded to ``surface.global_to_local``; when ``True`` a position that
        does not lie on the surface raises :class:`~trackprop.errors.SurfaceError`,
        otherwise it is projected onto the surface.

    Returns
    -------
    ndarray, shape (6,)
    """
    f = np.asarray(free, dtype=np.float64)
    direction = f[4:7] / np.linalg.norm(f[4:7])
    loc = surface.global_to_local(gctx, f[0:3], direction, check=check)
    phi, theta = angles_from_direction(direction)
    out = np.empty(BOUND_SIZE, dtype=np.float64)
    out[BoundIndices.LOC0] = loc[0]
    out[BoundIndices.LOC1] = loc[1]
    out[BoundIndices.PHI] = phi
    out[BoundIndices.THETA] = theta
    out[BoundIndices.QOP] = f[FreeIndices.QOP]
    out[BoundIndices.TIME] = f[FreeIndices.TIME]
    return out
