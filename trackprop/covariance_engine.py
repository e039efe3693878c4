r"""
Chain-rule transport of covariances between bound, curvilinear and free frames.

A propagated segment composes three linear maps: the seed Jacobian
:math:`J_\text{seed}` (start frame → free), the free-frame transport
:math:`J_\text{tr}` accumulated by the stepper, and the projection onto the
target frame :math:`J_\text{loc}` (free → target). Moving the target frame
along the trajectory changes the intersection point; this is corrected with
the path derivative :math:`\mathrm{d}x/\mathrm{d}s` and the target's
path-correction factors :math:`s`:

.. math::

    J = J_\text{loc}\,\bigl(J_\text{tr}\,J_\text{seed} - \tfrac{\mathrm{d}x}{\mathrm{d}s}\, s\bigr),
    \qquad C' = J\,C\,J^\top.

Everything here is skipped when ``state.cov_transport`` is unset: the
resulting parameters carry no covariance rather than a zero matrix.
"""
from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from trackprop.coordinate_transforms import (
    curvilinear_to_free_jacobian,
    free_to_bound,
    free_to_curvilinear_jacobian,
)
from trackprop.kernels import similarity
from trackprop.stepper_state import StepperState
from trackprop.surfaces import Surface
from trackprop.track_parameters import BoundTrackParameters, CurvilinearTrackParameters

logger = logging.getLogger(__name__)


__all__ = [
    "full_jacobian_to_surface",
    "full_jacobian_to_curvilinear",
    "bound_state",
    "curvilinear_state",
    "covariance_transport",
]


def full_jacobian_to_surface(state: StepperState, surface: Surface) -> np.ndarray:
    """Bound(start) → bound(``surface``) Jacobian of the current segment, shape (6, 6)."""
    gctx = state.geo_context
    jac = state.jac_transport @ state.jac_to_global
    jac_to_local, rframe_t = surface.init_jacobian_to_local(gctx, state.position, state.direction)
    s = surface.derivative_factors(gctx, state.position, state.direction, rframe_t, jac)
    jac = jac - np.outer(state.derivative, s)
    return jac_to_local @ jac


def full_jacobian_to_curvilinear(state: StepperState) -> np.ndarray:
    """Bound(start) → curvilinear Jacobian of the current segment, shape (6, 6)."""
    d = state.direction
    jac = state.jac_transport @ state.jac_to_global
    # the curvilinear plane is normal to the direction
    s = d @ jac[0:3, :]
    jac = jac - np.outer(state.derivative, s)
    return free_to_curvilinear_jacobian(d) @ jac


def _transported(state: StepperState, full_jac: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    return similarity(full_jac, state.cov), full_jac @ state.jacobian


def bound_state(state: StepperState,
                surface: Surface) -> Tuple[BoundTrackParameters, np.ndarray, float]:
    r"""
    Snapshot of the state as bound parameters on ``surface``.

    The state is not modified.

    Returns
    -------
    params : BoundTrackParameters
        Covariance is ``None`` unless covariance transport is active.
    jacobian : ndarray, shape (6, 6)
        Bound-to-bound Jacobian since the last reset.
    path_length : float
    """
    gctx = state.geo_context
    bound = free_to_bound(gctx, state.free_parameters(), surface, check=False)
    cov: Optional[np.ndarray] = None
    jacobian = state.jacobian.copy()
    if state.cov_transport:
        cov, jacobian = _transported(state, full_jacobian_to_surface(state, surface))
    params = BoundTrackParameters.from_vector(gctx, surface, bound, cov, state.q if state.q != 0.0 else None)
    return params, jacobian, state.path_accumulated


def curvilinear_state(state: StepperState) -> Tuple[CurvilinearTrackParameters, np.ndarray, float]:
    """Snapshot of the state in its own curvilinear frame; the state is not modified."""
    cov: Optional[np.ndarray] = None
    jacobian = state.jacobian.copy()
    if state.cov_transport:
        cov, jacobian = _transported(state, full_jacobian_to_curvilinear(state))
    params = CurvilinearTrackParameters.create(
        state.position,
        state.p * state.direction,
        state.q if state.q != 0.0 else None,
        state.t,
        cov,
    )
    return params, jacobian, state.path_accumulated


def covariance_transport(state: StepperState, surface: Optional[Surface] = None) -> None:
    r"""
    Transport ``state.cov`` to ``surface`` (or the curvilinear frame) in place.

    Stores the transported covariance and the updated bound Jacobian, then
    re-anchors the seed/transport/derivative triplet at the new frame. Does
    nothing when covariance transport is inactive.
    """
    if not state.cov_transport:
        return
    gctx = state.geo_context
    if surface is None:
        full_jac = full_jacobian_to_curvilinear(state)
        seed = curvilinear_to_free_jacobian(state.direction)
    else:
        full_jac = full_jacobian_to_surface(state, surface)
        bound = free_to_bound(gctx, state.free_parameters(), surface, check=False)
        seed = surface.init_jacobian_to_global(gctx, state.position, state.direction, bound)
    state.cov, state.jacobian = _transported(state, full_jac)
    state.reanchor(seed)
    logger.debug("Re-anchored covariance at %s", "curvilinear frame" if surface is None else surface)
