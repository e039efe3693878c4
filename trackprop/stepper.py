from __future__ import annotations

import logging
from typing import Optional, Tuple, Union

import numpy as np

from trackprop import covariance_engine
from trackprop.constrained_step import ConstrainedStep, ConstraintType
from trackprop.coordinate_transforms import bound_to_free
from trackprop.definitions import (
    BOUND_SIZE,
    ON_SURFACE_TOLERANCE,
    UNCONSTRAINED_STEP,
    FreeIndices,
    GeometryContext,
    MagneticFieldContext,
    NavigationDirection,
)
from trackprop.errors import StepperError
from trackprop.kernels import transport_step_matrix
from trackprop.stepper_state import StepperState
from trackprop.surfaces import Intersection, IntersectionStatus, Surface
from trackprop.track_parameters import (
    BoundTrackParameters,
    CurvilinearTrackParameters,
    TrackParameters,
)


__all__ = ["StraightLineStepper"]


class StraightLineStepper:
    r"""
    Stepper for field-free, constant-velocity motion.

    A step of signed length :math:`h` moves the particle exactly along its
    direction,

    .. math::

        x \leftarrow x + h\,\hat d, \qquad
        t \leftarrow t + h\,\frac{\mathrm{d}t}{\mathrm{d}s},\qquad
        \frac{\mathrm{d}t}{\mathrm{d}s} = \sqrt{1 + m^2/p^2},

    and, while covariance transport is active, accumulates the free-frame
    transport Jacobian and the path derivative. The stepper itself is
    stateless: every method acts on an explicitly passed :class:`StepperState`.

    Examples
    --------
    >>> from trackprop import CurvilinearTrackParameters, PropagatorOptions
    >>> stepper = StraightLineStepper()
    >>> start = CurvilinearTrackParameters.create([0, 0, 0], [1, 0, 0], -1.0, 0.0)
    >>> state = stepper.make_state(None, None, start, step_size=10.0)
    >>> stepper.step(state, PropagatorOptions())
    10.0
    """

    def __init__(self) -> None:
        self.log = logging.getLogger(self.__class__.__name__)

    # -- construction ------------------------------------------------------

    def make_state(self,
                   gctx: Optional[GeometryContext],
                   mctx: Optional[MagneticFieldContext],
                   params: TrackParameters,
                   nav_dir: NavigationDirection = NavigationDirection.FORWARD,
                   step_size: float = UNCONSTRAINED_STEP,
                   tolerance: float = 1e-4) -> StepperState:
        return StepperState.from_parameters(gctx, mctx, params, nav_dir, step_size, tolerance)

    # -- accessors ---------------------------------------------------------

    @staticmethod
    def position(state: StepperState) -> np.ndarray:
        return state.position

    @staticmethod
    def direction(state: StepperState) -> np.ndarray:
        return state.direction

    @staticmethod
    def momentum(state: StepperState) -> float:
        return state.p

    @staticmethod
    def charge(state: StepperState) -> float:
        return state.q

    @staticmethod
    def time(state: StepperState) -> float:
        return state.t

    # -- stepping ----------------------------------------------------------

    def step(self, state: StepperState, options) -> float:
        r"""
        Perform one step of the current effective step size.

        Parameters
        ----------
        state : StepperState
            Advanced in place.
        options : PropagatorOptions
            Only ``options.mass`` is used.

        Returns
        -------
        float
            The signed step length that was taken.

        Raises
        ------
        StepperError
            If the step size is zero, non-finite or still unconstrained, or if
            the momentum is not positive.
        """
        h = float(state.step_size)
        if h == 0.0 or not np.isfinite(h) or abs(h) >= UNCONSTRAINED_STEP:
            raise StepperError(f"cannot step with step size {h!r}")
        if not state.p > 0.0:
            raise StepperError(f"cannot step with momentum {state.p!r}")

        mass = float(options.mass)
        dtds = float(np.hypot(1.0, mass / state.p))
        state.position = state.position + h * state.direction
        state.t += h * dtds

        if state.cov_transport:
            q = state.q if state.q != 0.0 else 1.0
            D = transport_step_matrix(h, mass, q, state.p, dtds)
            state.jac_transport = D @ state.jac_transport
            state.derivative[0:3] = state.direction
            state.derivative[FreeIndices.TIME] = dtds

        state.path_accumulated += h
        state.direction = state.direction / np.linalg.norm(state.direction)
        return h

    # -- state updates -----------------------------------------------------

    def update(self,
               state: StepperState,
               free: np.ndarray,
               covariance: Optional[np.ndarray]) -> None:
        r"""
        Overwrite the kinematics from ``[x, y, z, t, dx, dy, dz, q/p]`` and
        store ``covariance`` (bound frame, 6×6).

        The momentum becomes :math:`|q|/|q/p|` (:math:`1/|q/p|` for neutral
        states); the charge itself is kept.
        """
        f = np.asarray(free, dtype=np.float64)
        qop = f[FreeIndices.QOP]
        if qop == 0.0 or not np.isfinite(qop):
            raise ValueError(f"invalid q/p {qop!r}")
        q_mag = abs(state.q) if state.q != 0.0 else 1.0
        self.update_kinematics(state, f[0:3], f[4:7], q_mag / abs(qop), f[FreeIndices.TIME])
        if covariance is not None:
            state.cov = np.array(covariance, dtype=np.float64)

    def update_kinematics(self,
                          state: StepperState,
                          position: np.ndarray,
                          direction: np.ndarray,
                          p: float,
                          time: float) -> None:
        d = np.asarray(direction, dtype=np.float64)
        n = np.linalg.norm(d)
        if n == 0.0 or not np.isfinite(n):
            raise ValueError("direction must be a finite non-zero vector")
        state.position = np.array(position, dtype=np.float64)
        state.direction = d / n
        state.p = float(p)
        state.t = float(time)

    def reset_state(self,
                    state: StepperState,
                    bound: np.ndarray,
                    covariance: Optional[np.ndarray],
                    surface: Surface,
                    nav_dir: NavigationDirection = NavigationDirection.FORWARD,
                    step_size: Optional[float] = None) -> None:
        r"""
        Restart ``state`` from bound parameters on ``surface``.

        Converts ``bound`` to the free frame, re-anchors the Jacobian
        bookkeeping at ``surface``, resets the bound Jacobian to the identity
        and the path length to zero. Without ``step_size`` the new step is
        ``nav_dir * UNCONSTRAINED_STEP``. ``previous_step_size``,
        ``tolerance`` and the charge are kept. Covariance transport is active
        exactly when a covariance is given.
        """
        gctx = state.geo_context
        nav_dir = NavigationDirection(nav_dir)
        self.update(state, bound_to_free(gctx, bound, surface), covariance)
        state.nav_dir = nav_dir
        state.step_size = ConstrainedStep(nav_dir * UNCONSTRAINED_STEP if step_size is None else step_size)
        state.path_accumulated = 0.0
        state.reanchor(surface.init_jacobian_to_global(gctx, state.position, state.direction, bound))
        state.jacobian = np.eye(BOUND_SIZE)
        state.cov_transport = covariance is not None
        if covariance is None:
            state.cov = np.zeros((BOUND_SIZE, BOUND_SIZE))
        self.log.debug("Reset state on %r, step size %s", surface, state.step_size)

    # -- snapshots and covariance -----------------------------------------

    def bound_state(self, state: StepperState,
                    surface: Surface) -> Tuple[BoundTrackParameters, np.ndarray, float]:
        return covariance_engine.bound_state(state, surface)

    def curvilinear_state(self, state: StepperState) -> Tuple[CurvilinearTrackParameters, np.ndarray, float]:
        return covariance_engine.curvilinear_state(state)

    def covariance_transport(self, state: StepperState, surface: Optional[Surface] = None) -> None:
        covariance_engine.covariance_transport(state, surface)

    # -- step size ---------------------------------------------------------

    def set_step_size(self,
                      state: StepperState,
                      size: float,
                      tier: ConstraintType = ConstraintType.ACTOR) -> None:
        """Record the current step as ``previous_step_size`` and constrain ``tier`` to ``size``."""
        state.previous_step_size = float(state.step_size)
        state.step_size.update(size, tier, release=True)

    def release_step_size(self, state: StepperState) -> None:
        state.step_size.release(ConstraintType.ACTOR)

    def update_step_size(self,
                         state: StepperState,
                         candidate: Union[Intersection, float],
                         release: bool = True) -> None:
        """Tighten the actor tier with an intersection (its path length) or a plain length."""
        path = candidate.path_length if isinstance(candidate, Intersection) else float(candidate)
        state.step_size.update(path, ConstraintType.ACTOR, release)

    def update_surface_status(self,
                              state: StepperState,
                              surface: Surface,
                              boundary_check: bool = True) -> IntersectionStatus:
        r"""
        Constrain the next step to reach ``surface``.

        The surface is intersected along :math:`\text{nav\_dir}\cdot\hat d`.
        On the surface the actor tier is released. A reachable intersection
        ahead of the overstep limit and within the aborter tier becomes the
        signed actor constraint; anything else is ``UNREACHABLE``.
        """
        gctx = state.geo_context
        isec = surface.intersect(gctx, state.position, state.nav_dir * state.direction, boundary_check)
        if isec.status is IntersectionStatus.ON_SURFACE:
            self.release_step_size(state)
            return IntersectionStatus.ON_SURFACE
        if isec:
            path = isec.path_length
            accept = (path > self.overstep_limit(state)
                      and abs(path) < abs(state.step_size.value_of(ConstraintType.ABORTER)))
            if accept:
                state.step_size.update(state.nav_dir * path, ConstraintType.ACTOR, release=True)
                self.log.debug("Surface reachable after %.6g mm, step size %s", path, state.step_size)
                return IntersectionStatus.REACHABLE
        self.log.debug("Surface %r unreachable (%s)", surface, isec.status.name)
        return IntersectionStatus.UNREACHABLE

    @staticmethod
    def overstep_limit(state: StepperState) -> float:
        return ON_SURFACE_TOLERANCE

    @staticmethod
    def output_step_size(state: StepperState) -> str:
        return str(state.step_size)
