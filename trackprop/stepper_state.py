from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from trackprop.constrained_step import ConstrainedStep
from trackprop.coordinate_transforms import (
    curvilinear_to_free_jacobian,
    free_to_curvilinear_jacobian,
    free_vector,
)
from trackprop.definitions import (
    BOUND_SIZE,
    FREE_SIZE,
    UNCONSTRAINED_STEP,
    GeometryContext,
    MagneticFieldContext,
    NavigationDirection,
)
from trackprop.kernels import similarity
from trackprop.track_parameters import (
    BoundTrackParameters,
    CurvilinearTrackParameters,
    FreeTrackParameters,
    TrackParameters,
)

logger = logging.getLogger(__name__)


__all__ = ["StepperState"]


@dataclass(slots=True)
class StepperState:
    r"""
    Mutable trajectory state advanced by a stepper.

    The free-frame Jacobian bookkeeping is split into three arrays that are
    only meaningful together:

    * ``jac_to_global`` (8×6): bound-to-free seed at the last anchor,
    * ``jac_transport`` (8×8): free-frame transport since that anchor,
    * ``derivative`` (8): :math:`\mathrm{d}(\text{free})/\mathrm{d}s` at the current point.

    They are reset together by :meth:`reanchor` only. ``cov`` holds a
    meaningful covariance only when ``cov_transport`` is set and is the zero
    matrix otherwise.

    Attributes
    ----------
    position, direction : ndarray, shape (3,)
    p : float
        Momentum magnitude (GeV).
    q : float
        Signed charge, ``0.0`` for neutral particles.
    t : float
        Time (mm).
    nav_dir : NavigationDirection
    step_size : ConstrainedStep
    previous_step_size : float
        Effective step size before the last :func:`set_step_size`.
    tolerance : float
        Accuracy target of adaptive steppers; unused by straight lines.
    path_accumulated : float
        Signed path length since the last reset.
    jacobian : ndarray, shape (6, 6)
        Bound-to-bound Jacobian since the last reset.
    """
    position: np.ndarray
    direction: np.ndarray
    p: float
    q: float = 0.0
    t: float = 0.0
    nav_dir: NavigationDirection = NavigationDirection.FORWARD
    step_size: ConstrainedStep = field(default_factory=ConstrainedStep)
    previous_step_size: float = 0.0
    tolerance: float = 1e-4
    path_accumulated: float = 0.0
    jacobian: np.ndarray = field(default_factory=lambda: np.eye(BOUND_SIZE))
    jac_to_global: np.ndarray = field(default_factory=lambda: np.zeros((FREE_SIZE, BOUND_SIZE)))
    jac_transport: np.ndarray = field(default_factory=lambda: np.eye(FREE_SIZE))
    derivative: np.ndarray = field(default_factory=lambda: np.zeros(FREE_SIZE))
    cov: np.ndarray = field(default_factory=lambda: np.zeros((BOUND_SIZE, BOUND_SIZE)))
    cov_transport: bool = False
    geo_context: Optional[GeometryContext] = None
    field_context: Optional[MagneticFieldContext] = None

    def __post_init__(self) -> None:
        self.position = np.array(self.position, dtype=np.float64).reshape(3)
        d = np.array(self.direction, dtype=np.float64).reshape(3)
        n = np.linalg.norm(d)
        if n == 0.0 or not np.isfinite(n):
            raise ValueError("state direction must be a finite non-zero vector")
        self.direction = d / n
        self.p = float(self.p)
        self.q = float(self.q)
        self.t = float(self.t)
        self.nav_dir = NavigationDirection(self.nav_dir)

    @classmethod
    def from_parameters(cls,
                        gctx: Optional[GeometryContext],
                        mctx: Optional[MagneticFieldContext],
                        params: TrackParameters,
                        nav_dir: NavigationDirection = NavigationDirection.FORWARD,
                        step_size: float = UNCONSTRAINED_STEP,
                        tolerance: float = 1e-4) -> "StepperState":
        r"""
        Seed a state from track parameters.

        The signed step :math:`\text{nav\_dir}\cdot|\text{step\_size}|` is
        placed in the user tier. When the parameters carry a covariance the
        bookkeeping is switched on and ``jac_to_global`` is seeded from the
        anchoring frame:

        * bound parameters: the reference surface,
        * curvilinear parameters: the curvilinear plane of the direction,
        * free parameters: the free covariance is first projected onto the
          curvilinear frame, which then acts as anchor.
        """
        nav_dir = NavigationDirection(nav_dir)
        state = cls(
            position=params.position,
            direction=params.direction,
            p=params.absolute_momentum,
            q=0.0 if params.charge is None else params.charge,
            t=params.time,
            nav_dir=nav_dir,
            step_size=ConstrainedStep(nav_dir * abs(float(step_size))),
            tolerance=tolerance,
            geo_context=gctx,
            field_context=mctx,
        )
        cov = params.covariance
        if cov is None:
            return state

        state.cov_transport = True
        match params:
            case BoundTrackParameters(surface=surface) | CurvilinearTrackParameters(surface=surface):
                state.cov = np.array(cov, dtype=np.float64)
                state.jac_to_global = surface.init_jacobian_to_global(
                    gctx, state.position, state.direction, params.parameters())
            case FreeTrackParameters():
                state.cov = similarity(free_to_curvilinear_jacobian(state.direction), cov)
                state.jac_to_global = curvilinear_to_free_jacobian(state.direction)
            case _:
                raise TypeError(f"unsupported track parameters {type(params).__name__}")
        logger.debug("Covariance transport enabled for %s start", type(params).__name__)
        return state

    @property
    def qop(self) -> float:
        return (self.q if self.q != 0.0 else 1.0) / self.p

    def free_parameters(self) -> np.ndarray:
        """Current ``[x, y, z, t, dx, dy, dz, q/p]``."""
        return free_vector(self.position, self.t, self.direction, self.qop)

    def reanchor(self, jac_to_global: np.ndarray) -> None:
        r"""
        Start a new transport segment at the current point.

        Sets the seed to ``jac_to_global``, the transport Jacobian to the
        identity and the derivative to zero in one operation.
        """
        self.jac_to_global = np.array(jac_to_global, dtype=np.float64)
        self.jac_transport = np.eye(FREE_SIZE)
        self.derivative = np.zeros(FREE_SIZE)

    def copy(self) -> "StepperState":
        return StepperState(
            position=self.position.copy(),
            direction=self.direction.copy(),
            p=self.p,
            q=self.q,
            t=self.t,
            nav_dir=self.nav_dir,
            step_size=self.step_size.copy(),
            previous_step_size=self.previous_step_size,
            tolerance=self.tolerance,
            path_accumulated=self.path_accumulated,
            jacobian=self.jacobian.copy(),
            jac_to_global=self.jac_to_global.copy(),
            jac_transport=self.jac_transport.copy(),
            derivative=self.derivative.copy(),
            cov=self.cov.copy(),
            cov_transport=self.cov_transport,
            geo_context=self.geo_context,
            field_context=self.field_context,
        )
