from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from trackprop.config import PropagatorOptions
from trackprop.constrained_step import ConstraintType
from trackprop.definitions import (
    GeometryContext,
    MagneticFieldContext,
    NavigationDirection,
)
from trackprop.errors import PropagationError
from trackprop.stepper import StraightLineStepper
from trackprop.stepper_state import StepperState
from trackprop.surfaces import IntersectionStatus, Surface
from trackprop.track_parameters import (
    BoundTrackParameters,
    CurvilinearTrackParameters,
    TrackParameters,
)


__all__ = [
    "PropagationStatus",
    "StepLogger",
    "PropagatorResult",
    "Propagator",
]


class PropagationStatus(Enum):
    """Why a propagation loop ended."""
    SUCCESS = "success"
    TARGET_UNREACHABLE = "target_unreachable"
    STEP_FAILED = "step_failed"
    MAX_STEPS = "max_steps"
    PATH_LIMIT = "path_limit"


class StepLogger:
    r"""
    Per-step record of a propagation.

    Rows are collected as plain dicts and turned into a
    :class:`pandas.DataFrame` on demand with columns
    ``step, x, y, z, t, step_size, path_length``.
    """

    COLUMNS = ("step", "x", "y", "z", "t", "step_size", "path_length")

    __slots__ = ("_rows",)

    def __init__(self) -> None:
        self._rows: List[Dict[str, float]] = []

    def record(self, state: StepperState, step_size: float) -> None:
        x, y, z = state.position
        self._rows.append({
            "step": len(self._rows) + 1,
            "x": float(x),
            "y": float(y),
            "z": float(z),
            "t": state.t,
            "step_size": float(step_size),
            "path_length": state.path_accumulated,
        })

    def __len__(self) -> int:
        return len(self._rows)

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame(self._rows, columns=list(self.COLUMNS))
        return df.astype({"step": "int64"})


@dataclass(slots=True)
class PropagatorResult:
    r"""
    Outcome of :meth:`Propagator.propagate`.

    Attributes
    ----------
    end_parameters : BoundTrackParameters or CurvilinearTrackParameters
        Bound on the target when it was reached, curvilinear otherwise.
    jacobian : ndarray, shape (6, 6)
        Start-to-end bound Jacobian (identity without covariance transport).
    path_length : float
        Signed accumulated path length.
    steps : int
    status : PropagationStatus
    message : str
    step_log : pandas.DataFrame, optional
    """
    end_parameters: Union[BoundTrackParameters, CurvilinearTrackParameters]
    jacobian: np.ndarray
    path_length: float
    steps: int
    status: PropagationStatus
    message: str = ""
    step_log: Optional[pd.DataFrame] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.status is PropagationStatus.SUCCESS


class Propagator:
    r"""
    Drives a stepper towards an optional target surface.

    Each iteration asks the stepper to constrain the next step to the target
    (actor tier), then steps. The path limit is enforced through the aborter
    tier, so the final step lands exactly on it. Failures never escape as
    exceptions: they are reported through :attr:`PropagatorResult.status`.

    Parameters
    ----------
    stepper : StraightLineStepper, optional
    options : PropagatorOptions, optional

    Examples
    --------
    >>> from trackprop import CurvilinearTrackParameters, PlaneSurface
    >>> start = CurvilinearTrackParameters.create([0, 0, 0], [0, 0, 2.0], 1.0, 0.0)
    >>> target = PlaneSurface([0, 0, 250.0], normal=[0, 0, 1.0])
    >>> res = Propagator().propagate(start, target)
    >>> res.ok, round(res.path_length, 6)
    (True, 250.0)
    """

    def __init__(self,
                 stepper: Optional[StraightLineStepper] = None,
                 options: Optional[PropagatorOptions] = None) -> None:
        self.stepper = stepper if stepper is not None else StraightLineStepper()
        self.options = options if options is not None else PropagatorOptions()
        self.log = logging.getLogger(self.__class__.__name__)

    def propagate(self,
                  start: TrackParameters,
                  target: Optional[Surface] = None,
                  nav_dir: NavigationDirection = NavigationDirection.FORWARD,
                  gctx: Optional[GeometryContext] = None,
                  mctx: Optional[MagneticFieldContext] = None) -> PropagatorResult:
        r"""
        Propagate ``start`` to ``target`` (or until the path limit).

        Without a target the run succeeds once ``options.path_limit`` is
        reached; with a target, reaching the path limit first is a failure.

        Returns
        -------
        PropagatorResult

        Raises
        ------
        SurfaceError
            If a covariance has to be expressed in angles along the z axis,
            where the azimuth is undefined.
        """
        opts = self.options
        stepper = self.stepper
        nav_dir = NavigationDirection(nav_dir)
        state = stepper.make_state(gctx, mctx, start, nav_dir, opts.max_step_size, opts.tolerance)
        if opts.path_limit is not None:
            state.step_size.update(nav_dir * opts.path_limit, ConstraintType.ABORTER)
        step_log = StepLogger() if opts.log_steps else None

        status, steps, message = self._loop(state, target, step_log)

        if status is not PropagationStatus.SUCCESS:
            message = message or status.value.replace("_", " ")
            self.log.warning("Propagation ended after %d steps: %s", steps, message)

        if target is not None and status is PropagationStatus.SUCCESS:
            end, jac, path = stepper.bound_state(state, target)
        else:
            end, jac, path = stepper.curvilinear_state(state)
        return PropagatorResult(
            end_parameters=end,
            jacobian=jac,
            path_length=path,
            steps=steps,
            status=status,
            message=message,
            step_log=step_log.to_frame() if step_log is not None else None,
        )

    def _loop(self,
              state: StepperState,
              target: Optional[Surface],
              step_log: Optional[StepLogger]) -> Tuple[PropagationStatus, int, str]:
        """Step until an abort condition holds; returns ``(status, steps, message)``."""
        opts = self.options
        stepper = self.stepper
        steps = 0
        while True:
            if target is not None:
                status = stepper.update_surface_status(state, target, opts.boundary_check)
                if status is IntersectionStatus.ON_SURFACE:
                    return PropagationStatus.SUCCESS, steps, ""
                if status is IntersectionStatus.UNREACHABLE:
                    return PropagationStatus.TARGET_UNREACHABLE, steps, ""
            if opts.path_limit is not None and self._remaining(state) <= stepper.overstep_limit(state):
                status = PropagationStatus.SUCCESS if target is None else PropagationStatus.PATH_LIMIT
                return status, steps, ""
            if steps >= opts.max_steps:
                return PropagationStatus.MAX_STEPS, steps, ""

            try:
                h = stepper.step(state, opts)
            except PropagationError as e:
                return PropagationStatus.STEP_FAILED, steps, str(e)
            steps += 1
            if step_log is not None:
                step_log.record(state, h)
            self.log.debug("Step %d: h=%.6g path=%.6g tiers=%s",
                           steps, h, state.path_accumulated, stepper.output_step_size(state))

            if opts.path_limit is not None:
                state.step_size.update(state.nav_dir * self._remaining(state), ConstraintType.ABORTER, release=True)

    def _remaining(self, state: StepperState) -> float:
        return max(self.options.path_limit - abs(state.path_accumulated), 0.0)
