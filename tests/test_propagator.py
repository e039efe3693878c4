import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trackprop.config import PropagatorOptions
from trackprop.definitions import NavigationDirection
from trackprop.propagator import PropagationStatus, Propagator, StepLogger
from trackprop.stepper import StraightLineStepper
from trackprop.surfaces import PlaneSurface, RectangleBounds
from trackprop.track_parameters import (
    BoundTrackParameters,
    CurvilinearTrackParameters,
    FreeTrackParameters,
)


START_POS = np.array([0.0, 0.0, 0.0])
START_MOM = np.array([0.0, 0.0, 2.0])


def test_reach_target_plane_in_one_step():
    start = CurvilinearTrackParameters.create(START_POS, [2.0, 0.0, 0.0], 1.0, 0.0, np.eye(6) * 0.01)
    target = PlaneSurface([250.0, 0.0, 0.0], normal=[1.0, 0.0, 0.0])
    res = Propagator().propagate(start, target)
    assert res.ok
    assert res.status is PropagationStatus.SUCCESS
    assert res.steps == 1
    assert res.path_length == pytest.approx(250.0)
    assert isinstance(res.end_parameters, BoundTrackParameters)
    assert res.end_parameters.reference_surface is target
    np.testing.assert_allclose(res.end_parameters.position, [250.0, 0.0, 0.0], atol=1e-9)
    assert res.end_parameters.covariance is not None
    assert np.all(np.isfinite(res.end_parameters.covariance))
    assert res.jacobian.shape == (6, 6)


def test_max_step_size_splits_the_path():
    start = CurvilinearTrackParameters.create(START_POS, START_MOM, -1.0, 0.0)
    target = PlaneSurface([0.0, 0.0, 100.0], normal=[0.0, 0.0, 1.0])
    opts = PropagatorOptions(max_step_size=30.0)
    res = Propagator(options=opts).propagate(start, target)
    assert res.ok
    assert res.steps == 4
    log = res.step_log
    assert isinstance(log, pd.DataFrame)
    assert list(log.columns) == list(StepLogger.COLUMNS)
    np.testing.assert_allclose(log["step_size"].to_numpy(), [30.0, 30.0, 30.0, 10.0])
    np.testing.assert_allclose(log["z"].to_numpy(), [30.0, 60.0, 90.0, 100.0])
    assert log["step"].tolist() == [1, 2, 3, 4]
    assert res.end_parameters.covariance is None


def test_target_behind_is_unreachable():
    start = CurvilinearTrackParameters.create(START_POS, START_MOM, 1.0, 0.0)
    target = PlaneSurface([0.0, 0.0, -50.0], normal=[0.0, 0.0, 1.0])
    res = Propagator().propagate(start, target)
    assert not res.ok
    assert res.status is PropagationStatus.TARGET_UNREACHABLE
    assert res.steps == 0
    assert isinstance(res.end_parameters, CurvilinearTrackParameters)


def test_backward_propagation_reaches_target_behind():
    start = CurvilinearTrackParameters.create(START_POS, START_MOM, 1.0, 10.0)
    target = PlaneSurface([0.0, 0.0, -50.0], normal=[0.0, 0.0, 1.0])
    res = Propagator().propagate(start, target, nav_dir=NavigationDirection.BACKWARD)
    assert res.ok
    assert res.path_length == pytest.approx(-50.0)
    assert res.end_parameters.time < 10.0


def test_bounds_can_make_target_unreachable():
    start = CurvilinearTrackParameters.create(START_POS, [1.0, 0.0, 1.0], 1.0, 0.0)
    target = PlaneSurface([0.0, 0.0, 10.0], rotation=np.eye(3), bounds=RectangleBounds(1.0, 1.0))
    assert Propagator().propagate(start, target).status is PropagationStatus.TARGET_UNREACHABLE
    opts = PropagatorOptions(boundary_check=False)
    assert Propagator(options=opts).propagate(start, target).ok


def test_path_limit_without_target():
    start = FreeTrackParameters.create(START_POS, START_MOM, None, 0.0)
    opts = PropagatorOptions(path_limit=75.0, max_step_size=20.0)
    res = Propagator(options=opts).propagate(start)
    assert res.ok
    assert res.path_length == pytest.approx(75.0)
    assert res.steps == 4
    assert res.end_parameters.charge is None
    np.testing.assert_allclose(res.end_parameters.position, [0.0, 0.0, 75.0])


def test_path_limit_before_target_fails():
    start = CurvilinearTrackParameters.create(START_POS, START_MOM, 1.0, 0.0)
    target = PlaneSurface([0.0, 0.0, 500.0], normal=[0.0, 0.0, 1.0])
    opts = PropagatorOptions(path_limit=100.0)
    res = Propagator(options=opts).propagate(start, target)
    assert not res.ok
    assert res.status is PropagationStatus.TARGET_UNREACHABLE


def test_max_steps():
    start = CurvilinearTrackParameters.create(START_POS, START_MOM, 1.0, 0.0)
    opts = PropagatorOptions(max_steps=3, max_step_size=1.0)
    res = Propagator(options=opts).propagate(start)
    assert res.status is PropagationStatus.MAX_STEPS
    assert res.steps == 3
    assert res.path_length == pytest.approx(3.0)


def test_step_failure_is_reported_not_raised(caplog):
    start = CurvilinearTrackParameters.create(START_POS, START_MOM, 1.0, 0.0)
    res = Propagator(options=PropagatorOptions(log_steps=False)).propagate(start)
    assert res.status is PropagationStatus.STEP_FAILED
    assert "step size" in res.message
    assert res.step_log is None
    assert any("Propagation ended" in r.getMessage() for r in caplog.records)


def test_start_parameters_are_not_modified():
    start = CurvilinearTrackParameters.create(START_POS, [2.0, 0.0, 0.0], 1.0, 0.0, np.eye(6))
    before = start.clone()
    Propagator().propagate(start, PlaneSurface([20.0, 0.0, 0.0], normal=[1.0, 0.0, 0.0]))
    assert start == before


class NestedRunStepper(StraightLineStepper):
    """Starts a second propagation on the same propagator during its first step."""

    def __init__(self):
        super().__init__()
        self.propagator = None
        self.inner = None

    def step(self, state, options):
        if self.inner is None:
            self.inner = "running"
            start = CurvilinearTrackParameters.create(START_POS, START_MOM, 1.0, 0.0)
            self.inner = self.propagator.propagate(start)
        return super().step(state, options)


def test_step_count_is_per_call():
    stepper = NestedRunStepper()
    prop = Propagator(stepper, PropagatorOptions(path_limit=75.0, max_step_size=20.0, max_steps=4))
    stepper.propagator = prop
    start = CurvilinearTrackParameters.create(START_POS, START_MOM, 1.0, 0.0)
    outer = prop.propagate(start)
    assert stepper.inner.ok
    assert stepper.inner.steps == 4
    assert outer.ok
    assert outer.steps == 4
    assert outer.path_length == pytest.approx(75.0)
