import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trackprop.definitions import BoundIndices, FreeIndices, GeometryContext
from trackprop.surfaces import PlaneSurface
from trackprop.track_parameters import (
    BoundTrackParameters,
    CurvilinearTrackParameters,
    FreeTrackParameters,
)


GCTX = GeometryContext()
POS = np.array([1.0, 2.0, 3.0])
MOM = np.array([0.4, 0.5, 0.6])


def test_curvilinear_kinematics():
    cp = CurvilinearTrackParameters.create(POS, MOM, -1.0, 7.0)
    p = np.linalg.norm(MOM)
    np.testing.assert_allclose(cp.position, POS)
    np.testing.assert_allclose(cp.momentum, MOM)
    np.testing.assert_allclose(cp.direction, MOM / p)
    assert cp.absolute_momentum == pytest.approx(p)
    assert cp.charge == -1.0
    assert cp.time == 7.0
    assert cp.get(BoundIndices.QOP) == pytest.approx(-1.0 / p)
    assert cp.get(BoundIndices.LOC0) == 0.0
    assert cp.pt == pytest.approx(np.hypot(0.4, 0.5))
    assert cp.eta == pytest.approx(np.arcsinh(0.6 / np.hypot(0.4, 0.5)))
    assert cp.covariance is None
    assert cp.reference_surface.is_on_surface(GCTX, POS, cp.direction)


def test_neutral_parameters_use_inverse_momentum():
    cp = CurvilinearTrackParameters.create(POS, MOM, None, 0.0)
    p = np.linalg.norm(MOM)
    assert cp.neutral
    assert cp.get(BoundIndices.QOP) == pytest.approx(1.0 / p)
    assert cp.absolute_momentum == pytest.approx(p)


def test_zero_charge_is_rejected():
    with pytest.raises(ValueError):
        CurvilinearTrackParameters.create(POS, MOM, 0.0, 0.0)
    with pytest.raises(ValueError):
        FreeTrackParameters.create(POS, [0.0, 0.0, 0.0], 1.0, 0.0)


def test_bound_from_global_projects_on_surface():
    plane = PlaneSurface([0.0, 0.0, 3.0], rotation=np.eye(3))
    bp = BoundTrackParameters.from_global(GCTX, POS, MOM, 1.0, 4.0, plane, np.eye(6))
    np.testing.assert_allclose(bp.parameters()[0:2], [1.0, 2.0])
    np.testing.assert_allclose(bp.position, POS)
    np.testing.assert_allclose(bp.momentum, MOM)
    assert bp.reference_surface is plane
    np.testing.assert_array_equal(bp.covariance, np.eye(6))


def test_bound_from_vector_takes_charge_sign_from_qop():
    plane = PlaneSurface([0.0, 0.0, 0.0], normal=[0.0, 0.0, 1.0])
    bp = BoundTrackParameters.from_vector(GCTX, plane, [0.1, 0.2, 0.3, 0.4, -0.5, 0.0])
    assert bp.charge == -1.0
    assert bp.absolute_momentum == pytest.approx(2.0)
    two = BoundTrackParameters.from_vector(GCTX, plane, [0.1, 0.2, 0.3, 0.4, 0.5, 0.0], charge=2.0)
    assert two.charge == 2.0
    assert two.absolute_momentum == pytest.approx(4.0)
    neutral = BoundTrackParameters.from_vector(GCTX, plane, [0.1, 0.2, 0.3, 0.4, 0.5, 0.0], charge=None)
    assert neutral.neutral
    with pytest.raises(ValueError):
        BoundTrackParameters.from_vector(GCTX, None, np.zeros(6))


def test_free_parameters():
    fp = FreeTrackParameters.create(POS, MOM, 1.0, 2.0)
    assert fp.reference_surface is None
    np.testing.assert_allclose(fp.position, POS)
    np.testing.assert_allclose(fp.momentum, MOM)
    assert fp.get(FreeIndices.TIME) == 2.0
    with pytest.raises(KeyError):
        fp.get(BoundIndices.LOC0)


def test_clone_shares_surface_and_copies_data():
    plane = PlaneSurface([0.0, 0.0, 3.0], rotation=np.eye(3))
    bp = BoundTrackParameters.from_global(GCTX, POS, MOM, 1.0, 4.0, plane, np.eye(6))
    cl = bp.clone()
    assert cl == bp
    assert cl is not bp
    assert cl.surface is bp.surface
    assert cl.parameter_set is not bp.parameter_set
    assert cl.parameters() is not bp.parameters()

    cp = CurvilinearTrackParameters.create(POS, MOM, -1.0, 7.0)
    assert cp.clone() == cp


def test_equality_requires_same_surface_instance():
    a = PlaneSurface([0.0, 0.0, 3.0], rotation=np.eye(3))
    b = PlaneSurface([0.0, 0.0, 3.0], rotation=np.eye(3))
    pa = BoundTrackParameters.from_global(GCTX, POS, MOM, 1.0, 4.0, a)
    pb = BoundTrackParameters.from_global(GCTX, POS, MOM, 1.0, 4.0, b)
    assert pa != pb
    assert pa != BoundTrackParameters.from_global(GCTX, POS, MOM, -1.0, 4.0, a)


def test_snapshots_are_immutable():
    cp = CurvilinearTrackParameters.create(POS, MOM, -1.0, 7.0)
    with pytest.raises(AttributeError):
        cp.charge = 1.0
    with pytest.raises(ValueError):
        cp.position[0] = 0.0
