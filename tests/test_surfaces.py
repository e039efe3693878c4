import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trackprop.definitions import GeometryContext
from trackprop.errors import SurfaceError
from trackprop.surfaces import IntersectionStatus, PlaneSurface, RectangleBounds
from trackprop.volumes import CuboidVolume, Volume


GCTX = GeometryContext()


def test_plane_needs_exactly_one_orientation():
    with pytest.raises(ValueError):
        PlaneSurface([0.0, 0.0, 0.0])
    with pytest.raises(ValueError):
        PlaneSurface([0.0, 0.0, 0.0], normal=[0.0, 0.0, 1.0], rotation=np.eye(3))
    with pytest.raises(ValueError):
        PlaneSurface([0.0, 0.0, 0.0], normal=[0.0, 0.0, 0.0])
    with pytest.raises(ValueError):
        PlaneSurface([0.0, 0.0, 0.0], rotation=2 * np.eye(3))


def test_surface_is_read_only():
    plane = PlaneSurface([1.0, 2.0, 3.0], normal=[0.0, 1.0, 0.0])
    with pytest.raises(ValueError):
        plane.center[0] = 5.0
    with pytest.raises(ValueError):
        plane.rotation[0, 0] = 5.0


def test_intersect_forward_and_behind():
    plane = PlaneSurface([0.0, 0.0, 100.0], normal=[0.0, 0.0, 1.0])
    isec = plane.intersect(GCTX, np.zeros(3), np.array([0.0, 0.0, 1.0]))
    assert isec.status is IntersectionStatus.REACHABLE
    assert isec.path_length == pytest.approx(100.0)
    np.testing.assert_allclose(isec.position, [0.0, 0.0, 100.0])

    back = plane.intersect(GCTX, np.zeros(3), np.array([0.0, 0.0, -1.0]))
    assert back.path_length == pytest.approx(-100.0)


def test_intersect_parallel_is_unreachable():
    plane = PlaneSurface([0.0, 0.0, 100.0], normal=[0.0, 0.0, 1.0])
    isec = plane.intersect(GCTX, np.zeros(3), np.array([1.0, 0.0, 0.0]))
    assert isec.status is IntersectionStatus.UNREACHABLE
    assert not isec


def test_intersect_on_surface():
    plane = PlaneSurface([0.0, 0.0, 100.0], normal=[0.0, 0.0, 1.0])
    isec = plane.intersect(GCTX, np.array([3.0, 4.0, 100.0 + 1e-6]), np.array([0.0, 0.6, 0.8]))
    assert isec.status is IntersectionStatus.ON_SURFACE
    assert isec


def test_intersect_outside_bounds_is_missed():
    plane = PlaneSurface([0.0, 0.0, 10.0], rotation=np.eye(3), bounds=RectangleBounds(1.0, 1.0))
    d = np.array([1.0, 0.0, 1.0]) / np.sqrt(2.0)
    assert plane.intersect(GCTX, np.zeros(3), d).status is IntersectionStatus.MISSED
    assert plane.intersect(GCTX, np.zeros(3), d, boundary_check=False).status is IntersectionStatus.REACHABLE


def test_rectangle_bounds_validation():
    with pytest.raises(ValueError):
        RectangleBounds(0.0, 1.0)
    b = RectangleBounds(2.0, 1.0)
    assert b.inside(np.array([1.9, -0.9]))
    assert not b.inside(np.array([0.0, 1.1]))


def test_derivative_factors_parallel_direction():
    plane = PlaneSurface([0.0, 0.0, 0.0], rotation=np.eye(3))
    d = np.array([1.0, 0.0, 0.0])
    _, rframe_t = plane.init_jacobian_to_local(GCTX, np.zeros(3), d)
    with pytest.raises(SurfaceError):
        plane.derivative_factors(GCTX, np.zeros(3), d, rframe_t, np.zeros((8, 6)))


def test_curvilinear_plane_is_normal_to_direction():
    d = np.array([1.0, 1.0, 0.0]) / np.sqrt(2.0)
    plane = PlaneSurface.curvilinear([1.0, 2.0, 3.0], d)
    np.testing.assert_allclose(plane.normal(GCTX), d)
    assert plane.is_on_surface(GCTX, np.array([1.0, 2.0, 3.0]), d)


def test_volumes():
    box = CuboidVolume([0.0, 0.0, 0.0], [1.0, 2.0, 3.0])
    assert box.inside(np.array([0.5, -1.5, 2.9]))
    assert not box.inside(np.array([1.5, 0.0, 0.0]))
    assert Volume([0.0, 0.0, 0.0]).inside(np.array([1e9, 0.0, 0.0]))
    with pytest.raises(ValueError):
        CuboidVolume([0.0, 0.0, 0.0], [1.0, -2.0, 3.0])
