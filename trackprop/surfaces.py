from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from trackprop.coordinate_transforms import (
    bound_to_free_jacobian,
    curvilinear_frame,
    free_to_bound_jacobian,
)
from trackprop.definitions import ON_SURFACE_TOLERANCE, GeometryContext
from trackprop.errors import SurfaceError

logger = logging.getLogger(__name__)


__all__ = [
    "IntersectionStatus",
    "Intersection",
    "SurfaceBounds",
    "InfiniteBounds",
    "RectangleBounds",
    "Surface",
    "PlaneSurface",
]


class IntersectionStatus(IntEnum):
    """Outcome of intersecting a straight line with a surface."""
    MISSED = 0
    UNREACHABLE = 1
    REACHABLE = 2
    ON_SURFACE = 3


@dataclass(frozen=True, slots=True)
class Intersection:
    r"""
    Straight-line intersection with a surface.

    Attributes
    ----------
    position : ndarray, shape (3,)
        Global intersection point (``NaN`` when unreachable).
    path_length : float
        Signed path length along the queried direction.
    status : IntersectionStatus
    """
    position: np.ndarray
    path_length: float
    status: IntersectionStatus

    def __bool__(self) -> bool:
        return self.status in (IntersectionStatus.REACHABLE, IntersectionStatus.ON_SURFACE)

    @classmethod
    def unreachable(cls) -> "Intersection":
        return cls(np.full(3, np.nan), float("inf"), IntersectionStatus.UNREACHABLE)


class SurfaceBounds(abc.ABC):
    """Validity region in local coordinates."""

    @abc.abstractmethod
    def inside(self, local: np.ndarray, tolerance: float = 0.0) -> bool:
        ...


class InfiniteBounds(SurfaceBounds):
    def inside(self, local: np.ndarray, tolerance: float = 0.0) -> bool:
        return True

    def __repr__(self) -> str:
        return "InfiniteBounds()"


class RectangleBounds(SurfaceBounds):
    """Axis-aligned rectangle ``|l0| <= half_x``, ``|l1| <= half_y``."""
    __slots__ = ("half_x", "half_y")

    def __init__(self, half_x: float, half_y: float) -> None:
        if half_x <= 0.0 or half_y <= 0.0:
            raise ValueError("rectangle half lengths must be positive")
        self.half_x = float(half_x)
        self.half_y = float(half_y)

    def inside(self, local: np.ndarray, tolerance: float = 0.0) -> bool:
        return abs(local[0]) <= self.half_x + tolerance and abs(local[1]) <= self.half_y + tolerance

    def __repr__(self) -> str:
        return f"RectangleBounds(half_x={self.half_x}, half_y={self.half_y})"


def _readonly(a: np.ndarray) -> np.ndarray:
    a = np.array(a, dtype=np.float64)
    a.setflags(write=False)
    return a


class Surface(abc.ABC):
    r"""
    Read-only reference surface used to anchor bound parameters.

    A surface is placed by a rotation :math:`R` (columns: local :math:`x`,
    local :math:`y`, normal) and a center :math:`c`. It is immutable after
    construction and meant to be shared by reference between any number of
    stepper states, track parameters and measurements; Python's reference
    counting keeps it alive as long as one of them holds it.

    Concrete surfaces implement the coordinate maps and the straight-line
    intersection. The Jacobian helpers below are shared by every surface whose
    local frame is given by :meth:`reference_frame`.

    Parameters
    ----------
    rotation : array_like, shape (3, 3)
        Orthonormal rotation matrix.
    center : array_like, shape (3,)
    bounds : SurfaceBounds, optional
        Defaults to :class:`InfiniteBounds`.
    """

    __slots__ = ("_rotation", "_center", "_bounds", "__weakref__")

    def __init__(self,
                 rotation: np.ndarray,
                 center: Sequence[float],
                 bounds: Optional[SurfaceBounds] = None) -> None:
        R = np.asarray(rotation, dtype=np.float64)
        if R.shape != (3, 3) or not np.allclose(R.T @ R, np.eye(3), atol=1e-9):
            raise ValueError("surface rotation must be an orthonormal 3x3 matrix")
        c = np.asarray(center, dtype=np.float64).reshape(-1)
        if c.shape != (3,):
            raise ValueError(f"surface center must have 3 components, got {c.shape}")
        self._rotation = _readonly(R)
        self._center = _readonly(c)
        self._bounds = bounds if bounds is not None else InfiniteBounds()

    @property
    def rotation(self) -> np.ndarray:
        return self._rotation

    @property
    def center(self) -> np.ndarray:
        return self._center

    @property
    def bounds(self) -> SurfaceBounds:
        return self._bounds

    def transform(self, gctx: Optional[GeometryContext] = None) -> np.ndarray:
        """Homogeneous 4×4 local-to-global transform."""
        T = np.eye(4)
        T[:3, :3] = self._rotation
        T[:3, 3] = self._center
        return T

    # -- geometry (surface specific) ---------------------------------------

    @abc.abstractmethod
    def normal(self, gctx: GeometryContext, position: np.ndarray) -> np.ndarray:
        ...

    @abc.abstractmethod
    def reference_frame(self, gctx: GeometryContext, position: np.ndarray, direction: np.ndarray) -> np.ndarray:
        """Measurement frame at ``position`` (columns: local x, local y, normal)."""

    @abc.abstractmethod
    def local_to_global(self, gctx: GeometryContext, local: np.ndarray, direction: np.ndarray) -> np.ndarray:
        ...

    @abc.abstractmethod
    def global_to_local(self,
                        gctx: GeometryContext,
                        position: np.ndarray,
                        direction: np.ndarray,
                        check: bool = True) -> np.ndarray:
        ...

    @abc.abstractmethod
    def intersect(self,
                  gctx: GeometryContext,
                  position: np.ndarray,
                  direction: np.ndarray,
                  boundary_check: bool = True) -> Intersection:
        ...

    # -- Jacobians ---------------------------------------------------------

    def init_jacobian_to_global(self,
                                gctx: GeometryContext,
                                position: np.ndarray,
                                direction: np.ndarray,
                                bound_params: Optional[np.ndarray] = None) -> np.ndarray:
        r"""
        Seed Jacobian (8×6) of the bound-to-free map at this surface.

        ``bound_params`` is accepted for surfaces whose frame depends on the
        local position; planar surfaces ignore it.
        """
        return bound_to_free_jacobian(self.reference_frame(gctx, position, direction), direction)

    def init_jacobian_to_local(self,
                               gctx: GeometryContext,
                               position: np.ndarray,
                               direction: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        r"""
        Free-to-bound projection (6×8) at this surface.

        Returns
        -------
        jac_to_local : ndarray, shape (6, 8)
        rframe_t : ndarray, shape (3, 3)
            Transposed reference frame used for the projection.
        """
        rframe_t = self.reference_frame(gctx, position, direction).T
        return free_to_bound_jacobian(rframe_t, direction), rframe_t

    def derivative_factors(self,
                           gctx: GeometryContext,
                           position: np.ndarray,
                           direction: np.ndarray,
                           rframe_t: np.ndarray,
                           jac_to_global: np.ndarray) -> np.ndarray:
        r"""
        Path-length correction factors :math:`s` (length 6).

        A perturbation of the start parameters moves the intersection with
        this surface along the trajectory. With the measurement normal
        :math:`n` (third row of ``rframe_t``),

        .. math::

            s = \frac{n^\top}{n\cdot\hat d}\; J_{0:3,\,:},

        and the corrected Jacobian is :math:`J - \frac{\mathrm{d}x}{\mathrm{d}s}\,s`.

        Raises
        ------
        SurfaceError
            If ``direction`` is parallel to the surface.
        """
        norm_vec = np.asarray(rframe_t)[2, :]
        denom = float(norm_vec @ direction)
        if denom == 0.0:
            raise SurfaceError("direction is parallel to the surface")
        return (norm_vec / denom) @ np.asarray(jac_to_global)[0:3, :]

    def is_on_surface(self,
                      gctx: GeometryContext,
                      position: np.ndarray,
                      direction: Optional[np.ndarray] = None,
                      boundary_check: bool = True,
                      tolerance: float = ON_SURFACE_TOLERANCE) -> bool:
        d = np.asarray(direction if direction is not None else self.normal(gctx, position), dtype=np.float64)
        try:
            loc = self.global_to_local(gctx, position, d, check=True)
        except SurfaceError:
            return False
        return (not boundary_check) or self._bounds.inside(loc, tolerance)


class PlaneSurface(Surface):
    r"""
    Plane through ``center`` with local axes given by the first two rotation columns.

    Either ``normal`` or ``rotation`` must be given. A plane built from a
    normal uses the curvilinear frame of that normal, so
    ``PlaneSurface(c, normal=d)`` and :meth:`curvilinear` share the same local
    axes.

    Examples
    --------
    >>> plane = PlaneSurface([0., 0., 100.], normal=[0., 0., 1.])
    >>> plane.intersect(GeometryContext(), np.zeros(3), np.array([0., 0., 1.])).path_length
    100.0
    """

    __slots__ = ()

    def __init__(self,
                 center: Sequence[float],
                 normal: Optional[Sequence[float]] = None,
                 rotation: Optional[np.ndarray] = None,
                 bounds: Optional[SurfaceBounds] = None) -> None:
        if (normal is None) == (rotation is None):
            raise ValueError("PlaneSurface needs exactly one of 'normal' or 'rotation'")
        if normal is not None:
            n = np.asarray(normal, dtype=np.float64)
            nn = np.linalg.norm(n)
            if not np.isfinite(nn) or nn == 0.0:
                raise ValueError("plane normal must be a finite non-zero vector")
            rotation = curvilinear_frame(n / nn)
        super().__init__(rotation, center, bounds)

    @classmethod
    def curvilinear(cls, position: Sequence[float], direction: Sequence[float]) -> "PlaneSurface":
        """Implicit plane of curvilinear parameters: through ``position``, normal to ``direction``."""
        return cls(position, normal=direction)

    @classmethod
    def from_euler(cls,
                   center: Sequence[float],
                   angles: Sequence[float],
                   seq: str = "xyz",
                   degrees: bool = False,
                   bounds: Optional[SurfaceBounds] = None) -> "PlaneSurface":
        """Plane whose frame is the identity rotated by the given Euler angles."""
        R = Rotation.from_euler(seq, angles, degrees=degrees).as_matrix()
        return cls(center, rotation=R, bounds=bounds)

    def normal(self, gctx: GeometryContext, position: Optional[np.ndarray] = None) -> np.ndarray:
        return self._rotation[:, 2]

    def reference_frame(self, gctx: GeometryContext, position: np.ndarray, direction: np.ndarray) -> np.ndarray:
        return self._rotation

    def local_to_global(self, gctx: GeometryContext, local: np.ndarray, direction: np.ndarray) -> np.ndarray:
        return self._center + self._rotation[:, 0:2] @ np.asarray(local, dtype=np.float64)[0:2]

    def global_to_local(self,
                        gctx: GeometryContext,
                        position: np.ndarray,
                        direction: np.ndarray,
                        check: bool = True) -> np.ndarray:
        loc3 = self._rotation.T @ (np.asarray(position, dtype=np.float64) - self._center)
        if abs(loc3[2]) > ON_SURFACE_TOLERANCE:
            if check:
                raise SurfaceError(f"position is {loc3[2]:.3g} mm off the plane")
            logger.debug("Projecting position %.3g mm off the plane onto it", loc3[2])
        return loc3[0:2].copy()

    def intersect(self,
                  gctx: GeometryContext,
                  position: np.ndarray,
                  direction: np.ndarray,
                  boundary_check: bool = True) -> Intersection:
        r"""
        Straight-line intersection.

        .. math::

            s = \frac{n\cdot(c - x)}{n\cdot\hat d}

        A direction parallel to the plane is unreachable. ``|s|`` below the
        on-surface tolerance is reported as :attr:`IntersectionStatus.ON_SURFACE`;
        a point outside the bounds is :attr:`IntersectionStatus.MISSED` when
        ``boundary_check`` is set.
        """
        pos = np.asarray(position, dtype=np.float64)
        d = np.asarray(direction, dtype=np.float64)
        n = self._rotation[:, 2]
        denom = float(d @ n)
        if denom == 0.0:
            return Intersection.unreachable()
        path = float(n @ (self._center - pos)) / denom
        status = IntersectionStatus.ON_SURFACE if abs(path) < ON_SURFACE_TOLERANCE else IntersectionStatus.REACHABLE
        point = pos + path * d
        if boundary_check:
            loc = (self._rotation.T @ (point - self._center))[0:2]
            if not self._bounds.inside(loc, ON_SURFACE_TOLERANCE):
                status = IntersectionStatus.MISSED
        return Intersection(point, path, status)

    def __repr__(self) -> str:
        c = ", ".join(f"{v:.6g}" for v in self._center)
        n = ", ".join(f"{v:.6g}" for v in self._rotation[:, 2])
        return f"PlaneSurface(center=({c}), normal=({n}), bounds={self._bounds!r})"
