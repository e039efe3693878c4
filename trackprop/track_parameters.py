from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional, Sequence, Union

import numpy as np

from trackprop.coordinate_transforms import (
    angles_from_direction,
    bound_to_free,
    direction_from_angles,
    free_to_bound,
    free_vector,
)
from trackprop.definitions import BoundIndices, FreeIndices, GeometryContext
from trackprop.parameter_set import BoundParameterSet, FreeParameterSet, ParameterSet
from trackprop.surfaces import PlaneSurface, Surface


__all__ = [
    "BoundTrackParameters",
    "CurvilinearTrackParameters",
    "FreeTrackParameters",
    "TrackParameters",
    "charge_over_momentum",
]


def charge_over_momentum(charge: Optional[float], p: float) -> float:
    r"""
    The :math:`q/p` entry of a parameter vector.

    Neutral particles (``charge is None`` or ``0``) use :math:`1/p`.
    """
    if p <= 0.0 or not np.isfinite(p):
        raise ValueError(f"momentum magnitude must be positive and finite, got {p}")
    return (charge if charge else 1.0) / p


def _momentum_magnitude(charge: Optional[float], qop: float) -> float:
    if qop == 0.0:
        raise ValueError("q/p must be non-zero")
    return abs((charge if charge else 1.0) / qop)


def _check_charge(charge: Optional[float]) -> Optional[float]:
    if charge is None:
        return None
    charge = float(charge)
    if charge == 0.0:
        raise ValueError("charged parameters need a non-zero charge; use charge=None for neutral")
    return charge


def _split_momentum(momentum: Sequence[float]):
    mom = np.asarray(momentum, dtype=np.float64)
    p = float(np.linalg.norm(mom))
    if p == 0.0 or not np.isfinite(p):
        raise ValueError("momentum must be a finite non-zero vector")
    return mom / p, p


class _TrackParametersMixin:
    """Accessors shared by all track parameter variants."""

    __slots__ = ()

    parameter_set: ParameterSet
    charge: Optional[float]

    @property
    def neutral(self) -> bool:
        return self.charge is None

    def parameters(self) -> np.ndarray:
        return self.parameter_set.parameters()

    def get(self, index) -> float:
        return self.parameter_set.get(index)

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return self.parameter_set.covariance()

    @property
    def momentum(self) -> np.ndarray:
        return self.absolute_momentum * self.direction

    @property
    def pt(self) -> float:
        m = self.momentum
        return float(np.hypot(m[0], m[1]))

    @property
    def eta(self) -> float:
        _, theta = angles_from_direction(self.direction)
        return float(-np.log(np.tan(0.5 * theta)))

    def clone(self):
        """Deep copy of the parameter data; the reference surface is shared."""
        return replace(self, parameter_set=self.parameter_set.copy())


@dataclass(frozen=True, slots=True, eq=False)
class BoundTrackParameters(_TrackParametersMixin):
    r"""
    Track parameters expressed in the local frame of a surface.

    Use :meth:`from_global` or :meth:`from_vector` rather than the raw
    constructor; they compute the global position with the surface map.

    Attributes
    ----------
    surface : Surface
        Shared reference surface (never copied).
    parameter_set : BoundParameterSet
        :math:`(l_0, l_1, \phi, \theta, q/p, t)` with optional 6×6 covariance.
    charge : float or None
        ``None`` for neutral parameters (:math:`q/p` then holds :math:`1/p`).
    position : ndarray, shape (3,)
        Global position at construction.
    """
    surface: Surface
    parameter_set: BoundParameterSet
    charge: Optional[float]
    position: np.ndarray = field(repr=False)

    @classmethod
    def from_vector(cls,
                    gctx: GeometryContext,
                    surface: Surface,
                    vector: Sequence[float],
                    covariance: Optional[np.ndarray] = None,
                    charge: Optional[float] = 1.0) -> "BoundTrackParameters":
        r"""
        Build from a bound vector.

        ``charge`` gives the charge magnitude; its sign is taken from
        :math:`q/p`. Pass ``None`` for neutral parameters.
        """
        if surface is None:
            raise ValueError("bound parameters need a reference surface")
        ps = BoundParameterSet(vector, covariance)
        qop = ps.get(BoundIndices.QOP)
        if charge is not None:
            charge = float(np.copysign(abs(_check_charge(charge)), qop))
        free = bound_to_free(gctx, ps.parameters(), surface)
        return cls(surface, ps, charge, _frozen(free[0:3]))

    @classmethod
    def from_global(cls,
                    gctx: GeometryContext,
                    position: Sequence[float],
                    momentum: Sequence[float],
                    charge: Optional[float],
                    time: float,
                    surface: Surface,
                    covariance: Optional[np.ndarray] = None) -> "BoundTrackParameters":
        """Express a global position/momentum on ``surface`` (the position is projected onto it)."""
        if surface is None:
            raise ValueError("bound parameters need a reference surface")
        charge = _check_charge(charge)
        direction, p = _split_momentum(momentum)
        free = free_vector(position, time, direction, charge_over_momentum(charge, p))
        bound = free_to_bound(gctx, free, surface, check=False)
        ps = BoundParameterSet(bound, covariance)
        on_surface = surface.local_to_global(gctx, bound[0:2], direction)
        return cls(surface, ps, charge, _frozen(on_surface))

    @property
    def reference_surface(self) -> Surface:
        return self.surface

    @property
    def direction(self) -> np.ndarray:
        return direction_from_angles(self.get(BoundIndices.PHI), self.get(BoundIndices.THETA))

    @property
    def absolute_momentum(self) -> float:
        return _momentum_magnitude(self.charge, self.get(BoundIndices.QOP))

    @property
    def time(self) -> float:
        return self.get(BoundIndices.TIME)

    def clone(self) -> "BoundTrackParameters":
        return replace(self, parameter_set=self.parameter_set.copy(), position=_frozen(self.position))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BoundTrackParameters):
            return NotImplemented
        return (self.surface is other.surface
                and self.charge == other.charge
                and self.parameter_set == other.parameter_set)

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True, slots=True, eq=False)
class CurvilinearTrackParameters(_TrackParametersMixin):
    r"""
    Track parameters in the curvilinear frame of their own direction.

    The local coordinates are zero by construction; the implicit anchoring
    frame is the plane through :attr:`position` normal to the direction
    (see :meth:`PlaneSurface.curvilinear`), generated once in :meth:`create`.
    """
    parameter_set: BoundParameterSet
    charge: Optional[float]
    position: np.ndarray = field(repr=False)
    surface: PlaneSurface = field(repr=False)

    @classmethod
    def create(cls,
               position: Sequence[float],
               momentum: Sequence[float],
               charge: Optional[float],
               time: float,
               covariance: Optional[np.ndarray] = None) -> "CurvilinearTrackParameters":
        charge = _check_charge(charge)
        direction, p = _split_momentum(momentum)
        phi, theta = angles_from_direction(direction)
        ps = BoundParameterSet([0.0, 0.0, phi, theta, charge_over_momentum(charge, p), time], covariance)
        pos = _frozen(position)
        return cls(ps, charge, pos, PlaneSurface.curvilinear(pos, direction))

    @property
    def reference_surface(self) -> PlaneSurface:
        return self.surface

    @property
    def direction(self) -> np.ndarray:
        return direction_from_angles(self.get(BoundIndices.PHI), self.get(BoundIndices.THETA))

    @property
    def absolute_momentum(self) -> float:
        return _momentum_magnitude(self.charge, self.get(BoundIndices.QOP))

    @property
    def time(self) -> float:
        return self.get(BoundIndices.TIME)

    def clone(self) -> "CurvilinearTrackParameters":
        return replace(self, parameter_set=self.parameter_set.copy(), position=_frozen(self.position))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CurvilinearTrackParameters):
            return NotImplemented
        return (self.charge == other.charge
                and np.array_equal(self.position, other.position)
                and self.parameter_set == other.parameter_set)

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True, slots=True, eq=False)
class FreeTrackParameters(_TrackParametersMixin):
    r"""
    Global-frame parameters :math:`(x, y, z, t, d_x, d_y, d_z, q/p)`.

    Not anchored to any surface; :attr:`reference_surface` is ``None``.
    """
    parameter_set: FreeParameterSet
    charge: Optional[float]

    @classmethod
    def create(cls,
               position: Sequence[float],
               momentum: Sequence[float],
               charge: Optional[float],
               time: float,
               covariance: Optional[np.ndarray] = None) -> "FreeTrackParameters":
        charge = _check_charge(charge)
        direction, p = _split_momentum(momentum)
        vec = free_vector(position, time, direction, charge_over_momentum(charge, p))
        return cls(FreeParameterSet(vec, covariance), charge)

    @property
    def reference_surface(self) -> None:
        return None

    @property
    def position(self) -> np.ndarray:
        return self.parameters()[0:3]

    @property
    def direction(self) -> np.ndarray:
        d = self.parameters()[4:7]
        return d / np.linalg.norm(d)

    @property
    def absolute_momentum(self) -> float:
        return _momentum_magnitude(self.charge, self.get(FreeIndices.QOP))

    @property
    def time(self) -> float:
        return self.get(FreeIndices.TIME)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FreeTrackParameters):
            return NotImplemented
        return self.charge == other.charge and self.parameter_set == other.parameter_set

    __hash__ = None  # type: ignore[assignment]


def _frozen(a: Sequence[float]) -> np.ndarray:
    out = np.array(a, dtype=np.float64).reshape(-1)
    out.setflags(write=False)
    return out


TrackParameters = Union[BoundTrackParameters, CurvilinearTrackParameters, FreeTrackParameters]
