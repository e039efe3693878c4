from __future__ import annotations

from enum import IntEnum

import numpy as np


__all__ = [
    "BoundIndices",
    "FreeIndices",
    "NavigationDirection",
    "ParameterKind",
    "BOUND_SIZE",
    "FREE_SIZE",
    "UNCONSTRAINED_STEP",
    "ON_SURFACE_TOLERANCE",
    "CURVILINEAR_PROJ_TOLERANCE",
    "PION_MASS",
    "parameter_kind",
    "parameter_limits",
    "GeometryContext",
    "MagneticFieldContext",
]


class BoundIndices(IntEnum):
    r"""
    Components of a surface-bound parameter vector.

    The bound vector is :math:`(l_0, l_1, \phi, \theta, q/p, t)`, where
    :math:`(l_0, l_1)` are the two local coordinates on the reference surface.
    """
    LOC0 = 0
    LOC1 = 1
    PHI = 2
    THETA = 3
    QOP = 4
    TIME = 5


class FreeIndices(IntEnum):
    r"""
    Components of a global (free) parameter vector
    :math:`(x, y, z, t, d_x, d_y, d_z, q/p)`.
    """
    POS0 = 0
    POS1 = 1
    POS2 = 2
    TIME = 3
    DIR0 = 4
    DIR1 = 5
    DIR2 = 6
    QOP = 7


class NavigationDirection(IntEnum):
    """Sign of the propagation along the momentum direction."""
    FORWARD = 1
    BACKWARD = -1


class ParameterKind(IntEnum):
    UNBOUND = 0
    BOUNDED = 1
    CYCLIC = 2


BOUND_SIZE = len(BoundIndices)
FREE_SIZE = len(FreeIndices)

# magnitude of a step that no tier constrains
UNCONSTRAINED_STEP = float(np.finfo(np.float64).max)

ON_SURFACE_TOLERANCE = 1e-4          # mm
CURVILINEAR_PROJ_TOLERANCE = 0.999995

PION_MASS = 0.13957018               # GeV


def parameter_kind(index: IntEnum) -> ParameterKind:
    r"""
    Return how values of ``index`` are normalised.

    :math:`\phi` is cyclic on :math:`(-\pi, \pi]`, :math:`\theta` is bounded
    to :math:`[0, \pi]`; every other component is unbound.
    """
    if index is BoundIndices.PHI:
        return ParameterKind.CYCLIC
    if index is BoundIndices.THETA:
        return ParameterKind.BOUNDED
    return ParameterKind.UNBOUND


def parameter_limits(index: IntEnum) -> tuple[float, float]:
    """Value range ``(min, max)`` of a bounded or cyclic component."""
    kind = parameter_kind(index)
    if kind is ParameterKind.CYCLIC:
        return -np.pi, np.pi
    if kind is ParameterKind.BOUNDED:
        return 0.0, np.pi
    return -np.inf, np.inf


class GeometryContext:
    """Opaque alignment/geometry token; passed through, never inspected."""
    __slots__ = ("payload",)

    def __init__(self, payload=None) -> None:
        self.payload = payload


class MagneticFieldContext:
    """Opaque magnetic-field token; passed through, never inspected."""
    __slots__ = ("payload",)

    def __init__(self, payload=None) -> None:
        self.payload = payload
