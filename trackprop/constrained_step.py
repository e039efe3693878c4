from __future__ import annotations

from enum import IntEnum
from typing import List

from trackprop.definitions import UNCONSTRAINED_STEP, NavigationDirection


__all__ = ["ConstraintType", "ConstrainedStep"]


class ConstraintType(IntEnum):
    """Independent tiers bounding the next step."""
    ACCURACY = 0
    ACTOR = 1
    ABORTER = 2
    USER = 3


class ConstrainedStep:
    r"""
    Signed step size bounded by several independently tracked tiers.

    Every tier holds a signed value; the effective step is the tightest one
    in the propagation direction (``min`` going forward, ``max`` going
    backward). Tiers that were never constrained hold
    :math:`\pm` ``UNCONSTRAINED_STEP``.

    Parameters
    ----------
    value : float
        Initial signed step size. It is placed in the ``USER`` tier and its
        sign fixes the propagation direction.

    Examples
    --------
    >>> cs = ConstrainedStep(-100.0)
    >>> cs.update(-20.0, ConstraintType.ACTOR)
    >>> float(cs)
    -20.0
    >>> cs.release(ConstraintType.ACTOR)
    >>> float(cs)
    -100.0
    """

    __slots__ = ("values", "direction")

    def __init__(self, value: float = UNCONSTRAINED_STEP) -> None:
        value = float(value)
        self.direction = NavigationDirection.FORWARD if value > 0.0 else NavigationDirection.BACKWARD
        unconstrained = self.direction * UNCONSTRAINED_STEP
        self.values: List[float] = [unconstrained, unconstrained, unconstrained, value]

    def _tightest(self) -> float:
        return min(self.values) if self.direction is NavigationDirection.FORWARD else max(self.values)

    def _loosest(self) -> float:
        return max(self.values) if self.direction is NavigationDirection.FORWARD else min(self.values)

    def __float__(self) -> float:
        return self._tightest()

    @property
    def value(self) -> float:
        return self._tightest()

    def value_of(self, tier: ConstraintType) -> float:
        return self.values[tier]

    def current_type(self) -> ConstraintType:
        """Tier that currently determines the effective step."""
        tightest = self._tightest()
        for tier in ConstraintType:
            if self.values[tier] == tightest:
                return tier
        return ConstraintType.USER

    def assign(self, value: float) -> None:
        """Overwrite the accuracy tier and take the direction from the sign of ``value``."""
        value = float(value)
        self.direction = NavigationDirection.FORWARD if value > 0.0 else NavigationDirection.BACKWARD
        self.values[ConstraintType.ACCURACY] = value

    def update(self, value: float, tier: ConstraintType, release: bool = False) -> None:
        r"""
        Tighten ``tier`` to ``value``.

        The tier only takes ``value`` when ``|value|`` is not larger than the
        magnitude it already holds, so an active constraint is never loosened.
        With ``release`` the tier is relaxed first, which allows replacing a
        stale constraint of the same tier by a looser one.
        """
        if release:
            self.release(tier)
        value = float(value)
        current = self.values[tier]
        self.values[tier] = current if abs(current) < abs(value) else value

    def release(self, tier: ConstraintType) -> None:
        """Relax ``tier`` to the loosest bound still held by any tier."""
        self.values[tier] = self._loosest()

    def copy(self) -> "ConstrainedStep":
        out = ConstrainedStep.__new__(ConstrainedStep)
        out.values = list(self.values)
        out.direction = self.direction
        return out

    def __str__(self) -> str:
        parts = []
        for tier in ConstraintType:
            v = self.values[tier]
            if abs(v) == UNCONSTRAINED_STEP:
                parts.append("inf" if v > 0.0 else "-inf")
            else:
                parts.append(f"{v:g}")
        return "(" + ", ".join(parts) + ")"

    def __repr__(self) -> str:
        return f"ConstrainedStep({self._tightest():g}, tiers={self})"
