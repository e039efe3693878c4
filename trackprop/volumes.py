from __future__ import annotations

from typing import Sequence

import numpy as np


__all__ = ["Volume", "CuboidVolume"]


class Volume:
    """Reference object of free-frame (volume) measurements."""
    __slots__ = ("_center", "__weakref__")

    def __init__(self, center: Sequence[float]) -> None:
        c = np.array(center, dtype=np.float64).reshape(-1)
        if c.shape != (3,):
            raise ValueError(f"volume center must have 3 components, got {c.shape}")
        c.setflags(write=False)
        self._center = c

    @property
    def center(self) -> np.ndarray:
        return self._center

    def inside(self, position: np.ndarray, tolerance: float = 0.0) -> bool:
        return True


class CuboidVolume(Volume):
    """Axis-aligned box ``|x - center| <= half_lengths`` (component-wise)."""
    __slots__ = ("_half",)

    def __init__(self, center: Sequence[float], half_lengths: Sequence[float]) -> None:
        super().__init__(center)
        h = np.array(half_lengths, dtype=np.float64).reshape(-1)
        if h.shape != (3,) or np.any(h <= 0.0):
            raise ValueError("cuboid half lengths must be three positive numbers")
        h.setflags(write=False)
        self._half = h

    @property
    def half_lengths(self) -> np.ndarray:
        return self._half

    def inside(self, position: np.ndarray, tolerance: float = 0.0) -> bool:
        d = np.abs(np.asarray(position, dtype=np.float64) - self._center)
        return bool(np.all(d <= self._half + tolerance))

    def __repr__(self) -> str:
        return f"CuboidVolume(center={self._center.tolist()}, half_lengths={self._half.tolist()})"
