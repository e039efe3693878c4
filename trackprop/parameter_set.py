from __future__ import annotations

from enum import IntEnum
from functools import lru_cache
from typing import Iterable, Optional, Sequence, Tuple, Type

import numpy as np

from trackprop.definitions import (
    BoundIndices,
    FreeIndices,
    ParameterKind,
    parameter_kind,
    parameter_limits,
)


__all__ = [
    "ParameterSet",
    "BoundParameterSet",
    "FreeParameterSet",
    "validate_indices",
    "wrap_cyclic",
    "correct_cyclic_difference",
]

_TWO_PI = 2.0 * np.pi


def wrap_cyclic(value: float) -> float:
    r"""Map an angle into :math:`(-\pi, \pi]`."""
    return float(np.pi - (np.pi - value) % _TWO_PI)


def correct_cyclic_difference(diff: float) -> float:
    r"""
    Correct the difference of two cyclic values into :math:`(-\pi, \pi]`.

    >>> round(correct_cyclic_difference(6.0), 6)
    -0.283185
    """
    return wrap_cyclic(diff)


def validate_indices(indices: Iterable[IntEnum]) -> Tuple[IntEnum, ...]:
    r"""
    Check that ``indices`` describe an ordered, duplicate-free subset of one space.

    Raises
    ------
    TypeError
        If the tuple is empty, mixes parameter spaces, contains something other
        than :class:`BoundIndices` / :class:`FreeIndices` members, or is not
        strictly increasing.
    """
    idx = tuple(indices)
    if not idx:
        raise TypeError("a parameter set needs at least one index")
    space = type(idx[0])
    if space not in (BoundIndices, FreeIndices):
        raise TypeError(f"unsupported parameter index {idx[0]!r}")
    if any(type(i) is not space for i in idx):
        raise TypeError(f"indices mix parameter spaces: {idx}")
    if any(int(a) >= int(b) for a, b in zip(idx, idx[1:])):
        raise TypeError(f"indices must be strictly increasing and unique: {idx}")
    return idx


@lru_cache(maxsize=None)
def _specialise(base: type, indices: Tuple[IntEnum, ...]) -> type:
    names = ", ".join(i.name for i in indices)
    return type(
        f"{base.__name__}[{names}]",
        (base,),
        {"__slots__": (), "indices": indices, "space": type(indices[0])},
    )


class ParameterSet:
    r"""
    Fixed, ordered subset of a bound or free parameter space.

    Concrete sets are obtained by specialising on a tuple of indices, which
    plays the role of a type-level tag list:

    >>> Loc = ParameterSet[BoundIndices.LOC0, BoundIndices.LOC1]
    >>> ps = Loc([0.5, -1.0])
    >>> ps.get(BoundIndices.LOC1)
    -1.0

    The specialised type is cached, so ``ParameterSet[a, b] is ParameterSet[a, b]``.

    Parameters
    ----------
    values : sequence of float
        One value per declared index. Cyclic components (:math:`\phi`) are
        wrapped into :math:`(-\pi, \pi]`, bounded ones (:math:`\theta`) are
        clamped to :math:`[0, \pi]`.
    covariance : array_like, shape (n, n), optional
        Covariance of the values. ``None`` means the uncertainty is unknown; it
        is never replaced by a zero matrix.

    Notes
    -----
    Instances are immutable: the stored arrays are flagged read-only.
    Equality is exact (no tolerance).
    """

    __slots__ = ("_values", "_cov")

    indices: Tuple[IntEnum, ...] = ()
    space: Optional[Type[IntEnum]] = None

    def __class_getitem__(cls, indices) -> type:
        if not isinstance(indices, tuple):
            indices = (indices,)
        if cls.indices:
            raise TypeError(f"{cls.__name__} is already specialised")
        return _specialise(cls, validate_indices(indices))

    def __init__(self, values: Sequence[float], covariance: Optional[np.ndarray] = None) -> None:
        if not self.indices:
            raise TypeError(f"{type(self).__name__} must be specialised, e.g. ParameterSet[BoundIndices.LOC0]")
        vals = np.array(values, dtype=np.float64).reshape(-1)
        n = len(self.indices)
        if vals.shape[0] != n:
            raise TypeError(f"{type(self).__name__} takes {n} values, got {vals.shape[0]}")
        for k, idx in enumerate(self.indices):
            kind = parameter_kind(idx)
            if kind is ParameterKind.CYCLIC:
                vals[k] = wrap_cyclic(vals[k])
            elif kind is ParameterKind.BOUNDED:
                lo, hi = parameter_limits(idx)
                vals[k] = min(max(vals[k], lo), hi)
        vals.setflags(write=False)
        self._values = vals

        if covariance is None:
            self._cov = None
        else:
            cov = np.array(covariance, dtype=np.float64)
            if cov.shape != (n, n):
                raise ValueError(f"covariance must have shape {(n, n)}, got {cov.shape}")
            cov.setflags(write=False)
            self._cov = cov

    # -- structure ---------------------------------------------------------

    @classmethod
    def size(cls) -> int:
        """Number of parameters in the set."""
        return len(cls.indices)

    @classmethod
    def contains(cls, index: IntEnum) -> bool:
        return type(index) is cls.space and index in cls.indices

    @classmethod
    def position_of(cls, index: IntEnum) -> int:
        """Row of ``index`` inside the set; ``KeyError`` if it is not declared."""
        if not cls.contains(index):
            raise KeyError(f"{index!r} is not part of {cls.__name__}")
        return cls.indices.index(index)

    @classmethod
    def projector(cls) -> np.ndarray:
        r"""
        Subset-selection matrix :math:`H` of shape ``(n, N)`` with
        :math:`H\,x_\text{full} = x_\text{subset}`.
        """
        full = len(cls.space)
        H = np.zeros((len(cls.indices), full), dtype=np.float64)
        for row, idx in enumerate(cls.indices):
            H[row, int(idx)] = 1.0
        return H

    # -- values ------------------------------------------------------------

    def get(self, index: IntEnum) -> float:
        return float(self._values[self.position_of(index)])

    def parameters(self) -> np.ndarray:
        return self._values

    def covariance(self) -> Optional[np.ndarray]:
        return self._cov

    def uncertainty(self, index: IntEnum) -> Optional[float]:
        """Standard deviation of ``index``, or ``None`` when no covariance is set."""
        row = self.position_of(index)
        if self._cov is None:
            return None
        return float(np.sqrt(self._cov[row, row]))

    def residual(self, other: "ParameterSet") -> np.ndarray:
        r"""
        Element-wise difference ``self - other`` on the indices of ``self``.

        ``other`` may be any set of the same space that contains all indices of
        ``self`` (typically the full bound set of a track). Differences of
        cyclic components are corrected into :math:`(-\pi, \pi]`, so the
        residual of :math:`\phi = 3` against :math:`\phi = -3` is
        :math:`6 - 2\pi`, not 6.
        """
        if other.space is not self.space:
            raise TypeError(f"cannot compare {type(self).__name__} with {type(other).__name__}")
        res = np.empty(len(self.indices), dtype=np.float64)
        for k, idx in enumerate(self.indices):
            d = self._values[k] - other.get(idx)
            if parameter_kind(idx) is ParameterKind.CYCLIC:
                d = correct_cyclic_difference(d)
            res[k] = d
        return res

    def copy(self) -> "ParameterSet":
        """Deep copy of values and covariance."""
        return type(self)(self._values.copy(), None if self._cov is None else self._cov.copy())

    # -- comparison --------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParameterSet):
            return NotImplemented
        if type(self).indices != type(other).indices or type(self).space is not type(other).space:
            return False
        if not np.array_equal(self._values, other._values):
            return False
        if self._cov is None or other._cov is None:
            return self._cov is None and other._cov is None
        return np.array_equal(self._cov, other._cov)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        vals = ", ".join(f"{i.name}={v:.6g}" for i, v in zip(self.indices, self._values))
        cov = "unknown" if self._cov is None else "set"
        return f"{type(self).__name__}({vals}; covariance={cov})"


BoundParameterSet = ParameterSet[tuple(BoundIndices)]
FreeParameterSet = ParameterSet[tuple(FreeIndices)]
