from __future__ import annotations

from enum import IntEnum
from functools import lru_cache
from typing import Any, Hashable, Optional, Tuple

import numpy as np

from trackprop.definitions import BoundIndices
from trackprop.kernels import chi2 as _chi2
from trackprop.parameter_set import ParameterSet, validate_indices
from trackprop.surfaces import Surface
from trackprop.volumes import Volume


__all__ = ["Measurement"]


@lru_cache(maxsize=None)
def _specialise(indices: Tuple[IntEnum, ...]) -> type:
    names = ", ".join(i.name for i in indices)
    return type(
        f"Measurement[{names}]",
        (Measurement,),
        {"__slots__": (), "parameter_set_type": ParameterSet[indices]},
    )


class Measurement:
    r"""
    Measured values of a fixed parameter subset on a reference object.

    Specialise on the measured indices, exactly like :class:`ParameterSet`:

    >>> from trackprop import PlaneSurface
    >>> plane = PlaneSurface([0., 0., 0.], normal=[0., 0., 1.])
    >>> Loc0 = Measurement[BoundIndices.LOC0]
    >>> m = Loc0(plane, "hit-17", np.array([[0.01]]), 0.5)
    >>> m.size()
    1

    Parameters
    ----------
    reference : Surface or Volume
        Shared reference object: a :class:`Surface` for bound indices, a
        :class:`Volume` for free indices. Kept by reference, never copied.
    source_link : hashable
        Opaque handle back to the raw detector data.
    covariance : array_like, shape (n, n)
        Measurement covariance.
    *values : float
        One value per measured index.

    Raises
    ------
    TypeError
        Wrong number of values, unspecialised class, or a reference object of
        the wrong kind.
    ValueError
        ``reference`` or ``covariance`` is ``None``.

    Notes
    -----
    :meth:`residual` assumes the track parameters are expressed on the same
    reference object; this is not checked.
    """

    __slots__ = ("_reference", "_source_link", "_parameters")

    parameter_set_type: Optional[type] = None

    def __class_getitem__(cls, indices) -> type:
        if not isinstance(indices, tuple):
            indices = (indices,)
        if cls.parameter_set_type is not None:
            raise TypeError(f"{cls.__name__} is already specialised")
        return _specialise(validate_indices(indices))

    def __init__(self,
                 reference: Any,
                 source_link: Hashable,
                 covariance: np.ndarray,
                 *values: float) -> None:
        pst = self.parameter_set_type
        if pst is None:
            raise TypeError("Measurement must be specialised, e.g. Measurement[BoundIndices.LOC0]")
        if len(values) != pst.size():
            raise TypeError(f"{type(self).__name__} takes {pst.size()} values, got {len(values)}")
        if reference is None:
            raise ValueError("a measurement needs a reference surface or volume")
        expected = Surface if pst.space is BoundIndices else Volume
        if not isinstance(reference, expected):
            raise TypeError(f"{type(self).__name__} must reference a {expected.__name__}, "
                            f"got {type(reference).__name__}")
        if covariance is None:
            raise ValueError("a measurement needs a covariance")
        self._reference = reference
        self._source_link = source_link
        self._parameters = pst(values, covariance)

    # -- structure ---------------------------------------------------------

    @classmethod
    def size(cls) -> int:
        return cls.parameter_set_type.size()

    @classmethod
    def projector(cls) -> np.ndarray:
        """Selection matrix from the full bound (or free) vector onto the measured subset."""
        return cls.parameter_set_type.projector()

    # -- values ------------------------------------------------------------

    def get(self, index: IntEnum) -> float:
        return self._parameters.get(index)

    def parameters(self) -> np.ndarray:
        return self._parameters.parameters()

    def covariance(self) -> np.ndarray:
        return self._parameters.covariance()

    def uncertainty(self, index: IntEnum) -> float:
        return self._parameters.uncertainty(index)

    @property
    def parameter_set(self) -> ParameterSet:
        return self._parameters

    @property
    def reference_object(self):
        return self._reference

    @property
    def source_link(self) -> Hashable:
        return self._source_link

    def residual(self, track_parameters) -> np.ndarray:
        r"""
        Measured minus predicted values on the measured indices.

        ``track_parameters`` may be any track parameter object (or a bare
        :class:`ParameterSet`) of the same space; cyclic differences are
        corrected into :math:`(-\pi, \pi]`.
        """
        other = getattr(track_parameters, "parameter_set", track_parameters)
        return self._parameters.residual(other)

    def chi2(self, track_parameters) -> float:
        r"""
        Mahalanobis distance of :meth:`residual`.

        .. math::

            \chi^2 = r^\top \bigl(V + H\,C\,H^\top\bigr)^{-1} r

        with the measurement covariance :math:`V`, the projector :math:`H`
        and the track covariance :math:`C` (omitted when unknown).
        """
        other = getattr(track_parameters, "parameter_set", track_parameters)
        r = self._parameters.residual(other)
        S = np.array(self.covariance(), dtype=np.float64)
        C = other.covariance()
        if C is not None:
            H = self.projector()
            S = S + H @ C @ H.T
        return _chi2(r, S)

    # -- comparison --------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Measurement):
            return NotImplemented
        return (type(self) is type(other)
                and self._reference is other._reference
                and self._source_link == other._source_link
                and self._parameters == other._parameters)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        lines = [f"{type(self).__name__} with {self.size()} measured values:"]
        for idx, v in zip(self._parameters.indices, self.parameters()):
            lines.append(f"  {idx.name:<6} = {v: .6g}")
        lines.append(f"  reference   = {self._reference!r}")
        lines.append(f"  source link = {self._source_link!r}")
        return "\n".join(lines)
