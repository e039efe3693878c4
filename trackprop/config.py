from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import IO, Any, Mapping, MutableMapping, Optional, Union

import orjson

from trackprop.definitions import PION_MASS, UNCONSTRAINED_STEP
from trackprop.errors import ConfigError

logger = logging.getLogger(__name__)


__all__ = [
    "PropagatorOptions",
    "setup_logging",
    "load_config",
    "load_options",
]


_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_HANDLER_NAME = "trackprop"


def setup_logging(verbose: bool = False, stream: Optional[IO[str]] = None) -> logging.Handler:
    r"""
    Route propagation logs to ``stream`` (stderr by default).

    Installs one named handler on the root logger, since the stepper and the
    propagator log under their class names. Calling it again replaces that
    handler instead of adding a second one.

    Parameters
    ----------
    verbose : bool, optional
        If ``True``, set level to ``DEBUG`` (per-step messages); otherwise ``INFO``.
    stream : file-like, optional
        Destination of the records.

    Returns
    -------
    logging.Handler
        The installed handler.
    """
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger()
    for h in list(root.handlers):
        if h.get_name() == _HANDLER_NAME:
            root.removeHandler(h)
    handler = logging.StreamHandler(stream)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt="%H:%M:%S"))
    root.addHandler(handler)
    root.setLevel(level)
    return handler


@dataclass(slots=True)
class PropagatorOptions:
    r"""
    Settings of a propagation run.

    Attributes
    ----------
    mass : float
        Particle mass in GeV, enters :math:`\mathrm{d}t/\mathrm{d}s`.
    max_steps : int
        Abort after this many steps.
    max_step_size : float
        Magnitude of the initial (user tier) step size.
    path_limit : float, optional
        Abort once this absolute path length is reached (aborter tier).
    tolerance : float
        Accuracy target handed to the stepper state.
    boundary_check : bool
        Respect surface bounds when intersecting the target.
    log_steps : bool
        Record every step in a :class:`~trackprop.propagator.StepLogger`.
    """
    mass: float = PION_MASS
    max_steps: int = 1000
    max_step_size: float = UNCONSTRAINED_STEP
    path_limit: Optional[float] = None
    tolerance: float = 1e-4
    boundary_check: bool = True
    log_steps: bool = True

    def __post_init__(self) -> None:
        if self.mass < 0.0:
            raise ConfigError(f"mass must be non-negative, got {self.mass}")
        if self.max_steps <= 0:
            raise ConfigError(f"max_steps must be positive, got {self.max_steps}")
        if not self.max_step_size > 0.0:
            raise ConfigError(f"max_step_size must be positive, got {self.max_step_size}")
        if self.path_limit is not None and not self.path_limit > 0.0:
            raise ConfigError(f"path_limit must be positive, got {self.path_limit}")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "PropagatorOptions":
        """Build from a plain mapping; unknown keys raise :class:`ConfigError`."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigError(f"unknown propagator option(s): {', '.join(unknown)}")
        return cls(**dict(mapping))

    def to_dict(self) -> dict:
        return asdict(self)


def load_config(config_path: Union[str, Path]) -> MutableMapping[str, dict]:
    r"""
    Load a JSON configuration with :mod:`orjson`.

    Parameters
    ----------
    config_path : str or pathlib.Path
        Path to the JSON file.

    Returns
    -------
    dict
        Parsed configuration.

    Raises
    ------
    ConfigError
        If the file cannot be read or parsed, or is not a JSON object.
    """
    path = Path(config_path)
    try:
        cfg = orjson.loads(path.read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise ConfigError(f"Failed to parse {path}: {e}") from e
    if not isinstance(cfg, dict):
        raise ConfigError(f"{path} must contain a JSON object, got {type(cfg).__name__}")
    return cfg


def load_options(config_path: Union[str, Path],
                 key: str = "propagator",
                 overrides: Optional[Mapping[str, Any]] = None) -> PropagatorOptions:
    r"""
    Read :class:`PropagatorOptions` from the ``key`` section of a JSON file.

    ``overrides`` are merged over the file section with :func:`_deep_update`
    before validation. A missing section yields the defaults.
    """
    cfg = load_config(config_path)
    section = cfg.get(key, {})
    if not isinstance(section, dict):
        raise ConfigError(f"section '{key}' of {config_path} must be an object")
    merged = _deep_update(section, dict(overrides or {}))
    logger.debug("Propagator options from %s: %s", config_path, merged)
    return PropagatorOptions.from_mapping(merged)


def _deep_update(d: dict, u: dict) -> dict:
    r"""
    Recursively merge dictionaries (without side effects).

    Parameters
    ----------
    d : dict
        Base dictionary.
    u : dict
        Overrides (recursively merged).

    Returns
    -------
    dict
        New dictionary where nested dicts are merged and scalars/containers from
        ``u`` replace those in ``d``.
    """
    out = dict(d)
    for k, v in u.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_update(out[k], v)
        else:
            out[k] = v
    return out
