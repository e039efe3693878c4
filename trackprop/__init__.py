__all__ = [
    "BoundIndices", "FreeIndices", "NavigationDirection",
    "UNCONSTRAINED_STEP", "ON_SURFACE_TOLERANCE", "PION_MASS",
    "GeometryContext", "MagneticFieldContext",
    "PropagationError", "StepperError", "SurfaceError", "ConfigError",
    "ParameterSet", "BoundParameterSet", "FreeParameterSet",
    "Surface", "PlaneSurface", "RectangleBounds", "InfiniteBounds",
    "Intersection", "IntersectionStatus",
    "Volume", "CuboidVolume",
    "BoundTrackParameters", "CurvilinearTrackParameters", "FreeTrackParameters",
    "ConstrainedStep", "ConstraintType",
    "StepperState", "StraightLineStepper",
    "Measurement",
    "Propagator", "PropagatorResult", "PropagationStatus", "StepLogger",
    "PropagatorOptions", "load_config", "load_options", "setup_logging",
]

# Parameter spaces & constants
from .definitions import (
    BoundIndices,
    FreeIndices,
    NavigationDirection,
    UNCONSTRAINED_STEP,
    ON_SURFACE_TOLERANCE,
    PION_MASS,
    GeometryContext,
    MagneticFieldContext,
)

# Errors
from .errors import PropagationError, StepperError, SurfaceError, ConfigError

# Parameter sets
from .parameter_set import ParameterSet, BoundParameterSet, FreeParameterSet

# Geometry
from .surfaces import (
    Surface,
    PlaneSurface,
    RectangleBounds,
    InfiniteBounds,
    Intersection,
    IntersectionStatus,
)
from .volumes import Volume, CuboidVolume

# Track parameters
from .track_parameters import (
    BoundTrackParameters,
    CurvilinearTrackParameters,
    FreeTrackParameters,
)

# Stepping
from .constrained_step import ConstrainedStep, ConstraintType
from .stepper_state import StepperState
from .stepper import StraightLineStepper

# Measurements
from .measurement import Measurement

# Propagation & configuration
from .config import PropagatorOptions, load_config, load_options, setup_logging
from .propagator import Propagator, PropagatorResult, PropagationStatus, StepLogger
