"""Exception types raised by the propagation core."""


class PropagationError(RuntimeError):
    """A propagation could not be continued."""


class StepperError(PropagationError):
    """A single step could not be performed (e.g. zero or non-finite step size)."""


class SurfaceError(ValueError):
    """A global position or direction cannot be expressed on a surface."""


class ConfigError(ValueError):
    """Invalid or unreadable configuration."""
