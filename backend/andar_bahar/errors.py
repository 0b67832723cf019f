class AndarBaharError(Exception):
    """Base class for errors raised by the simulator core."""


class ConfigurationError(AndarBaharError, ValueError):
    """Invalid tick interval, trial count, or pool bound."""


class InvariantViolation(AndarBaharError, RuntimeError):
    """A deck or result broke a guarantee the engine relies on."""
