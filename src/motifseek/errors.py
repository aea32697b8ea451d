"""Exception types raised by motifseek."""


class MotifSeekError(Exception):
    """Base class for all motifseek errors."""


class ConfigurationError(MotifSeekError, ValueError):
    """Invalid discovery option, raised before any optimization starts."""


class DegeneratePriorError(ConfigurationError):
    """No allowed position is left with positive prior mass for a sequence."""


class InputError(MotifSeekError, ValueError):
    """Input sequences or their annotations cannot be used."""
