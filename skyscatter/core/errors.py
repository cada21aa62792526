"""
Skyscatter error types.

Configuration errors are raised before any device work is submitted,
resource errors flag caller bugs (mismatched dimensions), persistence errors
abort the precompute run that hit them. Nothing is retried.
"""


class SkyScatterError(Exception):
    """Base class for all skyscatter errors."""


class ConfigurationError(SkyScatterError, RuntimeError):
    """A required kernel, binding, light or parameter is missing or invalid."""


class ResourceError(SkyScatterError, ValueError):
    """A buffer or texture does not have the dimensions the caller assumed."""


class PersistenceError(SkyScatterError, OSError):
    """A lookup table could not be written to disk."""
