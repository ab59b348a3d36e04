"""
Error hierarchy for the adaptive reservoir.

Numeric trouble inside a tick (NaN, overflow, runaway error) is never raised;
the engine absorbs it and reports a STABILIZING tick. Exceptions are reserved
for configuration mistakes and API misuse.
"""


class AdaptiveReservoirError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(AdaptiveReservoirError):
    """Raised when a configuration value is out of its valid range."""


class SimulationError(AdaptiveReservoirError):
    """Raised when the simulation API is used incorrectly."""
