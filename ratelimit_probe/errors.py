"""Exception types raised by ratelimit_probe."""


class ProbeError(Exception):
    """Base class for all ratelimit_probe errors."""


class ConfigError(ProbeError, ValueError):
    """Invalid configuration value, stage name or threshold expression."""
