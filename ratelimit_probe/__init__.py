"""
ratelimit_probe
===============
Synthetic-load driver that probes a REST API's per-category rate limits
(auth, read, write) and reports how often and where they bite.
"""

__version__ = "1.0.0"

from .classifier import classify, is_rate_limited
from .config import Credentials, ProbeSettings
from .errors import ConfigError, ProbeError
from .metrics import MetricSinks
from .probe import EndpointProbe, ProbeOutcome
from .report import SummaryReporter
from .session import Session, bootstrap_session

__all__ = [
    "ConfigError",
    "Credentials",
    "EndpointProbe",
    "MetricSinks",
    "ProbeError",
    "ProbeOutcome",
    "ProbeSettings",
    "Session",
    "SummaryReporter",
    "__version__",
    "bootstrap_session",
    "classify",
    "is_rate_limited",
]
