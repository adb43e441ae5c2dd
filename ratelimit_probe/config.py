"""
Run configuration.

Everything that is environment-specific (target URL, test account, referral
code, timing) lives here instead of in the workload code. Values come from
``PROBE_*`` environment variables and are overridden by CLI flags.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from .errors import ConfigError

DEFAULT_BASE_URL = "http://localhost:8080/api"
DEFAULT_OUTPUT = "rate-limit-analysis.json"

# k6-style pass criteria carried by every run unless overridden.
DEFAULT_THRESHOLDS: Dict[str, str] = {
    "http_req_duration": "p(95)<2000",
    "http_req_failed": "rate<0.3",
    "rate_limit_errors": "rate<0.5",
    "login_duration": "p(95)<800",
    "register_duration": "p(95)<1000",
}


@dataclass(frozen=True)
class Credentials:
    """Fixed test account used for login, register and change-password."""
    phone: str = "8123456789"
    password: str = "123456"
    referral_code: str = "VLAREFF"


@dataclass
class ProbeSettings:
    """All tunables for one probe run."""

    base_url: str = DEFAULT_BASE_URL
    credentials: Credentials = field(default_factory=Credentials)
    timeout_seconds: float = 30.0
    verify_ssl: bool = True
    # 1.0 = real time; 0.01 replays the 18 minute schedule in ~11 seconds
    time_scale: float = 1.0
    seed: Optional[int] = None
    output_file: str = DEFAULT_OUTPUT
    log_level: str = "INFO"
    faker_locale: str = "id_ID"
    thresholds: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigError(f"base_url must be an http(s) URL, got {self.base_url!r}")
        if self.timeout_seconds <= 0:
            raise ConfigError(f"timeout_seconds must be positive, got {self.timeout_seconds}")
        if self.time_scale <= 0:
            raise ConfigError(f"time_scale must be positive, got {self.time_scale}")
        if logging.getLevelName(self.log_level.upper()) not in (
            logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL,
        ):
            raise ConfigError(f"unknown log level {self.log_level!r}")
        self.log_level = self.log_level.upper()

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    @classmethod
    def from_environment(cls, environ: Optional[Dict[str, str]] = None) -> "ProbeSettings":
        """Create settings from ``PROBE_*`` environment variables."""
        env = os.environ if environ is None else environ
        try:
            seed = env.get("PROBE_SEED")
            return cls(
                base_url=env.get("PROBE_BASE_URL", DEFAULT_BASE_URL),
                credentials=Credentials(
                    phone=env.get("PROBE_PHONE", Credentials.phone),
                    password=env.get("PROBE_PASSWORD", Credentials.password),
                    referral_code=env.get("PROBE_REFERRAL_CODE", Credentials.referral_code),
                ),
                timeout_seconds=float(env.get("PROBE_TIMEOUT", "30")),
                verify_ssl=_parse_bool(env.get("PROBE_VERIFY_SSL", "true")),
                time_scale=float(env.get("PROBE_TIME_SCALE", "1.0")),
                seed=int(seed) if seed not in (None, "") else None,
                output_file=env.get("PROBE_OUTPUT", DEFAULT_OUTPUT),
                log_level=env.get("PROBE_LOG_LEVEL", "INFO"),
                faker_locale=env.get("PROBE_FAKER_LOCALE", "id_ID"),
            )
        except ValueError as e:
            if isinstance(e, ConfigError):
                raise
            raise ConfigError(f"invalid PROBE_* environment value: {e}") from e


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"expected a boolean, got {value!r}")
