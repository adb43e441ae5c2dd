"""
Session bootstrap: obtain one access token before any traffic starts.

The token is shared read-only by every logical user. Failing to get one is
not fatal: the run degrades to unauthenticated traffic (register/login).
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .classifier import classify
from .clock import Clock
from .config import ProbeSettings
from .transport import HttpClient

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RATE_LIMIT_WAIT = 15.0
RETRY_WAIT = 10.0


@dataclass(frozen=True)
class Session:
    token: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return bool(self.token)


async def bootstrap_session(
    client: HttpClient,
    settings: ProbeSettings,
    clock: Clock,
    max_attempts: int = MAX_ATTEMPTS,
) -> Session:
    """
    Log in with the configured test account, retrying through rate limits.

    Each attempt either returns the token, or waits (15 units after a
    rate-limit rejection, 10 units after any other failure when attempts
    remain) and tries again.
    """
    payload = {
        "number": settings.credentials.phone,
        "password": settings.credentials.password,
    }
    attempts = 0

    while attempts < max_attempts:
        response = await client.request(
            "POST",
            settings.url("/login"),
            headers={"Content-Type": "application/json"},
            payload=payload,
        )

        if classify(response):
            logger.warning(
                "Rate limited on setup attempt %d/%d, waiting %.0fs",
                attempts + 1, max_attempts, RATE_LIMIT_WAIT,
            )
            await clock.sleep(RATE_LIMIT_WAIT)
            attempts += 1
            continue

        token = response.json_path("data.access_token")
        if response.status == 200 and token:
            logger.info("Token obtained for authenticated requests")
            return Session(token=str(token))

        logger.warning(
            "Setup login attempt %d/%d failed: HTTP %s %s",
            attempts + 1, max_attempts, response.status, response.error or "",
        )
        attempts += 1
        if attempts < max_attempts:
            await clock.sleep(RETRY_WAIT)

    logger.error(
        "Failed to get token after %d attempts, authenticated requests will be skipped",
        max_attempts,
    )
    return Session(token=None)
