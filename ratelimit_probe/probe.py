"""
Endpoint probe: the one code path every API call goes through.

A probe invocation walks a fixed state machine::

    GATE_CHECK -> (skipped)
               -> ISSUE_REQUEST -> CLASSIFY -> RATE_LIMITED -> BACKOFF_SLEEP -> DONE
                                            -> NORMAL -> OPTIONAL_FOLLOWUP -> DONE

Nothing is retried. A rate-limited response is terminal for that call; the
backoff only delays the caller's next action.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .classifier import RATE_LIMIT_STATUS, classify, retry_after
from .clock import Clock
from .config import ProbeSettings
from .endpoints import DEFAULT_ENDPOINTS, Category, EndpointSpec
from .generators import PayloadFactory
from .metrics import MetricSinks
from .session import Session
from .transport import HttpClient, HttpResponse

logger = logging.getLogger(__name__)


@dataclass
class ProbeOutcome:
    """Result of one issued call."""
    endpoint: str
    http_status: int
    latency_ms: float
    rate_limited: bool
    success: bool
    retry_after: Optional[float] = None
    backoff: float = 0.0
    follow_ups: List["ProbeOutcome"] = field(default_factory=list)

    def walk(self) -> List["ProbeOutcome"]:
        """This outcome followed by all nested follow-up outcomes."""
        outcomes = [self]
        for nested in self.follow_ups:
            outcomes.extend(nested.walk())
        return outcomes


class EndpointProbe:
    """
    Issues gated, classified and metered calls for one logical user.

    ``rng`` and ``payloads`` belong to the logical user; ``client``, ``sinks``
    and ``clock`` are shared across the run.
    """

    def __init__(
        self,
        client: HttpClient,
        settings: ProbeSettings,
        sinks: MetricSinks,
        clock: Clock,
        rng: random.Random,
        payloads: PayloadFactory,
        endpoints: Optional[Dict[str, EndpointSpec]] = None,
        tags: Optional[Dict[str, str]] = None,
    ):
        self.client = client
        self.settings = settings
        self.sinks = sinks
        self.clock = clock
        self.rng = rng
        self.payloads = payloads
        self.endpoints = endpoints if endpoints is not None else DEFAULT_ENDPOINTS
        self.tags = dict(tags or {})

    async def probe(self, name: str, session: Session, pause: float = 0.0) -> Optional[ProbeOutcome]:
        """
        Run the probe for endpoint ``name``.

        Returns None when the activation gate skipped the call. ``pause`` is
        slept after the gate passes and before the request is built.
        """
        spec = self.endpoints[name]

        if self.rng.random() >= spec.probability:
            return None
        if spec.requires_auth and not session.authenticated:
            logger.debug("Skipping %s: no session token", spec.name)
            return None

        if pause:
            await self.clock.sleep(pause)

        url, headers, payload = self._build_request(spec, session)
        response = await self.client.request(spec.method, url, headers=headers, payload=payload)
        outcome = self._record(spec, response)

        if outcome.rate_limited:
            outcome.backoff = await self._backoff(spec)
            return outcome

        for follow_up in spec.follow_ups:
            if not follow_up.condition(outcome):
                continue
            nested = await self.probe(follow_up.endpoint, session, pause=follow_up.pause)
            if nested is not None:
                outcome.follow_ups.append(nested)

        return outcome

    # =========================================================================
    # REQUEST
    # =========================================================================

    def _build_request(self, spec: EndpointSpec, session: Session):
        params = spec.path_params(self.payloads) if spec.path_params else None
        url = self.settings.url(spec.build_path(params))
        if spec.query:
            query_string = "&".join(f"{k}={v}" for k, v in spec.query(self.payloads).items())
            url = f"{url}?{query_string}"

        headers = {"Content-Type": "application/json"}
        if spec.requires_auth:
            headers["Authorization"] = f"Bearer {session.token}"

        payload = spec.payload(self.payloads) if spec.payload else None
        return url, headers, payload

    # =========================================================================
    # CLASSIFY / VALIDATE / RECORD
    # =========================================================================

    def _record(self, spec: EndpointSpec, response: HttpResponse) -> ProbeOutcome:
        tags = {**self.tags, "category": spec.category.value, "endpoint": spec.name}
        sinks = self.sinks
        status = response.status
        latency = response.latency_ms

        sinks.http_reqs.add(1, tags)
        sinks.http_req_duration.add(latency, tags)
        sinks.http_req_failed.add(not 200 <= status < 400, tags)

        rate_limited = classify(response)
        sinks.rate_limit_errors.add(rate_limited, tags)
        hint = None
        if rate_limited:
            sinks.rate_limit_hits.add(1, tags)
            hint = retry_after(response)
            if hint is not None:
                sinks.retry_after_seconds.add(hint, tags)
            log = logger.info if spec.category is Category.AUTH else logger.debug
            log("%s rate limited (HTTP %s) - expected behavior", spec.name, status)

        valid = rate_limited or status in spec.expected_status or status == RATE_LIMIT_STATUS
        if valid and not rate_limited and spec.response_validator is not None:
            valid = spec.response_validator(response)
        if not valid:
            logger.debug(
                "%s unexpected response: HTTP %s %s", spec.name, status, response.error or ""
            )

        sinks.errors.add(not valid, tags)
        sinks.checks.add(valid, tags)
        if spec.trend:
            sinks[spec.trend].add(latency, tags)
        if spec.max_latency_ms is not None:
            sinks.checks.add(latency < spec.max_latency_ms, tags)

        sinks.category_counter(spec.category).add(1, tags)

        return ProbeOutcome(
            endpoint=spec.name,
            http_status=status,
            latency_ms=latency,
            rate_limited=rate_limited,
            success=valid,
            retry_after=hint,
        )

    async def _backoff(self, spec: EndpointSpec) -> float:
        low, high = spec.backoff_range
        delay = low + self.rng.random() * (high - low)
        await self.clock.sleep(delay)
        return delay
