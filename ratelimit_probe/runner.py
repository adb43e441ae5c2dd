"""
Probe run: bootstrap a session, drive the stages, hand the metrics to the reporter.
"""

import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from rich.console import Console
from rich.live import Live

from .clock import Clock
from .config import ProbeSettings
from .endpoints import EndpointSpec
from .generators import PayloadFactory
from .metrics import MetricSinks
from .orchestrator import IterationOrchestrator
from .probe import EndpointProbe
from .report import SummaryReporter, check_thresholds, live_table, parse_thresholds
from .session import Session, bootstrap_session
from .stages import DEFAULT_STAGES, StageDefinition, StageScheduler
from .transport import HttpClient

logger = logging.getLogger(__name__)


class LoadTestRunner:
    """
    Owns everything shared by the logical users of one run: the HTTP client,
    the metric sinks, the clock and the session token.
    """

    def __init__(
        self,
        settings: ProbeSettings,
        stages: Iterable[StageDefinition] = DEFAULT_STAGES,
        endpoints: Optional[Dict[str, EndpointSpec]] = None,
        client: Optional[HttpClient] = None,
        clock: Optional[Clock] = None,
        console: Optional[Console] = None,
    ):
        self.settings = settings
        self.stages = tuple(stages)
        self.endpoints = endpoints
        self.client = client
        self.clock = clock or Clock(settings.time_scale)
        self.console = console or Console()
        self.sinks = MetricSinks()
        self.thresholds = check_thresholds(parse_thresholds(settings.thresholds), self.sinks)
        self.session = Session()
        self.start_time = 0.0
        self.end_time = 0.0

    @property
    def elapsed(self) -> float:
        end = self.end_time or time.time()
        return end - self.start_time if self.start_time else 0.0

    # =========================================================================
    # LOGICAL USERS
    # =========================================================================

    def _vu_rng(self, vu_id: int) -> random.Random:
        if self.settings.seed is None:
            return random.Random()
        return random.Random(self.settings.seed * 1_000_003 + vu_id)

    def build_vu(self, client: HttpClient, vu_id: int, stage: StageDefinition) -> IterationOrchestrator:
        rng = self._vu_rng(vu_id)
        payloads = PayloadFactory(rng, self.settings.credentials, self.settings.faker_locale)
        probe = EndpointProbe(
            client,
            self.settings,
            self.sinks,
            self.clock,
            rng,
            payloads,
            endpoints=self.endpoints,
            tags={"stage": stage.tag},
        )
        return IterationOrchestrator(probe, self.clock, rng)

    # =========================================================================
    # RUN
    # =========================================================================

    async def run(self, show_live: bool = True) -> SummaryReporter:
        if self.client is not None:
            await self._run_with(self.client, show_live)
        else:
            async with HttpClient(
                timeout=self.settings.timeout_seconds,
                verify_ssl=self.settings.verify_ssl,
            ) as client:
                await self._run_with(client, show_live)
        return self.reporter()

    async def _run_with(self, client: HttpClient, show_live: bool) -> None:
        self.session = await bootstrap_session(client, self.settings, self.clock)

        scheduler = StageScheduler(
            self.stages,
            lambda vu_id, stage: self.build_vu(client, vu_id, stage),
            self.clock,
            self.sinks,
        )
        logger.info(
            "Running %s for %.0f units (time scale %g)",
            ", ".join(stage.name for stage in self.stages),
            scheduler.total_duration,
            self.settings.time_scale,
        )

        self.start_time = time.time()
        try:
            if show_live:
                await self._run_live(scheduler)
            else:
                await scheduler.run(self.session)
        finally:
            self.end_time = time.time()

    async def _run_live(self, scheduler: StageScheduler) -> None:
        with Live(
            live_table(self.sinks, self.elapsed),
            console=self.console,
            refresh_per_second=4,
        ) as live:
            async def updater():
                while True:
                    live.update(live_table(self.sinks, self.elapsed))
                    await asyncio.sleep(0.25)

            display_task = asyncio.ensure_future(updater())
            try:
                await scheduler.run(self.session)
            finally:
                display_task.cancel()
                try:
                    await display_task
                except asyncio.CancelledError:
                    pass
                live.update(live_table(self.sinks, self.elapsed))

    def reporter(self) -> SummaryReporter:
        metadata = {
            "base_url": self.settings.base_url,
            "started_at": (
                datetime.fromtimestamp(self.start_time, timezone.utc).isoformat()
                if self.start_time else None
            ),
            "duration_seconds": round(self.elapsed, 3),
            "time_scale": self.settings.time_scale,
            "seed": self.settings.seed,
            "stages": [stage.name for stage in self.stages],
            "authenticated": self.session.authenticated,
        }
        return SummaryReporter(self.sinks.snapshot(), metadata, self.thresholds)
