"""
Iteration orchestrator: one simulated human session per call to ``run``.

Read endpoints are gated far more generously than write endpoints so the
per-category budgets (auth 10/min, read 120/min, write 60/min) are
approached, not flooded; nested calls sit behind a second, lower gate.
"""

import logging
import random
from typing import List, Optional, Tuple

from .clock import Clock
from .probe import EndpointProbe, ProbeOutcome
from .session import Session

logger = logging.getLogger(__name__)

Pause = Tuple[float, float]

UNAUTHENTICATED_STEPS: Tuple[str, ...] = ("register", "login")

# Pause between the session check and the first authenticated call.
AUTHENTICATED_PAUSE: Pause = (1.0, 3.0)

# (endpoint, pause after it). The last pause is the end-of-iteration rest.
AUTHENTICATED_STEPS: Tuple[Tuple[str, Pause], ...] = (
    ("products", (0.5, 1.5)),
    ("user_info", (0.5, 1.5)),
    ("team_invited", (0.8, 1.8)),
    ("spin_prize_list", (0.7, 1.7)),
    ("tasks", (0.6, 1.6)),
    ("transactions", (1.0, 3.0)),
    ("bank_update", (1.0, 3.0)),
    ("create_investment", (1.0, 3.0)),
    ("change_password", (2.0, 5.0)),
)


class IterationOrchestrator:
    """Runs the fixed endpoint sequence for one logical user."""

    def __init__(
        self,
        probe: EndpointProbe,
        clock: Clock,
        rng: random.Random,
        unauthenticated_steps: Tuple[str, ...] = UNAUTHENTICATED_STEPS,
        authenticated_steps: Tuple[Tuple[str, Pause], ...] = AUTHENTICATED_STEPS,
    ):
        self.probe = probe
        self.clock = clock
        self.rng = rng
        self.unauthenticated_steps = unauthenticated_steps
        self.authenticated_steps = authenticated_steps
        self._skip_logged = False

    async def run(self, session: Session) -> List[ProbeOutcome]:
        outcomes: List[ProbeOutcome] = []

        for name in self.unauthenticated_steps:
            self._collect(outcomes, await self.probe.probe(name, session))

        if not session.authenticated:
            # Once per user at info; a tokenless run repeats this every iteration.
            log = logger.debug if self._skip_logged else logger.info
            log("No token available, skipping authenticated requests")
            self._skip_logged = True
            return outcomes

        await self._pause(AUTHENTICATED_PAUSE)

        for name, pause in self.authenticated_steps:
            self._collect(outcomes, await self.probe.probe(name, session))
            await self._pause(pause)

        return outcomes

    async def _pause(self, bounds: Pause) -> None:
        low, high = bounds
        await self.clock.sleep(low + self.rng.random() * (high - low))

    @staticmethod
    def _collect(outcomes: List[ProbeOutcome], outcome: Optional[ProbeOutcome]) -> None:
        if outcome is not None:
            outcomes.extend(outcome.walk())
