"""
Stage scheduler: how many logical users run, and when.

Three executor kinds cover the traffic shapes of a rate-limit probe:

- constant-vus: a fixed number of users looping for a duration
- ramping-vus: user count follows linear segments between targets
- constant-arrival-rate: iterations start at a fixed rate from a bounded
  user pool; starts that find no free user are dropped and counted

Stages run concurrently, each after its own start offset. When a stage's
duration is up, in-flight iterations get ``graceful_stop`` units to finish
and are cancelled after that.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .clock import Clock
from .errors import ConfigError
from .metrics import MetricSinks
from .session import Session

logger = logging.getLogger(__name__)


class ExecutorKind(Enum):
    CONSTANT_VUS = "constant-vus"
    RAMPING_VUS = "ramping-vus"
    CONSTANT_ARRIVAL_RATE = "constant-arrival-rate"


@dataclass(frozen=True)
class RampSegment:
    duration: float
    target: int


@dataclass(frozen=True)
class StageDefinition:
    """One time-boxed traffic shape. Times are in time-units."""
    name: str
    executor: ExecutorKind
    tag: str
    start_offset: float = 0.0
    duration: float = 0.0
    vus: int = 1
    start_vus: int = 0
    segments: Tuple[RampSegment, ...] = ()
    rate: int = 0
    time_unit: float = 1.0
    pre_allocated_vus: int = 1
    max_vus: int = 1
    graceful_stop: float = 30.0

    def __post_init__(self):
        if self.executor is ExecutorKind.RAMPING_VUS:
            if not self.segments:
                raise ConfigError(f"stage {self.name!r}: ramping-vus needs segments")
        elif self.duration <= 0:
            raise ConfigError(f"stage {self.name!r}: duration must be positive")
        if self.executor is ExecutorKind.CONSTANT_ARRIVAL_RATE:
            if self.rate <= 0 or self.time_unit <= 0:
                raise ConfigError(f"stage {self.name!r}: rate and time_unit must be positive")
            if self.max_vus < self.pre_allocated_vus:
                raise ConfigError(f"stage {self.name!r}: max_vus below pre_allocated_vus")

    @property
    def total_duration(self) -> float:
        if self.executor is ExecutorKind.RAMPING_VUS:
            return sum(segment.duration for segment in self.segments)
        return self.duration

    @property
    def end_offset(self) -> float:
        return self.start_offset + self.total_duration

    def target_vus(self, elapsed: float) -> int:
        """Number of users that should be active ``elapsed`` units into the stage."""
        if self.executor is not ExecutorKind.RAMPING_VUS:
            return self.vus
        previous = self.start_vus
        for segment in self.segments:
            if elapsed < segment.duration:
                return int(previous + (segment.target - previous) * elapsed / segment.duration)
            elapsed -= segment.duration
            previous = segment.target
        return previous


DEFAULT_STAGES: Tuple[StageDefinition, ...] = (
    # Wiring check before any ramp
    StageDefinition(
        name="smoke",
        executor=ExecutorKind.CONSTANT_VUS,
        tag="smoke",
        vus=1,
        duration=60,
    ),
    # Stays near the read/write budgets, briefly exceeds them at 12 users
    StageDefinition(
        name="load",
        executor=ExecutorKind.RAMPING_VUS,
        tag="load",
        start_offset=90,
        start_vus=2,
        segments=(
            RampSegment(120, 5),
            RampSegment(300, 8),
            RampSegment(180, 12),
            RampSegment(120, 5),
            RampSegment(120, 0),
        ),
    ),
    # 20 iterations/s = 1200/min, far over every category budget
    StageDefinition(
        name="rate_limit_stress",
        executor=ExecutorKind.CONSTANT_ARRIVAL_RATE,
        tag="rate_limit_stress",
        start_offset=960,
        duration=120,
        rate=20,
        time_unit=1,
        pre_allocated_vus=5,
        max_vus=10,
    ),
)

STAGE_NAMES = tuple(stage.name for stage in DEFAULT_STAGES)


def select_stages(
    names: Optional[Iterable[str]],
    stages: Tuple[StageDefinition, ...] = DEFAULT_STAGES,
) -> Tuple[StageDefinition, ...]:
    """Pick stages by name, keeping their order. ``None`` selects all."""
    if not names:
        return stages
    wanted = list(names)
    known = {stage.name for stage in stages}
    unknown = [name for name in wanted if name not in known]
    if unknown:
        raise ConfigError(f"unknown stage(s) {unknown}; choose from {sorted(known)}")
    return tuple(stage for stage in stages if stage.name in wanted)


# Builds the iteration runner (anything with ``async run(session)``) for a new
# logical user: (vu_id, stage) -> runner
VirtualUserFactory = Callable[[int, StageDefinition], Any]


class StageScheduler:
    """Runs the orchestrator across logical users according to stage definitions."""

    def __init__(
        self,
        stages: Iterable[StageDefinition],
        vu_factory: VirtualUserFactory,
        clock: Clock,
        sinks: MetricSinks,
        tick: float = 1.0,
    ):
        self.stages = tuple(stages)
        if not self.stages:
            raise ConfigError("at least one stage is required")
        self.vu_factory = vu_factory
        self.clock = clock
        self.sinks = sinks
        self.tick = tick
        self._vu_ids = itertools.count(1)
        # Earliest selected stage starts immediately.
        self._base_offset = min(stage.start_offset for stage in self.stages)

    @property
    def total_duration(self) -> float:
        """Scheduled run length in units, excluding graceful stop windows."""
        return max(stage.end_offset for stage in self.stages) - self._base_offset

    async def run(self, session: Session) -> None:
        await asyncio.gather(*(self._run_stage(stage, session) for stage in self.stages))

    async def _run_stage(self, stage: StageDefinition, session: Session) -> None:
        await self.clock.sleep(stage.start_offset - self._base_offset)
        logger.info("Stage %s started (%s)", stage.name, stage.executor.value)

        runners = {
            ExecutorKind.CONSTANT_VUS: self._constant_vus,
            ExecutorKind.RAMPING_VUS: self._ramping_vus,
            ExecutorKind.CONSTANT_ARRIVAL_RATE: self._constant_arrival_rate,
        }
        await runners[stage.executor](stage, session)
        logger.info("Stage %s finished", stage.name)

    # =========================================================================
    # ITERATIONS
    # =========================================================================

    def _new_vu(self, stage: StageDefinition):
        return self.vu_factory(next(self._vu_ids), stage)

    async def _iterate(self, vu, stage: StageDefinition, session: Session) -> None:
        tags = {"stage": stage.tag}
        start = self.clock.now()
        try:
            await vu.run(session)
        except Exception:
            logger.exception("Iteration failed in stage %s", stage.name)
        self.sinks.iterations.add(1, tags)
        self.sinks.iteration_duration.add((self.clock.now() - start) * 1000, tags)
        # An iteration whose gates all closed never awaited; let other users run.
        await asyncio.sleep(0)

    async def _finish(self, stage: StageDefinition, tasks: List[asyncio.Future], deadline: float) -> None:
        """Wait out the graceful stop window, then cancel what is left."""
        tasks = [task for task in tasks if not task.done()]
        if not tasks:
            return
        remaining = max(0.0, deadline + stage.graceful_stop - self.clock.now())
        _, pending = await asyncio.wait(tasks, timeout=self.clock.to_seconds(remaining))
        if pending:
            logger.warning(
                "Stage %s: interrupting %d iteration(s) after graceful stop", stage.name, len(pending)
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    # =========================================================================
    # EXECUTORS
    # =========================================================================

    async def _constant_vus(self, stage: StageDefinition, session: Session) -> None:
        deadline = self.clock.now() + stage.duration

        async def vu_loop(vu):
            while self.clock.now() < deadline:
                await self._iterate(vu, stage, session)

        tasks = [asyncio.ensure_future(vu_loop(self._new_vu(stage))) for _ in range(stage.vus)]
        await self._finish(stage, tasks, deadline)

    async def _ramping_vus(self, stage: StageDefinition, session: Session) -> None:
        start = self.clock.now()
        deadline = start + stage.total_duration
        state = {"target": stage.start_vus}
        vus: Dict[int, Any] = {}
        tasks: Dict[int, asyncio.Future] = {}

        async def vu_loop(slot: int):
            # Users above the current target finish their iteration and park.
            while self.clock.now() < deadline and slot < state["target"]:
                await self._iterate(vus[slot], stage, session)

        while True:
            now = self.clock.now()
            if now >= deadline:
                break
            state["target"] = stage.target_vus(now - start)
            for slot in range(state["target"]):
                task = tasks.get(slot)
                if task is None or task.done():
                    if slot not in vus:
                        vus[slot] = self._new_vu(stage)
                    tasks[slot] = asyncio.ensure_future(vu_loop(slot))
            await self.clock.sleep(min(self.tick, deadline - now))

        await self._finish(stage, list(tasks.values()), deadline)

    async def _constant_arrival_rate(self, stage: StageDefinition, session: Session) -> None:
        interval = stage.time_unit / stage.rate
        start = self.clock.now()
        deadline = start + stage.duration
        tags = {"stage": stage.tag}

        idle = [self._new_vu(stage) for _ in range(stage.pre_allocated_vus)]
        allocated = len(idle)
        in_flight = set()

        async def run_on(vu):
            try:
                await self._iterate(vu, stage, session)
            finally:
                idle.append(vu)

        for n in itertools.count():
            scheduled = start + n * interval
            if scheduled >= deadline:
                break
            delay = scheduled - self.clock.now()
            if delay > 0:
                await self.clock.sleep(delay)

            if idle:
                vu = idle.pop()
            elif allocated < stage.max_vus:
                vu = self._new_vu(stage)
                allocated += 1
            else:
                self.sinks.dropped_iterations.add(1, tags)
                continue

            task = asyncio.ensure_future(run_on(vu))
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)

        if allocated > stage.pre_allocated_vus:
            logger.info("Stage %s grew its pool to %d users", stage.name, allocated)
        await self._finish(stage, list(in_flight), deadline)
