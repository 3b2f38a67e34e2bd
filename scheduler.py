import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, NamedTuple, Optional

from config import (
    BENCHMARK_NUM_TRIALS, BENCHMARK_PAYLOAD_SIZE, BENCHMARK_TEST_DURATION_SECONDS,
    BENCHMARK_PROXIED_DELAY_SECONDS, BENCHMARK_DIRECT_DELAY_FACTOR,
    BENCHMARK_AGGREGATION_WAIT_FACTOR, BENCHMARK_MAX_IN_FLIGHT
)
from metrics import DIRECT, PROXIED, TargetEndpoint, Trial, TrialOutcome, TrialStatus
from trial import run_trial

logger = logging.getLogger(__name__)

TrialRunner = Callable[[Trial], Awaitable[TrialOutcome]]


class BenchmarkSettings(NamedTuple):
    trials: int = BENCHMARK_NUM_TRIALS  # per target
    payload_size: int = BENCHMARK_PAYLOAD_SIZE
    test_duration: float = BENCHMARK_TEST_DURATION_SECONDS
    proxied_delay: float = BENCHMARK_PROXIED_DELAY_SECONDS
    direct_delay: Optional[float] = None      # None -> factor * test_duration
    aggregation_wait: Optional[float] = None  # None -> factor * test_duration
    max_in_flight: Optional[int] = BENCHMARK_MAX_IN_FLIGHT

    @property
    def direct_start_delay(self) -> float:
        if self.direct_delay is not None:
            return self.direct_delay
        return BENCHMARK_DIRECT_DELAY_FACTOR * self.test_duration

    @property
    def wait_window(self) -> float:
        if self.aggregation_wait is not None:
            return self.aggregation_wait
        return BENCHMARK_AGGREGATION_WAIT_FACTOR * self.test_duration


class TrialScheduler:
    """Fires ``settings.trials`` trials at each target, staggered per target.

    Proxied trials start almost immediately, direct trials after
    ``direct_start_delay`` so the two bursts of concurrent sockets do not
    contend for the local network stack at the same time. Every launched
    trial puts exactly one outcome on the queue handed to ``launch``.
    """

    def __init__(self, direct: TargetEndpoint, proxied: TargetEndpoint,
                 settings: BenchmarkSettings = BenchmarkSettings(),
                 trial_runner: TrialRunner = run_trial,
                 clock: Callable[[], float] = time.perf_counter):
        if direct.label != DIRECT or proxied.label != PROXIED:
            raise ValueError(f"Expected {DIRECT}/{PROXIED} targets, got {direct.label}/{proxied.label}")
        self.direct = direct
        self.proxied = proxied
        self.settings = settings
        self._run_trial = trial_runner
        self._clock = clock

        self._gate: Optional[asyncio.Semaphore] = None
        if settings.max_in_flight:
            self._gate = asyncio.Semaphore(settings.max_in_flight)

        self.tasks: List[asyncio.Task] = []
        self.launched: Dict[str, int] = {DIRECT: 0, PROXIED: 0}

    def build_trials(self) -> List[Trial]:
        s = self.settings
        batches = [
            (self.proxied, s.proxied_delay),
            (self.direct, s.direct_start_delay),
        ]
        return [
            Trial(f"{target.label}-{i}", target, delay, s.payload_size, s.test_duration)
            for target, delay in batches
            for i in range(s.trials)
        ]

    def launch(self, outcomes: "asyncio.Queue[TrialOutcome]") -> List[asyncio.Task]:
        """Start every trial task back-to-back without waiting on any of them."""
        if self.tasks:
            raise RuntimeError("Trials already launched")
        s = self.settings
        logger.info(f"Launching {s.trials} trials per target: {self.proxied} after {s.proxied_delay:.3f}s, "
                    f"{self.direct} after {s.direct_start_delay:.3f}s. Payload {s.payload_size} bytes, "
                    f"duration {s.test_duration}s, in-flight limit {s.max_in_flight or 'none'}")
        for trial in self.build_trials():
            task = asyncio.create_task(self._run_one(trial, outcomes), name=f"Trial-{trial.trial_id}")
            self.tasks.append(task)
            self.launched[trial.target.label] += 1
        return self.tasks

    async def _run_one(self, trial: Trial, outcomes: "asyncio.Queue[TrialOutcome]"):
        await asyncio.sleep(trial.start_delay)
        started_at = self._clock()
        try:
            if self._gate:
                async with self._gate:
                    outcome = await self._run_trial(trial)
            else:
                outcome = await self._run_trial(trial)
        except Exception as e:
            logger.error(f"Trial {trial.trial_id} raised unexpectedly: {e}", exc_info=True)
            outcome = TrialOutcome(trial.trial_id, trial.target.label, 0, 0.0,
                                   TrialStatus.FAILED, f"unexpected error: {e!r}", started_at)
        outcomes.put_nowait(outcome)

    @property
    def pending(self) -> int:
        return sum(1 for t in self.tasks if not t.done())

    async def wait_all(self):
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)

    async def abandon_stragglers(self):
        """Cancel trials still running after the report was finalized."""
        stragglers = [t for t in self.tasks if not t.done()]
        if not stragglers:
            return
        logger.warning(f"Cancelling {len(stragglers)} trials still running after the wait window.")
        for task in stragglers:
            task.cancel()
        await asyncio.gather(*stragglers, return_exceptions=True)
