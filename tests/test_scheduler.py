import asyncio

import pytest

from aggregator import ResultAggregator
from helpers import endpoint
from metrics import DIRECT, PROXIED, TargetEndpoint, TrialOutcome, TrialStatus
from scheduler import BenchmarkSettings, TrialScheduler

DIRECT_TARGET = TargetEndpoint(DIRECT, "127.0.0.1", 6661)
PROXIED_TARGET = TargetEndpoint(PROXIED, "127.0.0.1", 6543)


def ok_outcome(trial, attempted_at=0.0):
    return TrialOutcome(trial.trial_id, trial.target.label, trial.payload_size, trial.test_duration,
                        TrialStatus.COMPLETED, None, attempted_at)


class TestBenchmarkSettings:
    def test_defaults(self):
        s = BenchmarkSettings()
        assert s.trials == 200
        assert s.payload_size == 32768
        assert s.test_duration == 5.0
        assert s.direct_start_delay == pytest.approx(7.5)
        assert s.wait_window == pytest.approx(15.0)

    def test_explicit_delays_win(self):
        s = BenchmarkSettings(test_duration=2.0, direct_delay=0.5, aggregation_wait=9.0)
        assert s.direct_start_delay == 0.5
        assert s.wait_window == 9.0


class TestBuildTrials:
    def test_n_trials_per_target_with_stagger(self):
        settings = BenchmarkSettings(trials=3, test_duration=2.0, proxied_delay=0.001)
        trials = TrialScheduler(DIRECT_TARGET, PROXIED_TARGET, settings).build_trials()

        proxied = [t for t in trials if t.target.label == PROXIED]
        direct = [t for t in trials if t.target.label == DIRECT]
        assert len(proxied) == len(direct) == 3
        assert all(t.start_delay == 0.001 for t in proxied)
        assert all(t.start_delay == pytest.approx(3.0) for t in direct)
        assert len({t.trial_id for t in trials}) == 6

    def test_targets_must_carry_matching_labels(self):
        with pytest.raises(ValueError):
            TrialScheduler(PROXIED_TARGET, DIRECT_TARGET)


class TestLaunch:
    @pytest.mark.asyncio
    async def test_proxied_trials_start_before_direct(self):
        loop = asyncio.get_running_loop()
        attempts = {DIRECT: [], PROXIED: []}

        async def runner(trial):
            attempts[trial.target.label].append(loop.time())
            return ok_outcome(trial, loop.time())

        settings = BenchmarkSettings(trials=5, test_duration=0.2)
        scheduler = TrialScheduler(DIRECT_TARGET, PROXIED_TARGET, settings, trial_runner=runner)
        queue = asyncio.Queue()
        scheduler.launch(queue)
        await scheduler.wait_all()

        stagger = min(attempts[DIRECT]) - min(attempts[PROXIED])
        assert stagger == pytest.approx(0.3, abs=0.15)
        assert queue.qsize() == 10

    @pytest.mark.asyncio
    async def test_every_trial_reports_once_against_live_and_dead_targets(self, echo_server, closed_port):
        settings = BenchmarkSettings(trials=4, payload_size=512, test_duration=0.2, direct_delay=0.05)
        direct = TargetEndpoint(DIRECT, "127.0.0.1", closed_port)
        scheduler = TrialScheduler(direct, endpoint(echo_server, PROXIED), settings)
        queue = asyncio.Queue()
        scheduler.launch(queue)
        assert scheduler.launched == {DIRECT: 4, PROXIED: 4}

        aggregator = ResultAggregator(scheduler.launched)
        await aggregator.collect(queue, wait=10)
        report = aggregator.report()

        assert aggregator.recorded(DIRECT) == 4
        assert aggregator.recorded(PROXIED) == 4
        assert report.summaries[DIRECT].failed == 4
        assert report.summaries[DIRECT].mean_bytes is None
        assert len(report.outcomes[PROXIED]) <= 4
        assert report.missing == 0

    @pytest.mark.asyncio
    async def test_runner_exception_becomes_failed_outcome(self):
        async def runner(trial):
            raise RuntimeError("boom")

        settings = BenchmarkSettings(trials=2, test_duration=0.01, proxied_delay=0.0)
        scheduler = TrialScheduler(DIRECT_TARGET, PROXIED_TARGET, settings, trial_runner=runner)
        queue = asyncio.Queue()
        scheduler.launch(queue)
        await scheduler.wait_all()

        outcomes = [queue.get_nowait() for _ in range(queue.qsize())]
        assert len(outcomes) == 4
        assert all(o.status is TrialStatus.FAILED for o in outcomes)
        assert all("boom" in o.reason for o in outcomes)

    @pytest.mark.asyncio
    async def test_runner_exception_is_stamped_with_scheduler_clock(self):
        async def runner(trial):
            raise RuntimeError("boom")

        settings = BenchmarkSettings(trials=1, test_duration=0.01, proxied_delay=0.0, direct_delay=0.0)
        scheduler = TrialScheduler(DIRECT_TARGET, PROXIED_TARGET, settings,
                                   trial_runner=runner, clock=lambda: 42.0)
        queue = asyncio.Queue()
        scheduler.launch(queue)
        await scheduler.wait_all()

        outcomes = [queue.get_nowait() for _ in range(queue.qsize())]
        assert [o.attempted_at for o in outcomes] == [42.0, 42.0]

    @pytest.mark.asyncio
    async def test_in_flight_limit(self):
        running = 0
        peak = 0

        async def runner(trial):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1
            return ok_outcome(trial)

        settings = BenchmarkSettings(trials=6, test_duration=0.01, proxied_delay=0.0,
                                     direct_delay=0.0, max_in_flight=2)
        scheduler = TrialScheduler(DIRECT_TARGET, PROXIED_TARGET, settings, trial_runner=runner)
        queue = asyncio.Queue()
        scheduler.launch(queue)
        await scheduler.wait_all()

        assert peak == 2
        assert queue.qsize() == 12

    @pytest.mark.asyncio
    async def test_launch_twice_is_rejected(self):
        async def runner(trial):
            return ok_outcome(trial)

        settings = BenchmarkSettings(trials=1, test_duration=0.01)
        scheduler = TrialScheduler(DIRECT_TARGET, PROXIED_TARGET, settings, trial_runner=runner)
        scheduler.launch(asyncio.Queue())
        with pytest.raises(RuntimeError):
            scheduler.launch(asyncio.Queue())
        await scheduler.wait_all()

    @pytest.mark.asyncio
    async def test_abandon_stragglers(self):
        async def runner(trial):
            await asyncio.sleep(3600)

        settings = BenchmarkSettings(trials=2, test_duration=0.01, proxied_delay=0.0)
        scheduler = TrialScheduler(DIRECT_TARGET, PROXIED_TARGET, settings, trial_runner=runner)
        scheduler.launch(asyncio.Queue())
        await asyncio.sleep(0.05)
        assert scheduler.pending == 4

        await scheduler.abandon_stragglers()
        assert scheduler.pending == 0
