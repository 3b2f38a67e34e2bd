import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from errors import AggregationEmptyFailure
from metrics import DIRECT, PROXIED, AggregateReport, LabelSummary, TrialOutcome

logger = logging.getLogger(__name__)

NO_DATA = "no data"


def mean_bytes(values: Sequence[float], label: str = "") -> float:
    if not values:
        raise AggregationEmptyFailure(label)
    return sum(values) / len(values)


class ResultAggregator:
    """Sole consumer of trial outcomes.

    Outcomes arrive through a queue in completion order; per-label lists are
    therefore unordered. ``collect`` returns as soon as every launched trial
    has reported, or when the wait window closes, whichever comes first.
    """

    def __init__(self, expected: Dict[str, int]):
        self.expected = dict(expected)
        self._completed: Dict[str, List[TrialOutcome]] = {label: [] for label in self.expected}
        self._failed: Dict[str, int] = {label: 0 for label in self.expected}
        self.finalized = False

    @property
    def expected_total(self) -> int:
        return sum(self.expected.values())

    def recorded(self, label: str) -> int:
        return len(self._completed.get(label, [])) + self._failed.get(label, 0)

    @property
    def received(self) -> int:
        return sum(self.recorded(label) for label in self.expected)

    def record(self, outcome: TrialOutcome) -> bool:
        label = outcome.target_label
        if self.finalized:
            logger.warning(f"Outcome {outcome.trial_id} arrived after the report was finalized. Ignoring.")
            return False
        if label not in self.expected:
            logger.warning(f"Outcome {outcome.trial_id} for unknown label {label!r}. Ignoring.")
            return False
        if self.recorded(label) >= self.expected[label]:
            logger.warning(f"Outcome {outcome.trial_id} exceeds the {self.expected[label]} "
                           f"trials launched for {label}. Ignoring.")
            return False

        if outcome.completed:
            self._completed[label].append(outcome)
        else:
            self._failed[label] += 1
        return True

    async def collect(self, outcomes: "asyncio.Queue[TrialOutcome]", wait: float):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait
        while self.received < self.expected_total:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                outcome = await asyncio.wait_for(outcomes.get(), timeout=remaining)
            except asyncio.TimeoutError:
                break
            self.record(outcome)

        missing = self.expected_total - self.received
        if missing:
            logger.warning(f"Wait window of {wait:.1f}s elapsed with {missing} trials unreported.")
        else:
            logger.info(f"All {self.expected_total} trials reported.")
        self.finalized = True

    def _summarize(self, label: str) -> LabelSummary:
        completed = self._completed[label]
        byte_counts = [o.bytes_transferred for o in completed]
        try:
            mean = mean_bytes(byte_counts, label)
        except AggregationEmptyFailure as e:
            logger.warning(f"Insufficient data: {e}")
            mean = None

        rates = [o.bytes_transferred / o.elapsed_s for o in completed if o.elapsed_s > 0]
        try:
            mean_rate = mean_bytes(rates, label)
        except AggregationEmptyFailure:
            mean_rate = None

        return LabelSummary(label, self.expected[label], len(completed), self._failed[label],
                            byte_counts, mean, mean_rate)

    def report(self) -> AggregateReport:
        summaries = {label: self._summarize(label) for label in self.expected}
        completed = sum(s.completed for s in summaries.values())
        failed = sum(s.failed for s in summaries.values())

        overhead: Optional[float] = None
        direct, proxied = summaries.get(DIRECT), summaries.get(PROXIED)
        if direct and proxied and direct.has_data and proxied.has_data and direct.mean_bytes > 0:
            overhead = (1 - proxied.mean_bytes / direct.mean_bytes) * 100

        return AggregateReport(
            summaries=summaries,
            outcomes={label: list(v) for label, v in self._completed.items()},
            completed=completed,
            failed=failed,
            missing=self.expected_total - completed - failed,
            overhead_percent=overhead,
        )


def _fmt_mean(value: Optional[float], unit: str) -> str:
    return NO_DATA if value is None else f"{value:.2f} {unit}"


def format_report(report: AggregateReport) -> str:
    lines = []
    for label, summary in report.summaries.items():
        lines.append(f"{label} byte counts: {summary.byte_counts}")
    for label, summary in report.summaries.items():
        lines.append(f"{label:>8} mean: {_fmt_mean(summary.mean_bytes, 'bytes')} "
                     f"({_fmt_mean(summary.mean_rate_bps, 'B/s')}), "
                     f"{summary.completed}/{summary.launched} completed, {summary.failed} failed")
    lines.append(f"Trials: {report.completed} completed, {report.failed} failed, {report.missing} missing")
    if report.overhead_percent is None:
        lines.append(f"Proxy overhead: {NO_DATA}")
    else:
        lines.append(f"Proxy overhead: {report.overhead_percent:.2f}% fewer bytes than direct")
    return "\n".join(lines)
