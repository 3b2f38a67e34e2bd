import asyncio
import csv
import logging
import os
import time
from typing import Optional

from aggregator import ResultAggregator, format_report
from metrics import AggregateReport, TargetEndpoint, TrialOutcome
from scheduler import BenchmarkSettings, TrialScheduler

logger = logging.getLogger(__name__)

SUMMARY_FILENAME = "benchmark_summary.csv"


async def run_comparison(direct: TargetEndpoint, proxied: TargetEndpoint,
                         settings: BenchmarkSettings = BenchmarkSettings(),
                         results_dir: Optional[str] = None) -> AggregateReport:
    logger.info(f"Starting comparison: direct={direct}, proxied={proxied}, settings={settings}")
    start_time = time.perf_counter()

    outcomes: "asyncio.Queue[TrialOutcome]" = asyncio.Queue()
    scheduler = TrialScheduler(direct, proxied, settings)
    scheduler.launch(outcomes)

    # Outcomes queue up until collect() starts reading
    aggregator = ResultAggregator(scheduler.launched)
    try:
        await aggregator.collect(outcomes, settings.wait_window)
    finally:
        await scheduler.abandon_stragglers()

    report = aggregator.report()
    total_time_s = time.perf_counter() - start_time
    logger.info(f"Comparison finished in {total_time_s:.2f}s.")
    for line in format_report(report).splitlines():
        logger.info(line)

    if results_dir:
        save_results(report, settings, results_dir, direct, proxied)
    return report


def save_results(report: AggregateReport, settings: BenchmarkSettings, results_dir: str,
                 direct: TargetEndpoint, proxied: TargetEndpoint):
    if not os.path.exists(results_dir):
        os.makedirs(results_dir)

    csv_filename = os.path.join(results_dir, f"trial_outcomes_{time.strftime('%Y%m%d-%H%M%S')}.csv")
    with open(csv_filename, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(TrialOutcome._fields)
        for label_outcomes in report.outcomes.values():
            for o in label_outcomes:
                writer.writerow([o.trial_id, o.target_label, o.bytes_transferred,
                                 round(o.elapsed_s, 6), o.status.value, o.reason or "",
                                 round(o.attempted_at, 6)])
    logger.info(f"Completed trial outcomes saved to {csv_filename}")

    summary_filename = os.path.join(results_dir, SUMMARY_FILENAME)
    summary_fields = ["timestamp", "direct", "proxied", "trials_per_target", "payload_size",
                      "test_duration_s", "completed", "failed", "missing",
                      "direct_mean_bytes", "proxied_mean_bytes", "overhead_percent"]
    summaries = report.summaries
    summary_data = {
        "timestamp": time.strftime('%Y-%m-%d %H:%M:%S'),
        "direct": f"{direct.host}:{direct.port}", "proxied": f"{proxied.host}:{proxied.port}",
        "trials_per_target": settings.trials, "payload_size": settings.payload_size,
        "test_duration_s": settings.test_duration,
        "completed": report.completed, "failed": report.failed, "missing": report.missing,
        "direct_mean_bytes": _csv_mean(summaries[direct.label].mean_bytes),
        "proxied_mean_bytes": _csv_mean(summaries[proxied.label].mean_bytes),
        "overhead_percent": _csv_mean(report.overhead_percent),
    }
    file_exists = os.path.isfile(summary_filename)
    with open(summary_filename, 'a', newline='') as f:
        csv_writer = csv.DictWriter(f, fieldnames=summary_fields)
        if not file_exists: csv_writer.writeheader()
        csv_writer.writerow(summary_data)
    logger.info(f"Benchmark summary appended to {summary_filename}")


def _csv_mean(value: Optional[float]) -> str:
    # Empty cell rather than 0 so "no data" survives the round trip
    return "" if value is None else f"{value:.2f}"
