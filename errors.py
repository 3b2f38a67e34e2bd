# Error types for the echo benchmark.
# Trial errors never escape a trial; they become FAILED outcomes.


class BenchmarkError(Exception):
    """Base exception for all benchmark errors."""


class ConnectFailure(BenchmarkError):
    """Target unreachable or connection refused."""

    def __init__(self, label: str, host: str, port: int, cause: Exception) -> None:
        self.label = label
        self.cause = cause
        super().__init__(f"connect to {label} {host}:{port} failed: {cause!r}")


class TransportFailure(BenchmarkError):
    """Send/receive error on an established connection."""

    def __init__(self, label: str, detail: str) -> None:
        self.label = label
        super().__init__(f"transport error on {label}: {detail}")


class AggregationEmptyFailure(BenchmarkError):
    """No completed outcomes to average for a label."""

    def __init__(self, label: str = "") -> None:
        self.label = label
        super().__init__(f"no completed outcomes for {label or 'label'}")
