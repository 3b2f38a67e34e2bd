from enum import Enum
from typing import NamedTuple, Optional, Dict, List

DIRECT = "direct"
PROXIED = "proxied"
LABELS = (DIRECT, PROXIED)


class TrialStatus(Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class TargetEndpoint(NamedTuple):
    label: str  # DIRECT or PROXIED
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.label}({self.host}:{self.port})"


class Trial(NamedTuple):
    trial_id: str
    target: TargetEndpoint
    start_delay: float   # seconds after launch before connecting
    payload_size: int
    test_duration: float


class TrialOutcome(NamedTuple):
    trial_id: str
    target_label: str
    bytes_transferred: int  # always 0 for FAILED, the partial count is discarded
    elapsed_s: float        # from first send to completion or failure
    status: TrialStatus
    reason: Optional[str]
    attempted_at: float     # local clock when the connection attempt began

    @property
    def completed(self) -> bool:
        return self.status is TrialStatus.COMPLETED


class LabelSummary(NamedTuple):
    label: str
    launched: int
    completed: int
    failed: int
    byte_counts: List[int]          # arrival order, treat as a multiset
    mean_bytes: Optional[float]     # None means no data
    mean_rate_bps: Optional[float]  # mean of per-trial bytes/sec, None means no data

    @property
    def has_data(self) -> bool:
        return self.mean_bytes is not None


class AggregateReport(NamedTuple):
    summaries: Dict[str, LabelSummary]
    outcomes: Dict[str, List[TrialOutcome]]  # completed outcomes per label
    completed: int
    failed: int
    missing: int  # launched but never reported before the wait window closed
    overhead_percent: Optional[float]
