from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class SyncState(str, Enum):
    PENDING = "PENDING"
    SYNCING = "SYNCING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"


@dataclass
class NetworkStatus:
    reachable:       bool
    quality_score:   int
    last_online_at:  Optional[int]
    last_offline_at: Optional[int]
    uptime_seconds:  float = 0.0

@dataclass
class ProbeResult:
    reachable:  bool
    latency_ms: float

@dataclass
class ConnectivityEvent:
    kind:      str            # "online" | "offline"
    status:    NetworkStatus
    timestamp: int

@dataclass
class CachedFoodRecord:
    key:       str
    payload:   dict[str, Any]
    cached_at: int

@dataclass
class ScanResult:
    """A completed scan as handed over by the scan flow."""
    food_key:         str
    analysis_payload: dict[str, Any]
    recorded_at:      int
    client_id:        str

@dataclass
class QueuedScanResult:
    id:               int
    client_id:        str
    food_key:         str
    analysis_payload: dict[str, Any]
    recorded_at:      int
    sync_state:       SyncState
    attempts:         int
    last_error:       Optional[str] = None
    next_attempt_at:  int = 0
    synced_at:        Optional[int] = None

@dataclass
class DrainResult:
    attempted:     int = 0
    synced:        int = 0
    failed:        int = 0
    newly_stuck:   int = 0
    cancelled:     bool = False
    synced_ids:    list[int] = field(default_factory=list)

@dataclass
class ScanOutcome:
    synced: bool
    queued: Optional[QueuedScanResult]

@dataclass
class CacheStats:
    food_item_count: int
    pending:         int
    syncing:         int
    synced:          int
    failed:          int
    stuck:           int

@dataclass
class HealthStatus:
    store_connected: bool
    reachable:       bool
    quality_score:   int
    queue_depth:     int
    stuck_entries:   int

@dataclass
class ScanSubmission:
    client_id:        str
    food_key:         str
    analysis_payload: dict[str, Any]
    recorded_at:      int

@dataclass
class IngestResult:
    client_id: str
    duplicate: bool
