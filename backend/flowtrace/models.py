"""
models.py – Pydantic request/response models.
Defines the exact JSON contract exchanged with the host.

Python attributes are snake_case; every model reads and writes the host's
camelCase names (``fromAddress``, ``startAddress``, ``minDepth``…).
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .config import (
    DEEP_TRACE_DEFAULT_DEPTH,
    PATH_DEFAULT_DEPTH,
    PATH_DEFAULT_PATHS,
    TAINT_DEFAULT_HOPS,
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class Direction(str, Enum):
    INFLOW = "inflow"
    OUTFLOW = "outflow"
    BOTH = "both"


class Operation(str, Enum):
    DETECT_PATTERNS = "DETECT_PATTERNS"
    CLUSTER_ADDRESSES = "CLUSTER_ADDRESSES"
    DEEP_TRACE = "DEEP_TRACE"
    FIND_PATHS = "FIND_PATHS"
    TAINT_ANALYSIS = "TAINT_ANALYSIS"


class PatternKind(str, Enum):
    LAYERING = "layering"
    CIRCULAR_FLOW = "circular_flow"
    STRUCTURING = "structuring"
    FAN_OUT = "fan_out"
    FAN_IN = "fan_in"
    MIXER_USAGE = "mixer_usage"
    ROUND_AMOUNTS = "round_amounts"
    HIGH_VELOCITY = "high_velocity"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    NOT_READY = "not_ready"


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
class Transaction(BaseModel):
    """
    A single directed value transfer. Immutable once ingested.

    Accepts both the host's ``fromAddress``/``toAddress``/``timestamp`` keys
    and the scanner's short ``from``/``to``/``date`` keys.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    timestamp: datetime = Field(
        validation_alias=AliasChoices("timestamp", "date"),
        serialization_alias="timestamp",
    )
    from_address: str = Field(
        validation_alias=AliasChoices("fromAddress", "from_address", "from"),
        serialization_alias="fromAddress",
    )
    to_address: str = Field(
        validation_alias=AliasChoices("toAddress", "to_address", "to"),
        serialization_alias="toAddress",
    )
    amount: float = Field(..., ge=0.0)
    currency: str = ""

    @field_validator("timestamp")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are read as UTC; aware ones are converted to UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Deep trace
# ---------------------------------------------------------------------------
class TimeWindow(_CamelModel):
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class DeepTraceNode(_CamelModel):
    address: str
    min_depth: int
    aggregated_volume: float = 0.0
    transaction_count: int = 0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None


class DeepTraceEdge(_CamelModel):
    from_address: str = Field(alias="from")
    to_address: str = Field(alias="to")
    amount: float
    count: int = 1
    first_tx: datetime
    last_tx: datetime


class DeepTraceStatistics(_CamelModel):
    total_nodes: int
    total_edges: int
    max_depth_reached: int
    elapsed_ms: float
    truncated: bool = False


class DeepTraceResult(_CamelModel):
    start_address: str
    direction: Direction
    max_depth: int
    nodes: Dict[str, DeepTraceNode]
    edges: List[DeepTraceEdge]
    statistics: DeepTraceStatistics


# ---------------------------------------------------------------------------
# Path finding
# ---------------------------------------------------------------------------
class TransactionPath(_CamelModel):
    addresses: List[str]
    transactions: List[Transaction]
    hops: int
    total_amount: float
    start_time: datetime
    end_time: datetime
    avg_inter_hop_delay: float          # seconds
    suspicion_score: float = Field(..., ge=0.0, le=100.0)

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()


class PathFinderStatistics(_CamelModel):
    total_paths_found: int
    avg_path_length: float
    elapsed_ms: float
    truncated: bool = False


class PathFinderResult(_CamelModel):
    source: str
    target: str
    paths: List[TransactionPath]
    shortest_path: Optional[TransactionPath] = None
    statistics: PathFinderStatistics


# ---------------------------------------------------------------------------
# Taint
# ---------------------------------------------------------------------------
class TaintPath(_CamelModel):
    address_sequence: List[str]
    taint_amount: float
    taint_percentage: float = Field(..., ge=0.0, le=100.0)
    hops: int


class TaintFlow(_CamelModel):
    source_address: str
    target_address: str
    paths: List[TaintPath]
    total_tainted: float
    overall_taint_percentage: float = Field(..., ge=0.0, le=100.0)
    source_outflow: float = 0.0
    target_inflow_percentage: float = Field(0.0, ge=0.0, le=100.0)
    truncated: bool = False


# ---------------------------------------------------------------------------
# Patterns & clusters
# ---------------------------------------------------------------------------
class SuspiciousPattern(_CamelModel):
    """
    Mandatory fields: kind, severity, score, description, affected_addresses,
    transactions. ``metadata`` carries kind-specific evidence.
    """
    id: str = ""
    kind: PatternKind
    severity: Severity
    score: float = Field(..., ge=0.0, le=100.0)
    description: str
    affected_addresses: List[str]
    transactions: List[Transaction]
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AddressCluster(_CamelModel):
    id: str
    addresses: List[str]
    behavior_summary: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    transaction_count: int
    total_volume: float


# ---------------------------------------------------------------------------
# Task boundary
# ---------------------------------------------------------------------------
class TransactionsPayload(_CamelModel):
    transactions: List[Transaction] = Field(default_factory=list)


class DetectPatternsPayload(TransactionsPayload):
    pass


class ClusterAddressesPayload(TransactionsPayload):
    pass


class DeepTracePayload(TransactionsPayload):
    start_address: str
    direction: Direction = Direction.BOTH
    max_depth: int = DEEP_TRACE_DEFAULT_DEPTH
    min_amount: Optional[float] = Field(None, ge=0.0)
    time_window: Optional[TimeWindow] = None


class FindPathsPayload(TransactionsPayload):
    source: str
    target: str
    max_depth: int = PATH_DEFAULT_DEPTH
    max_paths: int = PATH_DEFAULT_PATHS


class TaintAnalysisPayload(TransactionsPayload):
    source_address: str
    target_address: str
    max_hops: int = TAINT_DEFAULT_HOPS


PAYLOAD_MODELS: Dict[Operation, type] = {
    Operation.DETECT_PATTERNS: DetectPatternsPayload,
    Operation.CLUSTER_ADDRESSES: ClusterAddressesPayload,
    Operation.DEEP_TRACE: DeepTracePayload,
    Operation.FIND_PATHS: FindPathsPayload,
    Operation.TAINT_ANALYSIS: TaintAnalysisPayload,
}


class TaskRequest(_CamelModel):
    operation: Operation
    payload: Dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = None
    force: bool = False


class TaskError(_CamelModel):
    code: str
    message: str


class TaskResponse(_CamelModel):
    request_id: Optional[str] = None
    operation: Operation
    status: TaskStatus
    data: Any = None
    error: Optional[TaskError] = None
    cached: bool = False
