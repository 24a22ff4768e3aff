"""
config.py – Centralised configuration via environment variables.
All tunable thresholds live here so nothing is scattered across modules.
"""
import os


# ── Deep trace ─────────────────────────────────────────────────────────────────
DEEP_TRACE_MAX_DEPTH: int = int(os.getenv("DEEP_TRACE_MAX_DEPTH", "20"))
DEEP_TRACE_DEFAULT_DEPTH: int = 3
# Hard ceiling on discovered nodes; dense hubs otherwise swallow the ledger.
DEEP_TRACE_MAX_NODES: int = int(os.getenv("DEEP_TRACE_MAX_NODES", "5000"))

# ── Path finding ───────────────────────────────────────────────────────────────
PATH_MAX_DEPTH: int = int(os.getenv("PATH_MAX_DEPTH", "10"))
PATH_DEFAULT_DEPTH: int = 10
PATH_MAX_PATHS: int = int(os.getenv("PATH_MAX_PATHS", "1000"))
PATH_DEFAULT_PATHS: int = 100
PATH_MAX_EXPANSIONS: int = int(os.getenv("PATH_MAX_EXPANSIONS", "200000"))

# Path suspicion composite
PATH_HOP_SATURATION: int = 6                 # hops at which the hop factor tops out
PATH_SPEED_REFERENCE_SECONDS: float = float(os.getenv("PATH_SPEED_REFERENCE_SECONDS", "3600"))
PATH_WEIGHT_HOPS: float = 0.30
PATH_WEIGHT_SPEED: float = 0.35
PATH_WEIGHT_CONSERVATION: float = 0.35

# ── Taint propagation ──────────────────────────────────────────────────────────
TAINT_MAX_HOPS: int = int(os.getenv("TAINT_MAX_HOPS", "10"))
TAINT_DEFAULT_HOPS: int = 10
TAINT_MIN_AMOUNT: float = float(os.getenv("TAINT_MIN_AMOUNT", "0.01"))
TAINT_MAX_PATHS: int = int(os.getenv("TAINT_MAX_PATHS", "20"))
TAINT_MAX_BRANCHES: int = int(os.getenv("TAINT_MAX_BRANCHES", "100000"))

# ── Circular flow ──────────────────────────────────────────────────────────────
CYCLE_MIN_LEN: int = 3
CYCLE_MAX_LEN: int = int(os.getenv("CYCLE_MAX_LEN", "6"))
MAX_CYCLES: int = int(os.getenv("MAX_CYCLES", "500"))
CYCLE_AMOUNT_TOLERANCE: float = float(os.getenv("CYCLE_AMOUNT_TOLERANCE", "0.3"))
CYCLE_WINDOW_HOURS: float = float(os.getenv("CYCLE_WINDOW_HOURS", "168"))

# ── Layering ───────────────────────────────────────────────────────────────────
LAYERING_WINDOW_HOURS: float = float(os.getenv("LAYERING_WINDOW_HOURS", "24"))
# A relay may shed up to this fraction of what it received (fees, skims).
LAYERING_ATTRITION: float = float(os.getenv("LAYERING_ATTRITION", "0.15"))
LAYERING_MIN_PASS_THROUGH: int = 2
LAYERING_MAX_CHAIN: int = int(os.getenv("LAYERING_MAX_CHAIN", "8"))
MAX_LAYERING_CHAINS: int = int(os.getenv("MAX_LAYERING_CHAINS", "1000"))

# ── Structuring ────────────────────────────────────────────────────────────────
STRUCTURING_THRESHOLD: float = float(os.getenv("STRUCTURING_THRESHOLD", "10000.0"))
STRUCTURING_WINDOW_HOURS: float = float(os.getenv("STRUCTURING_WINDOW_HOURS", "48"))
STRUCTURING_MIN_TX: int = int(os.getenv("STRUCTURING_MIN_TX", "3"))
STRUCTURING_MAX_COUNTERPARTIES: int = int(os.getenv("STRUCTURING_MAX_COUNTERPARTIES", "3"))

# ── Fan-out / fan-in ───────────────────────────────────────────────────────────
FAN_THRESHOLD: int = int(os.getenv("FAN_THRESHOLD", "10"))
FAN_WINDOW_HOURS: float = float(os.getenv("FAN_WINDOW_HOURS", "72"))

# ── Behavioural signals ────────────────────────────────────────────────────────
MIXER_KEYWORDS: tuple = tuple(
    kw.strip().lower()
    for kw in os.getenv("MIXER_KEYWORDS", "tornado,mixer,tumbler,blender,cyclone").split(",")
    if kw.strip()
)
ROUND_AMOUNT_UNIT: float = 1000.0
ROUND_AMOUNT_RATIO: float = float(os.getenv("ROUND_AMOUNT_RATIO", "0.3"))
VELOCITY_MIN_TX: int = int(os.getenv("VELOCITY_MIN_TX", "20"))
VELOCITY_TX_PER_DAY: float = float(os.getenv("VELOCITY_TX_PER_DAY", "10.0"))

# ── Pattern scoring ────────────────────────────────────────────────────────────
# Floor score per pattern kind; the composite lifts it towards 100.
PATTERN_BASE_SCORES: dict = {
    "circular_flow": 40.0,
    "layering":      35.0,
    "structuring":   30.0,
    "fan_out":       25.0,
    "fan_in":        25.0,
    "mixer_usage":   50.0,
    "round_amounts": 15.0,
    "high_velocity": 20.0,
}
WEIGHT_MAGNITUDE: float = 0.35
WEIGHT_SPEED: float = 0.25
WEIGHT_COUNTERPARTIES: float = 0.20
WEIGHT_DEPTH: float = 0.20
MAGNITUDE_REFERENCE: float = float(os.getenv("MAGNITUDE_REFERENCE", "1000000"))
SPEED_REFERENCE_HOURS: float = 24.0
COUNTERPARTY_REFERENCE: int = 20
DEPTH_REFERENCE: int = 6

# Severity thresholds (score < bound → label)
SEVERITY_THRESHOLDS: tuple = ((40.0, "low"), (60.0, "medium"), (80.0, "high"))

PATTERN_MAX_TRANSACTIONS: int = 100

# ── Clustering ─────────────────────────────────────────────────────────────────
CLUSTER_SIMILARITY_THRESHOLD: float = float(os.getenv("CLUSTER_SIMILARITY_THRESHOLD", "0.7"))
CLUSTER_WEIGHT_COUNTERPARTIES: float = 0.5
CLUSTER_WEIGHT_HOURS: float = 0.25
CLUSTER_WEIGHT_AMOUNTS: float = 0.25
# Upper edges of the log-scale amount histogram; the last bin is open-ended.
CLUSTER_AMOUNT_BINS: tuple = (10.0, 100.0, 1000.0, 10000.0, 100000.0)
# Candidate pairs scored per request; further pairs are skipped with a warning.
CLUSTER_MAX_PAIRS: int = int(os.getenv("CLUSTER_MAX_PAIRS", "50000"))

# ── Result cache ───────────────────────────────────────────────────────────────
CACHE_MAX_ENTRIES: int = int(os.getenv("CACHE_MAX_ENTRIES", "256"))
CACHE_TTL_SECONDS: float = float(os.getenv("CACHE_TTL_SECONDS", "1800"))
