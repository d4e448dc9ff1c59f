"""
Job configuration and defaults.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

# ========================
# Parallelism
# ========================

# Byte-range splits per input file
DEFAULT_NUM_MAP_TASKS = 1

# Hash partitions (one reduce task each)
DEFAULT_NUM_REDUCE_TASKS = 1

DEFAULT_MAX_WORKERS = 4

# Records a map task buffers before spilling sorted runs to disk
DEFAULT_SPILL_RECORDS = 100_000

# ========================
# Strategy selection
# ========================

# Largest mapping file (bytes) loaded into memory for a hash join
HASH_JOIN_MAX_BYTES = 256 * 1024 * 1024

# Estimated in-memory size of the mapping table per byte of mapping file
MAPPING_MEMORY_FACTOR = 4

# ========================
# Record errors
# ========================

# Rejected records logged individually before switching to summaries
REJECT_LOG_LIMIT = 20


class JoinStrategy(Enum):
    """How the join is executed"""
    AUTO = "auto"
    HASH = "hash"
    SORT_MERGE = "sort_merge"


class DuplicatePolicy(Enum):
    """What to do when a raw URL appears more than once in the mapping"""
    REJECT = "reject"          # job-fatal InvariantViolation
    FIRST_WINS = "first_wins"  # keep the first row, count and skip the rest
    FAN_OUT = "fan_out"        # one output row per mapping row


@dataclass
class JobConfig:
    """Everything needed to run one URL resolution job"""
    mapping_path: str
    register_path: str
    output_path: str
    strategy: JoinStrategy = JoinStrategy.AUTO
    num_map_tasks: int = DEFAULT_NUM_MAP_TASKS
    num_reduce_tasks: int = DEFAULT_NUM_REDUCE_TASKS
    max_workers: int = DEFAULT_MAX_WORKERS
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.REJECT
    keep_unmatched: bool = False
    rejects_path: Optional[str] = None
    metrics_path: Optional[str] = None
    scratch_dir: Optional[str] = None
    keep_intermediate: bool = False
    hash_join_max_bytes: int = HASH_JOIN_MAX_BYTES
    spill_records: int = DEFAULT_SPILL_RECORDS

    def __post_init__(self):
        self.strategy = JoinStrategy(self.strategy)
        self.duplicate_policy = DuplicatePolicy(self.duplicate_policy)
        for name in ("num_map_tasks", "num_reduce_tasks", "max_workers", "spill_records"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
        if self.hash_join_max_bytes < 0:
            raise ValueError("hash_join_max_bytes must not be negative")
