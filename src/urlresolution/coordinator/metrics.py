"""
Performance metrics collection for URL resolution jobs.
"""

import json
import os
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, Optional

import psutil

from urlresolution.engine import JoinStats


@dataclass
class JobMetrics:
    """Metrics for a single job execution."""

    job_id: str
    strategy: str = ""
    status: str = ""
    start_time: float = 0.0
    end_time: float = 0.0
    map_phase_start: float = 0.0
    map_phase_end: float = 0.0
    reduce_phase_start: float = 0.0
    reduce_phase_end: float = 0.0
    num_map_tasks: int = 0
    num_reduce_tasks: int = 0
    mapping_size_bytes: int = 0
    register_size_bytes: int = 0
    intermediate_size_bytes: int = 0
    output_size_bytes: int = 0
    output_rows: int = 0
    mapping_records: int = 0
    register_records: int = 0
    rejected_records: Dict[str, int] = field(default_factory=dict)
    matched_registers: int = 0
    unmatched_registers: int = 0
    duplicate_mappings: int = 0
    peak_rss_bytes: int = 0

    @property
    def total_time_seconds(self) -> float:
        """Total job execution time in seconds."""
        return self.end_time - self.start_time

    @property
    def map_phase_time_seconds(self) -> float:
        return self.map_phase_end - self.map_phase_start

    @property
    def reduce_phase_time_seconds(self) -> float:
        return self.reduce_phase_end - self.reduce_phase_start

    @property
    def throughput_mbps(self) -> float:
        """Input megabytes per second."""
        total = self.total_time_seconds
        if total <= 0:
            return 0.0
        return (self.mapping_size_bytes + self.register_size_bytes) / 1024 / 1024 / total

    def to_dict(self) -> dict:
        """Convert metrics to dictionary."""
        data = asdict(self)
        data['total_time_seconds'] = round(self.total_time_seconds, 3)
        data['throughput_mbps'] = round(self.throughput_mbps, 3)
        return data

    def save_to_file(self, filepath: str):
        """Save metrics to JSON file."""
        parent = os.path.dirname(os.path.abspath(filepath))
        os.makedirs(parent, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def _size(path: str) -> int:
    return os.path.getsize(path) if os.path.exists(path) else 0


class MetricsCollector:
    """Collects metrics for one job while it runs."""

    def __init__(self, job_id: str):
        self.metrics = JobMetrics(job_id=job_id)
        self.process = psutil.Process()
        self._lock = threading.Lock()

    def sample_memory(self):
        """Record the current RSS if it is the highest seen so far."""
        rss = self.process.memory_info().rss
        with self._lock:
            self.metrics.peak_rss_bytes = max(self.metrics.peak_rss_bytes, rss)

    def start_job(self, mapping_path: str, register_path: str):
        self.metrics.start_time = time.time()
        self.metrics.mapping_size_bytes = _size(mapping_path)
        self.metrics.register_size_bytes = _size(register_path)
        self.sample_memory()

    def start_map_phase(self, num_map_tasks: int):
        self.metrics.map_phase_start = time.time()
        self.metrics.num_map_tasks = num_map_tasks

    def end_map_phase(self):
        self.metrics.map_phase_end = time.time()
        self.sample_memory()

    def add_intermediate_file(self, path: str):
        with self._lock:
            self.metrics.intermediate_size_bytes += _size(path)

    def start_reduce_phase(self, num_reduce_tasks: int):
        self.metrics.reduce_phase_start = time.time()
        self.metrics.num_reduce_tasks = num_reduce_tasks

    def end_reduce_phase(self):
        self.metrics.reduce_phase_end = time.time()
        self.sample_memory()

    def record_join_stats(self, stats: JoinStats):
        with self._lock:
            self.metrics.mapping_records = stats.mapping_rows
            self.metrics.register_records = stats.register_rows
            self.metrics.matched_registers = stats.matched_registers
            self.metrics.unmatched_registers = stats.unmatched_registers
            self.metrics.duplicate_mappings = stats.duplicate_mappings

    def end_job(self, status: str, strategy: Optional[str], output_path: str,
                output_rows: int, rejected: Dict[str, int]):
        """Mark job completion and calculate output size."""
        self.sample_memory()
        self.metrics.end_time = time.time()
        self.metrics.status = status
        self.metrics.strategy = strategy or ""
        self.metrics.output_size_bytes = _size(output_path)
        self.metrics.output_rows = output_rows
        self.metrics.rejected_records = dict(rejected)
