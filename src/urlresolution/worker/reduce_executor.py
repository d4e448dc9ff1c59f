"""
Reduce Task Executor
Merges the sorted runs of one partition, cogroups mapping and register
records by key, and writes the resolved rows to a part file
"""

import logging
import os
import pickle
import threading
import time
from typing import Iterator, List, Optional

from urlresolution.config import DuplicatePolicy
from urlresolution.engine import JoinStats, TaggedRecord, merge_runs, sort_merge_join
from urlresolution.errors import IOFailure, JobCancelled
from urlresolution.line_io import LineSink

logger = logging.getLogger(__name__)


def read_run(path: str, cancel_event: Optional[threading.Event] = None) -> Iterator[TaggedRecord]:
    """
    Stream the records of a run file one pickle frame at a time

    Raises:
        IOFailure: If the run file is missing or truncated
    """
    try:
        f = open(path, 'rb')
    except OSError as e:
        raise IOFailure(f"Cannot read intermediate file {path}: {e}") from e

    with f:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelled("Job cancelled")
            try:
                batch = pickle.load(f)
            except EOFError:
                return
            except (OSError, pickle.UnpicklingError) as e:
                raise IOFailure(f"Corrupt intermediate file {path}: {e}") from e
            yield from batch


class ReduceExecutor:
    """Executes a single reduce task"""

    def __init__(self, job_id: str, task_id: int, partition_id: int,
                 intermediate_files: List[str], output_dir: str,
                 duplicate_policy: DuplicatePolicy = DuplicatePolicy.REJECT,
                 keep_unmatched: bool = False,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize the reduce executor

        Args:
            job_id: Unique job identifier
            task_id: Unique ID for this reduce task
            partition_id: Partition ID this reduce task is responsible for
            intermediate_files: Run files for this partition, in map task order
            output_dir: Directory where the part file is written
            duplicate_policy: Handling of duplicate mapping keys
            keep_unmatched: Emit unmatched registers with an empty canonical URL
            cancel_event: Checked at I/O boundaries
        """
        self.job_id = job_id
        self.task_id = task_id
        self.partition_id = partition_id
        self.intermediate_files = intermediate_files
        self.output_dir = output_dir
        self.duplicate_policy = duplicate_policy
        self.keep_unmatched = keep_unmatched
        self.cancel_event = cancel_event
        self.stats = JoinStats()

    @property
    def part_path(self) -> str:
        return os.path.join(self.output_dir, f"part-{self.partition_id}.txt")

    def execute(self) -> dict:
        """
        Execute the reduce task

        Returns:
            Dictionary with 'task_id', 'part_file', 'rows_written', 'stats'
            and 'execution_time_ms'

        Raises:
            InvariantViolation: On a duplicate mapping (REJECT policy) or unordered runs
            IOFailure: If a run cannot be read or the part file cannot be written
        """
        start_time = time.time()

        try:
            logger.info(f"Reduce task {self.task_id}: Merging {len(self.intermediate_files)} "
                        f"runs for partition {self.partition_id}")

            runs = [read_run(path, self.cancel_event) for path in self.intermediate_files]
            rows = sort_merge_join(merge_runs(runs), self.duplicate_policy,
                                   self.keep_unmatched, self.stats)

            with LineSink(self.part_path, self.cancel_event) as sink:
                sink.write_all(rows)

            execution_time = int((time.time() - start_time) * 1000)
            logger.info(f"Reduce task {self.task_id}: Wrote {sink.rows_written} rows "
                        f"to {self.part_path} in {execution_time}ms")

            return {
                'task_id': self.task_id,
                'part_file': self.part_path,
                'rows_written': sink.rows_written,
                'stats': self.stats,
                'execution_time_ms': execution_time,
            }

        except Exception as e:
            logger.error(f"Reduce task failed - Job: {self.job_id}, Task: {self.task_id}. Error: {e}")
            raise
