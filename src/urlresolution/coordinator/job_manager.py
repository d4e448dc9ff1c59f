"""
Job Manager for the URL resolution join
Handles job state management, task generation and strategy selection
"""

import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import psutil

from urlresolution.config import MAPPING_MEMORY_FACTOR, JobConfig, JoinStrategy
from urlresolution.errors import IOFailure
from urlresolution.records import MAPPING, REGISTER

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    """Status of a URL resolution job"""
    PENDING = "pending"
    MAP_PHASE = "map_phase"
    REDUCE_PHASE = "reduce_phase"
    COMMIT_PHASE = "commit_phase"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class TaskStatus(Enum):
    """Status of individual map or reduce tasks"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class MapTask:
    """One byte-range split of one input"""
    task_id: int
    input_path: str
    stream: int
    start_offset: int
    end_offset: int
    status: TaskStatus = TaskStatus.PENDING


@dataclass
class ReduceTask:
    """One hash partition of the shuffle"""
    task_id: int
    partition_id: int
    intermediate_files: List[str] = field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING


@dataclass
class Job:
    """A complete URL resolution job"""
    job_id: str
    config: JobConfig
    status: JobStatus = JobStatus.PENDING
    strategy: Optional[JoinStrategy] = None
    map_tasks: List[MapTask] = field(default_factory=list)
    reduce_tasks: List[ReduceTask] = field(default_factory=list)
    start_time: float = 0.0
    end_time: float = 0.0
    error_message: str = ""


def split_input(path: str, num_splits: int) -> List[tuple]:
    """
    Split a file into byte ranges of roughly equal size

    Args:
        path: Input file
        num_splits: Requested number of splits

    Returns:
        List of (start_offset, end_offset) tuples covering the whole file

    Raises:
        IOFailure: If the file cannot be stat'ed
    """
    try:
        file_size = os.path.getsize(path)
    except OSError as e:
        raise IOFailure(f"Cannot read input {path}: {e}") from e

    # Never more splits than bytes; an empty file still gets one split
    num_splits = max(1, min(num_splits, file_size))
    chunk_size = file_size // num_splits

    splits = []
    for i in range(num_splits):
        start = i * chunk_size
        end = file_size if i == num_splits - 1 else (i + 1) * chunk_size
        splits.append((start, end))
    return splits


class JobManager:
    """Manages URL resolution jobs and their lifecycle"""

    def __init__(self):
        self.jobs: Dict[str, Job] = {}
        self.lock = threading.Lock()

    def create_job(self, config: JobConfig, job_id: Optional[str] = None) -> Job:
        """Create a new job from its configuration"""
        with self.lock:
            job = Job(
                job_id=job_id or uuid.uuid4().hex[:8],
                config=config,
                start_time=time.time()
            )
            self.jobs[job.job_id] = job
        logger.info(f"Created job {job.job_id}: {config.mapping_path} x {config.register_path} "
                    f"-> {config.output_path}")
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        with self.lock:
            return self.jobs.get(job_id)

    def choose_strategy(self, job: Job) -> JoinStrategy:
        """
        Pick the join strategy for a job

        AUTO selects a hash join when the mapping file is no larger than
        hash_join_max_bytes and its estimated in-memory size fits in half of
        the currently available memory; otherwise a sort-merge join.
        """
        config = job.config
        if config.strategy is not JoinStrategy.AUTO:
            job.strategy = config.strategy
            logger.info(f"Job {job.job_id}: using {job.strategy.value} join (requested)")
            return job.strategy

        try:
            mapping_size = os.path.getsize(config.mapping_path)
        except OSError as e:
            raise IOFailure(f"Cannot read input {config.mapping_path}: {e}") from e

        estimated_memory = mapping_size * MAPPING_MEMORY_FACTOR
        available_memory = psutil.virtual_memory().available

        if mapping_size <= config.hash_join_max_bytes and estimated_memory <= available_memory // 2:
            job.strategy = JoinStrategy.HASH
        else:
            job.strategy = JoinStrategy.SORT_MERGE

        logger.info(f"Job {job.job_id}: using {job.strategy.value} join "
                    f"(mapping {mapping_size} bytes, ~{estimated_memory} bytes in memory, "
                    f"{available_memory} bytes available)")
        return job.strategy

    def generate_map_tasks(self, job: Job) -> List[MapTask]:
        """Split each input into num_map_tasks byte ranges; mapping splits come first"""
        map_tasks = []
        inputs = [(job.config.mapping_path, MAPPING), (job.config.register_path, REGISTER)]
        for path, stream in inputs:
            for start, end in split_input(path, job.config.num_map_tasks):
                map_tasks.append(MapTask(
                    task_id=len(map_tasks),
                    input_path=path,
                    stream=stream,
                    start_offset=start,
                    end_offset=end
                ))

        job.map_tasks = map_tasks
        return map_tasks

    def generate_reduce_tasks(self, job: Job, map_outputs: List[Dict[int, List[str]]]) -> List[ReduceTask]:
        """
        Create one reduce task per partition with its run files

        Args:
            job: The job
            map_outputs: partition_id -> run files for each map task, in task order
        """
        reduce_tasks = []
        for partition_id in range(job.config.num_reduce_tasks):
            # Find all intermediate files for this partition
            files = []
            for outputs in map_outputs:
                files.extend(outputs.get(partition_id, []))
            reduce_tasks.append(ReduceTask(
                task_id=partition_id,
                partition_id=partition_id,
                intermediate_files=files
            ))

        job.reduce_tasks = reduce_tasks
        return reduce_tasks

    def _transition(self, job: Job, allowed: tuple, status: JobStatus):
        with self.lock:
            if job.status not in allowed:
                raise ValueError(f"Cannot move job {job.job_id} from {job.status.value} to {status.value}")
            job.status = status
        logger.info(f"Job {job.job_id}: {status.value}")

    def start_map_phase(self, job: Job):
        self._transition(job, (JobStatus.PENDING,), JobStatus.MAP_PHASE)

    def start_reduce_phase(self, job: Job):
        self._transition(job, (JobStatus.MAP_PHASE,), JobStatus.REDUCE_PHASE)

    def start_commit_phase(self, job: Job):
        self._transition(job, (JobStatus.PENDING, JobStatus.MAP_PHASE, JobStatus.REDUCE_PHASE),
                         JobStatus.COMMIT_PHASE)

    def mark_completed(self, job: Job):
        self._transition(job, (JobStatus.COMMIT_PHASE,), JobStatus.COMPLETED)
        job.end_time = time.time()

    def mark_failed(self, job: Job, error_msg: str):
        """Mark job as failed with error message"""
        with self.lock:
            job.status = JobStatus.FAILED
            job.error_message = error_msg
            job.end_time = time.time()
        logger.error(f"Job {job.job_id} failed: {error_msg}")

    def cancel(self, job: Job) -> bool:
        """Cancel the job if it's not already finished"""
        with self.lock:
            if job.status in TERMINAL_STATUSES:
                return False
            job.status = JobStatus.CANCELLED
            job.end_time = time.time()
        logger.info(f"Job {job.job_id} cancelled")
        return True
