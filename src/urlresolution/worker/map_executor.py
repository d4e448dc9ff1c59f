"""
Map Task Executor
Reads one split of one input, parses and tags every record, partitions the
tagged records by key hash, and spills bounded sorted runs per partition
as intermediate files
"""

import logging
import os
import pickle
import threading
import time
import zlib
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from urlresolution.config import DEFAULT_SPILL_RECORDS
from urlresolution.coordinator.job_manager import MapTask
from urlresolution.engine import TaggedRecord, sort_run, tag_mapping, tag_register
from urlresolution.errors import IOFailure, MalformedRecord
from urlresolution.line_io import read_lines
from urlresolution.parsers import parse_mapping_line, parse_register_line
from urlresolution.records import MAPPING, REGISTER, STREAM_NAMES
from urlresolution.rejects import RecordErrorCollector

logger = logging.getLogger(__name__)

# Records per pickle frame in a run file; the reduce side loads one frame at a time
SPILL_BATCH_SIZE = 10000

PARSERS: Dict[int, Tuple[Callable, Callable]] = {
    MAPPING: (parse_mapping_line, tag_mapping),
    REGISTER: (parse_register_line, tag_register),
}


def partition_for(key: bytes, num_partitions: int) -> int:
    """Stable hash partitioning (crc32), identical across processes."""
    return zlib.crc32(key) % num_partitions


def parse_split(path: str, stream: int, collector: RecordErrorCollector,
                start_offset: int = 0, end_offset: Optional[int] = None,
                cancel_event: Optional[threading.Event] = None) -> Iterator:
    """
    Parse the lines of one split, handing malformed lines to the collector.

    Yields:
        MappingRow or RegisterRow, depending on stream
    """
    parse, _ = PARSERS[stream]
    source = STREAM_NAMES[stream]
    accepted = 0
    try:
        for offset, line in read_lines(path, start_offset, end_offset, cancel_event):
            try:
                row = parse(line)
            except MalformedRecord as e:
                if e.line is None:
                    e.line = line
                collector.record(e.locate(source, offset))
                continue
            accepted += 1
            yield row
    finally:
        collector.count_accepted(source, accepted)


class MapExecutor:
    """Executes a single map task"""

    def __init__(self, job_id: str, task: MapTask, num_reduce_tasks: int,
                 intermediate_dir: str, collector: RecordErrorCollector,
                 cancel_event: Optional[threading.Event] = None,
                 spill_records: int = DEFAULT_SPILL_RECORDS):
        """
        Initialize the map executor

        Args:
            job_id: Unique job identifier
            task: Split to process (input path, stream tag, byte range)
            num_reduce_tasks: Number of reduce tasks (for partitioning)
            intermediate_dir: Directory where run files are written
            collector: Receives malformed records
            cancel_event: Checked at I/O boundaries
            spill_records: Buffered records that trigger a spill
        """
        self.job_id = job_id
        self.task = task
        self.num_reduce_tasks = num_reduce_tasks
        self.intermediate_dir = intermediate_dir
        self.collector = collector
        self.cancel_event = cancel_event
        self.spill_records = spill_records
        self._spill_count = 0

    def execute(self) -> dict:
        """
        Execute the map task

        Records are buffered per partition; whenever spill_records records
        are buffered, every non-empty partition is sorted and spilled as a
        new run, so a task never holds more than spill_records records.

        Returns:
            Dictionary with 'task_id', 'records', 'intermediate_files'
            (partition_id -> run file paths in spill order) and 'execution_time_ms'

        Raises:
            IOFailure: If the input cannot be read or a run cannot be written
            JobCancelled: If the job is cancelled mid-task
        """
        start_time = time.time()
        task = self.task
        stream_name = STREAM_NAMES[task.stream]

        try:
            logger.info(f"Map task {task.task_id}: Reading {stream_name} split "
                        f"{task.input_path}[{task.start_offset}:{task.end_offset}]")

            _, tag = PARSERS[task.stream]
            partitions: List[List[TaggedRecord]] = [[] for _ in range(self.num_reduce_tasks)]
            intermediate_files: Dict[int, List[str]] = {}
            records = 0
            buffered = 0
            for row in parse_split(task.input_path, task.stream, self.collector,
                                   task.start_offset, task.end_offset, self.cancel_event):
                tagged = tag(row)
                partitions[partition_for(tagged[0], self.num_reduce_tasks)].append(tagged)
                records += 1
                buffered += 1
                if buffered >= self.spill_records:
                    self._spill(partitions, intermediate_files)
                    buffered = 0

            self._spill(partitions, intermediate_files)
            num_runs = sum(len(paths) for paths in intermediate_files.values())
            logger.info(f"Map task {task.task_id}: Parsed {records} {stream_name} records "
                        f"into {num_runs} runs")

            execution_time = int((time.time() - start_time) * 1000)
            logger.info(f"Map task {task.task_id}: Completed in {execution_time}ms")

            return {
                'task_id': task.task_id,
                'records': records,
                'intermediate_files': intermediate_files,
                'execution_time_ms': execution_time,
            }

        except Exception as e:
            logger.error(f"Map task failed - Job: {self.job_id}, Task: {task.task_id}. Error: {e}")
            raise

    def _spill(self, partitions: List[List[TaggedRecord]], intermediate_files: Dict[int, List[str]]):
        """
        Sort each non-empty partition buffer and write it as the next run file

        Args:
            partitions: Buffered tagged records per partition id; emptied on return
            intermediate_files: partition_id -> run file paths, appended to
        """
        os.makedirs(self.intermediate_dir, exist_ok=True)
        run_id = self._spill_count
        self._spill_count += 1

        for partition_id, records in enumerate(partitions):
            if not records:  # Skip empty partitions
                continue

            sort_run(records)
            filename = f"{self.job_id}_map_{self.task.task_id}_part_{partition_id}_run_{run_id}.pickle"
            path = os.path.join(self.intermediate_dir, filename)

            try:
                with open(path, 'wb') as f:
                    for i in range(0, len(records), SPILL_BATCH_SIZE):
                        pickle.dump(records[i:i + SPILL_BATCH_SIZE], f, protocol=pickle.HIGHEST_PROTOCOL)
            except OSError as e:
                raise IOFailure(f"Cannot write intermediate file {path}: {e}") from e

            intermediate_files.setdefault(partition_id, []).append(path)
            records.clear()
