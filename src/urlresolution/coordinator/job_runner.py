"""
Runs a URL resolution job end to end.

Hash strategy:       load mapping -> stream registers -> output
Sort-merge strategy: map tasks -> sorted runs -> reduce tasks -> part files -> output
"""

import logging
import os
import shutil
import tempfile
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import List, Optional

from urlresolution.config import JobConfig, JoinStrategy
from urlresolution.coordinator.job_manager import Job, JobManager, TaskStatus
from urlresolution.coordinator.metrics import JobMetrics, MetricsCollector
from urlresolution.engine import JoinStats, MappingTable, hash_join
from urlresolution.errors import JobCancelled, NoValidRecords
from urlresolution.line_io import LineSink
from urlresolution.records import MAPPING, REGISTER, STREAM_NAMES
from urlresolution.rejects import RecordErrorCollector
from urlresolution.worker.map_executor import MapExecutor, parse_split
from urlresolution.worker.reduce_executor import ReduceExecutor

logger = logging.getLogger(__name__)


class JobRunner:
    """Runs one job once; cancel() may be called from another thread"""

    def __init__(self, config: JobConfig, job_manager: Optional[JobManager] = None):
        self.config = config
        self.job_manager = job_manager or JobManager()
        self.cancel_event = threading.Event()
        self.collector = RecordErrorCollector(config.rejects_path)
        self.stats = JoinStats()
        self.job: Optional[Job] = None

    def cancel(self):
        """Stop the job at the next I/O boundary."""
        self.cancel_event.set()

    def run(self) -> JobMetrics:
        """
        Run the job to completion

        Returns:
            Metrics of the finished job

        Raises:
            IOFailure, InvariantViolation, NoValidRecords: Job-fatal errors
            JobCancelled: If the job was cancelled
            RuntimeError: If this runner has already run a job
        """
        if self.job is not None:
            raise RuntimeError(f"JobRunner already ran job {self.job.job_id}; create a new runner")
        config = self.config
        job = self.job_manager.create_job(config)
        self.job = job
        collector = MetricsCollector(job.job_id)
        collector.start_job(config.mapping_path, config.register_path)
        scratch_dir = None
        output_rows = 0

        try:
            with self.collector:
                strategy = self.job_manager.choose_strategy(job)
                if strategy is JoinStrategy.HASH:
                    output_rows = self._run_hash(job, collector)
                else:
                    scratch_dir = self._make_scratch_dir(job)
                    output_rows = self._run_sort_merge(job, collector, scratch_dir)
            self.job_manager.mark_completed(job)
            logger.info(f"Job {job.job_id}: wrote {output_rows} rows to {config.output_path}")

        except (JobCancelled, KeyboardInterrupt) as e:
            self.cancel_event.set()
            self.job_manager.cancel(job)
            if isinstance(e, JobCancelled):
                raise
            raise JobCancelled("Job cancelled by interrupt") from e

        except Exception as e:
            self.job_manager.mark_failed(job, str(e))
            raise

        finally:
            rejected = self.collector.summary()
            if rejected:
                logger.warning(f"Job {job.job_id}: rejected records {rejected}")
            collector.record_join_stats(self.stats)
            collector.end_job(job.status.value, job.strategy.value if job.strategy else None,
                              config.output_path, output_rows, rejected)
            if scratch_dir and not config.keep_intermediate:
                shutil.rmtree(scratch_dir, ignore_errors=True)
            if config.metrics_path:
                collector.metrics.save_to_file(config.metrics_path)

        return collector.metrics

    def _make_scratch_dir(self, job: Job) -> str:
        if self.config.scratch_dir:
            path = os.path.join(self.config.scratch_dir, job.job_id)
            os.makedirs(path, exist_ok=True)
            return path
        return tempfile.mkdtemp(prefix=f"urlresolution-{job.job_id}-")

    def _check_input(self, stream: int):
        """Fail the job when an input had records and every one was rejected."""
        source = STREAM_NAMES[stream]
        rejected = self.collector.by_source[source]
        if rejected and not self.collector.accepted[source]:
            raise NoValidRecords(f"All {rejected} {source} records were rejected")

    def _execute(self, task, executor) -> dict:
        task.status = TaskStatus.RUNNING
        try:
            result = executor.execute()
        except BaseException:
            task.status = TaskStatus.FAILED
            raise
        task.status = TaskStatus.COMPLETED
        return result

    def _run_parallel(self, tasks: list, executors: list) -> List[dict]:
        """Run executors on the thread pool; results come back in task order."""
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            futures = [pool.submit(self._execute, task, executor)
                       for task, executor in zip(tasks, executors)]
            try:
                done, _ = wait(futures, return_when=FIRST_EXCEPTION)
                for future in futures:
                    if future in done and future.exception() is not None:
                        raise future.exception()
                return [future.result() for future in futures]
            except BaseException:
                # Stop the remaining tasks at their next I/O boundary
                self.cancel_event.set()
                raise

    def _run_hash(self, job: Job, collector: MetricsCollector) -> int:
        config = self.config
        self.job_manager.start_map_phase(job)
        collector.start_map_phase(num_map_tasks=1)

        table = MappingTable(config.duplicate_policy, self.stats)
        table.load(parse_split(config.mapping_path, MAPPING, self.collector,
                               cancel_event=self.cancel_event))
        collector.end_map_phase()
        self._check_input(MAPPING)
        logger.info(f"Job {job.job_id}: loaded {len(table)} mappings into memory")

        self.job_manager.start_commit_phase(job)
        registers = parse_split(config.register_path, REGISTER, self.collector,
                                cancel_event=self.cancel_event)
        with LineSink(config.output_path, self.cancel_event) as sink:
            sink.write_all(hash_join(table, registers, config.keep_unmatched))
        self._check_input(REGISTER)
        return sink.rows_written

    def _run_sort_merge(self, job: Job, collector: MetricsCollector, scratch_dir: str) -> int:
        config = self.config
        manager = self.job_manager

        # MAP PHASE
        map_tasks = manager.generate_map_tasks(job)
        manager.start_map_phase(job)
        collector.start_map_phase(len(map_tasks))
        intermediate_dir = os.path.join(scratch_dir, 'intermediate')
        mappers = [MapExecutor(job.job_id, task, config.num_reduce_tasks, intermediate_dir,
                               self.collector, self.cancel_event, config.spill_records)
                   for task in map_tasks]
        map_results = self._run_parallel(map_tasks, mappers)
        collector.end_map_phase()
        self._check_input(MAPPING)
        self._check_input(REGISTER)

        map_outputs = [result['intermediate_files'] for result in map_results]
        for outputs in map_outputs:
            for paths in outputs.values():
                for path in paths:
                    collector.add_intermediate_file(path)

        # REDUCE PHASE
        reduce_tasks = manager.generate_reduce_tasks(job, map_outputs)
        manager.start_reduce_phase(job)
        collector.start_reduce_phase(len(reduce_tasks))
        parts_dir = os.path.join(scratch_dir, 'parts')
        reducers = [ReduceExecutor(job.job_id, task.task_id, task.partition_id,
                                   task.intermediate_files, parts_dir,
                                   config.duplicate_policy, config.keep_unmatched,
                                   self.cancel_event)
                    for task in reduce_tasks]
        reduce_results = self._run_parallel(reduce_tasks, reducers)
        collector.end_reduce_phase()
        for result in reduce_results:
            self.stats.add(result['stats'])

        # COMMIT
        manager.start_commit_phase(job)
        with LineSink(config.output_path, self.cancel_event) as sink:
            for result in reduce_results:
                sink.append_part(result['part_file'])
        return sink.rows_written
