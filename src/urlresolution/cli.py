"""
Command-line entry point for the URL resolution join.

    urlresolution MAPPING REGISTER OUTPUT [options]
"""

import argparse
import logging
import sys
from typing import List, Optional

from urlresolution.config import (
    DEFAULT_MAX_WORKERS, DEFAULT_NUM_MAP_TASKS, DEFAULT_NUM_REDUCE_TASKS, DEFAULT_SPILL_RECORDS,
    HASH_JOIN_MAX_BYTES,
    DuplicatePolicy, JobConfig, JoinStrategy,
)
from urlresolution.coordinator.job_runner import JobRunner
from urlresolution.errors import JobCancelled, UrlResolutionError

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human readable string."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds / 60)
    seconds = seconds % 60
    if minutes < 60:
        return f"{minutes}m {seconds:.1f}s"
    hours = int(minutes / 60)
    minutes = minutes % 60
    return f"{hours}h {minutes}m {seconds:.1f}s"


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="urlresolution",
        description="Replace the raw URL of every hit register with its canonical URL",
    )
    parser.add_argument("mapping", help="Mapping input: raw_url<TAB>canonical_url per line")
    parser.add_argument("register", help="Register input: raw_url<TAB>timestamp<TAB>ip per line")
    parser.add_argument("output", help="Output file (truncated on open)")
    parser.add_argument("--strategy", choices=[s.value for s in JoinStrategy],
                        default=JoinStrategy.AUTO.value,
                        help="Join strategy; auto picks hash when the mapping fits in memory")
    parser.add_argument("--num-map", type=positive_int, default=DEFAULT_NUM_MAP_TASKS,
                        help="Splits per input for the sort-merge join")
    parser.add_argument("--num-reduce", type=positive_int, default=DEFAULT_NUM_REDUCE_TASKS,
                        help="Hash partitions for the sort-merge join")
    parser.add_argument("--max-workers", type=positive_int, default=DEFAULT_MAX_WORKERS,
                        help="Threads running map and reduce tasks")
    parser.add_argument("--spill-records", type=positive_int, default=DEFAULT_SPILL_RECORDS,
                        help="Records a map task buffers before spilling sorted runs")
    parser.add_argument("--hash-max-bytes", type=int, default=HASH_JOIN_MAX_BYTES,
                        help="Largest mapping file auto may load for a hash join")
    parser.add_argument("--duplicates", choices=[p.value for p in DuplicatePolicy],
                        default=DuplicatePolicy.REJECT.value,
                        help="Duplicate raw URLs in the mapping: fail the job, keep the first, "
                             "or emit one row per mapping")
    parser.add_argument("--keep-unmatched", action="store_true",
                        help="Emit registers without a mapping with an empty canonical URL")
    parser.add_argument("--rejects", help="Write rejected input lines to this file")
    parser.add_argument("--metrics", help="Write job metrics as JSON to this file")
    parser.add_argument("--scratch-dir", help="Directory for intermediate files")
    parser.add_argument("--keep-intermediate", action="store_true",
                        help="Do not delete intermediate files after the job")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def config_from_args(args: argparse.Namespace) -> JobConfig:
    return JobConfig(
        mapping_path=args.mapping,
        register_path=args.register,
        output_path=args.output,
        strategy=JoinStrategy(args.strategy),
        num_map_tasks=args.num_map,
        num_reduce_tasks=args.num_reduce,
        max_workers=args.max_workers,
        duplicate_policy=DuplicatePolicy(args.duplicates),
        keep_unmatched=args.keep_unmatched,
        rejects_path=args.rejects,
        metrics_path=args.metrics,
        scratch_dir=args.scratch_dir,
        keep_intermediate=args.keep_intermediate,
        hash_join_max_bytes=args.hash_max_bytes,
        spill_records=args.spill_records,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    try:
        config = config_from_args(args)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_FAILED

    runner = JobRunner(config)
    try:
        metrics = runner.run()
    except JobCancelled as e:
        logger.error(f"{e}; output {config.output_path} is incomplete")
        return EXIT_CANCELLED
    except UrlResolutionError as e:
        logger.error(f"Job failed: {e}")
        return EXIT_FAILED

    rejected = sum(metrics.rejected_records.values())
    logger.info(f"Resolved {metrics.output_rows} rows ({metrics.unmatched_registers} unmatched, "
                f"{rejected} rejected) with the {metrics.strategy} join "
                f"in {format_duration(metrics.total_time_seconds)}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
