#!/usr/bin/env python3
"""
Benchmarking script for the URL resolution join.
Runs the job across strategies and parallelism settings and collects metrics.
"""

import argparse
import csv
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path

from urlresolution.config import JobConfig
from urlresolution.coordinator.job_runner import JobRunner
from urlresolution.errors import UrlResolutionError

# Configuration
RESULTS_DIR = Path("benchmark_results")
INPUT_DIR = Path("shared") / "input"
OUTPUT_DIR = Path("shared") / "output"

# Benchmark configurations
BENCHMARKS = [
    # Experiment 1: Input Size Scaling (both strategies)
    {"name": "input_size_small_hash", "dataset": "small", "strategy": "hash", "maps": 1, "reduces": 1,
     "description": "Small input, hash join"},
    {"name": "input_size_small_sort_merge", "dataset": "small", "strategy": "sort_merge", "maps": 1, "reduces": 1,
     "description": "Small input, sort-merge join"},
    {"name": "input_size_medium_hash", "dataset": "medium", "strategy": "hash", "maps": 1, "reduces": 1,
     "description": "Medium input, hash join"},
    {"name": "input_size_medium_sort_merge", "dataset": "medium", "strategy": "sort_merge", "maps": 1, "reduces": 1,
     "description": "Medium input, sort-merge join"},
    {"name": "input_size_large_hash", "dataset": "large", "strategy": "hash", "maps": 1, "reduces": 1,
     "description": "Large input, hash join"},
    {"name": "input_size_large_sort_merge", "dataset": "large", "strategy": "sort_merge", "maps": 1, "reduces": 1,
     "description": "Large input, sort-merge join"},

    # Experiment 2: Map Task Scaling (sort-merge, fixed input)
    {"name": "map_scaling_1", "dataset": "medium", "strategy": "sort_merge", "maps": 1, "reduces": 2,
     "description": "1 split per input"},
    {"name": "map_scaling_2", "dataset": "medium", "strategy": "sort_merge", "maps": 2, "reduces": 2,
     "description": "2 splits per input"},
    {"name": "map_scaling_4", "dataset": "medium", "strategy": "sort_merge", "maps": 4, "reduces": 2,
     "description": "4 splits per input"},
    {"name": "map_scaling_8", "dataset": "medium", "strategy": "sort_merge", "maps": 8, "reduces": 2,
     "description": "8 splits per input"},

    # Experiment 3: Reduce Task Scaling (sort-merge, fixed input)
    {"name": "reduce_scaling_1", "dataset": "medium", "strategy": "sort_merge", "maps": 4, "reduces": 1,
     "description": "1 reduce task"},
    {"name": "reduce_scaling_2", "dataset": "medium", "strategy": "sort_merge", "maps": 4, "reduces": 2,
     "description": "2 reduce tasks"},
    {"name": "reduce_scaling_4", "dataset": "medium", "strategy": "sort_merge", "maps": 4, "reduces": 4,
     "description": "4 reduce tasks"},
    {"name": "reduce_scaling_8", "dataset": "medium", "strategy": "sort_merge", "maps": 4, "reduces": 8,
     "description": "8 reduce tasks"},
]


def input_paths(dataset: str, input_dir: Path):
    return input_dir / f"mapping_{dataset}.tsv", input_dir / f"register_{dataset}.tsv"


def run_benchmark(config, input_dir: Path, max_workers: int, run_number=1):
    """Run a single benchmark configuration; returns a result row or None."""
    print(f"\n{'='*70}")
    print(f"Benchmark: {config['name']} (Run {run_number})")
    print(f"Description: {config['description']}")
    print(f"Config: {config['strategy']}, {config['maps']} maps, {config['reduces']} reduces")
    print(f"{'='*70}")

    mapping_path, register_path = input_paths(config['dataset'], input_dir)
    if not mapping_path.exists() or not register_path.exists():
        print(f"❌ Input files not found for dataset {config['dataset']}")
        print(f"   Run scripts/generate_benchmark_inputs.py first. Skipping...")
        return None

    job_config = JobConfig(
        mapping_path=str(mapping_path),
        register_path=str(register_path),
        output_path=str(OUTPUT_DIR / f"{config['name']}.tsv"),
        strategy=config['strategy'],
        num_map_tasks=config['maps'],
        num_reduce_tasks=config['reduces'],
        max_workers=max_workers,
    )

    start = time.time()
    try:
        metrics = JobRunner(job_config).run()
        success = True
    except UrlResolutionError as e:
        print(f"  ❌ Job failed: {e}")
        metrics = None
        success = False
    duration = time.time() - start

    input_size = mapping_path.stat().st_size + register_path.stat().st_size
    result = {
        "benchmark_name": config["name"],
        "description": config["description"],
        "run_number": run_number,
        "timestamp": datetime.now().isoformat(),
        "dataset": config["dataset"],
        "strategy": config["strategy"],
        "input_size_bytes": input_size,
        "input_size_mb": round(input_size / 1024 / 1024, 2),
        "num_map_tasks": config["maps"],
        "num_reduce_tasks": config["reduces"],
        "success": success,
        "total_runtime_seconds": round(duration, 3),
        "throughput_mbps": round((input_size / 1024 / 1024) / duration, 3) if duration > 0 else 0,
    }

    if metrics is not None:
        result.update({
            "job_id": metrics.job_id,
            "map_phase_seconds": round(metrics.map_phase_time_seconds, 3),
            "reduce_phase_seconds": round(metrics.reduce_phase_time_seconds, 3),
            "output_rows": metrics.output_rows,
            "intermediate_size_bytes": metrics.intermediate_size_bytes,
            "peak_rss_mb": round(metrics.peak_rss_bytes / 1024 / 1024, 1),
        })
        print(f"  ✓ {metrics.output_rows} rows in {duration:.2f}s")

    return result


def save_results(results, timestamp):
    """Save results to JSON and CSV files."""
    RESULTS_DIR.mkdir(exist_ok=True)

    json_file = RESULTS_DIR / f"benchmark_results_{timestamp}.json"
    with open(json_file, 'w') as f:
        json.dump(results, f, indent=2)
    print(f"\n✓ Results saved to: {json_file}")

    csv_file = RESULTS_DIR / f"benchmark_results_{timestamp}.csv"
    if results:
        fieldnames = []
        for r in results:
            fieldnames.extend(k for k in r if k not in fieldnames)
        with open(csv_file, 'w', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames)
            writer.writeheader()
            writer.writerows(results)
        print(f"✓ Results saved to: {csv_file}")

    return json_file, csv_file


def print_summary(results):
    """Print a summary table of results."""
    print(f"\n{'='*78}")
    print("BENCHMARK SUMMARY")
    print(f"{'='*78}")
    print(f"{'Benchmark':<30} {'Strategy':>10} {'Maps':>5} {'Reduces':>7} {'Runtime':>10} {'Status':>8}")
    print(f"{'-'*78}")

    for r in results:
        print(f"{r['benchmark_name']:<30} {r['strategy']:>10} {r['num_map_tasks']:>5} "
              f"{r['num_reduce_tasks']:>7} {r['total_runtime_seconds']:>9.2f}s "
              f"{'✓' if r['success'] else '✗':>8}")

    print(f"{'='*78}")

    successful = sum(1 for r in results if r['success'])
    print(f"Total: {len(results)} benchmarks, {successful} successful, "
          f"{len(results) - successful} failed")


def main():
    """Main benchmarking workflow."""
    parser = argparse.ArgumentParser(description="Benchmark the URL resolution join")
    parser.add_argument("--runs", type=int, default=1, help="Runs per benchmark")
    parser.add_argument("--input-dir", default=str(INPUT_DIR))
    parser.add_argument("--max-workers", type=int, default=4)
    parser.add_argument("--only", help="Run benchmarks whose name starts with this prefix")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    print("=" * 70)
    print("URL Resolution Join Benchmark Suite")
    print("=" * 70)

    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    benchmarks = [b for b in BENCHMARKS if not args.only or b["name"].startswith(args.only)]
    runs_per_benchmark = max(1, args.runs)

    print(f"\nRunning {len(benchmarks)} benchmarks × {runs_per_benchmark} runs = "
          f"{len(benchmarks) * runs_per_benchmark} total jobs")

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    all_results = []

    for config in benchmarks:
        for run in range(1, runs_per_benchmark + 1):
            result = run_benchmark(config, Path(args.input_dir), args.max_workers, run_number=run)
            if result:
                all_results.append(result)

    if not all_results:
        print("\n❌ No results collected")
        return 1

    json_file, _ = save_results(all_results, timestamp)
    print_summary(all_results)
    print(f"\nGenerate plots: python plot_results.py {json_file}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
