#!/usr/bin/env python3
"""
Generate plots from benchmark results.
"""

import json
import sys
from collections import defaultdict
from pathlib import Path

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
import numpy as np

# Configuration
PLOTS_DIR = Path("benchmark_results/plots")

STRATEGY_COLORS = {"hash": "steelblue", "sort_merge": "orangered"}


def load_results(json_file):
    """Load benchmark results from JSON file."""
    with open(json_file, 'r') as f:
        return json.load(f)


def aggregate_runs(results):
    """
    Aggregate multiple runs of the same benchmark.
    Returns dict: benchmark_name -> {avg_runtime, std_runtime, config, ...}
    """
    by_benchmark = defaultdict(list)

    for r in results:
        if r['success']:  # Only include successful runs
            by_benchmark[r['benchmark_name']].append(r)

    aggregated = {}
    for name, runs in by_benchmark.items():
        runtimes = [r['total_runtime_seconds'] for r in runs]
        throughputs = [r['throughput_mbps'] for r in runs]
        first = runs[0]

        aggregated[name] = {
            'benchmark_name': name,
            'description': first['description'],
            'strategy': first['strategy'],
            'num_map_tasks': first['num_map_tasks'],
            'num_reduce_tasks': first['num_reduce_tasks'],
            'input_size_mb': first['input_size_mb'],
            'peak_rss_mb': float(np.max([r.get('peak_rss_mb', 0) for r in runs])),
            'avg_runtime': float(np.mean(runtimes)),
            'std_runtime': float(np.std(runtimes)),
            'min_runtime': float(np.min(runtimes)),
            'max_runtime': float(np.max(runtimes)),
            'avg_throughput': float(np.mean(throughputs)),
            'num_runs': len(runs)
        }

    return aggregated


def _save(output_file):
    plt.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(output_file, dpi=150, bbox_inches='tight')
    print(f"✓ Saved: {output_file}")
    plt.close()


def plot_input_size_scaling(aggregated, output_file):
    """Plot runtime vs input size, one line per strategy."""
    by_strategy = defaultdict(list)
    for k, v in aggregated.items():
        if k.startswith('input_size_'):
            by_strategy[v['strategy']].append((v['input_size_mb'], v['avg_runtime'], v['std_runtime']))

    if not by_strategy:
        print("⚠️  No input size scaling data found")
        return

    plt.figure(figsize=(10, 6))
    for strategy, data in sorted(by_strategy.items()):
        data.sort()
        sizes, runtimes, stds = zip(*data)
        plt.errorbar(sizes, runtimes, yerr=stds, marker='o', capsize=5, linewidth=2,
                     markersize=8, label=strategy, color=STRATEGY_COLORS.get(strategy))
    plt.xlabel('Input Size (MB)', fontsize=12)
    plt.ylabel('Runtime (seconds)', fontsize=12)
    plt.title('URL Resolution: Input Size Scaling', fontsize=14, fontweight='bold')
    plt.legend(fontsize=11)
    _save(output_file)


def plot_task_scaling(aggregated, prefix, field, label, output_file, color):
    """Plot runtime vs number of map or reduce tasks."""
    data = [(v[field], v['avg_runtime'], v['std_runtime'])
            for k, v in aggregated.items()
            if k.startswith(prefix)]

    if not data:
        print(f"⚠️  No {prefix} data found")
        return

    data.sort()
    tasks, runtimes, stds = zip(*data)

    plt.figure(figsize=(10, 6))
    plt.errorbar(tasks, runtimes, yerr=stds, marker='s', capsize=5,
                 linewidth=2, markersize=8, color=color)
    plt.xlabel(label, fontsize=12)
    plt.ylabel('Runtime (seconds)', fontsize=12)
    plt.title(f'Sort-Merge Join: {label}', fontsize=14, fontweight='bold')
    plt.xticks(tasks)
    _save(output_file)


def plot_speedup(aggregated, output_file):
    """Plot speedup for map task scaling."""
    data = [(v['num_map_tasks'], v['avg_runtime'])
            for k, v in aggregated.items()
            if k.startswith('map_scaling_')]

    if len(data) < 2:
        print("⚠️  Insufficient data for speedup plot")
        return

    data.sort()
    map_tasks, runtimes = zip(*data)

    speedups = np.array(runtimes[0]) / np.array(runtimes)

    plt.figure(figsize=(10, 6))
    plt.plot(map_tasks, speedups, marker='o', linewidth=2, markersize=8,
             label='Actual Speedup', color='blue')
    plt.plot(map_tasks, list(map_tasks), linestyle='--', linewidth=2,
             label='Ideal (Linear) Speedup', color='gray', alpha=0.7)
    plt.xlabel('Splits per Input', fontsize=12)
    plt.ylabel('Speedup', fontsize=12)
    plt.title('Sort-Merge Join Speedup vs Ideal Linear Speedup', fontsize=14, fontweight='bold')
    plt.xticks(map_tasks)
    plt.legend(fontsize=11)
    _save(output_file)


def plot_memory(aggregated, output_file):
    """Bar chart of peak RSS per input-size benchmark."""
    data = sorted((v['input_size_mb'], v['strategy'], v['peak_rss_mb'])
                  for k, v in aggregated.items() if k.startswith('input_size_'))

    if not data:
        print("⚠️  No memory data found")
        return

    labels = [f"{size:.0f} MB\n{strategy}" for size, strategy, _ in data]
    values = [rss for _, _, rss in data]
    colors = [STRATEGY_COLORS.get(strategy, 'gray') for _, strategy, _ in data]

    plt.figure(figsize=(10, 6))
    plt.bar(np.arange(len(values)), values, color=colors)
    plt.xticks(np.arange(len(values)), labels)
    plt.ylabel('Peak RSS (MB)', fontsize=12)
    plt.title('Peak Memory by Strategy', fontsize=14, fontweight='bold')
    _save(output_file)


def generate_summary_table(aggregated, output_file):
    """Generate a markdown table summarizing all results."""
    lines = [
        "# Benchmark Results Summary\n",
        "| Benchmark | Strategy | Maps | Reduces | Input (MB) | Avg Runtime (s) | Std Dev | Throughput (MB/s) | Peak RSS (MB) |",
        "|-----------|----------|------|---------|------------|-----------------|---------|-------------------|---------------|"
    ]

    for name in sorted(aggregated.keys()):
        v = aggregated[name]
        lines.append(
            f"| {v['benchmark_name']:<27} | {v['strategy']:<10} | {v['num_map_tasks']:>4} | "
            f"{v['num_reduce_tasks']:>7} | {v['input_size_mb']:>10.2f} | "
            f"{v['avg_runtime']:>15.2f} | {v['std_runtime']:>7.3f} | "
            f"{v['avg_throughput']:>17.3f} | {v['peak_rss_mb']:>13.1f} |"
        )

    with open(output_file, 'w') as f:
        f.write('\n'.join(lines) + '\n')

    print(f"✓ Saved: {output_file}")


def main():
    """Generate all plots from benchmark results."""
    if len(sys.argv) < 2:
        print("Usage: python plot_results.py <results.json>")
        print("\nExample:")
        print("  python plot_results.py benchmark_results/benchmark_results_20250113_120000.json")
        return 1

    json_file = sys.argv[1]

    if not Path(json_file).exists():
        print(f"❌ File not found: {json_file}")
        return 1

    print(f"Loading results from: {json_file}")
    results = load_results(json_file)
    print(f"✓ Loaded {len(results)} benchmark results")

    aggregated = aggregate_runs(results)
    print(f"✓ Aggregated into {len(aggregated)} unique benchmarks")

    PLOTS_DIR.mkdir(parents=True, exist_ok=True)

    print("\nGenerating plots...")
    plot_input_size_scaling(aggregated, PLOTS_DIR / "1_input_size_scaling.png")
    plot_task_scaling(aggregated, 'map_scaling_', 'num_map_tasks', 'Splits per Input',
                      PLOTS_DIR / "2_map_task_scaling.png", 'orangered')
    plot_task_scaling(aggregated, 'reduce_scaling_', 'num_reduce_tasks', 'Reduce Tasks',
                      PLOTS_DIR / "3_reduce_task_scaling.png", 'green')
    plot_speedup(aggregated, PLOTS_DIR / "4_speedup_analysis.png")
    plot_memory(aggregated, PLOTS_DIR / "5_peak_memory.png")

    generate_summary_table(aggregated, PLOTS_DIR / "results_table.md")

    print(f"\n{'='*70}")
    print(f"All plots saved to: {PLOTS_DIR}/")
    print(f"{'='*70}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
