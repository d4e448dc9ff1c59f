#!/usr/bin/env python3
"""
Generate benchmark inputs for the URL resolution join.

Writes a mapping file with one row per raw URL and a register file whose
raw URLs follow a Zipf distribution, so a few URLs receive most of the hits.
"""

import argparse
import os
from pathlib import Path

import numpy as np

# Configuration
INPUT_DIR = Path("shared") / "input"

# (name, mapping keys, register rows)
TARGETS = [
    ("small", 1_000, 100_000),
    ("medium", 10_000, 1_000_000),
    ("large", 100_000, 5_000_000),
]

CHUNK_ROWS = 100_000


def raw_url(i: int) -> str:
    return f"http://site{i % 997}.example.com/page/{i}?ref={i % 13}"


def canonical_url(i: int) -> str:
    return f"http://site{i % 997}.example.com/page/{i}"


def generate_skewed_keys(num_rows, num_keys, zipf_param=1.5, rng=None):
    """Zipf-distributed key ids in [0, num_keys)."""
    rng = rng if rng is not None else np.random.default_rng()
    keys = rng.zipf(zipf_param, num_rows)
    return np.clip(keys, 1, num_keys) - 1


def write_mapping(path: Path, num_keys: int) -> int:
    """Write num_keys mapping rows; returns the file size."""
    with open(path, 'w', encoding='utf-8', newline='\n') as f:
        for i in range(num_keys):
            f.write(f"{raw_url(i)}\t{canonical_url(i)}\n")
    return path.stat().st_size


def write_registers(path: Path, num_rows: int, num_keys: int, zipf_param: float,
                    orphan_ratio: float, seed: int) -> int:
    """
    Write num_rows register rows; returns the file size.

    Args:
        path: Output file
        num_rows: Register rows to write
        num_keys: Size of the mapping key domain
        zipf_param: Skew of the key distribution
        orphan_ratio: Fraction of rows whose URL has no mapping
        seed: Random seed
    """
    rng = np.random.default_rng(seed)
    base_ts = 1_700_000_000_000

    with open(path, 'w', encoding='utf-8', newline='\n') as f:
        for start in range(0, num_rows, CHUNK_ROWS):
            n = min(CHUNK_ROWS, num_rows - start)
            keys = generate_skewed_keys(n, num_keys, zipf_param, rng)
            orphans = rng.random(n) < orphan_ratio
            timestamps = base_ts + rng.integers(0, 86_400_000, size=n)
            octets = rng.integers(1, 255, size=(n, 4))

            lines = []
            for key, orphan, ts, ip in zip(keys, orphans, timestamps, octets):
                url = raw_url(num_keys + int(key)) if orphan else raw_url(int(key))
                lines.append(f"{url}\t{int(ts)}\t{ip[0]}.{ip[1]}.{ip[2]}.{ip[3]}\n")
            f.write("".join(lines))

    return path.stat().st_size


def main():
    parser = argparse.ArgumentParser(description="Generate mapping and register benchmark inputs")
    parser.add_argument("--output-dir", default=str(INPUT_DIR))
    parser.add_argument("--zipf", type=float, default=1.5, help="Zipf skew of register keys")
    parser.add_argument("--orphan-ratio", type=float, default=0.05,
                        help="Fraction of registers without a mapping")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--only", choices=[name for name, _, _ in TARGETS],
                        help="Generate a single target")
    args = parser.parse_args()

    output_dir = Path(args.output_dir)
    os.makedirs(output_dir, exist_ok=True)

    for name, num_keys, num_rows in TARGETS:
        if args.only and name != args.only:
            continue
        mapping_path = output_dir / f"mapping_{name}.tsv"
        register_path = output_dir / f"register_{name}.tsv"

        print(f"Generating {name}: {num_keys} mappings, {num_rows} registers...")
        mapping_size = write_mapping(mapping_path, num_keys)
        register_size = write_registers(register_path, num_rows, num_keys,
                                        args.zipf, args.orphan_ratio, args.seed)
        print(f"  ✓ {mapping_path} ({mapping_size / (1024 * 1024):.2f} MB)")
        print(f"  ✓ {register_path} ({register_size / (1024 * 1024):.2f} MB)")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
