"""
Join engine.

Two interchangeable strategies compute the same multiset
{(m.canonical_url, r.timestamp, r.ip) : m.raw_url == r.raw_url}:

- sort_merge_join walks a stream of tagged records ordered by
  (key bytes, stream tag) one key group at a time, so the only state it
  holds is the current group's canonical URL(s).
- hash_join loads the mapping into a dict and streams the registers past it.

Tagged records are plain tuples:
    (key_bytes, MAPPING, canonical_url)
    (key_bytes, REGISTER, (timestamp, ip))
"""

import heapq
import logging
from dataclasses import dataclass, fields
from itertools import groupby
from operator import itemgetter
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from urlresolution.config import DuplicatePolicy
from urlresolution.errors import InvariantViolation
from urlresolution.records import (
    ENCODING, ENCODING_ERRORS, MAPPING, REGISTER, MappingRow, RegisterRow, ResolvedRow,
    key_bytes,
)

logger = logging.getLogger(__name__)

TaggedRecord = Tuple[bytes, int, Any]

# Order of the shuffle: key bytes first, then MAPPING before REGISTER.
# Payloads never take part in comparisons.
SORT_KEY = itemgetter(0, 1)
GROUP_KEY = itemgetter(0)


@dataclass
class JoinStats:
    """Counters filled in while a join runs"""
    key_groups: int = 0  # sort-merge only
    mapping_rows: int = 0
    register_rows: int = 0
    matched_registers: int = 0
    unmatched_registers: int = 0
    duplicate_mappings: int = 0

    def add(self, other: "JoinStats"):
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))


def tag_mapping(row: MappingRow) -> TaggedRecord:
    return (key_bytes(row.raw_url), MAPPING, row.canonical_url)


def tag_register(row: RegisterRow) -> TaggedRecord:
    return (key_bytes(row.raw_url), REGISTER, (row.timestamp, row.ip))


def sort_run(records: List[TaggedRecord]) -> List[TaggedRecord]:
    """Sort a run in place by (key, tag); stable, so input order survives within a key."""
    records.sort(key=SORT_KEY)
    return records


def merge_runs(runs: Iterable[Iterable[TaggedRecord]]) -> Iterator[TaggedRecord]:
    """K-way merge of sorted runs. Ties keep the order of the runs."""
    return heapq.merge(*runs, key=SORT_KEY)


def project(canonical_url: str, register_payload: Tuple[int, str]) -> ResolvedRow:
    """Build the output row from a mapping payload and a register payload."""
    timestamp, ip = register_payload
    return ResolvedRow(canonical_url, timestamp, ip)


def _describe(key: bytes) -> str:
    return repr(key.decode(ENCODING, ENCODING_ERRORS))


def sort_merge_join(tagged: Iterable[TaggedRecord],
                    duplicate_policy: DuplicatePolicy = DuplicatePolicy.REJECT,
                    keep_unmatched: bool = False,
                    stats: Optional[JoinStats] = None) -> Iterator[ResolvedRow]:
    """
    Cogroup a (key, tag)-ordered stream of tagged records.

    Per key group: collect the canonical URL(s) from the MAPPING records,
    then emit one resolved row per REGISTER record (one per canonical URL
    under FAN_OUT). Groups without a mapping emit nothing unless
    keep_unmatched is set, in which case the canonical URL is empty.

    Args:
        tagged: Records ordered by SORT_KEY
        duplicate_policy: Handling of a key with several MAPPING records
        keep_unmatched: Emit unmatched registers with an empty canonical URL
        stats: Counters to update

    Yields:
        ResolvedRow for every joined register

    Raises:
        InvariantViolation: On out-of-order input, or a duplicate mapping under REJECT
    """
    if stats is None:
        stats = JoinStats()

    previous_key = None
    for key, group in groupby(tagged, key=GROUP_KEY):
        if previous_key is not None and key < previous_key:
            raise InvariantViolation(
                f"Join input out of order: key {_describe(key)} after {_describe(previous_key)}")
        previous_key = key
        stats.key_groups += 1

        canonicals: List[str] = []
        emitting = False
        for _, tag, payload in group:
            if tag == MAPPING:
                if emitting:
                    raise InvariantViolation(
                        f"Join input out of order: mapping after register for key {_describe(key)}")
                stats.mapping_rows += 1
                if not canonicals or duplicate_policy is DuplicatePolicy.FAN_OUT:
                    canonicals.append(payload)
                elif duplicate_policy is DuplicatePolicy.REJECT:
                    raise InvariantViolation(f"Duplicate mapping for raw URL {_describe(key)}")
                else:
                    stats.duplicate_mappings += 1
                    logger.warning(f"Ignoring duplicate mapping {_describe(key)} -> {payload!r}")
            elif tag == REGISTER:
                emitting = True
                stats.register_rows += 1
                if canonicals:
                    stats.matched_registers += 1
                    for canonical_url in canonicals:
                        yield project(canonical_url, payload)
                else:
                    stats.unmatched_registers += 1
                    if keep_unmatched:
                        yield project("", payload)
            else:
                raise InvariantViolation(f"Unknown stream tag {tag!r} for key {_describe(key)}")


class MappingTable:
    """In-memory raw URL -> canonical URL lookup for the hash join"""

    def __init__(self, duplicate_policy: DuplicatePolicy = DuplicatePolicy.REJECT,
                 stats: Optional[JoinStats] = None):
        self.duplicate_policy = duplicate_policy
        self.stats = stats if stats is not None else JoinStats()
        self.table: Dict[str, str] = {}
        # Only FAN_OUT keeps more than one canonical URL per key
        self.extra: Dict[str, List[str]] = {}

    def __len__(self):
        return len(self.table)

    def add(self, row: MappingRow):
        self.stats.mapping_rows += 1
        if row.raw_url not in self.table:
            self.table[row.raw_url] = row.canonical_url
        elif self.duplicate_policy is DuplicatePolicy.FAN_OUT:
            self.extra.setdefault(row.raw_url, []).append(row.canonical_url)
        elif self.duplicate_policy is DuplicatePolicy.REJECT:
            raise InvariantViolation(f"Duplicate mapping for raw URL {row.raw_url!r}")
        else:
            self.stats.duplicate_mappings += 1
            logger.warning(f"Ignoring duplicate mapping {row.raw_url!r} -> {row.canonical_url!r}")

    def load(self, rows: Iterable[MappingRow]) -> "MappingTable":
        for row in rows:
            self.add(row)
        return self

    def lookup(self, raw_url: str) -> List[str]:
        canonical_url = self.table.get(raw_url)
        if canonical_url is None:
            return []
        return [canonical_url] + self.extra.get(raw_url, [])


def hash_join(table: MappingTable, registers: Iterable[RegisterRow],
              keep_unmatched: bool = False) -> Iterator[ResolvedRow]:
    """
    Stream registers past a loaded mapping table.

    Yields the same rows as sort_merge_join over the same inputs.
    """
    stats = table.stats
    for register in registers:
        stats.register_rows += 1
        payload = (register.timestamp, register.ip)
        canonicals = table.lookup(register.raw_url)
        if canonicals:
            stats.matched_registers += 1
            for canonical_url in canonicals:
                yield project(canonical_url, payload)
        else:
            stats.unmatched_registers += 1
            if keep_unmatched:
                yield project("", payload)
