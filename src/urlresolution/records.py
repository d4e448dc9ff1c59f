"""Row types flowing through the join."""

from typing import NamedTuple

# Stream tags. Within a key, MAPPING rows sort before REGISTER rows.
MAPPING = 0
REGISTER = 1

STREAM_NAMES = {MAPPING: "mapping", REGISTER: "register"}

# Byte encoding of keys and payloads; invalid UTF-8 round-trips unchanged.
ENCODING = "utf-8"
ENCODING_ERRORS = "surrogateescape"


class MappingRow(NamedTuple):
    raw_url: str
    canonical_url: str


class RegisterRow(NamedTuple):
    raw_url: str
    timestamp: int
    ip: str


class ResolvedRow(NamedTuple):
    canonical_url: str
    timestamp: int
    ip: str


def key_bytes(raw_url: str) -> bytes:
    """Byte form of a join key; keys are ordered by these bytes."""
    return raw_url.encode(ENCODING, ENCODING_ERRORS)
