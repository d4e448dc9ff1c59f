"""
Parsers for the two tab-delimited inputs.

Mapping line:  raw_url<TAB>canonical_url
Register line: raw_url<TAB>timestamp<TAB>ip
"""

import re

from urlresolution.errors import MalformedNumeric, MalformedRecord
from urlresolution.records import MappingRow, RegisterRow

FIELD_DELIMITER = "\t"

INT64_MIN = -2 ** 63
INT64_MAX = 2 ** 63 - 1

# Optional sign, ASCII digits only
_DECIMAL = re.compile(r"[+-]?[0-9]+\Z")


def parse_mapping_line(line: str) -> MappingRow:
    """
    Parse a mapping line into (raw_url, canonical_url).

    Fields after the second are ignored. The raw URL may be empty; the
    canonical URL may not.

    Raises:
        MalformedRecord: On an empty line, a missing field or an empty canonical URL
    """
    if not line:
        raise MalformedRecord("Empty mapping line", line=line)

    fields = line.split(FIELD_DELIMITER, 2)
    if len(fields) < 2:
        raise MalformedRecord("Mapping line needs 2 fields, got 1", line=line)
    if not fields[1]:
        raise MalformedRecord("Mapping line has an empty canonical URL", line=line)

    return MappingRow(fields[0], fields[1])


def parse_timestamp(text: str) -> int:
    """Parse a signed 64-bit decimal integer."""
    if not _DECIMAL.match(text):
        raise MalformedNumeric(f"Timestamp {text!r} is not a decimal integer")
    value = int(text)
    if value < INT64_MIN or value > INT64_MAX:
        raise MalformedNumeric(f"Timestamp {text!r} does not fit in 64 bits")
    return value


def parse_register_line(line: str) -> RegisterRow:
    """
    Parse a register line into (raw_url, timestamp, ip).

    Raises:
        MalformedRecord: If the line does not have exactly 3 fields or the ip is empty
        MalformedNumeric: If the timestamp is not a signed 64-bit decimal
    """
    fields = line.split(FIELD_DELIMITER)
    if len(fields) != 3:
        raise MalformedRecord(f"Register line needs 3 fields, got {len(fields)}", line=line)

    raw_url, timestamp, ip = fields
    if not ip:
        raise MalformedRecord("Register line has an empty ip", line=line)

    try:
        value = parse_timestamp(timestamp)
    except MalformedNumeric as e:
        e.line = line
        raise
    return RegisterRow(raw_url, value, ip)
