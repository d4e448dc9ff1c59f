"""
Line-oriented input and output.

Inputs are read in binary mode so split boundaries are exact byte offsets,
then decoded as UTF-8 with surrogateescape so any byte sequence survives the
round trip to the output.
"""

import logging
import os
import threading
from typing import Iterable, Iterator, Optional, Tuple

from urlresolution.errors import IOFailure, JobCancelled
from urlresolution.records import ENCODING, ENCODING_ERRORS, ResolvedRow

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 1024 * 1024


def _check_cancelled(cancel_event: Optional[threading.Event]):
    if cancel_event is not None and cancel_event.is_set():
        raise JobCancelled("Job cancelled")


def read_lines(path: str, start_offset: int = 0, end_offset: Optional[int] = None,
               cancel_event: Optional[threading.Event] = None) -> Iterator[Tuple[int, str]]:
    """
    Lazily read the lines of one input split.

    A split owns every line that starts inside [start_offset, end_offset).
    When start_offset > 0 the partial line before the first line start is
    skipped; the last owned line is read to its end even past end_offset.

    Args:
        path: Input file path
        start_offset: Byte offset where the split starts
        end_offset: Byte offset where the split ends (None reads to EOF)
        cancel_event: Checked before every line

    Yields:
        (byte_offset, line) tuples with the LF or CRLF terminator removed

    Raises:
        IOFailure: If the file cannot be opened or read
        JobCancelled: If cancel_event is set
    """
    try:
        f = open(path, 'rb')
    except OSError as e:
        raise IOFailure(f"Cannot read input {path}: {e}") from e

    with f:
        try:
            if start_offset > 0:
                # Land on the first line that starts at or after start_offset
                f.seek(start_offset - 1)
                f.readline()

            position = f.tell()
            while end_offset is None or position < end_offset:
                _check_cancelled(cancel_event)
                raw = f.readline()
                if not raw:
                    break

                line_start = position
                position += len(raw)

                if raw.endswith(b'\n'):
                    raw = raw[:-1]
                    if raw.endswith(b'\r'):
                        raw = raw[:-1]

                yield line_start, raw.decode(ENCODING, ENCODING_ERRORS)
        except OSError as e:
            raise IOFailure(f"Error reading input {path}: {e}") from e


def format_row(row: ResolvedRow) -> str:
    """Format an output row as canonical<TAB>timestamp<TAB>ip<LF>."""
    return f"{row.canonical_url}\t{row.timestamp}\t{row.ip}\n"


class LineSink:
    """Writes resolved rows to a file opened in truncate mode"""

    def __init__(self, path: str, cancel_event: Optional[threading.Event] = None):
        self.path = path
        self.cancel_event = cancel_event
        self.rows_written = 0
        self.bytes_written = 0
        self._file = None

    def open(self) -> "LineSink":
        """Open (and truncate) the destination, creating parent directories."""
        try:
            parent = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(parent, exist_ok=True)
            self._file = open(self.path, 'wb')
        except OSError as e:
            raise IOFailure(f"Cannot open output {self.path}: {e}") from e
        logger.debug(f"Opened output {self.path} in truncate mode")
        return self

    def close(self):
        if self._file is None:
            return
        try:
            self._file.close()
        except OSError as e:
            raise IOFailure(f"Cannot close output {self.path}: {e}") from e
        finally:
            self._file = None

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _write_bytes(self, data: bytes):
        if self._file is None:
            raise IOFailure(f"Output {self.path} is not open")
        try:
            self._file.write(data)
        except OSError as e:
            raise IOFailure(f"Error writing output {self.path}: {e}") from e
        self.bytes_written += len(data)

    def write(self, row: ResolvedRow):
        """Append one row."""
        _check_cancelled(self.cancel_event)
        self._write_bytes(format_row(row).encode(ENCODING, ENCODING_ERRORS))
        self.rows_written += 1

    def write_all(self, rows: Iterable[ResolvedRow]) -> int:
        """Append every row of an iterable, returning how many were written."""
        before = self.rows_written
        for row in rows:
            self.write(row)
        return self.rows_written - before

    def append_part(self, part_path: str) -> int:
        """
        Append the contents of an already formatted part file.

        Args:
            part_path: File written by another LineSink

        Returns:
            Number of rows appended
        """
        rows = 0
        try:
            with open(part_path, 'rb') as part:
                while True:
                    _check_cancelled(self.cancel_event)
                    chunk = part.read(COPY_BUFFER_SIZE)
                    if not chunk:
                        break
                    rows += chunk.count(b'\n')
                    self._write_bytes(chunk)
        except OSError as e:
            raise IOFailure(f"Cannot read part file {part_path}: {e}") from e
        self.rows_written += rows
        return rows

