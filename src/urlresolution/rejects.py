"""
Collector for record-fatal errors.

Rejected lines are counted per input and error kind, logged, and optionally
appended to a side-channel file as:
source<TAB>offset<TAB>kind<TAB>message<TAB>line
"""

import logging
import os
import threading
from collections import Counter
from typing import Dict, Optional

from urlresolution.config import REJECT_LOG_LIMIT
from urlresolution.errors import IOFailure, MalformedRecord
from urlresolution.records import ENCODING, ENCODING_ERRORS

logger = logging.getLogger(__name__)


def _one_line(text: str) -> str:
    return text.replace("\t", " ").replace("\n", " ").replace("\r", " ")


class RecordErrorCollector:
    """Counts rejected records and forwards them to an optional rejects file"""

    def __init__(self, rejects_path: Optional[str] = None, log_limit: int = REJECT_LOG_LIMIT):
        self.rejects_path = rejects_path
        self.log_limit = log_limit
        self.by_kind: Counter = Counter()
        self.by_source: Counter = Counter()
        self.accepted: Counter = Counter()
        self._lock = threading.Lock()
        self._file = None

    def open(self) -> "RecordErrorCollector":
        if self.rejects_path:
            try:
                parent = os.path.dirname(os.path.abspath(self.rejects_path))
                os.makedirs(parent, exist_ok=True)
                self._file = open(self.rejects_path, 'wb')
            except OSError as e:
                raise IOFailure(f"Cannot open rejects file {self.rejects_path}: {e}") from e
        return self

    def close(self):
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def total(self) -> int:
        return sum(self.by_kind.values())

    def count_accepted(self, source: str, count: int = 1):
        """Count records of a source that passed parsing."""
        with self._lock:
            self.accepted[source] += count

    def record(self, error: MalformedRecord):
        """Count and forward one rejected record."""
        with self._lock:
            self.by_kind[error.kind] += 1
            self.by_source[error.source] += 1
            total = sum(self.by_kind.values())

            if total <= self.log_limit:
                logger.warning(f"Rejected record ({error.kind}) {error}")
            elif total == self.log_limit + 1:
                logger.warning(f"More than {self.log_limit} rejected records; "
                               "further rejects are only counted")

            if self._file is not None:
                entry = "\t".join([
                    str(error.source),
                    str(error.offset),
                    error.kind,
                    _one_line(error.message),
                    _one_line(error.line or ""),
                ]) + "\n"
                try:
                    self._file.write(entry.encode(ENCODING, ENCODING_ERRORS))
                except OSError as e:
                    raise IOFailure(f"Error writing rejects file {self.rejects_path}: {e}") from e

    def summary(self) -> Dict[str, int]:
        with self._lock:
            return dict(self.by_kind)
