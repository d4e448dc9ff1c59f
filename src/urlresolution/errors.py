"""
Error types for the URL resolution job.

Record-fatal errors (MalformedRecord and its subclasses) reject a single
input line and let the job continue. Everything else is job-fatal.
"""

from typing import Optional


class UrlResolutionError(Exception):
    """Base error for the URL resolution job."""


class IOFailure(UrlResolutionError):
    """An input could not be read or the output could not be written."""


class InvariantViolation(UrlResolutionError):
    """A relation or the shuffle broke an invariant the join relies on."""


class NoValidRecords(UrlResolutionError):
    """Every record of an input was rejected."""


class JobCancelled(UrlResolutionError):
    """The job was cancelled at an I/O boundary."""


class MalformedRecord(UrlResolutionError):
    """A line could not be parsed into a record."""

    kind = "MalformedRecord"

    def __init__(self, message: str, line: Optional[str] = None,
                 source: Optional[str] = None, offset: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.source = source
        self.offset = offset

    def locate(self, source: str, offset: int) -> "MalformedRecord":
        """Attach the input name and byte offset of the line, returning self."""
        self.source = source
        self.offset = offset
        return self

    def __str__(self):
        if self.source is None:
            return self.message
        return f"{self.source}@{self.offset}: {self.message}"


class MalformedNumeric(MalformedRecord):
    """The timestamp field is not a signed 64-bit decimal integer."""

    kind = "MalformedNumeric"
