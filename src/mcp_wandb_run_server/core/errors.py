"""Exceptions raised while reading run logs."""

from __future__ import annotations


class RunLogError(Exception):
    """Base class for run-log reading errors."""


class InvalidFormat(RunLogError, ValueError):
    """The file is not a run log (bad magic token or truncated file header).

    Fatal for the file: no partial run data is produced.
    """


class MalformedRecord(RunLogError):
    """A single logical record could not be decoded.

    Recoverable: callers skip the record and continue with the rest of the log.
    """
