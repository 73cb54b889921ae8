from __future__ import annotations

from typing import Any, Optional


class TraceStoreError(Exception):
    pass


class DatabaseConnectionError(TraceStoreError):
    """The database could not be reached at startup."""


class SchemaError(TraceStoreError):
    """A DDL statement (or its transaction) failed while ensuring the schema."""

    def __init__(self, message: str, event_type: Optional[str] = None):
        super().__init__(message)
        self.event_type = event_type


class RowValidationSkip(Exception):
    """
    Raised while extracting a row that must be left out of the batch.

    Never escapes the row mapper: it is counted in the per-type report and
    logged at DEBUG.
    """

    def __init__(self, reason: str, msg: str, **fields: Any):
        super().__init__(msg)
        self.reason = reason
        self.msg = msg
        self.fields = fields
