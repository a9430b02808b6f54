# stocksync/sync/errors.py
"""
Failure taxonomy of a reconciliation pass.

Only FetchAborted and PersistenceFailure ever leave the pipeline; the
storefront errors are caught per SKU and rolled into the site counters.
"""
from __future__ import annotations


class SyncError(Exception):
    """Base class for reconciliation errors."""


class FetchAborted(SyncError):
    """The ERP stopped answering (or said no) part-way through paging a schema."""

    def __init__(self, schema_code: str, from_row: int, reason: str):
        self.schema_code = schema_code
        self.from_row = from_row
        self.reason = reason
        super().__init__(f"ERP fetch of {schema_code!r} aborted at row {from_row}: {reason}")


class StorefrontError(SyncError):
    code = "storefront_error"

    def __init__(self, sku: str, message: str):
        self.sku = sku
        self.message = message
        super().__init__(f"{self.code}: {sku}: {message}")

    def detail(self) -> str:
        return f"{self.code}: {self.message}"


class LookupFailed(StorefrontError):
    code = "lookup_failed"


class NotFound(StorefrontError):
    code = "not_found"


class UpdateFailed(StorefrontError):
    code = "update_failed"


class PersistenceFailure(SyncError):
    """Writing the batch audit trail failed."""
