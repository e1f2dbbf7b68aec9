"""Pydantic schemas for delivery log reconciliation."""

from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional

from pydantic import Field, model_validator

from dms.schemas.common import CamelModel


class SyncRequest(CamelModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    deliver_by: Optional[str] = Field(default=None, max_length=32)

    @model_validator(mode="after")
    def _check_range(self) -> "SyncRequest":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("dateFrom must not be after dateTo")
        return self


class SyncErrorOut(CamelModel):
    invoice_id: str
    error: str


class SyncSummaryOut(CamelModel):
    total: int
    linked: int
    skipped: int
    errors: List[SyncErrorOut] = Field(default_factory=list)


class SyncStatsOut(CamelModel):
    processed: int
    linked: int
    skipped: int
    errors: int


class SyncProgressOut(CamelModel):
    type: Literal["sync_progress"] = "sync_progress"
    invoice_id: str
    progress: int
    step: str
    message: str
    stats: SyncStatsOut


class SyncCompleteOut(CamelModel):
    type: Literal["sync_complete"] = "sync_complete"
    progress: int = 100
    summary: SyncSummaryOut
