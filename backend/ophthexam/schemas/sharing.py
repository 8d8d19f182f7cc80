from __future__ import annotations

from pydantic import BaseModel, Field


class ShareReportRequest(BaseModel):
    exam_id: str = Field(min_length=1)
    expires_in_hours: float | None = Field(default=None, gt=0, le=24 * 366)


class ShareReportResponse(BaseModel):
    share_url: str
    expires_at: str


class CleanupResponse(BaseModel):
    success: bool
    cleaned_count: int
    exam_ids: list[str]
    timestamp: str
