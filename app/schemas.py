"""Pydantic schemas for stored documents and the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field


class YearSummary(BaseModel):
    """Per-year rollup document kept in the summary collection."""

    total: float = 0.0
    monthly: Dict[str, float] = Field(default_factory=dict)


class AddRainfallResponse(BaseModel):
    """Immediate response payload after storing a new measurement."""

    result: str = Field(..., description="Human-readable note naming the new document ID.")


class RainfallRecord(BaseModel):
    """A measurement record as exposed over HTTP."""

    id: str
    amount: Optional[float] = None
    created_at: Optional[datetime] = None
    notes: Optional[str] = None


class RainfallRecordUpdate(BaseModel):
    """Partial update for an existing measurement record."""

    amount: Optional[float] = None
    created_at: Optional[datetime] = None
    notes: Optional[str] = None


class YearSummaryResponse(YearSummary):
    year: int
