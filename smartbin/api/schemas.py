from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field


class ManualRecordRequest(BaseModel):
    category: str = Field(..., description="Waste category chosen by the user")


class ClassificationModel(BaseModel):
    category: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    source: str
    details: str | None = None


class ScanRecordModel(BaseModel):
    id: int
    category: str
    created_at: str
    source: str | None = None


class ScanResponse(BaseModel):
    status: str
    classification: ClassificationModel
    record: ScanRecordModel


class HistoryResponse(BaseModel):
    query: str | None = None
    records: List[ScanRecordModel] = Field(default_factory=list)


class StatsResponse(BaseModel):
    counts: Dict[str, int]
    total: int


class WeatherResponse(BaseModel):
    temperature: int
    description: str
    humidity: int
    icon: str
    city: str
    source: str


__all__ = [
    "ManualRecordRequest",
    "ClassificationModel",
    "ScanRecordModel",
    "ScanResponse",
    "HistoryResponse",
    "StatsResponse",
    "WeatherResponse",
]
