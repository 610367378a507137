"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class MetricVector(BaseModel):
    """One value per mini-game.  Absent values are coerced before use."""
    reaction_time_ms: Optional[float] = None
    memory_score_pct: Optional[float] = None
    tapping_rate_per_sec: Optional[float] = None
    accuracy_pct: Optional[float] = None


class TrainingSampleCreate(BaseModel):
    """A results screen rated by the user."""
    metrics: MetricVector
    reported_stress_pct: float = Field(..., ge=0, le=100)


class TrainingSampleResponse(BaseModel):
    inputs: List[float]
    label: float
    timestamp: int
    synthetic: bool


class StoredResponse(BaseModel):
    """Response for sample/record storage."""
    stored: bool


class ClearedResponse(BaseModel):
    """Response for bulk deletion."""
    cleared: bool


class AssessmentRecordIn(BaseModel):
    """An assessment record as held by the client."""
    id: str
    timestamp: datetime  # ISO-8601; naive values are taken as UTC
    stress_level: int = Field(..., ge=0, le=100)
    results: MetricVector


class AssessmentRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    timestamp: str
    stress_level: int
    results: MetricVector


class TrainResponse(BaseModel):
    success: bool
    message: str
    data_points: int


class ModelStateResponse(BaseModel):
    """Response schema for model artifact metadata."""
    model_config = ConfigDict(from_attributes=True)

    model_key: str
    trained_ts_utc: str
    n_samples: int
    source: str
    loss: Optional[float] = None
    mae: Optional[float] = None
    status: str
    message: Optional[str] = None
    forecaster_state: str


class StressPredictionRequest(BaseModel):
    history: List[AssessmentRecordIn]
    current: MetricVector


class StressPredictionResponse(BaseModel):
    """predicted_stress is null when no forecast is available."""
    predicted_stress: Optional[float] = None


class BurnoutRiskRequest(BaseModel):
    history: List[AssessmentRecordIn]


class BurnoutRiskResponse(BaseModel):
    risk: float
    trend: Literal["up", "down", "stable"]
    band: Literal["low", "moderate", "high"]


class PreferenceCreate(BaseModel):
    topic: str = Field(..., min_length=1)
    preference: str = Field(..., min_length=1)


class PreferenceLearnedResponse(BaseModel):
    learned: bool


class PreferenceContextResponse(BaseModel):
    entries: List[str]
    context_prompt: str
