"""
api/schemas.py — Pydantic data model & request/response models
================================================================
Canonical records flowing through the scan pipeline, plus the DTOs the
FastAPI routes accept and return.

`ScanResult` is frozen once built and serialises with camelCase aliases,
the shape the scan-history backend stores.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ── Vitals ───────────────────────────────────────────────────────────────────


class BloodPressure(BaseModel):
    systolic: float
    diastolic: float


class VitalsRecord(BaseModel):
    """
    Canonical vitals after normalisation.  Every field is always present;
    see `services.vitals.normalize_vitals` for the defaults.
    """
    heart_rate_bpm: float
    hrv_ms: float
    blood_pressure: BloodPressure
    stress_index: float


# ── Scan result ──────────────────────────────────────────────────────────────


class RoundedBloodPressure(BaseModel):
    model_config = ConfigDict(frozen=True)

    systolic: int
    diastolic: int


class ScanResult(BaseModel):
    """One completed session; immutable after creation."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    heart_rate: int
    hrv: int
    blood_pressure: RoundedBloodPressure
    stress_level: Literal["Normal", "High"]
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    ai_interpretation: str


# ── Service health ───────────────────────────────────────────────────────────


class ServiceStatus(BaseModel):
    ok: bool
    message: str
    error_type: Optional[Literal["CORS", "NETWORK", "OTHER"]] = None
    raw_error: Optional[str] = None


class HealthReport(BaseModel):
    backend: ServiceStatus
    rppg: ServiceStatus
    checked_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


# ── Session view ─────────────────────────────────────────────────────────────


class SessionState(str, Enum):
    idle = "idle"
    capturing = "capturing"
    processing = "processing"
    result = "result"
    error = "error"


class SessionSnapshot(BaseModel):
    """Read-only view of the controller handed to the UI layer."""
    state: SessionState
    simulation: bool
    use_proxy: bool
    camera_active: bool
    elapsed_seconds: int = 0
    captured_bytes: int = 0
    error: Optional[str] = None
    result: Optional[ScanResult] = None
    report: list[dict[str, Any]] = []
    storage_status: Optional[Literal["cloud", "local"]] = None
    services: Optional[HealthReport] = None


# ── Request models ───────────────────────────────────────────────────────────


class ProxyRequest(BaseModel):
    use_proxy: bool = Field(..., description="Route extraction through the backend proxy.")


class ReportText(BaseModel):
    text: str = Field(..., description="Interpretation text to parse into report blocks.")
