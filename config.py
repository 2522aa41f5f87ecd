"""
config.py — Centralised configuration & timing constants
=========================================================
Every tunable constant in the project lives here so that the rest of the
codebase can import from a single source of truth.

Service endpoints, the Gemini key and a handful of runtime switches can be
overridden through environment variables; everything else is a plain
constant.
"""

import os


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ─── Camera ──────────────────────────────────────────────────────────────────
CAMERA_INDEX: int = int(os.environ.get("CAMERA_INDEX", "0"))
CAMERA_WIDTH: int = 1280
CAMERA_HEIGHT: int = 720
CAMERA_FPS: int = 30            # Requested FPS; actual FPS may differ
CAMERA_OPEN_TIMEOUT: float = 3.0   # Seconds to wait for the first frame

# ─── Recording ───────────────────────────────────────────────────────────────
# The 15 s ceiling is fixed for every session; it is never a call parameter.
RECORDING_CEILING_SECONDS: int = 15
TICK_SECONDS: float = 1.0       # Elapsed-time tick and encoder flush cadence

# Codec preference, tried in order once per recording.
# (fourcc, file suffix, mime type)
CODEC_PREFERENCE = [
    ("VP80", ".webm", "video/webm;codecs=vp8"),   # preferred
    ("MJPG", ".avi", "video/x-msvideo"),          # generic fallback
]

# ─── Simulation ──────────────────────────────────────────────────────────────
SIMULATION_MODE: bool = _env_flag("SIMULATION_MODE")

# Fixed synthetic extractor response used in simulation mode
SIMULATED_VITALS = {
    "heart_rate": 72.4,
    "hrv": 52.0,
    "blood_pressure": {"systolic": 118, "diastolic": 78},
    "stress_index": 28.0,
}

# ─── rPPG extraction service ─────────────────────────────────────────────────
RPPG_BASE_URL: str = os.environ.get("RPPG_BASE_URL", "http://localhost:8001")
ANALYZE_PATH: str = os.environ.get("RPPG_ANALYZE_PATH", "/analyze-video")
RPPG_HEALTH_PATH: str = "/health"
EXTRACTION_TIMEOUT_SECONDS: float = 120.0   # Server-side rPPG on a 15 s clip is slow

# ─── Storage backend (scan history REST API) ─────────────────────────────────
BACKEND_BASE_URL: str = os.environ.get("BACKEND_BASE_URL", "http://localhost:3000")
BACKEND_HEALTH_PATH: str = "/api/health"
SCANS_PATH: str = "/api/scans"
RPPG_PROXY_PATH: str = "/api/rppg/analyze-video"   # Backend route forwarding to the rPPG server
STORAGE_TIMEOUT_SECONDS: float = 10.0
LOCAL_HISTORY_PATH: str = os.environ.get("LOCAL_HISTORY_PATH", "data/scan_history.json")

# ─── Health polling ──────────────────────────────────────────────────────────
HEALTH_POLL_SECONDS: float = 10.0
HEALTH_TIMEOUT_SECONDS: float = 5.0
# Origin presented on health checks; a service that answers without allowing
# this origin is reported as a CORS problem.
APP_ORIGIN: str = os.environ.get("APP_ORIGIN", "http://localhost:5173")

# ─── AI interpretation (Gemini) ──────────────────────────────────────────────
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
GEMINI_MODEL: str = os.environ.get("GEMINI_MODEL", "gemini-1.5-pro")
GEMINI_REQUEST_TIMEOUT_MS: int = 30000   # SDK-level; the interpretation deadline is the real bound
GEMINI_TEMPERATURE: float = 0.2
INTERPRETATION_DEADLINE_MS: int = 8000      # Hard deadline before the local fallback

# ─── Vitals defaults & thresholds ────────────────────────────────────────────
# Substituted when the extractor omits a field (heart rate is never defaulted)
DEFAULT_HRV_MS: float = 45.0
DEFAULT_SYSTOLIC: float = 120.0
DEFAULT_DIASTOLIC: float = 80.0
DEFAULT_STRESS_INDEX: float = 0.0

ELEVATED_HR_BPM: int = 100      # Fallback report: rounded HR above this → ELEVATED
HIGH_STRESS_INDEX: float = 50.0  # Stress index above this → "High"

# ─── API ─────────────────────────────────────────────────────────────────────
API_TITLE = "Face-Scan Vitals Session API"
API_VERSION = "0.2.0"
API_HOST: str = os.environ.get("API_HOST", "0.0.0.0")
API_PORT: int = int(os.environ.get("API_PORT", "8000"))
CORS_ORIGINS = ["*"]

# ─── Logging ─────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("LOG_FILE")       # Optional plain-text log file
