"""
services/vitals.py — rPPG extraction client
============================================
Sends a recorded clip to the external rPPG server (directly, or through the
backend proxy route) and adapts its JSON into a canonical `VitalsRecord`.

The server has been seen answering with either naming convention:

    {"heart_rate": 71.8, "blood_pressure": {"systolic": 118, ...}, ...}
    {"heartRate": 71.8, "bloodPressure": {"systolic": 118, ...}, ...}

`normalize_vitals` accepts both.  Heart rate is mandatory; HRV, blood
pressure and stress index fall back to fixed defaults when missing.
"""

import math

import httpx

from api.schemas import BloodPressure, VitalsRecord
from camera.recorder import Clip
from config import (
    ANALYZE_PATH,
    BACKEND_BASE_URL,
    DEFAULT_DIASTOLIC,
    DEFAULT_HRV_MS,
    DEFAULT_STRESS_INDEX,
    DEFAULT_SYSTOLIC,
    EXTRACTION_TIMEOUT_SECONDS,
    RPPG_BASE_URL,
    RPPG_PROXY_PATH,
    SIMULATED_VITALS,
)
from errors import ExtractionFailure
from utils.logger import get_logger

logger = get_logger("services.vitals")

NO_PULSE_MESSAGE = "The diagnostic engine could not extract a pulse from this video."


def _first(raw: dict, *keys):
    """Value of the first key present with a non-null value."""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _as_float(value, field: str, default: float) -> float:
    if value is None:
        # Lenient on purpose: a missing field is defaulted, not rejected.
        logger.warning("Extractor omitted %s — defaulting to %s.", field, default)
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Extractor sent non-numeric %s=%r — defaulting to %s.", field, value, default)
        return default


def normalize_vitals(raw: dict) -> VitalsRecord:
    """
    Adapt a raw extractor response (snake_case or camelCase) to a
    `VitalsRecord`.

    Raises
    ------
    ExtractionFailure
        No usable heart rate in the response.
    """
    if not isinstance(raw, dict):
        raise ExtractionFailure(NO_PULSE_MESSAGE)

    heart_rate = _first(raw, "heart_rate", "heartRate")
    try:
        heart_rate = float(heart_rate)
    except (TypeError, ValueError):
        heart_rate = math.nan
    if not math.isfinite(heart_rate):
        logger.error("No usable heart rate in extractor response (keys: %s).", sorted(raw))
        raise ExtractionFailure(NO_PULSE_MESSAGE)

    bp = _first(raw, "blood_pressure", "bloodPressure")
    if not isinstance(bp, dict):
        bp = {}

    return VitalsRecord(
        heart_rate_bpm=heart_rate,
        hrv_ms=_as_float(_first(raw, "hrv", "hrv_ms", "hrvMs"), "hrv", DEFAULT_HRV_MS),
        blood_pressure=BloodPressure(
            systolic=_as_float(bp.get("systolic"), "systolic", DEFAULT_SYSTOLIC),
            diastolic=_as_float(bp.get("diastolic"), "diastolic", DEFAULT_DIASTOLIC),
        ),
        stress_index=_as_float(_first(raw, "stress_index", "stressIndex"), "stress_index", DEFAULT_STRESS_INDEX),
    )


class VitalsClient:
    """Client for the `analyze-video` extraction endpoint."""

    def __init__(
        self,
        base_url: str = RPPG_BASE_URL,
        analyze_path: str = ANALYZE_PATH,
        proxy_url: str | None = None,
        timeout: float = EXTRACTION_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.direct_url = f"{base_url.rstrip('/')}{analyze_path}"
        self.proxy_url = proxy_url or f"{BACKEND_BASE_URL.rstrip('/')}{RPPG_PROXY_PATH}"
        self._timeout = timeout
        self._transport = transport

    def endpoint(self, use_proxy: bool = False) -> str:
        return self.proxy_url if use_proxy else self.direct_url

    async def extract(self, clip: Clip, simulation: bool = False, use_proxy: bool = False) -> dict:
        """
        Return the extractor's raw JSON for `clip`.

        In simulation mode a fixed synthetic record is returned and no
        request is made.
        """
        if simulation:
            logger.info("Simulation mode — returning synthetic vitals.")
            return dict(SIMULATED_VITALS)

        url = self.endpoint(use_proxy)
        files = {"file": (clip.filename, clip.data, clip.mime_type)}
        logger.info("Posting %d-byte clip to %s", clip.size, url)

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.post(url, files=files)
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPStatusError as e:
            raise ExtractionFailure(
                f"rPPG server returned HTTP {e.response.status_code}: {e.response.text[:200]}",
                url=url,
            )
        except httpx.TransportError as e:
            logger.error("Cannot reach rPPG server at %s: %s", url, e)
            raise ExtractionFailure(f"Failed to fetch {url}: {e}", network=True, url=url)
        except ValueError as e:
            raise ExtractionFailure(f"rPPG server returned invalid JSON: {e}", url=url)

        logger.info("Extractor response keys: %s", sorted(data) if isinstance(data, dict) else type(data).__name__)
        return data

    async def analyze(self, clip: Clip, simulation: bool = False, use_proxy: bool = False) -> VitalsRecord:
        """`extract` followed by `normalize_vitals`."""
        return normalize_vitals(await self.extract(clip, simulation=simulation, use_proxy=use_proxy))
