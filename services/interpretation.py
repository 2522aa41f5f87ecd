"""
services/interpretation.py — AI clinical interpretation with local fallback
============================================================================
Asks Gemini to interpret a `VitalsRecord` in the tagged report dialect that
`report.parser` understands.  The call is bounded by a hard deadline
(8 s by default); if it is late or fails, a deterministic report is built
locally from simple thresholds so a session always ends with a report.

For health screening interpretation ONLY — non-diagnostic.
"""

import math

from google import genai
from google.genai import types

from api.schemas import VitalsRecord
from config import (
    ELEVATED_HR_BPM,
    GEMINI_API_KEY,
    GEMINI_MODEL,
    GEMINI_REQUEST_TIMEOUT_MS,
    GEMINI_TEMPERATURE,
    INTERPRETATION_DEADLINE_MS,
)
from errors import InterpretationFailure
from utils.logger import get_logger
from utils.timing import DeadlineExceeded, with_deadline

logger = get_logger("services.interpretation")

PROMPT_TEMPLATE = """As a medical AI, interpret these rPPG vital signs precisely:
- Heart Rate: {heartRate} bpm
- HRV: {hrv} ms
- Blood Pressure: {systolic}/{diastolic} mmHg

CRITICAL: Use these TAGS for metrics: [BPM: value], [BP: value], [HRV: value].

FORMAT:

### [REPORT_STATUS] (OPTIMAL | STABLE | ATTENTION)

**Summary:** [1 sentence]

**Clinical Findings:**
*   [BPM: value] - [Interpretation]
*   [BP: value] - [Interpretation]
*   [HRV: value] - [Interpretation]

**Clinical Recommendations:**
*   [Action 1]
*   [Action 2]

**AI Verdict:** [Final 10-word summary]
"""


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive readings (73.5 → 74)."""
    return int(math.floor(value + 0.5))


def prompt_payload(vitals: VitalsRecord) -> dict:
    """The structured fields the interpretation prompt is built from."""
    return {
        "heartRate": round_half_up(vitals.heart_rate_bpm),
        "hrv": round_half_up(vitals.hrv_ms),
        "bloodPressure": {
            "systolic": round_half_up(vitals.blood_pressure.systolic),
            "diastolic": round_half_up(vitals.blood_pressure.diastolic),
        },
    }


def build_prompt(vitals: VitalsRecord) -> str:
    payload = prompt_payload(vitals)
    return PROMPT_TEMPLATE.format(
        heartRate=payload["heartRate"],
        hrv=payload["hrv"],
        systolic=payload["bloodPressure"]["systolic"],
        diastolic=payload["bloodPressure"]["diastolic"],
    )


def fallback_report(vitals: VitalsRecord) -> str:
    """Deterministic report used when the remote interpretation is unavailable."""
    hr = round_half_up(vitals.heart_rate_bpm)
    status = "ELEVATED" if hr > ELEVATED_HR_BPM else "STABLE"
    systolic = round_half_up(vitals.blood_pressure.systolic)
    diastolic = round_half_up(vitals.blood_pressure.diastolic)
    return (
        f"### REPORT_STATUS: {status}\n\n"
        "**Summary:** Signals processed via local engine fallback.\n\n"
        "**Clinical Findings:**\n"
        f"* [BPM: {hr}] - Normal rhythm detected.\n"
        f"* [BP: {systolic}/{diastolic}] - Estimated values.\n\n"
        "**AI Verdict:** Data captured and stored in local history."
    )


class InterpretationClient:
    """Gemini via the google-genai SDK, bounded by a deadline."""

    def __init__(
        self,
        api_key: str | None = GEMINI_API_KEY,
        model: str = GEMINI_MODEL,
        temperature: float = GEMINI_TEMPERATURE,
        request_timeout_ms: int = GEMINI_REQUEST_TIMEOUT_MS,
        client_factory=genai.Client,
    ):
        self._model = model
        self._temperature = temperature
        self._client = None
        if api_key:
            # The SDK timeout must never cut a call off before the interpretation deadline.
            timeout_ms = max(request_timeout_ms, INTERPRETATION_DEADLINE_MS)
            self._client = client_factory(api_key=api_key, http_options=types.HttpOptions(timeout=timeout_ms))

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def generate(self, vitals: VitalsRecord) -> str:
        """
        One remote interpretation call, bounded only by the SDK request timeout.

        Raises InterpretationFailure (or the SDK's own errors) on any problem.
        """
        if self._client is None:
            raise InterpretationFailure("No Gemini API key configured.")

        response = await self._client.aio.models.generate_content(
            model=self._model,
            contents=build_prompt(vitals),
            config=types.GenerateContentConfig(temperature=self._temperature),
        )
        text = (response.text or "").strip()
        if not text:
            raise InterpretationFailure("Gemini returned an empty interpretation.")
        return text

    async def interpret(self, vitals: VitalsRecord, deadline_ms: int = INTERPRETATION_DEADLINE_MS) -> str:
        """
        Remote interpretation if it settles within `deadline_ms`, otherwise
        the local fallback.  Never raises for remote problems.
        """
        try:
            text = await with_deadline(self.generate(vitals), deadline_ms / 1000.0)
            logger.info("AI interpretation received (%d chars).", len(text))
            return text
        except DeadlineExceeded:
            logger.warning("AI interpretation exceeded %d ms — using local fallback.", deadline_ms)
        except InterpretationFailure as e:
            logger.warning("AI interpretation unavailable (%s) — using local fallback.", e)
        except Exception as e:
            logger.warning("AI interpretation failed (%r) — using local fallback.", e)
        return fallback_report(vitals)
