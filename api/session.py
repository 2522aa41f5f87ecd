"""
api/session.py — Scan Session Controller
==========================================
Owns the camera, the recorder, the service clients and the health monitor
for one scan view, and drives a single end-to-end scan at a time.  The
FastAPI routes (and the CLI demo) interact with this object to start and
stop scans, poll state and read results.

State machine
-------------
    IDLE ──start──▶ CAPTURING ──stop / 15 s ceiling──▶ PROCESSING ──▶ RESULT
                                                             └────────▶ ERROR
    RESULT / ERROR ──clear──▶ IDLE          (start also resets them)

Processing runs strictly in sequence: recorder.stop → extraction →
interpretation.  Only the capture/extraction failures end in ERROR; a late
or failing interpretation falls back to a local report and a storage
failure only changes the storage badge.

Lifecycle
---------
    1. `open()`  — view mounted: acquire the camera (live mode) and start
                   health polling.
    2. `start()` / `stop()` / `request_stop()` — one scan at a time.
    3. `snapshot()` — state for display.
    4. `clear()` — back to IDLE after a result or an error.
    5. `close()` — view unmounted: drop any recording, release the camera,
                   stop polling.
"""

import asyncio
import time
from dataclasses import dataclass, field

from api.schemas import (
    HealthReport,
    RoundedBloodPressure,
    ScanResult,
    SessionSnapshot,
    SessionState,
    VitalsRecord,
)
from camera.capture import MediaSource
from camera.recorder import Recorder
from config import HIGH_STRESS_INDEX, SIMULATION_MODE
from errors import ExtractionFailure, PermissionDenied, ScanError
from report.parser import parse_report, to_dict
from services.health import HealthMonitor, check_health
from services.interpretation import InterpretationClient, round_half_up
from services.storage import ScanStore
from services.vitals import VitalsClient, normalize_vitals
from utils.logger import get_logger

logger = get_logger("api.session")

NETWORK_HINT = "Network Error: Cannot connect to rPPG server at {url}. Check CORS or use Simulation Mode."


@dataclass
class CaptureSession:
    """Bookkeeping for the recording currently (or last) in progress."""
    state: SessionState = SessionState.idle
    started_at: float = field(default_factory=time.time)
    elapsed_seconds: int = 0
    recorded_chunks: list = field(default_factory=list)

    @property
    def captured_bytes(self) -> int:
        return sum(len(c) for c in self.recorded_chunks)


def build_scan_result(vitals: VitalsRecord, interpretation: str) -> ScanResult:
    """Assemble the immutable result for a completed session."""
    return ScanResult(
        heart_rate=round_half_up(vitals.heart_rate_bpm),
        hrv=round_half_up(vitals.hrv_ms),
        blood_pressure=RoundedBloodPressure(
            systolic=round_half_up(vitals.blood_pressure.systolic),
            diastolic=round_half_up(vitals.blood_pressure.diastolic),
        ),
        stress_level="High" if vitals.stress_index > HIGH_STRESS_INDEX else "Normal",
        ai_interpretation=interpretation,
    )


class SessionController:
    """
    Manages the full lifecycle of face-scan sessions for one view.

    Create one per mounted view (`open()`), discard it with `close()`.
    """

    def __init__(
        self,
        media: MediaSource | None = None,
        recorder: Recorder | None = None,
        vitals_client: VitalsClient | None = None,
        interpreter: InterpretationClient | None = None,
        store: ScanStore | None = None,
        health_monitor: HealthMonitor | None = None,
        simulation: bool = SIMULATION_MODE,
        use_proxy: bool = False,
    ):
        self.media = media or MediaSource()
        self.recorder = recorder or Recorder(self.media)
        self.vitals_client = vitals_client or VitalsClient()
        self.interpreter = interpreter or InterpretationClient()
        self.store = store or ScanStore()
        self.health = health_monitor or HealthMonitor(self._check_services)

        self.simulation = simulation
        self.use_proxy = use_proxy

        # State
        self._state = SessionState.idle
        self._capture: CaptureSession | None = None
        self._result: ScanResult | None = None
        self._report: list = []
        self._error_message: str | None = None
        self._storage_status: str | None = None
        self._mounted = True
        self._processing_task: asyncio.Task | None = None

        logger.info("SessionController initialised (simulation=%s).", simulation)

    # ── Lifecycle ──────────────────────────────────────────────────────────

    async def open(self) -> None:
        """View mounted: acquire the camera (live mode) and start polling."""
        self._mounted = True
        self.health.start()
        if not self.simulation:
            await self._acquire_camera()

    async def close(self) -> None:
        """View unmounted: drop recording, free the camera, stop polling."""
        self._mounted = False
        self.recorder.cancel()
        self.media.release()
        await self.health.stop()
        if self._state is SessionState.capturing:
            self._state = SessionState.idle
        logger.info("SessionController closed.")

    async def retry_camera(self) -> bool:
        """'Retry Live': clear the error and try to acquire the camera again."""
        if self._state in (SessionState.capturing, SessionState.processing):
            return False
        self._error_message = None
        if self._state is SessionState.error:
            self._state = SessionState.idle
        return await self._acquire_camera()

    async def set_proxy(self, use_proxy: bool) -> HealthReport | None:
        """Toggle the backend proxy route and re-check services immediately."""
        self.use_proxy = use_proxy
        logger.info("Proxy routing %s.", "enabled" if use_proxy else "disabled")
        return await self.health.refresh()

    # ── Public API ─────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def result(self) -> ScanResult | None:
        return self._result

    @property
    def error_message(self) -> str | None:
        return self._error_message

    @property
    def storage_status(self) -> str | None:
        return self._storage_status

    @property
    def capture(self) -> CaptureSession | None:
        return self._capture

    async def start(self) -> bool:
        """
        Begin capturing.  Returns False (and changes nothing) while a scan is
        already capturing or processing.
        """
        if self._state in (SessionState.capturing, SessionState.processing):
            logger.warning("Scan already in progress (%s).", self._state.value)
            return False

        self._error_message = None
        self._result = None
        self._report = []
        self._storage_status = None
        self._capture = CaptureSession(state=SessionState.capturing)
        self._state = SessionState.capturing

        try:
            await self.recorder.start(self._capture, simulation=self.simulation, on_limit=self.stop)
        except ScanError as e:
            self._set_error(e.message)
            return False

        logger.info("Scan started.")
        return True

    async def stop(self) -> ScanResult | None:
        """
        Stop capturing and process the clip.  Returns the result, or None if
        nothing was capturing or the scan ended in ERROR.
        """
        if self._state is not SessionState.capturing:
            logger.debug("stop() ignored — session is %s.", self._state.value)
            return None

        self._set_state(SessionState.processing)
        try:
            clip = await self.recorder.stop()
            if clip is None:
                raise ScanError("Recording was not active.")
            raw = await self.vitals_client.extract(clip, simulation=self.simulation, use_proxy=self.use_proxy)
            vitals = normalize_vitals(raw)
            interpretation = await self.interpreter.interpret(vitals)
        except ScanError as e:
            self._set_error(self._user_message(e))
            return None
        except Exception as e:
            logger.exception("Scan failed with exception:")
            self._set_error(f"Unexpected error during scan: {e}")
            return None

        if not self._mounted:
            logger.info("View closed during processing — result discarded.")
            self._set_state(SessionState.idle)
            return None

        result = build_scan_result(vitals, interpretation)
        self._result = result
        self._report = parse_report(result.ai_interpretation)
        self._set_state(SessionState.result)
        logger.info(
            "Scan complete. HR=%d BPM, BP=%d/%d mmHg, stress=%s",
            result.heart_rate,
            result.blood_pressure.systolic,
            result.blood_pressure.diastolic,
            result.stress_level,
        )

        saved = await self.store.save_scan_result(result, simulation=self.simulation)
        self._storage_status = "cloud" if saved and not self.simulation else "local"
        return result

    def request_stop(self) -> bool:
        """Schedule `stop()` without waiting for processing to finish."""
        if self._state is not SessionState.capturing:
            return False
        self._processing_task = asyncio.ensure_future(self.stop())
        return True

    def clear(self) -> None:
        """Return a finished session (RESULT or ERROR) to IDLE."""
        if self._state in (SessionState.capturing, SessionState.processing):
            logger.warning("clear() ignored — scan in progress.")
            return
        self._state = SessionState.idle
        self._capture = None
        self._result = None
        self._report = []
        self._error_message = None
        self._storage_status = None
        logger.info("Session reset.")

    def report_blocks(self) -> list:
        return list(self._report)

    def snapshot(self) -> SessionSnapshot:
        capture = self._capture
        return SessionSnapshot(
            state=self._state,
            simulation=self.simulation,
            use_proxy=self.use_proxy,
            camera_active=self.media.is_active,
            elapsed_seconds=capture.elapsed_seconds if capture else 0,
            captured_bytes=capture.captured_bytes if capture else 0,
            error=self._error_message,
            result=self._result,
            report=[to_dict(b) for b in self._report],
            storage_status=self._storage_status,
            services=self.health.status,
        )

    # ── Private ────────────────────────────────────────────────────────────

    async def _acquire_camera(self) -> bool:
        try:
            await self.media.acquire()
            return True
        except PermissionDenied as e:
            self._set_error(e.message)
            return False

    async def _check_services(self) -> HealthReport:
        return await check_health(simulation=self.simulation, use_proxy=self.use_proxy)

    def _user_message(self, exc: ScanError) -> str:
        if isinstance(exc, ExtractionFailure) and exc.network:
            return NETWORK_HINT.format(url=exc.url or self.vitals_client.endpoint(self.use_proxy))
        return exc.message

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        if self._capture is not None:
            self._capture.state = state

    def _set_error(self, message: str) -> None:
        self._set_state(SessionState.error)
        self._error_message = message
        logger.error("Scan error: %s", message)
