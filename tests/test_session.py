"""
Tests for the scan session state machine.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from api.schemas import HealthReport, ServiceStatus, SessionState
from api.session import NETWORK_HINT, SessionController, build_scan_result
from camera.recorder import Recorder
from errors import ExtractionFailure, PermissionDenied
from report.parser import StatusBanner
from services.interpretation import fallback_report
from services.vitals import NO_PULSE_MESSAGE

REPORT = "### REPORT_STATUS: STABLE\n\n* [BPM: 72] - Normal rhythm\n**AI Verdict:** Fine."


class FakeMedia:
    def __init__(self, active=False, deny=False):
        self.is_active = active
        self.deny = deny
        self.acquired = 0
        self.released = 0
        self.frame_size = (64, 48)
        self.fps = 30.0

    async def acquire(self):
        self.acquired += 1
        if self.deny:
            raise PermissionDenied("Camera access denied. Please check camera permissions.")
        self.is_active = True
        return self

    def release(self):
        self.released += 1
        self.is_active = False


class FakeVitals:
    def __init__(self, raw=None, error=None, gate=None, calls=None):
        self.raw = raw if raw is not None else {"heart_rate": 72.4, "hrv": 50, "stress_index": 61,
                                                 "blood_pressure": {"systolic": 118, "diastolic": 78}}
        self.error = error
        self.gate = gate
        self.calls = calls if calls is not None else []
        self.kwargs = []

    def endpoint(self, use_proxy=False):
        return "http://rppg.test:8001/analyze-video"

    async def extract(self, clip, simulation=False, use_proxy=False):
        self.calls.append("extract")
        self.kwargs.append({"simulation": simulation, "use_proxy": use_proxy, "clip": clip})
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.raw


class FakeInterpreter:
    def __init__(self, text=REPORT, calls=None):
        self.text = text
        self.calls = calls if calls is not None else []

    async def interpret(self, vitals):
        self.calls.append("interpret")
        return self.text


class FakeStore:
    def __init__(self, saved=True):
        self.saved = saved
        self.results = []

    async def save_scan_result(self, result, simulation=False):
        self.results.append((result, simulation))
        return self.saved

    async def get_scan_history(self):
        return [r.model_dump(by_alias=True) for r, _ in self.results]


def _health():
    monitor = MagicMock()
    monitor.status = None
    monitor.stop = AsyncMock()
    monitor.refresh = AsyncMock(return_value=HealthReport(
        backend=ServiceStatus(ok=True, message="Backend online"),
        rppg=ServiceStatus(ok=True, message="rPPG server online"),
    ))
    return monitor


def _controller(manual_clock, *, simulation=True, media=None, vitals=None, interpreter=None,
                store=None, encoder_factory=None):
    media = media or FakeMedia()
    kwargs = {"clock": manual_clock, "sleep": manual_clock.sleep}
    if encoder_factory is not None:
        kwargs["encoder_factory"] = encoder_factory
    return SessionController(
        media=media,
        recorder=Recorder(media, **kwargs),
        vitals_client=vitals or FakeVitals(),
        interpreter=interpreter or FakeInterpreter(),
        store=store or FakeStore(),
        health_monitor=_health(),
        simulation=simulation,
    )


class OneChunkEncoder:
    def __init__(self, source, on_data, on_stop):
        self.on_stop = on_stop
        self.active = False
        self.mime_type = "video/webm"
        self.suffix = ".webm"

    def start(self):
        self.active = True

    def request_data(self):
        pass

    def stop(self):
        self.active = False
        self.on_stop([b"clip-bytes"])

    def abort(self):
        self.active = False


@pytest.mark.asyncio
async def test_simulation_session_reaches_result(manual_clock):
    store = FakeStore()
    controller = _controller(manual_clock, store=store)

    assert await controller.start() is True
    assert controller.state is SessionState.capturing

    result = await controller.stop()

    assert controller.state is SessionState.result
    assert result.heart_rate == 72
    assert result.hrv == 50
    assert result.stress_level == "High"
    assert (result.blood_pressure.systolic, result.blood_pressure.diastolic) == (118, 78)
    assert result.ai_interpretation == REPORT
    assert isinstance(controller.report_blocks()[0], StatusBanner)
    assert store.results == [(result, True)]
    assert controller.storage_status == "local"


@pytest.mark.asyncio
async def test_live_session_saved_to_cloud(manual_clock):
    media = FakeMedia(active=True)
    vitals = FakeVitals()
    controller = _controller(manual_clock, simulation=False, media=media, vitals=vitals,
                             encoder_factory=OneChunkEncoder)
    await controller.start()
    await controller.stop()

    assert controller.state is SessionState.result
    assert controller.storage_status == "cloud"
    assert vitals.kwargs[0]["clip"].data == b"clip-bytes"
    assert vitals.kwargs[0]["simulation"] is False


@pytest.mark.asyncio
async def test_storage_failure_still_shows_result(manual_clock):
    controller = _controller(manual_clock, simulation=False, media=FakeMedia(active=True),
                             store=FakeStore(saved=False), encoder_factory=OneChunkEncoder)
    await controller.start()
    result = await controller.stop()

    assert result is not None
    assert controller.state is SessionState.result
    assert controller.storage_status == "local"


@pytest.mark.asyncio
async def test_extraction_runs_before_interpretation(manual_clock):
    calls = []
    controller = _controller(manual_clock, vitals=FakeVitals(calls=calls), interpreter=FakeInterpreter(calls=calls))
    await controller.start()
    await controller.stop()
    assert calls == ["extract", "interpret"]


@pytest.mark.asyncio
async def test_start_is_ignored_while_capturing_or_processing(manual_clock, wait_until):
    gate = asyncio.Event()
    vitals = FakeVitals(gate=gate)
    controller = _controller(manual_clock, vitals=vitals)

    assert await controller.start() is True
    assert await controller.start() is False

    assert controller.request_stop() is True
    await wait_until(lambda: vitals.calls == ["extract"])
    assert controller.state is SessionState.processing
    assert await controller.start() is False
    assert controller.request_stop() is False

    gate.set()
    await wait_until(lambda: controller.state is SessionState.result)
    assert vitals.calls == ["extract"]


@pytest.mark.asyncio
async def test_auto_stop_after_fifteen_seconds(manual_clock, wait_until):
    vitals = FakeVitals()
    controller = _controller(manual_clock, vitals=vitals)
    await controller.start()

    manual_clock.release(16)
    await wait_until(lambda: controller.state is SessionState.result)

    assert controller.capture.elapsed_seconds == 15
    assert manual_clock.now == 15.0
    assert len(vitals.calls) == 1


@pytest.mark.asyncio
async def test_missing_heart_rate_ends_in_error(manual_clock):
    store = FakeStore()
    controller = _controller(manual_clock, vitals=FakeVitals(raw={"hrv": 40}), store=store)
    await controller.start()

    assert await controller.stop() is None
    assert controller.state is SessionState.error
    assert controller.error_message == NO_PULSE_MESSAGE
    assert controller.result is None
    assert store.results == []


@pytest.mark.asyncio
async def test_network_failure_gets_connectivity_hint(manual_clock):
    error = ExtractionFailure("Failed to fetch", network=True, url="http://rppg.test:8001/analyze-video")
    controller = _controller(manual_clock, vitals=FakeVitals(error=error))
    await controller.start()
    await controller.stop()

    assert controller.state is SessionState.error
    assert controller.error_message == NETWORK_HINT.format(url="http://rppg.test:8001/analyze-video")
    assert "CORS" in controller.error_message


@pytest.mark.asyncio
async def test_live_empty_capture_ends_in_error(manual_clock):
    vitals = FakeVitals()
    controller = _controller(manual_clock, simulation=False, media=FakeMedia(active=False), vitals=vitals)
    await controller.start()
    await controller.stop()

    assert controller.state is SessionState.error
    assert "No video data captured" in controller.error_message
    assert vitals.calls == []


@pytest.mark.asyncio
async def test_unexpected_exception_is_reported(manual_clock):
    controller = _controller(manual_clock, vitals=FakeVitals(error=RuntimeError("disk full")))
    await controller.start()
    await controller.stop()
    assert controller.state is SessionState.error
    assert controller.error_message == "Unexpected error during scan: disk full"


@pytest.mark.asyncio
async def test_clear_returns_to_idle_and_allows_new_scan(manual_clock):
    controller = _controller(manual_clock)
    await controller.start()
    await controller.stop()

    controller.clear()
    assert controller.state is SessionState.idle
    assert controller.result is None
    assert controller.snapshot().report == []

    assert await controller.start() is True
    controller.clear()          # ignored while capturing
    assert controller.state is SessionState.capturing
    await controller.stop()


@pytest.mark.asyncio
async def test_start_from_error_resets_session(manual_clock):
    controller = _controller(manual_clock, vitals=FakeVitals(raw={}))
    await controller.start()
    await controller.stop()
    assert controller.state is SessionState.error

    controller.vitals_client.raw = {"heartRate": 90}
    assert await controller.start() is True
    assert controller.error_message is None
    await controller.stop()
    assert controller.state is SessionState.result


@pytest.mark.asyncio
async def test_open_with_camera_denied_then_retry(manual_clock):
    media = FakeMedia(deny=True)
    controller = _controller(manual_clock, simulation=False, media=media)

    await controller.open()
    assert controller.state is SessionState.error
    assert "Camera access denied" in controller.error_message
    controller.health.start.assert_called_once()

    media.deny = False
    assert await controller.retry_camera() is True
    assert controller.state is SessionState.idle
    assert controller.error_message is None
    assert media.is_active


@pytest.mark.asyncio
async def test_simulation_open_does_not_touch_camera(manual_clock):
    media = FakeMedia()
    controller = _controller(manual_clock, media=media)
    await controller.open()
    assert media.acquired == 0
    assert controller.state is SessionState.idle


@pytest.mark.asyncio
async def test_close_cancels_capture_and_releases_camera(manual_clock):
    media = FakeMedia(active=True)
    controller = _controller(manual_clock, simulation=False, media=media, encoder_factory=OneChunkEncoder)
    await controller.start()

    await controller.close()

    assert media.released == 1
    assert controller.state is SessionState.idle
    assert controller.recorder.state.value == "idle"
    controller.health.stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_during_processing_discards_result_and_reopens_idle(manual_clock, wait_until):
    gate = asyncio.Event()
    vitals = FakeVitals(gate=gate)
    store = FakeStore()
    controller = _controller(manual_clock, vitals=vitals, store=store)
    await controller.open()
    await controller.start()

    assert controller.request_stop() is True
    await wait_until(lambda: vitals.calls == ["extract"])
    assert controller.state is SessionState.processing

    await controller.close()
    gate.set()
    assert await controller._processing_task is None

    assert controller.state is SessionState.idle
    assert controller.result is None
    assert store.results == []

    vitals.gate = None
    await controller.open()
    assert await controller.start() is True
    assert await controller.stop() is not None
    assert controller.state is SessionState.result


@pytest.mark.asyncio
async def test_set_proxy_rechecks_services_and_routes_extraction(manual_clock):
    vitals = FakeVitals()
    controller = _controller(manual_clock, vitals=vitals)

    report = await controller.set_proxy(True)
    assert report.backend.ok
    controller.health.refresh.assert_awaited_once()

    await controller.start()
    await controller.stop()
    assert vitals.kwargs[0]["use_proxy"] is True


@pytest.mark.asyncio
async def test_snapshot_exposes_progress_and_report(manual_clock, wait_until):
    controller = _controller(manual_clock)
    await controller.start()
    manual_clock.release(2)
    await wait_until(lambda: controller.capture.elapsed_seconds == 2)

    snap = controller.snapshot()
    assert snap.state is SessionState.capturing
    assert snap.elapsed_seconds == 2
    assert snap.simulation is True

    await controller.stop()
    snap = controller.snapshot()
    assert snap.state is SessionState.result
    assert snap.report[0]["kind"] == "status"
    assert snap.storage_status == "local"


def test_build_scan_result_rounds_and_classifies(vitals):
    result = build_scan_result(vitals, fallback_report(vitals))
    assert result.heart_rate == 72
    assert result.hrv == 49
    assert result.stress_level == "Normal"
    dumped = result.model_dump(by_alias=True)
    assert set(dumped) == {"heartRate", "hrv", "bloodPressure", "stressLevel", "timestamp", "aiInterpretation"}
    with pytest.raises(Exception):
        result.heart_rate = 99
