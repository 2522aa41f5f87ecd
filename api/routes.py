"""
api/routes.py — FastAPI route definitions
==========================================
All HTTP endpoints are defined here and wired into the app via
`app.include_router(router)` in `api/app.py`.  The session controller is
not a module global: it lives on `app.state` for the lifetime of the app
and reaches handlers through the `get_controller` dependency.

Endpoint summary
----------------
    GET  /health              — Liveness probe
    GET  /scan/status         — Session snapshot (state, elapsed time, error, result)
    POST /scan/start          — Begin a capture (auto-stops at 15 s)
    POST /scan/stop           — Stop early and start processing
    GET  /scan/result         — Result + parsed report once processing is done
    POST /scan/reset          — Clear a finished session
    POST /camera/retry        — Re-acquire the camera after a permission error
    POST /settings/proxy      — Route extraction through the backend proxy
    GET  /services/status     — Latest health report for backend & rPPG server
    GET  /scans/history       — Stored scan results
    POST /report/parse        — Parse interpretation text into report blocks
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from api.schemas import ProxyRequest, ReportText, SessionSnapshot, SessionState
from api.session import SessionController
from report.parser import parse_report, to_dict
from utils.logger import get_logger

logger = get_logger("api.routes")

router = APIRouter()


def get_controller(request: Request) -> SessionController:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Scan view not initialised.")
    return controller


# ── Health ────────────────────────────────────────────────────────────────────

@router.get("/health")
async def health():
    """Simple liveness check."""
    return {"status": "ok", "service": "Face-Scan Vitals Session"}


# ── Scan Control ──────────────────────────────────────────────────────────────

@router.get("/scan/status")
async def scan_status(controller: SessionController = Depends(get_controller)) -> SessionSnapshot:
    """Current session state, elapsed seconds while capturing, error or result."""
    return controller.snapshot()


@router.post("/scan/start")
async def start_scan(controller: SessionController = Depends(get_controller)):
    """
    Begin capturing.  The capture stops by itself after 15 seconds, or
    earlier via POST /scan/stop.

    Returns 409 if a scan is already capturing or processing, or 500 if the
    recording engine could not start.
    """
    if controller.state in (SessionState.capturing, SessionState.processing):
        raise HTTPException(status_code=409, detail="A scan is already in progress.")

    if not await controller.start():
        raise HTTPException(status_code=500, detail=controller.error_message or "Could not start scan.")

    return {
        "status": "capturing",
        "message": "Capture started. Poll GET /scan/status for progress.",
    }


@router.post("/scan/stop")
async def stop_scan(controller: SessionController = Depends(get_controller)):
    """Stop the capture early; processing continues in the background."""
    if not controller.request_stop():
        raise HTTPException(status_code=409, detail="No capture in progress.")
    return {"status": "processing", "message": "Capture stopped. Processing…"}


@router.get("/scan/result")
async def scan_result(controller: SessionController = Depends(get_controller)):
    """
    Retrieve the result and its parsed report.

    202 while capturing/processing, 404 before any scan, 500 after an error.
    """
    state = controller.state

    if state in (SessionState.capturing, SessionState.processing):
        raise HTTPException(status_code=202, detail="Scan still in progress.")
    if state is SessionState.idle:
        raise HTTPException(status_code=404, detail="No scan has been run yet.")
    if state is SessionState.error:
        raise HTTPException(status_code=500, detail=controller.error_message or "Scan failed.")

    result = controller.result
    if result is None:
        raise HTTPException(status_code=500, detail="Result unavailable.")

    return {
        "result": result.model_dump(by_alias=True),
        "report": [to_dict(b) for b in controller.report_blocks()],
        "storage_status": controller.storage_status,
    }


@router.post("/scan/reset")
async def scan_reset(controller: SessionController = Depends(get_controller)):
    """Clear a finished session so a new scan can be started."""
    if controller.state in (SessionState.capturing, SessionState.processing):
        raise HTTPException(status_code=409, detail="A scan is in progress.")
    controller.clear()
    return {"status": "ok", "message": "Session reset. Ready for a new scan."}


# ── Camera & Services ─────────────────────────────────────────────────────────

@router.post("/camera/retry")
async def camera_retry(controller: SessionController = Depends(get_controller)):
    """Try to acquire the camera again (after a permission error)."""
    if controller.simulation:
        return {"status": "ok", "message": "Simulation mode — camera not used."}
    if not await controller.retry_camera():
        raise HTTPException(status_code=503, detail=controller.error_message or "Camera unavailable.")
    return {"status": "ok", "message": "Camera acquired."}


@router.post("/settings/proxy")
async def set_proxy(body: ProxyRequest, controller: SessionController = Depends(get_controller)):
    services = await controller.set_proxy(body.use_proxy)
    return {"use_proxy": controller.use_proxy, "services": services}


@router.get("/services/status")
async def services_status(controller: SessionController = Depends(get_controller)):
    """Latest health report; checked now if none has been taken yet."""
    status = controller.health.status or await controller.health.refresh()
    if status is None:
        raise HTTPException(status_code=503, detail="Health check unavailable.")
    return status


@router.get("/scans/history")
async def scans_history(controller: SessionController = Depends(get_controller)):
    return {"scans": await controller.store.get_scan_history()}


# ── Report ────────────────────────────────────────────────────────────────────

@router.post("/report/parse")
async def report_parse(body: ReportText):
    return {"blocks": [to_dict(b) for b in parse_report(body.text)]}
