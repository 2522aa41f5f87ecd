"""
services/health.py — Service health checks & polling
=====================================================
`check_health` probes the scan-history backend and the rPPG server and
classifies failures:

    NETWORK — connection refused, DNS failure, timeout
    CORS    — the service answered but does not allow the app's origin,
              so a browser front-end would be blocked
    OTHER   — anything else (HTTP error status, unexpected body)

`HealthMonitor` repeats the check on a fixed interval, independently of any
scan session, and keeps only the latest report.
"""

import asyncio
from typing import Awaitable, Callable

import httpx

from api.schemas import HealthReport, ServiceStatus
from config import (
    APP_ORIGIN,
    BACKEND_BASE_URL,
    BACKEND_HEALTH_PATH,
    HEALTH_POLL_SECONDS,
    HEALTH_TIMEOUT_SECONDS,
    RPPG_BASE_URL,
    RPPG_HEALTH_PATH,
)
from utils.logger import get_logger

logger = get_logger("services.health")


def _cors_allows(response: httpx.Response, origin: str) -> bool:
    allowed = response.headers.get("access-control-allow-origin")
    return allowed is not None and allowed.strip() in ("*", origin)


async def probe(client: httpx.AsyncClient, url: str, name: str, origin: str = APP_ORIGIN) -> ServiceStatus:
    """Check a single service."""
    try:
        r = await client.get(url, headers={"Origin": origin})
    except httpx.TransportError as e:
        return ServiceStatus(ok=False, message=f"{name} unreachable", error_type="NETWORK", raw_error=repr(e))
    except httpx.HTTPError as e:
        return ServiceStatus(ok=False, message=f"{name} check failed", error_type="OTHER", raw_error=repr(e))

    if r.status_code >= 400:
        return ServiceStatus(
            ok=False,
            message=f"{name} returned HTTP {r.status_code}",
            error_type="OTHER",
            raw_error=r.text[:200],
        )
    if not _cors_allows(r, origin):
        return ServiceStatus(
            ok=False,
            message=f"{name} reachable but CORS does not allow {origin}",
            error_type="CORS",
            raw_error=f"access-control-allow-origin={r.headers.get('access-control-allow-origin')!r}",
        )
    return ServiceStatus(ok=True, message=f"{name} online")


async def check_health(
    simulation: bool = False,
    use_proxy: bool = False,
    backend_url: str = BACKEND_BASE_URL,
    rppg_url: str = RPPG_BASE_URL,
    transport: httpx.AsyncBaseTransport | None = None,
) -> HealthReport:
    """
    Probe both services.  In simulation mode the rPPG server is not needed
    and is reported healthy without a request.  With the proxy enabled the
    rPPG side is reached through the backend, so the backend's status stands
    in for it.
    """
    backend_health = f"{backend_url.rstrip('/')}{BACKEND_HEALTH_PATH}"
    rppg_health = f"{rppg_url.rstrip('/')}{RPPG_HEALTH_PATH}"

    async with httpx.AsyncClient(timeout=HEALTH_TIMEOUT_SECONDS, transport=transport) as client:
        backend = await probe(client, backend_health, "Backend")
        if simulation:
            rppg = ServiceStatus(ok=True, message="Simulation mode — rPPG server not required")
        elif use_proxy:
            rppg = ServiceStatus(
                ok=backend.ok,
                message=f"rPPG via backend proxy: {backend.message}",
                error_type=backend.error_type,
                raw_error=backend.raw_error,
            )
        else:
            rppg = await probe(client, rppg_health, "rPPG server")

    return HealthReport(backend=backend, rppg=rppg)


class HealthMonitor:
    """
    Polls `check` every `interval` seconds and holds the latest report.

    The monitor never touches scan-session state.
    """

    def __init__(
        self,
        check: Callable[[], Awaitable[HealthReport]],
        interval: float = HEALTH_POLL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._check = check
        self._interval = interval
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self.status: HealthReport | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self) -> HealthReport | None:
        """Run one check now and store its result."""
        try:
            self.status = await self._check()
        except Exception:
            # A failing probe must not kill the poller; the previous report is kept.
            logger.exception("Health check failed")
            return self.status

        if not (self.status.backend.ok and self.status.rppg.ok):
            logger.warning(
                "Service status: backend=%s rppg=%s",
                self.status.backend.message,
                self.status.rppg.message,
            )
        return self.status

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.ensure_future(self._loop())
        logger.info("Health polling every %.0fs.", self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        while True:
            await self.refresh()
            await self._sleep(self._interval)
