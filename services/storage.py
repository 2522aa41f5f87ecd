"""
services/storage.py — Scan-result persistence
==============================================
Live scans are POSTed to the scan-history backend (`/api/scans`).  Simulated
scans, and live scans the backend refuses, are appended to a local JSON
history file instead.

`save_scan_result` only reports success: True when the result reached its
primary destination (backend for live, local file for simulation).
"""

import asyncio
import json
from pathlib import Path

import httpx

from api.schemas import ScanResult
from config import BACKEND_BASE_URL, LOCAL_HISTORY_PATH, SCANS_PATH, STORAGE_TIMEOUT_SECONDS
from errors import PersistenceFailure
from utils.logger import get_logger

logger = get_logger("services.storage")


class ScanStore:
    """Backend-first scan history with a local JSON file as fallback."""

    def __init__(
        self,
        base_url: str = BACKEND_BASE_URL,
        history_path: str | Path = LOCAL_HISTORY_PATH,
        timeout: float = STORAGE_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._scans_url = f"{base_url.rstrip('/')}{SCANS_PATH}"
        self._history_path = Path(history_path)
        self._timeout = timeout
        self._transport = transport

    async def save_scan_result(self, result: ScanResult, simulation: bool = False) -> bool:
        """Persist `result`; never raises."""
        if simulation:
            try:
                await asyncio.to_thread(self._append_local, result)
                return True
            except PersistenceFailure as e:
                logger.error("%s", e)
                return False

        try:
            await self._post(result)
            logger.info("Scan result stored in backend.")
            return True
        except PersistenceFailure as e:
            logger.warning("%s — keeping a local copy.", e)

        try:
            await asyncio.to_thread(self._append_local, result)
        except PersistenceFailure as e:
            logger.error("%s", e)
        return False

    async def get_scan_history(self) -> list[dict]:
        """Backend history, or the local file if the backend is unreachable."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.get(self._scans_url)
                r.raise_for_status()
                data = r.json()
            if isinstance(data, dict):
                data = data.get("data") or data.get("scans") or []
            return list(data)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Backend history unavailable (%s) — reading local history.", e)
            return await asyncio.to_thread(self._read_local)

    # ── Private ──────────────────────────────────────────────────────────────

    async def _post(self, result: ScanResult) -> None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.post(self._scans_url, json=result.model_dump(by_alias=True))
                r.raise_for_status()
        except httpx.HTTPError as e:
            raise PersistenceFailure(f"Backend save failed: {e}")

    def _read_local(self) -> list[dict]:
        if not self._history_path.exists():
            return []
        try:
            data = json.loads(self._history_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Local history unreadable: %s", e)
            return []
        return data if isinstance(data, list) else []

    def _append_local(self, result: ScanResult) -> None:
        try:
            history = self._read_local()
            history.append(result.model_dump(by_alias=True))
            self._history_path.parent.mkdir(parents=True, exist_ok=True)
            self._history_path.write_text(json.dumps(history, indent=2), encoding="utf-8")
        except OSError as e:
            raise PersistenceFailure(f"Local history write failed: {e}")
        logger.info("Scan result stored locally (%s).", self._history_path)
