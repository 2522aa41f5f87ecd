"""
camera/capture.py — Camera stream ownership (MediaSource)
==========================================================
`MediaSource` owns the webcam for the lifetime of a scan view: it acquires
the device, keeps it streaming into a preview sink, and releases it.

A background thread continuously grabs frames so the event loop never
blocks on camera I/O.  Each frame is written to the latest-frame slot (the
preview) and handed to every registered listener; the clip encoder is one
such listener while a recording is active.

Design notes
------------
* `acquire()` opens the device in a worker thread and raises
  `PermissionDenied` if it cannot be opened or yields no frame.  There is
  no automatic retry; callers invoke `acquire()` again.
* `release()` is idempotent and safe to call when nothing was acquired.
* The capture thread runs as a daemon, but `release()` must still be called
  before the owning view goes away so the hardware is freed.
"""

import asyncio
import threading
from typing import Callable

import cv2
import numpy as np

from config import CAMERA_FPS, CAMERA_HEIGHT, CAMERA_INDEX, CAMERA_OPEN_TIMEOUT, CAMERA_WIDTH
from errors import PermissionDenied
from utils.logger import get_logger

logger = get_logger("camera.capture")

FrameListener = Callable[[np.ndarray], None]

PERMISSION_MESSAGE = "Camera access denied. Please check camera permissions."


class MediaSource:
    """Acquire / preview / release a single camera stream."""

    def __init__(self, device_index: int = CAMERA_INDEX, capture_factory=cv2.VideoCapture):
        self._device_index = device_index
        self._capture_factory = capture_factory
        self._cap = None
        self._latest_frame: np.ndarray | None = None
        self._lock = threading.Lock()
        self._frame_ready = threading.Event()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._listeners: list[FrameListener] = []
        self._frame_size: tuple[int, int] = (CAMERA_WIDTH, CAMERA_HEIGHT)
        self._fps: float = float(CAMERA_FPS)

    # ── Public API ───────────────────────────────────────────────────────────

    @property
    def is_active(self) -> bool:
        return self._cap is not None

    @property
    def frame_size(self) -> tuple[int, int]:
        """(width, height) reported by the device."""
        return self._frame_size

    @property
    def fps(self) -> float:
        return self._fps

    async def acquire(self) -> "MediaSource":
        """
        Open the camera and start streaming into the preview sink.

        Raises
        ------
        PermissionDenied
            The device could not be opened or produced no frame.
        """
        if self.is_active:
            logger.warning("Camera already acquired — ignoring duplicate acquire().")
            return self

        await asyncio.to_thread(self._open)

        got_frame = await asyncio.to_thread(self._frame_ready.wait, CAMERA_OPEN_TIMEOUT)
        if not got_frame:
            self.release()
            logger.error("Camera %d opened but delivered no frame.", self._device_index)
            raise PermissionDenied(PERMISSION_MESSAGE)
        return self

    def release(self) -> None:
        """Stop the capture thread and free the device.  Safe to call twice."""
        if self._cap is None and self._thread is None:
            return
        self._stop_event.set()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        with self._lock:
            self._latest_frame = None
        self._frame_ready.clear()
        logger.info("Camera released.")

    def latest_frame(self) -> np.ndarray | None:
        """Most recent preview frame (BGR, uint8) or None.  Non-blocking."""
        with self._lock:
            return self._latest_frame.copy() if self._latest_frame is not None else None

    def add_listener(self, listener: FrameListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: FrameListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ── Private ──────────────────────────────────────────────────────────────

    def _open(self) -> None:
        cap = self._capture_factory(self._device_index)
        # Backends may ignore these
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, CAMERA_WIDTH)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, CAMERA_HEIGHT)
        cap.set(cv2.CAP_PROP_FPS, CAMERA_FPS)

        if not cap.isOpened():
            cap.release()
            logger.error(
                "Failed to open camera at index %d. "
                "Check permissions and that no other app is using it.",
                self._device_index,
            )
            raise PermissionDenied(PERMISSION_MESSAGE)

        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)) or CAMERA_WIDTH
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)) or CAMERA_HEIGHT
        self._fps = cap.get(cv2.CAP_PROP_FPS) or float(CAMERA_FPS)
        self._frame_size = (width, height)
        logger.info("Camera opened — %dx%d @ %.1f FPS", width, height, self._fps)

        self._cap = cap
        self._stop_event.clear()
        self._frame_ready.clear()
        self._thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._thread.start()

    def _capture_loop(self) -> None:
        """Grab frames until the stop event is set."""
        cap = self._cap
        while not self._stop_event.is_set():
            ret, frame = cap.read()
            if not ret:
                logger.warning("Frame grab returned False — camera may have been disconnected.")
                break
            with self._lock:
                self._latest_frame = frame
                listeners = list(self._listeners)
            self._frame_ready.set()
            for listener in listeners:
                listener(frame)
        logger.debug("Capture loop exited.")
