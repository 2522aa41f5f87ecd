"""
camera/recorder.py — Bounded clip recording
============================================
`Recorder` turns the live camera stream into one short video clip.

State machine
-------------
    IDLE ──start()──▶ RECORDING ──stop()──▶ FINALIZING ──▶ IDLE

* A 1-second tick recomputes the elapsed time and flushes encoded bytes
  into the session's chunk buffer.
* At RECORDING_CEILING_SECONDS (15 s) the tick calls the `on_limit`
  callback, which is expected to stop the recording.  The ceiling is a
  module constant; callers cannot change it.
* In simulation mode no camera or codec is touched and `stop()` returns
  `Clip.simulation_sentinel()`.
* In live mode `stop()` returns a non-empty clip or raises `EmptyCapture`.

`ClipEncoder` is the recording engine: an OpenCV `VideoWriter` fed by
MediaSource frame callbacks, writing to a temporary file whose new bytes
are handed out on every `request_data()`.
"""

import asyncio
import math
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable

import cv2
import numpy as np

from camera.capture import MediaSource
from config import CODEC_PREFERENCE, RECORDING_CEILING_SECONDS, TICK_SECONDS
from errors import EmptyCapture, RecorderStateError, RecordingEngineFailure
from utils.logger import get_logger

logger = get_logger("camera.recorder")

EMPTY_CAPTURE_MESSAGE = "No video data captured. Please hold still."
ENGINE_FAILURE_MESSAGE = "Recording engine failed. Please try Simulation Mode."


@dataclass(frozen=True)
class Clip:
    """A finalised recording ready for extraction."""
    data: bytes
    mime_type: str
    filename: str = "scan.webm"
    simulated: bool = False

    @classmethod
    def simulation_sentinel(cls) -> "Clip":
        """Stand-in payload for simulation mode; carries no video."""
        return cls(data=b"", mime_type="application/octet-stream", filename="simulated", simulated=True)

    @property
    def size(self) -> int:
        return len(self.data)


class RecorderState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"


@dataclass(frozen=True)
class CodecChoice:
    fourcc: str
    suffix: str
    mime_type: str


def codec_choices() -> list[CodecChoice]:
    return [CodecChoice(*entry) for entry in CODEC_PREFERENCE]


class ClipEncoder:
    """
    Recording engine: encodes MediaSource frames into a temporary video file.

    `on_data(chunk)` receives newly written bytes on each `request_data()`;
    `on_stop(chunks)` receives the final chunk buffer once `stop()` has
    flushed and closed the file.
    """

    def __init__(
        self,
        source: MediaSource,
        on_data: Callable[[bytes], None],
        on_stop: Callable[[list[bytes]], None],
        writer_factory=cv2.VideoWriter,
    ):
        self._source = source
        self._on_data = on_data
        self._on_stop = on_stop
        self._writer_factory = writer_factory
        self._writer = None
        self._path: Path | None = None
        self._emitted = bytearray()
        self._chunks: list[bytes] = []
        self._lock = threading.Lock()
        self.codec: CodecChoice | None = None

    @property
    def active(self) -> bool:
        return self._writer is not None

    @property
    def mime_type(self) -> str:
        return self.codec.mime_type if self.codec else "application/octet-stream"

    @property
    def suffix(self) -> str:
        return self.codec.suffix if self.codec else ".bin"

    def start(self) -> None:
        """Pick the first codec that opens and begin consuming frames."""
        width, height = self._source.frame_size
        fps = self._source.fps
        for choice in codec_choices():
            fd, name = tempfile.mkstemp(prefix="scan_", suffix=choice.suffix)
            os.close(fd)
            writer = self._writer_factory(name, cv2.VideoWriter_fourcc(*choice.fourcc), fps, (width, height))
            if writer.isOpened():
                self._writer, self._path, self.codec = writer, Path(name), choice
                logger.info("Recording with %s (%s) at %dx%d.", choice.fourcc, choice.mime_type, width, height)
                break
            writer.release()
            Path(name).unlink(missing_ok=True)
            logger.warning("Codec %s unsupported — trying next.", choice.fourcc)
        else:
            raise RecordingEngineFailure(ENGINE_FAILURE_MESSAGE)

        self._source.add_listener(self._write_frame)

    def request_data(self) -> None:
        """Hand any bytes written since the last call to `on_data`."""
        with self._lock:
            if self._path is None:
                return
            chunk = self._read_new_bytes()
            if chunk:
                self._chunks.append(chunk)
                self._on_data(chunk)

    def stop(self) -> None:
        """Flush, close the file and deliver the chunk buffer to `on_stop`."""
        if self._writer is None:
            return
        self._source.remove_listener(self._write_frame)
        # Held throughout: no flush may touch the file or the chunks after hand-over.
        with self._lock:
            self._writer.release()
            self._writer = None
            final = self._path.read_bytes()

            if final.startswith(bytes(self._emitted)):
                tail = final[len(self._emitted):]
                if tail:
                    self._chunks.append(tail)
                    self._on_data(tail)
            else:
                # The container rewrote its header on close; the file is authoritative.
                logger.debug("Container header rewritten on close — using the finalised file.")
                self._chunks = [final] if final else []

            self._path.unlink(missing_ok=True)
            self._path = None
            self._on_stop(list(self._chunks))

    def abort(self) -> None:
        """Stop without delivering anything."""
        if self._writer is None:
            return
        self._source.remove_listener(self._write_frame)
        with self._lock:
            self._writer.release()
            self._writer = None
            if self._path is not None:
                self._path.unlink(missing_ok=True)
                self._path = None
            self._chunks = []

    # ── Private ──────────────────────────────────────────────────────────────

    def _write_frame(self, frame: np.ndarray) -> None:
        # Called from the MediaSource capture thread
        with self._lock:
            if self._writer is None:
                return
            width, height = self._source.frame_size
            if frame.shape[1] != width or frame.shape[0] != height:
                frame = cv2.resize(frame, (width, height))
            self._writer.write(frame)

    def _read_new_bytes(self) -> bytes:
        with open(self._path, "rb") as fh:
            fh.seek(len(self._emitted))
            chunk = fh.read()
        self._emitted.extend(chunk)
        return chunk


class Recorder:
    """
    Records one bounded clip per session.

    `clock` and `sleep` are injectable so the 15 s ceiling can be exercised
    without waiting in real time.
    """

    def __init__(
        self,
        source: MediaSource,
        encoder_factory=ClipEncoder,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._source = source
        self._encoder_factory = encoder_factory
        self._clock = clock
        self._sleep = sleep
        self._state = RecorderState.IDLE
        self._capture = None
        self._simulation = False
        self._encoder = None
        self._tick_task: asyncio.Task | None = None
        self._started = 0.0

    @property
    def state(self) -> RecorderState:
        return self._state

    async def start(self, capture, simulation: bool = False,
                    on_limit: Callable[[], Awaitable[object]] | None = None) -> None:
        """
        Begin recording into `capture` (a session object exposing
        `started_at`, `elapsed_seconds` and `recorded_chunks`).

        Raises RecorderStateError outside IDLE and RecordingEngineFailure if
        no codec can be opened.
        """
        if self._state is not RecorderState.IDLE:
            raise RecorderStateError(f"Cannot start recording while {self._state.value}.")

        capture.recorded_chunks.clear()
        capture.elapsed_seconds = 0
        capture.started_at = time.time()
        self._capture = capture
        self._simulation = simulation
        self._started = self._clock()
        self._encoder = None

        if not simulation and self._source.is_active:
            encoder = self._encoder_factory(self._source, self._on_data, self._on_encoder_stop)
            encoder.start()   # may raise RecordingEngineFailure
            self._encoder = encoder
        elif not simulation:
            logger.warning("No active camera stream — recording without an encoder.")

        self._state = RecorderState.RECORDING
        self._tick_task = asyncio.ensure_future(self._tick_loop(on_limit))
        logger.info("Recording started (simulation=%s).", simulation)

    async def stop(self) -> Clip | None:
        """
        Finish the recording.  Returns None (and does nothing) unless the
        recorder is RECORDING.
        """
        if self._state is not RecorderState.RECORDING:
            logger.debug("stop() ignored — recorder is %s.", self._state.value)
            return None

        self._cancel_tick()
        self._state = RecorderState.FINALIZING
        try:
            if self._simulation:
                logger.info("Simulation recording finalised.")
                return Clip.simulation_sentinel()

            encoder = self._encoder
            if encoder is not None and encoder.active:
                # The encoder's completion callback replaces the chunk buffer
                await asyncio.to_thread(encoder.stop)
            return self._build_clip(list(self._capture.recorded_chunks), encoder)
        finally:
            self._encoder = None
            self._state = RecorderState.IDLE

    def cancel(self) -> None:
        """Discard an in-progress recording (view teardown)."""
        if self._state is not RecorderState.RECORDING:
            return
        self._cancel_tick()
        if self._encoder is not None:
            self._encoder.abort()
            self._encoder = None
        if self._capture is not None:
            self._capture.recorded_chunks.clear()
        self._state = RecorderState.IDLE
        logger.info("Recording cancelled.")

    # ── Private ──────────────────────────────────────────────────────────────

    async def _tick_loop(self, on_limit) -> None:
        while True:
            await self._sleep(TICK_SECONDS)
            elapsed = math.floor(self._clock() - self._started)
            self._capture.elapsed_seconds = elapsed
            if self._encoder is not None:
                await asyncio.to_thread(self._encoder.request_data)
            if elapsed >= RECORDING_CEILING_SECONDS:
                logger.info("Recording ceiling of %ds reached.", RECORDING_CEILING_SECONDS)
                # Detach so stop() does not cancel the task running the callback
                self._tick_task = None
                if on_limit is not None:
                    await on_limit()
                else:
                    await self.stop()
                return

    def _cancel_tick(self) -> None:
        task = self._tick_task
        self._tick_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _on_data(self, chunk: bytes) -> None:
        if chunk:
            self._capture.recorded_chunks.append(chunk)

    def _on_encoder_stop(self, chunks: list[bytes]) -> None:
        # Runs in the worker thread that called encoder.stop()
        self._capture.recorded_chunks[:] = [c for c in chunks if c]

    def _build_clip(self, chunks: list[bytes], encoder) -> Clip:
        data = b"".join(chunks)
        if not data:
            logger.error("Live recording finished with an empty buffer.")
            raise EmptyCapture(EMPTY_CAPTURE_MESSAGE)
        mime = encoder.mime_type if encoder is not None else "video/webm"
        suffix = encoder.suffix if encoder is not None else ".webm"
        logger.info("Clip finalised: %d bytes in %d chunks.", len(data), len(chunks))
        return Clip(data=data, mime_type=mime, filename=f"scan{suffix}")
