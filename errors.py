"""
errors.py — Scan pipeline exception taxonomy
=============================================
`ScanError` subclasses carry a message that is safe to show the user as-is.

Terminal for a session (the controller moves to ERROR):
    PermissionDenied, RecordingEngineFailure, EmptyCapture, ExtractionFailure

Recovered locally (never shown as a session error):
    InterpretationFailure  → deterministic fallback report
    PersistenceFailure     → result kept, storage badge downgraded to "local"
"""


class ScanError(Exception):
    """Base class for failures with a user-facing message."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PermissionDenied(ScanError):
    """The camera could not be opened (denied, missing or busy)."""


class RecordingEngineFailure(ScanError):
    """No capture codec could be opened for the clip."""


class EmptyCapture(ScanError):
    """A live recording finished without a single byte of video."""


class ExtractionFailure(ScanError):
    """The rPPG service failed, or its response had no detectable pulse."""

    def __init__(self, message: str, network: bool = False, url: str | None = None):
        super().__init__(message)
        self.network = network
        self.url = url


class InterpretationFailure(ScanError):
    """The AI interpretation service failed or returned nothing usable."""


class PersistenceFailure(ScanError):
    """The scan result could not be stored anywhere."""


class RecorderStateError(RuntimeError):
    """A recorder operation was requested from the wrong state."""
