"""Recoverable failures raised by the capture pipeline."""
from __future__ import annotations

from typing import Optional


class CaptureFlowError(RuntimeError):
    """Raised when a recoverable capture step fails."""

    def __init__(self, user_message: str, *, log_message: Optional[str] = None) -> None:
        super().__init__(log_message or user_message)
        self.user_message = user_message


class CaptureDeviceDenied(CaptureFlowError):
    """Camera could not be opened; the subject has to grant access."""


class EncodingFailure(CaptureFlowError):
    """A captured photo could not be decoded or re-encoded; retake it."""


class UploadFailure(CaptureFlowError):
    """An asset upload failed. Earlier uploads of the attempt are already removed."""


class FinalizeFailure(CaptureFlowError):
    """Finalize failed after both uploads. Both assets are already removed."""


class ValidationFailure(CaptureFlowError):
    """Local guard rejected a step transition before any network call."""


class InvalidTransition(ValidationFailure):
    """Requested step change is not in the transition table."""


class StatusUnavailable(CaptureFlowError):
    """Verification status could not be read on entry."""


__all__ = [
    "CaptureFlowError",
    "CaptureDeviceDenied",
    "EncodingFailure",
    "UploadFailure",
    "FinalizeFailure",
    "ValidationFailure",
    "InvalidTransition",
    "StatusUnavailable",
]
