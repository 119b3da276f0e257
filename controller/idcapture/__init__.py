"""Identity document and selfie capture controller."""
from .session_manager import CaptureController, ControllerRegistry
from .state import CaptureStep, DocumentType, LivenessHint, VerificationStatus, ViewKind
from .status_resolver import ResolvedView, resolve_view

__all__ = [
    "CaptureController",
    "ControllerRegistry",
    "CaptureStep",
    "DocumentType",
    "LivenessHint",
    "VerificationStatus",
    "ViewKind",
    "ResolvedView",
    "resolve_view",
]
