"""Shared state definitions for the identity capture flow."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional


class CaptureStep(str, enum.Enum):
    """
    Capture steps in chronological order:

    1. INTRO             - Explanation and "Get started"
    2. DETAILS           - Legal name, country, document type
    3. DOCUMENT_CAPTURE  - Photo of the document (camera held)
    4. SELFIE_CAPTURE    - Live selfie with face hint (camera held)
    5. REVIEW            - Consents, then submit
    6. SUBMITTING        - Upload + finalize in flight
    7. SUBMITTED         - Terminal; session discarded
    """
    INTRO = "intro"
    DETAILS = "details"
    DOCUMENT_CAPTURE = "document_capture"
    SELFIE_CAPTURE = "selfie_capture"
    REVIEW = "review"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


class DocumentType(str, enum.Enum):
    PASSPORT = "passport"
    DRIVERS_LICENSE = "drivers_license"
    ID_CARD = "id_card"


class VerificationStatus(str, enum.Enum):
    NOT_SUBMITTED = "not_submitted"
    PENDING = "pending"
    VERIFIED = "verified"
    UNVERIFIED = "unverified"


class ViewKind(str, enum.Enum):
    """Top-level view selected from the server-reported status."""
    VERIFIED = "verified"
    PENDING_REVIEW = "pending_review"
    NEEDS_RESUBMISSION = "needs_resubmission"
    CAPTURE_FLOW = "capture_flow"


class LivenessHint(str, enum.Enum):
    POSITIONING = "positioning"
    MOVE_CLOSER = "move_closer"
    READY = "ready"


_STATUS_ALIASES: Dict[str, VerificationStatus] = {
    "approved": VerificationStatus.VERIFIED,
    "rejected": VerificationStatus.UNVERIFIED,
    "": VerificationStatus.NOT_SUBMITTED,
}


def parse_status(raw: Optional[str], *, is_verified: bool = False) -> VerificationStatus:
    """Map a server status string onto VerificationStatus; unknown values mean not submitted."""
    if is_verified:
        return VerificationStatus.VERIFIED
    value = str(raw or "").strip().lower()
    if value in _STATUS_ALIASES:
        return _STATUS_ALIASES[value]
    try:
        return VerificationStatus(value)
    except ValueError:
        return VerificationStatus.NOT_SUBMITTED


_DOCUMENT_INSTRUCTIONS: Dict[DocumentType, str] = {
    DocumentType.PASSPORT: "Rotate your phone to landscape. Align the photo page and the bottom text lines (MRZ).",
    DocumentType.DRIVERS_LICENSE: "Align the front of your card within the frame.",
    DocumentType.ID_CARD: "Align the front of your card within the frame.",
}


def capture_instructions(document_type: Optional[DocumentType]) -> str:
    if document_type is None:
        return "Choose a document type first."
    return _DOCUMENT_INSTRUCTIONS[document_type]


@dataclass
class CaptureEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    data: Dict[str, Any]
    step: Optional[CaptureStep]
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.type,
            "step": self.step.value if self.step else None,
            "data": self.data,
        }
        if self.error:
            payload["error"] = self.error
        return payload


__all__ = [
    "CaptureStep",
    "DocumentType",
    "VerificationStatus",
    "ViewKind",
    "LivenessHint",
    "CaptureEvent",
    "parse_status",
    "capture_instructions",
]
