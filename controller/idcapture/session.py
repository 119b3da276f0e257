"""Per-subject capture session data."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from .state import CaptureStep, DocumentType


@dataclass
class CapturedImage:
    """Compressed photo ready for upload plus a small preview for the UI."""

    data: bytes
    preview: str
    width: int
    height: int
    quality: float = 1.0
    scale: float = 1.0

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class Consents:
    name_matches: bool = False
    images_clear: bool = False
    corners_visible: bool = False

    @property
    def all_given(self) -> bool:
        return self.name_matches and self.images_clear and self.corners_visible


@dataclass
class CaptureSession:
    """Ephemeral state for one verification attempt by one subject."""

    subject_id: str
    step: CaptureStep = CaptureStep.INTRO
    legal_name: str = ""
    country: str = ""
    document_type: Optional[DocumentType] = None
    document_image: Optional[CapturedImage] = None
    selfie_image: Optional[CapturedImage] = None
    consents: Consents = field(default_factory=Consents)
    failed_attempts: int = 0

    @property
    def has_both_images(self) -> bool:
        return self.document_image is not None and self.selfie_image is not None

    def release_images(self) -> None:
        self.document_image = None
        self.selfie_image = None

    def summary(self) -> Dict[str, Any]:
        return {
            "step": self.step.value,
            "legal_name": self.legal_name,
            "country": self.country,
            "document_type": self.document_type.value if self.document_type else None,
            "document_preview": self.document_image.preview if self.document_image else None,
            "selfie_preview": self.selfie_image.preview if self.selfie_image else None,
            "consents": {
                "name_matches": self.consents.name_matches,
                "images_clear": self.consents.images_clear,
                "corners_visible": self.consents.corners_visible,
            },
            "failed_attempts": self.failed_attempts,
        }


def legal_name_valid(name: str, *, min_tokens: int = 2, max_length: int = 50) -> bool:
    stripped = (name or "").strip()
    if not stripped or len(stripped) > max_length:
        return False
    return len(stripped.split()) >= min_tokens


def country_valid(country: str, supported: Iterable[str] = ()) -> bool:
    value = (country or "").strip()
    if not value:
        return False
    allowed = list(supported)
    return not allowed or value in allowed


__all__ = ["CapturedImage", "Consents", "CaptureSession", "legal_name_valid", "country_valid"]
