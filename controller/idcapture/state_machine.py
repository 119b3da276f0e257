"""Explicit step table for the capture flow."""
from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Tuple

from .config import ValidationSettings
from .errors import InvalidTransition, ValidationFailure
from .session import CaptureSession, country_valid, legal_name_valid
from .state import CaptureStep

logger = logging.getLogger(__name__)

Guard = Callable[[CaptureSession, ValidationSettings], None]


def _always(session: CaptureSession, cfg: ValidationSettings) -> None:
    return None


def _details_complete(session: CaptureSession, cfg: ValidationSettings) -> None:
    if not legal_name_valid(session.legal_name, min_tokens=cfg.min_name_tokens, max_length=cfg.legal_name_max_length):
        raise ValidationFailure(
            f"Please enter your legal name as at least {cfg.min_name_tokens} words",
            log_message=f"legal name rejected: {session.legal_name!r}",
        )
    if not country_valid(session.country, cfg.supported_countries):
        raise ValidationFailure("Please select a supported country", log_message=f"country rejected: {session.country!r}")
    if session.document_type is None:
        raise ValidationFailure("Please choose a document type")


def _document_captured(session: CaptureSession, cfg: ValidationSettings) -> None:
    if session.document_image is None:
        raise ValidationFailure("Please capture your document first")


def _selfie_captured(session: CaptureSession, cfg: ValidationSettings) -> None:
    if session.selfie_image is None:
        raise ValidationFailure("Please take a selfie first")


def _ready_to_submit(session: CaptureSession, cfg: ValidationSettings) -> None:
    _details_complete(session, cfg)
    if not session.has_both_images:
        raise ValidationFailure("Both photos are required before submitting")
    if not session.consents.all_given:
        raise ValidationFailure("Please confirm all three statements before submitting")


TRANSITIONS: Dict[Tuple[CaptureStep, CaptureStep], Guard] = {
    # forward
    (CaptureStep.INTRO, CaptureStep.DETAILS): _always,
    (CaptureStep.DETAILS, CaptureStep.DOCUMENT_CAPTURE): _details_complete,
    (CaptureStep.DOCUMENT_CAPTURE, CaptureStep.SELFIE_CAPTURE): _document_captured,
    (CaptureStep.SELFIE_CAPTURE, CaptureStep.REVIEW): _selfie_captured,
    (CaptureStep.REVIEW, CaptureStep.SUBMITTING): _ready_to_submit,
    # backward
    (CaptureStep.DETAILS, CaptureStep.INTRO): _always,
    (CaptureStep.DOCUMENT_CAPTURE, CaptureStep.DETAILS): _always,
    (CaptureStep.SELFIE_CAPTURE, CaptureStep.DOCUMENT_CAPTURE): _always,
    (CaptureStep.REVIEW, CaptureStep.SELFIE_CAPTURE): _always,
    # submission outcome
    (CaptureStep.SUBMITTING, CaptureStep.REVIEW): _always,
    (CaptureStep.SUBMITTING, CaptureStep.SUBMITTED): _always,
}

NEXT_STEP: Dict[CaptureStep, CaptureStep] = {
    CaptureStep.INTRO: CaptureStep.DETAILS,
    CaptureStep.DETAILS: CaptureStep.DOCUMENT_CAPTURE,
    CaptureStep.DOCUMENT_CAPTURE: CaptureStep.SELFIE_CAPTURE,
    CaptureStep.SELFIE_CAPTURE: CaptureStep.REVIEW,
}

PREVIOUS_STEP: Dict[CaptureStep, CaptureStep] = {
    CaptureStep.DETAILS: CaptureStep.INTRO,
    CaptureStep.DOCUMENT_CAPTURE: CaptureStep.DETAILS,
    CaptureStep.SELFIE_CAPTURE: CaptureStep.DOCUMENT_CAPTURE,
    CaptureStep.REVIEW: CaptureStep.SELFIE_CAPTURE,
}

CAMERA_STEPS = frozenset({CaptureStep.DOCUMENT_CAPTURE, CaptureStep.SELFIE_CAPTURE})


class CaptureStateMachine:
    """Moves one CaptureSession through the step table, enforcing guards."""

    def __init__(self, session: CaptureSession, settings: Optional[ValidationSettings] = None) -> None:
        self.session = session
        self.settings = settings or ValidationSettings()

    @property
    def step(self) -> CaptureStep:
        return self.session.step

    def can_transition(self, target: CaptureStep) -> bool:
        guard = TRANSITIONS.get((self.session.step, target))
        if guard is None:
            return False
        try:
            guard(self.session, self.settings)
        except ValidationFailure:
            return False
        return True

    def transition(self, target: CaptureStep) -> CaptureStep:
        current = self.session.step
        guard = TRANSITIONS.get((current, target))
        if guard is None:
            raise InvalidTransition(
                "That step isn't available right now",
                log_message=f"no transition {current.value} -> {target.value}",
            )
        guard(self.session, self.settings)
        self.session.step = target
        logger.info("capture step %s -> %s (subject=%s)", current.value, target.value, self.session.subject_id)
        return target

    def advance(self) -> CaptureStep:
        target = NEXT_STEP.get(self.session.step)
        if target is None:
            raise InvalidTransition(
                "There is no next step from here",
                log_message=f"advance from {self.session.step.value}",
            )
        return self.transition(target)

    def back(self) -> CaptureStep:
        target = PREVIOUS_STEP.get(self.session.step)
        if target is None:
            raise InvalidTransition(
                "You can't go back from here",
                log_message=f"back from {self.session.step.value}",
            )
        return self.transition(target)

    @property
    def submit_enabled(self) -> bool:
        return self.can_transition(CaptureStep.SUBMITTING)

    def begin_submit(self) -> None:
        self.transition(CaptureStep.SUBMITTING)

    def submit_failed(self) -> None:
        self.session.failed_attempts += 1
        self.transition(CaptureStep.REVIEW)

    def submit_succeeded(self) -> None:
        self.transition(CaptureStep.SUBMITTED)


def submit_enabled(session: CaptureSession, settings: Optional[ValidationSettings] = None) -> bool:
    """Submit readiness independent of the current step."""
    try:
        _ready_to_submit(session, settings or ValidationSettings())
    except ValidationFailure:
        return False
    return True


__all__ = [
    "CaptureStateMachine",
    "TRANSITIONS",
    "NEXT_STEP",
    "PREVIOUS_STEP",
    "CAMERA_STEPS",
    "submit_enabled",
]
