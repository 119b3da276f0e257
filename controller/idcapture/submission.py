"""Upload both photos and finalize, undoing uploads when a later step fails."""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import List, Optional, Tuple, cast

from .backend.interfaces import AssetStorage, SubmissionFinalizer
from .config import ValidationSettings
from .errors import FinalizeFailure, UploadFailure, ValidationFailure
from .session import CapturedImage, CaptureSession
from .state import DocumentType
from .state_machine import submit_enabled

logger = logging.getLogger(__name__)

UndoAction = Callable[[], Awaitable[None]]


def asset_paths(subject_id: str, attempt_id: str, document_type: DocumentType) -> Tuple[str, str]:
    """Storage paths for one attempt, namespaced by subject, attempt and asset kind."""
    prefix = f"{subject_id}/{attempt_id}"
    return f"{prefix}/{document_type.value}_front.jpg", f"{prefix}/selfie_liveness.jpg"


@dataclass
class SubmissionReceipt:
    attempt_id: str
    document_path: str
    selfie_path: str


class CompensationLog:
    """Undo actions recorded by successful side effects, unwound newest first."""

    def __init__(self) -> None:
        self._actions: List[Tuple[str, UndoAction]] = []

    def push(self, label: str, undo: UndoAction) -> None:
        self._actions.append((label, undo))

    def __len__(self) -> int:
        return len(self._actions)

    def clear(self) -> None:
        self._actions.clear()

    async def unwind(self) -> List[str]:
        """Run every undo; failures are logged and the rest still run. Returns labels that failed."""
        failed: List[str] = []
        while self._actions:
            label, undo = self._actions.pop()
            try:
                await undo()
                logger.info("compensation: undid %s", label)
            except Exception as exc:
                logger.error("compensation: failed to undo %s - %s", label, exc)
                failed.append(label)
        return failed


class SubmissionOrchestrator:
    """Runs one submission attempt: document upload, selfie upload, finalize."""

    def __init__(
        self,
        storage: AssetStorage,
        finalizer: SubmissionFinalizer,
        *,
        validation: Optional[ValidationSettings] = None,
        attempt_id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self.storage = storage
        self.finalizer = finalizer
        self.validation = validation or ValidationSettings()
        self._new_attempt_id = attempt_id_factory or (lambda: uuid.uuid4().hex)

    def _delete_action(self, path: str) -> UndoAction:
        async def _undo() -> None:
            await self.storage.delete([path])
        return _undo

    async def submit(self, session: CaptureSession) -> SubmissionReceipt:
        if not submit_enabled(session, self.validation):
            raise ValidationFailure(
                "Please complete every step before submitting",
                log_message=f"submit preconditions not met for subject={session.subject_id}",
            )
        document_type = cast(DocumentType, session.document_type)
        document = cast(CapturedImage, session.document_image)
        selfie = cast(CapturedImage, session.selfie_image)

        attempt_id = self._new_attempt_id()
        document_path, selfie_path = asset_paths(session.subject_id, attempt_id, document_type)
        compensation = CompensationLog()
        logger.info("submission %s: starting for subject=%s", attempt_id, session.subject_id)

        try:
            try:
                await self.storage.put(document_path, document.data)
            except Exception as exc:
                logger.error("submission %s: document upload failed - %s", attempt_id, exc)
                raise UploadFailure(
                    "Uploading your document failed. Please try again.",
                    log_message=f"document upload failed: {exc}",
                ) from exc
            compensation.push(f"document {document_path}", self._delete_action(document_path))

            try:
                await self.storage.put(selfie_path, selfie.data)
            except Exception as exc:
                logger.error("submission %s: selfie upload failed - %s", attempt_id, exc)
                await compensation.unwind()
                raise UploadFailure(
                    "Uploading your selfie failed. Please try again.",
                    log_message=f"selfie upload failed: {exc}",
                ) from exc
            compensation.push(f"selfie {selfie_path}", self._delete_action(selfie_path))

            try:
                await self.finalizer.finalize(
                    document_type.value,
                    document_path,
                    selfie_path,
                    session.country.strip(),
                    session.legal_name.strip(),
                )
            except Exception as exc:
                logger.error("submission %s: finalize failed - %s", attempt_id, exc)
                await compensation.unwind()
                raise FinalizeFailure(
                    "We couldn't submit your verification. Please try again.",
                    log_message=f"finalize failed: {exc}",
                ) from exc
        except asyncio.CancelledError:
            logger.warning("submission %s: cancelled, undoing %d upload(s)", attempt_id, len(compensation))
            await compensation.unwind()
            raise

        compensation.clear()
        logger.info("submission %s: finalized for subject=%s", attempt_id, session.subject_id)
        return SubmissionReceipt(attempt_id=attempt_id, document_path=document_path, selfie_path=selfie_path)


__all__ = ["SubmissionOrchestrator", "SubmissionReceipt", "CompensationLog", "asset_paths"]
