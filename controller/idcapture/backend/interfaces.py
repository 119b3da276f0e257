"""Contracts for the remote collaborators used by the capture pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from ..state import VerificationStatus


class BackendError(RuntimeError):
    """A remote call failed (transport, timeout, or non-2xx response)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class StatusSnapshot:
    status: VerificationStatus
    comment: Optional[str] = None


class AssetStorage(Protocol):
    async def put(self, path: str, data: bytes) -> None: ...

    async def delete(self, paths: List[str]) -> None: ...


class SubmissionFinalizer(Protocol):
    async def finalize(
        self,
        document_type: str,
        document_path: str,
        selfie_path: str,
        country: str,
        legal_name: str,
    ) -> None: ...


class StatusSource(Protocol):
    async def get_status(self, subject_id: str) -> StatusSnapshot: ...

    async def request_resubmission(self, subject_id: str) -> None: ...


__all__ = ["BackendError", "StatusSnapshot", "AssetStorage", "SubmissionFinalizer", "StatusSource"]
