"""Pick the top-level view from the server-reported verification status."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .state import VerificationStatus, ViewKind


@dataclass(frozen=True)
class ResolvedView:
    kind: ViewKind
    comment: Optional[str] = None

    @property
    def opens_capture(self) -> bool:
        return self.kind is ViewKind.CAPTURE_FLOW


def resolve_view(
    status: VerificationStatus,
    comment: Optional[str] = None,
    force_resubmit: bool = False,
) -> ResolvedView:
    """
    verified               -> Verified, regardless of anything else
    pending                -> PendingReview unless forced
    unverified + comment   -> NeedsResubmission(comment) unless forced
    anything else          -> CaptureFlow
    """
    if status is VerificationStatus.VERIFIED:
        return ResolvedView(ViewKind.VERIFIED)
    if status is VerificationStatus.PENDING and not force_resubmit:
        return ResolvedView(ViewKind.PENDING_REVIEW)
    note = (comment or "").strip()
    if status is VerificationStatus.UNVERIFIED and note and not force_resubmit:
        return ResolvedView(ViewKind.NEEDS_RESUBMISSION, comment=note)
    return ResolvedView(ViewKind.CAPTURE_FLOW)


__all__ = ["ResolvedView", "resolve_view"]
