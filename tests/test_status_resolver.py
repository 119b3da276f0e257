import pytest

from idcapture.state import VerificationStatus, ViewKind, parse_status
from idcapture.status_resolver import resolve_view


@pytest.mark.parametrize(
    "status, comment, forced, expected",
    [
        (VerificationStatus.VERIFIED, None, False, ViewKind.VERIFIED),
        (VerificationStatus.VERIFIED, "old note", True, ViewKind.VERIFIED),
        (VerificationStatus.PENDING, None, False, ViewKind.PENDING_REVIEW),
        (VerificationStatus.PENDING, None, True, ViewKind.CAPTURE_FLOW),
        (VerificationStatus.UNVERIFIED, "blurry photo", False, ViewKind.NEEDS_RESUBMISSION),
        (VerificationStatus.UNVERIFIED, "blurry photo", True, ViewKind.CAPTURE_FLOW),
        (VerificationStatus.UNVERIFIED, "   ", False, ViewKind.CAPTURE_FLOW),
        (VerificationStatus.UNVERIFIED, None, False, ViewKind.CAPTURE_FLOW),
        (VerificationStatus.NOT_SUBMITTED, None, False, ViewKind.CAPTURE_FLOW),
        (VerificationStatus.NOT_SUBMITTED, "stale", False, ViewKind.CAPTURE_FLOW),
    ],
)
def test_resolve_view(status, comment, forced, expected):
    view = resolve_view(status, comment, force_resubmit=forced)

    assert view.kind is expected
    assert view.opens_capture == (expected is ViewKind.CAPTURE_FLOW)


def test_resubmission_view_carries_trimmed_comment():
    view = resolve_view(VerificationStatus.UNVERIFIED, "  blurry photo \n")

    assert view.comment == "blurry photo"


@pytest.mark.parametrize(
    "raw, is_verified, expected",
    [
        ("approved", False, VerificationStatus.VERIFIED),
        ("Pending", False, VerificationStatus.PENDING),
        ("rejected", False, VerificationStatus.UNVERIFIED),
        ("unverified", False, VerificationStatus.UNVERIFIED),
        (None, False, VerificationStatus.NOT_SUBMITTED),
        ("something-new", False, VerificationStatus.NOT_SUBMITTED),
        ("pending", True, VerificationStatus.VERIFIED),
    ],
)
def test_parse_status(raw, is_verified, expected):
    assert parse_status(raw, is_verified=is_verified) is expected
