"""Shared fakes and fixtures for the capture controller tests."""
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np
import pytest

from idcapture.backend.interfaces import BackendError, StatusSnapshot
from idcapture.config import CameraSettings, Settings
from idcapture.errors import CaptureDeviceDenied
from idcapture.sensors.face_presence import FaceBox, FaceDetector
from idcapture.session import CapturedImage, CaptureSession, Consents
from idcapture.state import CaptureStep, DocumentType, VerificationStatus


def make_jpeg(width: int = 320, height: int = 240, quality: int = 90) -> bytes:
    """Smooth gradient photo; compresses well."""
    x = np.linspace(0, 255, width, dtype=np.uint8)
    y = np.linspace(0, 255, height, dtype=np.uint8)
    image = np.dstack([np.tile(x, (height, 1)), np.tile(y[:, None], (1, width)), np.full((height, width), 128, np.uint8)])
    ok, enc = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, quality])
    assert ok
    return enc.tobytes()


def make_noise_png(width: int, height: int, seed: int = 7) -> bytes:
    """Random noise; large on disk and hard to compress."""
    rng = np.random.default_rng(seed)
    image = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    ok, enc = cv2.imencode(".png", image)
    assert ok
    return enc.tobytes()


class FakeBackend:
    """In-memory storage, finalize RPC and profile status."""

    def __init__(self, status: VerificationStatus = VerificationStatus.NOT_SUBMITTED, comment: Optional[str] = None) -> None:
        self.status = status
        self.comment = comment
        self.objects: Dict[str, bytes] = {}
        self.put_calls: List[str] = []
        self.delete_calls: List[List[str]] = []
        self.finalize_calls: List[Tuple[str, str, str, str, str]] = []
        self.resubmit_calls: List[str] = []
        self.status_calls: List[str] = []
        self.fail_put_on: List[str] = []
        self.fail_finalize = False
        self.fail_delete = False
        self.fail_status = False

    async def put(self, path: str, data: bytes) -> None:
        self.put_calls.append(path)
        if any(marker in path for marker in self.fail_put_on):
            raise BackendError(f"put {path}: HTTP 500", status_code=500)
        if path in self.objects:
            raise BackendError(f"put {path}: already exists", status_code=409)
        self.objects[path] = data

    async def delete(self, paths: List[str]) -> None:
        self.delete_calls.append(list(paths))
        if self.fail_delete:
            raise BackendError("delete: network error")
        for path in paths:
            self.objects.pop(path, None)

    async def finalize(self, document_type: str, document_path: str, selfie_path: str, country: str, legal_name: str) -> None:
        self.finalize_calls.append((document_type, document_path, selfie_path, country, legal_name))
        if self.fail_finalize:
            raise BackendError("finalize: HTTP 400", status_code=400)
        self.status = VerificationStatus.PENDING
        self.comment = None

    async def get_status(self, subject_id: str) -> StatusSnapshot:
        self.status_calls.append(subject_id)
        if self.fail_status:
            raise BackendError("get_status: request timed out")
        return StatusSnapshot(status=self.status, comment=self.comment)

    async def request_resubmission(self, subject_id: str) -> None:
        self.resubmit_calls.append(subject_id)
        self.comment = None
        if self.status is VerificationStatus.UNVERIFIED:
            self.status = VerificationStatus.NOT_SUBMITTED


class GatedBackend(FakeBackend):
    """Holds selfie uploads until ``release`` is set."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.selfie_started = asyncio.Event()
        self.release = asyncio.Event()

    async def put(self, path: str, data: bytes) -> None:
        if "selfie" in path:
            self.selfie_started.set()
            await self.release.wait()
        await super().put(path, data)


class StickyCommentBackend(FakeBackend):
    """Resubmit RPC that succeeds but leaves the review comment in place."""

    async def request_resubmission(self, subject_id: str) -> None:
        self.resubmit_calls.append(subject_id)


class FakeCamera:
    """Stands in for CameraService."""

    def __init__(self, *, deny: bool = False) -> None:
        self.deny = deny
        self.active = False
        self.acquire_count = 0
        self.release_count = 0
        self.captures = 0

    async def acquire(self) -> None:
        self.acquire_count += 1
        if self.deny:
            raise CaptureDeviceDenied("Camera access is needed.", log_message="denied in test")
        self.active = True

    async def release(self) -> None:
        self.release_count += 1
        self.active = False

    async def read_frame(self):
        if not self.active:
            return None
        return np.zeros((120, 160, 3), dtype=np.uint8)

    async def capture_jpeg(self) -> bytes:
        if not self.active:
            await self.acquire()
        self.captures += 1
        return make_jpeg(160, 120)


class ScriptedDetector(FaceDetector):
    """Returns the same answer until told otherwise."""

    available = True

    def __init__(self, boxes: Optional[List[FaceBox]] = None, error: Optional[Exception] = None) -> None:
        self.boxes = boxes or []
        self.error = error
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.boxes)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        log_directory=tmp_path / "logs",
        camera=CameraSettings(enabled=False),
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def small_jpeg() -> bytes:
    return make_jpeg()


@pytest.fixture
def ready_session(small_jpeg) -> CaptureSession:
    """A session at Review with everything filled in."""
    image = CapturedImage(data=small_jpeg, preview="data:image/jpeg;base64,", width=320, height=240)
    selfie = CapturedImage(data=make_jpeg(200, 200), preview="data:image/jpeg;base64,", width=200, height=200)
    return CaptureSession(
        subject_id="subject-1",
        step=CaptureStep.REVIEW,
        legal_name="Ada Lovelace",
        country="United Kingdom",
        document_type=DocumentType.PASSPORT,
        document_image=image,
        selfie_image=selfie,
        consents=Consents(name_matches=True, images_clear=True, corners_visible=True),
    )
