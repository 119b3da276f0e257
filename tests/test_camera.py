import numpy as np
import pytest

from idcapture.config import CameraSettings
from idcapture.errors import CaptureDeviceDenied, EncodingFailure
from idcapture.sensors import camera as camera_module
from idcapture.sensors.camera import CameraService


class FakeCapture:
    instances = []

    def __init__(self, camera_id, opened=True, frame=True):
        self.camera_id = camera_id
        self.opened = opened
        self.frame = frame
        self.released = False
        self.props = {}
        FakeCapture.instances.append(self)

    def isOpened(self):
        return self.opened and not self.released

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def read(self):
        if not self.frame:
            return False, None
        return True, np.full((48, 64, 3), 200, dtype=np.uint8)

    def release(self):
        self.released = True


@pytest.fixture(autouse=True)
def _reset_instances():
    FakeCapture.instances = []


def _patch(monkeypatch, **kwargs):
    monkeypatch.setattr(camera_module.cv2, "VideoCapture", lambda camera_id: FakeCapture(camera_id, **kwargs))


async def test_acquire_is_idempotent_and_release_frees_device(monkeypatch):
    _patch(monkeypatch)
    service = CameraService(2, CameraSettings(resolution_width=640, resolution_height=480))

    await service.acquire()
    await service.acquire()

    assert service.active
    assert len(FakeCapture.instances) == 1
    assert FakeCapture.instances[0].camera_id == 2

    await service.release()
    assert not service.active
    assert FakeCapture.instances[0].released
    await service.release()


async def test_unopenable_camera_is_denied(monkeypatch):
    _patch(monkeypatch, opened=False)
    service = CameraService()

    with pytest.raises(CaptureDeviceDenied):
        await service.acquire()
    assert not service.active


async def test_capture_jpeg_opens_on_demand(monkeypatch):
    _patch(monkeypatch)
    service = CameraService()

    data = await service.capture_jpeg()

    assert data[:2] == b"\xff\xd8"
    assert service.active
    await service.release()


async def test_capture_without_frame_is_encoding_failure(monkeypatch):
    _patch(monkeypatch, frame=False)
    service = CameraService()

    with pytest.raises(EncodingFailure):
        await service.capture_jpeg()
    await service.release()


async def test_read_frame_when_closed_returns_none():
    assert await CameraService().read_frame() is None
