"""
Scoped camera access for document and selfie capture.
Opened when a capture step is entered, released when it is left.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import cv2
import numpy as np

from ..compressor import encode_frame
from ..config import CameraSettings
from ..errors import CaptureDeviceDenied, EncodingFailure

logger = logging.getLogger(__name__)


class CameraService:
    """OpenCV VideoCapture wrapper; blocking calls run in the default executor."""

    def __init__(self, camera_id: int = 0, settings: Optional[CameraSettings] = None) -> None:
        self.camera_id = camera_id
        self.settings = settings or CameraSettings()
        self._cap: Optional[cv2.VideoCapture] = None
        self._lock = asyncio.Lock()

    @property
    def active(self) -> bool:
        return self._cap is not None

    def _open(self) -> Optional[cv2.VideoCapture]:
        cap = cv2.VideoCapture(self.camera_id)
        if not cap.isOpened():
            cap.release()
            return None
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.settings.resolution_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.settings.resolution_height)
        cap.set(cv2.CAP_PROP_FPS, self.settings.fps)
        return cap

    async def acquire(self) -> None:
        async with self._lock:
            if self._cap is not None:
                return
            logger.info("Opening camera (camera_id=%s)", self.camera_id)
            loop = asyncio.get_running_loop()
            cap = await loop.run_in_executor(None, self._open)
            if cap is None:
                logger.error("Failed to open camera %s", self.camera_id)
                raise CaptureDeviceDenied(
                    "Camera access is needed. Please allow camera access and try again.",
                    log_message=f"camera {self.camera_id} could not be opened",
                )
            self._cap = cap
            logger.info("Camera %s acquired", self.camera_id)

    async def release(self) -> None:
        async with self._lock:
            cap = self._cap
            self._cap = None
            if cap is None:
                return
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, cap.release)
            except Exception as e:
                logger.warning("Error releasing camera %s: %s", self.camera_id, e)
            logger.info("Camera %s released", self.camera_id)

    def _read(self) -> Optional[np.ndarray]:
        cap = self._cap
        if cap is None or not cap.isOpened():
            return None
        ret, frame = cap.read()
        if not ret or frame is None:
            return None
        return frame

    async def read_frame(self) -> Optional[np.ndarray]:
        """Latest BGR frame, or None when the camera is closed or the read failed."""
        if self._cap is None:
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read)

    async def capture_jpeg(self) -> bytes:
        if self._cap is None:
            await self.acquire()
        frame = await self.read_frame()
        if frame is None:
            raise EncodingFailure("Unable to capture image. Please try again.", log_message="camera returned no frame")
        return encode_frame(frame, self.settings.capture_jpeg_quality)


__all__ = ["CameraService"]
