"""Advisory face-presence hint for the selfie step."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import List, Optional

import cv2
import numpy as np

from ..config import LivenessSettings
from ..state import LivenessHint

# Optional capability
try:
    import mediapipe as mp  # type: ignore
except Exception:
    mp = None

logger = logging.getLogger(__name__)

FrameSource = Callable[[], Awaitable[Optional[np.ndarray]]]
HintCallback = Callable[[LivenessHint], Awaitable[None]]


@dataclass
class FaceBox:
    """Bounding box relative to the frame (all values 0-1)."""
    x: float
    y: float
    width: float
    height: float

    @property
    def area_ratio(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)


class FaceDetector:
    """Interface for face detectors; ``available`` is False for the null detector."""

    available: bool = True

    def detect(self, frame: np.ndarray) -> List[FaceBox]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class NullFaceDetector(FaceDetector):
    """Used when the platform has no face detection; never reports anything."""

    available = False

    def detect(self, frame: np.ndarray) -> List[FaceBox]:
        return []


class MediaPipeFaceDetector(FaceDetector):
    def __init__(self, confidence: float = 0.5) -> None:
        self._detector = mp.solutions.face_detection.FaceDetection(
            model_selection=0,
            min_detection_confidence=confidence,
        )

    def detect(self, frame: np.ndarray) -> List[FaceBox]:
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        result = self._detector.process(rgb_frame)
        boxes: List[FaceBox] = []
        for detection in (result.detections or []) if result else []:
            bbox = detection.location_data.relative_bounding_box
            boxes.append(FaceBox(x=bbox.xmin, y=bbox.ymin, width=bbox.width, height=bbox.height))
        return boxes

    def close(self) -> None:
        if self._detector:
            self._detector.close()
            self._detector = None


def create_face_detector(settings: Optional[LivenessSettings] = None) -> FaceDetector:
    """Single capability check, done once at startup."""
    cfg = settings or LivenessSettings()
    if not cfg.enabled:
        logger.info("Face hint disabled by configuration")
        return NullFaceDetector()
    if mp is None:
        logger.warning("MediaPipe not available - selfie hint will stay static")
        return NullFaceDetector()
    try:
        return MediaPipeFaceDetector(confidence=cfg.detection_confidence)
    except Exception as e:
        logger.warning("MediaPipe face detection unavailable (%s) - selfie hint will stay static", e)
        return NullFaceDetector()


def classify_frame(detector: FaceDetector, frame: np.ndarray, min_area_ratio: float = 0.08) -> LivenessHint:
    try:
        faces = detector.detect(frame)
    except Exception as e:
        logger.debug("Face detection error: %s", e)
        return LivenessHint.POSITIONING
    if not faces:
        return LivenessHint.POSITIONING
    if faces[0].area_ratio < min_area_ratio:
        return LivenessHint.MOVE_CLOSER
    return LivenessHint.READY


class LivenessHintMonitor:
    """Samples frames during the selfie step and reports hint changes. Never blocks capture."""

    def __init__(
        self,
        detector: FaceDetector,
        frame_source: FrameSource,
        on_hint: HintCallback,
        settings: Optional[LivenessSettings] = None,
    ) -> None:
        self.detector = detector
        self.frame_source = frame_source
        self.on_hint = on_hint
        self.settings = settings or LivenessSettings()
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._hint = LivenessHint.READY if not detector.available else LivenessHint.POSITIONING

    @property
    def hint(self) -> LivenessHint:
        return self._hint

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if not self.detector.available:
            self._hint = LivenessHint.READY
            await self._emit(self._hint)
            return
        if self.running:
            return
        self._stop_event.clear()
        self._hint = LivenessHint.POSITIONING
        await self._emit(self._hint)
        self._task = asyncio.create_task(self._run_loop(), name="selfie-face-hint")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        self._stop_event.set()
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning("Face hint loop ended with error: %s", e)

    async def _run_loop(self) -> None:
        started = time.monotonic()
        max_duration = self.settings.max_duration_seconds
        loop = asyncio.get_running_loop()
        try:
            while not self._stop_event.is_set():
                if max_duration is not None and time.monotonic() - started >= max_duration:
                    logger.info("Face hint stopped after %.1fs", max_duration)
                    break
                frame = await self.frame_source()
                if frame is not None:
                    hint = await loop.run_in_executor(
                        None, classify_frame, self.detector, frame, self.settings.min_face_area_ratio
                    )
                    if hint != self._hint:
                        self._hint = hint
                        await self._emit(hint)
                await asyncio.sleep(self.settings.frame_interval_seconds)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Face hint loop crashed")

    async def _emit(self, hint: LivenessHint) -> None:
        try:
            await self.on_hint(hint)
        except Exception:
            logger.exception("Face hint callback failed")


__all__ = [
    "FaceBox",
    "FaceDetector",
    "NullFaceDetector",
    "MediaPipeFaceDetector",
    "create_face_detector",
    "classify_frame",
    "LivenessHintMonitor",
]
