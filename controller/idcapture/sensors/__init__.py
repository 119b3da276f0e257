"""Camera and face-presence helpers for the capture steps."""
from .camera import CameraService
from .face_presence import (
    FaceBox,
    FaceDetector,
    LivenessHintMonitor,
    NullFaceDetector,
    classify_frame,
    create_face_detector,
)

__all__ = [
    "CameraService",
    "FaceBox",
    "FaceDetector",
    "LivenessHintMonitor",
    "NullFaceDetector",
    "classify_frame",
    "create_face_detector",
]
