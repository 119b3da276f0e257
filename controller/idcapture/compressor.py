"""Adaptive JPEG compression that squeezes captured photos under a byte budget."""
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import cv2
import numpy as np

from .config import CompressionSettings
from .errors import EncodingFailure

logger = logging.getLogger(__name__)


@dataclass
class CompressionResult:
    data: bytes
    width: int
    height: int
    quality: float
    scale: float
    iterations: int = 0
    sizes: List[int] = field(default_factory=list)
    within_budget: bool = True
    exhausted: bool = False


def _decode(raw: bytes) -> np.ndarray:
    buffer = np.frombuffer(raw, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
    if image is None:
        raise EncodingFailure("We couldn't read that photo. Please retake it.", log_message="cv2.imdecode failed")
    return image


def encode_frame(frame: np.ndarray, quality: int) -> bytes:
    """Encode a BGR frame to JPEG bytes at an integer quality (1-100)."""
    ok, enc = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
    if not ok:
        raise EncodingFailure("We couldn't process that photo. Please retake it.", log_message="cv2.imencode failed")
    return enc.tobytes()


def _render(image: np.ndarray, scale: float, quality: float) -> Tuple[bytes, int, int]:
    height, width = image.shape[:2]
    target_w = max(1, int(round(width * scale)))
    target_h = max(1, int(round(height * scale)))
    if (target_w, target_h) != (width, height):
        image = cv2.resize(image, (target_w, target_h), interpolation=cv2.INTER_AREA)
    return encode_frame(image, round(quality * 100)), target_w, target_h


def compress_image(raw: bytes, settings: Optional[CompressionSettings] = None) -> CompressionResult:
    """
    Reduce quality, then scale, until the JPEG fits ``settings.max_bytes``.

    Input already inside the budget comes back untouched. Otherwise the photo is
    re-rendered at decreasing quality down to ``min_quality`` and then at
    decreasing scale down to ``min_scale``. When both floors are reached the
    last render is returned even if it is still over budget.
    """
    cfg = settings or CompressionSettings()
    if not raw:
        raise EncodingFailure("No photo was captured. Please try again.", log_message="empty image payload")

    if len(raw) <= cfg.max_bytes:
        image = _decode(raw)
        height, width = image.shape[:2]
        return CompressionResult(data=raw, width=width, height=height, quality=1.0, scale=1.0, sizes=[len(raw)])

    image = _decode(raw)
    height, width = image.shape[:2]
    scale = min(1.0, cfg.max_dimension / width, cfg.max_dimension / height)
    quality = cfg.initial_quality

    data, out_w, out_h = _render(image, scale, quality)
    best_quality, best_scale = quality, scale
    sizes = [len(data)]
    iterations = 0

    while len(data) > cfg.max_bytes and (quality > cfg.min_quality or scale > cfg.min_scale):
        if quality > cfg.min_quality:
            quality = max(cfg.min_quality, quality - cfg.quality_step)
        else:
            scale = max(cfg.min_scale, scale * cfg.scale_factor)
        iterations += 1
        candidate, cand_w, cand_h = _render(image, scale, quality)
        # JPEG size is not strictly monotone in quality; keep the smaller render
        if len(candidate) <= len(data):
            data, out_w, out_h = candidate, cand_w, cand_h
            best_quality, best_scale = quality, scale
        sizes.append(len(data))

    within = len(data) <= cfg.max_bytes
    # both floors were tried, even if an earlier render was kept
    exhausted = quality <= cfg.min_quality and scale <= cfg.min_scale
    if not within:
        logger.warning(
            "compress: budget not met after %d iterations (%d bytes > %d, quality=%.2f scale=%.2f)",
            iterations, len(data), cfg.max_bytes, best_quality, best_scale,
        )
    else:
        logger.debug(
            "compress: %d -> %d bytes in %d iterations (quality=%.2f scale=%.2f)",
            len(raw), len(data), iterations, best_quality, best_scale,
        )
    return CompressionResult(
        data=data,
        width=out_w,
        height=out_h,
        quality=best_quality,
        scale=best_scale,
        iterations=iterations,
        sizes=sizes,
        within_budget=within,
        exhausted=exhausted,
    )


def make_preview(data: bytes, max_dimension: int = 320) -> str:
    """Small JPEG thumbnail as a data URL."""
    image = _decode(data)
    height, width = image.shape[:2]
    scale = min(1.0, max_dimension / max(width, height))
    thumb, _, _ = _render(image, scale, 0.7)
    return "data:image/jpeg;base64," + base64.b64encode(thumb).decode("ascii")


__all__ = ["CompressionResult", "compress_image", "encode_frame", "make_preview"]
