"""Alignment-feature detection in camera frames.

The engine only needs ``AlignmentDetector.detect_alignment_feature()``,
which returns the pixel position of the fiducial (or ``None``).  The
reference implementation finds circles with ``cv2.HoughCircles`` and
picks the one that best combines closeness to the frame centre with a
radius near the expected fiducial size.

Pixel -> machine conversion (``pixel_offset_to_mm``) scales by a fixed
``mm_per_pixel`` and flips Y, because image rows grow downward while
machine Y grows away from the operator.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Protocol

import cv2
import numpy as np

from paste_control.configs.loader import HoughConfig

logger = logging.getLogger(__name__)

FrameSource = Callable[[], "np.ndarray | None"]


@dataclass(frozen=True)
class FeatureDetection:
    """Detected feature centre in pixels plus the frame it came from."""

    pixel_x: float
    pixel_y: float
    frame_width: int
    frame_height: int
    radius: float = 0.0
    score: float = 0.0

    @property
    def offset_px(self) -> tuple[float, float]:
        """Offset from the frame centre, image axes (Y down)."""
        return (
            self.pixel_x - self.frame_width / 2.0,
            self.pixel_y - self.frame_height / 2.0,
        )


class AlignmentDetector(Protocol):
    def detect_alignment_feature(self) -> FeatureDetection | None: ...


def pixel_offset_to_mm(
    detection: FeatureDetection,
    mm_per_pixel: float,
    invert_y: bool = True,
) -> tuple[float, float]:
    """Relative machine move (mm) that centres *detection* in the frame."""
    ox, oy = detection.offset_px
    if invert_y:
        oy = -oy
    return (ox * mm_per_pixel, oy * mm_per_pixel)


# ---------------------------------------------------------------------------
# Circle scoring
# ---------------------------------------------------------------------------


def score_circle(
    x: float,
    y: float,
    radius: float,
    frame_width: int,
    frame_height: int,
    ideal_radius: float = 20.0,
    center_weight: float = 0.7,
) -> float:
    """Score in [0, 1]; higher is closer to centre and nearer *ideal_radius*."""
    cx, cy = frame_width / 2.0, frame_height / 2.0
    max_dist = math.hypot(cx, cy)
    norm_dist = math.hypot(x - cx, y - cy) / max_dist if max_dist > 0 else 0.0
    size_score = max(0.0, 1.0 - abs(radius - ideal_radius) / ideal_radius)
    return (1.0 - norm_dist) * center_weight + size_score * (1.0 - center_weight)


def select_best_circle(
    circles: np.ndarray,
    frame_width: int,
    frame_height: int,
    ideal_radius: float = 20.0,
    center_weight: float = 0.7,
) -> FeatureDetection | None:
    """Pick the highest-scoring ``(x, y, r)`` row, or ``None`` if empty."""
    rows = np.asarray(circles, dtype=np.float64).reshape(-1, 3)
    best: FeatureDetection | None = None
    for x, y, r in rows:
        s = score_circle(
            x, y, r, frame_width, frame_height, ideal_radius, center_weight,
        )
        logger.debug("Circle (%.1f, %.1f) r=%.1f score=%.3f", x, y, r, s)
        if best is None or s > best.score:
            best = FeatureDetection(
                pixel_x=float(x),
                pixel_y=float(y),
                frame_width=frame_width,
                frame_height=frame_height,
                radius=float(r),
                score=s,
            )
    return best


# ---------------------------------------------------------------------------
# OpenCV detector
# ---------------------------------------------------------------------------


class HoughCircleDetector:
    """Fiducial detector based on ``cv2.HoughCircles``.

    Parameters
    ----------
    frame_source : callable
        Returns the current BGR (or grayscale) frame, or ``None`` when no
        frame is available.
    hough : HoughConfig
        Blur, Hough and scoring parameters.
    rotate_180 : bool
        The camera is mounted upside down on the head; frames are rotated
        before detection so image axes line up with machine axes.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        hough: HoughConfig,
        rotate_180: bool = True,
    ) -> None:
        self._frame_source = frame_source
        self._cfg = hough
        self._rotate_180 = rotate_180

    def detect_alignment_feature(self) -> FeatureDetection | None:
        frame = self._frame_source()
        if frame is None:
            logger.warning("No camera frame available")
            return None
        return self.detect_in_frame(frame)

    def detect_in_frame(self, frame: np.ndarray) -> FeatureDetection | None:
        """Run detection on an explicit frame."""
        if self._rotate_180:
            frame = cv2.flip(frame, -1)
        gray = frame if frame.ndim == 2 else cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)

        c = self._cfg
        k = c.blur_kernel
        gray = cv2.GaussianBlur(gray, (k, k), c.blur_sigma, c.blur_sigma)

        height, width = gray.shape[:2]
        circles = cv2.HoughCircles(
            gray,
            cv2.HOUGH_GRADIENT,
            dp=c.dp,
            minDist=height / c.min_dist_divisor,
            param1=c.param1,
            param2=c.param2,
            minRadius=c.min_radius,
            maxRadius=c.max_radius,
        )
        if circles is None:
            logger.info("No circles detected")
            return None

        best = select_best_circle(
            circles[0], width, height, c.ideal_radius, c.center_weight,
        )
        if best is not None:
            logger.info(
                "Best circle of %d: (%.1f, %.1f) r=%.1f score=%.3f",
                len(circles[0]), best.pixel_x, best.pixel_y,
                best.radius, best.score,
            )
        return best


class CameraFrameSource:
    """Frame grabber over ``cv2.VideoCapture``."""

    def __init__(self, device: int | str = 0) -> None:
        self._cap = cv2.VideoCapture(device)
        if not self._cap.isOpened():
            raise RuntimeError(f"Cannot open camera {device!r}")

    def __call__(self) -> np.ndarray | None:
        ok, frame = self._cap.read()
        return frame if ok else None

    def release(self) -> None:
        self._cap.release()
