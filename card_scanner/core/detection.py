"""
Card presence detection for the card scanner.

Contains the region sampler that draws the fixed capture zone out of a live
frame, the heuristic presence classifier and the frame sources that feed them.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from .config import (
    PresenceThresholds, SAMPLE_WIDTH, SAMPLE_HEIGHT,
    ZONE_WIDTH_PERCENT, ZONE_HEIGHT_PERCENT,
    CARD_OUTPUT_WIDTH, CARD_OUTPUT_HEIGHT,
)
from .utils import Rect, RasterSample, DetectedRegion, detection_zone


def brightness(pixels: np.ndarray) -> np.ndarray:
    """Per-pixel brightness as the plain mean of the colour channels."""
    if pixels.ndim == 2:
        return pixels.astype(np.float64)
    return pixels[..., :3].astype(np.float64).mean(axis=2)


def frame_size(frame: Optional[np.ndarray]) -> Tuple[int, int]:
    """Return (width, height) of a frame, (0, 0) when it is not ready."""
    if frame is None or frame.ndim < 2:
        return 0, 0
    return int(frame.shape[1]), int(frame.shape[0])


# =============================================================================
# Region Sampler
# =============================================================================

class RegionSampler:
    """Draws the centred capture zone of a frame into a small raster."""

    def __init__(
        self,
        sample_size: Tuple[int, int] = (SAMPLE_WIDTH, SAMPLE_HEIGHT),
        width_percent: float = ZONE_WIDTH_PERCENT,
        height_percent: float = ZONE_HEIGHT_PERCENT
    ):
        self.sample_size = sample_size
        self.width_percent = width_percent
        self.height_percent = height_percent

    def zone_for(self, frame: np.ndarray) -> Optional[Rect]:
        width, height = frame_size(frame)
        if not width or not height:
            return None
        zone = detection_zone(width, height, self.width_percent, self.height_percent)
        if zone.width <= 0 or zone.height <= 0:
            return None
        return zone

    def sample(self, frame: np.ndarray) -> Optional[RasterSample]:
        """
        Sample the capture zone of ``frame``.

        Returns:
            RasterSample scaled to ``sample_size``, or None if the frame
            source has no dimensions yet
        """
        zone = self.zone_for(frame)
        if zone is None:
            return None

        pixels = cv2.resize(
            zone.crop(frame), self.sample_size, interpolation=cv2.INTER_AREA
        )
        return RasterSample(pixels=pixels, source=zone)

    def extract_card(
        self,
        frame: np.ndarray,
        output_size: Tuple[int, int] = (CARD_OUTPUT_WIDTH, CARD_OUTPUT_HEIGHT)
    ) -> Optional[np.ndarray]:
        """Extract the capture zone at the canonical card size."""
        zone = self.zone_for(frame)
        if zone is None:
            return None
        return cv2.resize(zone.crop(frame), output_size, interpolation=cv2.INTER_AREA)


def frame_difference(previous: RasterSample, current: RasterSample) -> float:
    """Mean absolute brightness difference between two samples."""
    if previous.pixels.shape != current.pixels.shape:
        return float("inf")
    return float(np.abs(brightness(previous.pixels) - brightness(current.pixels)).mean())


# =============================================================================
# Presence Classifier
# =============================================================================

@dataclass
class PresenceScores:
    """Raw heuristic scores computed over one sample."""
    edge: float
    title_contrast: float
    structure: float


class PresenceClassifier:
    """
    Decides whether a card-like object occupies the capture zone.

    A card shows a real boundary against the background (edge score), a
    printed name bar with high local contrast (title contrast) and horizontal
    bands for title, art and text box (row-mean variance). Presence requires
    the edge AND one of the other two. Thresholds use hysteresis.
    """

    def __init__(self, thresholds: PresenceThresholds = None):
        self.thresholds = thresholds or PresenceThresholds()

    def classify(self, sample: RasterSample, was_detecting: bool = False) -> bool:
        return self.decide(self.scores(sample), was_detecting)

    def decide(self, scores: PresenceScores, was_detecting: bool) -> bool:
        t = self.thresholds
        has_edges = scores.edge > t.edge(was_detecting)
        has_title_bar = scores.title_contrast > t.title(was_detecting)
        has_structure = scores.structure > t.structure(was_detecting)
        return has_edges and (has_title_bar or has_structure)

    def confidence(self, scores: PresenceScores, was_detecting: bool) -> float:
        """Heuristic 0..1 score of how clearly the thresholds were passed."""
        t = self.thresholds
        edge_ratio = min(1.0, scores.edge / (2 * t.edge(was_detecting)))
        content_ratio = min(1.0, max(
            scores.title_contrast / (2 * t.title(was_detecting)),
            scores.structure / (2 * t.structure(was_detecting)),
        ))
        return round(0.5 * edge_ratio + 0.5 * content_ratio, 3)

    def region(self, sample: RasterSample, scores: PresenceScores, was_detecting: bool) -> DetectedRegion:
        zone = sample.source
        return DetectedRegion(
            x=zone.x,
            y=zone.y,
            width=zone.width,
            height=zone.height,
            confidence=self.confidence(scores, was_detecting),
            aspect_ratio=zone.width / zone.height if zone.height else 0.0,
        )

    def scores(self, sample: RasterSample) -> PresenceScores:
        gray = brightness(sample.pixels)
        return PresenceScores(
            edge=self._edge_score(gray),
            title_contrast=self._title_bar_contrast(gray),
            structure=self._horizontal_structure(gray),
        )

    def _edge_score(self, gray: np.ndarray) -> float:
        """
        Average brightness step between the border band and pixels further in.

        Probes every second row along the left and right borders and every
        second column along the top and bottom, within the middle 80%.
        """
        h, w = gray.shape
        band = self.thresholds.edge_band
        inner = band + self.thresholds.edge_inner_offset
        if w <= inner + 1 or h <= inner + 1:
            return 0.0

        rows = np.arange(int(h * 0.1), int(h * 0.9), 2)
        cols = np.arange(int(w * 0.1), int(w * 0.9), 2)

        diffs = []
        if rows.size:
            diffs.append(np.abs(gray[rows, band] - gray[rows, inner]))
            diffs.append(np.abs(gray[rows, w - band - 1] - gray[rows, w - inner - 1]))
        if cols.size:
            diffs.append(np.abs(gray[band, cols] - gray[inner, cols]))
            diffs.append(np.abs(gray[h - band - 1, cols] - gray[h - inner - 1, cols]))

        if not diffs:
            return 0.0
        return float(np.concatenate(diffs).mean())

    def _title_bar_contrast(self, gray: np.ndarray) -> float:
        """Max minus min brightness in the name bar (top 5-15%, side margins excluded)."""
        h, w = gray.shape
        bar = gray[int(h * 0.05):int(h * 0.15), int(w * 0.15):int(w * 0.85)]
        if bar.size == 0:
            return 0.0
        return float(bar.max() - bar.min())

    def _horizontal_structure(self, gray: np.ndarray) -> float:
        """Variance of the per-row mean brightness over the full height."""
        h, w = gray.shape
        body = gray[:, int(w * 0.1):int(w * 0.9)]
        if body.size == 0:
            return 0.0
        return float(body.mean(axis=1).var())


# =============================================================================
# Frame Sources
# =============================================================================

class StaticFrameSource:
    """Frame source over a fixed image; also used to replay recorded frames."""

    def __init__(self, frame: np.ndarray = None):
        self.frame = frame

    def read(self) -> Optional[np.ndarray]:
        return self.frame


class VideoCaptureSource:
    """Frame source backed by an OpenCV capture device."""

    def __init__(self, camera_index: int = 0, width: int = 1920, height: int = 1080):
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.capture = None

    def open(self) -> bool:
        self.capture = cv2.VideoCapture(self.camera_index)
        if not self.capture.isOpened():
            print(f"[Camera] Cannot open camera {self.camera_index}")
            self.capture = None
            return False

        self.capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        print(f"[Camera] Opened camera {self.camera_index}")
        return True

    def read(self) -> Optional[np.ndarray]:
        if self.capture is None:
            return None
        ret, frame = self.capture.read()
        return frame if ret else None

    def release(self) -> None:
        if self.capture is not None:
            self.capture.release()
            self.capture = None
            print("[Camera] Released")
