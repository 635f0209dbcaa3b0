"""
Image preprocessing functions for the card scanner.

Prepares a captured frame for text recognition: crop to the capture zone,
optional name-bar extraction, grayscale, contrast stretch, Otsu binarization
and a nearest-neighbour upscale.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

from .config import (
    EnhancementOptions, NAME_REGION, OTSU_DEFAULT_THRESHOLD,
    CARD_OUTPUT_WIDTH, CARD_OUTPUT_HEIGHT,
    ZONE_WIDTH_PERCENT, ZONE_HEIGHT_PERCENT,
)
from .utils import Rect, detection_zone


@dataclass
class ProcessedImage:
    """Result of the enhancement stage."""
    image: np.ndarray
    original_width: int
    original_height: int
    crop_region: Rect
    name_region: Optional[Rect] = None
    stages: Dict[str, np.ndarray] = field(default_factory=OrderedDict)


def otsu_threshold(gray: np.ndarray) -> int:
    """
    Otsu's method over a 256-bin histogram.

    Picks the first threshold maximising the between-class variance
    wB * wF * (mB - mF)^2. Returns 128 when the histogram carries no split.
    """
    values = np.asarray(gray)
    if values.size == 0:
        return OTSU_DEFAULT_THRESHOLD

    histogram = np.bincount(values.astype(np.uint8).ravel(), minlength=256)
    total = int(values.size)
    weighted_sum = float(np.dot(np.arange(256), histogram))

    sum_b = 0.0
    w_b = 0
    max_variance = 0.0
    threshold = OTSU_DEFAULT_THRESHOLD

    for i in range(256):
        w_b += int(histogram[i])
        if w_b == 0:
            continue

        w_f = total - w_b
        if w_f == 0:
            break

        sum_b += i * float(histogram[i])
        m_b = sum_b / w_b
        m_f = (weighted_sum - sum_b) / w_f
        variance = w_b * w_f * (m_b - m_f) * (m_b - m_f)

        if variance > max_variance:
            max_variance = variance
            threshold = i

    return threshold


class CardImagePreprocessor:
    """Enhancement pipeline producing OCR-ready card rasters."""

    def __init__(
        self,
        output_size: Tuple[int, int] = (CARD_OUTPUT_WIDTH, CARD_OUTPUT_HEIGHT),
        name_region: Tuple[float, float, float, float] = NAME_REGION,
        zone_percent: Tuple[float, float] = (ZONE_WIDTH_PERCENT, ZONE_HEIGHT_PERCENT)
    ):
        self.output_size = output_size
        self.name_region = name_region
        self.zone_percent = zone_percent

    def process(self, image: np.ndarray, options: EnhancementOptions = None) -> ProcessedImage:
        """
        Full preprocessing pipeline.

        Args:
            image: Full BGR frame, or an already extracted card raster when
                ``options.crop_to_zone`` is False
            options: Which steps to run

        Returns:
            ProcessedImage; the input array is never modified
        """
        if image is None or image.size == 0:
            raise ValueError("Empty image passed to preprocessing")

        options = options or EnhancementOptions()
        height, width = image.shape[:2]
        stages: Dict[str, np.ndarray] = OrderedDict()

        def keep(name: str, stage: np.ndarray) -> None:
            if options.debug:
                stages[name] = stage.copy()

        if options.crop_to_zone:
            card, crop_region = self.crop_to_zone(image)
        else:
            card, crop_region = image.copy(), Rect(0, 0, width, height)
        keep("card", card)

        name_region = None
        if options.use_full_card:
            result = card
        else:
            result, name_region = self.extract_name_region(card)
            keep("name_region", result)

        if options.enhance:
            result = to_grayscale(result)
            keep("grayscale", result)

            result = stretch_contrast(result, options.contrast)
            keep("contrast", result)

            if options.binarize:
                result = binarize(result, otsu_threshold(result))
                keep("binary", result)

        if options.upscale and options.upscale_factor > 1:
            result = upscale_nearest(result, options.upscale_factor)
            keep("upscaled", result)

        return ProcessedImage(
            image=result,
            original_width=width,
            original_height=height,
            crop_region=crop_region,
            name_region=name_region,
            stages=stages,
        )

    def crop_to_zone(self, frame: np.ndarray) -> Tuple[np.ndarray, Rect]:
        """Crop the centred capture zone and scale it to the canonical card size."""
        height, width = frame.shape[:2]
        zone = detection_zone(width, height, *self.zone_percent)
        if zone.area == 0:
            raise ValueError(f"Frame {width}x{height} too small for the capture zone")
        card = cv2.resize(zone.crop(frame), self.output_size, interpolation=cv2.INTER_AREA)
        return card, zone

    def extract_name_region(self, card: np.ndarray) -> Tuple[np.ndarray, Rect]:
        """Cut the name bar out of a card raster."""
        height, width = card.shape[:2]
        rx, ry, rw, rh = self.name_region
        region = Rect(
            int(width * rx),
            int(height * ry),
            max(1, int(width * rw)),
            max(1, int(height * rh)),
        )
        return region.crop(card).copy(), region


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Luminance-weighted grayscale (0.299 R + 0.587 G + 0.114 B) of a BGR image."""
    if image.ndim == 2:
        return image.copy()

    channels = image[..., :3].astype(np.float64)
    gray = channels[..., 2] * 0.299 + channels[..., 1] * 0.587 + channels[..., 0] * 0.114
    return np.clip(np.rint(gray), 0, 255).astype(np.uint8)


def stretch_contrast(gray: np.ndarray, factor: float) -> np.ndarray:
    """Scale intensities away from mid-grey by ``factor``, clamped to 0..255."""
    stretched = factor * (gray.astype(np.float64) - 128.0) + 128.0
    return np.clip(np.rint(stretched), 0, 255).astype(np.uint8)


def binarize(gray: np.ndarray, threshold: int) -> np.ndarray:
    """Pixels above ``threshold`` become white, the rest black."""
    return np.where(gray > threshold, 255, 0).astype(np.uint8)


def upscale_nearest(image: np.ndarray, factor: int) -> np.ndarray:
    """Integer upscale with smoothing disabled to keep glyph edges sharp."""
    height, width = image.shape[:2]
    return cv2.resize(image, (width * factor, height * factor), interpolation=cv2.INTER_NEAREST)
