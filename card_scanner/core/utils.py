"""
Utility functions and data classes for the card scanner.

Contains shared data structures, detection-zone geometry and file I/O helpers.
"""

import json
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import List, Dict, Optional, Tuple, Any

import cv2
import numpy as np

from .config import ZONE_WIDTH_PERCENT, ZONE_HEIGHT_PERCENT


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in pixel coordinates."""
    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    def crop(self, image: np.ndarray) -> np.ndarray:
        """Return a view of ``image`` inside this rectangle."""
        return image[self.y:self.y + self.height, self.x:self.x + self.width]


@dataclass
class DetectedRegion:
    """The capture zone as seen on one sampling tick.

    Always the fixed zone in source-frame coordinates; confidence is a
    heuristic score, not a calibrated probability.
    """
    x: int
    y: int
    width: int
    height: int
    confidence: float
    aspect_ratio: float

    @property
    def rect(self) -> Rect:
        return Rect(self.x, self.y, self.width, self.height)


@dataclass(frozen=True)
class RasterSample:
    """An immutable pixel buffer and the source rectangle it was drawn from."""
    pixels: np.ndarray
    source: Rect

    def __post_init__(self):
        self.pixels.setflags(write=False)

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]


class TrackingState(str, Enum):
    """States of the stability tracker."""
    NO_CARD = "no-card"
    TRACKING = "tracking"
    STABILIZING = "stabilizing"
    STABLE = "stable"
    COOLDOWN = "cooldown"


@dataclass
class TrackerUpdate:
    """What the tracker reports for one tick."""
    state: TrackingState
    progress: float = 0.0
    region: Optional[DetectedRegion] = None
    captured: Optional[np.ndarray] = None
    card_lost: bool = False


@dataclass
class RecognitionResult:
    """Text returned by one recognition engine invocation."""
    text: str
    confidence: float  # 0-100, engine specific
    processing_time_ms: float


@dataclass
class LookupResult:
    """Terminal output of the lookup orchestrator for one candidate name."""
    success: bool
    card: Optional[Dict[str, Any]] = None
    match_type: Optional[str] = None  # "exact" | "fuzzy"
    error: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)


@dataclass
class CacheEntry:
    """Cached catalog record keyed by ``<kind>:<normalized-name-or-id>``."""
    key: str
    data: Dict[str, Any]
    timestamp_ms: int

    def is_expired(self, now_ms: float, ttl_ms: float) -> bool:
        return now_ms - self.timestamp_ms >= ttl_ms


# =============================================================================
# Detection Zone Geometry
# =============================================================================

def detection_zone(
    frame_width: int,
    frame_height: int,
    width_percent: float = ZONE_WIDTH_PERCENT,
    height_percent: float = ZONE_HEIGHT_PERCENT
) -> Rect:
    """
    Compute the centred capture zone for a frame.

    The zone is clamped so it always lies within the frame.
    """
    zone_w = int(round(frame_width * width_percent))
    zone_h = int(round(frame_height * height_percent))
    zone_x = max(0, int(round((frame_width - zone_w) / 2)))
    zone_y = max(0, int(round((frame_height - zone_h) / 2)))

    return Rect(
        zone_x,
        zone_y,
        min(zone_w, frame_width - zone_x),
        min(zone_h, frame_height - zone_y)
    )


# =============================================================================
# File I/O Utilities
# =============================================================================

VIDEO_EXTENSIONS = {'.mp4', '.avi', '.mov', '.mkv', '.webm'}
IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp', '.tiff', '.webp'}


def load_frames(input_path: str) -> List[Tuple[int, np.ndarray, str]]:
    """
    Load frames from video or folder.

    Args:
        input_path: Path to video file, single image or folder of images

    Returns:
        List of (frame_index, image, frame_path)
    """
    path = Path(input_path)
    frames = []

    if path.is_file():
        if path.suffix.lower() in VIDEO_EXTENSIONS:
            cap = cv2.VideoCapture(str(path))
            frame_idx = 0

            while cap.isOpened():
                ret, frame = cap.read()
                if not ret:
                    break

                frames.append((frame_idx, frame, f"video_frame_{frame_idx:04d}"))
                frame_idx += 1

            cap.release()
        else:
            image = cv2.imread(str(path))
            if image is not None:
                frames.append((0, image, str(path)))

    elif path.is_dir():
        image_files = sorted(
            f for f in path.iterdir()
            if f.suffix.lower() in IMAGE_EXTENSIONS
        )

        for idx, img_path in enumerate(image_files):
            image = cv2.imread(str(img_path))
            if image is not None:
                frames.append((idx, image, str(img_path)))

    return frames


CARD_SUMMARY_FIELDS = (
    "id", "name", "set", "set_name", "collector_number", "type_line", "mana_cost", "rarity",
)


def card_summary(card: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Trim a catalog record to the fields worth saving; the rest can be refetched by id."""
    if card is None:
        return None
    return {key: card.get(key) for key in CARD_SUMMARY_FIELDS}


def lookup_result_to_dict(result: LookupResult) -> Dict[str, Any]:
    """Flatten a lookup result into JSON-friendly data."""
    data = asdict(result)
    data["card"] = card_summary(result.card)
    return data


def save_result(data: Dict[str, Any], out_file: Path) -> None:
    """Save a result dict to JSON."""
    out_file = Path(out_file)
    out_file.parent.mkdir(parents=True, exist_ok=True)
    with open(out_file, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def save_debug_stages(stages: Dict[str, np.ndarray], out_dir: Path, prefix: str = "stage") -> List[Path]:
    """Write retained enhancement stages as PNG files."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    written = []
    for idx, (name, image) in enumerate(stages.items()):
        path = out_dir / f"{prefix}_{idx:02d}_{name}.png"
        cv2.imwrite(str(path), image)
        written.append(path)
    return written
