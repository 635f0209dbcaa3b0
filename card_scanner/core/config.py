"""
Configuration for the card scanner.

Module-level constants hold the empirically tuned defaults. The dataclasses
below bundle the values each component accepts so they can be recalibrated
without touching the code.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Optional


# =============================================================================
# Detection Zone
# =============================================================================
# Fixed capture rectangle, as a fraction of the video frame, centred.
ZONE_WIDTH_PERCENT = 0.30
ZONE_HEIGHT_PERCENT = 0.75

# Raster size the sampler scales the zone down to
SAMPLE_WIDTH = 100
SAMPLE_HEIGHT = 140

# Canonical card raster handed to the enhancement stage (2.5:3.5 card)
CARD_OUTPUT_WIDTH = 400
CARD_OUTPUT_HEIGHT = 560
CARD_ASPECT_RATIO = 2.5 / 3.5

# Name bar of the card, as fractions of the card raster (x, y, width, height)
NAME_REGION = (0.06, 0.04, 0.88, 0.10)

# =============================================================================
# Sampling Cadence
# =============================================================================
SAMPLE_INTERVAL_NORMAL_MS = 100
SAMPLE_INTERVAL_LOW_POWER_MS = 250
LOW_POWER = os.environ.get("CARD_SCANNER_LOW_POWER", "").lower() in ("1", "true", "yes", "on")

# =============================================================================
# Presence Classifier (higher value = threshold when no card was present)
# =============================================================================
EDGE_THRESHOLD_ON = 25.0
EDGE_THRESHOLD_HOLD = 15.0
TITLE_THRESHOLD_ON = 50.0
TITLE_THRESHOLD_HOLD = 30.0
STRUCTURE_THRESHOLD_ON = 1200.0
STRUCTURE_THRESHOLD_HOLD = 800.0

EDGE_BAND = 3        # pixels from the sample border where the edge is probed
EDGE_INNER_OFFSET = 8  # pixels further inward for the comparison pixel

# =============================================================================
# Stability Tracker
# =============================================================================
CAPTURE_DELAY_MS = 300
COOLDOWN_AFTER_CAPTURE_MS = 1500
NO_CARD_DEBOUNCE_TICKS = 8  # 800ms at the normal cadence
MOVEMENT_THRESHOLD = 12.0   # mean absolute grey difference between samples

# =============================================================================
# Image Enhancement
# =============================================================================
CONTRAST_FACTOR = 1.4
UPSCALE_FACTOR = 2
OTSU_DEFAULT_THRESHOLD = 128

# =============================================================================
# Recognition
# =============================================================================
OCR_ENGINE = os.environ.get("CARD_SCANNER_OCR_ENGINE", "tesseract")
OCR_LANG = "eng"
TESSERACT_CMD = os.environ.get("TESSERACT_CMD")

# =============================================================================
# Catalog / Lookup
# =============================================================================
SCRYFALL_API_BASE = os.environ.get("SCRYFALL_API_BASE", "https://api.scryfall.com")
SCRYFALL_TIMEOUT = 10.0
USER_AGENT = "card-scanner/1.0"
MIN_REQUEST_INTERVAL_S = 0.1  # 10 requests per second max
RATE_LIMIT_BACKOFF_S = 1.0
MAX_SUGGESTIONS = 5

CACHE_TTL_MS = 24 * 60 * 60 * 1000  # card data rarely changes
CACHE_DIR = Path(os.environ.get(
    "CARD_SCANNER_CACHE_DIR",
    Path.home() / ".cache" / "card_scanner" / "scryfall"
))


# =============================================================================
# Tunable bundles
# =============================================================================

@dataclass
class PresenceThresholds:
    """Presence classifier thresholds with hysteresis.

    The ``*_on`` values apply while no card is present, the lower ``*_hold``
    values once the previous tick already reported a card.
    """
    edge_on: float = EDGE_THRESHOLD_ON
    edge_hold: float = EDGE_THRESHOLD_HOLD
    title_on: float = TITLE_THRESHOLD_ON
    title_hold: float = TITLE_THRESHOLD_HOLD
    structure_on: float = STRUCTURE_THRESHOLD_ON
    structure_hold: float = STRUCTURE_THRESHOLD_HOLD
    edge_band: int = EDGE_BAND
    edge_inner_offset: int = EDGE_INNER_OFFSET

    def edge(self, was_detecting: bool) -> float:
        return self.edge_hold if was_detecting else self.edge_on

    def title(self, was_detecting: bool) -> float:
        return self.title_hold if was_detecting else self.title_on

    def structure(self, was_detecting: bool) -> float:
        return self.structure_hold if was_detecting else self.structure_on


@dataclass
class TrackerConfig:
    """Timing of the stability tracker."""
    capture_delay_ms: float = CAPTURE_DELAY_MS
    cooldown_ms: float = COOLDOWN_AFTER_CAPTURE_MS
    debounce_ticks: int = NO_CARD_DEBOUNCE_TICKS
    # None disables movement gating
    movement_threshold: Optional[float] = MOVEMENT_THRESHOLD
    sample_interval_ms: float = SAMPLE_INTERVAL_NORMAL_MS

    @classmethod
    def low_power(cls) -> "TrackerConfig":
        return cls(sample_interval_ms=SAMPLE_INTERVAL_LOW_POWER_MS)

    @classmethod
    def from_env(cls) -> "TrackerConfig":
        return cls.low_power() if LOW_POWER else cls()


# Short words that real card names contain; never treated as OCR noise.
COMMON_SHORT_WORDS = frozenset({
    # articles, conjunctions, prepositions
    "a", "an", "the", "and", "or", "of", "to", "in", "on", "at", "by", "for",
    "as", "is", "it", "be", "if", "so", "up", "no", "do", "go", "my", "me",
    "we", "us", "he", "she", "her", "his", "him", "its", "our", "you", "who",
    "all", "one", "two", "new", "old", "war", "end", "not", "out", "off",
    # particles common in translated or legendary names
    "o", "i", "la", "le", "el", "de", "du", "da", "di", "en", "et", "un",
    "al", "von", "van", "der", "des", "del", "los", "las",
})


@dataclass
class GarbageRules:
    """Rule table for dropping OCR noise produced by mana and set symbols."""
    common_words: FrozenSet[str] = field(default_factory=lambda: COMMON_SHORT_WORDS)
    single_char_words: FrozenSet[str] = frozenset({"a", "i", "o"})
    # tokens up to this length are inspected for mixed or trailing caps
    short_token_length: int = 3
    min_hyphen_segment: int = 2


@dataclass
class EnhancementOptions:
    """Options for the image enhancement stage."""
    crop_to_zone: bool = True
    use_full_card: bool = True
    enhance: bool = True
    binarize: bool = True
    upscale: bool = True
    debug: bool = False
    contrast: float = CONTRAST_FACTOR
    upscale_factor: int = UPSCALE_FACTOR
