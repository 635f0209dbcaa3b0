"""
Core module for the card scanner.

This package contains one module per pipeline stage:
- config: Tuned constants and tunable threshold dataclasses
- utils: Data classes, detection-zone geometry and file I/O
- detection: Region sampler, presence classifier and frame sources
- tracking: Stability tracker state machine and the scan loop
- preprocessing: Image enhancement and Otsu binarization
- recognition: OCR engine wrappers and the recognition invoker
- postprocessing: Card name extraction, normalization and fuzzy matching
- catalog: Scryfall client and rate-limited request queue
- cache: Two-tier catalog cache
- lookup: Exact -> fuzzy -> suggestions lookup orchestration
- pipeline: Card recognizer and live scan session
"""

# Data classes
from .utils import (
    Rect,
    DetectedRegion,
    RasterSample,
    TrackingState,
    TrackerUpdate,
    RecognitionResult,
    LookupResult,
    CacheEntry,
)

# Configuration
from .config import (
    PresenceThresholds,
    TrackerConfig,
    GarbageRules,
    EnhancementOptions,
)

# File I/O utilities
from .utils import (
    detection_zone,
    load_frames,
    card_summary,
    lookup_result_to_dict,
    save_result,
    save_debug_stages,
)

# Detection and tracking
from .detection import (
    RegionSampler,
    PresenceClassifier,
    StaticFrameSource,
    VideoCaptureSource,
    frame_difference,
)
from .tracking import StabilityTracker, ScanLoop

# Preprocessing
from .preprocessing import CardImagePreprocessor, ProcessedImage, otsu_threshold

# Recognition
from .recognition import OCREngine, RecognitionInvoker, EngineUnavailableError

# Postprocessing
from .postprocessing import (
    normalize_card_name,
    extract_card_name,
    is_valid_card_name,
    split_double_faced_name,
    similarity_score,
    find_best_matches,
    is_likely_match,
)

# Catalog
from .cache import MemoryCache, DurableCacheStore, JsonFileCacheStore, TwoTierCache
from .catalog import ScryfallClient, RequestQueue, CatalogError, RateLimitError
from .lookup import CardLookup

# Main pipelines
from .pipeline import CardRecognizer, ScanSession, RecognitionOutcome, RecognitionStatus


__all__ = [
    # Data classes
    "Rect",
    "DetectedRegion",
    "RasterSample",
    "TrackingState",
    "TrackerUpdate",
    "RecognitionResult",
    "LookupResult",
    "CacheEntry",
    # Configuration
    "PresenceThresholds",
    "TrackerConfig",
    "GarbageRules",
    "EnhancementOptions",
    # File I/O
    "detection_zone",
    "load_frames",
    "card_summary",
    "lookup_result_to_dict",
    "save_result",
    "save_debug_stages",
    # Detection and tracking
    "RegionSampler",
    "PresenceClassifier",
    "StaticFrameSource",
    "VideoCaptureSource",
    "frame_difference",
    "StabilityTracker",
    "ScanLoop",
    # Preprocessing
    "CardImagePreprocessor",
    "ProcessedImage",
    "otsu_threshold",
    # Recognition
    "OCREngine",
    "RecognitionInvoker",
    "EngineUnavailableError",
    # Postprocessing
    "normalize_card_name",
    "extract_card_name",
    "is_valid_card_name",
    "split_double_faced_name",
    "similarity_score",
    "find_best_matches",
    "is_likely_match",
    # Catalog
    "MemoryCache",
    "DurableCacheStore",
    "JsonFileCacheStore",
    "TwoTierCache",
    "ScryfallClient",
    "RequestQueue",
    "CatalogError",
    "RateLimitError",
    "CardLookup",
    # Pipelines
    "CardRecognizer",
    "ScanSession",
    "RecognitionOutcome",
    "RecognitionStatus",
]
