"""
End-to-end card recognition for the card scanner.

CardRecognizer runs one capture through enhance -> recognize -> extract name
-> lookup. ScanSession connects a live ScanLoop to a CardRecognizer without
blocking the sampling thread.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, Future
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from .catalog import CatalogError
from .config import EnhancementOptions, TrackerConfig
from .detection import PresenceClassifier, RegionSampler
from .lookup import CardLookup, ERROR_NOT_FOUND
from .postprocessing import extract_card_name, is_valid_card_name, name_agreement
from .preprocessing import CardImagePreprocessor, ProcessedImage
from .recognition import RecognitionInvoker, EngineUnavailableError
from .tracking import StabilityTracker, ScanLoop
from .utils import DetectedRegion, TrackerUpdate


ERROR_IN_PROGRESS = "Recognition already in progress"
ERROR_INVALID_NAME = "Could not extract valid card name from image"


class RecognitionStatus(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class RecognitionOutcome:
    """What the consumer receives for one recognition attempt."""
    card: Optional[Dict[str, Any]] = None
    ocr_text: str = ""
    confidence: float = 0.0
    match_type: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)
    processing_time_ms: float = 0.0
    error: Optional[str] = None
    processed_image: Optional[ProcessedImage] = None
    # Similarity of the OCR name to the card's front face, 0..1
    name_similarity: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.card is not None and self.error is None


class CardRecognizer:
    """
    Recognizes a card from a frame or an extracted card raster.

    Only one recognition runs at a time; a call made while another is in
    flight returns an outcome with ERROR_IN_PROGRESS instead of waiting.
    Failures never raise; they are reported in ``outcome.error``.
    """

    def __init__(
        self,
        invoker: RecognitionInvoker = None,
        preprocessor: CardImagePreprocessor = None,
        lookup: CardLookup = None
    ):
        self.invoker = invoker or RecognitionInvoker()
        self.preprocessor = preprocessor or CardImagePreprocessor()
        self.lookup = lookup or CardLookup()
        self.status = RecognitionStatus.IDLE
        self.last_outcome: Optional[RecognitionOutcome] = None
        self._processing = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._processing.locked()

    def initialize(self) -> bool:
        """Warm up the recognition engine. Returns False if it is unavailable."""
        self.status = RecognitionStatus.INITIALIZING
        try:
            self.invoker.initialize()
        except EngineUnavailableError as e:
            print(f"[Pipeline] Recognition engine unavailable: {e}")
            self.status = RecognitionStatus.ERROR
            return False
        self.status = RecognitionStatus.READY
        return True

    def recognize_card(
        self,
        image: np.ndarray,
        pre_extracted: bool = False,
        debug: bool = False,
        options: EnhancementOptions = None
    ) -> RecognitionOutcome:
        """
        Recognize the card in ``image``.

        Args:
            image: Full camera frame, or a card raster from the tracker
            pre_extracted: True when ``image`` is already the extracted card
            debug: Keep enhancement stages on the outcome
            options: Enhancement options; crop and debug flags are taken
                from the arguments above
        """
        if not self._processing.acquire(blocking=False):
            return RecognitionOutcome(error=ERROR_IN_PROGRESS)

        self.status = RecognitionStatus.PROCESSING
        start = time.perf_counter()
        try:
            options = replace(options or EnhancementOptions(), crop_to_zone=not pre_extracted, debug=debug)
            outcome = self._run(image, options)
        except Exception as e:
            # Boundary: the consumer only ever sees an outcome
            print(f"[Pipeline] Recognition failed: {e}")
            outcome = RecognitionOutcome(error=str(e) or "Recognition failed")
        finally:
            self._processing.release()

        outcome.processing_time_ms = (time.perf_counter() - start) * 1000
        return self._finish(outcome)

    def _run(self, image: np.ndarray, options: EnhancementOptions) -> RecognitionOutcome:
        processed = self.preprocessor.process(image, options)
        ocr = self.invoker.recognize(processed.image)
        kept_image = processed if options.debug else None

        card_name = extract_card_name(ocr.text)
        if not is_valid_card_name(card_name):
            print(f"[Pipeline] No usable card name in {ocr.text[:50]!r}")
            return RecognitionOutcome(
                ocr_text=ocr.text,
                confidence=ocr.confidence,
                error=ERROR_INVALID_NAME,
                processed_image=kept_image,
            )

        result = self.lookup.lookup(card_name)
        outcome = RecognitionOutcome(
            card=result.card,
            ocr_text=card_name,
            confidence=ocr.confidence,
            match_type=result.match_type,
            suggestions=list(result.suggestions),
            error=None if result.success else (result.error or ERROR_NOT_FOUND),
            processed_image=kept_image,
        )
        if result.card is not None:
            outcome.name_similarity = name_agreement(card_name, result.card)
        return outcome

    def lookup_by_name(self, name: str) -> RecognitionOutcome:
        """Manual entry: look a name up directly, skipping recognition."""
        self.status = RecognitionStatus.PROCESSING
        start = time.perf_counter()
        try:
            result = self.lookup.lookup(name)
            outcome = RecognitionOutcome(
                card=result.card,
                ocr_text=name,
                confidence=100.0,
                match_type=result.match_type,
                suggestions=list(result.suggestions),
                error=None if result.success else (result.error or ERROR_NOT_FOUND),
            )
        except CatalogError as e:
            print(f"[Pipeline] Lookup failed: {e}")
            outcome = RecognitionOutcome(ocr_text=name, error=str(e) or "Lookup failed")

        outcome.processing_time_ms = (time.perf_counter() - start) * 1000
        return self._finish(outcome)

    def reset(self) -> None:
        self.last_outcome = None
        self.status = RecognitionStatus.READY if self.invoker.is_ready else RecognitionStatus.IDLE

    def _finish(self, outcome: RecognitionOutcome) -> RecognitionOutcome:
        self.last_outcome = outcome
        self.status = RecognitionStatus.SUCCESS if outcome.success else RecognitionStatus.ERROR
        return outcome


class ScanSession:
    """
    Live scanning: tracker ticks on the loop thread, recognition on a worker.

    Results of recognitions started before the last ``stop()`` are dropped,
    since the consumer has moved on.
    """

    def __init__(
        self,
        recognizer: CardRecognizer,
        source,
        tracker: StabilityTracker = None,
        on_update: Callable[[TrackerUpdate], None] = None,
        on_result: Callable[[RecognitionOutcome], None] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.recognizer = recognizer
        self.tracker = tracker or StabilityTracker(
            TrackerConfig.from_env(), PresenceClassifier(), RegionSampler()
        )
        self.on_update = on_update
        self.on_result = on_result
        self.loop = ScanLoop(
            self.tracker,
            source,
            on_update=on_update,
            on_stable=self._on_stable,
            on_card_lost=self._on_card_lost,
            clock=clock,
        )
        self.last_future: Optional[Future] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="recognition")
        self._generation = 0
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            self._generation += 1
        self.loop.start()

    def stop(self) -> None:
        with self._lock:
            self._generation += 1
        self.loop.stop()

    def close(self) -> None:
        self.stop()
        self._executor.shutdown(wait=True)

    def _on_stable(self, region: DetectedRegion, raster: np.ndarray) -> None:
        if self.recognizer.busy:
            print("[Pipeline] Capture ignored, previous card still processing")
            self._deliver(self._generation, RecognitionOutcome(error=ERROR_IN_PROGRESS))
            return

        generation = self._generation
        print("[Pipeline] Card captured, recognizing...")
        self.last_future = self._executor.submit(self._recognize, generation, raster)

    def _recognize(self, generation: int, raster: np.ndarray) -> RecognitionOutcome:
        outcome = self.recognizer.recognize_card(raster, pre_extracted=True)
        self._deliver(generation, outcome)
        return outcome

    def _deliver(self, generation: int, outcome: RecognitionOutcome) -> None:
        with self._lock:
            current = generation == self._generation
        if not current:
            print("[Pipeline] Discarding result from a stopped session")
            return
        if self.on_result:
            self.on_result(outcome)

    def _on_card_lost(self) -> None:
        if not self.recognizer.busy:
            self.recognizer.reset()
