"""
End-to-end tests for card recognition and the live scan session.

The recognition engine and the catalog are fakes; everything between them
(enhancement, name extraction, lookup, caching) is the real code.

Usage:
    pytest card_scanner/tests/test_pipeline.py -v
"""

import sys
import threading
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from card_scanner.core.config import EnhancementOptions
from card_scanner.core.detection import StaticFrameSource
from card_scanner.core.pipeline import (
    CardRecognizer,
    ScanSession,
    RecognitionStatus,
    ERROR_IN_PROGRESS,
    ERROR_INVALID_NAME,
)
from card_scanner.core.preprocessing import CardImagePreprocessor
from card_scanner.core.recognition import RecognitionInvoker, EngineUnavailableError
from card_scanner.core.tracking import StabilityTracker
from card_scanner.core.utils import TrackingState

from conftest import FakeEngine, FakeResponse


def make_recognizer(lookup, engine) -> CardRecognizer:
    return CardRecognizer(
        invoker=RecognitionInvoker(lambda: engine),
        preprocessor=CardImagePreprocessor(),
        lookup=lookup,
    )


# =============================================================================
# Card Recognizer Tests
# =============================================================================

class TestCardRecognizer:
    """One capture through enhance -> recognize -> extract -> lookup."""

    def test_recognizes_card_from_frame(self, lookup, card_frame):
        recognizer = make_recognizer(lookup, FakeEngine("Lightning Bolt {R}\nInstant"))

        outcome = recognizer.recognize_card(card_frame)

        assert outcome.success
        assert outcome.card["name"] == "Lightning Bolt"
        assert outcome.match_type == "exact"
        assert outcome.ocr_text == "Lightning Bolt"
        assert outcome.confidence == 87.0
        assert outcome.name_similarity == 1.0
        assert outcome.processed_image is None
        assert recognizer.status == RecognitionStatus.SUCCESS

    def test_noisy_ocr_uses_fuzzy_match(self, lookup, card_frame):
        recognizer = make_recognizer(lookup, FakeEngine("Lighming Bolt lE 2R\nInstant"))

        outcome = recognizer.recognize_card(card_frame)

        assert outcome.success
        assert outcome.match_type == "fuzzy"
        assert outcome.ocr_text == "Lighming Bolt"
        assert 0.8 < outcome.name_similarity < 1.0

    def test_pre_extracted_card(self, lookup, card_frame):
        engine = FakeEngine("Counterspell")
        recognizer = make_recognizer(lookup, engine)
        card = card_frame[60:420, 224:416].copy()

        outcome = recognizer.recognize_card(card, pre_extracted=True, debug=True)

        assert outcome.success
        assert outcome.processed_image.crop_region.width == 192
        assert "binary" in outcome.processed_image.stages

    def test_caller_options_not_modified(self, lookup, card_frame):
        recognizer = make_recognizer(lookup, FakeEngine("Counterspell"))
        options = EnhancementOptions()

        recognizer.recognize_card(card_frame, pre_extracted=True, debug=True, options=options)

        assert options.crop_to_zone
        assert not options.debug

    def test_invalid_name(self, lookup, session, card_frame):
        recognizer = make_recognizer(lookup, FakeEngine("|| {2}{R} ||\n1234"))

        outcome = recognizer.recognize_card(card_frame)

        assert not outcome.success
        assert outcome.error == ERROR_INVALID_NAME
        assert session.calls == []
        assert recognizer.status == RecognitionStatus.ERROR

    def test_not_found_with_suggestions(self, lookup, card_frame):
        recognizer = make_recognizer(lookup, FakeEngine("Lightning"))

        outcome = recognizer.recognize_card(card_frame)

        assert not outcome.success
        assert outcome.error == "No exact match found"
        assert "Lightning Bolt" in outcome.suggestions

    def test_engine_failure_is_reported(self, lookup, card_frame):
        def broken():
            raise EngineUnavailableError("Tesseract not available")

        recognizer = CardRecognizer(invoker=RecognitionInvoker(broken), lookup=lookup)

        outcome = recognizer.recognize_card(card_frame)

        assert not outcome.success
        assert "Tesseract" in outcome.error
        assert recognizer.status == RecognitionStatus.ERROR

    def test_catalog_failure_is_reported(self, lookup, session, card_frame):
        session.scripted = [FakeResponse(503, {"details": "Scryfall is down"})]
        recognizer = make_recognizer(lookup, FakeEngine("Counterspell"))

        outcome = recognizer.recognize_card(card_frame)

        assert outcome.error == "Scryfall is down"

    def test_empty_image_is_reported(self, lookup):
        recognizer = make_recognizer(lookup, FakeEngine())
        outcome = recognizer.recognize_card(np.zeros((0, 0, 3), dtype=np.uint8))
        assert outcome.error

    def test_degenerate_frame_is_reported(self, lookup):
        recognizer = make_recognizer(lookup, FakeEngine())

        outcome = recognizer.recognize_card(np.zeros((10, 1, 3), dtype=np.uint8))

        assert not outcome.success
        assert outcome.error
        assert recognizer.status == RecognitionStatus.ERROR
        assert not recognizer.busy

    def test_unexpected_error_is_reported(self, lookup, card_frame):
        class BrokenPreprocessor:
            def process(self, image, options=None):
                raise RuntimeError("resize failed")

        recognizer = CardRecognizer(
            invoker=RecognitionInvoker(lambda: FakeEngine()),
            preprocessor=BrokenPreprocessor(),
            lookup=lookup,
        )

        outcome = recognizer.recognize_card(card_frame)

        assert outcome.error == "resize failed"
        assert not recognizer.busy

    def test_second_call_while_busy_rejected(self, lookup, card_frame):
        engine = FakeEngine("Counterspell", block=True)
        recognizer = make_recognizer(lookup, engine)
        results = []

        worker = threading.Thread(target=lambda: results.append(recognizer.recognize_card(card_frame)))
        worker.start()
        assert engine.started.wait(timeout=2)

        rejected = recognizer.recognize_card(card_frame)
        assert rejected.error == ERROR_IN_PROGRESS
        assert recognizer.busy

        engine.release.set()
        worker.join()
        assert results[0].success
        assert engine.calls == 1

    def test_initialize_status(self, lookup):
        recognizer = make_recognizer(lookup, FakeEngine())
        assert recognizer.status == RecognitionStatus.IDLE
        assert recognizer.initialize()
        assert recognizer.status == RecognitionStatus.READY

    def test_initialize_failure_status(self, lookup):
        def broken():
            raise EngineUnavailableError("missing")

        recognizer = CardRecognizer(invoker=RecognitionInvoker(broken), lookup=lookup)
        assert not recognizer.initialize()
        assert recognizer.status == RecognitionStatus.ERROR

    def test_lookup_by_name(self, lookup):
        recognizer = make_recognizer(lookup, FakeEngine())

        outcome = recognizer.lookup_by_name("Counterspell")

        assert outcome.success
        assert outcome.confidence == 100.0
        assert outcome.ocr_text == "Counterspell"

    def test_lookup_by_name_catalog_error(self, lookup, session):
        session.scripted = [FakeResponse(500)]
        outcome = make_recognizer(lookup, FakeEngine()).lookup_by_name("Counterspell")
        assert not outcome.success
        assert outcome.error

    def test_reset(self, lookup, card_frame):
        recognizer = make_recognizer(lookup, FakeEngine("Counterspell"))
        recognizer.recognize_card(card_frame)
        recognizer.reset()
        assert recognizer.last_outcome is None
        assert recognizer.status == RecognitionStatus.READY


# =============================================================================
# Scan Session Tests
# =============================================================================

class TestScanSession:
    """Tracker captures handed to recognition off the sampling thread."""

    def tick_until_stable(self, session, clock, ticks=4):
        updates = []
        for _ in range(ticks):
            updates.append(session.loop.tick())
            clock.advance(0.125)
        return updates

    def test_capture_is_recognized(self, lookup, card_frame, clock):
        results = []
        session = ScanSession(
            make_recognizer(lookup, FakeEngine("Counterspell")),
            StaticFrameSource(card_frame),
            tracker=StabilityTracker(),
            on_result=results.append,
            clock=clock.time,
        )

        updates = self.tick_until_stable(session, clock)
        session.last_future.result(timeout=5)
        session.close()

        assert updates[-1].state == TrackingState.STABLE
        assert len(results) == 1
        assert results[0].card["name"] == "Counterspell"

    def test_result_after_stop_discarded(self, lookup, card_frame, clock):
        engine = FakeEngine("Counterspell", block=True)
        results = []
        session = ScanSession(
            make_recognizer(lookup, engine),
            StaticFrameSource(card_frame),
            tracker=StabilityTracker(),
            on_result=results.append,
            clock=clock.time,
        )

        self.tick_until_stable(session, clock)
        assert engine.started.wait(timeout=2)
        session.stop()
        engine.release.set()

        outcome = session.last_future.result(timeout=5)
        session.close()

        assert outcome.success
        assert results == []
        assert session.tracker.state == TrackingState.NO_CARD

    def test_capture_while_busy_rejected(self, lookup, card_frame, clock):
        engine = FakeEngine("Counterspell", block=True)
        recognizer = make_recognizer(lookup, engine)
        results = []
        session = ScanSession(
            recognizer, StaticFrameSource(card_frame), on_result=results.append, clock=clock.time
        )

        self.tick_until_stable(session, clock)
        assert engine.started.wait(timeout=2)
        first = session.last_future

        session._on_stable(None, card_frame)

        assert results[0].error == ERROR_IN_PROGRESS
        assert session.last_future is first
        engine.release.set()
        first.result(timeout=5)
        session.close()
        assert results[-1].success
