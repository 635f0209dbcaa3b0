"""
Stability tracking for the card scanner.

Contains the tracker state machine that decides when to capture a card and
the periodic loop that drives it from a live frame source.
"""

import threading
import time
from typing import Callable, Optional

import numpy as np

from .config import TrackerConfig
from .detection import RegionSampler, PresenceClassifier, frame_difference
from .utils import TrackingState, TrackerUpdate, DetectedRegion, RasterSample


class StabilityTracker:
    """
    State machine turning per-tick presence results into capture events.

    NO_CARD -> STABILIZING (TRACKING while the card moves) -> STABLE -> COOLDOWN
    -> NO_CARD. STABLE is reported on exactly one tick per placement; COOLDOWN
    holds until the cooldown window has passed AND the card has been absent
    for the debounce window.

    Advance it with ``step(now_ms, frame)``; nothing else mutates its state.
    """

    def __init__(
        self,
        config: TrackerConfig = None,
        classifier: PresenceClassifier = None,
        sampler: RegionSampler = None
    ):
        self.config = config or TrackerConfig()
        self.classifier = classifier or PresenceClassifier()
        self.sampler = sampler or RegionSampler()
        self.reset()

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def progress(self) -> float:
        return self._progress

    def reset(self) -> None:
        """Clear every transient field, including cooldown and removal gate."""
        self._state = TrackingState.NO_CARD
        self._progress = 0.0
        self._detection_start_ms: Optional[float] = None
        self._has_triggered = False
        self._absent_ticks = 0
        self._cooldown_until_ms = 0.0
        self._requires_removal = False
        self._was_detecting = False
        self._last_sample: Optional[RasterSample] = None
        self._last_region: Optional[DetectedRegion] = None

    def step(self, now_ms: float, frame: np.ndarray) -> TrackerUpdate:
        """
        Advance the tracker by one sampling tick.

        Args:
            now_ms: Current time in milliseconds (monotonic)
            frame: Latest full video frame

        Returns:
            TrackerUpdate; ``captured`` is set only on the STABLE tick
        """
        sample = self.sampler.sample(frame)
        if sample is None:
            # Frame source not ready: no-op
            return self._update()

        scores = self.classifier.scores(sample)
        present = self.classifier.decide(scores, self._was_detecting)
        region = self.classifier.region(sample, scores, self._was_detecting)
        self._was_detecting = present

        # Movement is only measured between consecutive samples with a card
        movement = 0.0
        if present and self._last_sample is not None:
            movement = frame_difference(self._last_sample, sample)
        self._last_sample = sample if present else None

        if self._state in (TrackingState.STABLE, TrackingState.COOLDOWN):
            return self._step_cooldown(now_ms, frame, present, region, movement)
        if present:
            return self._step_present(now_ms, frame, region, movement)
        return self._step_absent()

    def capture_now(self, frame: np.ndarray) -> Optional[np.ndarray]:
        """Extract the card from the capture zone regardless of state."""
        return self.sampler.extract_card(frame)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _step_present(
        self,
        now_ms: float,
        frame: np.ndarray,
        region: DetectedRegion,
        movement: float
    ) -> TrackerUpdate:
        self._absent_ticks = 0
        self._last_region = region

        threshold = self.config.movement_threshold
        if self._detection_start_ms is None:
            self._detection_start_ms = now_ms
            print(f"[Tracker] Card in zone, capturing in {self.config.capture_delay_ms:.0f}ms")
        elif threshold is not None and movement > threshold:
            # Card still moving: restart the capture timer
            self._detection_start_ms = now_ms
            self._state = TrackingState.TRACKING
            self._progress = 0.0
            return self._update(region=region)

        elapsed = now_ms - self._detection_start_ms
        delay = self.config.capture_delay_ms
        self._progress = min(1.0, elapsed / delay) if delay > 0 else 1.0

        if elapsed >= delay and not self._has_triggered:
            return self._enter_stable(now_ms, frame, region)

        self._state = TrackingState.STABILIZING
        return self._update(region=region)

    def _enter_stable(self, now_ms: float, frame: np.ndarray, region: DetectedRegion) -> TrackerUpdate:
        self._has_triggered = True
        self._state = TrackingState.STABLE
        self._progress = 1.0
        self._cooldown_until_ms = now_ms + self.config.cooldown_ms
        self._requires_removal = True
        self._absent_ticks = 0

        captured = self.sampler.extract_card(frame)
        print("[Tracker] Captured card, remove it to scan the next one")
        return self._update(region=region, captured=captured)

    def _step_absent(self) -> TrackerUpdate:
        if self._state == TrackingState.NO_CARD:
            return self._update()

        self._absent_ticks += 1
        if self._absent_ticks < self.config.debounce_ticks:
            # Hold the current state through short dropouts
            return self._update(region=self._last_region)

        print("[Tracker] Card lost")
        self._enter_no_card()
        return self._update(card_lost=True)

    def _step_cooldown(
        self,
        now_ms: float,
        frame: np.ndarray,
        present: bool,
        region: DetectedRegion,
        movement: float
    ) -> TrackerUpdate:
        if present:
            self._absent_ticks = 0
        else:
            self._absent_ticks += 1
            if self._requires_removal and self._absent_ticks >= self.config.debounce_ticks:
                self._requires_removal = False
                print("[Tracker] Card removed, ready for next card")

        if now_ms < self._cooldown_until_ms or self._requires_removal:
            self._state = TrackingState.COOLDOWN
            self._progress = 0.0
            return self._update()

        self._enter_no_card()
        if present:
            return self._step_present(now_ms, frame, region, movement)
        return self._update()

    def _enter_no_card(self) -> None:
        self._state = TrackingState.NO_CARD
        self._progress = 0.0
        self._detection_start_ms = None
        self._has_triggered = False
        self._absent_ticks = 0
        self._last_region = None

    def _update(self, region=None, captured=None, card_lost=False) -> TrackerUpdate:
        return TrackerUpdate(
            state=self._state,
            progress=self._progress,
            region=region,
            captured=captured,
            card_lost=card_lost,
        )


class ScanLoop:
    """
    Drives a StabilityTracker from a frame source on a fixed cadence.

    Each tick runs synchronously on one background thread, so at most one
    sample is in flight. Callbacks run on that thread and must not block.
    """

    def __init__(
        self,
        tracker: StabilityTracker,
        source,
        on_update: Callable[[TrackerUpdate], None] = None,
        on_stable: Callable[[DetectedRegion, np.ndarray], None] = None,
        on_card_lost: Callable[[], None] = None,
        interval_ms: float = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.tracker = tracker
        self.source = source
        self.on_update = on_update
        self.on_stable = on_stable
        self.on_card_lost = on_card_lost
        self.interval_ms = interval_ms or tracker.config.sample_interval_ms
        self.clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            self.stop()

        print(f"[Tracker] Starting card tracking ({self.interval_ms:.0f}ms interval)")
        self.tracker.reset()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="scan-loop", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Tear down the timer and reset all transient tracker state."""
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._thread = None
        self.tracker.reset()

    def tick(self) -> TrackerUpdate:
        frame = self.source.read()
        update = self.tracker.step(self.clock() * 1000.0, frame)
        self._dispatch(update)
        return update

    def _run(self) -> None:
        interval_s = self.interval_ms / 1000.0
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(interval_s)

    def _dispatch(self, update: TrackerUpdate) -> None:
        try:
            if self.on_update:
                self.on_update(update)
            if update.captured is not None and self.on_stable:
                self.on_stable(update.region, update.captured)
            if update.card_lost and self.on_card_lost:
                self.on_card_lost()
        except Exception as e:
            print(f"[Tracker] Callback error: {e}")
