"""
Pytest configuration and shared fixtures for card scanner tests.

This module provides:
- Synthetic camera frames with and without a card in the capture zone
- A fake clock shared by the request queue and the cache
- A fake Scryfall HTTP session backed by a small card table
- Fake recognition engines

Nothing here needs network access or a Tesseract install.

Usage:
    pytest card_scanner/tests/ -v
    pytest card_scanner/tests/test_tracking.py -v
"""

import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np
import pytest
from rapidfuzz import fuzz

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from card_scanner.core.cache import TwoTierCache
from card_scanner.core.catalog import RequestQueue, ScryfallClient
from card_scanner.core.lookup import CardLookup
from card_scanner.core.utils import detection_zone


# =============================================================================
# Synthetic Frames
# =============================================================================

FRAME_WIDTH = 640
FRAME_HEIGHT = 480
BACKGROUND = 30
CARD_BODY = 200
NAME_INK = 20
ART = 80


def make_card_frame(
    width: int = FRAME_WIDTH,
    height: int = FRAME_HEIGHT,
    art_top: float = 0.20,
    art_bottom: float = 0.55
) -> np.ndarray:
    """
    Dark background with a light card filling most of the capture zone.

    The card has dark name-bar text and a darker art box, which gives the
    classifier a border, a high-contrast title bar and horizontal bands.
    """
    frame = np.full((height, width, 3), BACKGROUND, dtype=np.uint8)
    zone = detection_zone(width, height)

    margin_x = int(zone.width * 0.07)
    margin_y = int(zone.height * 0.05)
    left = zone.x + margin_x
    right = zone.x + zone.width - margin_x
    top = zone.y + margin_y
    bottom = zone.y + zone.height - margin_y
    cv2.rectangle(frame, (left, top), (right, bottom), (CARD_BODY,) * 3, thickness=-1)

    # Name bar text
    card_h = bottom - top
    card_w = right - left
    name_y = top + int(card_h * 0.06)
    cv2.rectangle(
        frame,
        (left + int(card_w * 0.15), name_y),
        (left + int(card_w * 0.60), name_y + int(card_h * 0.04)),
        (NAME_INK,) * 3,
        thickness=-1,
    )

    # Art box
    cv2.rectangle(
        frame,
        (left + int(card_w * 0.08), zone.y + int(zone.height * art_top)),
        (right - int(card_w * 0.08), zone.y + int(zone.height * art_bottom)),
        (ART,) * 3,
        thickness=-1,
    )
    return frame


def make_empty_frame(width: int = FRAME_WIDTH, height: int = FRAME_HEIGHT, value: int = 128) -> np.ndarray:
    return np.full((height, width, 3), value, dtype=np.uint8)


@pytest.fixture
def card_frame() -> np.ndarray:
    return make_card_frame()


@pytest.fixture
def moved_card_frame() -> np.ndarray:
    """Same card, art box shifted down as if the card moved between samples."""
    return make_card_frame(art_top=0.55, art_bottom=0.90)


@pytest.fixture
def empty_frame() -> np.ndarray:
    return make_empty_frame()


# =============================================================================
# Fake Clock
# =============================================================================

class FakeClock:
    """Manual clock in seconds; ``sleep`` advances it instead of blocking."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []
        self._lock = threading.Lock()

    def time(self) -> float:
        with self._lock:
            return self.now

    def time_ms(self) -> int:
        with self._lock:
            return int(round(self.now * 1000))

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Fake Scryfall Session
# =============================================================================

def make_card(name: str, set_code: str = "lea", number: str = "1") -> Dict:
    return {
        "object": "card",
        "id": f"id-{name.lower().replace(' ', '-')}",
        "oracle_id": f"oracle-{name.lower().replace(' ', '-')}",
        "name": name,
        "set": set_code,
        "set_name": "Limited Edition Alpha",
        "collector_number": number,
        "type_line": "Instant",
        "mana_cost": "{R}",
        "rarity": "common",
    }


CARD_TABLE = [
    make_card("Lightning Bolt", number="161"),
    make_card("Lightning Helix", set_code="rav", number="213"),
    make_card("Lightning Greaves", set_code="mrd", number="199"),
    make_card("Counterspell", number="54"),
    make_card("Delver of Secrets // Insectile Aberration", set_code="isd", number="51"),
]


class FakeResponse:
    def __init__(self, status_code: int, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


def not_found(details: str = "No card found") -> FakeResponse:
    return FakeResponse(404, {"object": "error", "code": "not_found", "status": 404, "details": details})


class FakeScryfallSession:
    """
    Stands in for ``requests.Session`` against a tiny in-memory catalog.

    ``scripted`` responses are returned first, in order, before the table
    is consulted. Every call is recorded with the clock time it was made.
    """

    def __init__(self, clock: Optional[FakeClock] = None, cards: List[Dict] = None):
        self.clock = clock
        self.cards = list(CARD_TABLE if cards is None else cards)
        self.headers: Dict[str, str] = {}
        self.calls: List[Tuple[str, Dict]] = []
        self.call_times: List[float] = []
        self.scripted: List = []
        self.closed = False

    def get(self, url: str, params=None, timeout=None):
        params = dict(params or {})
        self.calls.append((url, params))
        if self.clock is not None:
            self.call_times.append(self.clock.time())

        if self.scripted:
            response = self.scripted.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return self._route(url, params)

    def close(self) -> None:
        self.closed = True

    def _route(self, url: str, params: Dict) -> FakeResponse:
        if url.endswith("/cards/named"):
            if "exact" in params:
                return self._named_exact(params["exact"])
            return self._named_fuzzy(params["fuzzy"])

        if url.endswith("/cards/autocomplete"):
            query = params["q"].lower()
            names = [c["name"] for c in self.cards if c["name"].lower().startswith(query)]
            return FakeResponse(200, {"object": "catalog", "total_values": len(names), "data": names})

        if url.endswith("/cards/search"):
            query = params["q"].lower()
            if query.startswith("oracleid:"):
                oracle_id = query.split(":", 1)[1]
                found = [c for c in self.cards if c["oracle_id"] == oracle_id]
            else:
                found = [c for c in self.cards if query in c["name"].lower()]
            if not found:
                return not_found("Your query didn't match any cards.")
            return FakeResponse(200, {"object": "list", "total_cards": len(found), "data": found})

        card_id = url.rsplit("/", 1)[-1]
        for card in self.cards:
            if card["id"] == card_id:
                return FakeResponse(200, card)
        return not_found()

    def _named_exact(self, name: str) -> FakeResponse:
        for card in self.cards:
            if card["name"].lower() == name.lower():
                return FakeResponse(200, card)
        return not_found()

    def _named_fuzzy(self, name: str) -> FakeResponse:
        scored = [(fuzz.ratio(name.lower(), c["name"].lower()), c) for c in self.cards]
        scored = [item for item in scored if item[0] >= 80]
        if len(scored) != 1:
            return not_found()
        return FakeResponse(200, scored[0][1])


@pytest.fixture
def session(clock) -> FakeScryfallSession:
    return FakeScryfallSession(clock=clock)


@pytest.fixture
def request_queue(clock):
    queue = RequestQueue(clock=clock.time, sleep=clock.sleep)
    yield queue
    queue.close()


@pytest.fixture
def client(session, request_queue) -> ScryfallClient:
    return ScryfallClient(base_url="https://api.test", session=session, request_queue=request_queue)


@pytest.fixture
def lookup(client, clock) -> CardLookup:
    """Lookup orchestrator with a memory-only cache on the fake clock."""
    return CardLookup(client=client, cache=TwoTierCache(durable=None, clock=clock.time_ms))


# =============================================================================
# Fake Recognition Engines
# =============================================================================

class FakeEngine:
    """Returns canned text; optionally blocks until released."""

    def __init__(self, text: str = "Lightning Bolt {R}\nInstant", confidence: float = 87.0, block: bool = False):
        self.text = text
        self.confidence = confidence
        self.calls = 0
        self.closed = False
        self.started = threading.Event()
        self.release = threading.Event()
        if not block:
            self.release.set()

    def recognize(self, image: np.ndarray) -> Tuple[str, float]:
        self.calls += 1
        self.started.set()
        self.release.wait(timeout=5)
        return self.text, self.confidence

    def close(self) -> None:
        self.closed = True


class FailingEngine:
    def recognize(self, image):
        raise RuntimeError("engine crashed")


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()
