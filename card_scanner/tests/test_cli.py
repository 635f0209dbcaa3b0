"""
Tests for the card-scanner command line.

The recognizer and lookup built by the commands are swapped for ones wired
to the fake catalog and a fake engine.

Usage:
    pytest card_scanner/tests/test_cli.py -v
"""

import json
import sys
from pathlib import Path

import cv2
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from card_scanner import scan_cli
from card_scanner.core.pipeline import CardRecognizer, RecognitionOutcome
from card_scanner.core.recognition import RecognitionInvoker

from conftest import FakeEngine, make_card


@pytest.fixture
def patched_cli(monkeypatch, lookup):
    """Point the commands at the fake catalog and a canned engine."""
    engine = FakeEngine("Counterspell\nInstant")

    def make_recognizer(**kwargs):
        return CardRecognizer(invoker=RecognitionInvoker(lambda: engine), lookup=lookup)

    monkeypatch.setattr(scan_cli, "CardRecognizer", make_recognizer)
    monkeypatch.setattr(scan_cli, "CardLookup", lambda: lookup)
    return engine


class TestOutcomeToDict:
    def test_success(self):
        card = dict(make_card("Counterspell"), prices={"usd": "1.00"})
        data = scan_cli.outcome_to_dict(
            RecognitionOutcome(card=card, ocr_text="Counterspell", match_type="exact")
        )

        assert data["success"] is True
        assert data["card"]["name"] == "Counterspell"
        assert "prices" not in data["card"]
        assert "processed_image" not in data
        json.dumps(data)

    def test_failure(self):
        data = scan_cli.outcome_to_dict(RecognitionOutcome(error="Card not found", suggestions=["Counterspell"]))
        assert data["success"] is False
        assert data["card"] is None
        assert data["suggestions"] == ["Counterspell"]


class TestCommands:
    def test_lookup_command(self, patched_cli, tmp_path, capsys):
        out_file = tmp_path / "result.json"

        code = scan_cli.main(["lookup", "Lighming Bolt", "--output", str(out_file)])

        assert code == 0
        saved = json.loads(out_file.read_text(encoding="utf-8"))
        assert saved["card"]["name"] == "Lightning Bolt"
        assert saved["match_type"] == "fuzzy"
        assert "Lightning Bolt" in capsys.readouterr().out

    def test_lookup_not_found_exit_code(self, patched_cli):
        assert scan_cli.main(["lookup", "Nonexistent Card"]) == 2

    def test_recognize_command(self, patched_cli, card_frame, tmp_path):
        image_path = tmp_path / "frame.png"
        cv2.imwrite(str(image_path), card_frame)
        debug_dir = tmp_path / "debug"

        code = scan_cli.main(["recognize", str(image_path), "--debug-dir", str(debug_dir)])

        assert code == 0
        assert any(debug_dir.glob("*.png"))

    def test_recognize_unreadable_image(self, patched_cli, tmp_path):
        assert scan_cli.main(["recognize", str(tmp_path / "missing.png")]) == 1

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            scan_cli.main([])
