#!/usr/bin/env python3
"""
Card Scanner command line

Recognizes Magic: The Gathering cards from images, recorded video or a live
camera and resolves them against the Scryfall catalog.

Usage:
    card-scanner recognize photo.jpg --output result.json
    card-scanner lookup "Lightning Bolt"
    card-scanner replay recording.mp4
    card-scanner watch --camera 0
"""

import argparse
import sys
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict

import cv2
from tqdm import tqdm

from .core.config import EnhancementOptions, TrackerConfig
from .core.detection import VideoCaptureSource
from .core.lookup import CardLookup
from .core.pipeline import CardRecognizer, RecognitionOutcome, ScanSession
from .core.tracking import StabilityTracker
from .core.utils import TrackingState, card_summary, load_frames, save_result, save_debug_stages


def outcome_to_dict(outcome: RecognitionOutcome) -> Dict[str, Any]:
    """Flatten an outcome for JSON output."""
    data = asdict(outcome)
    data.pop("processed_image", None)
    data["success"] = outcome.success
    data["card"] = card_summary(outcome.card)
    return data


def print_outcome(outcome: RecognitionOutcome) -> None:
    print("\n" + "=" * 60)
    print("CARD RECOGNITION RESULT")
    print("=" * 60)
    print(f"OCR name: {outcome.ocr_text!r} (conf={outcome.confidence:.0f})")
    if outcome.success:
        card = outcome.card
        print(f"Card: {card.get('name')} [{(card.get('set') or '').upper()} #{card.get('collector_number', '?')}]")
        print(f"Match: {outcome.match_type}")
        if outcome.name_similarity is not None:
            print(f"Name agreement: {outcome.name_similarity:.0%}")
    else:
        print(f"Error: {outcome.error}")
        if outcome.suggestions:
            print("Did you mean:")
            for suggestion in outcome.suggestions:
                print(f"  - {suggestion}")
    print(f"Time: {outcome.processing_time_ms:.0f}ms")
    print("=" * 60)


# =============================================================================
# Commands
# =============================================================================

def cmd_recognize(args) -> int:
    image = cv2.imread(args.image)
    if image is None:
        print(f"Error: Cannot read image: {args.image}")
        return 1

    options = EnhancementOptions(
        use_full_card=not args.name_only,
        enhance=not args.no_enhance,
        binarize=not args.no_enhance,
    )
    recognizer = CardRecognizer()
    outcome = recognizer.recognize_card(
        image,
        pre_extracted=args.pre_extracted,
        debug=args.debug_dir is not None,
        options=options,
    )

    if args.debug_dir and outcome.processed_image is not None:
        written = save_debug_stages(outcome.processed_image.stages, Path(args.debug_dir))
        print(f"[Pipeline] Wrote {len(written)} debug stages to {args.debug_dir}")

    print_outcome(outcome)
    if args.output:
        save_result(outcome_to_dict(outcome), Path(args.output))
    return 0 if outcome.success else 2


def cmd_lookup(args) -> int:
    lookup = CardLookup()
    recognizer = CardRecognizer(lookup=lookup)
    outcome = recognizer.lookup_by_name(args.name)
    lookup.close()

    print_outcome(outcome)
    if args.output:
        save_result(outcome_to_dict(outcome), Path(args.output))
    return 0 if outcome.success else 2


def cmd_replay(args) -> int:
    """Feed recorded frames through the tracker at a synthetic cadence."""
    frames = load_frames(args.input)
    if not frames:
        print(f"Error: No frames found in {args.input}")
        return 1

    config = TrackerConfig(sample_interval_ms=args.interval_ms)
    tracker = StabilityTracker(config)
    recognizer = CardRecognizer()
    results = []

    print(f"[Tracker] Replaying {len(frames)} frames at {args.interval_ms:.0f}ms per frame")
    for frame_idx, frame, frame_path in tqdm(frames, desc="Replaying"):
        update = tracker.step(frame_idx * args.interval_ms, frame)
        if update.state != TrackingState.STABLE or update.captured is None:
            continue

        outcome = recognizer.recognize_card(update.captured, pre_extracted=True)
        tqdm.write(f"[Pipeline] Frame {frame_idx}: {outcome.card['name'] if outcome.success else outcome.error}")
        entry = outcome_to_dict(outcome)
        entry["frame"] = frame_path
        results.append(entry)

    print(f"\n[Pipeline] {len(results)} captures, {sum(1 for r in results if r['success'])} recognized")
    if args.output:
        save_result({"input": str(args.input), "captures": results}, Path(args.output))
    return 0


def cmd_watch(args) -> int:
    source = VideoCaptureSource(camera_index=args.camera)
    if not source.open():
        return 1

    config = TrackerConfig.low_power() if args.low_power else TrackerConfig.from_env()
    recognizer = CardRecognizer()
    recognizer.initialize()
    session = ScanSession(recognizer, source, tracker=StabilityTracker(config), on_result=print_outcome)

    session.start()
    print("[Pipeline] Watching for cards, press Ctrl+C to stop")
    try:
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        print("\n[Pipeline] Stopping")
    finally:
        session.close()
        source.release()
    return 0


# =============================================================================
# CLI Interface
# =============================================================================

def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="card-scanner",
        description="Recognize Magic: The Gathering cards and look them up on Scryfall",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Recognize a photo of a card held in the capture zone
  card-scanner recognize photo.jpg

  # Recognize an already cropped card and keep the enhancement stages
  card-scanner recognize card.png --pre-extracted --debug-dir debug/

  # Manual lookup
  card-scanner lookup "Lighming Bolt"

  # Replay a recording through the tracker
  card-scanner replay recording.mp4 --output captures.json
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    recognize = subparsers.add_parser("recognize", help="Recognize the card in one image")
    recognize.add_argument("image", help="Path to a camera frame or card image")
    recognize.add_argument(
        "--pre-extracted", action="store_true",
        help="Image is already the card (skip capture-zone cropping)"
    )
    recognize.add_argument(
        "--name-only", action="store_true",
        help="Run OCR on the name bar only instead of the full card"
    )
    recognize.add_argument(
        "--no-enhance", action="store_true",
        help="Skip grayscale, contrast and binarization"
    )
    recognize.add_argument("--debug-dir", default=None, help="Write enhancement stages here")
    recognize.add_argument("--output", "-o", default=None, help="Write the result as JSON")
    recognize.set_defaults(func=cmd_recognize)

    lookup = subparsers.add_parser("lookup", help="Look a card name up on Scryfall")
    lookup.add_argument("name", help="Card name (typos are tolerated)")
    lookup.add_argument("--output", "-o", default=None, help="Write the result as JSON")
    lookup.set_defaults(func=cmd_lookup)

    replay = subparsers.add_parser("replay", help="Replay recorded frames through the tracker")
    replay.add_argument("input", help="Video file or folder of frames")
    replay.add_argument(
        "--interval-ms", type=float, default=100.0,
        help="Synthetic time between frames (default: 100)"
    )
    replay.add_argument("--output", "-o", default=None, help="Write captures as JSON")
    replay.set_defaults(func=cmd_replay)

    watch = subparsers.add_parser("watch", help="Scan cards live from a camera")
    watch.add_argument("--camera", type=int, default=0, help="Camera index (default: 0)")
    watch.add_argument("--low-power", action="store_true", help="Sample every 250ms instead of 100ms")
    watch.set_defaults(func=cmd_watch)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
