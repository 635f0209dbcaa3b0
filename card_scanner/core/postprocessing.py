"""
Text postprocessing functions for the card scanner.

Turns raw OCR output into a candidate card name. Card names are printed at
the top of the card, so the first usable line wins; trailing tokens that
look like misread mana or set symbols are dropped.

PRINCIPLE: every input string yields a defined output, and normalizing an
already normalized name returns it unchanged.
"""

import re
from typing import List, Optional, Tuple, Dict

from rapidfuzz import fuzz, process

from .config import GarbageRules


# =============================================================================
# Character level normalization
# =============================================================================

ARTIFACT_CHARS = re.compile(r"[|\\/_\[\]{}()<>]")
QUOTE_CHARS = re.compile(r"[‘’‚‛`´]")
DOUBLE_QUOTE_CHARS = re.compile(r"[“”„‟]")
DASH_CHARS = re.compile(r"[‐‑‒–—―−]")
REPEATED_PUNCT = re.compile(r"([.,:;!?'\"\-])\1+")
WHITESPACE = re.compile(r"\s+")

# Digits read in place of letters, folded only when touching a letter and no digit
ZERO_IN_WORD = re.compile(r"(?:(?<=[A-Za-z])0(?![0-9])|(?<![0-9])0(?=[A-Za-z]))")
ONE_IN_WORD = re.compile(r"(?:(?<=[A-Za-z])1(?![0-9])|(?<![0-9])1(?=[A-Za-z]))")

LETTER = re.compile(r"[^\W\d_]")
APOSTROPHE_WORD = re.compile(r"[^\W\d_]'[^\W\d_]")


def _strip_edges(text: str) -> str:
    """Trim leading and trailing characters that are not letters."""
    start = 0
    end = len(text)
    while start < end and not text[start].isalpha():
        start += 1
    while end > start and not text[end - 1].isalpha():
        end -= 1
    return text[start:end]


def _fold_zero(match: re.Match) -> str:
    """Replace a zero by an o matching the case of the adjacent letter."""
    text = match.string
    pos = match.start()
    following = text[pos + 1:pos + 2]
    neighbour = following if following.isalpha() else text[pos - 1]
    return "o" if neighbour.islower() else "O"


def normalize_line(text: str) -> str:
    """Character-level cleanup of one OCR line."""
    text = ARTIFACT_CHARS.sub("", text.strip())
    text = QUOTE_CHARS.sub("'", text)
    text = DOUBLE_QUOTE_CHARS.sub('"', text)
    text = DASH_CHARS.sub("-", text)
    text = REPEATED_PUNCT.sub(r"\1", text)
    text = ZERO_IN_WORD.sub(_fold_zero, text)
    text = ONE_IN_WORD.sub("l", text)
    text = WHITESPACE.sub(" ", text)
    return _strip_edges(text)


# =============================================================================
# Garbage token filtering
# =============================================================================

def _natural_case(token: str) -> bool:
    return token.islower() or token.istitle()


def _is_common_word(token: str, rules: GarbageRules) -> bool:
    return _natural_case(token) and token.lower() in rules.common_words


def _looks_like_word(segment: str, rules: GarbageRules) -> bool:
    if not segment.isalpha() or not _natural_case(segment):
        return False
    return len(segment) >= 3 or (
        len(segment) >= rules.min_hyphen_segment and segment.lower() in rules.common_words
    )


def is_garbage_token(token: str, rules: GarbageRules = None) -> bool:
    """
    Decide whether a token is OCR noise from printed symbols.

    Rules are applied in order; the first that matches decides.
    """
    rules = rules or GarbageRules()
    core = _strip_edges(token)

    if _is_common_word(core, rules):
        return False
    if APOSTROPHE_WORD.search(core):
        return False
    if "-" in core and all(_looks_like_word(part, rules) for part in core.split("-")):
        return False

    length = len(core)
    if length == 0:
        return True
    if length == 1:
        return core.lower() not in rules.single_char_words
    if length == 2:
        return True
    if length <= rules.short_token_length:
        mixed_case = any(c.isupper() for c in core[1:]) and any(c.islower() for c in core)
        trailing_caps = core[-2:].isupper()
        if mixed_case or trailing_caps or not core.isalpha():
            return True
    return not LETTER.search(core)


def filter_garbage_tokens(text: str, rules: GarbageRules = None) -> str:
    """
    Drop symbol noise from a normalized line.

    Noise before the first real word is skipped; noise after a real word
    ends the name, since mana-cost artifacts trail it.
    """
    rules = rules or GarbageRules()
    kept: List[str] = []

    for token in text.split():
        if is_garbage_token(token, rules):
            if kept:
                break
            continue
        kept.append(token)

    return _strip_edges(" ".join(kept))


# =============================================================================
# Name extraction
# =============================================================================

def normalize_card_name(text: str, rules: GarbageRules = None) -> str:
    """
    Normalize OCR output for a single card name.

    Repeats the cleanup until the text stops changing, so the result is a
    fixed point: normalize_card_name(normalize_card_name(x)) == normalize_card_name(x).
    """
    current = text or ""
    while True:
        cleaned = filter_garbage_tokens(normalize_line(current), rules)
        if cleaned == current:
            return cleaned
        current = cleaned


def extract_card_name(ocr_text: str, rules: GarbageRules = None) -> str:
    """
    Extract the candidate card name from multi-line OCR text.

    The name is printed at the top of the card, so the first line that still
    holds text after normalization is used.
    """
    for line in re.split(r"[\r\n]+", ocr_text or ""):
        if not line.strip():
            continue
        name = normalize_card_name(line, rules)
        if name:
            return name
    return ""


def is_valid_card_name(text: str) -> bool:
    """A name needs 2+ characters, a leading letter and at least 70% letters."""
    if len(text) < 2 or not text[0].isalpha():
        return False
    letters = sum(1 for c in text if c.isalpha())
    return letters / len(text) >= 0.7


def split_double_faced_name(name: str) -> Tuple[str, Optional[str]]:
    """Split ``Front // Back`` catalog names into their faces."""
    parts = re.split(r"\s*//\s*", name, maxsplit=1)
    if len(parts) == 2:
        return parts[0].strip(), parts[1].strip() or None
    return name.strip(), None


# =============================================================================
# Fuzzy matching helpers
# =============================================================================

def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace for comparisons."""
    text = re.sub(r"[^\w\s]", "", (text or "").lower().strip())
    return WHITESPACE.sub(" ", text)


def similarity_score(a: str, b: str) -> float:
    """Levenshtein similarity in 0..1, case-insensitive."""
    if not a and not b:
        return 1.0
    return fuzz.ratio(a.lower(), b.lower()) / 100.0


def find_best_matches(
    query: str,
    candidates: List[str],
    threshold: float = 0.6,
    max_results: int = 5
) -> List[Tuple[str, float]]:
    """Rank candidates by similarity to ``query``, best first."""
    matches = process.extract(
        query.lower().strip(),
        candidates,
        scorer=fuzz.ratio,
        processor=lambda s: s.lower(),
        score_cutoff=threshold * 100,
        limit=max_results,
    )
    return [(text, score / 100.0) for text, score, _ in matches]


def is_likely_match(ocr_text: str, card_name: str, threshold: float = 0.7) -> bool:
    """Check whether OCR text and a catalog name are probably the same card."""
    ocr_norm = normalize_text(ocr_text)
    card_norm = normalize_text(card_name)

    if ocr_norm == card_norm:
        return True
    if ocr_norm and card_norm and (ocr_norm in card_norm or card_norm in ocr_norm):
        return True
    return similarity_score(ocr_norm, card_norm) >= threshold


def name_agreement(ocr_name: str, card: Dict) -> float:
    """Similarity between the OCR name and the front face of a catalog card."""
    front, _ = split_double_faced_name(card.get("name", ""))
    return similarity_score(ocr_name, front)
