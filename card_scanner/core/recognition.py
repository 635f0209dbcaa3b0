"""
OCR recognition engines for the card scanner.

Contains engine wrappers for Tesseract and EasyOCR and the invoker that
initialises an engine once and serialises calls into it.
"""

import threading
import time
from concurrent.futures import Future
from typing import Callable, List, Tuple

import cv2
import numpy as np
from PIL import Image

from .config import OCR_ENGINE, OCR_LANG, TESSERACT_CMD
from .utils import RecognitionResult


class EngineUnavailableError(Exception):
    """Raised when the recognition engine cannot be built or fails while recognising."""
    pass


def to_pil(image: np.ndarray) -> Image.Image:
    """Convert an OpenCV (BGR or grayscale) array to a PIL image."""
    if image.ndim == 2:
        return Image.fromarray(image)
    return Image.fromarray(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))


class OCREngine:
    """Wrapper for OCR engines (Tesseract, EasyOCR)."""

    def __init__(
        self,
        engine_name: str = OCR_ENGINE,
        lang: str = OCR_LANG,
        tesseract_cmd: str = TESSERACT_CMD
    ):
        self.engine_name = engine_name.lower()
        self.lang = lang
        self.tesseract_cmd = tesseract_cmd
        self.engine = None
        self._initialize_engine()

    def _initialize_engine(self):
        """Initialize the selected OCR engine."""
        start = time.perf_counter()

        if self.engine_name == "tesseract":
            try:
                import pytesseract
            except ImportError as e:
                raise EngineUnavailableError(f"pytesseract not installed: {e}")

            if self.tesseract_cmd:
                pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd

            try:
                version = pytesseract.get_tesseract_version()
                languages = pytesseract.get_languages(config="")
            except Exception as e:
                raise EngineUnavailableError(f"Tesseract not available: {e}")

            if self.lang not in languages:
                raise EngineUnavailableError(
                    f"Tesseract language data '{self.lang}' not installed"
                )

            self.engine = pytesseract
            print(f"[OCR] Initialized Tesseract {version} (lang={self.lang})")

        elif self.engine_name == "easyocr":
            try:
                import easyocr
                reader_lang = "en" if self.lang == "eng" else self.lang
                self.engine = easyocr.Reader([reader_lang], gpu=False, verbose=False)
            except Exception as e:
                raise EngineUnavailableError(f"EasyOCR not available: {e}")
            print(f"[OCR] Initialized EasyOCR (lang={self.lang})")

        else:
            raise EngineUnavailableError(f"Unknown OCR engine: {self.engine_name}")

        elapsed = (time.perf_counter() - start) * 1000
        print(f"[OCR] Engine ready in {elapsed:.0f}ms")

    def recognize(self, image: np.ndarray) -> Tuple[str, float]:
        """
        Recognize all text in an image.

        Returns:
            (text with one line per detected text line, confidence 0-100)
        """
        if image is None or image.size == 0:
            return "", 0.0

        if self.engine_name == "tesseract":
            return self._recognize_tesseract(image)
        return self._recognize_easyocr(image)

    def _recognize_tesseract(self, image: np.ndarray) -> Tuple[str, float]:
        """Tesseract recognition, grouping words back into printed lines."""
        data = self.engine.image_to_data(
            to_pil(image), lang=self.lang, output_type=self.engine.Output.DICT
        )

        lines = {}
        confs = []
        for i, word in enumerate(data["text"]):
            if not str(word).strip():
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(str(word).strip())

            conf = float(data["conf"][i])
            if conf >= 0:
                confs.append(conf)

        text = "\n".join(" ".join(words) for words in lines.values())
        confidence = sum(confs) / len(confs) if confs else 0.0
        return text, confidence

    def _recognize_easyocr(self, image: np.ndarray) -> Tuple[str, float]:
        """EasyOCR recognition, ordered top-to-bottom then left-to-right."""
        results = self.engine.readtext(image)
        if not results:
            return "", 0.0

        items = sorted(
            results,
            key=lambda item: (min(p[1] for p in item[0]) // 10, min(p[0] for p in item[0]))
        )
        texts: List[str] = [item[1] for item in items]
        confs = [float(item[2]) for item in items]
        return "\n".join(texts), 100.0 * sum(confs) / len(confs)

    def close(self) -> None:
        self.engine = None


class RecognitionInvoker:
    """
    Owns one recognition engine for its whole lifecycle.

    ``initialize`` builds the engine once; concurrent callers wait on the
    same in-flight construction. ``recognize`` calls are serialized.
    Failures surface as EngineUnavailableError and are never retried here.
    """

    def __init__(self, engine_factory: Callable[[], OCREngine] = None):
        self.engine_factory = engine_factory or OCREngine
        self._engine = None
        self._init_future = None
        self._lock = threading.Lock()
        self._recognize_lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self._engine is not None

    def initialize(self) -> None:
        with self._lock:
            if self._engine is not None:
                return
            owner = self._init_future is None
            if owner:
                self._init_future = Future()
            future = self._init_future

        if not owner:
            # Another caller is constructing the engine; share its outcome
            future.result()
            return

        print("[OCR] Creating engine...")
        try:
            engine = self.engine_factory()
        except Exception as e:
            error = e if isinstance(e, EngineUnavailableError) else EngineUnavailableError(str(e))
            print(f"[OCR] Failed to create engine: {error}")
            with self._lock:
                self._init_future = None
            future.set_exception(error)
            raise error

        with self._lock:
            self._engine = engine
        future.set_result(engine)

    def recognize(self, image: np.ndarray) -> RecognitionResult:
        if self._engine is None:
            self.initialize()

        with self._recognize_lock:
            engine = self._engine
            if engine is None:
                raise EngineUnavailableError("OCR engine not available")

            start = time.perf_counter()
            try:
                text, confidence = engine.recognize(image)
            except Exception as e:
                print(f"[OCR] Recognition error: {e}")
                raise EngineUnavailableError(f"Failed to recognize text from image: {e}") from e
            elapsed = (time.perf_counter() - start) * 1000

        text = text.strip()
        preview = text[:50] + ("..." if len(text) > 50 else "")
        print(f"[OCR] Result: {preview!r} (conf={confidence:.0f}, {elapsed:.0f}ms)")
        return RecognitionResult(text=text, confidence=confidence, processing_time_ms=elapsed)

    def terminate(self) -> None:
        """Release the engine; the next recognize() initializes from scratch."""
        with self._lock:
            engine = self._engine
            self._engine = None
            self._init_future = None

        if engine is not None and hasattr(engine, "close"):
            engine.close()
        print("[OCR] Engine terminated")
