"""Best-effort language tagging for extracted body text."""

from __future__ import annotations

from typing import Optional

from langdetect import DetectorFactory, detect_langs
from langdetect.lang_detect_exception import LangDetectException
from loguru import logger

# langdetect is randomized; a fixed seed keeps tags stable across recrawls.
DetectorFactory.seed = 0

MIN_TEXT_CHARS = 40
MIN_CONFIDENCE = 0.80
SAMPLE_CHARS = 5000


def detect_language(text: str, *, min_confidence: float = MIN_CONFIDENCE) -> Optional[str]:
    """Return an ISO 639-1 code, or None when the text is too short or ambiguous."""
    if not text:
        return None

    sample = " ".join(text[:SAMPLE_CHARS].split())
    if len(sample) < MIN_TEXT_CHARS:
        return None

    try:
        candidates = detect_langs(sample)
    except LangDetectException as exc:
        logger.debug(f"Language detection failed: {exc}")
        return None

    if not candidates:
        return None
    best = candidates[0]
    if best.prob < min_confidence:
        return None
    return best.lang
