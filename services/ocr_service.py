# services/ocr_service.py
import io
import logging
import os
import re
from typing import Optional

import pytesseract
from PIL import Image

logger = logging.getLogger(__name__)

TESSERACT_LANGUAGES = {
    "de": "deu",
    "en": "eng",
}

BATCH_NUMBER_PATTERN = re.compile(r"Charge(?:n(?:nummer)?)?[:.\s-]*([A-Z0-9-]+)", re.IGNORECASE)

if os.getenv("TESSERACT_CMD"):
    pytesseract.pytesseract.tesseract_cmd = os.getenv("TESSERACT_CMD")


class OcrError(Exception):
    pass


def recognize_text(image_bytes: bytes, language: str = "de") -> str:
    """
    Run Tesseract on an image and return the plain text.
    """
    lang = TESSERACT_LANGUAGES.get(language, language)
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            text = pytesseract.image_to_string(img, lang=lang)
    except Exception as e:
        raise OcrError(f"Texterkennung fehlgeschlagen: {e}") from e

    logger.info("Recognized %d characters (%s)", len(text), lang)
    return text.strip()


def detect_batch_number(text: str) -> Optional[str]:
    """
    Example: "Lieferschein Chargennummer: AB12-9" -> "AB12-9"
    """
    if not text:
        return None
    match = BATCH_NUMBER_PATTERN.search(text)
    return match.group(1) if match else None
