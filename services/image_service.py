# services/image_service.py
import io
import logging
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from domain.models import ImageFile

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MAX_DIMENSION = 1920
MAX_COMPRESSED_BYTES = 2 * 1024 * 1024

# JPEG quality in percent: 0.8 down to 0.1 in steps of 0.1
START_QUALITY = 80
QUALITY_STEP = 10
MIN_QUALITY = 10


class ImageValidationError(ValueError):
    def __init__(self, title: str, description: str):
        super().__init__(f"{title}: {description}")
        self.title = title
        self.description = description


def validate_image_file(file: ImageFile) -> None:
    """
    Reject non-images and files above 10 MB before anything is sent.
    """
    if not (file.mime_type or "").startswith("image/"):
        raise ImageValidationError(
            "Ungültiges Dateiformat",
            "Bitte nur Bilder hochladen (JPG, PNG, etc.)",
        )
    if file.size > MAX_UPLOAD_BYTES:
        raise ImageValidationError(
            "Datei zu groß",
            "Bitte ein Bild kleiner als 10MB hochladen",
        )


def scaled_size(width: int, height: int, max_dimension: int = MAX_DIMENSION) -> Tuple[int, int]:
    if width <= max_dimension and height <= max_dimension:
        return width, height
    if width > height:
        return max_dimension, max(1, round(height * max_dimension / width))
    return max(1, round(width * max_dimension / height)), max_dimension


def _encode_jpeg(img: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def compress_image(file: ImageFile) -> ImageFile:
    """
    Downscale to at most 1920px on the longer side and re-encode as JPEG,
    lowering the quality until the result fits into 2 MB. At the lowest
    quality the smallest encoding is kept whatever its size.

    Files that cannot be decoded are returned unchanged.
    """
    try:
        with Image.open(io.BytesIO(file.content)) as opened:
            opened.load()
            # phone cameras store rotation in EXIF, which the JPEG re-encode drops
            img = ImageOps.exif_transpose(opened).convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.warning("Could not decode %s, uploading original: %s", file.name, e)
        return file

    new_size = scaled_size(*img.size)
    if new_size != img.size:
        img = img.resize(new_size, Image.LANCZOS)

    quality = START_QUALITY
    smallest: Optional[bytes] = None

    while True:
        encoded = _encode_jpeg(img, quality)
        if smallest is None or len(encoded) < len(smallest):
            smallest = encoded

        if len(encoded) <= MAX_COMPRESSED_BYTES or quality <= MIN_QUALITY:
            break
        quality -= QUALITY_STEP

    result = encoded if len(encoded) <= MAX_COMPRESSED_BYTES else smallest

    logger.info(
        "Compressed %s: %d -> %d bytes (quality %d, %dx%d)",
        file.name,
        file.size,
        len(result),
        quality,
        *img.size,
    )

    return ImageFile(name=file.name, content=result, mime_type="image/jpeg")
