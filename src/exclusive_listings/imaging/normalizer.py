"""Photo normalization: dimension capping and WebP transcoding with Pillow."""

import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from exclusive_listings.config import MediaSettings

logger = logging.getLogger(__name__)

# Pillow format name -> MIME type
FORMAT_MIME_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}

# MIME type -> file extension
MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


@dataclass(frozen=True)
class DetectedImage:
    """Format facts read from image bytes."""

    mime_type: str
    width: int
    height: int
    animated: bool = False


@dataclass(frozen=True)
class ProcessedImage:
    """Bytes ready to be stored, with the format they are encoded in."""

    data: bytes
    mime_type: str
    width: int
    height: int
    transcoded: bool = False

    @property
    def extension(self) -> str:
        return MIME_EXTENSIONS.get(self.mime_type, "jpg")


def detect_image(data: bytes) -> DetectedImage | None:
    """Identify image bytes by content rather than by declared type.

    Args:
        data: Raw file content.

    Returns:
        DetectedImage for formats we know, None if the bytes are not a
        readable image or use an unsupported format.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            mime_type = FORMAT_MIME_TYPES.get(img.format or "")
            if mime_type is None:
                return None
            width, height = img.size
            animated = bool(getattr(img, "is_animated", False))
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return None
    return DetectedImage(mime_type=mime_type, width=width, height=height, animated=animated)


class ImageNormalizer:
    """Caps photo dimensions and re-encodes photos for the web.

    Transcoding targets WebP. When WebP encoding fails the image is
    re-encoded in its own format at the fallback quality, and when that
    fails too the original bytes are kept untouched.
    """

    def __init__(
        self,
        max_dimension: int = 2048,
        convert_to_webp: bool = True,
        webp_quality: int = 80,
        fallback_quality: int = 82,
    ) -> None:
        self._max_dimension = max_dimension
        self._convert_to_webp = convert_to_webp
        self._webp_quality = webp_quality
        self._fallback_quality = fallback_quality

    @classmethod
    def from_settings(cls, settings: MediaSettings) -> "ImageNormalizer":
        return cls(
            max_dimension=settings.max_dimension,
            convert_to_webp=settings.convert_to_webp,
            webp_quality=settings.webp_quality,
            fallback_quality=settings.fallback_quality,
        )

    def process(self, data: bytes, detected: DetectedImage) -> ProcessedImage:
        """Normalize one photo.

        Args:
            data: Original file content.
            detected: Result of detect_image() for the same bytes.

        Returns:
            The normalized image, or the original bytes when nothing could
            be (or needed to be) re-encoded.
        """
        original = ProcessedImage(
            data=data,
            mime_type=detected.mime_type,
            width=detected.width,
            height=detected.height,
        )

        # Re-encoding would drop every frame but the first
        if detected.animated:
            return original

        with Image.open(io.BytesIO(data)) as img:
            img.load()
            resized = self._cap_dimensions(img)
            was_resized = resized.size != img.size

            if self._convert_to_webp and detected.mime_type != "image/webp":
                try:
                    return self._encode(resized, "WEBP", self._webp_quality)
                except (OSError, ValueError, KeyError):
                    logger.warning("WebP transcoding failed, re-encoding as %s", detected.mime_type)
            elif not was_resized:
                return original

            original_format = img.format or "JPEG"
            try:
                return self._encode(resized, original_format, self._fallback_quality)
            except (OSError, ValueError, KeyError):
                logger.warning("Re-encoding as %s failed, keeping original bytes", original_format)

        return original

    def _cap_dimensions(self, img: Image.Image) -> Image.Image:
        """Downscale so the longest edge is at most max_dimension."""
        width, height = img.size
        longest = max(width, height)
        if longest <= self._max_dimension:
            return img
        scale = self._max_dimension / longest
        new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
        return img.resize(new_size, Image.Resampling.LANCZOS)

    def _encode(self, img: Image.Image, fmt: str, quality: int) -> ProcessedImage:
        fmt = fmt.upper()
        if fmt == "JPEG" and img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        elif fmt == "WEBP" and img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if "A" in img.getbands() or img.mode == "P" else "RGB")

        save_kwargs: dict[str, object] = {}
        if fmt in ("JPEG", "WEBP"):
            save_kwargs["quality"] = quality
        if fmt in ("JPEG", "PNG"):
            save_kwargs["optimize"] = True

        buffer = io.BytesIO()
        img.save(buffer, format=fmt, **save_kwargs)
        return ProcessedImage(
            data=buffer.getvalue(),
            mime_type=FORMAT_MIME_TYPES[fmt],
            width=img.size[0],
            height=img.size[1],
            transcoded=True,
        )
