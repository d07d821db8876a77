"""Tests for image detection and normalization."""

import io
from unittest.mock import patch

from PIL import Image

from conftest import make_animated_gif, make_image_bytes
from exclusive_listings.imaging.normalizer import (
    ImageNormalizer,
    ProcessedImage,
    detect_image,
)


def open_image(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


class TestDetectImage:
    """Tests for detect_image()."""

    def test_detects_jpeg(self) -> None:
        detected = detect_image(make_image_bytes("JPEG", (40, 30)))
        assert detected is not None
        assert detected.mime_type == "image/jpeg"
        assert (detected.width, detected.height) == (40, 30)
        assert detected.animated is False

    def test_detects_png_and_webp(self) -> None:
        assert detect_image(make_image_bytes("PNG")).mime_type == "image/png"
        assert detect_image(make_image_bytes("WEBP")).mime_type == "image/webp"

    def test_detects_animated_gif(self) -> None:
        detected = detect_image(make_animated_gif())
        assert detected.mime_type == "image/gif"
        assert detected.animated is True

    def test_garbage_is_not_an_image(self) -> None:
        assert detect_image(b"definitely not an image") is None
        assert detect_image(b"") is None

    def test_unsupported_format(self) -> None:
        assert detect_image(make_image_bytes("BMP")) is None


class TestProcess:
    """Tests for ImageNormalizer.process()."""

    def test_jpeg_becomes_webp(self) -> None:
        data = make_image_bytes("JPEG", (100, 80))
        result = ImageNormalizer().process(data, detect_image(data))

        assert result.mime_type == "image/webp"
        assert result.extension == "webp"
        assert result.transcoded is True
        assert open_image(result.data).format == "WEBP"

    def test_large_image_is_downscaled(self) -> None:
        data = make_image_bytes("PNG", (400, 200))
        normalizer = ImageNormalizer(max_dimension=100)

        result = normalizer.process(data, detect_image(data))

        assert (result.width, result.height) == (100, 50)
        assert open_image(result.data).size == (100, 50)

    def test_webp_within_limits_kept(self) -> None:
        data = make_image_bytes("WEBP", (50, 50))
        result = ImageNormalizer().process(data, detect_image(data))

        assert result.data == data
        assert result.transcoded is False

    def test_webp_over_limit_is_reencoded(self) -> None:
        data = make_image_bytes("WEBP", (300, 300))
        result = ImageNormalizer(max_dimension=150).process(data, detect_image(data))

        assert result.mime_type == "image/webp"
        assert (result.width, result.height) == (150, 150)

    def test_conversion_disabled_keeps_small_original(self) -> None:
        data = make_image_bytes("JPEG", (50, 50))
        result = ImageNormalizer(convert_to_webp=False).process(data, detect_image(data))

        assert result.data == data
        assert result.mime_type == "image/jpeg"

    def test_conversion_disabled_still_caps_dimensions(self) -> None:
        data = make_image_bytes("JPEG", (300, 100))
        normalizer = ImageNormalizer(convert_to_webp=False, max_dimension=150)

        result = normalizer.process(data, detect_image(data))

        assert result.mime_type == "image/jpeg"
        assert (result.width, result.height) == (150, 50)

    def test_animated_gif_kept_as_is(self) -> None:
        data = make_animated_gif()
        result = ImageNormalizer().process(data, detect_image(data))

        assert result.data == data
        assert result.mime_type == "image/gif"

    def test_webp_failure_falls_back_to_original_format(self) -> None:
        data = make_image_bytes("JPEG", (60, 60))
        normalizer = ImageNormalizer()
        real_encode = normalizer._encode

        def encode(img, fmt, quality):
            if fmt == "WEBP":
                raise OSError("encoder unavailable")
            return real_encode(img, fmt, quality)

        with patch.object(normalizer, "_encode", side_effect=encode) as mock_encode:
            result = normalizer.process(data, detect_image(data))

        assert result.mime_type == "image/jpeg"
        assert result.transcoded is True
        assert mock_encode.call_args_list[-1].args[1:] == ("JPEG", 82)

    def test_all_encoders_failing_keeps_original(self) -> None:
        data = make_image_bytes("PNG", (60, 60))
        normalizer = ImageNormalizer()

        with patch.object(normalizer, "_encode", side_effect=OSError("broken")):
            result = normalizer.process(data, detect_image(data))

        assert result == ProcessedImage(
            data=data, mime_type="image/png", width=60, height=60
        )

    def test_palette_png_converts(self) -> None:
        img = Image.new("P", (20, 20))
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        data = buffer.getvalue()

        result = ImageNormalizer().process(data, detect_image(data))

        assert result.mime_type == "image/webp"
