"""Image processing and photo naming."""

from exclusive_listings.imaging.normalizer import (
    DetectedImage,
    ImageNormalizer,
    ProcessedImage,
    detect_image,
)
from exclusive_listings.imaging.seo import (
    PhotoMetadata,
    build_listing_address,
    photo_filename,
    photo_metadata,
    slugify,
)

__all__ = [
    "DetectedImage",
    "ImageNormalizer",
    "PhotoMetadata",
    "ProcessedImage",
    "build_listing_address",
    "detect_image",
    "photo_filename",
    "photo_metadata",
    "slugify",
]
