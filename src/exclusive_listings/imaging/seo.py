"""Search-friendly filenames and descriptive text for listing photos."""

import re
import unicodedata
from dataclasses import dataclass

from exclusive_listings.models.db_models import Listing
from exclusive_listings.models.pydantic_models import ListingAddress

# Used when a listing has no usable address text
FALLBACK_SLUG = "exclusive-listing"

MAX_SLUG_LENGTH = 180

# Width of the title, alt_text and caption columns
MAX_TEXT_LENGTH = 300

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class PhotoMetadata:
    """Descriptive text stored with a photo."""

    title: str
    alt_text: str
    caption: str
    description: str


def slugify(text: str) -> str:
    """Turn free text into a lowercase, hyphen-separated URL slug.

    Examples:
        >>> slugify("123 Main St Boston MA")
        '123-main-st-boston-ma'
        >>> slugify("Café Street, Montréal")
        'cafe-street-montreal'
    """
    if not text:
        return ""
    result = unicodedata.normalize("NFKD", text.lower())
    result = "".join(c for c in result if not unicodedata.combining(c))
    result = _NON_ALNUM_RE.sub("-", result).strip("-")
    return result[:MAX_SLUG_LENGTH].rstrip("-")


def _clip(text: str) -> str:
    if len(text) <= MAX_TEXT_LENGTH:
        return text
    return text[: MAX_TEXT_LENGTH - 3].rstrip() + "..."


def build_listing_address(listing: Listing) -> ListingAddress:
    """Collect the address and headline facts of a listing.

    Args:
        listing: Listing row.

    Returns:
        ListingAddress with formatted street, price, beds and baths.
    """
    street = " ".join(p for p in (listing.street_number, listing.street_name) if p)
    if listing.unit_number:
        street = f"{street} Unit {listing.unit_number}".strip()

    full_address = ", ".join(p for p in (street, listing.city, listing.state_or_province) if p)
    if not full_address:
        full_address = f"Exclusive Listing {listing.id}"

    price = f"${listing.list_price:,}" if listing.list_price else ""
    beds = f"{listing.bedrooms_total} bed" if listing.bedrooms_total else ""
    baths = f"{listing.bathrooms_total:g} bath" if listing.bathrooms_total else ""

    return ListingAddress(
        listing_id=listing.id,
        full_address=full_address,
        street_address=street,
        city=listing.city or "",
        state=listing.state_or_province or "",
        property_type=listing.property_type or "Property",
        price=price,
        beds=beds,
        baths=baths,
    )


def photo_filename(address: ListingAddress, photo_number: int, extension: str) -> str:
    """Build ``<address slug>-photo-<n>.<ext>``.

    Example: ``123-main-st-boston-ma-photo-1.webp``.
    """
    parts = (address.street_address, address.city, address.state)
    slug = slugify(" ".join(p for p in parts if p)) or FALLBACK_SLUG
    ext = extension.lower().lstrip(".") or "jpg"
    return f"{slug}-photo-{photo_number}.{ext}"


def photo_metadata(
    address: ListingAddress, photo_number: int, brokerage_name: str = ""
) -> PhotoMetadata:
    """Build title, alt text, caption and description for a photo.

    Args:
        address: Listing address facts.
        photo_number: 1-based position of the photo.
        brokerage_name: Appended to the description when given.

    Returns:
        PhotoMetadata.
    """
    place = address.street_address or address.full_address

    title = f"{address.full_address} - Photo {photo_number}"

    alt_subject = f"{place} {address.city}" if address.city else place
    alt_text = f"{alt_subject} - {address.property_type} for sale"

    caption = f"Photo {photo_number} of {place}"
    if address.city:
        caption += f", {address.city}"

    desc_parts = [f"Photo {photo_number} of {address.full_address}"]
    if address.property_type:
        desc_parts.append(f"{address.property_type} listing")
    if address.price:
        desc_parts.append(f"Listed at {address.price}")
    features = [f for f in (address.beds, address.baths) if f]
    if features:
        desc_parts.append(", ".join(features))
    desc_parts.append(
        f"Exclusive listing by {brokerage_name}" if brokerage_name else "Exclusive listing"
    )
    description = ". ".join(desc_parts) + "."

    return PhotoMetadata(
        title=_clip(title),
        alt_text=_clip(alt_text),
        caption=_clip(caption),
        description=description,
    )
