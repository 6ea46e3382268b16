"""Sanitize raw Guesty listing items into RemoteProperty values.

Every field of a raw item is untrusted and may be absent. Free text is
stripped of markup, descriptions keep a small HTML subset, URLs must be
http(s), counts are coerced to non-negative integers, and the photo list is
truncated. Items without a usable ID are dropped and reported.
"""

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Final
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, Comment
from pydantic import HttpUrl, TypeAdapter, ValidationError

from guesty_sync.errors import EntryValidationError
from guesty_sync.logging import get_logger
from guesty_sync.models import (
    MAX_ROOM_COUNT,
    DroppedEntry,
    RawEntry,
    RawPhoto,
    RemoteProperty,
)
from guesty_sync.utils.image_cache import is_valid_image_url

logger = get_logger(__name__)

DEFAULT_MAX_PHOTOS: Final = 5

# Removed together with their contents
_REMOVED_TAGS: Final = (
    "script",
    "style",
    "iframe",
    "object",
    "embed",
    "form",
    "noscript",
    "template",
)

_ALLOWED_TAGS: Final = frozenset(
    {
        "p", "br", "strong", "b", "em", "i", "u", "ul", "ol", "li", "a",
        "h2", "h3", "h4", "h5", "h6", "blockquote", "span", "div",
    }
)  # fmt: skip

_ALLOWED_ATTRIBUTES: Final[dict[str, frozenset[str]]] = {
    "a": frozenset({"href", "title"}),
}

_SAFE_HREF_SCHEMES: Final = frozenset({"http", "https", "mailto"})

_CONTROL_CHARS: Final = re.compile(r"[\x00-\x1f\x7f]")

# "example.com/path" style values that are missing a scheme
_HOST_LIKE: Final = re.compile(r"^[a-z0-9][a-z0-9.-]*\.[a-z]{2,}(?:[/:?#]|$)", re.IGNORECASE)

_HTTP_URL: Final = TypeAdapter(HttpUrl)


@dataclass
class SanitizeResult:
    """Sanitized properties plus the raw entries that were dropped."""

    properties: list[RemoteProperty] = field(default_factory=list)
    drops: list[DroppedEntry] = field(default_factory=list)


def sanitize_text(value: Any) -> str:
    """Plain single-line text: markup stripped, whitespace collapsed.

    Numbers are stringified; anything else that is not a string becomes "".
    """
    if isinstance(value, bool) or value is None:
        return ""
    if isinstance(value, int | float):
        value = str(value)
    if not isinstance(value, str):
        return ""
    if "<" in value or "&" in value:
        value = BeautifulSoup(value, "html.parser").get_text(" ")
    value = _CONTROL_CHARS.sub(" ", value)
    return " ".join(value.split())


def _is_safe_href(href: Any) -> bool:
    if not isinstance(href, str):
        return False
    href = href.strip()
    if not href:
        return False
    try:
        scheme = urlsplit(href).scheme.lower()
    except ValueError:
        return False
    return scheme in _SAFE_HREF_SCHEMES


def sanitize_html(value: Any) -> str:
    """Restrict rich text to basic formatting tags.

    Scripts, styles, embeds and forms are removed with their contents. Other
    unknown tags are unwrapped so their text survives. Only allowlisted
    attributes remain, and links must use a safe scheme.
    """
    if not isinstance(value, str) or not value.strip():
        return ""

    soup = BeautifulSoup(value, "html.parser")

    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()

    while (removed := soup.find(list(_REMOVED_TAGS))) is not None:
        removed.decompose()

    for tag in soup.find_all(True):
        if tag.name not in _ALLOWED_TAGS:
            tag.unwrap()
            continue
        allowed = _ALLOWED_ATTRIBUTES.get(tag.name, frozenset())
        tag.attrs = {name: val for name, val in tag.attrs.items() if name in allowed}
        if tag.name == "a" and "href" in tag.attrs and not _is_safe_href(tag["href"]):
            del tag["href"]

    return str(soup).strip()


def normalize_url(value: Any) -> str | None:
    """Return a valid http(s) URL, or None.

    Scheme-less values that look like a host name get ``https://``;
    protocol-relative values (``//host/path``) get ``https:``.
    """
    if not isinstance(value, str):
        return None
    candidate = value.strip().replace(" ", "%20")
    if not candidate:
        return None

    if "://" not in candidate:
        if candidate.startswith("//"):
            candidate = f"https:{candidate}"
        elif _HOST_LIKE.match(candidate):
            candidate = f"https://{candidate}"
        else:
            return None

    try:
        if urlsplit(candidate).scheme.lower() not in ("http", "https"):
            return None
        _HTTP_URL.validate_python(candidate)
    except (ValueError, ValidationError):
        return None
    return candidate


def coerce_count(value: Any) -> int:
    """Coerce a bedroom/bathroom count to a non-negative integer.

    Floats and numeric strings are floored. Negative, non-finite, boolean
    or unparseable values become 0, as do values above MAX_ROOM_COUNT.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        count = value
    elif isinstance(value, float | str):
        try:
            number = float(value.strip()) if isinstance(value, str) else value
        except ValueError:
            return 0
        if not math.isfinite(number):
            return 0
        count = math.floor(number)
    else:
        return 0
    if count < 0 or count > MAX_ROOM_COUNT:
        return 0
    return count


def extract_photo_urls(value: Any, *, limit: int = DEFAULT_MAX_PHOTOS) -> tuple[str, ...]:
    """First ``limit`` valid photo URLs, in original order.

    Photo objects contribute their ``xlarge`` URL, falling back to ``large``.
    Plain string entries are accepted as URLs.
    """
    if not isinstance(value, list):
        return ()

    urls: list[str] = []
    for item in value:
        if len(urls) >= limit:
            break
        if isinstance(item, str):
            url = normalize_url(item)
        elif isinstance(item, dict):
            photo = RawPhoto.model_validate(item)
            url = normalize_url(photo.xlarge) or normalize_url(photo.large)
        else:
            continue
        if url is not None and is_valid_image_url(url):
            urls.append(url)
    return tuple(urls)


def _coerce_id(value: Any) -> str:
    """Listing ID as text.

    Raises:
        EntryValidationError: ``missing_id`` for an absent or blank ID,
            ``invalid_id`` for a value that cannot be an ID.
    """
    if value is None:
        raise EntryValidationError("missing_id")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int | str):
        raise EntryValidationError("invalid_id")
    external_id = sanitize_text(value) if isinstance(value, str) else str(value)
    if not external_id:
        raise EntryValidationError("missing_id")
    return external_id


def sanitize_entry(raw: Any, *, max_photos: int = DEFAULT_MAX_PHOTOS) -> RemoteProperty:
    """Sanitize one raw listing item.

    Raises:
        EntryValidationError: If the item is not an object, has no usable ID,
            or its fields fail validation.
    """
    if not isinstance(raw, dict):
        raise EntryValidationError("not_an_object")

    entry = RawEntry.model_validate(raw)
    external_id = _coerce_id(entry.id)

    try:
        return RemoteProperty(
            external_id=external_id,
            title=sanitize_text(entry.title),
            description=sanitize_html(entry.description),
            external_booking_url=normalize_url(entry.external_listing_url),
            bedrooms=coerce_count(entry.bedrooms),
            bathrooms=coerce_count(entry.bathrooms),
            photo_urls=extract_photo_urls(entry.photos, limit=max_photos),
        )
    except ValidationError as e:
        raise EntryValidationError("invalid_fields", external_id=external_id) from e


def clean(raw_items: Sequence[Any], *, max_photos: int = DEFAULT_MAX_PHOTOS) -> SanitizeResult:
    """Sanitize a fetched catalog.

    Entries that fail validation are excluded and reported in ``drops``. When
    the same ID appears twice, the first entry wins and the later one is
    dropped as a duplicate.

    Args:
        raw_items: Raw ``items`` from the listings endpoint.
        max_photos: Maximum photo URLs kept per listing.

    Returns:
        SanitizeResult with properties in input order.
    """
    result = SanitizeResult()
    seen_ids: set[str] = set()

    for index, raw in enumerate(raw_items):
        try:
            prop = sanitize_entry(raw, max_photos=max_photos)
        except EntryValidationError as e:
            result.drops.append(
                DroppedEntry(index=index, reason=e.reason, external_id=e.external_id)
            )
            logger.warning(
                "entry_dropped", index=index, reason=e.reason, external_id=e.external_id
            )
            continue

        if prop.external_id in seen_ids:
            result.drops.append(
                DroppedEntry(index=index, reason="duplicate_id", external_id=prop.external_id)
            )
            logger.warning(
                "entry_dropped",
                index=index,
                reason="duplicate_id",
                external_id=prop.external_id,
            )
            continue

        seen_ids.add(prop.external_id)
        result.properties.append(prop)

    logger.info(
        "listings_sanitized",
        kept=len(result.properties),
        dropped=len(result.drops),
    )
    return result
