"""
Source classification and reference parsing.
Pure functions: no network or filesystem access.
"""

import re
from pathlib import PurePosixPath
from urllib.parse import urlparse, parse_qs

from videokb.core.constants import (
    SourceType, YOUTUBE_URL_PATTERNS, LOOM_URL_PATTERNS, MUX_URL_PATTERN,
    MEDIA_EXTENSIONS,
)
from videokb.core.error_codes import InvalidReference, UnrecognizedSourceError
from videokb.core.models import Video


def extract_youtube_id(url: str) -> str | None:
    """
    Extract the 11-character video_id from a YouTube URL.
    Returns None if the URL is not a valid YouTube URL.
    """
    url = (url or "").strip()
    if not url:
        return None

    for pattern in YOUTUBE_URL_PATTERNS:
        m = re.search(pattern, url)
        if m:
            return m.group(1)

    # Fallback: parse query string for 'v' parameter
    parsed = urlparse(url)
    if 'youtube.com' in parsed.netloc or 'youtu.be' in parsed.netloc:
        v = parse_qs(parsed.query).get('v', [None])[0]
        if v and re.match(r'^[a-zA-Z0-9_-]{11}$', v):
            return v

    return None


def extract_loom_id(url: str) -> str | None:
    url = (url or "").strip()
    for pattern in LOOM_URL_PATTERNS:
        m = re.search(pattern, url, re.IGNORECASE)
        if m:
            return m.group(1)
    return None


def extract_mux_id(reference: str) -> str | None:
    """Asset/playback id from a stream.mux.com URL or a bare id."""
    reference = (reference or "").strip()
    m = re.search(MUX_URL_PATTERN, reference)
    if m:
        return m.group(1)
    if reference.startswith('asset_') and re.match(r'^[A-Za-z0-9_-]+$', reference):
        return reference
    return None


def _looks_like_media_file(reference: str) -> bool:
    reference = (reference or "").strip()
    if not reference:
        return False
    parsed = urlparse(reference)
    if parsed.scheme in ('http', 'https'):
        path = parsed.path
    elif parsed.scheme in ('', 'file'):
        path = parsed.path or reference
    else:
        return False
    return PurePosixPath(path).suffix.lower() in MEDIA_EXTENSIONS


def classify_url(reference: str) -> SourceType:
    """Classify a raw URL / storage path. Raises UnrecognizedSourceError."""
    if extract_youtube_id(reference):
        return SourceType.YOUTUBE
    if extract_loom_id(reference):
        return SourceType.LOOM
    if extract_mux_id(reference):
        return SourceType.MUX
    if _looks_like_media_file(reference):
        return SourceType.UPLOAD
    raise UnrecognizedSourceError(f"No source pattern matches reference: {reference[:200]!r}")


def coerce_source_type(value) -> SourceType | None:
    if value is None or value == "":
        return None
    if isinstance(value, SourceType):
        return value
    try:
        return SourceType(str(value).strip().lower())
    except ValueError:
        raise UnrecognizedSourceError(f"Unknown source type: {value!r}")


def classify_source(video_or_url: Video | str) -> SourceType:
    """
    Determine the acquisition strategy for a video record or raw URL.
    An explicitly stored source_type wins over URL patterns.
    """
    if isinstance(video_or_url, Video):
        stored = coerce_source_type(video_or_url.source_type)
        if stored is not None:
            return stored
        return classify_url(video_or_url.reference)
    return classify_url(video_or_url)


def require_reference_id(source_type: SourceType, reference: str) -> str:
    """Platform id for a reference, or InvalidReference."""
    match source_type:
        case SourceType.YOUTUBE:
            ref_id = extract_youtube_id(reference)
        case SourceType.LOOM:
            ref_id = extract_loom_id(reference)
        case SourceType.MUX:
            ref_id = extract_mux_id(reference)
            if ref_id is None and re.match(r'^[A-Za-z0-9_-]+$', (reference or "").strip()):
                ref_id = reference.strip()
        case SourceType.UPLOAD:
            ref_id = (reference or "").strip() or None
    if not ref_id:
        raise InvalidReference(f"Not a valid {source_type.value} reference: {reference[:200]!r}")
    return ref_id
