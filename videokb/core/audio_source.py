"""
Resolve a local media file for paid transcription, whatever the source.

upload   staged file from the uploading stage, a local path, or a storage URL
youtube  speech-first audio stream via yt-dlp
loom     download URL from the Loom video metadata
mux      static audio rendition of the public playback id
"""

import logging
from pathlib import Path
from urllib.parse import urlparse, unquote

from videokb.core.constants import SourceType, CookiesMode, MUX_STREAM_BASE
from videokb.core.error_codes import (
    AccessDenied, DownloadFailed, InvalidReference, PayloadTooLarge, ResourceNotFound,
)
from videokb.core.models import Video
from videokb.core.source_classify import classify_source, require_reference_id
from videokb.core.yt_metadata import fetch_metadata
from videokb.core.audio_select import select_audio_stream
from videokb.core.download_audio import download_audio, download_http
from videokb.core.acquire_mux import public_playback_id

logger = logging.getLogger(__name__)

STAGED_PREFIX = "staged"


def _local_path(reference: str) -> Path | None:
    parsed = urlparse(reference)
    if parsed.scheme == 'file':
        return Path(unquote(parsed.path))
    if parsed.scheme == '' or (len(parsed.scheme) == 1 and reference[1:3] in (':\\', ':/')):
        return Path(reference)
    return None


def find_staged(work_dir: Path) -> Path | None:
    staged = sorted(p for p in work_dir.glob(f"{STAGED_PREFIX}.*") if not p.name.endswith('.part'))
    return staged[0] if staged else None


def stage_upload(video: Video, work_dir: Path, max_bytes: int, timeout: float = 60) -> Path:
    """
    Make an uploaded file's binary available locally.
    Local paths are used in place; storage URLs are streamed into work_dir.
    """
    reference = require_reference_id(SourceType.UPLOAD, video.reference)

    local = _local_path(reference)
    if local is not None:
        if not local.is_file():
            raise ResourceNotFound(f"Uploaded file not found: {local.name}")
        size = local.stat().st_size
        if size > max_bytes:
            raise PayloadTooLarge(f"Uploaded file is {size} bytes (limit {max_bytes})")
        return local

    parsed = urlparse(reference)
    if parsed.scheme not in ('http', 'https'):
        raise InvalidReference(f"Unsupported upload location scheme: {parsed.scheme!r}")

    existing = find_staged(work_dir)
    if existing is not None:
        logger.info("[%s] Reusing staged upload %s", video.id, existing.name)
        return existing

    suffix = Path(parsed.path).suffix.lower() or ".bin"
    return download_http(reference, work_dir / f"{STAGED_PREFIX}{suffix}", "storage",
                         max_bytes=max_bytes, timeout=timeout)


class AudioSourceResolver:
    """Per-source audio lookup for the paid transcriber."""

    def __init__(self, loom=None, mux=None,
                 cookies_mode: str = CookiesMode.OFF,
                 cookies_path: Path | None = None,
                 timeout: float = 60):
        self.loom = loom
        self.mux = mux
        self.cookies_mode = cookies_mode
        self.cookies_path = cookies_path
        self.timeout = timeout

    def resolve(self, video: Video, work_dir: Path, max_bytes: int) -> Path:
        source_type = classify_source(video)
        match source_type:
            case SourceType.UPLOAD:
                return stage_upload(video, work_dir, max_bytes, timeout=self.timeout)
            case SourceType.YOUTUBE:
                return self._youtube(video, work_dir, max_bytes)
            case SourceType.LOOM:
                return self._loom(video, work_dir, max_bytes)
            case SourceType.MUX:
                return self._mux(video, work_dir, max_bytes)

    def _youtube(self, video: Video, work_dir: Path, max_bytes: int) -> Path:
        yt_id = require_reference_id(SourceType.YOUTUBE, video.reference)
        url = f"https://www.youtube.com/watch?v={yt_id}"
        metadata = fetch_metadata(url, cookies_mode=self.cookies_mode, cookies_path=self.cookies_path)
        selected = select_audio_stream(metadata, meta_dir=work_dir / "meta")
        filesize = selected.get('filesize')
        if filesize and filesize > max_bytes:
            raise PayloadTooLarge(f"YouTube audio stream is {filesize} bytes (limit {max_bytes})")
        return download_audio(url, selected['format_id'], work_dir / "audio",
                              cookies_mode=self.cookies_mode, cookies_path=self.cookies_path)

    def _loom(self, video: Video, work_dir: Path, max_bytes: int) -> Path:
        if self.loom is None:
            raise DownloadFailed("Loom client is not configured", retryable=False)
        loom_id = require_reference_id(SourceType.LOOM, video.reference)
        metadata = self.loom.fetch_metadata(loom_id)
        download_url = metadata.get('download_url')
        if not download_url:
            raise AccessDenied(f"Loom video {loom_id} does not allow downloads")
        return download_http(download_url, work_dir / "audio" / "source.mp4", "Loom",
                             max_bytes=max_bytes, timeout=self.timeout)

    def _mux(self, video: Video, work_dir: Path, max_bytes: int) -> Path:
        if self.mux is None:
            raise DownloadFailed("Mux client is not configured", retryable=False)
        asset = self.mux.fetch_asset(self.mux.resolve_asset_id(video.reference))
        playback_id = public_playback_id(asset)
        if not playback_id:
            raise AccessDenied(f"Mux asset {asset.get('id')} has no playback id")
        url = f"{MUX_STREAM_BASE}/{playback_id}/audio.m4a"
        return download_http(url, work_dir / "audio" / "source.m4a", "Mux",
                             max_bytes=max_bytes, timeout=self.timeout)
