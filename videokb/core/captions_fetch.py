"""
YouTube captions fetching via yt-dlp.
Creator captions are requested first; auto-generated captions only when the
creator published none.
"""

import logging
import subprocess
from pathlib import Path

from videokb.core.security_utils import run_subprocess_capture
from videokb.core.constants import CookiesMode, DEFAULT_COOKIES_PATH, CAPTION_LANGUAGES
from videokb.core.error_codes import (
    AccessDenied, NetworkError, RequestTimeout, ResourceNotFound, RateLimited, ToolMissing,
)

logger = logging.getLogger(__name__)


def classify_ytdlp_failure(stderr: str, returncode: int):
    """Raise the taxonomy error matching a failed yt-dlp invocation."""
    lowered = stderr.lower()
    if "video unavailable" in lowered or "is not available" in lowered or "does not exist" in lowered:
        raise ResourceNotFound(f"Video unavailable: {stderr[:200]}")
    if "private video" in lowered or "members-only" in lowered:
        raise AccessDenied(f"Private video: {stderr[:200]}")
    if "sign in" in lowered or "confirm your age" in lowered or "geo" in lowered or "country" in lowered:
        raise AccessDenied(f"Restricted content (login/age/geo): {stderr[:200]}")
    if "429" in stderr or "too many requests" in lowered:
        raise RateLimited(f"YouTube rate limited: {stderr[:200]}")
    raise NetworkError(f"yt-dlp failed (rc={returncode}): {stderr[:300]}")


def fetch_captions(video_url: str, video_id: str, work_dir: Path,
                   auto: bool = False,
                   languages: str = CAPTION_LANGUAGES,
                   cookies_mode: str = CookiesMode.OFF,
                   cookies_path: Path | None = None,
                   timeout: int = 60) -> Path | None:
    """
    Download captions (VTT) for one video.
    auto=False → creator captions only (--write-subs).
    auto=True  → auto-generated captions only (--write-auto-subs).
    Returns the VTT path, or None when the video has no such captions.
    """
    work_dir.mkdir(parents=True, exist_ok=True)
    kind = "auto" if auto else "creator"

    def _try_fetch(use_cookies: bool) -> Path | None:
        args = [
            "yt-dlp",
            "--skip-download",
            "--write-auto-subs" if auto else "--write-subs",
            "--sub-langs", languages,
            "--sub-format", "vtt",
            "--no-playlist",
            "-o", str(work_dir / f"{kind}.%(id)s.%(ext)s"),
        ]

        if use_cookies:
            cp = cookies_path or DEFAULT_COOKIES_PATH
            if cp.exists():
                args.extend(["--cookies", str(cp)])
            else:
                return None  # No cookies file, skip retry

        args.append(video_url)

        try:
            result = run_subprocess_capture(args, timeout=timeout)
        except subprocess.TimeoutExpired:
            raise RequestTimeout(f"yt-dlp captions fetch timed out after {timeout}s")
        except FileNotFoundError:
            raise ToolMissing("yt-dlp is not installed")

        if result.returncode != 0:
            classify_ytdlp_failure(result.stderr or "", result.returncode)

        vtt_files = sorted(work_dir.glob(f"{kind}.{video_id}*.vtt"))
        if not vtt_files:
            return None

        # Prefer plain English over regional variants
        for vtt in vtt_files:
            if vtt.name.lower().endswith('.en.vtt'):
                return vtt
        return vtt_files[0]

    # First attempt: without cookies
    denied = None
    try:
        found = _try_fetch(use_cookies=False)
    except AccessDenied as e:
        if cookies_mode != CookiesMode.USE_FILE:
            raise
        denied = e
        found = None
    if found:
        return found

    # Second attempt: with cookies (if enabled)
    if cookies_mode == CookiesMode.USE_FILE:
        logger.info("Retrying %s captions fetch with cookies...", kind)
        found = _try_fetch(use_cookies=True)
        if found:
            return found

    # A restricted video stays restricted; never report it as caption-less
    if denied is not None:
        raise denied
    return None
