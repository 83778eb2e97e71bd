"""
YouTube metadata fetching via yt-dlp.
Used for title/duration of caption-backed results and for audio stream
selection when the paid fallback has to download audio.
"""

import json
import logging
import subprocess
from pathlib import Path

from videokb.core.security_utils import run_subprocess_capture
from videokb.core.captions_fetch import classify_ytdlp_failure
from videokb.core.error_codes import NetworkError, RequestTimeout, ToolMissing
from videokb.core.constants import CookiesMode, DEFAULT_COOKIES_PATH, SUBPROCESS_TIMEOUT_SEC

logger = logging.getLogger(__name__)


def fetch_metadata(video_url: str, cookies_mode: str = CookiesMode.OFF,
                   cookies_path: Path | None = None,
                   timeout: int = SUBPROCESS_TIMEOUT_SEC) -> dict:
    """
    Fetch video metadata using yt-dlp --dump-json.
    Returns dict with at least 'id', 'title', 'duration', 'formats'.
    """
    args = [
        "yt-dlp",
        "--dump-json",
        "--no-playlist",
        "--skip-download",
    ]

    if cookies_mode == CookiesMode.USE_FILE:
        cp = cookies_path or DEFAULT_COOKIES_PATH
        if cp.exists():
            args.extend(["--cookies", str(cp)])

    args.append(video_url)

    try:
        result = run_subprocess_capture(args, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise RequestTimeout(f"yt-dlp metadata fetch timed out after {timeout}s")
    except FileNotFoundError:
        raise ToolMissing("yt-dlp is not installed")

    if result.returncode != 0:
        classify_ytdlp_failure(result.stderr or "", result.returncode)

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise NetworkError(f"Failed to parse yt-dlp JSON: {e}")

    return data

