"""
Diagnostics: external tool versions, credentials and index health.
"""

import logging
import subprocess
from datetime import datetime, timezone
from pathlib import Path

from videokb.core.security_utils import run_subprocess_capture
from videokb.core.constants import DEFAULT_COOKIES_PATH, APP_VERSION
from videokb.core.transcribe_deepgram import verify_api_key

logger = logging.getLogger(__name__)


def _tool_version(args: list[str]) -> str:
    """First line of a tool's version output, or an error description."""
    try:
        result = run_subprocess_capture(args, timeout=10)
    except FileNotFoundError:
        return "Not installed"
    except subprocess.TimeoutExpired:
        return "Error: timed out"
    if result.returncode != 0:
        return f"Error (rc={result.returncode})"
    lines = result.stdout.strip().splitlines()
    return lines[0] if lines else "unknown"


def get_ytdlp_version() -> str:
    return _tool_version(["yt-dlp", "--version"])


def get_ffmpeg_version() -> str:
    return _tool_version(["ffmpeg", "-version"])


def get_ffprobe_version() -> str:
    return _tool_version(["ffprobe", "-version"])


def check_cookies_file(cookies_path: Path | None = None) -> dict:
    """Check if cookies.txt exists and return info."""
    path = cookies_path or DEFAULT_COOKIES_PATH
    info = {"detected": False, "path": str(path), "last_modified": None}
    if path.exists():
        info["detected"] = True
        info["last_modified"] = datetime.fromtimestamp(
            path.stat().st_mtime, tz=timezone.utc
        ).isoformat()
    return info


def video_diagnostics(db, video_id: str) -> dict | None:
    """Everything known about one video's processing, for support."""
    video = db.get_video(video_id)
    if video is None:
        return None
    return {
        'id': video.id,
        'source_type': video.source_type,
        'status': video.status,
        'transcript_method': video.transcript_method,
        'transcript_cost_usd': video.transcript_cost_usd,
        'duration_seconds': video.duration_seconds,
        'attempt_count': video.attempt_count,
        'recovery_count': video.recovery_count,
        'error_code': video.error_code,
        'last_error': video.last_error,
        'chunk_count': db.count_chunks(video_id),
        'updated_at': video.updated_at,
    }


def get_diagnostics(cookies_path: Path | None = None,
                    credentials: dict | None = None,
                    vector_store=None,
                    verify_keys: bool = False,
                    db=None) -> dict:
    """Gather all diagnostic information. Never includes secret values."""
    info = {
        "version": APP_VERSION,
        "ytdlp_version": get_ytdlp_version(),
        "ffmpeg_version": get_ffmpeg_version(),
        "ffprobe_version": get_ffprobe_version(),
        "cookies": check_cookies_file(cookies_path),
    }
    if credentials is not None:
        info["credentials"] = {name: bool(value) for name, value in credentials.items()}
        if verify_keys and credentials.get("deepgram_api_key"):
            ok, message = verify_api_key(credentials["deepgram_api_key"])
            info["deepgram_key_check"] = {"ok": ok, "message": message}
    if vector_store is not None:
        stats = vector_store.index_stats()
        stats.pop('videos', None)
        info["index"] = stats
    if db is not None:
        info["videos_by_status"] = db.count_by_status()
    return info
