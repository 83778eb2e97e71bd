"""
Audio normalization using ffmpeg / ffprobe.
Target: mono, 16kHz, MP3 CBR 96kbps; small enough for the paid transcriber
and identical input characteristics whatever the source container.
"""

import logging
import subprocess
from pathlib import Path

from videokb.core.security_utils import run_subprocess_capture
from videokb.core.error_codes import AudioExtractionFailed, ToolMissing
from videokb.core.constants import (
    NORM_CHANNELS, NORM_SAMPLE_RATE, NORM_BITRATE, NORM_FORMAT,
)

logger = logging.getLogger(__name__)


def normalize_audio(input_path: Path, output_dir: Path, timeout: int = 600) -> Path:
    """
    Extract and normalize the audio track of any media file.
    Video streams are dropped (-vn). Raises AudioExtractionFailed when the
    input has no decodable audio.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / f"normalized.{NORM_FORMAT}"

    args = [
        "ffmpeg",
        "-y",                           # overwrite
        "-i", str(input_path),
        "-vn",
        "-ar", str(NORM_SAMPLE_RATE),   # 16kHz
        "-ac", str(NORM_CHANNELS),      # mono downmix
        "-b:a", NORM_BITRATE,           # 96k CBR
        "-codec:a", "libmp3lame",
        str(output_path),
    ]

    try:
        result = run_subprocess_capture(args, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise AudioExtractionFailed(f"ffmpeg timed out after {timeout}s")
    except FileNotFoundError:
        raise ToolMissing("ffmpeg is not installed")

    if result.returncode != 0:
        stderr = result.stderr or ""
        raise AudioExtractionFailed(f"ffmpeg failed (rc={result.returncode}): {stderr[-300:]}")

    if not output_path.exists() or output_path.stat().st_size == 0:
        raise AudioExtractionFailed("Normalized file not created")

    logger.info("Normalized audio: %s (%d bytes)", output_path, output_path.stat().st_size)
    return output_path


def get_audio_duration(audio_path: Path) -> float | None:
    """Audio duration in seconds using ffprobe, or None when unknown."""
    args = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(audio_path),
    ]

    try:
        result = run_subprocess_capture(args, timeout=30)
    except (subprocess.TimeoutExpired, FileNotFoundError) as e:
        logger.warning("ffprobe unavailable for %s: %s", audio_path.name, type(e).__name__)
        return None

    if result.returncode != 0:
        return None
    try:
        return float(result.stdout.strip())
    except ValueError:
        return None
