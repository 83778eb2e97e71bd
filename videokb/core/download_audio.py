"""
Media download for the paid transcription path.
- YouTube: audio-only stream via yt-dlp
- Everything else: streamed HTTP download (Loom download URL, Mux static
  audio rendition, uploaded files in object storage)
"""

import logging
import subprocess
from pathlib import Path

import requests

from videokb.core.security_utils import run_subprocess_capture
from videokb.core.http_utils import http_request, raise_for_provider_status
from videokb.core.captions_fetch import classify_ytdlp_failure
from videokb.core.error_codes import DownloadFailed, PayloadTooLarge, RequestTimeout, ToolMissing
from videokb.core.constants import CookiesMode, DEFAULT_COOKIES_PATH

logger = logging.getLogger(__name__)

_CHUNK_BYTES = 1024 * 1024


def download_audio(video_url: str, format_id: str,
                   output_dir: Path,
                   cookies_mode: str = CookiesMode.OFF,
                   cookies_path: Path | None = None,
                   timeout: int = 600) -> Path:
    """
    Download audio-only stream using yt-dlp.
    Returns path to the downloaded file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    output_template = str(output_dir / "source.%(ext)s")

    args = [
        "yt-dlp",
        "--no-playlist",
        "-f", format_id,
        "-o", output_template,
    ]

    if cookies_mode == CookiesMode.USE_FILE:
        cp = cookies_path or DEFAULT_COOKIES_PATH
        if cp.exists():
            args.extend(["--cookies", str(cp)])

    args.append(video_url)

    try:
        result = run_subprocess_capture(args, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise RequestTimeout(f"Audio download timed out after {timeout}s")
    except FileNotFoundError:
        raise ToolMissing("yt-dlp is not installed")

    if result.returncode != 0:
        classify_ytdlp_failure(result.stderr or "", result.returncode)

    source_files = sorted(p for p in output_dir.glob("source.*") if not p.name.endswith('.part'))
    if not source_files:
        raise DownloadFailed("No audio file found after download")

    downloaded = source_files[0]
    logger.info("Downloaded audio: %s", downloaded)
    return downloaded


def download_http(url: str, output_path: Path, provider: str,
                  max_bytes: int | None = None,
                  timeout: float = 60,
                  headers: dict | None = None) -> Path:
    """
    Stream a remote file to disk.
    Aborts with PayloadTooLarge as soon as max_bytes is exceeded, so an
    oversized file is never fully downloaded.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    resp = http_request("GET", url, provider, timeout, stream=True, headers=headers or {})
    with resp:
        raise_for_provider_status(resp, provider)

        declared = resp.headers.get('Content-Length')
        if max_bytes and declared and declared.isdigit() and int(declared) > max_bytes:
            raise PayloadTooLarge(
                f"{provider} file is {int(declared)} bytes (limit {max_bytes})")

        written = 0
        tmp_path = output_path.with_name(output_path.name + ".part")
        try:
            with open(tmp_path, 'wb') as f:
                for chunk in resp.iter_content(chunk_size=_CHUNK_BYTES):
                    if not chunk:
                        continue
                    written += len(chunk)
                    if max_bytes and written > max_bytes:
                        raise PayloadTooLarge(
                            f"{provider} file exceeds {max_bytes} bytes")
                    f.write(chunk)
        except requests.exceptions.RequestException as e:
            tmp_path.unlink(missing_ok=True)
            raise DownloadFailed(f"{provider} download interrupted: {type(e).__name__}")
        except PayloadTooLarge:
            tmp_path.unlink(missing_ok=True)
            raise

    if written == 0:
        tmp_path.unlink(missing_ok=True)
        raise DownloadFailed(f"{provider} returned an empty file")

    tmp_path.replace(output_path)
    logger.info("Downloaded %s (%d bytes) from %s", output_path.name, written, provider)
    return output_path
