"""
YouTube transcript acquirer (free).
Creator-published captions first, auto-generated captions second; both
fetched by yt-dlp as VTT and parsed into timed segments.
"""

import logging
import time
from pathlib import Path

from videokb.core.constants import SourceType, TranscriptMethod, CookiesMode
from videokb.core.captions_fetch import fetch_captions
from videokb.core.captions_parse import parse_vtt, segments_to_text
from videokb.core.error_codes import CaptionsUnparseable
from videokb.core.models import Video, TranscriptResult, NoTranscriptAvailable
from videokb.core.security_utils import safe_workspace_path
from videokb.core.source_classify import require_reference_id

logger = logging.getLogger(__name__)


class YouTubeAcquirer:
    name = "youtube-captions"
    source_type = SourceType.YOUTUBE

    def __init__(self, workspace_root: Path,
                 languages: str,
                 cookies_mode: str = CookiesMode.OFF,
                 cookies_path: Path | None = None,
                 timeout: int = 60):
        self.workspace_root = workspace_root
        self.languages = languages
        self.cookies_mode = cookies_mode
        self.cookies_path = cookies_path
        self.timeout = timeout

    def acquire(self, video: Video) -> TranscriptResult | NoTranscriptAvailable:
        yt_id = require_reference_id(SourceType.YOUTUBE, video.reference)
        url = f"https://www.youtube.com/watch?v={yt_id}"
        work_dir = safe_workspace_path(self.workspace_root, video.id) / "captions"
        t0 = time.monotonic()

        for auto in (False, True):
            vtt_path = fetch_captions(
                url, yt_id, work_dir,
                auto=auto,
                languages=self.languages,
                cookies_mode=self.cookies_mode,
                cookies_path=self.cookies_path,
                timeout=self.timeout,
            )
            if vtt_path is None:
                logger.info("[%s] No %s captions on YouTube", video.id, "auto" if auto else "creator")
                continue

            content = vtt_path.read_text(encoding='utf-8', errors='replace')
            segments = parse_vtt(content)
            text = segments_to_text(segments)
            if not text:
                # A caption file that yields nothing is a parse problem, not absence
                raise CaptionsUnparseable(f"Caption file {vtt_path.name} contained no cues")

            method = TranscriptMethod.AUTO_CAPTION if auto else TranscriptMethod.CAPTION_API
            duration = segments[-1].end if segments else None
            logger.info("[%s] YouTube %s: %d segments, %d chars",
                        video.id, method.value, len(segments), len(text))
            return TranscriptResult(
                source_type=SourceType.YOUTUBE,
                method=method,
                text=text,
                segments=segments,
                cost_usd=0.0,
                processing_time_ms=int((time.monotonic() - t0) * 1000),
                duration_seconds=duration,
                extra={'youtube_id': yt_id},
            )

        return NoTranscriptAvailable(f"YouTube video {yt_id} has no captions")
