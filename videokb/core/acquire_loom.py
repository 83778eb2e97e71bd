"""
Loom transcript acquirer (free).
Uses the Loom REST API: video metadata plus the transcript endpoint, whose
sentences carry millisecond timestamps.
"""

import logging
import time

import requests

from videokb.core.constants import SourceType, TranscriptMethod, LOOM_API_BASE
from videokb.core.error_codes import AuthMissing, NetworkError
from videokb.core.http_utils import http_request, raise_for_provider_status
from videokb.core.models import Video, TranscriptResult, TranscriptSegment, NoTranscriptAvailable
from videokb.core.captions_parse import segments_to_text
from videokb.core.source_classify import require_reference_id

logger = logging.getLogger(__name__)


class _NoTranscript(Exception):
    pass


class LoomAcquirer:
    name = "loom-api"
    source_type = SourceType.LOOM

    def __init__(self, api_key: str | None, timeout: float = 30,
                 session: requests.Session | None = None):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session

    def _get(self, path: str) -> requests.Response:
        if not self.api_key:
            raise AuthMissing("Loom API key is not configured")
        return http_request(
            "GET", f"{LOOM_API_BASE}{path}", "Loom", self.timeout,
            session=self.session,
            headers={
                'Authorization': f"Bearer {self.api_key}",
                'Content-Type': 'application/json',
            },
        )

    def fetch_metadata(self, loom_id: str) -> dict:
        """Title, duration (ms) and download URL of a Loom video."""
        resp = self._get(f"/videos/{loom_id}")
        raise_for_provider_status(resp, "Loom")
        try:
            return resp.json()
        except ValueError:
            raise NetworkError("Loom returned invalid JSON for video metadata")

    def fetch_sentences(self, loom_id: str) -> list[dict]:
        resp = self._get(f"/videos/{loom_id}/transcript")
        # 404 on the transcript endpoint means "no transcript", not "no video"
        raise_for_provider_status(resp, "Loom", not_found=_NoTranscript)
        try:
            data = resp.json()
        except ValueError:
            raise NetworkError("Loom returned invalid JSON for transcript")
        return data.get('sentences') or []

    def acquire(self, video: Video) -> TranscriptResult | NoTranscriptAvailable:
        loom_id = require_reference_id(SourceType.LOOM, video.reference)
        t0 = time.monotonic()

        metadata = self.fetch_metadata(loom_id)
        logger.info("[%s] Loom metadata: %s", video.id, metadata.get('name', ''))

        try:
            sentences = self.fetch_sentences(loom_id)
        except _NoTranscript:
            return NoTranscriptAvailable(f"Loom video {loom_id} has no transcript")

        segments = []
        for s in sentences:
            text = (s.get('text') or '').strip()
            if not text:
                continue
            start_ms = float(s.get('start_time') or 0)
            end_ms = float(s.get('end_time') or start_ms)
            segments.append(TranscriptSegment(
                text=text,
                start=start_ms / 1000.0,
                duration=max(0.0, end_ms - start_ms) / 1000.0,
            ))
        segments.sort(key=lambda seg: seg.start)

        text = segments_to_text(segments)
        if not text:
            return NoTranscriptAvailable(f"Loom transcript for {loom_id} is empty")

        duration_ms = metadata.get('duration')
        duration = float(duration_ms) / 1000.0 if duration_ms else None
        logger.info("[%s] Loom transcript: %d sentences", video.id, len(segments))

        return TranscriptResult(
            source_type=SourceType.LOOM,
            method=TranscriptMethod.PLATFORM_API,
            text=text,
            segments=segments,
            cost_usd=0.0,
            processing_time_ms=int((time.monotonic() - t0) * 1000),
            duration_seconds=duration,
            title=metadata.get('name'),
            extra={'loom_id': loom_id, 'download_url': metadata.get('download_url')},
        )
