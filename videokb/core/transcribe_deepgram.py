"""
Deepgram Speech-to-Text: the paid acquirer of last resort.
Uses Nova-3 (English), pre-recorded mode.
The cost estimate is computed before the call; files above the size limit
are refused, never truncated. 429 responses back off exponentially.
"""

import json
import logging
import time
from pathlib import Path

import requests

from videokb.core.constants import (
    SourceType, TranscriptMethod,
    DEEPGRAM_API_BASE, DEEPGRAM_MODEL, DEEPGRAM_LANGUAGE,
    STT_COST_PER_MINUTE, STT_MAX_BYTES,
)
from videokb.core.error_codes import (
    AuthMissing, EmptyTranscript, JobError, PayloadTooLarge, RateLimited,
    TranscriptionFailed,
)
from videokb.core.http_utils import http_request, raise_for_provider_status, sleep_backoff
from videokb.core.models import Video, TranscriptResult, TranscriptSegment
from videokb.core.normalize import normalize_audio, get_audio_duration
from videokb.core.security_utils import safe_workspace_path
from videokb.core.source_classify import classify_source

logger = logging.getLogger(__name__)

DEEPGRAM_PRERECORDED_URL = f"{DEEPGRAM_API_BASE}/listen"

_MAX_RATE_LIMIT_RETRIES = 4
_RATE_LIMIT_BASE_DELAY = 2.0   # seconds, doubles each retry with jitter


def verify_api_key(api_key: str) -> tuple[bool, str]:
    """
    Verify a Deepgram API key with a lightweight request.
    Returns (success: bool, message: str).
    """
    try:
        resp = requests.get(
            f"{DEEPGRAM_API_BASE}/projects",
            headers={"Authorization": f"Token {api_key}"},
            timeout=10,
        )
    except requests.exceptions.Timeout:
        return False, "Network error: request timed out"
    except requests.exceptions.RequestException:
        return False, "Network error: could not reach Deepgram"

    if resp.status_code == 200:
        return True, "Key verified"
    if resp.status_code in (401, 403):
        return False, "Key invalid or rejected"
    return False, f"Unexpected response: {resp.status_code}"


def estimate_cost(duration_seconds: float | None,
                  cost_per_minute: float = STT_COST_PER_MINUTE) -> float:
    if not duration_seconds or duration_seconds <= 0:
        return 0.0
    return round(duration_seconds / 60.0 * cost_per_minute, 6)


def _first_alternative(response: dict) -> dict:
    try:
        return response['results']['channels'][0]['alternatives'][0] or {}
    except (KeyError, IndexError, TypeError):
        return {}


def extract_transcript_text(deepgram_response: dict) -> str:
    """
    Extract plain text transcript from Deepgram response.
    Uses paragraphs if available, falls back to the flat transcript.
    """
    alt = _first_alternative(deepgram_response)

    paragraphs = (alt.get('paragraphs') or {}).get('paragraphs') or []
    text_parts = []
    for para in paragraphs:
        para_text = ' '.join(s.get('text', '') for s in para.get('sentences', []))
        if para_text.strip():
            text_parts.append(para_text.strip())
    if text_parts:
        return '\n\n'.join(text_parts)

    return (alt.get('transcript') or '').strip()


def extract_segments(deepgram_response: dict) -> list[TranscriptSegment]:
    """
    Timed segments from a Deepgram response.
    Preference: paragraph sentences, then utterances, then ~10s word groups.
    """
    alt = _first_alternative(deepgram_response)
    segments = []

    for para in (alt.get('paragraphs') or {}).get('paragraphs') or []:
        for s in para.get('sentences', []):
            text = (s.get('text') or '').strip()
            if text:
                start = float(s.get('start', 0.0))
                segments.append(TranscriptSegment(text, start, max(0.0, float(s.get('end', start)) - start)))
    if segments:
        return segments

    utterances = (deepgram_response.get('results') or {}).get('utterances') or []
    for u in utterances:
        text = (u.get('transcript') or '').strip()
        if text:
            start = float(u.get('start', 0.0))
            segments.append(TranscriptSegment(text, start, max(0.0, float(u.get('end', start)) - start)))
    if segments:
        return segments

    # Word-level fallback
    group = []
    for w in alt.get('words') or []:
        group.append(w)
        if float(w.get('end', 0.0)) - float(group[0].get('start', 0.0)) >= 10.0:
            segments.append(_segment_from_words(group))
            group = []
    if group:
        segments.append(_segment_from_words(group))
    return segments


def _segment_from_words(words: list[dict]) -> TranscriptSegment:
    start = float(words[0].get('start', 0.0))
    end = float(words[-1].get('end', start))
    text = ' '.join((w.get('punctuated_word') or w.get('word') or '') for w in words).strip()
    return TranscriptSegment(text, start, max(0.0, end - start))


class DeepgramTranscriber:
    """Paid acquirer. Never returns NoTranscriptAvailable."""

    name = "deepgram-stt"

    def __init__(self, api_key: str | None, audio_resolver,
                 workspace_root: Path,
                 cost_per_minute: float = STT_COST_PER_MINUTE,
                 max_bytes: int = STT_MAX_BYTES,
                 keep_artifacts: bool = False,
                 session: requests.Session | None = None):
        self.api_key = api_key
        self.audio_resolver = audio_resolver
        self.workspace_root = workspace_root
        self.cost_per_minute = cost_per_minute
        self.max_bytes = max_bytes
        self.keep_artifacts = keep_artifacts
        self.session = session

    def acquire(self, video: Video) -> TranscriptResult:
        if not self.api_key:
            raise AuthMissing("Deepgram API key is not configured")

        t0 = time.monotonic()
        work_dir = safe_workspace_path(self.workspace_root, video.id)
        source = self.audio_resolver.resolve(video, work_dir, self.max_bytes)
        audio_path = normalize_audio(source, work_dir / "normalized")

        duration = get_audio_duration(audio_path) or video.duration_seconds
        estimated = estimate_cost(duration, self.cost_per_minute)
        logger.info("[%s] Paid transcription: %.1fs audio, estimated $%.4f",
                    video.id, duration or 0.0, estimated)

        size = audio_path.stat().st_size
        if size > self.max_bytes:
            raise PayloadTooLarge(f"Normalized audio is {size} bytes (limit {self.max_bytes})")

        raw_path = work_dir / "deepgram_response.json" if self.keep_artifacts else None
        response = self.transcribe_audio(audio_path, raw_path)

        text = extract_transcript_text(response)
        if not text:
            raise EmptyTranscript(f"Deepgram returned no speech for video {video.id}")
        segments = extract_segments(response)

        billed = (response.get('metadata') or {}).get('duration') or duration
        return TranscriptResult(
            source_type=classify_source(video),
            method=TranscriptMethod.SPEECH_TO_TEXT,
            text=text,
            segments=segments,
            cost_usd=estimate_cost(billed, self.cost_per_minute),
            processing_time_ms=int((time.monotonic() - t0) * 1000),
            duration_seconds=float(billed) if billed else None,
            estimated_cost_usd=estimated,
            extra={'request_id': (response.get('metadata') or {}).get('request_id')},
        )

    def transcribe_audio(self, audio_path: Path, transcript_output_path: Path | None = None) -> dict:
        """
        POST an audio file to Deepgram (pre-recorded).
        Retries up to 4 times with exponential backoff on 429 rate-limit responses.
        Returns the Deepgram response dict.
        """
        headers = {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "audio/mpeg",
        }
        params = {
            "model": DEEPGRAM_MODEL,
            "language": DEEPGRAM_LANGUAGE,
            "smart_format": "true",
            "punctuate": "true",
            "paragraphs": "true",
            "utterances": "true",
        }

        file_size = audio_path.stat().st_size
        # Adaptive timeout: ~1 min per 10MB, minimum 120s
        timeout_sec = max(120, int(file_size / (10 * 1024 * 1024) * 60) + 60)

        for attempt in range(_MAX_RATE_LIMIT_RETRIES + 1):
            with open(audio_path, 'rb') as f:
                resp = http_request("POST", DEEPGRAM_PRERECORDED_URL, "Deepgram", timeout_sec,
                                    session=self.session, headers=headers, params=params, data=f)

            if resp.status_code == 429:
                if attempt < _MAX_RATE_LIMIT_RETRIES:
                    sleep_backoff(attempt, _RATE_LIMIT_BASE_DELAY, 60.0, "Deepgram rate limited (429)")
                    continue
                raise RateLimited(f"Deepgram rate limited (429) after {_MAX_RATE_LIMIT_RETRIES} retries")

            try:
                raise_for_provider_status(resp, "Deepgram")
            except JobError as e:
                if resp.status_code >= 500:
                    raise TranscriptionFailed(e.message)
                raise

            try:
                result = resp.json()
            except (json.JSONDecodeError, ValueError):
                raise TranscriptionFailed("Failed to parse Deepgram response JSON")

            if transcript_output_path:
                transcript_output_path.parent.mkdir(parents=True, exist_ok=True)
                with open(transcript_output_path, 'w') as f:
                    json.dump(result, f, indent=2)

            return result

        raise RateLimited("Deepgram request exhausted retries")
