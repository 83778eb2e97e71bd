"""
Mux auto-caption acquirer (free).
Reads the asset from the Mux Video API and downloads the first ready text
track as WebVTT from the playback stream.
"""

import logging
import time

import requests

from videokb.core.constants import SourceType, TranscriptMethod, MUX_API_BASE, MUX_STREAM_BASE
from videokb.core.error_codes import AssetNotReady, AuthMissing, InvalidReference, NetworkError
from videokb.core.http_utils import http_request, raise_for_provider_status
from videokb.core.captions_parse import parse_vtt, segments_to_text
from videokb.core.models import Video, TranscriptResult, NoTranscriptAvailable
from videokb.core.source_classify import require_reference_id

logger = logging.getLogger(__name__)


def find_text_track(asset: dict) -> dict | None:
    """First ready text/subtitle track of an asset, or None."""
    for track in asset.get('tracks') or []:
        if track.get('type') not in ('text', 'subtitle'):
            continue
        if track.get('status', 'ready') != 'ready':
            continue
        return track
    return None


def public_playback_id(asset: dict) -> str | None:
    playback_ids = asset.get('playback_ids') or []
    for pb in playback_ids:
        if pb.get('policy') == 'public':
            return pb.get('id')
    return playback_ids[0].get('id') if playback_ids else None


class MuxAcquirer:
    name = "mux-auto-captions"
    source_type = SourceType.MUX

    def __init__(self, token_id: str | None, token_secret: str | None,
                 timeout: float = 30, session: requests.Session | None = None):
        self.token_id = token_id
        self.token_secret = token_secret
        self.timeout = timeout
        self.session = session

    def fetch_asset(self, asset_id: str) -> dict:
        """Asset record; raises AssetNotReady unless status is 'ready'."""
        if not (self.token_id and self.token_secret):
            raise AuthMissing("Mux token id/secret are not configured")
        resp = http_request(
            "GET", f"{MUX_API_BASE}/assets/{asset_id}", "Mux", self.timeout,
            session=self.session,
            auth=(self.token_id, self.token_secret),
            headers={'Content-Type': 'application/json'},
        )
        raise_for_provider_status(resp, "Mux")
        try:
            asset = resp.json().get('data') or {}
        except ValueError:
            raise NetworkError("Mux returned invalid JSON for asset")

        status = asset.get('status')
        if status != 'ready':
            raise AssetNotReady(f"Mux asset {asset_id} status is {status!r}")
        return asset

    def resolve_asset_id(self, reference: str) -> str:
        """Asset id for a reference; stream URLs carry a playback id instead."""
        ref_id = require_reference_id(SourceType.MUX, reference)
        if "stream.mux.com" not in (reference or ""):
            return ref_id
        if not (self.token_id and self.token_secret):
            raise AuthMissing("Mux token id/secret are not configured")
        resp = http_request(
            "GET", f"{MUX_API_BASE}/playback-ids/{ref_id}", "Mux", self.timeout,
            session=self.session, auth=(self.token_id, self.token_secret),
        )
        raise_for_provider_status(resp, "Mux")
        try:
            obj = (resp.json().get('data') or {}).get('object') or {}
        except ValueError:
            raise NetworkError("Mux returned invalid JSON for playback id")
        if obj.get('type') != 'asset' or not obj.get('id'):
            raise InvalidReference(f"Mux playback id {ref_id} does not belong to an asset")
        return obj['id']

    def download_vtt(self, playback_id: str, track_id: str) -> str:
        resp = http_request(
            "GET", f"{MUX_STREAM_BASE}/{playback_id}/text/{track_id}.vtt",
            "Mux", self.timeout, session=self.session,
        )
        raise_for_provider_status(resp, "Mux")
        return resp.text or ""

    def acquire(self, video: Video) -> TranscriptResult | NoTranscriptAvailable:
        asset_id = self.resolve_asset_id(video.reference)
        t0 = time.monotonic()

        asset = self.fetch_asset(asset_id)
        track = find_text_track(asset)
        if track is None:
            return NoTranscriptAvailable(f"Mux asset {asset_id} has no text track")

        playback_id = public_playback_id(asset)
        if not playback_id:
            return NoTranscriptAvailable(f"Mux asset {asset_id} has no playback id")

        segments = parse_vtt(self.download_vtt(playback_id, track['id']))
        text = segments_to_text(segments)
        if not text:
            return NoTranscriptAvailable(f"Mux captions for {asset_id} contain no cues")

        logger.info("[%s] Mux auto-captions: %d cues", video.id, len(segments))
        duration = asset.get('duration')
        return TranscriptResult(
            source_type=SourceType.MUX,
            method=TranscriptMethod.AUTO_CAPTION,
            text=text,
            segments=segments,
            cost_usd=0.0,
            processing_time_ms=int((time.monotonic() - t0) * 1000),
            duration_seconds=float(duration) if duration else None,
            extra={'asset_id': asset_id, 'playback_id': playback_id, 'track_id': track['id']},
        )
