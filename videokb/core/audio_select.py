"""
Audio stream selection policy (speech-first).
Picks the yt-dlp format to download when a YouTube video has to go through
paid transcription: smallest stream that still transcribes well.
"""

import json
import logging
from pathlib import Path

from videokb.core.constants import PREFERRED_ABR_KBPS, MIN_ABR_KBPS, MAX_ABR_KBPS

logger = logging.getLogger(__name__)


def _audio_only_formats(formats: list[dict]) -> list[dict]:
    streams = []
    for fmt in formats:
        vcodec = fmt.get('vcodec')
        acodec = fmt.get('acodec')
        if vcodec not in ('none', None, '') or acodec in ('none', None, ''):
            continue
        try:
            abr = float(fmt['abr']) if fmt.get('abr') is not None else None
        except (ValueError, TypeError):
            abr = None
        streams.append({
            'format_id': fmt.get('format_id', ''),
            'abr': abr if abr and abr > 0 else None,
            'ext': fmt.get('ext', ''),
            'acodec': acodec,
            'filesize': fmt.get('filesize') or fmt.get('filesize_approx'),
        })
    return streams


def select_audio_stream(metadata: dict, meta_dir: Path | None = None) -> dict:
    """
    Select the audio-only stream for speech transcription.

    1. Audio-only formats (vcodec == "none").
    2. Within [MIN, MAX] kbps, the abr closest to PREFERRED (ties go higher).
    3. Everything above MAX: the lowest of them.
    4. Everything below MIN: the highest of them.
    5. No abr data: first audio-only stream; no audio-only stream: "bestaudio".

    Returns dict with format_id, abr, ext, filesize and selection_reason.
    """
    streams = _audio_only_formats(metadata.get('formats') or [])

    if not streams:
        result = {
            'format_id': 'bestaudio',
            'abr': None,
            'ext': None,
            'filesize': None,
            'selection_reason': 'No audio-only streams found; using bestaudio fallback',
        }
    else:
        with_abr = [s for s in streams if s['abr'] is not None]
        in_range = [s for s in with_abr if MIN_ABR_KBPS <= s['abr'] <= MAX_ABR_KBPS]
        above = [s for s in with_abr if s['abr'] > MAX_ABR_KBPS]

        if in_range:
            selected = min(in_range, key=lambda s: (abs(s['abr'] - PREFERRED_ABR_KBPS), -s['abr']))
            reason = f"Closest to {PREFERRED_ABR_KBPS}kbps in [{MIN_ABR_KBPS}-{MAX_ABR_KBPS}] range"
        elif above:
            selected = min(above, key=lambda s: s['abr'])
            reason = f"No stream in [{MIN_ABR_KBPS}-{MAX_ABR_KBPS}] range; chose lowest above"
        elif with_abr:
            selected = max(with_abr, key=lambda s: s['abr'])
            reason = f"No stream >= {MIN_ABR_KBPS}kbps; chose highest available"
        else:
            selected = streams[0]
            reason = "No reliable ABR data; chose first audio-only stream"

        result = {
            'format_id': selected['format_id'],
            'abr': selected['abr'],
            'ext': selected['ext'],
            'filesize': selected['filesize'],
            'selection_reason': reason,
        }

    if meta_dir:
        meta_dir.mkdir(parents=True, exist_ok=True)
        with open(meta_dir / "selected_format.json", 'w') as f:
            json.dump(result, f, indent=2)

    logger.info("Selected audio stream: format_id=%s abr=%s reason=%s",
                result['format_id'], result['abr'], result['selection_reason'])
    return result
