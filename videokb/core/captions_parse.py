"""
WebVTT captions parsing → timed transcript segments.
Removes cue numbers, styling/markup and positioning metadata.
Drops the repeated lines that rolling auto-captions carry from cue to cue.
"""

import re
import logging

from videokb.core.models import TranscriptSegment

logger = logging.getLogger(__name__)

_TIMING_RE = re.compile(
    r'^\s*(?P<start>(?:\d+:)?\d{1,2}:\d{2}[.,]\d{1,3})\s*-->\s*'
    r'(?P<end>(?:\d+:)?\d{1,2}:\d{2}[.,]\d{1,3})'
)
_CUE_ID_RE = re.compile(r'^\d+\s*$')
_HTML_TAG_RE = re.compile(r'<[^>]+>')
_TIMESTAMP_TAG_RE = re.compile(r'<\d{2}:\d{2}(?::\d{2})?\.\d{3}>')
_ENTITY_MAP = {'&amp;': '&', '&lt;': '<', '&gt;': '>', '&nbsp;': ' ', '&#39;': "'", '&quot;': '"'}
_HEADER_PREFIXES = ('WEBVTT', 'Kind:', 'Language:', 'NOTE', 'STYLE', 'REGION')


def parse_timestamp(ts: str) -> float:
    """'HH:MM:SS.mmm' or 'MM:SS.mmm' → seconds."""
    ts = ts.strip().replace(',', '.')
    parts = ts.split(':')
    if len(parts) == 3:
        h, m, s = parts
    elif len(parts) == 2:
        h = 0
        m, s = parts
    else:
        raise ValueError(f"Bad timestamp: {ts!r}")
    return int(h) * 3600 + int(m) * 60 + float(s)


def _clean_line(line: str) -> str:
    line = _TIMESTAMP_TAG_RE.sub('', line)
    line = _HTML_TAG_RE.sub('', line)
    for entity, repl in _ENTITY_MAP.items():
        line = line.replace(entity, repl)
    return re.sub(r'[ \t]+', ' ', line).strip()


def parse_vtt(content: str) -> list[TranscriptSegment]:
    """
    Convert WebVTT content to ordered segments.
    Returns an empty list when the file holds no usable cues.
    """
    segments: list[TranscriptSegment] = []
    lines = content.replace('\r\n', '\n').replace('\r', '\n').split('\n')

    prev_line = None
    i = 0
    while i < len(lines):
        m = _TIMING_RE.match(lines[i])
        i += 1
        if not m:
            continue

        try:
            start = parse_timestamp(m.group('start'))
            end = parse_timestamp(m.group('end'))
        except ValueError:
            logger.debug("Skipping cue with unparseable timing: %r", lines[i - 1])
            continue

        text_lines = []
        while i < len(lines) and lines[i].strip() and not _TIMING_RE.match(lines[i]):
            raw = lines[i]
            i += 1
            if _CUE_ID_RE.match(raw) or raw.startswith(_HEADER_PREFIXES):
                continue
            cleaned = _clean_line(raw)
            if not cleaned:
                continue
            # Skip if identical to previous line (rolling captions repeat)
            if cleaned == prev_line:
                continue
            text_lines.append(cleaned)
            prev_line = cleaned

        if not text_lines:
            continue

        segments.append(TranscriptSegment(
            text=' '.join(text_lines),
            start=start,
            duration=max(0.0, end - start),
        ))

    segments.sort(key=lambda s: s.start)
    return segments


def segments_to_text(segments: list[TranscriptSegment]) -> str:
    """Join segment texts into the full transcript."""
    text = ' '.join(s.text.strip() for s in segments if s.text.strip())
    return re.sub(r'\s+', ' ', text).strip()
