"""
Transcript segmentation: overlapping, sentence-aligned, timestamped chunks.

Chunks are at most max_words long, counting the overlap seed (the last
overlap_words words of the previous chunk). Sentences are never split,
except a single sentence too long for any chunk (unpunctuated
auto-captions), which is cut into word windows.
"""

import re
import logging

from videokb.core.constants import CHUNK_MIN_WORDS, CHUNK_MAX_WORDS, CHUNK_OVERLAP_WORDS
from videokb.core.models import TranscriptChunk, TranscriptSegment

logger = logging.getLogger(__name__)

DEFAULT_OPTIONS = {
    'min_words': CHUNK_MIN_WORDS,
    'max_words': CHUNK_MAX_WORDS,
    'overlap_words': CHUNK_OVERLAP_WORDS,
}

# Words ending in "." that do not end a sentence
ABBREVIATIONS = {
    'dr.', 'mr.', 'mrs.', 'ms.', 'prof.', 'sr.', 'jr.', 'st.', 'vs.',
    'etc.', 'e.g.', 'i.e.', 'approx.', 'inc.', 'ltd.', 'no.', 'fig.',
}
_SENTENCE_END_RE = re.compile(r'[.!?]+["\')\]]*$')


def _resolve_options(options: dict | None) -> dict:
    opts = dict(DEFAULT_OPTIONS)
    opts.update(options or {})
    if opts['max_words'] < 1:
        raise ValueError("max_words must be positive")
    if not 0 <= opts['overlap_words'] < opts['max_words']:
        raise ValueError("overlap_words must be in [0, max_words)")
    return opts


def _ends_sentence(word: str) -> bool:
    if not _SENTENCE_END_RE.search(word):
        return False
    return word.lower().strip('"\'()[]') not in ABBREVIATIONS


def build_word_timeline(text: str, segments: list[TranscriptSegment],
                        duration_seconds: float | None) -> list[tuple[str, float, float]]:
    """
    (word, start, end) for every word of the transcript.
    With native segments, words are spread uniformly across their segment.
    Without, a word's time is proportional to its character offset.
    """
    timeline = []
    if segments:
        cursor = 0.0
        for seg in sorted(segments, key=lambda s: s.start):
            words = seg.text.split()
            if not words:
                continue
            start = max(seg.start, cursor)
            span = max(0.0, seg.end - start)
            step = span / len(words)
            for i, w in enumerate(words):
                timeline.append((w, start + i * step, start + (i + 1) * step))
            cursor = start + span
        return timeline

    total = float(duration_seconds or 0.0)
    n_chars = max(1, len(text))
    for m in re.finditer(r'\S+', text):
        timeline.append((
            m.group(0),
            total * m.start() / n_chars,
            total * m.end() / n_chars,
        ))
    return timeline


def split_sentences(words: list[str]) -> list[tuple[int, int]]:
    """Sentence boundaries as (first_word, end_word_exclusive) index pairs."""
    sentences = []
    begin = 0
    for i, w in enumerate(words):
        if _ends_sentence(w):
            sentences.append((begin, i + 1))
            begin = i + 1
    if begin < len(words):
        sentences.append((begin, len(words)))
    return sentences


def segment_transcript(text: str, segments: list[TranscriptSegment] | None = None,
                       duration_seconds: float | None = None,
                       options: dict | None = None,
                       video_id: str = "") -> list[TranscriptChunk]:
    """
    Split a transcript into ordered chunks (indices 0..N-1), no embeddings.
    An empty transcript gives an empty list.
    """
    opts = _resolve_options(options)
    max_words = opts['max_words']
    overlap = opts['overlap_words']

    timeline = build_word_timeline(text or "", segments or [], duration_seconds)
    if not timeline:
        return []

    words = [w for w, _, _ in timeline]
    if duration_seconds is None or duration_seconds <= 0:
        duration_seconds = timeline[-1][2]

    # Each chunk: (seed word indices, new word indices, sentence count)
    plans: list[tuple[list[int], list[int], int]] = []
    seed: list[int] = []
    current: list[int] = []
    sentence_count = 0
    # A sentence longer than this never fits a seeded chunk
    capacity = max_words - overlap

    def close():
        nonlocal seed, current, sentence_count
        plans.append((seed, current, sentence_count))
        full = seed + current
        seed = full[-overlap:] if overlap else []
        current = []
        sentence_count = 0

    for begin, end in split_sentences(words):
        sentence = list(range(begin, end))
        while sentence:
            room = max_words - len(seed) - len(current)
            if len(sentence) <= room:
                current.extend(sentence)
                sentence_count += 1
                sentence = []
            elif len(sentence) > capacity and room > 0:
                current.extend(sentence[:room])
                sentence_count += 1
                sentence = sentence[room:]
                close()
            else:
                close()
    if current:
        plans.append((seed, current, sentence_count))

    chunks = []
    prev_end = 0.0
    for idx, (seed_idx, new_idx, n_sentences) in enumerate(plans):
        all_idx = seed_idx + new_idx
        start = timeline[new_idx[0]][1]
        end = timeline[new_idx[-1]][2]

        # Clamp: inside [0, duration], non-overlapping, non-decreasing
        start = min(max(start, prev_end, 0.0), duration_seconds)
        end = min(max(end, start), duration_seconds)
        prev_end = end

        chunks.append(TranscriptChunk(
            video_id=video_id,
            chunk_index=idx,
            text=' '.join(words[i] for i in all_idx),
            start_time_seconds=round(start, 3),
            end_time_seconds=round(end, 3),
            word_count=len(all_idx),
            metadata={
                'has_overlap': bool(seed_idx),
                'overlap_word_count': len(seed_idx),
                'sentence_count': n_sentences,
            },
        ))

    logger.debug("Segmented %d words into %d chunks", len(words), len(chunks))
    return chunks


def validate_chunks(chunks: list[TranscriptChunk], min_words: int = 200) -> tuple[bool, list[str]]:
    """Return (valid, warnings) for undersized chunks and timestamp problems."""
    if not chunks:
        return False, ["No chunks generated"]

    warnings = []
    for chunk in chunks[:-1]:
        if chunk.word_count < min_words:
            warnings.append(f"Chunk {chunk.chunk_index} is very small ({chunk.word_count} words)")

    for prev, cur in zip(chunks, chunks[1:]):
        if cur.start_time_seconds < prev.end_time_seconds:
            warnings.append(f"Chunk {cur.chunk_index} overlaps the previous chunk in time")
        if cur.chunk_index != prev.chunk_index + 1:
            warnings.append(f"Chunk index gap before {cur.chunk_index}")

    return not warnings, warnings


def chunking_stats(chunks: list[TranscriptChunk]) -> dict:
    if not chunks:
        return {
            'total_chunks': 0,
            'total_words': 0,
            'avg_words_per_chunk': 0,
            'min_words': 0,
            'max_words': 0,
            'total_duration_seconds': 0.0,
            'chunks_with_overlap': 0,
        }

    word_counts = [c.word_count for c in chunks]
    return {
        'total_chunks': len(chunks),
        'total_words': sum(word_counts),
        'avg_words_per_chunk': round(sum(word_counts) / len(chunks)),
        'min_words': min(word_counts),
        'max_words': max(word_counts),
        'total_duration_seconds': chunks[-1].end_time_seconds,
        'chunks_with_overlap': sum(1 for c in chunks if c.metadata.get('has_overlap')),
    }
