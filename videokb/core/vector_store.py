"""
Vector store over the SQLite chunk table.
Similarity is cosine, computed in Python over the candidate videos' chunks.
"""

import math
import logging

from videokb.core.constants import SEARCH_TOP_K, SEARCH_THRESHOLD, EMBEDDING_DIMENSIONS
from videokb.core.db_sqlite import Database
from videokb.core.error_codes import EmbeddingDimensionMismatch
from videokb.core.models import TranscriptChunk, SearchHit

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise EmbeddingDimensionMismatch(f"Cannot compare vectors of {len(a)} and {len(b)} dimensions")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class SQLiteVectorStore:
    def __init__(self, db: Database, dimensions: int = EMBEDDING_DIMENSIONS):
        self.db = db
        self.dimensions = dimensions

    def replace_chunks(self, video_id: str, chunks: list[TranscriptChunk],
                       job_token: str | None = None, status: str | None = None) -> bool:
        """
        Make `chunks` the complete chunk set of the video.
        Readers see either the old set or the new one, never a mix.
        With job_token/status the write only happens while that run still
        owns the video.
        """
        for expected, chunk in enumerate(sorted(chunks, key=lambda c: c.chunk_index)):
            if chunk.chunk_index != expected:
                raise ValueError(f"Chunk indices for {video_id} must be contiguous from 0")
            if chunk.embedding is not None and len(chunk.embedding) != self.dimensions:
                raise EmbeddingDimensionMismatch(
                    f"Chunk {chunk.chunk_index} has {len(chunk.embedding)} dimensions, "
                    f"expected {self.dimensions}")
            chunk.video_id = video_id
        if not self.db.replace_chunks(video_id, chunks, job_token=job_token, status=status):
            logger.info("[%s] Chunk write skipped: run no longer owns the video", video_id)
            return False
        logger.info("[%s] Stored %d chunks", video_id, len(chunks))
        return True

    def get_chunks(self, video_id: str) -> list[TranscriptChunk]:
        return self.db.get_chunks(video_id)

    def count_chunks(self, video_id: str) -> int:
        return self.db.count_chunks(video_id)

    def search(self, query_embedding: list[float],
               candidate_video_ids: list[str] | None = None,
               top_k: int = SEARCH_TOP_K,
               threshold: float = SEARCH_THRESHOLD) -> list[SearchHit]:
        """
        Chunks of the candidate videos with similarity >= threshold, best
        first, at most top_k. Ties: lower chunk_index, then video_id.
        """
        if len(query_embedding) != self.dimensions:
            raise EmbeddingDimensionMismatch(
                f"Query has {len(query_embedding)} dimensions, expected {self.dimensions}")
        if top_k <= 0:
            return []

        hits = []
        for chunk in self.db.get_chunks_for_videos(candidate_video_ids):
            similarity = cosine_similarity(query_embedding, chunk.embedding)
            if similarity >= threshold:
                hits.append(SearchHit(chunk=chunk, similarity=similarity))

        hits.sort(key=lambda h: (-h.similarity, h.chunk.chunk_index, h.chunk.video_id))
        return hits[:top_k]

    def index_stats(self) -> dict:
        """Indexing coverage across all videos."""
        coverage = self.db.chunk_coverage()
        indexed = [c for c in coverage if c['chunk_count']]
        return {
            'total_videos': len(coverage),
            'indexed_videos': len(indexed),
            'total_chunks': sum(c['chunk_count'] for c in coverage),
            'embedded_chunks': sum(c['embedded_count'] or 0 for c in coverage),
            'total_words': sum(c['total_words'] for c in coverage),
            'videos': coverage,
        }
