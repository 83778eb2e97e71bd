"""
SQLite database layer for VideoKB.
Thread-safe via check_same_thread=False + explicit locking.

Every status change is a compare-and-set on (status, job_token): a worker
holding a stale token updates nothing.
"""

import json
import sqlite3
import threading
import logging
from array import array
from datetime import datetime, timezone
from pathlib import Path

from videokb.core.constants import DB_PATH, VideoStatus, STATUS_TRANSITIONS
from videokb.core.models import Video, TranscriptChunk

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS videos (
    id TEXT PRIMARY KEY,
    creator_id TEXT,
    source_type TEXT NOT NULL,
    reference TEXT NOT NULL,
    title TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    transcript TEXT,
    transcript_segments TEXT,
    transcript_method TEXT,
    transcript_cost_usd REAL DEFAULT 0,
    duration_seconds REAL,
    error_code TEXT,
    error_message TEXT,
    last_error TEXT,
    attempt_count INTEGER DEFAULT 0,
    recovery_count INTEGER DEFAULT 0,
    job_token TEXT,
    metadata TEXT,
    created_at TEXT,
    updated_at TEXT,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_videos_status ON videos(status, updated_at);
CREATE INDEX IF NOT EXISTS idx_videos_creator ON videos(creator_id);

CREATE TABLE IF NOT EXISTS transcript_chunks (
    video_id TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    chunk_text TEXT NOT NULL,
    start_time_seconds REAL NOT NULL,
    end_time_seconds REAL NOT NULL,
    word_count INTEGER NOT NULL,
    embedding BLOB,
    metadata TEXT,
    created_at TEXT,
    PRIMARY KEY (video_id, chunk_index),
    FOREIGN KEY (video_id) REFERENCES videos(id)
);
"""

_JSON_FIELDS = ('transcript_segments', 'metadata')


def encode_vector(vector: list[float] | None) -> bytes | None:
    if vector is None:
        return None
    return array('d', vector).tobytes()


def decode_vector(blob: bytes | None) -> list[float] | None:
    if blob is None:
        return None
    values = array('d')
    values.frombytes(blob)
    return values.tolist()


class Database:
    """SQLite database wrapper for VideoKB."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH
        self._lock = threading.RLock()
        self._ensure_dirs()
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._migrate()

    def _ensure_dirs(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _migrate(self):
        with self._lock:
            cur = self.conn.cursor()
            cur.executescript(_CREATE_TABLES)
            cur.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (_SCHEMA_VERSION,),
            )
            self.conn.commit()

    def close(self):
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_video(row: sqlite3.Row) -> Video:
        data = dict(row)
        data['transcript_segments'] = json.loads(data['transcript_segments'] or '[]')
        data['metadata'] = json.loads(data['metadata'] or '{}')
        data['transcript_cost_usd'] = data['transcript_cost_usd'] or 0.0
        return Video(**data)

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> TranscriptChunk:
        return TranscriptChunk(
            video_id=row['video_id'],
            chunk_index=row['chunk_index'],
            text=row['chunk_text'],
            start_time_seconds=row['start_time_seconds'],
            end_time_seconds=row['end_time_seconds'],
            word_count=row['word_count'],
            embedding=decode_vector(row['embedding']),
            metadata=json.loads(row['metadata'] or '{}'),
        )

    @staticmethod
    def _encode_fields(fields: dict) -> dict:
        encoded = dict(fields)
        for key in _JSON_FIELDS:
            if key in encoded:
                encoded[key] = json.dumps(encoded[key] or ([] if key == 'transcript_segments' else {}))
        return encoded

    # ── Video CRUD ────────────────────────────────────────────────────

    def create_video_if_missing(self, video: Video) -> tuple[Video, bool]:
        """Insert the video unless a row with its id exists. Returns (row, created)."""
        now = self._now()
        video.created_at = video.created_at or now
        video.updated_at = now
        with self._lock:
            cur = self.conn.execute(
                """INSERT OR IGNORE INTO videos
                   (id, creator_id, source_type, reference, title, status,
                    attempt_count, recovery_count, metadata, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, 0, 0, ?, ?, ?)""",
                (video.id, video.creator_id, video.source_type, video.reference,
                 video.title, video.status, json.dumps(video.metadata or {}),
                 video.created_at, video.updated_at),
            )
            self.conn.commit()
            created = cur.rowcount == 1
            return self.get_video(video.id), created

    def get_video(self, video_id: str) -> Video | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM videos WHERE id = ?", (video_id,)
            ).fetchone()
        return self._row_to_video(row) if row else None

    def get_all_videos(self) -> list[Video]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM videos ORDER BY created_at DESC"
            ).fetchall()
        return [self._row_to_video(r) for r in rows]

    def get_active_videos(self) -> list[Video]:
        marks = ', '.join('?' for _ in VideoStatus.ACTIVE)
        with self._lock:
            rows = self.conn.execute(
                f"SELECT * FROM videos WHERE status IN ({marks}) ORDER BY updated_at ASC",
                VideoStatus.ACTIVE,
            ).fetchall()
        return [self._row_to_video(r) for r in rows]

    def count_by_status(self, creator_id: str | None = None) -> dict[str, int]:
        """Number of videos in every status, optionally for one creator."""
        counts = {status: 0 for status in VideoStatus.ALL}
        query = "SELECT status, COUNT(*) FROM videos"
        params: tuple = ()
        if creator_id is not None:
            query += " WHERE creator_id = ?"
            params = (creator_id,)
        with self._lock:
            rows = self.conn.execute(query + " GROUP BY status", params).fetchall()
        for row in rows:
            counts[row[0]] = row[1]
        return counts

    def get_stale_videos(self, older_than: str) -> list[Video]:
        """Non-terminal videos whose updated_at is before the given ISO time."""
        marks = ', '.join('?' for _ in VideoStatus.ACTIVE)
        with self._lock:
            rows = self.conn.execute(
                f"""SELECT * FROM videos
                    WHERE status IN ({marks}) AND updated_at < ?
                    ORDER BY updated_at ASC""",
                (*VideoStatus.ACTIVE, older_than),
            ).fetchall()
        return [self._row_to_video(r) for r in rows]

    def update_video(self, video_id: str, **kwargs):
        kwargs['updated_at'] = self._now()
        fields = self._encode_fields(kwargs)
        sets = ', '.join(f"{k} = ?" for k in fields)
        vals = list(fields.values()) + [video_id]
        with self._lock:
            self.conn.execute(
                f"UPDATE videos SET {sets} WHERE id = ?", vals
            )
            self.conn.commit()

    def claim_video(self, video_id: str, expected_status: str,
                    expected_token: str | None, new_token: str,
                    reset: bool = True, **extra) -> bool:
        """
        Take ownership of a video for a new run: new job_token, status
        pending. Succeeds only if (status, job_token) are unchanged.
        """
        fields = {'status': VideoStatus.PENDING, 'job_token': new_token, 'completed_at': None}
        if reset:
            fields.update(attempt_count=0, error_code=None, error_message=None, last_error=None)
        fields.update(extra)
        return self._compare_and_set(video_id, expected_status, expected_token, fields)

    def rotate_token(self, video_id: str, expected_status: str,
                     expected_token: str | None, new_token: str, **extra) -> bool:
        """Hand an in-flight video to a new run, keeping its current stage."""
        fields = {'job_token': new_token}
        fields.update(extra)
        return self._compare_and_set(video_id, expected_status, expected_token, fields)

    def transition(self, video_id: str, job_token: str, from_status: str,
                   to_status: str, **fields) -> bool:
        """
        Compare-and-set a status transition. Returns False (and changes
        nothing) when another run owns the row or the status moved on.
        """
        if to_status != VideoStatus.FAILED and to_status not in STATUS_TRANSITIONS.get(from_status, set()):
            raise ValueError(f"Illegal transition {from_status} -> {to_status}")
        fields['status'] = to_status
        if to_status in VideoStatus.TERMINAL:
            fields['completed_at'] = self._now()
        return self._compare_and_set(video_id, from_status, job_token, fields)

    def touch(self, video_id: str, job_token: str, status: str, **fields) -> bool:
        """Update fields without changing status, guarded by the token."""
        return self._compare_and_set(video_id, status, job_token, fields)

    def heartbeat(self, video_id: str, job_token: str) -> bool:
        """Refresh updated_at of a live run. False once the run lost the video."""
        marks = ', '.join('?' for _ in VideoStatus.ACTIVE)
        with self._lock:
            cur = self.conn.execute(
                f"""UPDATE videos SET updated_at = ?
                    WHERE id = ? AND job_token = ? AND status IN ({marks})""",
                (self._now(), video_id, job_token, *VideoStatus.ACTIVE),
            )
            self.conn.commit()
            return cur.rowcount == 1

    def _compare_and_set(self, video_id: str, expected_status: str,
                         expected_token: str | None, fields: dict) -> bool:
        fields = self._encode_fields(fields)
        fields['updated_at'] = self._now()
        sets = ', '.join(f"{k} = ?" for k in fields)
        vals = list(fields.values()) + [video_id, expected_status, expected_token]
        with self._lock:
            cur = self.conn.execute(
                f"""UPDATE videos SET {sets}
                    WHERE id = ? AND status = ? AND job_token IS ?""",
                vals,
            )
            self.conn.commit()
            return cur.rowcount == 1

    # ── Chunk CRUD ────────────────────────────────────────────────────

    def replace_chunks(self, video_id: str, chunks: list[TranscriptChunk],
                       job_token: str | None = None, status: str | None = None) -> bool:
        """
        Swap the full chunk set of a video in one transaction.
        With job_token/status given, nothing is written unless the video row
        still matches them. Returns whether the swap happened.
        """
        now = self._now()
        with self._lock, self.conn:
            if job_token is not None:
                owner = self.conn.execute(
                    "SELECT 1 FROM videos WHERE id = ? AND job_token = ? AND status = ?",
                    (video_id, job_token, status),
                ).fetchone()
                if owner is None:
                    return False
            self.conn.execute("DELETE FROM transcript_chunks WHERE video_id = ?", (video_id,))
            self.conn.executemany(
                """INSERT INTO transcript_chunks
                   (video_id, chunk_index, chunk_text, start_time_seconds,
                    end_time_seconds, word_count, embedding, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [(video_id, c.chunk_index, c.text, c.start_time_seconds,
                  c.end_time_seconds, c.word_count, encode_vector(c.embedding),
                  json.dumps(c.metadata or {}), now)
                 for c in chunks],
            )
        return True

    def get_chunks(self, video_id: str) -> list[TranscriptChunk]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM transcript_chunks WHERE video_id = ? ORDER BY chunk_index",
                (video_id,),
            ).fetchall()
        return [self._row_to_chunk(r) for r in rows]

    def get_chunks_for_videos(self, video_ids: list[str] | None) -> list[TranscriptChunk]:
        """Chunks with embeddings, restricted to the given videos (None = all)."""
        sql = "SELECT * FROM transcript_chunks WHERE embedding IS NOT NULL"
        params: list = []
        if video_ids is not None:
            if not video_ids:
                return []
            sql += f" AND video_id IN ({', '.join('?' for _ in video_ids)})"
            params.extend(video_ids)
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_chunk(r) for r in rows]

    def count_chunks(self, video_id: str) -> int:
        with self._lock:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM transcript_chunks WHERE video_id = ?", (video_id,)
            ).fetchone()
        return row[0]

    def chunk_coverage(self) -> list[dict]:
        """Per-video chunk/embedding counts for completed and in-flight videos."""
        with self._lock:
            rows = self.conn.execute(
                """SELECT v.id AS video_id, v.status,
                          COUNT(c.chunk_index) AS chunk_count,
                          SUM(CASE WHEN c.embedding IS NOT NULL THEN 1 ELSE 0 END) AS embedded_count,
                          COALESCE(SUM(c.word_count), 0) AS total_words
                   FROM videos v
                   LEFT JOIN transcript_chunks c ON c.video_id = v.id
                   GROUP BY v.id, v.status
                   ORDER BY v.created_at"""
            ).fetchall()
        return [dict(r) for r in rows]
