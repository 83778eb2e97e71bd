#!/usr/bin/env python3
"""
Tests for persistence, vector search and the job orchestrator.
Acquirers and the embedder are in-memory fakes; the database is a temp file.
"""

import sys
import json
import tempfile
import threading
import time
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from videokb.core.cleanup import cleanup_job_artifacts
from videokb.core.config import AppConfig
from videokb.core.constants import SourceType, TranscriptMethod, VideoStatus, ErrorCode
from videokb.core.context import PipelineContext
from videokb.core.db_sqlite import Database, encode_vector, decode_vector
from videokb.core.diagnostics import get_diagnostics, video_diagnostics
from videokb.core.embeddings import EmbeddingBatch
from videokb.core.error_codes import AccessDenied, RateLimited, EmbeddingDimensionMismatch, public_message
from videokb.core.job_queue import JobQueueManager
from videokb.core.models import Video, TranscriptChunk, TranscriptResult, TriggerRequest
from videokb.core.transcript_router import TranscriptRouter
from videokb.core.vector_store import SQLiteVectorStore, cosine_similarity

DIMS = 8
YT_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def _words(n: int) -> str:
    return " ".join(f"word{i}." if (i + 1) % 10 == 0 else f"word{i}" for i in range(n))


def _chunk(video_id, index, vector, text="chunk text"):
    return TranscriptChunk(video_id=video_id, chunk_index=index, text=text,
                           start_time_seconds=float(index * 10),
                           end_time_seconds=float(index * 10 + 10),
                           word_count=len(text.split()), embedding=vector)


def _unit(i: int) -> list[float]:
    v = [0.0] * DIMS
    v[i] = 1.0
    return v


class TestDatabase(unittest.TestCase):
    """Test SQLite persistence and compare-and-set transitions."""

    def setUp(self):
        self.db_path = Path(tempfile.mktemp(suffix='.db'))
        self.db = Database(self.db_path)

    def tearDown(self):
        self.db.close()
        if self.db_path.exists():
            self.db_path.unlink()

    def _create(self, video_id="v1"):
        video, created = self.db.create_video_if_missing(
            Video(id=video_id, source_type="youtube", reference=YT_URL))
        return video, created

    def test_create_is_idempotent(self):
        _, created = self._create()
        self.assertTrue(created)
        _, created_again = self._create()
        self.assertFalse(created_again)
        self.assertEqual(len(self.db.get_all_videos()), 1)

    def test_claim_and_transition(self):
        video, _ = self._create()
        self.assertTrue(self.db.claim_video(video.id, VideoStatus.PENDING, None, "tok1"))
        self.assertTrue(self.db.transition(video.id, "tok1", VideoStatus.PENDING, VideoStatus.TRANSCRIBING))
        self.assertEqual(self.db.get_video(video.id).status, VideoStatus.TRANSCRIBING)

    def test_stale_token_changes_nothing(self):
        video, _ = self._create()
        self.db.claim_video(video.id, VideoStatus.PENDING, None, "tok1")
        self.db.claim_video(video.id, VideoStatus.PENDING, "tok1", "tok2")
        self.assertFalse(self.db.transition(video.id, "tok1", VideoStatus.PENDING, VideoStatus.TRANSCRIBING))
        self.assertEqual(self.db.get_video(video.id).status, VideoStatus.PENDING)

    def test_illegal_transition(self):
        video, _ = self._create()
        self.db.claim_video(video.id, VideoStatus.PENDING, None, "tok1")
        with self.assertRaises(ValueError):
            self.db.transition(video.id, "tok1", VideoStatus.PENDING, VideoStatus.COMPLETED)

    def test_failed_reachable_and_terminal_timestamp(self):
        video, _ = self._create()
        self.db.claim_video(video.id, VideoStatus.PENDING, None, "tok1")
        self.assertTrue(self.db.transition(video.id, "tok1", VideoStatus.PENDING, VideoStatus.FAILED,
                                           error_code=ErrorCode.ACCESS_DENIED))
        video = self.db.get_video(video.id)
        self.assertTrue(video.is_terminal)
        self.assertIsNotNone(video.completed_at)

    def test_json_fields_round_trip(self):
        video, _ = self._create()
        self.db.update_video(video.id, metadata={'a': 1},
                             transcript_segments=[{'text': 'hi', 'start': 0.0, 'duration': 1.0}])
        video = self.db.get_video(video.id)
        self.assertEqual(video.metadata, {'a': 1})
        self.assertEqual(video.segments[0].text, 'hi')

    def test_guarded_chunk_write(self):
        video, _ = self._create()
        self.db.claim_video(video.id, VideoStatus.PENDING, None, "tok1")
        chunks = [_chunk(video.id, 0, _unit(0))]
        self.assertFalse(self.db.replace_chunks(video.id, chunks, job_token="other", status=VideoStatus.PENDING))
        self.assertEqual(self.db.count_chunks(video.id), 0)
        self.assertTrue(self.db.replace_chunks(video.id, chunks, job_token="tok1", status=VideoStatus.PENDING))
        self.assertEqual(self.db.count_chunks(video.id), 1)

    def test_heartbeat_only_for_owning_run(self):
        video, _ = self._create()
        self.db.claim_video(video.id, VideoStatus.PENDING, None, "tok1")
        with self.db._lock:
            self.db.conn.execute("UPDATE videos SET updated_at = ? WHERE id = ?",
                                 ("2000-01-01T00:00:00+00:00", video.id))
            self.db.conn.commit()
        self.assertFalse(self.db.heartbeat(video.id, "other"))
        self.assertEqual(self.db.get_video(video.id).updated_at, "2000-01-01T00:00:00+00:00")
        self.assertTrue(self.db.heartbeat(video.id, "tok1"))
        self.assertNotEqual(self.db.get_video(video.id).updated_at, "2000-01-01T00:00:00+00:00")

        self.db.transition(video.id, "tok1", VideoStatus.PENDING, VideoStatus.FAILED)
        self.assertFalse(self.db.heartbeat(video.id, "tok1"))

    def test_count_by_status(self):
        self._create("v1")
        self._create("v2")
        self.db.create_video_if_missing(Video(id="v3", source_type="loom", creator_id="c2",
                                              reference="https://www.loom.com/share/abc123"))
        self.db.claim_video("v2", VideoStatus.PENDING, None, "tok")
        self.db.transition("v2", "tok", VideoStatus.PENDING, VideoStatus.TRANSCRIBING)

        counts = self.db.count_by_status()
        self.assertEqual(set(counts), set(VideoStatus.ALL))
        self.assertEqual(counts[VideoStatus.PENDING], 2)
        self.assertEqual(counts[VideoStatus.TRANSCRIBING], 1)
        self.assertEqual(counts[VideoStatus.COMPLETED], 0)
        self.assertEqual(sum(self.db.count_by_status("c2").values()), 1)

    def test_vector_blob(self):
        vector = [0.25, -1.5, 3.0]
        self.assertEqual(decode_vector(encode_vector(vector)), vector)
        self.assertIsNone(decode_vector(None))


class TestVectorStore(unittest.TestCase):
    """Test chunk replacement and similarity search."""

    def setUp(self):
        self.db_path = Path(tempfile.mktemp(suffix='.db'))
        self.db = Database(self.db_path)
        self.store = SQLiteVectorStore(self.db, dimensions=DIMS)
        for vid in ("va", "vb"):
            self.db.create_video_if_missing(Video(id=vid, source_type="youtube", reference=YT_URL))

    def tearDown(self):
        self.db.close()
        if self.db_path.exists():
            self.db_path.unlink()

    def test_cosine(self):
        self.assertAlmostEqual(cosine_similarity([1, 0], [1, 0]), 1.0)
        self.assertAlmostEqual(cosine_similarity([1, 0], [0, 1]), 0.0)
        self.assertEqual(cosine_similarity([0, 0], [1, 0]), 0.0)
        with self.assertRaises(EmbeddingDimensionMismatch):
            cosine_similarity([1, 0], [1, 0, 0])

    def test_replace_is_complete(self):
        self.store.replace_chunks("va", [_chunk("va", i, _unit(i)) for i in range(3)])
        self.store.replace_chunks("va", [_chunk("va", 0, _unit(0))])
        self.assertEqual([c.chunk_index for c in self.store.get_chunks("va")], [0])

    def test_non_contiguous_indices_rejected(self):
        with self.assertRaises(ValueError):
            self.store.replace_chunks("va", [_chunk("va", 0, _unit(0)), _chunk("va", 2, _unit(1))])

    def test_wrong_dimension_rejected(self):
        with self.assertRaises(EmbeddingDimensionMismatch):
            self.store.replace_chunks("va", [_chunk("va", 0, [1.0, 0.0])])
        with self.assertRaises(EmbeddingDimensionMismatch):
            self.store.search([1.0, 0.0])

    def test_search_threshold_order_and_top_k(self):
        near = [1.0, 0.2] + [0.0] * (DIMS - 2)
        far = [0.0, 1.0] + [0.0] * (DIMS - 2)
        self.store.replace_chunks("va", [_chunk("va", 0, near), _chunk("va", 1, far)])
        self.store.replace_chunks("vb", [_chunk("vb", 0, _unit(0))])

        hits = self.store.search(_unit(0), threshold=0.5, top_k=10)
        self.assertEqual([(h.chunk.video_id, h.chunk.chunk_index) for h in hits],
                         [("vb", 0), ("va", 0)])
        sims = [h.similarity for h in hits]
        self.assertEqual(sims, sorted(sims, reverse=True))
        self.assertTrue(all(s >= 0.5 for s in sims))

        self.assertEqual(len(self.store.search(_unit(0), threshold=0.5, top_k=1)), 1)
        self.assertEqual(self.store.search(_unit(0), top_k=0), [])

    def test_search_ties_break_by_chunk_then_video(self):
        self.store.replace_chunks("vb", [_chunk("vb", 0, _unit(0))])
        self.store.replace_chunks("va", [_chunk("va", 0, _unit(1)), _chunk("va", 1, _unit(0))])
        hits = self.store.search(_unit(0), threshold=0.9)
        self.assertEqual([(h.chunk.video_id, h.chunk.chunk_index) for h in hits],
                         [("vb", 0), ("va", 1)])
        self.store.replace_chunks("va", [_chunk("va", 0, _unit(0))])
        hits = self.store.search(_unit(0), threshold=0.9)
        self.assertEqual([h.chunk.video_id for h in hits], ["va", "vb"])

    def test_search_restricted_to_candidates(self):
        self.store.replace_chunks("va", [_chunk("va", 0, _unit(0))])
        self.store.replace_chunks("vb", [_chunk("vb", 0, _unit(0))])
        hits = self.store.search(_unit(0), candidate_video_ids=["vb"], threshold=0.0)
        self.assertEqual({h.chunk.video_id for h in hits}, {"vb"})
        self.assertEqual(self.store.search(_unit(0), candidate_video_ids=[]), [])

    def test_index_stats(self):
        self.store.replace_chunks("va", [_chunk("va", i, _unit(i)) for i in range(2)])
        stats = self.store.index_stats()
        self.assertEqual(stats['total_videos'], 2)
        self.assertEqual(stats['indexed_videos'], 1)
        self.assertEqual(stats['total_chunks'], 2)
        self.assertEqual(stats['embedded_chunks'], 2)


class TestCleanup(unittest.TestCase):
    """Test artifact removal after a video finishes."""

    def _workspace(self, root):
        ws = root / "v1"
        for d in ("audio", "normalized", "captions", "meta"):
            (ws / d).mkdir(parents=True)
            (ws / d / "f.bin").write_bytes(b"x")
        (ws / "staged.mp4").write_bytes(b"x")
        return ws

    def test_removes_everything_by_default(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            ws = self._workspace(Path(tmpdir))
            cleanup_job_artifacts(ws)
            self.assertFalse(ws.exists())

    def test_keep_debug_preserves_captions(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            ws = self._workspace(Path(tmpdir))
            cleanup_job_artifacts(ws, keep_debug=True)
            self.assertTrue((ws / "captions").exists())
            self.assertFalse((ws / "audio").exists())
            self.assertFalse((ws / "staged.mp4").exists())


# ── Orchestrator fakes ────────────────────────────────────────────────

class StubAcquirer:
    """Returns self.outcome (or raises it) and counts calls."""

    def __init__(self, name, outcome):
        self.name = name
        self.outcome = outcome
        self.calls = 0
        self._lock = threading.Lock()
        # acquire blocks on the gate when one is set
        self.gate = None
        self.entered = threading.Event()

    def acquire(self, video):
        with self._lock:
            self.calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(30)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class StubEmbedder:
    def __init__(self):
        self.calls = 0

    def embed_batch(self, texts):
        self.calls += 1
        vectors = [_unit(i % DIMS) for i in range(len(texts))]
        return EmbeddingBatch(vectors=vectors, total_tokens=10 * len(texts), cost_usd=0.0001)


def _transcript(n_words, method=TranscriptMethod.CAPTION_API, cost=0.0, source=SourceType.YOUTUBE):
    return TranscriptResult(source_type=source, method=method, text=_words(n_words),
                            cost_usd=cost, duration_seconds=n_words / 2.5)


class TestJobQueue(unittest.TestCase):
    """Test the video state machine end to end with fake collaborators."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        root = Path(self.tmpdir.name)
        self.config = AppConfig(root / "config.json", overrides={
            'db_path': str(root / "videokb.db"),
            'workspace_dir': str(root / "jobs"),
            'backoff_base_sec': 0.0,
            'max_attempts': 3,
            'max_workers': 2,
            'router_retries': 0,
            'embedding_dimensions': DIMS,
        })
        self.db = Database(self.config.db_path)
        self.free = StubAcquirer("free", _transcript(2050))
        self.paid = StubAcquirer("paid", _transcript(300, TranscriptMethod.SPEECH_TO_TEXT, 0.02,
                                                     SourceType.UPLOAD))
        self.embedder = StubEmbedder()
        self.ctx = PipelineContext(
            config=self.config,
            db=self.db,
            vector_store=SQLiteVectorStore(self.db, dimensions=DIMS),
            embedder=self.embedder,
            router=TranscriptRouter({SourceType.YOUTUBE: self.free}, self.paid,
                                    router_retries=0, backoff_base_sec=0.0),
        )
        self.manager = JobQueueManager(self.ctx)
        self.statuses = []
        self.manager.on_video_updated = lambda v: self.statuses.append(v.status)

    def tearDown(self):
        self.manager.stop_processing()
        self.db.close()
        self.tmpdir.cleanup()

    def _trigger(self, video_id="v1", reference=YT_URL, source="youtube", force=False):
        return self.manager.trigger(TriggerRequest(
            video_id=video_id, creator_id="creator-1", source_type=source,
            reference=reference, force_transcribe=force))

    def _run(self):
        self.manager.start_processing()
        self.assertTrue(self.manager.wait_idle(timeout=30))
        self.manager.stop_processing()

    def test_free_path_completes(self):
        self._trigger()
        self._run()

        video = self.db.get_video("v1")
        self.assertEqual(video.status, VideoStatus.COMPLETED)
        self.assertEqual(video.transcript_method, TranscriptMethod.CAPTION_API.value)
        self.assertEqual(video.transcript_cost_usd, 0.0)
        self.assertEqual(self.paid.calls, 0)
        self.assertEqual([c.chunk_index for c in self.ctx.vector_store.get_chunks("v1")], [0, 1, 2])
        self.assertEqual(self.statuses[-3:], [VideoStatus.PROCESSING, VideoStatus.EMBEDDING,
                                              VideoStatus.COMPLETED])
        status = self.manager.get_status("v1")
        self.assertEqual(status['status'], VideoStatus.COMPLETED)
        self.assertEqual(status['progress'], 100)
        self.assertTrue(status['is_terminal'])
        self.assertIsNone(status['error_code'])
        self.assertIsNone(status['error_message'])
        self.assertIsNone(status['estimated_remaining_minutes'])
        self.assertEqual(status['chunk_count'], 3)
        self.assertEqual(self.manager.get_stats()[VideoStatus.COMPLETED], 1)

    def test_completion_callback(self):
        completed = []
        self.manager.on_video_completed = completed.append
        self._trigger()
        self._run()
        self.assertEqual([v.id for v in completed], ["v1"])
        self.assertEqual(completed[0].metadata['chunk_count'], 3)

    def test_access_denied_fails_without_paying(self):
        self.free.outcome = AccessDenied("Video is private")
        self._trigger()
        self._run()

        video = self.db.get_video("v1")
        self.assertEqual(video.status, VideoStatus.FAILED)
        self.assertEqual(video.error_code, ErrorCode.ACCESS_DENIED)
        self.assertEqual(video.error_message, public_message(ErrorCode.ACCESS_DENIED))
        self.assertEqual(video.transcript_cost_usd, 0.0)
        self.assertEqual(self.paid.calls, 0)
        self.assertEqual(self.ctx.vector_store.count_chunks("v1"), 0)

    def test_retryable_error_exhausts_attempts(self):
        self.free.outcome = RateLimited("quota exceeded")
        self._trigger()
        self._run()

        video = self.db.get_video("v1")
        self.assertEqual(video.status, VideoStatus.FAILED)
        self.assertEqual(video.error_code, ErrorCode.RATE_LIMITED)
        self.assertEqual(video.attempt_count, 3)
        self.assertEqual(self.free.calls, 3)
        self.assertIn("quota exceeded", video.last_error)

    def test_upload_goes_through_uploading_to_paid(self):
        media = Path(self.tmpdir.name) / "lecture.mp4"
        media.write_bytes(b"\x00" * 1024)
        self._trigger("up1", reference=str(media), source=None)
        self._run()

        video = self.db.get_video("up1")
        self.assertEqual(video.status, VideoStatus.COMPLETED)
        self.assertEqual(video.source_type, "upload")
        self.assertIn(VideoStatus.UPLOADING, self.statuses)
        self.assertEqual(video.metadata['staged_path'], str(media))
        self.assertAlmostEqual(video.transcript_cost_usd, 0.02)
        self.assertEqual(self.free.calls, 0)
        self.assertTrue(media.exists())

    def test_missing_upload_fails(self):
        self._trigger("up2", reference=str(Path(self.tmpdir.name) / "missing.mp4"), source="upload")
        self._run()
        video = self.db.get_video("up2")
        self.assertEqual(video.status, VideoStatus.FAILED)
        self.assertEqual(video.error_code, ErrorCode.RESOURCE_NOT_FOUND)

    def test_concurrent_triggers_enqueue_once(self):
        threads = [threading.Thread(target=self._trigger) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(self.manager._queue.qsize(), 1)
        self.assertEqual(len(self.db.get_all_videos()), 1)
        self._run()
        self.assertEqual(self.free.calls, 1)

    def test_trigger_ignored_while_another_run_owns_video(self):
        self._trigger()
        other = JobQueueManager(self.ctx)
        other.trigger(TriggerRequest(video_id="v1", creator_id=None, source_type="youtube",
                                     reference=YT_URL))
        self.assertEqual(other._queue.qsize(), 0)

    def test_retrigger_reuses_stored_transcript(self):
        self._trigger()
        self._run()
        self._trigger()
        self._run()
        self.assertEqual(self.free.calls, 1)
        self.assertEqual(self.embedder.calls, 2)
        self.assertEqual(self.db.get_video("v1").status, VideoStatus.COMPLETED)

    def test_force_transcribe_replaces_chunks(self):
        self._trigger()
        self._run()
        self.assertEqual(self.ctx.vector_store.count_chunks("v1"), 3)

        self.free.outcome = _transcript(300)
        self._trigger(force=True)
        self._run()

        self.assertEqual(self.free.calls, 2)
        self.assertEqual([c.chunk_index for c in self.ctx.vector_store.get_chunks("v1")], [0])

    def test_cancel_before_processing(self):
        self._trigger()
        self.assertTrue(self.manager.cancel("v1"))
        self._run()
        video = self.db.get_video("v1")
        self.assertEqual(video.status, VideoStatus.FAILED)
        self.assertEqual(video.error_code, ErrorCode.CANCELLED)
        self.assertFalse(self.manager.cancel("v1"))

    def test_resume_interrupted_keeps_stage(self):
        video, _ = self.db.create_video_if_missing(
            Video(id="v9", source_type="youtube", reference=YT_URL))
        self.db.claim_video("v9", VideoStatus.PENDING, None, "dead-run")
        self.db.update_video("v9", status=VideoStatus.PROCESSING, transcript=_words(120))

        self.assertEqual(self.manager.resume_interrupted(), ["v9"])
        self._run()

        self.assertEqual(self.db.get_video("v9").status, VideoStatus.COMPLETED)
        self.assertEqual(self.free.calls, 0)
        self.assertEqual(self.ctx.vector_store.count_chunks("v9"), 1)

    def test_stuck_video_failed_after_max_recoveries(self):
        self.db.create_video_if_missing(Video(id="v7", source_type="youtube", reference=YT_URL))
        self.db.claim_video("v7", VideoStatus.PENDING, None, "old",
                            recovery_count=self.config.get('max_recovery_attempts'))
        with self.db._lock:
            self.db.conn.execute("UPDATE videos SET updated_at = ? WHERE id = ?",
                                 ("2000-01-01T00:00:00+00:00", "v7"))
            self.db.conn.commit()

        summary = self.manager.recover_stuck_videos()
        self.assertEqual(summary, {'recovered': [], 'failed': ['v7']})
        video = self.db.get_video("v7")
        self.assertEqual(video.status, VideoStatus.FAILED)
        self.assertEqual(video.error_code, ErrorCode.TIMEOUT)

    def test_worker_lifecycle(self):
        self.assertFalse(self.manager.is_running())
        self.manager.start_processing()
        self.assertTrue(self.manager.is_running())
        self.manager.stop_after_current()
        self.manager.stop_processing()
        self.assertFalse(self.manager.is_running())

    def test_stop_after_current_parks_queued_videos(self):
        self._trigger()
        self.manager.stop_after_current()
        self.manager._worker_loop()

        self.assertTrue(self.manager.wait_idle(timeout=1))
        self.assertEqual(self.db.get_video("v1").status, VideoStatus.PENDING)
        self.assertEqual(self.free.calls, 0)

        self._run()
        self.assertEqual(self.db.get_video("v1").status, VideoStatus.COMPLETED)

    def test_trigger_after_stop_waits_for_restart(self):
        self.manager.start_processing()
        self.manager.stop_processing()
        self.assertEqual(self.manager._workers, [])

        self._trigger()
        self.assertTrue(self.manager.wait_idle(timeout=1))
        self._run()
        self.assertEqual(self.db.get_video("v1").status, VideoStatus.COMPLETED)
        self.assertEqual(self.free.calls, 1)

    def test_heartbeat_keeps_long_run_owned(self):
        self.config.set('heartbeat_interval_sec', 0.05)
        self.free.gate = threading.Event()
        self._trigger()
        self.manager.start_processing()
        try:
            self.assertTrue(self.free.entered.wait(10))
            aged = "2000-01-01T00:00:00+00:00"
            with self.db._lock:
                self.db.conn.execute("UPDATE videos SET updated_at = ? WHERE id = ?", (aged, "v1"))
                self.db.conn.commit()

            deadline = time.monotonic() + 10
            while self.db.get_video("v1").updated_at == aged and time.monotonic() < deadline:
                time.sleep(0.02)
            self.assertNotEqual(self.db.get_video("v1").updated_at, aged)

            other = JobQueueManager(self.ctx)
            other.trigger(TriggerRequest(video_id="v1", creator_id=None, source_type="youtube",
                                         reference=YT_URL))
            self.assertEqual(other._queue.qsize(), 0)
            self.assertEqual(other.recover_stuck_videos()['recovered'], [])
        finally:
            self.free.gate.set()

        self.assertTrue(self.manager.wait_idle(timeout=30))
        self.assertEqual(self.free.calls, 1)
        self.assertEqual(self.db.get_video("v1").status, VideoStatus.COMPLETED)

    def test_status_view_while_queued(self):
        self._trigger()
        media = Path(self.tmpdir.name) / "talk.mp4"
        media.write_bytes(b"\x00" * 16)
        self._trigger("up3", reference=str(media), source="upload")

        status = self.manager.get_status("v1")
        self.assertEqual(status['progress'], 0)
        self.assertFalse(status['is_terminal'])
        self.assertEqual(status['stage']['name'], 'Pending')
        self.assertEqual(status['chunk_count'], 0)
        self.assertEqual(status['estimated_remaining_minutes'], 60 + 15 + 30)
        self.assertEqual(self.manager.get_status("up3")['estimated_remaining_minutes'], 30 + 60 + 15 + 30)
        self.assertIsNone(self.manager.get_status("nope"))
        self.assertEqual(self.manager.get_stats()[VideoStatus.PENDING], 2)
        self.assertEqual(self.manager.get_stats("someone-else")[VideoStatus.PENDING], 0)

    def test_video_diagnostics(self):
        self._trigger()
        self._run()
        info = video_diagnostics(self.db, "v1")
        self.assertEqual(info['chunk_count'], 3)
        self.assertEqual(info['status'], VideoStatus.COMPLETED)
        self.assertIsNone(video_diagnostics(self.db, "nope"))

    def test_diagnostics_never_expose_secrets(self):
        with mock.patch("videokb.core.diagnostics.run_subprocess_capture",
                        side_effect=FileNotFoundError):
            info = get_diagnostics(Path(self.tmpdir.name) / "cookies.txt",
                                   {'deepgram_api_key': 'sekrit', 'loom_api_key': None},
                                   self.ctx.vector_store, db=self.db)
        self.assertEqual(info['ytdlp_version'], "Not installed")
        self.assertEqual(info['credentials'], {'deepgram_api_key': True, 'loom_api_key': False})
        self.assertNotIn('sekrit', json.dumps(info))
        self.assertNotIn('videos', info['index'])
        self.assertEqual(set(info["videos_by_status"]), set(VideoStatus.ALL))

    def test_stuck_video_recovered(self):
        self.db.create_video_if_missing(Video(id="v8", source_type="youtube", reference=YT_URL))
        self.db.claim_video("v8", VideoStatus.PENDING, None, "old")
        with self.db._lock:
            self.db.conn.execute("UPDATE videos SET updated_at = ? WHERE id = ?",
                                 ("2000-01-01T00:00:00+00:00", "v8"))
            self.db.conn.commit()

        summary = self.manager.recover_stuck_videos()
        self.assertEqual(summary['recovered'], ['v8'])
        self._run()
        video = self.db.get_video("v8")
        self.assertEqual(video.status, VideoStatus.COMPLETED)
        self.assertEqual(video.recovery_count, 1)


if __name__ == "__main__":
    unittest.main()
