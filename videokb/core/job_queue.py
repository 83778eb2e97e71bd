"""
Job Queue Manager and workers.
Runs each video through pending → (uploading) → transcribing → processing →
embedding → completed on a small thread pool. The persisted status is the
state machine; every move is a compare-and-set on (status, job_token).
"""

import logging
import queue
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from videokb.core.constants import SourceType, VideoStatus, ErrorCode, STAGE_METADATA
from videokb.core.context import PipelineContext
from videokb.core.models import Video, TriggerRequest
from videokb.core.error_codes import JobError, Cancelled, EmptyTranscript, public_message
from videokb.core.http_utils import backoff_delay
from videokb.core.source_classify import classify_url, coerce_source_type, require_reference_id
from videokb.core.segmentation import segment_transcript, validate_chunks
from videokb.core.audio_source import stage_upload
from videokb.core.security_utils import safe_workspace_path
from videokb.core.cleanup import cleanup_job_artifacts

logger = logging.getLogger(__name__)

_LAST_ERROR_MAX = 2000


_STAGE_ORDER = (
    VideoStatus.PENDING, VideoStatus.UPLOADING, VideoStatus.TRANSCRIBING,
    VideoStatus.PROCESSING, VideoStatus.EMBEDDING,
)


def _remaining_minutes(video: Video) -> int | None:
    """Upper bound from the timeouts of the current and later stages."""
    if video.status not in _STAGE_ORDER:
        return None
    stages = _STAGE_ORDER[_STAGE_ORDER.index(video.status):]
    if video.source_type != SourceType.UPLOAD.value:
        stages = [s for s in stages if s != VideoStatus.UPLOADING]
    return sum(STAGE_METADATA[s]['timeout_minutes'] for s in stages)


def _elapsed_seconds(video: Video) -> int | None:
    if not video.created_at:
        return None
    start = datetime.fromisoformat(video.created_at)
    end = datetime.fromisoformat(video.completed_at) if video.completed_at else datetime.now(timezone.utc)
    return max(0, int((end - start).total_seconds()))


class _StaleRun(Exception):
    """Another run owns the video now; stop without touching it."""


class _Stopped(Exception):
    """The manager is shutting down; leave the video for resume."""


class JobQueueManager:
    """
    Manages the video queue and a pool of workers.
    Emits callbacks on every persisted transition.
    """

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx
        self.db = ctx.db
        self.config = ctx.config
        self._queue: queue.Queue = queue.Queue()
        self._workers: list[threading.Thread] = []
        self._stop_event = threading.Event()
        self._stop_after_current = threading.Event()
        self._running = False

        # Videos queued or running in this process
        self._active: set[str] = set()
        self._active_cond = threading.Condition()
        self._cancelled: set[str] = set()
        # Queued when the workers stopped; re-queued by start_processing
        self._parked: list[tuple[str, str]] = []

        # Callbacks
        self.on_video_updated: Optional[Callable[[Video], None]] = None
        self.on_video_completed: Optional[Callable[[Video], None]] = None
        self.on_queue_empty: Optional[Callable[[], None]] = None

    # ── Trigger / status ──────────────────────────────────────────────

    def trigger(self, request: TriggerRequest) -> Video:
        """
        Start (or restart) processing for a video. Idempotent: a video that
        is already queued, running, or in a fresh non-terminal state is
        returned unchanged.
        """
        source_type = coerce_source_type(request.source_type) or classify_url(request.reference)
        require_reference_id(source_type, request.reference)

        with self._active_cond:
            video, created = self.db.create_video_if_missing(Video(
                id=request.video_id,
                creator_id=request.creator_id,
                source_type=source_type.value,
                reference=request.reference,
            ))

            if video.id in self._active:
                logger.info("[%s] Already queued/running; trigger ignored", video.id)
                return video
            if (not created and video.job_token is not None
                    and video.status in VideoStatus.ACTIVE and not self._is_stale(video)):
                logger.info("[%s] In progress (%s); trigger ignored", video.id, video.status)
                return video

            extra = {}
            if request.force_transcribe:
                extra.update(transcript=None, transcript_segments=[], transcript_method=None,
                             transcript_cost_usd=0.0)
            token = uuid.uuid4().hex
            if not self.db.claim_video(video.id, video.status, video.job_token, token, **extra):
                logger.info("[%s] Lost claim race; trigger ignored", video.id)
                return self.db.get_video(video.id)

            self._enqueue(video.id, token)

        logger.info("[%s] Triggered (%s)", video.id, source_type.value)
        self._notify_video_updated(video.id)
        return self.db.get_video(video.id)

    def get_status(self, video_id: str) -> dict | None:
        """Status view for one video, with progress and a time estimate."""
        video = self.db.get_video(video_id)
        if video is None:
            return None
        stage = STAGE_METADATA[video.status]
        return {
            'video_id': video.id,
            'status': video.status,
            'progress': stage['progress'],
            'is_terminal': video.is_terminal,
            'stage': {
                'name': stage['name'],
                'description': stage['description'],
                'timeout_minutes': stage['timeout_minutes'],
            },
            'error_code': video.error_code,
            'error_message': video.error_message,
            'attempt_count': video.attempt_count,
            'chunk_count': self.db.count_chunks(video.id),
            'elapsed_seconds': _elapsed_seconds(video),
            'estimated_remaining_minutes': _remaining_minutes(video),
        }

    def get_stats(self, creator_id: str | None = None) -> dict[str, int]:
        """Video counts per status."""
        return self.db.count_by_status(creator_id)

    def cancel(self, video_id: str) -> bool:
        """
        Request cancellation. Takes effect at the next stage boundary; an
        in-flight acquisition is never interrupted.
        """
        with self._active_cond:
            if video_id not in self._active:
                return False
            self._cancelled.add(video_id)
        logger.info("[%s] Cancellation requested", video_id)
        return True

    def _enqueue(self, video_id: str, token: str):
        if self._stop_event.is_set() or self._stop_after_current.is_set():
            self._parked.append((video_id, token))
            return
        self._active.add(video_id)
        self._queue.put((video_id, token))

    def _is_stale(self, video: Video) -> bool:
        if not video.updated_at:
            return True
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.config.get('stale_after_sec'))
        return datetime.fromisoformat(video.updated_at) < cutoff

    # ── Recovery ──────────────────────────────────────────────────────

    def resume_interrupted(self) -> list[str]:
        """Re-enqueue non-terminal videos left over from a previous process."""
        resumed = []
        with self._active_cond:
            for video in self.db.get_active_videos():
                if video.id in self._active:
                    continue
                token = uuid.uuid4().hex
                if self.db.rotate_token(video.id, video.status, video.job_token, token):
                    self._enqueue(video.id, token)
                    resumed.append(video.id)
        if resumed:
            logger.info("Resuming %d interrupted video(s)", len(resumed))
        return resumed

    def recover_stuck_videos(self) -> dict:
        """
        Re-enqueue videos stuck in a non-terminal state for longer than
        stale_after_sec; after max_recovery_attempts they are failed.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.config.get('stale_after_sec'))
        max_recoveries = self.config.get('max_recovery_attempts')
        summary = {'recovered': [], 'failed': []}

        with self._active_cond:
            for video in self.db.get_stale_videos(cutoff.isoformat()):
                if video.id in self._active:
                    continue

                if video.recovery_count >= max_recoveries:
                    failed = self.db.transition(
                        video.id, video.job_token, video.status, VideoStatus.FAILED,
                        error_code=ErrorCode.TIMEOUT,
                        error_message=public_message(ErrorCode.TIMEOUT),
                        last_error=f"Stuck in {video.status} after {video.recovery_count} recoveries",
                    )
                    if failed:
                        summary['failed'].append(video.id)
                    continue

                token = uuid.uuid4().hex
                if self.db.rotate_token(video.id, video.status, video.job_token, token,
                                        recovery_count=video.recovery_count + 1):
                    self._enqueue(video.id, token)
                    summary['recovered'].append(video.id)

        for video_id in summary['failed']:
            self._notify_video_updated(video_id)
        logger.info("Stuck video recovery: %d recovered, %d failed",
                    len(summary['recovered']), len(summary['failed']))
        return summary

    # ── Worker pool ───────────────────────────────────────────────────

    def start_processing(self):
        """Start the worker threads and re-queue anything parked by a stop."""
        if self._running:
            return
        with self._active_cond:
            self._stop_event.clear()
            self._stop_after_current.clear()
            self._running = True
            parked, self._parked = dict(self._parked), []
            for video_id, token in parked.items():
                if video_id not in self._active:
                    self._enqueue(video_id, token)

        # Workers told to stop after their current video may still be finishing it
        self._workers = [t for t in self._workers if t.is_alive()]
        for i in range(len(self._workers), self.config.max_workers):
            t = threading.Thread(target=self._worker_loop, name=f"videokb-worker-{i}", daemon=True)
            t.start()
            self._workers.append(t)

    def stop_processing(self, timeout: float | None = 5.0):
        """
        Stop at the next stage boundary; unfinished videos stay resumable.
        Waits up to `timeout` seconds for the workers to exit.
        """
        self._stop_event.set()
        self._running = False
        self._join_workers(timeout)

    def stop_after_current(self):
        """Finish the videos being worked on, then stop taking new ones."""
        self._stop_after_current.set()
        self._running = False

    def is_running(self) -> bool:
        return self._running

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no video is queued or running. Returns False on timeout."""
        with self._active_cond:
            return self._active_cond.wait_for(lambda: not self._active, timeout=timeout)

    def _join_workers(self, timeout: float | None):
        deadline = None if timeout is None else time.monotonic() + timeout
        current = threading.current_thread()
        for t in self._workers:
            if t is current:
                continue
            t.join(None if deadline is None else max(0.0, deadline - time.monotonic()))
            if t.is_alive():
                logger.warning("Worker %s still busy after stop", t.name)
        self._workers = [t for t in self._workers if t.is_alive()]

    def _worker_loop(self):
        while not self._stop_event.is_set() and not self._stop_after_current.is_set():
            try:
                video_id, token = self._queue.get(timeout=0.2)
            except queue.Empty:
                continue
            try:
                self._process_video(video_id, token)
            except Exception as e:
                logger.error("Worker error on %s: %s", video_id, e, exc_info=True)
            finally:
                self._release(video_id)
                self._queue.task_done()
        self._park_queued()

    def _park_queued(self):
        """Take queued videos off the queue so wait_idle() sees them as idle."""
        with self._active_cond:
            parked = False
            while True:
                try:
                    video_id, token = self._queue.get_nowait()
                except queue.Empty:
                    break
                self._queue.task_done()
                self._parked.append((video_id, token))
                self._active.discard(video_id)
                self._cancelled.discard(video_id)
                logger.info("[%s] Parked until workers restart", video_id)
                parked = True
            idle = not self._active
            self._active_cond.notify_all()
        if parked and idle and self.on_queue_empty:
            self.on_queue_empty()

    def _release(self, video_id: str):
        with self._active_cond:
            self._active.discard(video_id)
            self._cancelled.discard(video_id)
            idle = not self._active
            self._active_cond.notify_all()
        if idle and self.on_queue_empty:
            self.on_queue_empty()

    # ── Notifications ─────────────────────────────────────────────────

    def _notify_video_updated(self, video_id: str) -> Video | None:
        video = self.db.get_video(video_id)
        if video and self.on_video_updated:
            try:
                self.on_video_updated(video)
            except Exception:
                logger.exception("on_video_updated callback failed for %s", video_id)
        return video

    def _notify_video_completed(self, video: Video):
        if self.on_video_completed:
            try:
                self.on_video_completed(video)
            except Exception:
                logger.exception("on_video_completed callback failed for %s", video.id)

    # ── Video processing pipeline ─────────────────────────────────────

    def _load(self, video_id: str, token: str) -> Video:
        video = self.db.get_video(video_id)
        if video is None or video.job_token != token or video.is_terminal:
            raise _StaleRun()
        return video

    def _move(self, video: Video, token: str, to_status: str, **fields) -> Video:
        if not self.db.transition(video.id, token, video.status, to_status, **fields):
            raise _StaleRun()
        logger.info("[%s] %s → %s", video.id, video.status, to_status)
        return self._notify_video_updated(video.id)

    def _check_boundary(self, video_id: str):
        if self._stop_event.is_set():
            raise _Stopped()
        with self._active_cond:
            if video_id in self._cancelled:
                raise Cancelled(f"Processing of {video_id} was cancelled")

    @contextmanager
    def _heartbeat(self, video_id: str, token: str):
        """Refresh updated_at while a run is alive so it is never taken for stuck."""
        interval = min(self.config.get('heartbeat_interval_sec'),
                       self.config.get('stale_after_sec') / 3.0)
        done = threading.Event()

        def beat():
            while not done.wait(interval):
                try:
                    if not self.db.heartbeat(video_id, token):
                        return
                except sqlite3.Error as e:
                    logger.warning("[%s] Heartbeat failed: %s", video_id, e)

        t = threading.Thread(target=beat, name=f"videokb-heartbeat-{video_id}", daemon=True)
        t.start()
        try:
            yield
        finally:
            done.set()
            t.join()

    def _process_video(self, video_id: str, token: str):
        with self._heartbeat(video_id, token):
            self._run_with_retries(video_id, token)

    def _run_with_retries(self, video_id: str, token: str):
        """Run the remaining stages, retrying transient failures in place."""
        workspace = safe_workspace_path(self.ctx.workspace_dir, video_id)
        max_attempts = self.config.get('max_attempts')

        while True:
            try:
                self._run_stages(video_id, token)
                cleanup_job_artifacts(workspace, self.config.keep_debug_artifacts)
                return
            except (_StaleRun, _Stopped):
                logger.info("[%s] Run %s stopped (stale or shutting down)", video_id, token[:8])
                return
            except JobError as e:
                video = self.db.get_video(video_id)
                if video is None or video.job_token != token or video.is_terminal:
                    return
                attempts = video.attempt_count + 1
                if e.retryable and attempts < max_attempts:
                    if not self.db.touch(video_id, token, video.status,
                                         attempt_count=attempts,
                                         last_error=e.message[:_LAST_ERROR_MAX]):
                        return
                    delay = backoff_delay(attempts - 1, self.config.get('backoff_base_sec'),
                                          self.config.get('backoff_max_sec'))
                    logger.warning("[%s] %s (attempt %d/%d), retrying in %.1fs",
                                   video_id, e.code, attempts, max_attempts, delay)
                    if self._stop_event.wait(delay):
                        return
                    continue
                self._fail(video, token, e.code, e.message, attempts)
            except Exception as e:
                logger.error("Unexpected error processing %s: %s", video_id, e, exc_info=True)
                video = self.db.get_video(video_id)
                if video is not None and video.job_token == token and not video.is_terminal:
                    self._fail(video, token, ErrorCode.UNEXPECTED,
                               f"{type(e).__name__}: {e}", video.attempt_count + 1)
            cleanup_job_artifacts(workspace, self.config.keep_debug_artifacts)
            return

    def _fail(self, video: Video, token: str, code: str, detail: str, attempts: int):
        logger.warning("[%s] Failed in %s: [%s] %s", video.id, video.status, code, detail[:300])
        if self.db.transition(video.id, token, video.status, VideoStatus.FAILED,
                              error_code=code,
                              error_message=public_message(code),
                              last_error=detail[:_LAST_ERROR_MAX],
                              attempt_count=attempts):
            self._notify_video_updated(video.id)

    def _run_stages(self, video_id: str, token: str):
        chunks = None
        while True:
            self._check_boundary(video_id)
            video = self._load(video_id, token)

            match video.status:
                case VideoStatus.PENDING:
                    if video.source_type == SourceType.UPLOAD.value:
                        self._move(video, token, VideoStatus.UPLOADING)
                    else:
                        self._move(video, token, VideoStatus.TRANSCRIBING)

                case VideoStatus.UPLOADING:
                    workspace = safe_workspace_path(self.ctx.workspace_dir, video.id)
                    staged = stage_upload(video, workspace, self.config.get('stt_max_bytes'),
                                          timeout=self.config.get('acquirer_timeout_sec'))
                    metadata = dict(video.metadata, staged_path=str(staged))
                    self._move(video, token, VideoStatus.TRANSCRIBING, metadata=metadata)

                case VideoStatus.TRANSCRIBING:
                    self._stage_transcribe(video, token)

                case VideoStatus.PROCESSING:
                    chunks = self._segment(video)
                    metadata = dict(video.metadata, chunk_count=len(chunks))
                    self._move(video, token, VideoStatus.EMBEDDING, metadata=metadata)

                case VideoStatus.EMBEDDING:
                    if chunks is None:
                        chunks = self._segment(video)
                    self._stage_embed(video, token, chunks)
                    return

                case _:
                    raise _StaleRun()

    def _stage_transcribe(self, video: Video, token: str):
        if video.transcript:
            logger.info("[%s] Reusing stored transcript (%s)", video.id, video.transcript_method)
            self._move(video, token, VideoStatus.PROCESSING)
            return

        result = self.ctx.router.route(video)
        metadata = dict(video.metadata)
        metadata.update(
            transcript_acquirer=result.extra.get('acquirer'),
            transcript_processing_ms=result.processing_time_ms,
        )
        if result.estimated_cost_usd is not None:
            metadata['transcript_estimated_cost_usd'] = result.estimated_cost_usd

        self._move(
            video, token, VideoStatus.PROCESSING,
            transcript=result.text,
            transcript_segments=[s.as_dict() for s in result.segments],
            transcript_method=result.method.value,
            transcript_cost_usd=result.cost_usd,
            duration_seconds=result.duration_seconds or video.duration_seconds,
            title=video.title or result.title,
            metadata=metadata,
        )

    def _segment(self, video: Video) -> list:
        chunks = segment_transcript(
            video.transcript or "",
            video.segments,
            video.duration_seconds,
            self.config.chunk_options,
            video_id=video.id,
        )
        if not chunks:
            raise EmptyTranscript(f"Transcript of {video.id} produced no chunks")
        valid, warnings = validate_chunks(chunks, min_words=self.config.chunk_options['min_words'])
        if not valid:
            logger.info("[%s] Chunk warnings: %s", video.id, "; ".join(warnings))
        return chunks

    def _stage_embed(self, video: Video, token: str, chunks: list):
        batch = self.ctx.embedder.embed_batch([c.text for c in chunks])
        for chunk, vector in zip(chunks, batch.vectors):
            chunk.embedding = vector

        self._check_boundary(video.id)
        if not self.ctx.vector_store.replace_chunks(video.id, chunks,
                                                    job_token=token, status=VideoStatus.EMBEDDING):
            raise _StaleRun()

        metadata = dict(video.metadata,
                        chunk_count=len(chunks),
                        embedding_tokens=batch.total_tokens,
                        embedding_cost_usd=batch.cost_usd)
        completed = self._move(video, token, VideoStatus.COMPLETED,
                               error_code=None, error_message=None, metadata=metadata)
        logger.info("[%s] Completed: %d chunks, transcript $%.4f, embeddings $%.6f",
                    video.id, len(chunks), video.transcript_cost_usd, batch.cost_usd)
        self._notify_video_completed(completed)
