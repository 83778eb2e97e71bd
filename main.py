#!/usr/bin/env python3
"""
VideoKB: main entry point.
Turns videos into searchable, timestamped transcript chunks.

    python3 main.py trigger <video_id> <url-or-path> [--source youtube|loom|mux|upload]
    python3 main.py run                 # process queued/interrupted videos until idle
    python3 main.py status [<video_id>] [--creator ID]
    python3 main.py search "<query>" [--video ID ...]
    python3 main.py recover             # re-enqueue stuck videos
    python3 main.py diagnostics
"""

import sys
import os
import json
import argparse
import logging
import shutil
import traceback
from pathlib import Path
from datetime import datetime

# ── Ensure Homebrew paths are in PATH ────────────────────────────────
# yt-dlp, ffmpeg and ffprobe usually live here on macOS; launchd and cron
# jobs do not source the user's shell profile.
HOMEBREW_PATHS = [
    "/opt/homebrew/bin",          # Apple Silicon default
    "/usr/local/bin",             # Intel Mac default
]

current_path = os.environ.get("PATH", "")
for p in HOMEBREW_PATHS:
    if os.path.isdir(p) and p not in current_path.split(os.pathsep):
        current_path = p + os.pathsep + current_path
os.environ["PATH"] = current_path

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from videokb.core.constants import APP_NAME, APP_VERSION, LOG_DIR  # noqa: E402

logger = logging.getLogger("videokb")


def setup_logging(verbose: bool = False):
    """Log to <app data>/logs/videokb.log and to stderr."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_DIR / "videokb.log", encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )


def check_prerequisites():
    """Warn about missing external tools; only the paid fallback needs them all."""
    for tool in ("yt-dlp", "ffmpeg", "ffprobe"):
        found = shutil.which(tool)
        if found:
            logger.info("%s found at: %s", tool, found)
        else:
            logger.warning("%s not found on PATH; YouTube captions or paid transcription will fail", tool)


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def cmd_trigger(ctx, args) -> int:
    from videokb.core.job_queue import JobQueueManager
    from videokb.core.models import TriggerRequest

    manager = JobQueueManager(ctx)
    video = manager.trigger(TriggerRequest(
        video_id=args.video_id,
        creator_id=args.creator,
        source_type=args.source,
        reference=args.reference,
        force_transcribe=args.force_transcribe,
    ))
    if args.wait:
        manager.start_processing()
        manager.wait_idle()
        manager.stop_processing()
    _print_json(manager.get_status(video.id))
    return 0


def cmd_run(ctx, args) -> int:
    from videokb.core.job_queue import JobQueueManager

    manager = JobQueueManager(ctx)
    manager.on_video_completed = lambda v: logger.info("Completed %s (%s)", v.id, v.transcript_method)
    resumed = manager.resume_interrupted()
    logger.info("Processing %d video(s)", len(resumed))
    manager.start_processing()
    try:
        manager.wait_idle()
    except KeyboardInterrupt:
        logger.info("Interrupted; unfinished videos will resume on next run")
    finally:
        manager.stop_processing()
    return 0


def cmd_status(ctx, args) -> int:
    from videokb.core.job_queue import JobQueueManager

    manager = JobQueueManager(ctx)
    if args.video_id is None:
        _print_json(manager.get_stats(args.creator))
        return 0
    status = manager.get_status(args.video_id)
    if status is None:
        print(f"Unknown video: {args.video_id}", file=sys.stderr)
        return 1
    _print_json(status)
    return 0


def cmd_search(ctx, args) -> int:
    query_vector = ctx.embedder.embed(args.query)
    hits = ctx.vector_store.search(
        query_vector,
        candidate_video_ids=args.video or None,
        top_k=args.top_k or ctx.config.get('search_top_k'),
        threshold=args.threshold if args.threshold is not None else ctx.config.get('search_threshold'),
    )
    _print_json([{
        'video_id': h.chunk.video_id,
        'chunk_index': h.chunk.chunk_index,
        'similarity': round(h.similarity, 4),
        'start': h.chunk.start_time_seconds,
        'end': h.chunk.end_time_seconds,
        'text': h.chunk.text[:300],
    } for h in hits])
    return 0


def cmd_recover(ctx, args) -> int:
    from videokb.core.job_queue import JobQueueManager

    manager = JobQueueManager(ctx)
    summary = manager.recover_stuck_videos()
    if summary['recovered'] and not args.no_run:
        manager.start_processing()
        manager.wait_idle()
        manager.stop_processing()
    _print_json(summary)
    return 0


def cmd_diagnostics(ctx, args) -> int:
    from videokb.core.diagnostics import get_diagnostics, video_diagnostics

    if args.video_id:
        info = video_diagnostics(ctx.db, args.video_id)
        if info is None:
            print(f"Unknown video: {args.video_id}", file=sys.stderr)
            return 1
        _print_json(info)
        return 0
    _print_json(get_diagnostics(Path(ctx.config.get('cookies_path')),
                                ctx.credentials, ctx.vector_store,
                                args.verify_keys, db=ctx.db))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="videokb", description=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument("--config", type=Path, help="Path to config.json")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("trigger", help="Queue a video for processing")
    p.add_argument("video_id")
    p.add_argument("reference", help="Video URL, Mux asset id, or uploaded file path/URL")
    p.add_argument("--source", choices=["youtube", "loom", "mux", "upload"])
    p.add_argument("--creator")
    p.add_argument("--force-transcribe", action="store_true")
    p.add_argument("--wait", action="store_true", help="Process now and wait for the result")
    p.set_defaults(func=cmd_trigger)

    p = sub.add_parser("run", help="Process queued and interrupted videos until idle")
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("status", help="Show a video's processing status, or counts per status")
    p.add_argument("video_id", nargs="?")
    p.add_argument("--creator", help="Only count this creator's videos")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("search", help="Semantic search over indexed chunks")
    p.add_argument("query")
    p.add_argument("--video", action="append", help="Restrict to this video id (repeatable)")
    p.add_argument("--top-k", type=int)
    p.add_argument("--threshold", type=float)
    p.set_defaults(func=cmd_search)

    p = sub.add_parser("recover", help="Re-enqueue videos stuck in a non-terminal state")
    p.add_argument("--no-run", action="store_true", help="Only re-claim, do not process")
    p.set_defaults(func=cmd_recover)

    p = sub.add_parser("diagnostics", help="Tool versions, credentials and index health")
    p.add_argument("video_id", nargs="?")
    p.add_argument("--verify-keys", action="store_true", help="Check the Deepgram key against the API")
    p.set_defaults(func=cmd_diagnostics)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("=" * 60)

    from videokb.core.config import AppConfig
    from videokb.core.context import build_context
    from videokb.core.error_codes import JobError

    try:
        check_prerequisites()
        ctx = build_context(AppConfig(args.config))
        return args.func(ctx, args)
    except JobError as e:
        logger.error("%s", e)
        print(e.public_message, file=sys.stderr)
        return 2
    except Exception as e:
        logger.critical("Fatal error: %s: %s\n%s", type(e).__name__, e, traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())
