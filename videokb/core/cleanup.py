"""
Cleanup: delete per-video media artifacts once a video reaches a terminal state.
"""

import shutil
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# Large media: always removed
_MEDIA_DIRS = ('audio', 'normalized')
# Small debug artifacts: kept when keep_debug is set
_DEBUG_DIRS = ('captions', 'meta')
_DEBUG_FILES = ('deepgram_response.json',)


def cleanup_job_artifacts(video_workspace: Path, keep_debug: bool = False):
    """
    Delete a video's workspace artifacts after completion (success or failure).

    Always deletes downloaded/normalized audio and staged uploads.
    If keep_debug is True: preserves captions/, meta/ and the raw Deepgram response.
    """
    if not video_workspace.exists():
        return

    targets = [video_workspace / d for d in _MEDIA_DIRS]
    targets.extend(video_workspace.glob("staged.*"))
    if not keep_debug:
        targets.extend(video_workspace / d for d in _DEBUG_DIRS)
        targets.extend(video_workspace / f for f in _DEBUG_FILES)

    for path in targets:
        if not path.exists():
            continue
        try:
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
            logger.debug("Deleted: %s", path)
        except OSError as e:
            logger.warning("Failed to delete %s: %s", path, e)

    # Remove the workspace itself once nothing is left in it
    try:
        if not any(video_workspace.iterdir()):
            video_workspace.rmdir()
            logger.debug("Removed empty workspace: %s", video_workspace)
    except OSError as e:
        logger.debug("Workspace %s not removed: %s", video_workspace, e)
