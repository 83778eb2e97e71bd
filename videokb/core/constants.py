"""
Shared constants for VideoKB.
Single source of truth, imported by every other module.
"""

import os
import pathlib
from enum import Enum

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "VideoKB"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_DATA_DIR = pathlib.Path(os.environ.get("VIDEOKB_HOME", str(HOME / ".videokb")))
APP_CACHE_DIR = APP_DATA_DIR / "cache"
JOBS_CACHE_DIR = APP_CACHE_DIR / "jobs"
LOG_DIR = APP_DATA_DIR / "logs"
DB_PATH = APP_DATA_DIR / "videokb.db"
CONFIG_PATH = APP_DATA_DIR / "config.json"

# Cookies (yt-dlp retry for restricted YouTube captions)
DEFAULT_COOKIES_PATH = APP_DATA_DIR / "youtube_cookies.txt"

# ── Credentials (env var name, keychain service) ──────────────────────
KEYCHAIN_ACCOUNT = "default"
CREDENTIAL_SOURCES = {
    'loom_api_key': ("LOOM_API_KEY", "VideoKB:Loom"),
    'mux_token_id': ("MUX_TOKEN_ID", "VideoKB:MuxTokenId"),
    'mux_token_secret': ("MUX_TOKEN_SECRET", "VideoKB:MuxTokenSecret"),
    'deepgram_api_key': ("DEEPGRAM_API_KEY", "VideoKB:Deepgram"),
    'openai_api_key': ("OPENAI_API_KEY", "VideoKB:OpenAI"),
}


# ── Source types ──────────────────────────────────────────────────────
class SourceType(str, Enum):
    YOUTUBE = "youtube"      # captioned platform A
    LOOM = "loom"            # captioned platform B (screen recordings)
    MUX = "mux"              # hosted video with auto-captions
    UPLOAD = "upload"        # uploaded file, binary at a path / storage URL


# ── Transcript methods ────────────────────────────────────────────────
class TranscriptMethod(str, Enum):
    CAPTION_API = "caption-api"
    PLATFORM_API = "platform-api"
    AUTO_CAPTION = "auto-caption"
    SPEECH_TO_TEXT = "speech-to-text"


# ── Video / job status values ─────────────────────────────────────────
class VideoStatus:
    PENDING = "pending"
    UPLOADING = "uploading"
    TRANSCRIBING = "transcribing"
    PROCESSING = "processing"
    EMBEDDING = "embedding"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (PENDING, UPLOADING, TRANSCRIBING, PROCESSING, EMBEDDING, COMPLETED, FAILED)
    TERMINAL = (COMPLETED, FAILED)
    ACTIVE = (PENDING, UPLOADING, TRANSCRIBING, PROCESSING, EMBEDDING)


# Allowed forward transitions; FAILED is reachable from any active state.
STATUS_TRANSITIONS = {
    VideoStatus.PENDING: {VideoStatus.UPLOADING, VideoStatus.TRANSCRIBING},
    VideoStatus.UPLOADING: {VideoStatus.TRANSCRIBING},
    VideoStatus.TRANSCRIBING: {VideoStatus.PROCESSING},
    VideoStatus.PROCESSING: {VideoStatus.EMBEDDING},
    VideoStatus.EMBEDDING: {VideoStatus.COMPLETED},
    VideoStatus.COMPLETED: set(),
    VideoStatus.FAILED: set(),
}


# Display info per status; timeout_minutes bounds the remaining-time estimate
STAGE_METADATA = {
    VideoStatus.PENDING: {'name': 'Pending', 'description': 'Video is queued for processing',
                          'progress': 0, 'timeout_minutes': 0},
    VideoStatus.UPLOADING: {'name': 'Uploading', 'description': 'Staging the uploaded media',
                            'progress': 20, 'timeout_minutes': 30},
    VideoStatus.TRANSCRIBING: {'name': 'Transcribing', 'description': 'Acquiring the transcript',
                               'progress': 40, 'timeout_minutes': 60},
    VideoStatus.PROCESSING: {'name': 'Processing', 'description': 'Chunking transcript into segments',
                             'progress': 60, 'timeout_minutes': 15},
    VideoStatus.EMBEDDING: {'name': 'Embedding', 'description': 'Generating vector embeddings',
                            'progress': 80, 'timeout_minutes': 30},
    VideoStatus.COMPLETED: {'name': 'Completed', 'description': 'Video processing completed successfully',
                            'progress': 100, 'timeout_minutes': 0},
    VideoStatus.FAILED: {'name': 'Failed', 'description': 'Processing failed with errors',
                         'progress': 0, 'timeout_minutes': 0},
}


# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Fatal
    INVALID_REFERENCE = "ERR_INVALID_REFERENCE"
    RESOURCE_NOT_FOUND = "ERR_RESOURCE_NOT_FOUND"
    ACCESS_DENIED = "ERR_ACCESS_DENIED"
    AUTH_MISSING = "ERR_AUTH_MISSING"
    PAYLOAD_TOO_LARGE = "ERR_PAYLOAD_TOO_LARGE"
    UNRECOGNIZED_SOURCE = "ERR_UNRECOGNIZED_SOURCE"
    EMBEDDING_DIMENSION_MISMATCH = "ERR_EMBEDDING_DIMENSION_MISMATCH"
    AUDIO_EXTRACTION_FAILED = "ERR_AUDIO_EXTRACTION_FAILED"
    EMPTY_TRANSCRIPT = "ERR_EMPTY_TRANSCRIPT"
    CANCELLED = "ERR_CANCELLED"
    TOOL_MISSING = "ERR_TOOL_MISSING"
    UNEXPECTED = "ERR_UNEXPECTED"

    # Retryable
    RATE_LIMITED = "ERR_RATE_LIMITED"
    NETWORK_ERROR = "ERR_NETWORK"
    TIMEOUT = "ERR_TIMEOUT"
    ASSET_NOT_READY = "ERR_ASSET_NOT_READY"
    DOWNLOAD_FAILED = "ERR_DOWNLOAD_FAILED"
    TRANSCRIPTION_FAILED = "ERR_TRANSCRIPTION_FAILED"
    EMBEDDING_FAILED = "ERR_EMBEDDING_FAILED"

    # Fallback-eligible (not a failure of the job)
    CAPTIONS_UNPARSEABLE = "ERR_CAPTIONS_UNPARSEABLE"


RETRYABLE_ERRORS = {
    ErrorCode.RATE_LIMITED,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.TIMEOUT,
    ErrorCode.ASSET_NOT_READY,
    ErrorCode.DOWNLOAD_FAILED,
    ErrorCode.TRANSCRIPTION_FAILED,
    ErrorCode.EMBEDDING_FAILED,
}

FALLBACK_ERRORS = {
    ErrorCode.CAPTIONS_UNPARSEABLE,
}

# Generic, source-agnostic messages surfaced to collaborators.
PUBLIC_ERROR_MESSAGES = {
    ErrorCode.INVALID_REFERENCE: "The video link or file reference is not valid.",
    ErrorCode.RESOURCE_NOT_FOUND: "The video could not be found.",
    ErrorCode.ACCESS_DENIED: "The video is private or access was denied.",
    ErrorCode.AUTH_MISSING: "Video processing is not configured. Please contact support.",
    ErrorCode.PAYLOAD_TOO_LARGE: "The video is too large to transcribe.",
    ErrorCode.UNRECOGNIZED_SOURCE: "The video source is not supported.",
    ErrorCode.EMBEDDING_DIMENSION_MISMATCH: "Video indexing is misconfigured. Please contact support.",
    ErrorCode.AUDIO_EXTRACTION_FAILED: "The audio track could not be read from the video.",
    ErrorCode.EMPTY_TRANSCRIPT: "No speech could be found in the video.",
    ErrorCode.CANCELLED: "Video processing was cancelled.",
    ErrorCode.TOOL_MISSING: "Video processing is not configured. Please contact support.",
    ErrorCode.RATE_LIMITED: "Video processing is busy. Please try again later.",
    ErrorCode.NETWORK_ERROR: "A network error interrupted video processing.",
    ErrorCode.TIMEOUT: "Video processing timed out.",
    ErrorCode.ASSET_NOT_READY: "The video is still being prepared. Please try again later.",
    ErrorCode.DOWNLOAD_FAILED: "The video could not be downloaded.",
    ErrorCode.TRANSCRIPTION_FAILED: "The video could not be transcribed.",
    ErrorCode.EMBEDDING_FAILED: "The video could not be indexed for search.",
}
DEFAULT_PUBLIC_ERROR = "Video processing failed. Please try again or contact support."

# ── Retry / scheduling defaults ───────────────────────────────────────
MAX_JOB_ATTEMPTS = 3
BACKOFF_BASE_SEC = 2.0
BACKOFF_MAX_SEC = 60.0
ROUTER_RETRIES = 1
STALE_AFTER_SEC = 3600           # non-terminal rows untouched this long are stuck
HEARTBEAT_INTERVAL_SEC = 60.0      # live runs refresh updated_at this often
MAX_RECOVERY_ATTEMPTS = 3
DEFAULT_MAX_WORKERS = 4

# ── Timeouts (seconds) ────────────────────────────────────────────────
ACQUIRER_TIMEOUT_SEC = 30
EMBEDDING_TIMEOUT_SEC = 60
SUBPROCESS_TIMEOUT_SEC = 60

# ── Segmentation defaults ─────────────────────────────────────────────
CHUNK_MIN_WORDS = 500
CHUNK_MAX_WORDS = 1000
CHUNK_OVERLAP_WORDS = 100

# ── Audio pipeline (paid fallback) ────────────────────────────────────
NORM_CHANNELS = 1
NORM_SAMPLE_RATE = 16000
NORM_BITRATE = "96k"
NORM_FORMAT = "mp3"

PREFERRED_ABR_KBPS = 96
MIN_ABR_KBPS = 64
MAX_ABR_KBPS = 128

# ── Cookies ───────────────────────────────────────────────────────────
class CookiesMode:
    OFF = "OFF"
    USE_FILE = "USE_FILE"

# ── YouTube ───────────────────────────────────────────────────────────
YOUTUBE_URL_PATTERNS = [
    r'(?:https?://)?(?:www\.)?youtube\.com/watch\?(?:.*&)?v=([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?youtu\.be/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/embed/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/v/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/shorts/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?m\.youtube\.com/watch\?(?:.*&)?v=([a-zA-Z0-9_-]{11})',
]
CAPTION_LANGUAGES = "en.*,en"

# ── Loom ──────────────────────────────────────────────────────────────
LOOM_API_BASE = "https://api.loom.com/v1"
LOOM_URL_PATTERNS = [
    r'(?:https?://)?(?:www\.)?loom\.com/share/([a-f0-9]+)',
    r'(?:https?://)?(?:www\.)?loom\.com/embed/([a-f0-9]+)',
]

# ── Mux ───────────────────────────────────────────────────────────────
MUX_API_BASE = "https://api.mux.com/video/v1"
MUX_STREAM_BASE = "https://stream.mux.com"
MUX_URL_PATTERN = r'stream\.mux\.com/([A-Za-z0-9_-]+)'

# ── Uploads ───────────────────────────────────────────────────────────
MEDIA_EXTENSIONS = {
    '.mp4', '.mov', '.m4v', '.mkv', '.webm', '.avi',
    '.mp3', '.m4a', '.wav', '.aac', '.ogg', '.flac',
}

# ── Deepgram (paid speech-to-text) ────────────────────────────────────
DEEPGRAM_API_BASE = "https://api.deepgram.com/v1"
DEEPGRAM_MODEL = "nova-3"
DEEPGRAM_LANGUAGE = "en"
STT_COST_PER_MINUTE = 0.0043
STT_MAX_BYTES = 2 * 1024 * 1024 * 1024   # Deepgram pre-recorded limit

# ── Embeddings ────────────────────────────────────────────────────────
OPENAI_API_BASE = "https://api.openai.com/v1"
EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIMENSIONS = 1536
EMBEDDING_BATCH_SIZE = 20
EMBEDDING_COST_PER_1K_TOKENS = 0.00002
CHARS_PER_TOKEN = 4

# ── Search ────────────────────────────────────────────────────────────
SEARCH_TOP_K = 5
SEARCH_THRESHOLD = 0.7

# Characters forbidden in workspace names
UNSAFE_FILENAME_CHARS = r'[<>:"/\\|?*\x00-\x1f]'
MAX_FOLDER_NAME_LEN = 200
