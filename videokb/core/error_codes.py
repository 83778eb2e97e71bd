"""
Standardised error handling for VideoKB.

Every known failure is a JobError carrying an ErrorCode. The code decides
how the router and the job queue treat it: fallback to the next acquirer,
retry with backoff, or fail the job.
"""

from videokb.core.constants import (
    ErrorCode, RETRYABLE_ERRORS, FALLBACK_ERRORS,
    PUBLIC_ERROR_MESSAGES, DEFAULT_PUBLIC_ERROR,
)


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    code = ErrorCode.UNEXPECTED

    def __init__(self, message: str, code: str | None = None,
                 retryable: bool | None = None):
        if code is not None:
            self.code = code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else (self.code in RETRYABLE_ERRORS)
        super().__init__(f"[{self.code}] {message}")

    @property
    def fallback_eligible(self) -> bool:
        return is_fallback_eligible(self.code)

    @property
    def public_message(self) -> str:
        return public_message(self.code)


# ── Fatal ─────────────────────────────────────────────────────────────

class InvalidReference(JobError):
    code = ErrorCode.INVALID_REFERENCE


class ResourceNotFound(JobError):
    code = ErrorCode.RESOURCE_NOT_FOUND


class AccessDenied(JobError):
    code = ErrorCode.ACCESS_DENIED


class AuthMissing(JobError):
    code = ErrorCode.AUTH_MISSING


class PayloadTooLarge(JobError):
    code = ErrorCode.PAYLOAD_TOO_LARGE


class UnrecognizedSourceError(JobError):
    code = ErrorCode.UNRECOGNIZED_SOURCE


class EmbeddingDimensionMismatch(JobError):
    code = ErrorCode.EMBEDDING_DIMENSION_MISMATCH


class AudioExtractionFailed(JobError):
    code = ErrorCode.AUDIO_EXTRACTION_FAILED


class EmptyTranscript(JobError):
    code = ErrorCode.EMPTY_TRANSCRIPT


class Cancelled(JobError):
    code = ErrorCode.CANCELLED


class ToolMissing(JobError):
    """A required external binary (yt-dlp, ffmpeg) is not on PATH."""
    code = ErrorCode.TOOL_MISSING


# ── Retryable ─────────────────────────────────────────────────────────

class RateLimited(JobError):
    code = ErrorCode.RATE_LIMITED


class NetworkError(JobError):
    code = ErrorCode.NETWORK_ERROR


class RequestTimeout(NetworkError):
    code = ErrorCode.TIMEOUT


class AssetNotReady(JobError):
    code = ErrorCode.ASSET_NOT_READY


class DownloadFailed(JobError):
    code = ErrorCode.DOWNLOAD_FAILED


class TranscriptionFailed(JobError):
    code = ErrorCode.TRANSCRIPTION_FAILED


class EmbeddingFailed(JobError):
    code = ErrorCode.EMBEDDING_FAILED


# ── Fallback-eligible ─────────────────────────────────────────────────

class CaptionsUnparseable(JobError):
    code = ErrorCode.CAPTIONS_UNPARSEABLE


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS


def is_fallback_eligible(code: str) -> bool:
    return code in FALLBACK_ERRORS


def public_message(code: str | None) -> str:
    return PUBLIC_ERROR_MESSAGES.get(code, DEFAULT_PUBLIC_ERROR)
