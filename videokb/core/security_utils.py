"""
Security utilities for VideoKB.
- Workspace path sanitization
- Safe subprocess execution (argument arrays only)
- Credential lookup: environment first, macOS Keychain second
"""

import hashlib
import os
import re
import subprocess
import pathlib
import logging

from videokb.core.constants import (
    UNSAFE_FILENAME_CHARS,
    MAX_FOLDER_NAME_LEN,
    KEYCHAIN_ACCOUNT,
    CREDENTIAL_SOURCES,
)

logger = logging.getLogger(__name__)


# ── Filename / path safety ────────────────────────────────────────────

def sanitize_name(name: str) -> str:
    """Sanitize an identifier for use as a folder name."""
    if not name:
        return ""
    # Replace unsafe characters with underscore
    safe = re.sub(UNSAFE_FILENAME_CHARS, '_', name)
    # Remove path traversal sequences
    safe = safe.replace('..', '')
    # Collapse multiple underscores/spaces
    safe = re.sub(r'[_\s]+', '_', safe).strip('_')
    if len(safe) > MAX_FOLDER_NAME_LEN:
        safe = safe[:MAX_FOLDER_NAME_LEN]
    # Remove leading/trailing dots (hidden files)
    safe = safe.strip('.')
    return safe


def safe_workspace_path(root: pathlib.Path, video_id: str) -> pathlib.Path:
    """
    Build the per-video workspace folder.  Enforces that realpath(result)
    stays under realpath(root); falls back to a hashed name otherwise.
    """
    sanitized = sanitize_name(video_id) or "video"
    candidate = root / sanitized
    try:
        real_root = root.resolve(strict=False)
        real_candidate = candidate.resolve(strict=False)
        if real_root not in real_candidate.parents:
            raise ValueError("Path traversal detected")
    except Exception:
        digest = hashlib.sha256((video_id or "").encode("utf-8")).hexdigest()[:16]
        candidate = root / f"video_{digest}"
    return candidate


# ── Subprocess safety ─────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    # Force shell=False: drop any caller-supplied value, then set it once
    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        **kwargs,
    )


# ── Credentials ───────────────────────────────────────────────────────

def keychain_get_secret(service: str, account: str = KEYCHAIN_ACCOUNT) -> str | None:
    """Retrieve a secret from macOS Keychain. Returns None elsewhere."""
    try:
        result = run_subprocess_capture([
            "security", "find-generic-password",
            "-s", service,
            "-a", account,
            "-w",  # print password only
        ], timeout=10)
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip()
    except (subprocess.TimeoutExpired, FileNotFoundError):
        pass
    except Exception as e:
        logger.warning("Keychain read failed: %s", type(e).__name__)
    return None


def load_credentials(use_keychain: bool = True) -> dict[str, str | None]:
    """Resolve every known credential once, for the pipeline context."""
    creds = {}
    for name, (env_var, service) in CREDENTIAL_SOURCES.items():
        value = os.environ.get(env_var, "").strip() or None
        if value is None and use_keychain:
            value = keychain_get_secret(service)
        creds[name] = value
    present = sorted(k for k, v in creds.items() if v)
    logger.info("Credentials available: %s", ', '.join(present) or 'none')
    return creds
