"""
Shared HTTP helpers: one place where requests exceptions and provider
status codes become JobErrors.
"""

import logging
import random
import time

import requests

from videokb.core.error_codes import (
    JobError, AccessDenied, AuthMissing, InvalidReference, NetworkError,
    PayloadTooLarge, RateLimited, RequestTimeout, ResourceNotFound,
)

logger = logging.getLogger(__name__)


def http_request(method: str, url: str, provider: str, timeout: float,
                 session: requests.Session | None = None,
                 **kwargs) -> requests.Response:
    """
    Perform a request, mapping transport failures to retryable errors.
    Status codes are left to the caller (see raise_for_provider_status).
    """
    requester = session or requests
    try:
        return requester.request(method, url, timeout=timeout, **kwargs)
    except requests.exceptions.Timeout:
        raise RequestTimeout(f"{provider} request timed out after {timeout}s")
    except requests.exceptions.ConnectionError:
        raise NetworkError(f"Network error connecting to {provider}")
    except requests.exceptions.RequestException as e:
        raise NetworkError(f"{provider} request failed: {type(e).__name__}")


def raise_for_provider_status(resp: requests.Response, provider: str,
                              not_found: type[JobError] = ResourceNotFound):
    """Translate a non-2xx provider response into the error taxonomy."""
    status = resp.status_code
    if 200 <= status < 300:
        return

    # Never echo provider bodies in full; they may contain request details
    body = (resp.text or "")[:200]

    if status == 400:
        raise InvalidReference(f"{provider} rejected the request (400): {body}")
    if status == 401:
        raise AuthMissing(f"{provider} credentials missing or invalid (401)")
    if status == 403:
        raise AccessDenied(f"{provider} denied access (403)")
    if status == 404:
        raise not_found(f"{provider} resource not found (404)")
    if status == 413:
        raise PayloadTooLarge(f"{provider} rejected payload as too large (413)")
    if status == 429:
        raise RateLimited(f"{provider} rate limited (429)")
    if status in (408, 504):
        raise RequestTimeout(f"{provider} returned {status}")
    if status >= 500:
        raise NetworkError(f"{provider} server error ({status})")
    raise JobError(f"{provider} returned {status}: {body}")


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Exponential backoff with +/- 10% jitter: base, 2*base, 4*base, ..."""
    delay = min(maximum, base * (2 ** attempt))
    return delay * (1 + random.uniform(-0.1, 0.1))


def sleep_backoff(attempt: int, base: float, maximum: float, reason: str = ""):
    delay = backoff_delay(attempt, base, maximum)
    if delay <= 0:
        return
    logger.warning("%s; retrying in %.1fs (attempt %d)", reason or "Retrying", delay, attempt + 1)
    time.sleep(delay)
