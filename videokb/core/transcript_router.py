"""
Transcript router: cheapest-first acquisition with a single paid fallback.

youtube  → [YouTube captions, speech-to-text]
loom     → [Loom API, speech-to-text]
mux      → [Mux auto-captions, speech-to-text]
upload   → [speech-to-text]

Acquirers run one at a time in that order. What happens after each outcome
is decided by decide(), a pure function of the outcome.
"""

import logging
import time
from enum import Enum

from videokb.core.constants import SourceType, TranscriptMethod, STT_COST_PER_MINUTE
from videokb.core.error_codes import JobError
from videokb.core.http_utils import sleep_backoff
from videokb.core.models import Video, TranscriptResult, NoTranscriptAvailable
from videokb.core.source_classify import classify_source

logger = logging.getLogger(__name__)


class RouteAction(str, Enum):
    ACCEPT = "accept"    # keep this transcript, stop
    NEXT = "next"        # nothing here, try the next acquirer
    RETRY = "retry"      # transient, same acquirer again
    ABORT = "abort"      # fatal, propagate without trying anything else


def decide(outcome) -> RouteAction:
    """Map an acquirer outcome (result, sentinel or exception) to an action."""
    if isinstance(outcome, TranscriptResult):
        return RouteAction.ACCEPT
    if isinstance(outcome, NoTranscriptAvailable):
        return RouteAction.NEXT
    if isinstance(outcome, JobError):
        if outcome.fallback_eligible:
            return RouteAction.NEXT
        if outcome.retryable:
            return RouteAction.RETRY
    return RouteAction.ABORT


class TranscriptRouter:
    def __init__(self, free_acquirers: dict, paid_acquirer,
                 router_retries: int = 1,
                 backoff_base_sec: float = 2.0,
                 backoff_max_sec: float = 60.0,
                 cost_per_minute: float = STT_COST_PER_MINUTE):
        """
        free_acquirers: SourceType -> acquirer with .name and .acquire(video).
        paid_acquirer: acquirer used last for every source type.
        """
        self.free_acquirers = dict(free_acquirers)
        self.paid_acquirer = paid_acquirer
        self.router_retries = router_retries
        self.backoff_base_sec = backoff_base_sec
        self.backoff_max_sec = backoff_max_sec
        self.cost_per_minute = cost_per_minute

    def candidates(self, source_type: SourceType) -> list:
        match source_type:
            case SourceType.YOUTUBE | SourceType.LOOM | SourceType.MUX:
                free = self.free_acquirers.get(source_type)
                return [a for a in (free, self.paid_acquirer) if a is not None]
            case SourceType.UPLOAD:
                return [self.paid_acquirer] if self.paid_acquirer is not None else []

    def _attempt(self, acquirer, video: Video):
        """Run an acquirer once; known errors come back as the outcome."""
        try:
            return acquirer.acquire(video)
        except JobError as e:
            return e

    def route(self, video: Video) -> TranscriptResult:
        source_type = classify_source(video)
        t0 = time.monotonic()
        tried = []
        last_reason = None

        for acquirer in self.candidates(source_type):
            retries = 0
            while True:
                outcome = self._attempt(acquirer, video)
                action = decide(outcome)
                tried.append({'acquirer': acquirer.name, 'action': action.value})

                if action == RouteAction.ACCEPT:
                    outcome.processing_time_ms = int((time.monotonic() - t0) * 1000)
                    outcome.extra.setdefault('acquirer', acquirer.name)
                    outcome.extra['route'] = tried
                    logger.info("[%s] Transcript via %s (%s) cost=$%.4f",
                                video.id, acquirer.name, outcome.method.value, outcome.cost_usd)
                    return outcome

                if action == RouteAction.NEXT:
                    last_reason = outcome
                    logger.info("[%s] %s: no transcript (%r), trying next", video.id, acquirer.name, outcome)
                    break

                if action == RouteAction.RETRY and retries < self.router_retries:
                    sleep_backoff(retries, self.backoff_base_sec, self.backoff_max_sec,
                                  f"[{video.id}] {acquirer.name}: {outcome.code}")
                    retries += 1
                    continue

                # Fatal, or retries exhausted: job-level policy takes over
                logger.warning("[%s] %s aborted routing: %s", video.id, acquirer.name, outcome)
                raise outcome

        # Only reachable when no paid acquirer is configured
        raise JobError(f"No acquirer produced a transcript for {source_type.value} ({last_reason!r})")

    def cost_breakdown(self) -> dict:
        """Per-source cost of the free path and of the paid fallback."""
        return {
            SourceType.YOUTUBE.value: {'cost_per_minute': 0.0, 'description': 'FREE'},
            SourceType.LOOM.value: {'cost_per_minute': 0.0, 'description': 'FREE'},
            SourceType.MUX.value: {'cost_per_minute': 0.0,
                                   'description': 'FREE (if auto-captions available)'},
            TranscriptMethod.SPEECH_TO_TEXT.value: {'cost_per_minute': self.cost_per_minute,
                                                    'description': 'PAID fallback'},
        }

    def estimate_cost(self, source_type: SourceType | str, duration_seconds: float) -> dict:
        """
        Best-case cost before extraction. Only uploads are known to be paid;
        the others are free unless they fall back.
        """
        source_type = SourceType(source_type)
        if source_type == SourceType.UPLOAD:
            cost = round(max(0.0, duration_seconds) / 60.0 * self.cost_per_minute, 6)
            return {'cost': cost, 'cost_formatted': f"${cost:.4f}",
                    'method': TranscriptMethod.SPEECH_TO_TEXT.value}
        return {'cost': 0.0, 'cost_formatted': 'FREE', 'method': 'free'}
