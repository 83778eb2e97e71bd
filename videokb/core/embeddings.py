"""
Embedding generation against the OpenAI embeddings REST API.
Batches requests, retries transient failures with backoff, checks every
vector's dimension and tracks token usage / cost.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field

import requests

from videokb.core.constants import (
    OPENAI_API_BASE, EMBEDDING_MODEL, EMBEDDING_DIMENSIONS, EMBEDDING_BATCH_SIZE,
    EMBEDDING_COST_PER_1K_TOKENS, CHARS_PER_TOKEN, EMBEDDING_TIMEOUT_SEC,
)
from videokb.core.error_codes import (
    AuthMissing, EmbeddingDimensionMismatch, EmbeddingFailed, JobError,
)
from videokb.core.http_utils import http_request, raise_for_provider_status, sleep_backoff

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingBatch:
    vectors: list[list[float]] = field(default_factory=list)
    total_tokens: int = 0
    cost_usd: float = 0.0
    model: str = EMBEDDING_MODEL
    processing_time_ms: int = 0


def estimate_tokens(text: str) -> int:
    """Rough token count before calling the API."""
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def embedding_cost(tokens: int, cost_per_1k: float = EMBEDDING_COST_PER_1K_TOKENS) -> float:
    return tokens / 1000.0 * cost_per_1k


class EmbeddingClient:
    def __init__(self, api_key: str | None,
                 model: str = EMBEDDING_MODEL,
                 dimensions: int = EMBEDDING_DIMENSIONS,
                 batch_size: int = EMBEDDING_BATCH_SIZE,
                 timeout: float = EMBEDDING_TIMEOUT_SEC,
                 max_retries: int = 3,
                 backoff_base_sec: float = 1.0,
                 cost_per_1k_tokens: float = EMBEDDING_COST_PER_1K_TOKENS,
                 session: requests.Session | None = None):
        self.api_key = api_key
        self.model = model
        self.dimensions = dimensions
        self.batch_size = max(1, batch_size)
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base_sec = backoff_base_sec
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self.session = session
        self.total_tokens = 0
        # shared by every worker thread
        self._usage_lock = threading.Lock()

    @property
    def total_cost_usd(self) -> float:
        return embedding_cost(self.total_tokens, self.cost_per_1k_tokens)

    def estimate_cost(self, texts: list[str]) -> float:
        return embedding_cost(sum(estimate_tokens(t) for t in texts), self.cost_per_1k_tokens)

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text]).vectors[0]

    def embed_batch(self, texts: list[str]) -> EmbeddingBatch:
        """Embed texts in order, batch_size per request."""
        t0 = time.monotonic()
        result = EmbeddingBatch(model=self.model)
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i:i + self.batch_size]
            logger.debug("Embedding batch %d/%d (%d texts)",
                         i // self.batch_size + 1,
                         math.ceil(len(texts) / self.batch_size), len(batch))
            vectors, tokens = self._request_with_retry(batch)
            result.vectors.extend(vectors)
            result.total_tokens += tokens

        result.cost_usd = embedding_cost(result.total_tokens, self.cost_per_1k_tokens)
        result.processing_time_ms = int((time.monotonic() - t0) * 1000)
        logger.info("Generated %d embeddings (%d tokens, $%.6f)",
                    len(result.vectors), result.total_tokens, result.cost_usd)
        return result

    def _request_with_retry(self, texts: list[str]) -> tuple[list[list[float]], int]:
        for attempt in range(self.max_retries + 1):
            try:
                return self._request(texts)
            except JobError as e:
                if not e.retryable or attempt >= self.max_retries:
                    raise
                sleep_backoff(attempt, self.backoff_base_sec, 30.0, f"Embedding request failed: {e.code}")
        raise EmbeddingFailed("Embedding retries exhausted")

    def _request(self, texts: list[str]) -> tuple[list[list[float]], int]:
        if not self.api_key:
            raise AuthMissing("OpenAI API key is not configured")

        payload = {'model': self.model, 'input': texts}
        if self.model.startswith('text-embedding-3'):
            payload['dimensions'] = self.dimensions

        resp = http_request(
            "POST", f"{OPENAI_API_BASE}/embeddings", "OpenAI", self.timeout,
            session=self.session,
            headers={'Authorization': f"Bearer {self.api_key}"},
            json=payload,
        )
        try:
            raise_for_provider_status(resp, "OpenAI")
        except JobError as e:
            if resp.status_code >= 500:
                raise EmbeddingFailed(e.message)
            raise

        try:
            body = resp.json()
        except ValueError:
            raise EmbeddingFailed("OpenAI returned invalid JSON")

        data = sorted(body.get('data') or [], key=lambda d: d.get('index', 0))
        if len(data) != len(texts):
            raise EmbeddingFailed(f"Expected {len(texts)} embeddings but got {len(data)}")

        vectors = []
        for item in data:
            vector = item.get('embedding') or []
            if len(vector) != self.dimensions:
                raise EmbeddingDimensionMismatch(
                    f"Embedding has {len(vector)} dimensions, expected {self.dimensions}")
            vectors.append([float(x) for x in vector])

        tokens = (body.get('usage') or {}).get('total_tokens')
        if tokens is None:
            tokens = sum(estimate_tokens(t) for t in texts)
        with self._usage_lock:
            self.total_tokens += int(tokens)
        return vectors, int(tokens)
