"""
Pipeline context: every collaborator the orchestrator needs, built once.
Tests build their own context with fake acquirers and embedders.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from videokb.core.config import AppConfig
from videokb.core.constants import SourceType
from videokb.core.db_sqlite import Database
from videokb.core.vector_store import SQLiteVectorStore
from videokb.core.embeddings import EmbeddingClient
from videokb.core.transcript_router import TranscriptRouter
from videokb.core.acquire_youtube import YouTubeAcquirer
from videokb.core.acquire_loom import LoomAcquirer
from videokb.core.acquire_mux import MuxAcquirer
from videokb.core.audio_source import AudioSourceResolver
from videokb.core.transcribe_deepgram import DeepgramTranscriber
from videokb.core.security_utils import load_credentials

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    config: AppConfig
    db: Database
    vector_store: SQLiteVectorStore
    embedder: EmbeddingClient
    router: TranscriptRouter
    credentials: dict = field(default_factory=dict)

    @property
    def workspace_dir(self) -> Path:
        return self.config.workspace_dir


def build_router(config: AppConfig, credentials: dict) -> TranscriptRouter:
    timeout = config.get('acquirer_timeout_sec')
    cookies_path = Path(config.get('cookies_path'))

    loom = LoomAcquirer(credentials.get('loom_api_key'), timeout=timeout)
    mux = MuxAcquirer(credentials.get('mux_token_id'), credentials.get('mux_token_secret'),
                      timeout=timeout)
    youtube = YouTubeAcquirer(
        config.workspace_dir,
        languages=config.get('caption_languages'),
        cookies_mode=config.get('cookies_mode'),
        cookies_path=cookies_path,
        timeout=max(60, timeout),
    )
    resolver = AudioSourceResolver(
        loom=loom, mux=mux,
        cookies_mode=config.get('cookies_mode'),
        cookies_path=cookies_path,
        timeout=max(60, timeout),
    )
    paid = DeepgramTranscriber(
        credentials.get('deepgram_api_key'),
        resolver,
        config.workspace_dir,
        cost_per_minute=config.get('stt_cost_per_minute'),
        max_bytes=config.get('stt_max_bytes'),
        keep_artifacts=config.keep_debug_artifacts,
    )
    return TranscriptRouter(
        {SourceType.YOUTUBE: youtube, SourceType.LOOM: loom, SourceType.MUX: mux},
        paid,
        router_retries=config.get('router_retries'),
        backoff_base_sec=config.get('backoff_base_sec'),
        backoff_max_sec=config.get('backoff_max_sec'),
        cost_per_minute=config.get('stt_cost_per_minute'),
    )


def build_embedder(config: AppConfig, credentials: dict) -> EmbeddingClient:
    return EmbeddingClient(
        credentials.get('openai_api_key'),
        model=config.get('embedding_model'),
        dimensions=config.get('embedding_dimensions'),
        batch_size=config.get('embedding_batch_size'),
        timeout=config.get('embedding_timeout_sec'),
    )


def build_context(config: AppConfig | None = None,
                  credentials: dict | None = None,
                  db: Database | None = None) -> PipelineContext:
    """Wire the production pipeline from config and resolved credentials."""
    config = config or AppConfig()
    if credentials is None:
        credentials = load_credentials()
    db = db or Database(config.db_path)
    config.workspace_dir.mkdir(parents=True, exist_ok=True)

    return PipelineContext(
        config=config,
        db=db,
        vector_store=SQLiteVectorStore(db, dimensions=config.get('embedding_dimensions')),
        embedder=build_embedder(config, credentials),
        router=build_router(config, credentials),
        credentials=credentials,
    )
