"""Corpus sampler: random seed passages for question generation."""

from __future__ import annotations

import structlog

from ragqa.persistence.repository import get_random_chunks_for_tenant
from ragqa.pipeline.context import PipelineContext
from ragqa.schemas.records import CorpusChunk

logger = structlog.get_logger(__name__)


class CorpusSampler:
    def __init__(self, ctx: PipelineContext) -> None:
        self._ctx = ctx

    def sample(self, tenant_id: str, count: int) -> list[CorpusChunk]:
        """Draw up to ``count`` usable passages for a tenant.

        Passages shorter than ``min_chunk_length`` carry too little content to
        ground a question and are dropped.
        """
        cfg = self._ctx.qa_settings.pipeline
        conn = self._ctx.connect()
        try:
            chunks = get_random_chunks_for_tenant(
                conn, tenant_id, max(count, cfg.sample_floor), rng=self._ctx.rng
            )
        finally:
            conn.close()

        usable = [c for c in chunks if len(c.content.strip()) >= cfg.min_chunk_length]
        logger.info(
            "corpus_sampled",
            tenant_id=tenant_id,
            requested=count,
            fetched=len(chunks),
            usable=len(usable),
        )
        return usable
