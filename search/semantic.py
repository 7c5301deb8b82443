import asyncio
import logging
from dataclasses import dataclass, replace
from typing import List, Optional

import numpy as np

from catalog.store import CatalogStore
from config.settings import (
    EMBEDDING_DIM,
    KNN_SIZE,
    SIMILARITY_THRESHOLD,
    USE_RERANKING,
    ABOUTNESS_TOP_N,
    ABOUTNESS_META_WEIGHT,
    ABOUTNESS_WEIGHT,
    DEBUG_MATCHING,
)
from embed.embedder import EmbeddingProvider
from search.aboutness import union_rerank
from search.cache import EmbeddingCache

logger = logging.getLogger(__name__)


class EmbeddingFormatError(ValueError):
    """The provider returned something that is not a usable query vector."""


@dataclass(frozen=True)
class SemanticMatch:
    song_id: str
    similarity: float
    distance: float
    strategy: str = "embedding"
    dist_meta: Optional[float] = None
    dist_about: Optional[float] = None


def to_query_vector(raw, dim: int = EMBEDDING_DIM) -> np.ndarray:
    """Convert a provider/cache payload into a unit-length float32 vector of ``dim`` entries."""
    try:
        vector = np.asarray(raw, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise EmbeddingFormatError(f"Embedding is not numeric: {e}") from e

    if vector.ndim == 2 and vector.shape[0] == 1:
        vector = vector[0]
    if vector.ndim != 1:
        raise EmbeddingFormatError(f"Embedding must be 1-D, got shape {vector.shape}")
    if vector.shape[0] != dim:
        raise EmbeddingFormatError(f"Embedding dimension mismatch: got {vector.shape[0]}, expected {dim}")
    if not np.all(np.isfinite(vector)):
        raise EmbeddingFormatError("Embedding contains non-finite values")

    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        raise EmbeddingFormatError("Embedding is the zero vector")
    return vector / norm


class SemanticSearcher:
    """Embedding KNN search over the catalog's vector index.

    ``find_similar`` never raises: provider, format and ANN failures are
    logged and reported as an empty result so the caller can fall through
    to its next strategy. Placeholder songs are not filtered here.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        embedder: EmbeddingProvider,
        cache: Optional[EmbeddingCache] = None,
        knn_size: int = KNN_SIZE,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        use_reranking: bool = USE_RERANKING,
        dim: int = None
    ):
        self.catalog = catalog
        self.embedder = embedder
        self.cache = cache
        self.knn_size = knn_size
        self.similarity_threshold = similarity_threshold
        self.use_reranking = use_reranking
        self.dim = dim or getattr(embedder, "dimension", EMBEDDING_DIM)

    async def embed_query(self, text: str) -> np.ndarray:
        namespace = getattr(self.embedder, "model_name", "default")

        if self.cache is not None:
            cached = await asyncio.to_thread(self.cache.get, namespace, text)
            if cached is not None:
                try:
                    return to_query_vector(cached, self.dim)
                except EmbeddingFormatError:
                    logger.warning("Discarding malformed cached embedding for %r", text[:80])

        raw = await self.embedder.embed(text)
        vector = to_query_vector(raw, self.dim)

        if DEBUG_MATCHING:
            logger.info(
                "[DEBUG_MATCHING] Embedding generated: dims=%d first5=%s text=%r",
                vector.shape[0], np.round(vector[:5], 4).tolist(), text[:80],
            )

        if self.cache is not None:
            await asyncio.to_thread(self.cache.set, namespace, text, vector)
        return vector

    async def find_similar(self, text: str, k: int = None) -> List[SemanticMatch]:
        k = k or self.knn_size
        try:
            vector = await self.embed_query(text)
            hits = await self.catalog.ann_query(vector, k * 2, space="meta")
            matches = [SemanticMatch(song_id=h.song_id, similarity=h.similarity, distance=h.distance) for h in hits]
            if self.use_reranking and matches:
                matches = await self._rerank_exact(vector, matches)
        except Exception as e:
            logger.warning("Semantic search failed, returning no matches: %s", e)
            return []

        matches = [m for m in matches if m.similarity >= self.similarity_threshold]

        logger.debug(
            "Semantic search: %d hits, top similarity %.4f",
            len(matches), matches[0].similarity if matches else 0.0,
        )
        return matches[:k]

    async def _rerank_exact(self, vector: np.ndarray, matches: List[SemanticMatch]) -> List[SemanticMatch]:
        reranked = []
        for match in matches:
            stored = await self.catalog.song_vector(match.song_id, "meta")
            if stored is None:
                reranked.append(match)
                continue

            stored = np.asarray(stored, dtype=np.float32).ravel()
            norm = float(np.linalg.norm(stored))
            if stored.shape != vector.shape or norm == 0.0 or not np.isfinite(norm):
                reranked.append(match)
                continue

            similarity = float(np.dot(vector, stored / norm))
            reranked.append(replace(match, similarity=similarity, distance=1.0 - similarity))

        reranked.sort(key=lambda m: m.similarity, reverse=True)
        return reranked

    async def find_similar_union_rerank(
        self,
        text: str,
        k: int = 10,
        top_n: int = ABOUTNESS_TOP_N,
        meta_weight: float = ABOUTNESS_META_WEIGHT,
        aboutness_weight: float = ABOUTNESS_WEIGHT
    ) -> List[SemanticMatch]:
        """Blend metadata and aboutness neighbours. Raises on failure; callers fall back."""
        vector = await self.embed_query(text)
        meta_hits = await self.catalog.ann_query(vector, top_n, space="meta")
        about_hits = await self.catalog.ann_query(vector, top_n, space="aboutness")

        candidate_ids = list(dict.fromkeys([h.song_id for h in meta_hits] + [h.song_id for h in about_hits]))
        songs = await self.catalog.get_songs(candidate_ids)
        popularity = {s.id: s.popularity for s in songs}

        ranked = union_rerank(
            meta_hits,
            about_hits,
            popularity,
            meta_weight=meta_weight,
            aboutness_weight=aboutness_weight,
            limit=k * 2,
        )

        logger.debug(
            "Aboutness union+rerank: meta=%d about=%d union=%d",
            len(meta_hits), len(about_hits), len(candidate_ids),
        )

        return [
            SemanticMatch(
                song_id=m.song_id,
                similarity=m.score,
                distance=1.0 - m.score,
                strategy="aboutness-rerank",
                dist_meta=m.dist_meta,
                dist_about=m.dist_about,
            )
            for m in ranked
        ]
