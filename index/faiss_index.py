import logging

import faiss
import numpy as np

from config.settings import EMBEDDING_DIM, HNSW_M, HNSW_EF_SEARCH

logger = logging.getLogger(__name__)


def normalize_rows(embeddings: np.ndarray) -> np.ndarray:
    embeddings = np.ascontiguousarray(embeddings, dtype=np.float32)
    if embeddings.ndim == 1:
        embeddings = embeddings.reshape(1, -1)
    faiss.normalize_L2(embeddings)
    return embeddings


def build_flat_index(embeddings: np.ndarray, dim: int = EMBEDDING_DIM) -> faiss.Index:
    embeddings = normalize_rows(embeddings)
    index = faiss.IndexFlatIP(dim)
    if len(embeddings):
        index.add(embeddings)
    return index


def build_hnsw_index(
    embeddings: np.ndarray,
    dim: int = EMBEDDING_DIM,
    m: int = HNSW_M,
    ef_search: int = HNSW_EF_SEARCH
) -> faiss.Index:
    embeddings = normalize_rows(embeddings)
    index = faiss.IndexHNSWFlat(dim, m, faiss.METRIC_INNER_PRODUCT)
    index.hnsw.efSearch = ef_search

    logger.info("Building HNSW index: m=%d, vectors=%d", m, len(embeddings))
    index.add(embeddings)
    return index


def build_index(embeddings: np.ndarray, dim: int = EMBEDDING_DIM, hnsw_min_size: int = 5000) -> faiss.Index:
    if len(embeddings) >= hnsw_min_size:
        return build_hnsw_index(embeddings, dim=dim)
    return build_flat_index(embeddings, dim=dim)


def search_index(index: faiss.Index, query_embedding: np.ndarray, k: int = 100, ef_search: int = None) -> tuple:
    """Return (scores, indices) for the top ``k`` rows; scores are inner products."""
    query = normalize_rows(query_embedding.copy())
    k = min(k, index.ntotal)
    if k <= 0:
        return np.empty(0, dtype=np.float32), np.empty(0, dtype=np.int64)

    if ef_search is not None and hasattr(index, "hnsw"):
        index.hnsw.efSearch = max(ef_search, k)

    scores, indices = index.search(query, k)
    return scores[0], indices[0]
