from index.faiss_index import (
    build_flat_index,
    build_hnsw_index,
    build_index,
    search_index,
)

__all__ = [
    "build_flat_index",
    "build_hnsw_index",
    "build_index",
    "search_index",
]
