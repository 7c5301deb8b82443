from embed.embedder import EmbeddingError, EmbeddingProvider, SentenceTransformerEmbedder

__all__ = [
    "EmbeddingError",
    "EmbeddingProvider",
    "SentenceTransformerEmbedder",
]
