import asyncio
import logging
import threading
from typing import Optional, Protocol

import numpy as np
from sentence_transformers import SentenceTransformer

from config.settings import EMBEDDING_MODEL, EMBEDDING_DIM

logger = logging.getLogger(__name__)


class EmbeddingError(RuntimeError):
    """Raised by a provider that cannot produce a vector for the given text."""


class EmbeddingProvider(Protocol):
    model_name: str
    dimension: int

    async def embed(self, text: str) -> np.ndarray: ...


class SentenceTransformerEmbedder:
    """Local sentence-transformers provider (all-MiniLM-L6-v2, 384d by default).

    The model is loaded lazily on first use; inference runs in a worker
    thread so the event loop is never blocked.
    """

    def __init__(self, model_name: str = EMBEDDING_MODEL, dimension: int = EMBEDDING_DIM, device: str = None):
        self.model_name = model_name
        self.dimension = dimension
        self.device = device
        self.model: Optional[SentenceTransformer] = None
        self._lock = threading.Lock()

    def load(self) -> SentenceTransformer:
        with self._lock:
            if self.model is None:
                logger.info("Loading embedding model: %s", self.model_name)
                self.model = SentenceTransformer(self.model_name, device=self.device)
                logger.info("Embedding model loaded.")
        return self.model

    def is_ready(self) -> bool:
        return self.model is not None

    def encode(self, text: str) -> np.ndarray:
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        model = self.load()
        embedding = model.encode(text, convert_to_numpy=True, normalize_embeddings=True)
        return embedding.astype(np.float32)

    async def embed(self, text: str) -> np.ndarray:
        return await asyncio.to_thread(self.encode, text)
