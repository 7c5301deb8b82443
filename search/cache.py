import hashlib
import logging
import threading
from collections import OrderedDict
from typing import Optional

import numpy as np
import redis

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """Query embedding cache: Redis when reachable, bounded in-process LRU otherwise.

    Keys are namespaced by model name so vectors from two different
    providers never mix. A Redis error on any call degrades that call to
    the local LRU instead of failing the lookup.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        ttl_seconds: int = 86400,  # 24 hours
        prefix: str = "songmapper:embed:",
        use_redis: bool = True,
        max_local_entries: int = 10000
    ):
        self.prefix = prefix
        self.ttl = ttl_seconds
        self.max_local_entries = max_local_entries
        self.redis_client = None
        self._local: "OrderedDict[str, np.ndarray]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

        if use_redis:
            self.redis_client = self._connect(host, port, db)

    @staticmethod
    def _connect(host: str, port: int, db: int) -> Optional[redis.Redis]:
        client = redis.Redis(host=host, port=port, db=db, decode_responses=False, socket_connect_timeout=2)
        try:
            client.ping()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning("Redis unavailable, using in-memory embedding cache: %s", e)
            return None
        logger.info("Redis embedding cache connected (%s:%s)", host, port)
        return client

    def _key(self, namespace: str, text: str) -> str:
        digest = hashlib.md5(f"{namespace}\x00{text}".encode("utf-8")).hexdigest()
        return self.prefix + digest

    def get(self, namespace: str, text: str) -> Optional[np.ndarray]:
        key = self._key(namespace, text)
        embedding = self._redis_get(key) if self.redis_client else None

        with self._lock:
            if embedding is None:
                embedding = self._local.get(key)
                if embedding is not None:
                    self._local.move_to_end(key)

            if embedding is None:
                self.misses += 1
            else:
                self.hits += 1
        return embedding

    def _redis_get(self, key: str) -> Optional[np.ndarray]:
        try:
            data = self.redis_client.get(key)
        except redis.RedisError as e:
            logger.warning("Redis cache read failed: %s", e)
            return None
        if not data:
            return None
        return np.frombuffer(data, dtype=np.float32).copy()

    def set(self, namespace: str, text: str, embedding: np.ndarray) -> None:
        key = self._key(namespace, text)
        embedding = np.asarray(embedding, dtype=np.float32)

        if self.redis_client:
            try:
                self.redis_client.setex(key, self.ttl, embedding.tobytes())
                return
            except redis.RedisError as e:
                logger.warning("Redis cache write failed: %s", e)

        with self._lock:
            self._local[key] = embedding
            self._local.move_to_end(key)
            while len(self._local) > self.max_local_entries:
                self._local.popitem(last=False)

    def _redis_keys(self) -> list:
        return list(self.redis_client.scan_iter(match=f"{self.prefix}*"))

    def clear(self) -> int:
        removed = 0
        if self.redis_client:
            try:
                keys = self._redis_keys()
                removed = self.redis_client.delete(*keys) if keys else 0
            except redis.RedisError as e:
                logger.warning("Redis cache clear failed: %s", e)

        with self._lock:
            removed += len(self._local)
            self._local.clear()
        return removed

    def stats(self) -> dict:
        data = {
            "backend": "in-memory",
            "cached_queries": len(self._local),
            "max_size": self.max_local_entries,
            "hits": self.hits,
            "misses": self.misses,
        }
        if self.redis_client:
            try:
                data.update(backend="redis", cached_queries=len(self._redis_keys()), ttl_seconds=self.ttl)
            except redis.RedisError as e:
                logger.warning("Redis cache stats failed: %s", e)
        return data
