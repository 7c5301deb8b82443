import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("SONGMAPPER_DATA_DIR", BASE_DIR / "data"))
CATALOG_PATH = Path(os.getenv("CATALOG_PATH", DATA_DIR / "catalog.parquet"))
LEXICON_PATH = Path(os.getenv("LEXICON_PATH", DATA_DIR / "phrases.json"))

EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "all-MiniLM-L6-v2")
EMBEDDING_DIM = int(os.getenv("EMBEDDING_DIM", 384))

# Semantic search
KNN_SIZE = int(os.getenv("KNN_SIZE", 50))
SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", 0.0))
USE_RERANKING = _env_bool("USE_RERANKING", True)
ANN_HNSW_MIN_SIZE = int(os.getenv("ANN_HNSW_MIN_SIZE", 5000))
HNSW_M = 32
HNSW_EF_SEARCH = 128

# Aboutness union+rerank
ABOUTNESS_ENABLED = _env_bool("ABOUTNESS_ENABLED", False)
ABOUTNESS_TOP_N = int(os.getenv("ABOUTNESS_TOP_N", 50))
ABOUTNESS_META_WEIGHT = float(os.getenv("ABOUTNESS_META_WEIGHT", 0.6))
ABOUTNESS_WEIGHT = float(os.getenv("ABOUTNESS_WEIGHT", 0.4))

# Confidence calibration
CONFIDENCE_SCALE = float(os.getenv("CONFIDENCE_SCALE", 5.0))
CONFIDENCE_MIN = float(os.getenv("CONFIDENCE_MIN", 0.10))
CONFIDENCE_MAX = float(os.getenv("CONFIDENCE_MAX", 0.99))
SINGLE_CANDIDATE_CONFIDENCE = float(os.getenv("SINGLE_CANDIDATE_CONFIDENCE", 0.95))

# Orchestration
ALTERNATES_THRESHOLD = float(os.getenv("ALTERNATES_THRESHOLD", 0.7))
MAX_ALTERNATES = 2
RECENCY_FLOOR = int(os.getenv("RECENCY_FLOOR", 5))
POPULARITY_FALLBACK_LIMIT = 3
POPULARITY_FALLBACK_SCORE = 0.3
MAX_SEMANTIC_CANDIDATES = int(os.getenv("MAX_SEMANTIC_CANDIDATES", 10))
EXPLICIT_TAGS = frozenset({"explicit", "profanity", "adult"})
MATCH_TIMEOUT_SECONDS = float(os.getenv("MATCH_TIMEOUT_SECONDS", 10.0))
DEBUG_MATCHING = os.getenv("DEBUG_MATCHING", "0") == "1"

# Query embedding cache
REDIS_ENABLED = _env_bool("REDIS_ENABLED", False)
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
EMBED_CACHE_TTL = int(os.getenv("EMBED_CACHE_TTL", 86400))

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
