from search.lexicon import PhraseLexicon, PhraseMatch, normalize_text
from search.semantic import SemanticSearcher, SemanticMatch, EmbeddingFormatError
from search.calibration import ConfidenceCalibrator
from search.diversity import select_alternates
from search.cache import EmbeddingCache
from search.matcher import (
    CatalogEmptyError,
    MatchCandidate,
    MatchResult,
    MatchingConfig,
    SongMatcher,
    Strategy,
)
from search.catalog_search import SongSearchService

__all__ = [
    "PhraseLexicon", "PhraseMatch", "normalize_text",
    "SemanticSearcher", "SemanticMatch", "EmbeddingFormatError",
    "ConfidenceCalibrator",
    "select_alternates",
    "EmbeddingCache",
    "CatalogEmptyError", "MatchCandidate", "MatchResult", "MatchingConfig", "SongMatcher", "Strategy",
    "SongSearchService",
]
