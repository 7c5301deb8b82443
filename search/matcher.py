"""
Match orchestrator: chat text -> one primary song plus optional alternates.

Strategies run in order and the first one that yields candidates wins:

1. phrase lexicon (exact / partial / fuzzy)
2. semantic search (aboutness union+rerank first when enabled)
3. popularity fallback

The surviving candidate set is then filtered (recency, explicit content),
sorted, calibrated into a confidence, and, when the pick is ambiguous,
diversified into alternates. An empty catalog is the only error that
escapes; everything else degrades to a lower-quality result.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from catalog.models import Song
from catalog.store import CatalogStore
from config import settings
from moderation.gate import ModerationAnnotation
from search.calibration import ConfidenceCalibrator
from search.diversity import history_spans_decades, select_alternates
from search.lexicon import PhraseLexicon
from search.mood import detect_mood
from search.semantic import SemanticMatch, SemanticSearcher

logger = logging.getLogger(__name__)

FALLBACK_EMPTY_STRATEGIES = "lexicon_and_semantic_empty"
FALLBACK_FILTERED_TO_EMPTY = "filtered_to_empty"


class CatalogEmptyError(RuntimeError):
    """No playable song is left in the catalog after exclusion filters."""


class Strategy(str, Enum):
    EXACT = "exact"
    PHRASE = "phrase"
    EMBEDDING = "embedding"
    ABOUTNESS_RERANK = "aboutness-rerank"
    POPULARITY_FALLBACK = "popularity-fallback"


@dataclass(frozen=True)
class MatchReason:
    matched_phrase: Optional[str] = None
    match_type: Optional[str] = None
    mood: Optional[str] = None
    similarity: Optional[float] = None
    dist_meta: Optional[float] = None
    dist_about: Optional[float] = None


@dataclass(frozen=True)
class MatchCandidate:
    song: Song
    score: float
    strategy: Strategy
    reason: MatchReason = field(default_factory=MatchReason)

    @property
    def song_id(self) -> str:
        return self.song.id

    def to_dict(self) -> dict:
        return {
            "song_id": self.song.id,
            "score": self.score,
            "strategy": self.strategy.value,
            "matched_phrase": self.reason.matched_phrase,
            "similarity": self.reason.similarity,
        }


@dataclass(frozen=True)
class MatchExplanation:
    matched_phrase: Optional[str] = None
    match_type: Optional[str] = None
    similarity: Optional[float] = None
    mood: Optional[str] = None
    dist_meta: Optional[float] = None
    dist_about: Optional[float] = None
    fallback_reason: Optional[str] = None
    primary_score: float = 0.0
    total_candidates: int = 0
    moderation: Optional[ModerationAnnotation] = None

    def to_dict(self) -> dict:
        return {
            "matched_phrase": self.matched_phrase,
            "match_type": self.match_type,
            "similarity": self.similarity,
            "mood": self.mood,
            "dist_meta": self.dist_meta,
            "dist_about": self.dist_about,
            "fallback_reason": self.fallback_reason,
            "primary_score": self.primary_score,
            "total_candidates": self.total_candidates,
            "moderation": self.moderation.to_dict() if self.moderation else None,
        }


@dataclass(frozen=True)
class MatchResult:
    primary: Song
    alternates: List[Song]
    confidence: float
    strategy: Strategy
    explanation: MatchExplanation
    candidates: List[MatchCandidate] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict:
        return {
            "primary": self.primary.to_dict(),
            "alternates": [s.to_dict() for s in self.alternates],
            "confidence": round(self.confidence, 4),
            "strategy": self.strategy.value,
            "explanation": self.explanation.to_dict(),
        }


@dataclass(frozen=True)
class MatchingConfig:
    aboutness_enabled: bool = False
    knn_size: int = 50
    max_semantic_candidates: int = 10
    popularity_fallback_limit: int = 3
    popularity_fallback_score: float = 0.3
    recency_floor: int = 5
    alternates_threshold: float = 0.7
    max_alternates: int = 2
    explicit_tags: FrozenSet[str] = frozenset({"explicit", "profanity", "adult"})
    debug: bool = False

    @classmethod
    def from_settings(cls) -> "MatchingConfig":
        return cls(
            aboutness_enabled=settings.ABOUTNESS_ENABLED,
            knn_size=settings.KNN_SIZE,
            max_semantic_candidates=settings.MAX_SEMANTIC_CANDIDATES,
            popularity_fallback_limit=settings.POPULARITY_FALLBACK_LIMIT,
            popularity_fallback_score=settings.POPULARITY_FALLBACK_SCORE,
            recency_floor=settings.RECENCY_FLOOR,
            alternates_threshold=settings.ALTERNATES_THRESHOLD,
            max_alternates=settings.MAX_ALTERNATES,
            explicit_tags=frozenset(settings.EXPLICIT_TAGS),
            debug=settings.DEBUG_MATCHING,
        )


class SongMatcher:
    def __init__(
        self,
        catalog: CatalogStore,
        lexicon: PhraseLexicon,
        searcher: SemanticSearcher,
        config: MatchingConfig = None,
        calibrator: ConfidenceCalibrator = None
    ):
        self.catalog = catalog
        self.lexicon = lexicon
        self.searcher = searcher
        self.config = config or MatchingConfig.from_settings()
        self.calibrator = calibrator or ConfidenceCalibrator()

    async def match_songs(
        self,
        text: str,
        allow_explicit: bool = False,
        user_id: str = None,
        recent_history: Iterable[str] = None,
        moderation: ModerationAnnotation = None
    ) -> MatchResult:
        text = text or ""
        history = list(dict.fromkeys(recent_history or ()))
        mood = detect_mood(text)
        fallback_reason = None

        candidates = await self._lexicon_candidates(text, mood)
        if not candidates:
            candidates = await self._semantic_candidates(text, mood)
        if not candidates:
            fallback_reason = FALLBACK_EMPTY_STRATEGIES
            logger.info("No lexicon or semantic match for %r, using popularity fallback", text[:80])
            candidates = await self._popularity_candidates(allow_explicit)

        candidates = self._filter_recent(candidates, set(history))
        if not allow_explicit:
            candidates = self._filter_explicit(candidates)

        if not candidates:
            fallback_reason = FALLBACK_FILTERED_TO_EMPTY
            logger.warning("Filters removed every candidate for %r, using popularity fallback", text[:80])
            candidates = await self._popularity_candidates(allow_explicit)

        candidates = sorted(candidates, key=lambda c: c.score, reverse=True)

        confidence = self.calibrator.calibrate([c.score for c in candidates])
        primary = candidates[0]

        alternates: List[Song] = []
        if confidence < self.config.alternates_threshold:
            relax = await self._history_spans_decades(history)
            picked = select_alternates(
                candidates,
                max_alternates=self.config.max_alternates,
                relax=relax,
            )
            alternates = [c.song for c in picked]

        explanation = MatchExplanation(
            matched_phrase=primary.reason.matched_phrase,
            match_type=primary.reason.match_type,
            similarity=primary.reason.similarity,
            mood=primary.reason.mood,
            dist_meta=primary.reason.dist_meta,
            dist_about=primary.reason.dist_about,
            fallback_reason=fallback_reason,
            primary_score=primary.score,
            total_candidates=len(candidates),
            moderation=moderation,
        )

        logger.info(
            "Matched %r -> %s (%s, confidence=%.3f, alternates=%d, user=%s)",
            text[:80], primary.song.id, primary.strategy.value, confidence, len(alternates), user_id,
        )
        if self.config.debug:
            logger.info(
                "[DEBUG_MATCHING] candidates=%s",
                [(c.song.id, round(c.score, 4), c.strategy.value) for c in candidates],
            )

        return MatchResult(
            primary=primary.song,
            alternates=alternates,
            confidence=confidence,
            strategy=primary.strategy,
            explanation=explanation,
            candidates=candidates,
        )

    async def _lexicon_candidates(self, text: str, mood: str) -> List[MatchCandidate]:
        phrase_matches = self.lexicon.find_phrase_matches(text)
        if not phrase_matches:
            return []

        # Matches arrive best first, so the first phrase seen for a song is its best.
        best: Dict[str, tuple] = {}
        for match in phrase_matches:
            for song_id in match.song_ids:
                if song_id not in best:
                    best[song_id] = (match.confidence, match)

        songs = await self.catalog.get_songs(list(best))
        candidates = []
        for song in songs:
            if song.is_placeholder:
                continue
            confidence, match = best[song.id]
            candidates.append(MatchCandidate(
                song=song,
                score=confidence,
                strategy=Strategy.PHRASE,
                reason=MatchReason(
                    matched_phrase=match.phrase,
                    match_type=match.match_type,
                    mood=mood,
                ),
            ))

        if self.config.debug:
            logger.info(
                "[DEBUG_MATCHING] Lexicon: %d phrase matches -> %d songs (%s)",
                len(phrase_matches), len(candidates), phrase_matches[0].match_type,
            )
        return candidates

    async def _semantic_candidates(self, text: str, mood: str) -> List[MatchCandidate]:
        if not text.strip():
            return []

        matches: List[SemanticMatch] = []
        strategy = Strategy.EMBEDDING

        if self.config.aboutness_enabled:
            try:
                matches = await self.searcher.find_similar_union_rerank(
                    text, k=self.config.max_semantic_candidates
                )
                strategy = Strategy.ABOUTNESS_RERANK
            except Exception as e:
                logger.warning("Aboutness rerank failed, using standard semantic search: %s", e)
                matches = []

        if not matches:
            strategy = Strategy.EMBEDDING
            matches = await self.searcher.find_similar(text, k=self.config.knn_size)

        if not matches:
            return []

        by_id: Dict[str, SemanticMatch] = {}
        for match in matches:
            by_id.setdefault(match.song_id, match)

        songs = await self.catalog.get_songs(list(by_id))
        candidates = []
        for song in songs:
            if song.is_placeholder:
                continue
            match = by_id[song.id]
            candidates.append(MatchCandidate(
                song=song,
                score=match.similarity,
                strategy=strategy,
                reason=MatchReason(
                    mood=mood,
                    similarity=match.similarity,
                    dist_meta=match.dist_meta,
                    dist_about=match.dist_about,
                ),
            ))

        candidates.sort(key=lambda c: c.score, reverse=True)
        candidates = candidates[:self.config.max_semantic_candidates]

        if self.config.debug:
            logger.info(
                "[DEBUG_MATCHING] Semantic (%s): %d hits -> %d candidates, top=%s",
                strategy.value, len(matches), len(candidates),
                [(c.song.id, round(c.score, 4)) for c in candidates[:5]],
            )
        return candidates

    async def _popularity_candidates(self, allow_explicit: bool) -> List[MatchCandidate]:
        exclude = () if allow_explicit else self.config.explicit_tags
        songs = await self.catalog.popular_songs(self.config.popularity_fallback_limit, exclude_tags=exclude)
        songs = [s for s in songs if not s.is_placeholder]
        if not songs:
            logger.error("Catalog has no songs left after exclusion filters")
            raise CatalogEmptyError("No songs available in the catalog")

        return [
            MatchCandidate(
                song=song,
                score=self.config.popularity_fallback_score,
                strategy=Strategy.POPULARITY_FALLBACK,
            )
            for song in songs
        ]

    def _filter_recent(self, candidates: List[MatchCandidate], recent: set) -> List[MatchCandidate]:
        if not recent:
            return candidates

        kept = [c for c in candidates if c.song.id not in recent]
        if len(kept) < self.config.recency_floor:
            logger.debug(
                "Recency filter skipped: %d of %d candidates would remain (floor %d)",
                len(kept), len(candidates), self.config.recency_floor,
            )
            return candidates
        return kept

    def _filter_explicit(self, candidates: List[MatchCandidate]) -> List[MatchCandidate]:
        kept = [c for c in candidates if not c.song.has_any_tag(self.config.explicit_tags)]
        if len(kept) != len(candidates):
            logger.debug("Explicit filter removed %d candidates", len(candidates) - len(kept))
        return kept

    async def _history_spans_decades(self, history: Sequence[str]) -> bool:
        if not history:
            return False
        songs = await self.catalog.get_songs(history, include_placeholders=True)
        return history_spans_decades(songs)
