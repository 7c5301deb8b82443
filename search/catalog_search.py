import logging
from dataclasses import dataclass
from typing import Dict, List, Literal

from catalog.models import Song
from catalog.store import CatalogStore
from config.settings import EXPLICIT_TAGS
from search.lexicon import PhraseLexicon
from search.matcher import Strategy
from search.semantic import SemanticSearcher

logger = logging.getLogger(__name__)

SearchStrategy = Literal["exact", "phrase", "embedding", "all"]
SEARCH_STRATEGIES = ("exact", "phrase", "embedding", "all")

ARTIST_MATCH_SCORE = 1.0
TITLE_MATCH_SCORE = 0.9


@dataclass(frozen=True)
class SearchHit:
    song: Song
    score: float
    strategy: Strategy
    matched: str = ""

    def to_dict(self) -> dict:
        data = self.song.to_dict()
        data["score"] = round(self.score, 4)
        data["strategy"] = self.strategy.value
        data["matched"] = self.matched
        return data


class SongSearchService:
    """Browse-style catalog search used by the search endpoint and CLI.

    Unlike the matcher this returns a ranked list and never falls back to
    popular songs: no hit means an empty list.
    """

    def __init__(self, catalog: CatalogStore, lexicon: PhraseLexicon, searcher: SemanticSearcher):
        self.catalog = catalog
        self.lexicon = lexicon
        self.searcher = searcher

    async def search(
        self,
        query: str,
        limit: int = 20,
        strategy: SearchStrategy = "all",
        allow_explicit: bool = True
    ) -> List[SearchHit]:
        if strategy not in SEARCH_STRATEGIES:
            raise ValueError(f"Unknown search strategy: {strategy}")
        if not query or not query.strip():
            return []

        hits: List[SearchHit] = []
        if strategy in ("exact", "all"):
            hits.extend(await self._exact(query, limit))
        if strategy in ("phrase", "all"):
            hits.extend(await self._phrase(query))
        if strategy in ("embedding", "all"):
            hits.extend(await self._embedding(query, limit))

        best: Dict[str, SearchHit] = {}
        for hit in hits:
            if hit.song.is_placeholder:
                continue
            if not allow_explicit and hit.song.has_any_tag(EXPLICIT_TAGS):
                continue
            current = best.get(hit.song.id)
            if current is None or hit.score > current.score:
                best[hit.song.id] = hit

        ranked = sorted(best.values(), key=lambda h: (h.score, h.song.popularity), reverse=True)
        logger.debug("Search %r (%s): %d raw hits, %d unique", query, strategy, len(hits), len(ranked))
        return ranked[:limit]

    async def _exact(self, query: str, limit: int) -> List[SearchHit]:
        results = await self.catalog.search_text(query, limit=limit)
        return [
            SearchHit(
                song=song,
                score=ARTIST_MATCH_SCORE if field_name == "artist" else TITLE_MATCH_SCORE,
                strategy=Strategy.EXACT,
                matched=field_name,
            )
            for song, field_name in results
        ]

    async def _phrase(self, query: str) -> List[SearchHit]:
        matches = self.lexicon.find_phrase_matches(query)
        if not matches:
            return []

        best: Dict[str, tuple] = {}
        for match in matches:
            for song_id in match.song_ids:
                best.setdefault(song_id, (match.confidence, match.phrase))

        songs = await self.catalog.get_songs(list(best))
        return [
            SearchHit(song=song, score=best[song.id][0], strategy=Strategy.PHRASE, matched=best[song.id][1])
            for song in songs
        ]

    async def _embedding(self, query: str, limit: int) -> List[SearchHit]:
        matches = await self.searcher.find_similar(query, k=limit)
        if not matches:
            return []

        similarity = {m.song_id: m.similarity for m in matches}
        songs = await self.catalog.get_songs(list(similarity))
        return [
            SearchHit(song=song, score=similarity[song.id], strategy=Strategy.EMBEDDING)
            for song in songs
        ]
