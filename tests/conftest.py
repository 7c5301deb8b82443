"""
Pytest fixtures for the song matching tests.
"""
import asyncio
import hashlib
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

import numpy as np
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from catalog.models import AnnHit, Song  # noqa: E402
from catalog.store import SongCatalog, VECTOR_SPACES  # noqa: E402
from embed.embedder import EmbeddingError  # noqa: E402
from moderation.gate import ModerationGate  # noqa: E402
from search.catalog_search import SongSearchService  # noqa: E402
from search.lexicon import PhraseLexicon  # noqa: E402
from search.matcher import MatchingConfig, SongMatcher  # noqa: E402
from search.semantic import SemanticSearcher  # noqa: E402

TEST_DIM = 16


def run(coro):
    return asyncio.run(coro)


def hash_vector(text: str, dim: int = TEST_DIM) -> np.ndarray:
    seed = int(hashlib.md5(text.encode("utf-8")).hexdigest()[:8], 16)
    vector = np.random.default_rng(seed).standard_normal(dim).astype(np.float32)
    return vector / np.linalg.norm(vector)


class HashEmbedder:
    """Deterministic stand-in for the sentence-transformers provider."""

    model_name = "hash-test"

    def __init__(self, dimension: int = TEST_DIM):
        self.dimension = dimension
        self.calls = 0

    async def embed(self, text: str) -> np.ndarray:
        self.calls += 1
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        return hash_vector(text.lower(), self.dimension)


class FailingEmbedder:
    model_name = "failing"
    dimension = TEST_DIM

    async def embed(self, text: str) -> np.ndarray:
        raise EmbeddingError("provider down")


class StaticEmbedder:
    """Always returns ``vector``, whatever it is."""

    model_name = "static"
    dimension = TEST_DIM

    def __init__(self, vector):
        self.vector = vector

    async def embed(self, text: str):
        return self.vector


class StubCatalog:
    """Catalog store whose ANN answers are scripted per vector space."""

    def __init__(self, songs: Iterable[Song], ann_hits: Dict[str, List[AnnHit]] = None, fail_spaces=()):
        self.songs = {s.id: s for s in songs}
        self.ann_hits = ann_hits or {}
        self.fail_spaces = set(fail_spaces)
        self.ann_calls = []

    async def get_song(self, song_id):
        return self.songs.get(song_id)

    async def get_songs(self, song_ids: Sequence[str], include_placeholders: bool = False):
        found = []
        for song_id in song_ids:
            song = self.songs.get(song_id)
            if song is None or (song.is_placeholder and not include_placeholders):
                continue
            found.append(song)
        return found

    async def all_songs(self):
        return [s for s in self.songs.values() if not s.is_placeholder]

    async def popular_songs(self, limit, exclude_tags=()):
        ranked = sorted(
            (s for s in self.songs.values() if not s.is_placeholder),
            key=lambda s: s.popularity,
            reverse=True,
        )
        exclude_tags = list(exclude_tags)
        if exclude_tags:
            ranked = [s for s in ranked if not s.has_any_tag(exclude_tags)]
        return ranked[:limit]

    async def ann_query(self, vector, k, space="meta"):
        self.ann_calls.append(space)
        if space in self.fail_spaces:
            raise RuntimeError(f"ANN backend unavailable for {space}")
        return list(self.ann_hits.get(space, []))[:k]

    async def song_vector(self, song_id, space="meta"):
        song = self.songs.get(song_id)
        return getattr(song, VECTOR_SPACES[space]) if song else None

    async def search_text(self, query, limit=20):
        return []


def make_song(song_id, artist="Artist", year=None, popularity=50, tags=(), title=None, **kwargs) -> Song:
    return Song(
        id=song_id,
        title=title or f"Title {song_id}",
        artist=artist,
        year=year,
        popularity=popularity,
        tags=frozenset(tags),
        **kwargs,
    )


def hits(*pairs) -> List[AnnHit]:
    """``hits(("s1", 0.91), ("s2", 0.45))`` -> AnnHits with distance = 1 - similarity."""
    return [AnnHit(song_id=song_id, distance=1.0 - similarity) for song_id, similarity in pairs]


def build_matcher(catalog, lexicon=None, embedder=None, config=None, use_reranking=False) -> SongMatcher:
    searcher = SemanticSearcher(
        catalog,
        embedder or HashEmbedder(),
        knn_size=20,
        use_reranking=use_reranking,
        dim=TEST_DIM,
    )
    return SongMatcher(catalog, lexicon or PhraseLexicon(), searcher, config or MatchingConfig())


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def beatles_songs():
    """Scenario catalog: "Hey Jude" plus 50 distinct filler songs."""
    songs = [
        Song(
            id="s1",
            title="Hey Jude",
            artist="The Beatles",
            year=1968,
            popularity=90,
            phrases=frozenset({"hey jude"}),
            embedding=hash_vector("hey jude"),
        )
    ]
    for i in range(50):
        songs.append(Song(
            id=f"f{i}",
            title=f"Filler Song {i}",
            artist=f"Filler Artist {i}",
            year=1960 + (i % 6) * 10,
            popularity=i,
            tags=frozenset({"explicit"}) if i % 10 == 0 else frozenset(),
            embedding=hash_vector(f"filler song {i}"),
        ))
    songs.append(Song(
        id="p1",
        title="Placeholder",
        artist="Nobody",
        popularity=100,
        is_placeholder=True,
        embedding=hash_vector("placeholder"),
    ))
    return songs


@pytest.fixture
def catalog(beatles_songs):
    return SongCatalog(beatles_songs, dim=TEST_DIM)


@pytest.fixture
def lexicon():
    return PhraseLexicon({
        "hey jude": ["s1"],
        "filler anthem": ["f1", "f2"],
        "placeholder vibes": ["p1"],
    })


@pytest.fixture
def matcher(catalog, lexicon, embedder):
    return build_matcher(catalog, lexicon, embedder)


@pytest.fixture
def search_service(catalog, lexicon, embedder):
    searcher = SemanticSearcher(catalog, embedder, use_reranking=True, dim=TEST_DIM)
    return SongSearchService(catalog, lexicon, searcher)


@pytest.fixture
def gate():
    return ModerationGate()
