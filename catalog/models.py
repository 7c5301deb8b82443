from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

import numpy as np
import polars as pl


CATALOG_SCHEMA = {
    "id": pl.Utf8,
    "title": pl.Utf8,
    "artist": pl.Utf8,
    "year": pl.Int32,
    "popularity": pl.Int32,
    "tags": pl.List(pl.Utf8),
    "phrases": pl.List(pl.Utf8),
    "embedding": pl.List(pl.Float32),
    "aboutness_embedding": pl.List(pl.Float32),
    "is_placeholder": pl.Boolean,
    "mbid": pl.Utf8,
}

REQUIRED_COLUMNS = [
    "id",
    "title",
    "artist",
    "popularity",
]


def decade_bucket(year: Optional[int]) -> Optional[int]:
    if year is None:
        return None
    return (int(year) // 10) * 10


@dataclass(frozen=True, eq=False)
class Song:
    id: str
    title: str
    artist: str
    year: Optional[int] = None
    popularity: int = 0
    tags: FrozenSet[str] = field(default_factory=frozenset)
    phrases: FrozenSet[str] = field(default_factory=frozenset)
    embedding: Optional[np.ndarray] = field(default=None, repr=False)
    aboutness_embedding: Optional[np.ndarray] = field(default=None, repr=False)
    is_placeholder: bool = False
    mbid: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "tags", frozenset(self.tags or ()))
        object.__setattr__(self, "phrases", frozenset(self.phrases or ()))

    def __eq__(self, other):
        if not isinstance(other, Song):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    @property
    def decade(self) -> Optional[int]:
        return decade_bucket(self.year)

    def has_any_tag(self, tags: Iterable[str]) -> bool:
        lowered = {t.lower() for t in self.tags}
        return any(t.lower() in lowered for t in tags)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "year": self.year,
            "decade": self.decade,
            "popularity": self.popularity,
            "tags": sorted(self.tags),
            "phrases": sorted(self.phrases),
            "mbid": self.mbid,
        }


@dataclass(frozen=True)
class AnnHit:
    """One ANN neighbour; ``distance`` is cosine distance (1 - cosine similarity)."""

    song_id: str
    distance: float

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance
