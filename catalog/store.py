import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import numpy as np
import polars as pl

from catalog.models import AnnHit, Song, CATALOG_SCHEMA, REQUIRED_COLUMNS
from config.settings import EMBEDDING_DIM, ANN_HNSW_MIN_SIZE
from index.faiss_index import build_index, search_index

logger = logging.getLogger(__name__)

# ANN space name -> Song attribute holding the vector
VECTOR_SPACES = {
    "meta": "embedding",
    "aboutness": "aboutness_embedding",
}


class CatalogStore(Protocol):
    """Read-only catalog access consumed by the matching engine."""

    async def get_song(self, song_id: str) -> Optional[Song]: ...

    async def get_songs(self, song_ids: Sequence[str], include_placeholders: bool = False) -> List[Song]: ...

    async def all_songs(self) -> List[Song]: ...

    async def popular_songs(self, limit: int, exclude_tags: Iterable[str] = ()) -> List[Song]: ...

    async def ann_query(self, vector: np.ndarray, k: int, space: str = "meta") -> List[AnnHit]: ...

    async def song_vector(self, song_id: str, space: str = "meta") -> Optional[np.ndarray]: ...

    async def search_text(self, query: str, limit: int = 20) -> List[Tuple[Song, str]]: ...


class SongCatalog:
    """In-memory catalog: a polars metadata frame plus one FAISS index per vector space.

    Placeholder songs are kept for ID lookups but never indexed and never
    returned by the bulk, popularity or ANN queries.
    """

    def __init__(
        self,
        songs: Iterable[Song],
        dim: int = EMBEDDING_DIM,
        hnsw_min_size: int = ANN_HNSW_MIN_SIZE
    ):
        self.dim = dim
        self._songs: Dict[str, Song] = {}
        for song in songs:
            for attr in VECTOR_SPACES.values():
                vector = getattr(song, attr)
                if vector is not None and np.asarray(vector).size != dim:
                    raise ValueError(
                        f"Song {song.id}: {attr} has {np.asarray(vector).size} dims, expected {dim}"
                    )
            self._songs[song.id] = song

        self.frame = pl.DataFrame(
            [
                {
                    "id": s.id,
                    "title": s.title,
                    "artist": s.artist,
                    "year": s.year,
                    "popularity": s.popularity,
                    "is_placeholder": s.is_placeholder,
                }
                for s in self._songs.values()
            ],
            schema={
                "id": pl.Utf8,
                "title": pl.Utf8,
                "artist": pl.Utf8,
                "year": pl.Int32,
                "popularity": pl.Int32,
                "is_placeholder": pl.Boolean,
            },
        )

        self._indexes = {}
        for space, attr in VECTOR_SPACES.items():
            ids = [
                s.id for s in self._songs.values()
                if not s.is_placeholder and getattr(s, attr) is not None
            ]
            if not ids:
                continue
            matrix = np.vstack([np.asarray(getattr(self._songs[i], attr), dtype=np.float32) for i in ids])
            self._indexes[space] = (build_index(matrix, dim=dim, hnsw_min_size=hnsw_min_size), ids)

        logger.info(
            "Catalog ready: %d songs, indexed spaces=%s",
            len(self._songs),
            {space: len(ids) for space, (_, ids) in self._indexes.items()},
        )

    @classmethod
    def from_frame(cls, df: pl.DataFrame, **kwargs) -> "SongCatalog":
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"Catalog frame is missing columns: {missing}")

        songs = []
        for row in df.iter_rows(named=True):
            songs.append(Song(
                id=str(row["id"]),
                title=row["title"] or "",
                artist=row["artist"] or "",
                year=row.get("year"),
                popularity=int(row.get("popularity") or 0),
                tags=frozenset(row.get("tags") or ()),
                phrases=frozenset(row.get("phrases") or ()),
                embedding=_as_vector(row.get("embedding")),
                aboutness_embedding=_as_vector(row.get("aboutness_embedding")),
                is_placeholder=bool(row.get("is_placeholder") or False),
                mbid=row.get("mbid"),
            ))
        return cls(songs, **kwargs)

    @classmethod
    def from_parquet(cls, path: Path, **kwargs) -> "SongCatalog":
        df = pl.read_parquet(path)
        extra = {c: t for c, t in CATALOG_SCHEMA.items() if c in df.columns}
        df = df.cast(extra, strict=False)
        logger.info("Loaded catalog frame from %s (%d rows)", path, df.height)
        return cls.from_frame(df, **kwargs)

    def __len__(self) -> int:
        return len(self._songs)

    def __contains__(self, song_id: str) -> bool:
        return song_id in self._songs

    def indexed_spaces(self) -> List[str]:
        return list(self._indexes)

    async def get_song(self, song_id: str) -> Optional[Song]:
        return self._songs.get(song_id)

    async def get_songs(self, song_ids: Sequence[str], include_placeholders: bool = False) -> List[Song]:
        found = []
        for song_id in song_ids:
            song = self._songs.get(song_id)
            if song is None:
                continue
            if song.is_placeholder and not include_placeholders:
                continue
            found.append(song)
        return found

    async def all_songs(self) -> List[Song]:
        return [s for s in self._songs.values() if not s.is_placeholder]

    async def popular_songs(self, limit: int, exclude_tags: Iterable[str] = ()) -> List[Song]:
        exclude_tags = list(exclude_tags)
        ranked = (
            self.frame
            .filter(~pl.col("is_placeholder"))
            .sort("popularity", descending=True, maintain_order=True)
        )

        songs = []
        for song_id in ranked["id"].to_list():
            song = self._songs[song_id]
            if exclude_tags and song.has_any_tag(exclude_tags):
                continue
            songs.append(song)
            if len(songs) >= limit:
                break
        return songs

    async def ann_query(self, vector: np.ndarray, k: int, space: str = "meta") -> List[AnnHit]:
        if space not in VECTOR_SPACES:
            raise ValueError(f"Unknown vector space: {space}")
        if space not in self._indexes:
            return []

        index, ids = self._indexes[space]
        scores, indices = search_index(index, vector, k=k, ef_search=k * 2)

        hits = []
        for score, idx in zip(scores, indices):
            if idx < 0:
                continue
            hits.append(AnnHit(song_id=ids[idx], distance=float(1.0 - score)))
        hits.sort(key=lambda h: h.distance)
        return hits

    async def song_vector(self, song_id: str, space: str = "meta") -> Optional[np.ndarray]:
        song = self._songs.get(song_id)
        if song is None:
            return None
        return getattr(song, VECTOR_SPACES[space])

    async def search_text(self, query: str, limit: int = 20) -> List[Tuple[Song, str]]:
        needle = query.lower().strip()
        if not needle:
            return []

        live = self.frame.filter(~pl.col("is_placeholder"))
        title_hits = live.filter(
            pl.col("title").str.to_lowercase().str.contains(needle, literal=True)
        ).sort("popularity", descending=True)
        artist_hits = live.filter(
            pl.col("artist").str.to_lowercase().str.contains(needle, literal=True)
        ).sort("popularity", descending=True)

        results = []
        seen = set()
        for frame, field_name in ((title_hits, "title"), (artist_hits, "artist")):
            for song_id in frame["id"].to_list():
                if song_id in seen:
                    continue
                seen.add(song_id)
                results.append((self._songs[song_id], field_name))
        return results[:limit]


def _as_vector(value) -> Optional[np.ndarray]:
    if value is None:
        return None
    vector = np.asarray(value, dtype=np.float32)
    if vector.size == 0:
        return None
    return vector
