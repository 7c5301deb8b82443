from catalog.models import Song, AnnHit, decade_bucket
from catalog.store import CatalogStore, SongCatalog, VECTOR_SPACES

__all__ = [
    "Song",
    "AnnHit",
    "decade_bucket",
    "CatalogStore",
    "SongCatalog",
    "VECTOR_SPACES",
]
