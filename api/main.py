import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from catalog.store import SongCatalog
from config.settings import (
    CATALOG_PATH,
    LEXICON_PATH,
    EMBEDDING_DIM,
    EMBED_CACHE_TTL,
    MATCH_TIMEOUT_SECONDS,
    REDIS_ENABLED,
    REDIS_HOST,
    REDIS_PORT,
)
from embed.embedder import SentenceTransformerEmbedder
from moderation.gate import GateOutcome, ModerationGate
from moderation.service import ModerationConfig
from search.cache import EmbeddingCache
from search.catalog_search import SongSearchService
from search.lexicon import PhraseLexicon
from search.matcher import CatalogEmptyError, MatchingConfig, SongMatcher
from search.semantic import SemanticSearcher

logger = logging.getLogger(__name__)


class MapRequest(BaseModel):
    text: str = ""
    allow_explicit: bool = False
    user_id: Optional[str] = None
    recent_history: List[str] = []
    strict_mode: bool = False
    allow_nsfw: bool = False


class PhraseRequest(BaseModel):
    phrase: str
    song_ids: List[str] = Field(..., min_length=1)


@dataclass
class Services:
    catalog: SongCatalog
    lexicon: PhraseLexicon
    matcher: SongMatcher
    search: SongSearchService
    gate: ModerationGate
    cache: Optional[EmbeddingCache] = None


def build_services() -> Services:
    """Load catalog, lexicon and embedding model from the configured paths."""
    catalog = SongCatalog.from_parquet(CATALOG_PATH, dim=EMBEDDING_DIM)
    lexicon = PhraseLexicon.from_json(LEXICON_PATH, missing_ok=True)

    embedder = SentenceTransformerEmbedder(dimension=EMBEDDING_DIM)
    embedder.load()
    cache = EmbeddingCache(
        host=REDIS_HOST,
        port=REDIS_PORT,
        ttl_seconds=EMBED_CACHE_TTL,
        use_redis=REDIS_ENABLED,
    )
    searcher = SemanticSearcher(catalog, embedder, cache=cache)

    return Services(
        catalog=catalog,
        lexicon=lexicon,
        matcher=SongMatcher(catalog, lexicon, searcher, MatchingConfig.from_settings()),
        search=SongSearchService(catalog, lexicon, searcher),
        gate=ModerationGate(),
        cache=cache,
    )


def create_app(services: Services = None) -> FastAPI:
    app = FastAPI(
        title="SongMapper",
        description="Chat text to song matching",
        version="1.0.0"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.services = services

    @app.on_event("startup")
    async def startup():
        if app.state.services is not None:
            return
        logger.info("Loading catalog, lexicon and embedding model...")
        app.state.services = await asyncio.to_thread(build_services)
        logger.info("Ready!")

    def _services(request: Request) -> Services:
        loaded = request.app.state.services
        if loaded is None:
            raise HTTPException(status_code=503, detail="System still loading. Please wait.")
        return loaded

    @app.get("/health")
    async def health(request: Request):
        loaded = request.app.state.services
        if loaded is None:
            return {"status": "loading"}
        return {
            "status": "healthy",
            "songs": len(loaded.catalog),
            "phrases": len(loaded.lexicon),
            "indexed_spaces": loaded.catalog.indexed_spaces(),
            "embedding_cache": loaded.cache.stats() if loaded.cache else None,
        }

    @app.post("/map")
    async def map_message(payload: MapRequest, request: Request):
        svc = _services(request)
        config = ModerationConfig(strict_mode=payload.strict_mode, allow_nsfw=payload.allow_nsfw)

        try:
            outcome = await asyncio.wait_for(
                svc.gate.process(
                    svc.matcher,
                    payload.text,
                    allow_explicit=payload.allow_explicit,
                    user_id=payload.user_id,
                    recent_history=payload.recent_history,
                    config=config,
                ),
                timeout=MATCH_TIMEOUT_SECONDS,
            )
        except CatalogEmptyError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except asyncio.TimeoutError:
            logger.warning("Matching timed out after %.1fs for user=%s", MATCH_TIMEOUT_SECONDS, payload.user_id)
            raise HTTPException(status_code=504, detail="Matching timed out")

        if isinstance(outcome, GateOutcome):
            return outcome.to_dict()

        data = outcome.to_dict()
        data["blocked"] = False
        return data

    @app.get("/api/search")
    async def search_get(
        request: Request,
        q: str = Query(..., description="Search query (title, artist or vibe text)"),
        strategy: str = Query("all", pattern="^(exact|phrase|embedding|all)$"),
        limit: int = Query(20, ge=1, le=200),
        allow_explicit: bool = Query(True)
    ):
        svc = _services(request)
        hits = await svc.search.search(q, limit=limit, strategy=strategy, allow_explicit=allow_explicit)
        results = [h.to_dict() for h in hits]
        return {"query": q, "strategy": strategy, "results": results, "count": len(results)}

    @app.post("/phrases")
    async def add_phrase(payload: PhraseRequest, request: Request):
        svc = _services(request)
        unknown = [s for s in payload.song_ids if s not in svc.catalog]
        if unknown:
            raise HTTPException(status_code=400, detail=f"Unknown song ids: {unknown}")
        try:
            phrase = svc.lexicon.add_phrase(payload.phrase, payload.song_ids)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"phrase": phrase, "song_ids": svc.lexicon.song_ids_for(phrase)}

    @app.get("/lexicon/stats")
    async def lexicon_stats(request: Request):
        return _services(request).lexicon.stats()

    return app


app = create_app()
