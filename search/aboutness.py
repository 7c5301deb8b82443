"""
Aboutness union + rerank.

Two ANN candidate lists over the same query vector, one from the metadata
embedding space and one from the "aboutness" space (themes, mood, setting),
are unioned and rescored with

    blended = meta_weight * (1 - d_meta) + aboutness_weight * (1 - d_about)

A song missing from one leg contributes 0 for that leg. Ties on the blended
score go to the more popular song.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from catalog.models import AnnHit


@dataclass(frozen=True)
class AboutnessMatch:
    song_id: str
    score: float
    dist_meta: Optional[float] = None
    dist_about: Optional[float] = None
    popularity: int = 0

    @property
    def similarity(self) -> float:
        return self.score


def union_rerank(
    meta_hits: Sequence[AnnHit],
    about_hits: Sequence[AnnHit],
    popularity: Dict[str, int],
    meta_weight: float = 0.6,
    aboutness_weight: float = 0.4,
    limit: int = None
) -> List[AboutnessMatch]:
    meta_map = {h.song_id: h.distance for h in meta_hits}
    about_map = {h.song_id: h.distance for h in about_hits}

    candidate_ids = list(meta_map)
    candidate_ids.extend(sid for sid in about_map if sid not in meta_map)

    matches = []
    for song_id in candidate_ids:
        dist_meta = meta_map.get(song_id)
        dist_about = about_map.get(song_id)
        sim_meta = 1.0 - dist_meta if dist_meta is not None else 0.0
        sim_about = 1.0 - dist_about if dist_about is not None else 0.0

        matches.append(AboutnessMatch(
            song_id=song_id,
            score=meta_weight * sim_meta + aboutness_weight * sim_about,
            dist_meta=dist_meta,
            dist_about=dist_about,
            popularity=popularity.get(song_id, 0),
        ))

    matches.sort(key=lambda m: (m.score, m.popularity), reverse=True)
    if limit is not None:
        matches = matches[:limit]
    return matches
