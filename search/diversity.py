from typing import Iterable, List, Sequence, TypeVar

from catalog.models import Song

T = TypeVar("T")


def history_spans_decades(history: Iterable[Song], min_decades: int = 2) -> bool:
    decades = {s.decade for s in history if s.decade is not None}
    return len(decades) >= min_decades


def same_artist(a: Song, b: Song) -> bool:
    return a.artist.strip().lower() == b.artist.strip().lower()


def too_similar(a: Song, b: Song) -> bool:
    if same_artist(a, b):
        return True
    if a.decade is not None and b.decade is not None and a.decade == b.decade:
        return True
    return False


def select_alternates(
    candidates: Sequence[T],
    song_of=lambda c: c.song,
    max_alternates: int = 2,
    relax: bool = False
) -> List[T]:
    """Pick alternates from ``candidates[1:]`` that differ from the primary and each other.

    Two songs clash when they share an artist (case-insensitive) or a decade
    bucket; decades are only compared when both years are known. ``relax``
    (the user's history already spans several eras) lifts the checks against
    the primary and the decade check between alternates. Two alternates by
    the same artist are never returned.
    """
    if len(candidates) <= 1:
        return []

    primary = song_of(candidates[0])
    alternates: List[T] = []

    for candidate in candidates[1:]:
        if len(alternates) >= max_alternates:
            break

        song = song_of(candidate)
        if song.id == primary.id:
            continue

        clashes = same_artist if relax else too_similar
        if not relax and too_similar(song, primary):
            continue
        if any(clashes(song, song_of(a)) for a in alternates):
            continue

        alternates.append(candidate)

    return alternates
