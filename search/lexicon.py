"""
Phrase Lexicon Index

Static phrase -> song ID mapping with a word-level inverted index, used as the
first (cheapest, most precise) matching strategy.

Lookup runs three tiers and stops at the first tier that produces a hit:

1. exact   - the normalised message contains the whole phrase (confidence 1.0)
2. partial - word overlap between the message and phrase words (max 0.8)
3. fuzzy   - typo tolerant per-word comparison (max 0.6)

The index is read-mostly. Readers grab the current immutable snapshot with a
single attribute read; ``add_phrase`` builds a new snapshot under a writer
lock and swaps it in, so concurrent readers never observe a half-built index.
"""

import json
import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Literal, Mapping, Tuple

from rapidfuzz.distance import Levenshtein

logger = logging.getLogger(__name__)

MatchType = Literal["exact", "partial", "fuzzy"]

MIN_INDEXED_WORD_LENGTH = 3

PARTIAL_MAX_CONFIDENCE = 0.8
PARTIAL_MIN_CONFIDENCE = 0.2
PARTIAL_TOP_N = 5

FUZZY_MIN_OVERLAP = 0.6
FUZZY_MIN_MATCHED_WORDS = 2
FUZZY_CONFIDENCE_FACTOR = 0.6
FUZZY_TOP_N = 3
FUZZY_WORD_SIMILARITY = 0.8
FUZZY_MAX_EDIT_WORD_LENGTH = 6

_PUNCT_RX = re.compile(r"[^\w\s]")
_SPACE_RX = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, turn punctuation into spaces, collapse whitespace."""
    if not text:
        return ""
    text = _PUNCT_RX.sub(" ", text.lower())
    return _SPACE_RX.sub(" ", text).strip()


def _indexable_words(phrase: str) -> List[str]:
    return [w for w in phrase.split() if len(w) >= MIN_INDEXED_WORD_LENGTH]


def words_similar(a: str, b: str, threshold: float = FUZZY_WORD_SIMILARITY) -> bool:
    if a == b:
        return True
    if len(a) < 3 or len(b) < 3:
        return False
    if a in b or b in a:
        return True
    if len(a) <= FUZZY_MAX_EDIT_WORD_LENGTH and len(b) <= FUZZY_MAX_EDIT_WORD_LENGTH:
        return Levenshtein.normalized_similarity(a, b) >= threshold
    return False


@dataclass(frozen=True)
class PhraseMatch:
    phrase: str
    song_ids: List[str]
    confidence: float
    match_type: MatchType

    def to_dict(self) -> dict:
        return {
            "phrase": self.phrase,
            "song_ids": list(self.song_ids),
            "confidence": self.confidence,
            "match_type": self.match_type,
        }


@dataclass(frozen=True)
class _Snapshot:
    phrases: Mapping[str, Tuple[str, ...]]
    word_index: Mapping[str, Tuple[str, ...]]
    song_phrases: Mapping[str, Tuple[str, ...]]


def _merge_ids(existing: Tuple[str, ...], new_ids: Iterable[str]) -> Tuple[str, ...]:
    merged = list(existing)
    seen = set(existing)
    for song_id in new_ids:
        if song_id not in seen:
            seen.add(song_id)
            merged.append(song_id)
    return tuple(merged)


def _build_snapshot(phrases: Dict[str, Tuple[str, ...]]) -> _Snapshot:
    word_index: Dict[str, Tuple[str, ...]] = {}
    song_phrases: Dict[str, Tuple[str, ...]] = {}
    for phrase, song_ids in phrases.items():
        for word in _indexable_words(phrase):
            word_index[word] = _merge_ids(word_index.get(word, ()), song_ids)
        for song_id in song_ids:
            song_phrases[song_id] = _merge_ids(song_phrases.get(song_id, ()), (phrase,))
    return _Snapshot(phrases=phrases, word_index=word_index, song_phrases=song_phrases)


class PhraseLexicon:
    def __init__(self, mapping: Mapping[str, Iterable[str]] = None):
        phrases: Dict[str, Tuple[str, ...]] = {}
        for raw_phrase, song_ids in (mapping or {}).items():
            phrase = normalize_text(raw_phrase)
            if not phrase:
                continue
            phrases[phrase] = _merge_ids(phrases.get(phrase, ()), (str(s) for s in song_ids))

        self._snapshot = _build_snapshot(phrases)
        self._write_lock = threading.Lock()

    @classmethod
    def from_json(cls, path: Path, missing_ok: bool = False) -> "PhraseLexicon":
        path = Path(path)
        if not path.exists():
            if missing_ok:
                logger.warning("Phrase lexicon not found at %s, starting with an empty lexicon", path)
                return cls()
            raise FileNotFoundError(f"Phrase lexicon not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Phrase lexicon must be a JSON object of phrase -> [song ids]: {path}")

        lexicon = cls(data)
        logger.info("Phrase lexicon loaded with %d phrases", len(lexicon))
        return lexicon

    def __len__(self) -> int:
        return len(self._snapshot.phrases)

    def find_phrase_matches(self, text: str) -> List[PhraseMatch]:
        snapshot = self._snapshot
        normalized = normalize_text(text)
        if not normalized:
            return []

        matches = [
            PhraseMatch(phrase=phrase, song_ids=list(ids), confidence=1.0, match_type="exact")
            for phrase, ids in snapshot.phrases.items()
            if phrase in normalized
        ]

        if not matches:
            matches = self._partial_matches(snapshot, normalized)

        if not matches:
            matches = self._fuzzy_matches(snapshot, normalized)

        matches.sort(key=lambda m: m.confidence, reverse=True)
        return matches

    def _partial_matches(self, snapshot: _Snapshot, normalized: str) -> List[PhraseMatch]:
        words = [w for w in normalized.split() if len(w) >= MIN_INDEXED_WORD_LENGTH]
        if not words:
            return []

        counts: Dict[str, int] = {}
        matched_words: Dict[str, set] = {}
        for word in words:
            for song_id in snapshot.word_index.get(word, ()):
                counts[song_id] = counts.get(song_id, 0) + 1
                matched_words.setdefault(song_id, set()).add(word)

        ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:PARTIAL_TOP_N]

        matches = []
        for song_id, word_count in ranked:
            confidence = min(word_count / len(words), PARTIAL_MAX_CONFIDENCE)
            if confidence <= PARTIAL_MIN_CONFIDENCE:
                continue
            hit_words = matched_words[song_id]
            phrases = [
                p for p in snapshot.song_phrases.get(song_id, ())
                if hit_words.intersection(p.split())
            ]
            matches.append(PhraseMatch(
                phrase=", ".join(phrases),
                song_ids=[song_id],
                confidence=confidence,
                match_type="partial",
            ))
        return matches

    def _fuzzy_matches(self, snapshot: _Snapshot, normalized: str) -> List[PhraseMatch]:
        text_words = normalized.split()

        matches = []
        for phrase, ids in snapshot.phrases.items():
            phrase_words = phrase.split()
            matched = sum(
                1 for pw in phrase_words
                if any(words_similar(pw, tw) for tw in text_words)
            )
            similarity = matched / len(phrase_words)
            if similarity >= FUZZY_MIN_OVERLAP and matched >= FUZZY_MIN_MATCHED_WORDS:
                matches.append(PhraseMatch(
                    phrase=phrase,
                    song_ids=list(ids),
                    confidence=similarity * FUZZY_CONFIDENCE_FACTOR,
                    match_type="fuzzy",
                ))

        matches.sort(key=lambda m: m.confidence, reverse=True)
        return matches[:FUZZY_TOP_N]

    def add_phrase(self, phrase: str, song_ids: Iterable[str]) -> str:
        """Merge ``song_ids`` into ``phrase`` and reindex its words. Returns the stored key."""
        normalized = normalize_text(phrase)
        if not normalized:
            raise ValueError("Phrase is empty after normalisation")
        song_ids = [str(s) for s in song_ids]

        with self._write_lock:
            current = self._snapshot
            merged = _merge_ids(current.phrases.get(normalized, ()), song_ids)

            phrases = dict(current.phrases)
            phrases[normalized] = merged

            word_index = dict(current.word_index)
            for word in _indexable_words(normalized):
                word_index[word] = _merge_ids(word_index.get(word, ()), merged)

            song_phrases = dict(current.song_phrases)
            for song_id in merged:
                song_phrases[song_id] = _merge_ids(song_phrases.get(song_id, ()), (normalized,))

            self._snapshot = _Snapshot(phrases=phrases, word_index=word_index, song_phrases=song_phrases)

        logger.info("Added phrase %r -> %d songs", normalized, len(merged))
        return normalized

    def phrases_for_word(self, word: str) -> List[str]:
        needle = normalize_text(word)
        if not needle:
            return []
        return [p for p in self._snapshot.phrases if needle in p]

    def song_ids_for(self, phrase: str) -> List[str]:
        return list(self._snapshot.phrases.get(normalize_text(phrase), ()))

    def stats(self) -> dict:
        snapshot = self._snapshot
        total_phrases = len(snapshot.phrases)
        total_mappings = sum(len(ids) for ids in snapshot.phrases.values())
        return {
            "total_phrases": total_phrases,
            "total_song_mappings": total_mappings,
            "average_songs_per_phrase": total_mappings / total_phrases if total_phrases else 0.0,
            "indexed_words": len(snapshot.word_index),
        }
