"""Tests for search.matcher: the strategy chain, post-filters and result assembly."""

import pytest

from conftest import (
    FailingEmbedder,
    HashEmbedder,
    StubCatalog,
    build_matcher,
    hits,
    make_song,
    run,
)
from catalog.store import SongCatalog
from moderation.gate import ModerationAnnotation
from search.calibration import sigmoid
from search.lexicon import PhraseLexicon
from search.matcher import CatalogEmptyError, MatchingConfig, Strategy


def _scripted(songs, meta_hits, aboutness_hits=None, fail_spaces=(), config=None, lexicon=None):
    ann = {"meta": meta_hits}
    if aboutness_hits is not None:
        ann["aboutness"] = aboutness_hits
    stub = StubCatalog(songs, ann_hits=ann, fail_spaces=fail_spaces)
    return build_matcher(stub, lexicon=lexicon, config=config), stub


class TestLexiconStrategy:
    def test_exact_phrase_hit(self, matcher):
        result = run(matcher.match_songs("hey jude"))
        assert result.primary.id == "s1"
        assert result.strategy == Strategy.PHRASE
        assert result.confidence >= 0.95
        assert result.alternates == []
        assert result.explanation.matched_phrase == "hey jude"
        assert result.explanation.match_type == "exact"

    def test_punctuation_variant(self, matcher):
        result = run(matcher.match_songs("HEY, Jude!!"))
        assert result.primary.id == "s1"
        assert result.strategy == Strategy.PHRASE

    def test_placeholder_only_phrase_falls_through(self, catalog, embedder):
        lexicon = PhraseLexicon({"placeholder vibes": ["p1"]})
        matcher = build_matcher(catalog, lexicon, embedder)
        result = run(matcher.match_songs("placeholder vibes"))
        assert result.primary.id != "p1"
        assert result.strategy == Strategy.EMBEDDING

    def test_unknown_song_ids_ignored(self, catalog, embedder):
        lexicon = PhraseLexicon({"ghost track": ["missing", "s1"]})
        matcher = build_matcher(catalog, lexicon, embedder)
        result = run(matcher.match_songs("ghost track"))
        assert result.primary.id == "s1"
        assert result.explanation.total_candidates == 1

    def test_mood_in_explanation(self, matcher):
        result = run(matcher.match_songs("so sad, play hey jude"))
        assert result.explanation.mood == "sad"


class TestSemanticStrategy:
    def test_decisive_match_has_no_alternates(self):
        songs = [
            make_song("s1", "A", 1990),
            make_song("s2", "B", 2010),
            make_song("s3", "C", 1970),
        ]
        matcher, _ = _scripted(songs, hits(("s1", 0.91), ("s2", 0.45), ("s3", 0.40)))
        result = run(matcher.match_songs("something about rain"))
        assert result.primary.id == "s1"
        assert result.strategy == Strategy.EMBEDDING
        assert result.confidence == pytest.approx(sigmoid(5 * 0.46))
        assert result.alternates == []
        assert result.explanation.similarity == pytest.approx(0.91)

    def test_ambiguous_match_gets_diverse_alternates(self):
        songs = [
            make_song("s1", "A", 1990),
            make_song("s2", "B", 1995),
            make_song("s3", "C", 2010),
            make_song("s4", "A", 1970),
            make_song("s5", "D", 1980),
        ]
        matcher, _ = _scripted(
            songs,
            hits(("s1", 0.55), ("s2", 0.53), ("s3", 0.50), ("s4", 0.48), ("s5", 0.40)),
        )
        result = run(matcher.match_songs("something about rain"))
        assert result.primary.id == "s1"
        assert result.confidence == pytest.approx(sigmoid(0.1), abs=1e-6)
        assert result.confidence < 0.7
        assert [s.id for s in result.alternates] == ["s3", "s5"]
        for alt in result.alternates:
            assert alt.artist != result.primary.artist
            assert alt.decade != result.primary.decade

    def test_history_across_decades_relaxes_diversity(self):
        songs = [
            make_song("s1", "A", 1990),
            make_song("s2", "A", 1995),
            make_song("s3", "C", 2010),
            make_song("h1", "X", 1975),
            make_song("h2", "Y", 2005),
        ]
        matcher, _ = _scripted(songs, hits(("s1", 0.55), ("s2", 0.53), ("s3", 0.50)))
        result = run(matcher.match_songs("something", recent_history=["h1", "h2"]))
        assert [s.id for s in result.alternates] == ["s2", "s3"]

    def test_placeholders_refiltered(self):
        songs = [
            make_song("ph", "P", 1990, is_placeholder=True),
            make_song("s1", "A", 2000),
        ]
        matcher, _ = _scripted(songs, hits(("ph", 0.99), ("s1", 0.60)))
        result = run(matcher.match_songs("anything"))
        assert result.primary.id == "s1"
        assert all(c.song.id != "ph" for c in result.candidates)

    def test_semantic_candidates_capped(self):
        songs = [make_song(f"s{i}", f"Artist {i}") for i in range(15)]
        matcher, _ = _scripted(songs, hits(*[(f"s{i}", 0.9 - i * 0.01) for i in range(15)]))
        result = run(matcher.match_songs("anything"))
        assert len(result.candidates) == 10

    def test_provider_failure_falls_back_to_popularity(self, catalog, lexicon):
        matcher = build_matcher(catalog, lexicon, FailingEmbedder())
        result = run(matcher.match_songs("nothing in the lexicon"))
        assert result.strategy == Strategy.POPULARITY_FALLBACK
        assert result.explanation.fallback_reason == "lexicon_and_semantic_empty"

    def test_semantic_hits_on_real_catalog(self, catalog):
        matcher = build_matcher(catalog, PhraseLexicon(), HashEmbedder())
        result = run(matcher.match_songs("Filler Song 7"))
        assert result.primary.id == "f7"
        assert result.strategy == Strategy.EMBEDDING


class TestAboutnessPath:
    def test_used_when_enabled(self):
        songs = [make_song("s1", "A", 1990, popularity=10), make_song("s2", "B", 2010, popularity=20)]
        matcher, stub = _scripted(
            songs,
            hits(("s1", 0.9)),
            aboutness_hits=hits(("s2", 0.9), ("s1", 0.2)),
            config=MatchingConfig(aboutness_enabled=True),
        )
        result = run(matcher.match_songs("rainy sunday"))
        assert result.strategy == Strategy.ABOUTNESS_RERANK
        assert result.primary.id == "s1"
        assert result.explanation.dist_meta == pytest.approx(0.1)
        assert result.explanation.dist_about == pytest.approx(0.8)

    def test_failure_falls_back_to_standard_search(self):
        songs = [make_song("s1", "A", 1990)]
        matcher, stub = _scripted(
            songs,
            hits(("s1", 0.9)),
            fail_spaces={"aboutness"},
            config=MatchingConfig(aboutness_enabled=True),
        )
        result = run(matcher.match_songs("rainy sunday"))
        assert result.strategy == Strategy.EMBEDDING
        assert result.primary.id == "s1"
        assert stub.ann_calls == ["meta", "aboutness", "meta"]

    def test_disabled_by_default(self):
        matcher, stub = _scripted([make_song("s1")], hits(("s1", 0.9)), aboutness_hits=hits(("s1", 0.9)))
        run(matcher.match_songs("rainy sunday"))
        assert "aboutness" not in stub.ann_calls


class TestPopularityFallback:
    def test_empty_text_is_not_an_error(self, matcher):
        result = run(matcher.match_songs(""))
        assert result.strategy == Strategy.POPULARITY_FALLBACK
        assert result.primary.id == "s1"
        assert [c.song.id for c in result.candidates] == ["s1", "f49", "f48"]
        assert all(c.score == 0.3 for c in result.candidates)

    def test_never_empty(self, matcher):
        for text in ["", "   ", "hey jude", "zzzz qqqq", "Filler Song 3", "!!!"]:
            result = run(matcher.match_songs(text))
            assert result.primary is not None
            assert result.candidates

    def test_all_placeholder_catalog_raises(self):
        catalog = StubCatalog([make_song("p1", is_placeholder=True)])
        matcher = build_matcher(catalog, embedder=FailingEmbedder())
        with pytest.raises(CatalogEmptyError):
            run(matcher.match_songs("anything"))

    def test_empty_catalog_raises(self):
        matcher = build_matcher(SongCatalog([], dim=16), embedder=FailingEmbedder())
        with pytest.raises(CatalogEmptyError):
            run(matcher.match_songs("anything"))

    def test_only_explicit_songs_and_explicit_disallowed(self):
        catalog = StubCatalog([make_song("x1", tags={"explicit"})])
        matcher = build_matcher(catalog, embedder=FailingEmbedder())
        with pytest.raises(CatalogEmptyError):
            run(matcher.match_songs("anything"))
        assert run(matcher.match_songs("anything", allow_explicit=True)).primary.id == "x1"


class TestExplicitFilter:
    def test_explicit_candidates_removed(self):
        songs = [
            make_song("x1", "A", 1990, tags={"Explicit"}),
            make_song("x2", "B", 2000, tags={"profanity"}),
            make_song("c1", "C", 2010),
            make_song("x3", "D", 1980, tags={"adult"}),
        ]
        matcher, _ = _scripted(songs, hits(("x1", 0.9), ("x2", 0.85), ("c1", 0.6), ("x3", 0.5)))
        result = run(matcher.match_songs("anything"))
        assert result.primary.id == "c1"
        assert all(not c.song.tags for c in result.candidates)

    def test_allowed_when_requested(self):
        songs = [make_song("x1", "A", 1990, tags={"explicit"}), make_song("c1", "C", 2010)]
        matcher, _ = _scripted(songs, hits(("x1", 0.9), ("c1", 0.6)))
        result = run(matcher.match_songs("anything", allow_explicit=True))
        assert result.primary.id == "x1"

    def test_filtered_to_empty_reruns_popularity(self):
        songs = [
            make_song("x1", "A", 1990, popularity=99, tags={"explicit"}),
            make_song("c1", "C", 2010, popularity=10),
            make_song("c2", "D", 2000, popularity=20),
        ]
        lexicon = PhraseLexicon({"dirty words": ["x1"]})
        matcher, _ = _scripted(songs, [], lexicon=lexicon)
        result = run(matcher.match_songs("dirty words"))
        assert result.strategy == Strategy.POPULARITY_FALLBACK
        assert result.explanation.fallback_reason == "filtered_to_empty"
        assert [c.song.id for c in result.candidates] == ["c2", "c1"]

    def test_no_explicit_song_ever_returned(self, matcher):
        for text in ["", "Filler Song 0", "Filler Song 10", "filler anthem", "hey jude"]:
            result = run(matcher.match_songs(text))
            for song in [result.primary, *result.alternates]:
                assert not song.has_any_tag({"explicit", "profanity", "adult"})


class TestRecencyFilter:
    def _six(self):
        songs = [make_song(f"s{i}", f"Artist {i}") for i in range(6)]
        return songs, hits(*[(f"s{i}", 0.9 - i * 0.1) for i in range(6)])

    def test_applied_when_floor_holds(self):
        songs, meta = self._six()
        matcher, _ = _scripted(songs, meta)
        result = run(matcher.match_songs("anything", recent_history=["s0"]))
        assert result.primary.id == "s1"
        assert len(result.candidates) == 5

    def test_skipped_below_floor(self):
        songs, meta = self._six()
        matcher, _ = _scripted(songs, meta)
        result = run(matcher.match_songs("anything", recent_history=["s0", "s1"]))
        assert result.primary.id == "s0"
        assert len(result.candidates) == 6

    def test_small_sets_are_left_alone(self, matcher):
        result = run(matcher.match_songs("hey jude", recent_history=["s1"]))
        assert result.primary.id == "s1"


class TestExplanation:
    def test_moderation_annotation_threaded_through(self, matcher):
        annotation = ModerationAnnotation(category="harassment", was_filtered=True, original_text="go die")
        plain = run(matcher.match_songs("hey jude"))
        annotated = run(matcher.match_songs("hey jude", moderation=annotation))
        assert annotated.explanation.moderation == annotation
        assert annotated.primary.id == plain.primary.id
        assert annotated.confidence == plain.confidence

    def test_to_dict(self, matcher):
        data = run(matcher.match_songs("hey jude")).to_dict()
        assert data["primary"]["id"] == "s1"
        assert data["strategy"] == "phrase"
        assert data["alternates"] == []
        assert data["explanation"]["moderation"] is None
        assert data["explanation"]["total_candidates"] == 1
