"""Unit tests for the tiered hybrid matcher

Tests the resolve pipeline end to end over in-memory adapters:
- Tier 1 exact training matches short-circuit everything else
- Tier 2 high-confidence training matches map onto 0.85..0.95
- Tier 3 algorithmic scoring, thresholds and deterministic ordering
- Empty input, parameter clamping and dependency failures
- Batch resolution and explain
"""

from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import REGISTRY

from partmatch.config import Settings
from partmatch.matching.hybrid_matcher import HybridMatcher
from partmatch.matching.normalizer import normalize
from partmatch.matching.ports import (
    DependencyUnavailableError,
    MatcherError,
    MatchQuality,
    MatchTier,
    UnknownCatalogEntryError,
)
from partmatch.matching.similarity import text_similarity

from tests.fixtures.matching import InMemoryCatalogProvider, catalog_item

SCREW_QUERY = "GR. 8 HX HD CAP SCR 5/16-18X2-1/2"


def _resolution_count(tier: str) -> float:
    return REGISTRY.get_sample_value("partmatch_resolutions_total", {"tier": tier}) or 0.0


def _assert_well_formed(results):
    """Score bounds and ranking order hold for every result list."""
    for candidate in results:
        for score in (
            candidate.vector_score,
            candidate.trigram_score,
            candidate.fuzzy_score,
            candidate.alias_score,
            candidate.learned_score,
            candidate.final_score,
        ):
            assert 0.0 <= score <= 1.0
    finals = [c.final_score for c in results]
    assert finals == sorted(finals, reverse=True)


class TestTrainingTiers:
    """Test cases for tier 1 and tier 2"""

    def test_exact_training_match(self, matcher, store, org_id):
        """Given an approved example equal to the query, then only training_exact rows at 1.0"""
        store.add_example(org_id, SCREW_QUERY, "56X212C8", confidence=0.97)

        results = matcher.resolve(SCREW_QUERY, org_id)

        assert results[0].entry.id == "56X212C8"
        assert results[0].final_score == 1.0
        assert results[0].tier == MatchTier.TRAINING_EXACT
        assert results[0].is_training_match is True
        assert results[0].matched_via == "training"
        assert len(results) == 1
        assert all(c.tier == MatchTier.TRAINING_EXACT for c in results)

    def test_exact_tier_excludes_other_tiers(self, matcher, store, org_id):
        store.add_example(org_id, SCREW_QUERY, "56X212C8")
        store.add_example(org_id, "gr. 8 hex head cap screw 5/16 18x2", "NUT-0500")

        results = matcher.resolve(SCREW_QUERY, org_id, threshold=0.0)

        assert {c.tier for c in results} == {MatchTier.TRAINING_EXACT}
        assert [c.entry.id for c in results] == ["56X212C8"]

    def test_exact_tier_ordered_by_weight_then_recency(self, matcher, store, org_id):
        now = datetime.now(timezone.utc)
        store.add_example(org_id, SCREW_QUERY, "NUT-0500", weight=1.0, age_days=5, now=now)
        store.add_example(org_id, SCREW_QUERY, "WSH-0250", weight=1.0, age_days=1, now=now)
        store.add_example(org_id, SCREW_QUERY, "56X212C8", weight=2.0, age_days=30, now=now)

        results = matcher.resolve(SCREW_QUERY, org_id)

        assert [c.entry.id for c in results] == ["56X212C8", "WSH-0250", "NUT-0500"]
        assert all(c.final_score == 1.0 for c in results)

    def test_high_confidence_training_match(self, matcher, store, org_id, settings):
        query = "hex head cap screw 1/2 13x2"
        example = "hex head cap screw 1/2 13x3"
        store.add_example(org_id, example, "56X212C8")
        similarity = text_similarity(normalize(query), example)

        results = matcher.resolve(query, org_id)

        assert 0.80 <= similarity < 0.95
        assert [c.entry.id for c in results] == ["56X212C8"]
        assert results[0].tier == MatchTier.TRAINING_HIGH
        assert results[0].final_score == pytest.approx(0.85 + (similarity - 0.80) * settings.tier_high_scaling)
        assert 0.85 <= results[0].final_score < 0.95

    def test_training_tiers_ignore_threshold(self, matcher, store, org_id):
        store.add_example(org_id, "hex head cap screw 1/2 13x3", "56X212C8")
        results = matcher.resolve("hex head cap screw 1/2 13x2", org_id, threshold=0.99)
        assert results[0].tier == MatchTier.TRAINING_HIGH

    def test_unqualified_examples_fall_through_to_algorithmic(self, matcher, store, org_id):
        store.add_example(org_id, SCREW_QUERY, "56X212C8", quality=MatchQuality.FAIR)
        store.add_example(org_id, SCREW_QUERY, "NUT-0500", age_days=300)

        results = matcher.resolve(SCREW_QUERY, org_id)

        assert results
        assert all(c.tier == MatchTier.ALGORITHMIC for c in results)

    def test_weak_training_reported_as_learned_score(self, matcher, store, org_id):
        """Examples below tier 2 surface as learned_score on algorithmic candidates"""
        store.add_example(org_id, "hex nut 1/2 13 zp", "NUT-0500")

        results = matcher.resolve("hex nut 1/2 13", org_id)

        top = results[0]
        assert top.entry.id == "NUT-0500"
        assert top.tier == MatchTier.ALGORITHMIC
        assert top.learned_score > 0.0

    def test_exact_example_beyond_per_entry_cap_stays_exact(self, matcher, store, org_id):
        """An exact example keeps tier 1 when more trusted variants fill the learned-score cap"""
        store.add_example(org_id, SCREW_QUERY, "56X212C8", confidence=0.75)
        for i in range(20):
            store.add_example(org_id, f"{SCREW_QUERY} lot {i}", "56X212C8", confidence=0.99)

        results = matcher.resolve(SCREW_QUERY, org_id)

        assert [c.entry.id for c in results] == ["56X212C8"]
        assert results[0].tier == MatchTier.TRAINING_EXACT
        assert results[0].final_score == 1.0


class TestAlgorithmicTier:
    """Test cases for tier 3"""

    def test_part_number_prefix(self, matcher, org_id):
        """Given a bare part number, then the entry whose name starts with it is found"""
        results = matcher.resolve("W236", org_id, threshold=0.1)

        match = next(c for c in results if c.entry.id == "XUA27349")
        assert match.tier == MatchTier.ALGORITHMIC
        assert match.trigram_score > 0
        assert match.is_training_match is False
        _assert_well_formed(results)

    def test_threshold_filters(self, matcher, org_id):
        assert matcher.resolve("W236", org_id, threshold=0.5) == []

    def test_competitor_alias(self, matcher, store, org_id):
        store.add_alias(org_id, "ACME-500", "NUT-0500")

        results = matcher.resolve("Acme 500", org_id)

        assert results[0].entry.id == "NUT-0500"
        assert results[0].alias_score == 1.0
        assert results[0].matched_via == "alias"

    def test_embedding_signal(self, org_id, store, settings):
        catalog = InMemoryCatalogProvider()
        catalog.add(
            org_id,
            catalog_item("A-1", "Angle Grinder Disc", embedding=(1.0, 0.0)),
            catalog_item("A-2", "Angle Grinder Disc", embedding=(0.0, 1.0)),
        )
        matcher = HybridMatcher(catalog, store, settings)

        results = matcher.resolve("angle grinder disc", org_id, query_embedding=[1.0, 0.0])

        assert [c.entry.id for c in results] == ["A-1", "A-2"]
        assert results[0].vector_score == pytest.approx(1.0)
        assert results[1].vector_score == pytest.approx(0.0)

    def test_fuzzy_only_entry_survives_candidate_cap(self, org_id, store, settings):
        """Given a catalog larger than the cap, then entries passing on fuzzy alone are still scored"""
        catalog = InMemoryCatalogProvider()
        catalog.add(
            org_id,
            catalog_item("T-1", "zabw"),
            catalog_item("Q-0", "qqq0"),
            catalog_item("Q-1", "qqq1"),
            catalog_item("X-1", "xab"),
            catalog_item("X-2", "xaq"),
        )
        capped = HybridMatcher(catalog, store, settings.model_copy(update={"MATCH_MAX_CANDIDATES": 3}))
        uncapped = HybridMatcher(catalog, store, settings)

        results = capped.resolve("xaby", org_id, threshold=0.05)

        assert "T-1" in [c.entry.id for c in results]
        assert [(c.entry.id, c.final_score) for c in results] == [
            (c.entry.id, c.final_score) for c in uncapped.resolve("xaby", org_id, threshold=0.05)
        ]

    def test_limit_and_threshold_clamped(self, org_id, store, settings):
        catalog = InMemoryCatalogProvider()
        catalog.add(org_id, *[catalog_item(f"B-{i:03d}", f"Carriage Bolt {i}") for i in range(150)])
        matcher = HybridMatcher(catalog, store, settings)

        results = matcher.resolve("carriage bolt", org_id, limit=1000, threshold=-5)

        assert len(results) == 100
        _assert_well_formed(results)

    def test_minimum_limit(self, matcher, org_id):
        assert len(matcher.resolve("hex", org_id, limit=0, threshold=0.0)) == 1

    def test_ties_broken_deterministically(self, org_id, store, settings):
        catalog = InMemoryCatalogProvider()
        catalog.add(
            org_id,
            catalog_item("N-2", "Hex Nut 1/2", sku="HN-12", manufacturer="Fastenal"),
            catalog_item("N-1", "Hex Nut 1/2", sku="HN-12", manufacturer="Fastenal"),
        )
        matcher = HybridMatcher(catalog, store, settings)

        runs = [matcher.resolve("hex nut 1/2", org_id) for _ in range(5)]

        for results in runs:
            assert [c.entry.id for c in results] == ["N-1", "N-2"]
            assert results[0].final_score == results[1].final_score

    @pytest.mark.parametrize("query", [
        SCREW_QUERY,
        "W236",
        "hex nut",
        "stainless washer 1/4",
        "%%%% ????",
        "x" * 300,
        "1/2",
    ])
    def test_results_well_formed(self, matcher, org_id, query):
        _assert_well_formed(matcher.resolve(query, org_id, threshold=0.0))


class TestEdgeCases:
    """Test cases for empty input and failures"""

    @pytest.mark.parametrize("query", ["", None, "   ", "!!!"])
    def test_empty_query_returns_empty_list(self, matcher, catalog, org_id, query):
        assert matcher.resolve(query, org_id) == []
        assert catalog.snapshot_calls == 0

    def test_unknown_org_returns_empty_list(self, matcher, other_org_id):
        assert matcher.resolve("hex nut", other_org_id) == []

    def test_catalog_unavailable(self, matcher, catalog, org_id):
        catalog.unavailable = True
        with pytest.raises(DependencyUnavailableError):
            matcher.resolve("hex nut", org_id)

    def test_training_store_unavailable(self, matcher, store, org_id):
        store.unavailable = True
        with pytest.raises(DependencyUnavailableError):
            matcher.resolve("hex nut", org_id)

    def test_unexpected_error_wrapped(self, matcher, store, org_id, monkeypatch):
        def broken(org_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(store, "list_aliases", broken)

        with pytest.raises(MatcherError) as exc_info:
            matcher.resolve("hex nut", org_id)

        assert not isinstance(exc_info.value, DependencyUnavailableError)
        assert isinstance(exc_info.value.__cause__, RuntimeError)


class TestResolveBatch:
    """Test cases for batch resolution"""

    QUERIES = ["W236", "", None, SCREW_QUERY, "hex nut"]

    def _signature(self, results):
        return [(c.entry.id, c.tier, round(c.final_score, 9)) for c in results]

    def test_results_keep_input_order(self, matcher, store, org_id):
        store.add_example(org_id, SCREW_QUERY, "56X212C8")

        batch = matcher.resolve_batch(self.QUERIES, org_id, threshold=0.1)

        assert len(batch) == len(self.QUERIES)
        assert batch[1] == [] and batch[2] == []
        assert batch[3][0].tier == MatchTier.TRAINING_EXACT
        for query, results in zip(self.QUERIES, batch):
            assert self._signature(results) == self._signature(matcher.resolve(query, org_id, threshold=0.1))

    def test_parallel_workers(self, catalog, store, org_id):
        matcher = HybridMatcher(catalog, store, Settings(BATCH_MAX_WORKERS=4))
        queries = self.QUERIES * 4

        batch = matcher.resolve_batch(queries, org_id, threshold=0.1)

        sequential = [matcher.resolve(q, org_id, threshold=0.1) for q in queries]
        assert [self._signature(r) for r in batch] == [self._signature(r) for r in sequential]

    def test_empty_batch(self, matcher, org_id):
        assert matcher.resolve_batch([], org_id) == []

    def test_embeddings_must_align(self, matcher, org_id):
        with pytest.raises(ValueError):
            matcher.resolve_batch(["a", "b"], org_id, query_embeddings=[[1.0]])

    def test_failure_propagates(self, matcher, catalog, org_id):
        catalog.unavailable = True
        with pytest.raises(DependencyUnavailableError):
            matcher.resolve_batch(["hex nut", "W236"], org_id)


class TestExplain:
    """Test cases for explain()"""

    def test_entry_in_results(self, matcher, org_id):
        candidate = matcher.explain("W236", org_id, "XUA27349")
        assert candidate.entry.id == "XUA27349"
        assert candidate.tier == MatchTier.ALGORITHMIC
        assert candidate.trigram_score > 0

    def test_training_entry(self, matcher, store, org_id):
        store.add_example(org_id, SCREW_QUERY, "56X212C8")
        candidate = matcher.explain(SCREW_QUERY, org_id, "56X212C8")
        assert candidate.tier == MatchTier.TRAINING_EXACT
        assert candidate.final_score == 1.0

    def test_entry_without_signal_scored_directly(self, matcher, org_id):
        candidate = matcher.explain("W236", org_id, "GLV-0009")
        assert candidate.entry.id == "GLV-0009"
        assert candidate.final_score == 0.0
        assert candidate.tier == MatchTier.ALGORITHMIC

    def test_unknown_entry(self, matcher, org_id):
        with pytest.raises(UnknownCatalogEntryError):
            matcher.explain("W236", org_id, "NOPE-1")

    def test_explain_leaves_counters_and_metrics_alone(self, matcher, store, org_id):
        store.add_example(org_id, SCREW_QUERY, "56X212C8")
        before = _resolution_count(MatchTier.TRAINING_EXACT.value)

        candidate = matcher.explain(SCREW_QUERY, org_id, "56X212C8")

        assert candidate.tier == MatchTier.TRAINING_EXACT
        assert store.touched == []
        assert _resolution_count(MatchTier.TRAINING_EXACT.value) == before

    def test_resolve_counts_references(self, matcher, store, org_id):
        example = store.add_example(org_id, SCREW_QUERY, "56X212C8")
        before = _resolution_count(MatchTier.TRAINING_EXACT.value)

        matcher.resolve(SCREW_QUERY, org_id)

        assert store.touched == [example.id]
        assert _resolution_count(MatchTier.TRAINING_EXACT.value) == before + 1
