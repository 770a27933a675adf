"""Unit tests for catalog snapshots and candidate generation

Tests the tier-3 prefilter:
- Small catalogs are returned whole
- Large catalogs keep exactly the entries whose score ceiling reaches the threshold
- Alias-only, embedding-only and fuzzy-only entries are not lost by the prefilter
"""

from uuid import uuid4

import pytest

from partmatch.config import Settings
from partmatch.matching.candidates import AliasIndex, CandidateGenerator, CatalogSnapshot
from partmatch.matching.ports import AliasRecord

from tests.fixtures.matching import catalog_item, sample_items


def _bolts(count: int):
    return [catalog_item(f"B-{i:03d}", f"Carriage Bolt {i}") for i in range(count)]


def _fuzzy_catalog():
    # "zabw" shares no trigram with "xaby" but is one edit pair away
    return [
        catalog_item("T-1", "zabw"),
        catalog_item("Q-0", "qqq0"),
        catalog_item("Q-1", "qqq1"),
        catalog_item("X-1", "xab"),
        catalog_item("X-2", "xaq"),
    ]


class TestCatalogSnapshot:
    """Test cases for CatalogSnapshot"""

    def test_entries_normalized_and_sorted(self):
        snapshot = CatalogSnapshot(sample_items())

        ids = [entry.id for entry in snapshot]
        assert ids == sorted(ids)
        assert snapshot.get("XUA27349").norm_name == "w236 1 1/2 x 1/2 x 1/4 a60r"
        assert "56X212C8" in snapshot
        assert "missing" not in snapshot
        assert len(snapshot) == 5

    def test_trigram_prefilter_only_returns_sharing_entries(self):
        snapshot = CatalogSnapshot(sample_items())
        scores = snapshot.trigram_prefilter("w236")

        assert "XUA27349" in scores
        assert scores["XUA27349"] == pytest.approx(5 / 18)
        assert "GLV-0009" not in scores

    def test_nearest_neighbours(self):
        snapshot = CatalogSnapshot([
            catalog_item("A", "alpha", embedding=(1.0, 0.0)),
            catalog_item("B", "beta", embedding=(0.6, 0.8)),
            catalog_item("C", "gamma", embedding=(-1.0, 0.0)),
            catalog_item("D", "delta"),
        ])
        neighbours = snapshot.nearest([1.0, 0.0], k=3)

        assert [entry_id for entry_id, _ in neighbours] == ["A", "B"]
        assert neighbours[0][1] == pytest.approx(1.0)
        assert neighbours[1][1] == pytest.approx(0.6)

    def test_nearest_ignores_mismatched_dimensions(self):
        snapshot = CatalogSnapshot([
            catalog_item("A", "alpha", embedding=(1.0, 0.0)),
            catalog_item("B", "beta", embedding=(1.0, 0.0)),
            catalog_item("C", "gamma", embedding=(1.0, 0.0, 0.0)),
        ])
        assert [entry_id for entry_id, _ in snapshot.nearest([1.0, 0.0], k=5)] == ["A", "B"]
        assert snapshot.nearest([1.0, 0.0, 0.0], k=5) == []


class TestCandidateGenerator:
    """Test cases for CandidateGenerator"""

    def test_empty_query(self):
        generator = CandidateGenerator(Settings())
        assert generator.generate("", CatalogSnapshot(sample_items())) == []

    def test_small_catalog_returned_whole(self):
        """Given a catalog below the cap, then every entry is a candidate"""
        generator = CandidateGenerator(Settings())
        snapshot = CatalogSnapshot(sample_items())
        assert len(generator.generate("qqq", snapshot)) == len(snapshot)

    def test_large_catalog_pruned_by_score_ceiling(self):
        """Given a high threshold, then only entries that can still reach it remain"""
        generator = CandidateGenerator(Settings(MATCH_MAX_CANDIDATES=10))
        snapshot = CatalogSnapshot(_bolts(40) + sample_items())

        candidates = generator.generate("carriage bolt 7", snapshot, threshold=0.7)

        assert [entry.id for entry in candidates] == ["B-007"]

    def test_reachable_entries_kept_beyond_cap(self):
        generator = CandidateGenerator(Settings(MATCH_MAX_CANDIDATES=10))
        snapshot = CatalogSnapshot(_bolts(40) + sample_items())

        candidates = generator.generate("carriage bolt 7", snapshot, threshold=0.2)

        ids = [entry.id for entry in candidates]
        assert ids[0] == "B-007"
        assert {f"B-{i:03d}" for i in range(40)} <= set(ids)

    def test_unrelated_entries_not_candidates(self):
        generator = CandidateGenerator(Settings(MATCH_MAX_CANDIDATES=3))
        snapshot = CatalogSnapshot(_bolts(5) + sample_items())

        candidates = generator.generate("nitrile gloves", snapshot)

        assert candidates[0].id == "GLV-0009"
        assert not any(entry.id.startswith("B-") for entry in candidates)

    def test_fuzzy_only_entry_included(self):
        """An entry sharing no trigram with the query still passes on edit distance alone"""
        generator = CandidateGenerator(Settings(MATCH_MAX_CANDIDATES=3))
        snapshot = CatalogSnapshot(_fuzzy_catalog())

        assert "T-1" not in snapshot.trigram_prefilter("xaby")
        candidates = generator.generate("xaby", snapshot, threshold=0.05)

        assert "T-1" in {entry.id for entry in candidates}

    def test_zero_threshold_returns_whole_catalog(self):
        generator = CandidateGenerator(Settings(MATCH_MAX_CANDIDATES=3))
        snapshot = CatalogSnapshot(_bolts(10))
        assert len(generator.generate("qqq", snapshot, threshold=0.0)) == 10

    def test_alias_only_entry_included(self):
        """An entry reachable only through a literal alias is not lost by the prefilter"""
        generator = CandidateGenerator(Settings(MATCH_MAX_CANDIDATES=3))
        snapshot = CatalogSnapshot(_bolts(20) + [catalog_item("ZZ-1", "Qwerty")])
        aliases = AliasIndex([
            AliasRecord(
                id=uuid4(),
                catalog_entry_id="ZZ-1",
                competitor_name="Carriage Bolt",
                normalized_name="carriage bolt",
                confidence=1.0,
            )
        ])

        candidates = generator.generate("carriage bolt", snapshot, aliases)

        assert "ZZ-1" in {entry.id for entry in candidates}
        assert "ZZ-1" not in {entry.id for entry in generator.generate("carriage bolt", snapshot)}

    def test_vector_neighbour_included(self):
        generator = CandidateGenerator(Settings(MATCH_MAX_CANDIDATES=3))
        snapshot = CatalogSnapshot(_bolts(20) + [catalog_item("EMB-1", "Qwerty", embedding=(0.0, 1.0))])

        candidates = generator.generate("qqq", snapshot, query_embedding=[0.0, 1.0])

        assert [entry.id for entry in candidates] == ["EMB-1"]

    def test_deterministic(self):
        generator = CandidateGenerator(Settings(MATCH_MAX_CANDIDATES=10))
        snapshot = CatalogSnapshot(_bolts(40))
        runs = {tuple(e.id for e in generator.generate("carriage bolt", snapshot)) for _ in range(3)}
        assert len(runs) == 1
