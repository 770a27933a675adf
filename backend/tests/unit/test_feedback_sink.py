"""Unit tests for the learning feedback sink

Tests LearningFeedbackSink over the in-memory adapters:
- Approvals are audited only after the training example is stored
- Recovering scores for a decision leaves reference counters alone
- Writes drop the matcher's cached training snapshot
"""

import pytest
from prometheus_client import REGISTRY

from partmatch.config import Settings
from partmatch.feedback.services import LearningFeedbackSink, ReportedScores
from partmatch.matching.hybrid_matcher import HybridMatcher
from partmatch.matching.ports import DependencyUnavailableError, MatchDecision, MatchTier

SCREW_QUERY = "GR. 8 HX HD CAP SCR 5/16-18X2-1/2"


def _decision_count(decision: str) -> float:
    return REGISTRY.get_sample_value("partmatch_feedback_decisions_total", {"decision": decision}) or 0.0


@pytest.fixture
def sink(store, matcher, settings) -> LearningFeedbackSink:
    return LearningFeedbackSink(store, matcher, settings)


class TestRecordDecision:
    """Test cases for LearningFeedbackSink.record_decision"""

    def test_failed_write_records_no_decision(self, sink, store, org_id):
        """Given an unwritable store, then the approval is neither audited nor counted"""
        store.write_unavailable = True
        before = _decision_count("approved")

        with pytest.raises(DependencyUnavailableError):
            sink.record_decision(
                org_id, SCREW_QUERY, "56X212C8", MatchDecision.APPROVED,
                scores=ReportedScores(final_score=0.9),
            )

        assert store.decisions == []
        assert store.examples == {}
        assert store.aliases == {}
        assert _decision_count("approved") == before

    def test_approval_audited_with_example(self, sink, store, org_id):
        before = _decision_count("approved")

        record = sink.record_decision(
            org_id, SCREW_QUERY, "56X212C8", MatchDecision.APPROVED,
            scores=ReportedScores(final_score=0.9),
        )

        assert len(store.examples) == 1
        assert [d["decision"] for d in store.decisions] == [MatchDecision.APPROVED]
        assert store.decisions[0]["catalog_entry_id"] == record.catalog_entry_id
        assert _decision_count("approved") == before + 1

    def test_rejection_audited_only(self, sink, store, org_id):
        assert sink.record_decision(org_id, SCREW_QUERY, "NUT-0500", MatchDecision.REJECTED) is None

        assert store.examples == {}
        assert [d["decision"] for d in store.decisions] == [MatchDecision.REJECTED]

    def test_recovered_scores_touch_nothing(self, sink, store, org_id):
        """Given a decision without scores, then explaining it bumps no reference counter"""
        store.add_example(org_id, SCREW_QUERY, "56X212C8", confidence=0.97)

        record = sink.record_decision(org_id, SCREW_QUERY, "56X212C8", MatchDecision.APPROVED)

        assert store.touched == []
        assert record.times_referenced == 1
        assert store.decisions[0]["candidate"].tier == MatchTier.TRAINING_EXACT


class TestTrainingSnapshotInvalidation:
    """Test cases for cache invalidation on feedback writes"""

    @pytest.fixture
    def cached_matcher(self, catalog, store) -> HybridMatcher:
        return HybridMatcher(catalog, store, Settings(BATCH_MAX_WORKERS=1, TRAINING_SNAPSHOT_TTL_SECONDS=300))

    def test_direct_store_write_stays_cached(self, cached_matcher, store, org_id):
        cached_matcher.resolve("Acme 500 nut", org_id)
        store.add_example(org_id, "Acme 500 nut", "NUT-0500")

        results = cached_matcher.resolve("Acme 500 nut", org_id)

        assert all(c.tier != MatchTier.TRAINING_EXACT for c in results)

    def test_approval_visible_to_next_query(self, cached_matcher, store, org_id):
        sink = LearningFeedbackSink(store, cached_matcher, cached_matcher.settings)
        cached_matcher.resolve("Acme 500 nut", org_id)

        sink.record_decision(
            org_id, "Acme 500 nut", "NUT-0500", MatchDecision.APPROVED,
            scores=ReportedScores(final_score=0.92),
        )
        results = cached_matcher.resolve("ACME 500 NUT", org_id)

        assert [c.entry.id for c in results] == ["NUT-0500"]
        assert results[0].tier == MatchTier.TRAINING_EXACT

    def test_alias_visible_to_next_query(self, cached_matcher, store, org_id):
        sink = LearningFeedbackSink(store, cached_matcher, cached_matcher.settings)
        cached_matcher.resolve("Acme Flat Washer", org_id)

        sink.add_alias(org_id, "Acme Flat Washer", "WSH-0250")
        results = cached_matcher.resolve("Acme Flat Washer", org_id)

        assert results and results[0].entry.id == "WSH-0250"
        assert results[0].alias_score == 1.0
