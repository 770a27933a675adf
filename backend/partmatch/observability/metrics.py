"""Prometheus metrics for partmatch.

Defines and exposes operational metrics for monitoring and alerting.
"""

from prometheus_client import Counter, Histogram

# Resolution metrics
match_resolutions_total = Counter(
    "partmatch_resolutions_total",
    "Total match resolutions by the tier that answered",
    ["tier"]  # tier: training_exact|training_high|algorithmic|empty
)

match_resolve_duration_seconds = Histogram(
    "partmatch_resolve_duration_seconds",
    "Time spent resolving one query in seconds",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

match_candidate_set_size = Histogram(
    "partmatch_candidate_set_size",
    "Number of tier-3 candidates scored per query",
    buckets=[0, 1, 5, 10, 25, 50, 100, 250, 500]
)

match_top_score = Histogram(
    "partmatch_top_score",
    "Final score of the best candidate returned",
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
)

# Feedback metrics
feedback_decisions_total = Counter(
    "partmatch_feedback_decisions_total",
    "Total reviewer decisions recorded",
    ["decision"]  # decision: approved|rejected
)

training_references_total = Counter(
    "partmatch_training_references_total",
    "Training examples that contributed to a learned score"
)

training_import_rows_total = Counter(
    "partmatch_training_import_rows_total",
    "Rows processed by training CSV import",
    ["status"]  # status: imported|skipped|error
)
