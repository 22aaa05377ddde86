"""
Prometheus metrics for the review sync pipeline.
"""

from prometheus_client import Counter, Histogram, Gauge


# ── Pipeline Stages ──────────────────────────────────────────
stage_items_total = Counter(
    "stage_items_total",
    "Submissions processed per stage",
    ["stage", "outcome"],
)

stage_failures_total = Counter(
    "stage_failures_total",
    "Per-submission stage failures",
    ["stage", "error_code"],
)

pipeline_stage_duration_seconds = Histogram(
    "pipeline_stage_duration_seconds",
    "Time per pipeline stage run",
    ["stage"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 300],
)

# ── Status Model ─────────────────────────────────────────────
status_transitions_total = Counter(
    "status_transitions_total",
    "Submission state transitions",
    ["target", "outcome"],
)

# ── Specifications ───────────────────────────────────────────
specifications_upserted_total = Counter(
    "specifications_upserted_total",
    "Specifications written",
    ["operation"],
)

enum_cache_lookups_total = Counter(
    "enum_cache_lookups_total",
    "Lookup-table resolutions by cache result",
    ["result"],
)

# ── External APIs ────────────────────────────────────────────
upstream_requests_total = Counter(
    "upstream_requests_total",
    "Calls to external APIs",
    ["service", "outcome"],
)

upstream_latency_seconds = Histogram(
    "upstream_latency_seconds",
    "Latency of external API calls",
    ["service", "operation"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30],
)

# ── Worker ───────────────────────────────────────────────────
worker_jobs_active = Gauge(
    "worker_jobs_active",
    "Number of currently active worker jobs",
)
