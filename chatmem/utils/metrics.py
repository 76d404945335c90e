"""Prometheus metrics for memory writes, identity provisioning and usage."""

from prometheus_client import Counter, Histogram

# ── Memory operation counters ───────────────────────────────────────

MEMORY_WRITES = Counter(
    "chatmem_memory_writes_total",
    "Memory save operations by outcome (full, partial, error)",
    ["status"],
)

MEMORY_DELETES = Counter(
    "chatmem_memory_deletes_total",
    "Memory delete operations by outcome",
    ["outcome"],
)

SECONDARY_WRITE_FAILURES = Counter(
    "chatmem_secondary_write_failures_total",
    "Bookkeeping failures after a committed external write",
    ["step"],
)

# ── Identity ────────────────────────────────────────────────────────

IDENTITY_PROVISIONS = Counter(
    "chatmem_identity_provisions_total",
    "External identity provisioning attempts",
    ["outcome"],
)

# ── Usage ───────────────────────────────────────────────────────────

USAGE_INCREMENTS = Counter(
    "chatmem_usage_increments_total",
    "Usage counter increments",
    ["metric", "outcome"],
)

USAGE_RECONCILIATIONS = Counter(
    "chatmem_usage_reconciliations_total",
    "Usage reconciliation runs",
    ["status"],
)

# ── External service latency ────────────────────────────────────────

EXTERNAL_LATENCY = Histogram(
    "chatmem_memory_service_latency_seconds",
    "Latency of calls to the external memory service",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)
