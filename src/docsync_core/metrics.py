from __future__ import annotations

from prometheus_client import Counter, Enum, Gauge, Histogram

# Source
sync_events_total = Counter(
    "docsync_events_total", "Change events pulled from the source by operation", labelnames=("operation",)
)

# Target writes
sync_documents_written_total = Counter(
    "docsync_documents_written_total", "Documents upserted into the target", labelnames=("strategy",)
)
sync_documents_skipped_total = Counter(
    "docsync_documents_skipped_total", "Units dropped before reaching the target", labelnames=("reason",)
)
sync_documents_failed_total = Counter(
    "docsync_documents_failed_total", "Documents whose write failed", labelnames=("strategy",)
)
sync_flush_duration_seconds = Histogram(
    "docsync_flush_duration_seconds", "Duration of a batch write to the target"
)
sync_last_flush_timestamp_seconds = Gauge(
    "docsync_last_flush_timestamp_seconds", "Unix time of the last successful flush"
)

# Progress
sync_checkpoint_saves_total = Counter(
    "docsync_checkpoint_saves_total", "Checkpoint persistence attempts by status", labelnames=("status",)
)
sync_idle_sleeps_total = Counter(
    "docsync_idle_sleeps_total", "Backoff sleeps taken while polling found no new data"
)
sync_state = Enum(
    "docsync_state",
    "Current state of the sync engine",
    states=["bootstrapping", "live_streaming", "polling_active", "polling_idle", "draining", "stopped", "failed"],
)
