"""Prometheus metrics."""

from prometheus_client import Counter, Gauge

JOBS_PROCESSED_TOTAL = Counter(
    "reporting_jobs_processed_total",
    "Jobs processed by workers",
    ["queue", "status"],  # completed, retried, failed
)
JOBS_INFLIGHT = Gauge(
    "reporting_jobs_inflight",
    "Jobs currently executed by this process",
    ["queue"],
)
SWEEP_TASKS_TOTAL = Counter(
    "reporting_sweep_tasks_total",
    "Tasks seen by the generation sweep",
    ["outcome"],  # enqueued, missed, idle
)
REPORTS_GENERATED_TOTAL = Counter(
    "reporting_reports_generated_total",
    "Report generations",
    ["status"],  # success, error, already_running
)
