from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

REQUESTS_TOTAL = Counter(
    "requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
ADMISSION_DECISIONS_TOTAL = Counter(
    "admission_decisions_total",
    "Vendor submission admission decisions",
    ["outcome", "reason"],
)
TRACKED_KEYS = Gauge("tracked_keys", "Keys held by the admission trackers", ["dimension"])
HISTORY_SIZE = Gauge("submission_history_size", "Accepted submissions held for duplicate detection")
MAINTENANCE_RUNS_TOTAL = Counter("maintenance_runs_total", "Completed admission maintenance passes")


__all__ = [
    "CONTENT_TYPE_LATEST",
    "REQUESTS_TOTAL",
    "ADMISSION_DECISIONS_TOTAL",
    "TRACKED_KEYS",
    "HISTORY_SIZE",
    "MAINTENANCE_RUNS_TOTAL",
    "generate_latest",
]
