"""Prometheus metrics for the automation engine."""

from prometheus_client import Counter

AUTOMATION_RUNS = Counter(
    "automation_runs_total",
    "Automation entry point invocations by outcome",
    ["automation", "outcome"],
)

NOTIFICATION_CHANNEL_FAILURES = Counter(
    "notification_channel_failures_total",
    "Notification channel attempts that failed",
    ["channel"],
)

AUTOMATION_DEAD_LETTERS = Counter(
    "automation_dead_letters_total",
    "Automation jobs that exhausted their retries",
    ["job"],
)
