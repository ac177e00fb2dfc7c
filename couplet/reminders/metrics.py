from prometheus_client import Counter


scheduler_scans_total = Counter(
    "reminder_scheduler_scans_total",
    "Total scheduler scan cycles",
)

scheduler_dispatched_total = Counter(
    "reminder_scheduler_dispatched_total",
    "Total reminders fanned out by the scheduler",
)

reminders_dispatch_success_total = Counter(
    "reminders_dispatch_success_total",
    "Total successful push dispatches",
)

reminders_dispatch_failed_total = Counter(
    "reminders_dispatch_failed_total",
    "Total failed push dispatches",
)

reminders_dispatch_suppressed_total = Counter(
    "reminders_dispatch_suppressed_total",
    "Total push dispatches suppressed by preferences or quiet hours",
)

invalid_tokens_removed_total = Counter(
    "reminders_invalid_tokens_removed_total",
    "Total push tokens removed after permanent delivery failure",
)

reminders_rolled_forward_total = Counter(
    "reminders_rolled_forward_total",
    "Total recurring reminder occurrences created",
)

reminders_completed_total = Counter(
    "reminders_completed_total",
    "Total reminders completed",
)

overdue_aggregates_total = Counter(
    "reminders_overdue_aggregates_total",
    "Total aggregate overdue notifications presented by clients",
)
