from prometheus_client import Counter


reconcile_success_total = Counter(
    "reminders_reconcile_success_total",
    "Total owner reminder sets replaced from settings",
)

reconcile_failed_total = Counter(
    "reminders_reconcile_failed_total",
    "Total reconciliations that failed after the insert fallback",
)

settings_rejected_total = Counter(
    "reminders_settings_rejected_total",
    "Total settings categories rejected as invalid",
)

scheduler_scans_total = Counter(
    "reminder_scheduler_scans_total",
    "Total scheduler scan cycles",
)

reminders_dispatch_success_total = Counter(
    "reminders_dispatch_success_total",
    "Total successful deliveries",
)

reminders_dispatch_failed_total = Counter(
    "reminders_dispatch_failed_total",
    "Total failed or timed out deliveries",
)

reminders_missed_total = Counter(
    "reminders_missed_total",
    "Total reminders rescheduled without delivery because they were too far overdue",
)

wake_signals_total = Counter(
    "reminders_wake_signals_total",
    "Total wake signals sent to the delivery agent",
)
