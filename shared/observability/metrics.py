from prometheus_client import Counter, Histogram, Gauge

# Print queue
print_jobs_claimed_total = Counter(
    "print_jobs_claimed_total",
    "Print jobs claimed by a dispatcher tick"
)

print_claim_conflicts_total = Counter(
    "print_claim_conflicts_total",
    "Claims rejected because another dispatcher won the conditional write"
)

print_jobs_recovered_total = Counter(
    "print_jobs_recovered_total",
    "Stale printing jobs recovered by the heartbeat sweep",
    ["outcome"] # Labels: 'requeued', 'failed'
)

print_jobs_finished_total = Counter(
    "print_jobs_finished_total",
    "Print jobs reported back by a worker",
    ["status"] # Labels: 'completed', 'requeued', 'failed'
)

print_queue_depth = Gauge(
    "print_queue_depth",
    "Pending print jobs seen by the last dispatcher tick"
)

# Payments
payment_reconciliation_total = Counter(
    "payment_reconciliation_total",
    "Orders examined by the reconciliation loop",
    ["outcome"] # Labels: 'confirmed', 'already_applied', 'failed', 'unreachable', 'pending'
)

payment_confirmations_total = Counter(
    "payment_confirmations_total",
    "pending_payment -> paid transitions applied",
    ["source"] # Labels: 'webhook', 'reconciliation'
)

orders_expired_total = Counter(
    "orders_expired_total",
    "Unpaid orders marked failed after the expiry cutoff"
)

payment_reminders_total = Counter(
    "payment_reminders_total",
    "Payment reminder notices sent"
)

# Scheduler
scheduled_task_duration_seconds = Histogram(
    "scheduled_task_duration_seconds",
    "Duration of one scheduled task run in seconds",
    ["task"]
)

scheduled_task_errors_total = Counter(
    "scheduled_task_errors_total",
    "Scheduled task runs that raised",
    ["task"]
)
