from .setup import setup_observability
from .metrics import (
    print_jobs_claimed_total,
    print_claim_conflicts_total,
    print_jobs_recovered_total,
    print_jobs_finished_total,
    print_queue_depth,
    payment_reconciliation_total,
    payment_confirmations_total,
    orders_expired_total,
    payment_reminders_total,
    scheduled_task_duration_seconds,
    scheduled_task_errors_total,
)
