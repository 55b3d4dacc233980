"""EVV task package exposing Celery jobs."""

from .submission_tasks import submit_evv_record, sweep_pending_submissions
from .reconciliation_tasks import reconcile_offline_entries, expire_stale_amendments

__all__ = [
    'submit_evv_record',
    'sweep_pending_submissions',
    'reconcile_offline_entries',
    'expire_stale_amendments',
]
