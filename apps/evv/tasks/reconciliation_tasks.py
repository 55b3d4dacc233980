"""Offline reconciliation and amendment expiry tasks."""

import logging

from celery import shared_task

from apps.core.celery_tasks import TenantAwareTask
from apps.evv.exceptions import VersionConflictError
from apps.evv.services.amendment_service import AmendmentService
from apps.evv.services.clock_service import ClockService

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def reconcile_offline_entries(self, organization_id: str):
    """Promote held clock-outs whose clock-in has synced; flag the stale ones for review."""
    from apps.evv.models import EVVRecord

    organization = TenantAwareTask.get_organization(organization_id)
    pending = EVVRecord.objects.filter(organization=organization, reconciliation_pending=True)

    reconciled = 0
    for record in pending:
        try:
            if ClockService.reconcile_record(record):
                reconciled += 1
        except VersionConflictError:
            # picked up again on the next run
            logger.warning("Record %s changed during reconciliation", record.pk)

    flagged = ClockService.flag_stale_provisional(organization)
    return {'reconciled': reconciled, 'flagged': flagged}


@shared_task(bind=True)
def expire_stale_amendments(self, organization_id: str):
    """Expire VMUR amendments nobody approved in time."""

    organization = TenantAwareTask.get_organization(organization_id)
    return {'expired': AmendmentService.expire_stale_amendments(organization)}
