"""Aggregator submission Celery tasks."""

import logging

from celery import shared_task
from django.utils import timezone

from apps.core.celery_tasks import TenantAwareTask
from apps.evv.exceptions import RecordNotFound
from apps.evv.services.submission_service import SubmissionService

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def submit_evv_record(self, organization_id: str, record_kind: str, record_id: str):
    """One submission attempt; retries are scheduled by the service as new tasks."""

    organization = TenantAwareTask.get_organization(organization_id)
    try:
        subject = SubmissionService.get_subject(organization, record_kind, record_id)
    except RecordNotFound:
        logger.warning("Submission task %s: %s %s no longer exists", self.request.id, record_kind, record_id)
        return {'status': 'missing'}
    return SubmissionService.submit(subject)


@shared_task(bind=True)
def sweep_pending_submissions(self, organization_id: str):
    """Re-enqueue completed versions that were never queued and retries whose time has passed."""
    from apps.evv.models import Amendment, EVVRecord

    organization = TenantAwareTask.get_organization(organization_id)
    now = timezone.now()

    never_queued = list(EVVRecord.objects.filter(
        organization=organization,
        record_status=EVVRecord.STATUS_COMPLETE,
        submission_status=EVVRecord.SUBMISSION_NOT_SUBMITTED,
        is_superseded=False,
    )) + list(Amendment.objects.filter(
        organization=organization,
        status=Amendment.STATUS_APPROVED,
        submission_status=Amendment.SUBMISSION_NOT_SUBMITTED,
        is_superseded=False,
    ))
    for subject in never_queued:
        SubmissionService.queue(subject)

    overdue = list(EVVRecord.objects.filter(
        organization=organization,
        submission_status=EVVRecord.SUBMISSION_RETRYING,
        next_retry_at__lt=now,
        is_superseded=False,
    )) + list(Amendment.objects.filter(
        organization=organization,
        submission_status=Amendment.SUBMISSION_RETRYING,
        next_retry_at__lt=now,
        is_superseded=False,
    ))
    for subject in overdue:
        SubmissionService.schedule(subject)

    if never_queued or overdue:
        logger.info(
            "Submission sweep for %s: %d queued, %d overdue retries re-sent",
            organization.id, len(never_queued), len(overdue),
        )
    return {'queued': len(never_queued), 'rescheduled': len(overdue)}
