"""
Base Celery Tasks
SECURITY: Enforces tenant isolation for background jobs
"""

import logging

from celery import current_app, shared_task

from apps.core.context import set_current_organization
from apps.core.models import Organization

logger = logging.getLogger(__name__)


class TenantTaskError(Exception):
    pass


class TenantAwareTask:
    """
    Base mixin for tenant-safe Celery tasks
    """

    @staticmethod
    def get_organization(organization_id):
        if not organization_id:
            raise TenantTaskError("organization_id is required")

        try:
            organization = Organization.objects.get(id=organization_id, is_active=True)
        except Organization.DoesNotExist:
            raise TenantTaskError(f"Invalid organization_id: {organization_id}")

        set_current_organization(organization)
        return organization


@shared_task(bind=True)
def run_for_all_organizations(self, task_name: str):
    """Fan a per-organization task out to every active organization."""
    task = current_app.tasks[task_name]
    organization_ids = list(
        Organization.objects.filter(is_active=True).values_list('id', flat=True)
    )
    for organization_id in organization_ids:
        task.delay(str(organization_id))
    logger.info("Dispatched %s to %d organizations", task_name, len(organization_ids))
    return len(organization_ids)
