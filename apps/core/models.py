"""
Core Models - Base classes for all organization-scoped models
Multi-Tenancy: Organization → User
"""

import uuid
from django.db import models
from django.conf import settings
from django.core.exceptions import ValidationError
import logging

logger = logging.getLogger(__name__)


class TimeStampedModel(models.Model):
    """Abstract base model with timestamps"""

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


# ============================================================================
# ORGANIZATION MODEL - Core Multi-Tenancy
# ============================================================================

class Organization(models.Model):
    """Home-care agency (tenant)."""

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="UUID - the ONLY key used for data isolation",
    )
    name = models.CharField(max_length=255, db_index=True)
    email = models.EmailField()
    phone = models.CharField(max_length=20, blank=True)
    timezone = models.CharField(max_length=100, default='America/Chicago')
    medicaid_provider_id = models.CharField(
        max_length=50,
        blank=True,
        help_text="Provider identifier registered with the state aggregators",
    )
    npi = models.CharField(max_length=10, blank=True)
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'organizations'
        ordering = ['name']

    def __str__(self):
        return self.name

    def clean(self):
        if not self.name or not self.name.strip():
            raise ValidationError("Organization name is required")


# ============================================================================
# ORGANIZATION ENTITY - Base class for all organization-scoped models
# ============================================================================

class AuditModel(models.Model):
    """Abstract model with audit fields"""

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='%(class)s_created'
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='%(class)s_updated'
    )

    class Meta:
        abstract = True


class OrganizationEntity(TimeStampedModel, AuditModel):
    """
    Tenant-scoped base with automatic organization isolation.

    Provides UUID PK, timestamps, audit fields, and the
    ``organization`` FK for tenant scoping.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    is_active = models.BooleanField(default=True, db_index=True)
    organization = models.ForeignKey(
        Organization,
        on_delete=models.PROTECT,
        null=False,
        blank=False,
        db_index=True,
        related_name='%(app_label)s_%(class)s_set',
        help_text="Organization this record belongs to (primary isolation key)",
    )

    class Meta:
        abstract = True


def ensure_same_org(instance, related_obj, field_name):
    """Ensure related_obj belongs to the same organization as instance."""
    if related_obj is None:
        return

    related_org = getattr(related_obj, 'organization', None)
    related_org_id = getattr(related_obj, 'organization_id', None)

    if instance.organization_id and related_org_id:
        if related_org_id != instance.organization_id:
            raise ValidationError({field_name: 'Must belong to the same organization.'})

    if not instance.organization_id and related_org is not None:
        instance.organization = related_org


class AuditLog(OrganizationEntity):
    """Append-only audit trail for every compliance-relevant write"""

    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)

    # User info
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    user_email = models.EmailField(null=True, blank=True)

    # Action info
    action = models.CharField(max_length=50, db_index=True)
    resource_type = models.CharField(max_length=100, db_index=True)
    resource_id = models.CharField(max_length=100, db_index=True)
    resource_repr = models.CharField(max_length=255, null=True, blank=True)

    # Change data
    old_values = models.JSONField(null=True, blank=True)
    new_values = models.JSONField(null=True, blank=True)
    changed_fields = models.JSONField(default=list, blank=True)

    # Request context
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    request_id = models.CharField(max_length=100, null=True, blank=True)

    class Meta:
        ordering = ['-timestamp']

    def __str__(self):
        return f"{self.action} {self.resource_type} by {self.user_email}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Audit log entries cannot be modified.")
        return super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        raise ValidationError("Audit log entries cannot be deleted.")
