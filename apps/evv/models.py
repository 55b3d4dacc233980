"""
EVV Models - visit verification records, corrections and submission log

Reference data (clients, caregivers, credentials, visits) is owned by other
subsystems; the copies here back the default providers.
"""

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from apps.core.models import OrganizationEntity, ensure_same_org

from .constants import (
    AGGREGATOR_CHOICES,
    CREDENTIAL_STATUS_ACTIVE,
    CREDENTIAL_STATUS_CHOICES,
    ENTRY_TYPE_CHOICES,
    FLAG_COMPLIANT,
    LEVEL_CHOICES,
    METHOD_CHOICES,
    METHOD_GPS,
)
from .exceptions import ImmutableRecordError
from .rules import PAYER_MEDICAID


# ============================================================================
# REFERENCE DATA
# ============================================================================

class ServiceClient(OrganizationEntity):
    """Care recipient and the service address the geofence is drawn around"""

    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    medicaid_id = models.CharField(max_length=50, blank=True, db_index=True)
    address_line = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=2, db_index=True)
    postal_code = models.CharField(max_length=10, blank=True)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    geofence_radius_meters = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Client-specific fence; falls back to the state default",
    )
    payer_type = models.CharField(max_length=30, default=PAYER_MEDICAID)

    class Meta:
        ordering = ['last_name', 'first_name']

    def __str__(self):
        return self.full_name

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def save(self, *args, **kwargs):
        self.state = (self.state or '').upper()
        self.full_clean()
        return super().save(*args, **kwargs)


class Caregiver(OrganizationEntity):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='caregiver_profile',
    )
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    employee_id = models.CharField(max_length=50, db_index=True)
    skills = models.JSONField(default=list, blank=True)

    class Meta:
        ordering = ['last_name', 'first_name']

    def __str__(self):
        return f"{self.full_name} ({self.employee_id})"

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def clean(self):
        super().clean()
        if self.user_id and self.user.organization_id != self.organization_id:
            raise ValidationError({'user': 'Must belong to the same organization.'})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)


class Credential(OrganizationEntity):
    """Screening or certification held by a caregiver"""

    caregiver = models.ForeignKey(Caregiver, on_delete=models.CASCADE, related_name='credentials')
    credential_type = models.CharField(max_length=50, db_index=True)
    status = models.CharField(max_length=20, choices=CREDENTIAL_STATUS_CHOICES, default=CREDENTIAL_STATUS_ACTIVE)
    issued_on = models.DateField(null=True, blank=True)
    expires_on = models.DateField(null=True, blank=True)
    reference_number = models.CharField(max_length=100, blank=True)

    class Meta:
        ordering = ['caregiver', 'credential_type']

    def __str__(self):
        return f"{self.caregiver} - {self.credential_type} ({self.status})"

    def clean(self):
        super().clean()
        ensure_same_org(self, self.caregiver, 'caregiver')
        if self.issued_on and self.expires_on and self.expires_on < self.issued_on:
            raise ValidationError({'expires_on': 'Expiry cannot be before the issue date.'})

    def save(self, *args, **kwargs):
        self.credential_type = (self.credential_type or '').upper()
        self.full_clean()
        return super().save(*args, **kwargs)


class Visit(OrganizationEntity):
    """Scheduled visit as published by scheduling"""

    STATUS_SCHEDULED = 'SCHEDULED'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CANCELLED = 'CANCELLED'

    STATUS_CHOICES = [
        (STATUS_SCHEDULED, 'Scheduled'),
        (STATUS_IN_PROGRESS, 'In Progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    client = models.ForeignKey(ServiceClient, on_delete=models.PROTECT, related_name='visits')
    caregiver = models.ForeignKey(Caregiver, on_delete=models.PROTECT, related_name='visits')
    service_type_code = models.CharField(max_length=20)
    service_type_name = models.CharField(max_length=100, blank=True)
    required_skills = models.JSONField(default=list, blank=True)
    scheduled_start = models.DateTimeField(db_index=True)
    scheduled_end = models.DateTimeField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_SCHEDULED)

    class Meta:
        ordering = ['-scheduled_start']

    def __str__(self):
        return f"{self.service_type_code} for {self.client} at {self.scheduled_start:%Y-%m-%d %H:%M}"

    def clean(self):
        super().clean()
        ensure_same_org(self, self.client, 'client')
        ensure_same_org(self, self.caregiver, 'caregiver')
        if self.scheduled_start and self.scheduled_end and self.scheduled_end <= self.scheduled_start:
            raise ValidationError({'scheduled_end': 'Scheduled end must be after the start.'})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)


# ============================================================================
# SUBMISSION STATE
# ============================================================================

class SubmittableRecord(models.Model):
    """Aggregator submission state shared by EVV records and amendments"""

    SUBMISSION_NOT_SUBMITTED = 'NOT_SUBMITTED'
    SUBMISSION_QUEUED = 'QUEUED'
    SUBMISSION_RETRYING = 'RETRYING'
    SUBMISSION_SUBMITTED = 'SUBMITTED'
    SUBMISSION_FAILED = 'FAILED'
    SUBMISSION_CANCELLED = 'CANCELLED'

    SUBMISSION_STATUS_CHOICES = [
        (SUBMISSION_NOT_SUBMITTED, 'Not Submitted'),
        (SUBMISSION_QUEUED, 'Queued'),
        (SUBMISSION_RETRYING, 'Retrying'),
        (SUBMISSION_SUBMITTED, 'Submitted'),
        (SUBMISSION_FAILED, 'Failed'),
        (SUBMISSION_CANCELLED, 'Cancelled'),
    ]

    PAYOR_PENDING = 'PENDING'
    PAYOR_APPROVED = 'APPROVED'
    PAYOR_DENIED = 'DENIED'
    PAYOR_PENDING_INFO = 'PENDING_INFO'
    PAYOR_APPEALED = 'APPEALED'

    PAYOR_STATUS_CHOICES = [
        (PAYOR_PENDING, 'Pending'),
        (PAYOR_APPROVED, 'Approved'),
        (PAYOR_DENIED, 'Denied'),
        (PAYOR_PENDING_INFO, 'Pending Information'),
        (PAYOR_APPEALED, 'Appealed'),
    ]

    submission_status = models.CharField(
        max_length=20,
        choices=SUBMISSION_STATUS_CHOICES,
        default=SUBMISSION_NOT_SUBMITTED,
        db_index=True,
    )
    submitted_to_payor = models.BooleanField(default=False)
    payor_approval_status = models.CharField(max_length=20, choices=PAYOR_STATUS_CHOICES, blank=True)
    confirmation_id = models.CharField(max_length=100, blank=True)
    submitted_content_hash = models.CharField(max_length=64, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    submission_attempt_count = models.PositiveIntegerField(default=0)
    retry_task_id = models.CharField(max_length=255, blank=True)
    next_retry_at = models.DateTimeField(null=True, blank=True, db_index=True)
    is_superseded = models.BooleanField(default=False, db_index=True)
    superseded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        abstract = True


# ============================================================================
# EVV RECORD
# ============================================================================

class EVVRecord(OrganizationEntity, SubmittableRecord):
    """One record per visit; the unit that is verified and submitted"""

    STATUS_PENDING = 'PENDING'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_COMPLETE = 'COMPLETE'
    STATUS_CANCELLED = 'CANCELLED'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_IN_PROGRESS, 'In Progress'),
        (STATUS_COMPLETE, 'Complete'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    visit_id = models.UUIDField(db_index=True)
    client_id = models.UUIDField(db_index=True)
    caregiver_id = models.UUIDField(db_index=True)
    client_name = models.CharField(max_length=200)
    client_medicaid_id = models.CharField(max_length=50, blank=True)
    caregiver_name = models.CharField(max_length=200)
    caregiver_employee_id = models.CharField(max_length=50, blank=True)
    service_type_code = models.CharField(max_length=20)
    service_type_name = models.CharField(max_length=100, blank=True)

    state = models.CharField(max_length=2, db_index=True)
    payer_type = models.CharField(max_length=30, default=PAYER_MEDICAID)
    rule_table_version = models.PositiveIntegerField(default=0)
    aggregator = models.CharField(max_length=20, choices=AGGREGATOR_CHOICES, blank=True)

    service_latitude = models.FloatField(null=True, blank=True)
    service_longitude = models.FloatField(null=True, blank=True)
    service_address = models.CharField(max_length=255, blank=True)

    service_date = models.DateField(db_index=True)
    scheduled_start = models.DateTimeField()
    scheduled_end = models.DateTimeField()
    clock_in_time = models.DateTimeField(null=True, blank=True)
    clock_out_time = models.DateTimeField(null=True, blank=True)
    total_duration = models.PositiveIntegerField(null=True, blank=True, help_text="Minutes")

    record_status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    verification_level = models.CharField(max_length=20, choices=LEVEL_CHOICES, blank=True)
    compliance_flags = models.JSONField(default=list, blank=True)
    requires_review = models.BooleanField(default=False, db_index=True)
    reconciliation_pending = models.BooleanField(default=False, db_index=True)
    version = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ['-service_date', '-scheduled_start']
        constraints = [
            models.UniqueConstraint(fields=['organization', 'visit_id'], name='evv_record_unique_visit'),
        ]

    def __str__(self):
        return f"EVV {self.service_date} {self.client_name} / {self.caregiver_name} ({self.record_status})"

    @property
    def is_compliant(self):
        return list(self.compliance_flags or []) == [FLAG_COMPLIANT]

    def delete(self, using=None, keep_parents=False):
        raise ImmutableRecordError("EVV records cannot be deleted")


# ============================================================================
# TIME ENTRY
# ============================================================================

class TimeEntry(OrganizationEntity):
    """
    One row per clock event, kept forever.

    Only the review state may change after creation: ``status``, ``version``,
    ``reconciled_at`` and growth of flags/issues during reconciliation. Every
    other field is evidence and is rejected on save.
    """

    STATUS_PENDING_REVIEW = 'PENDING_REVIEW'
    STATUS_ACCEPTED = 'ACCEPTED'
    STATUS_OVERRIDDEN = 'OVERRIDDEN'
    STATUS_PROVISIONAL = 'PROVISIONAL'

    STATUS_CHOICES = [
        (STATUS_PENDING_REVIEW, 'Pending Review'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_OVERRIDDEN, 'Overridden'),
        (STATUS_PROVISIONAL, 'Provisional'),
    ]

    EFFECTIVE_STATUSES = (STATUS_ACCEPTED, STATUS_OVERRIDDEN)

    MUTABLE_FIELDS = frozenset({
        'status', 'version', 'reconciled_at', 'compliance_flags',
        'verification_issues', 'requires_supervisor_review', 'updated_at', 'updated_by',
    })

    record = models.ForeignKey(EVVRecord, on_delete=models.PROTECT, related_name='time_entries')
    visit_id = models.UUIDField(db_index=True)
    caregiver_id = models.UUIDField(db_index=True)
    entry_type = models.CharField(max_length=10, choices=ENTRY_TYPE_CHOICES)
    timestamp = models.DateTimeField(db_index=True)
    received_at = models.DateTimeField(default=timezone.now)

    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    accuracy = models.FloatField(null=True, blank=True, help_text="Meters")
    distance_from_address = models.FloatField(null=True, blank=True, help_text="Meters")
    geofence_radius = models.FloatField(null=True, blank=True)
    within_geofence = models.BooleanField(null=True, blank=True)

    verification_method = models.CharField(max_length=20, choices=METHOD_CHOICES, default=METHOD_GPS)
    verification_level = models.CharField(max_length=20, choices=LEVEL_CHOICES)
    exception_reason = models.CharField(max_length=50, blank=True)
    device_info = models.JSONField(default=dict, blank=True)
    signature_captured = models.BooleanField(default=False)

    verification_passed = models.BooleanField(default=False)
    verification_issues = models.JSONField(default=list, blank=True)
    compliance_flags = models.JSONField(default=list, blank=True)
    rejection_code = models.CharField(max_length=30, blank=True)
    requires_supervisor_review = models.BooleanField(default=False)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING_REVIEW, db_index=True)
    recorded_offline = models.BooleanField(default=False)
    reconciled_at = models.DateTimeField(null=True, blank=True)
    version = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ['timestamp']
        verbose_name_plural = 'time entries'

    def __str__(self):
        return f"{self.entry_type} {self.timestamp:%Y-%m-%d %H:%M} ({self.status})"

    @property
    def is_effective(self):
        return self.status in self.EFFECTIVE_STATUSES

    def clean(self):
        super().clean()
        ensure_same_org(self, self.record, 'record')

    def save(self, *args, **kwargs):
        if not self._state.adding:
            self._guard_immutable_fields(kwargs.get('update_fields'))
        self.full_clean()
        return super().save(*args, **kwargs)

    def _guard_immutable_fields(self, update_fields):
        if update_fields is not None:
            frozen = set(update_fields) - self.MUTABLE_FIELDS
            if frozen:
                raise ImmutableRecordError(f"Time entry fields are immutable: {', '.join(sorted(frozen))}")
            return

        stored = type(self).objects.filter(pk=self.pk).values().first()
        if stored is None:
            return
        for model_field in self._meta.concrete_fields:
            name = model_field.attname
            if model_field.name in self.MUTABLE_FIELDS:
                continue
            if stored.get(name) != getattr(self, name):
                raise ImmutableRecordError(f"Time entry field '{model_field.name}' is immutable")
        for name in ('compliance_flags', 'verification_issues'):
            previous = stored.get(name) or []
            current = getattr(self, name) or []
            if list(current[:len(previous)]) != list(previous):
                raise ImmutableRecordError(f"Time entry {name} may only grow")

    def delete(self, using=None, keep_parents=False):
        raise ImmutableRecordError("Time entries cannot be deleted")


class ManualOverride(OrganizationEntity):
    """Supervisor acceptance of a time entry that failed verification"""

    time_entry = models.ForeignKey(TimeEntry, on_delete=models.PROTECT, related_name='overrides')
    record = models.ForeignKey(EVVRecord, on_delete=models.PROTECT, related_name='overrides')
    supervisor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='evv_overrides')
    overridden_at = models.DateTimeField(default=timezone.now)
    reason_code = models.CharField(max_length=50)
    reason = models.TextField()
    prior_outcome = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ['-overridden_at']

    def __str__(self):
        return f"Override {self.reason_code} on {self.time_entry_id}"

    def clean(self):
        super().clean()
        ensure_same_org(self, self.time_entry, 'time_entry')
        ensure_same_org(self, self.record, 'record')
        if not (self.reason or '').strip():
            raise ValidationError({'reason': 'An override reason is required.'})

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError("Manual overrides cannot be edited")
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        raise ImmutableRecordError("Manual overrides cannot be deleted")


# ============================================================================
# AMENDMENT (VMUR)
# ============================================================================

class Amendment(OrganizationEntity, SubmittableRecord):
    """Visit Maintenance Unlock Request: corrected version of a completed record"""

    STATUS_PENDING_APPROVAL = 'PENDING_APPROVAL'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_EXPIRED = 'EXPIRED'

    STATUS_CHOICES = [
        (STATUS_PENDING_APPROVAL, 'Pending Approval'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_EXPIRED, 'Expired'),
    ]

    original_record = models.ForeignKey(EVVRecord, on_delete=models.PROTECT, related_name='amendments')
    supersedes_amendment = models.ForeignKey(
        'self',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='superseded_by',
    )
    clock_in_time = models.DateTimeField()
    clock_out_time = models.DateTimeField()
    total_duration = models.PositiveIntegerField(help_text="Minutes")
    reason_code = models.CharField(max_length=50)
    reason = models.TextField()
    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='evv_amendments_requested',
    )
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='evv_amendments_reviewed',
    )
    reviewed_at = models.DateTimeField(null=True, blank=True)
    review_notes = models.TextField(blank=True)
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING_APPROVAL,
        db_index=True,
    )
    expires_at = models.DateTimeField(db_index=True)
    original_data = models.JSONField(default=dict, blank=True)
    corrected_data = models.JSONField(default=dict, blank=True)
    changes_summary = models.JSONField(default=list, blank=True)
    compliance_flags = models.JSONField(default=list, blank=True)
    version = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"VMUR {self.reason_code} for {self.original_record_id} ({self.status})"

    def clean(self):
        super().clean()
        ensure_same_org(self, self.original_record, 'original_record')
        ensure_same_org(self, self.supersedes_amendment, 'supersedes_amendment')
        if not (self.reason or '').strip():
            raise ValidationError({'reason': 'An amendment reason is required.'})
        if self.clock_in_time and self.clock_out_time and self.clock_out_time <= self.clock_in_time:
            raise ValidationError({'clock_out_time': 'Clock-out must be after clock-in.'})
        if self.supersedes_amendment_id and self.supersedes_amendment.original_record_id != self.original_record_id:
            raise ValidationError({'supersedes_amendment': 'Must amend the same original record.'})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        raise ImmutableRecordError("Amendments cannot be deleted")


# ============================================================================
# SUBMISSION LOG
# ============================================================================

class SubmissionAttempt(OrganizationEntity):
    """Append-only log of every aggregator submission attempt"""

    OUTCOME_SUCCESS = 'SUCCESS'
    OUTCOME_FAILED = 'FAILED'
    OUTCOME_RETRY_QUEUED = 'RETRY_QUEUED'
    OUTCOME_CANCELLED = 'CANCELLED'

    OUTCOME_CHOICES = [
        (OUTCOME_SUCCESS, 'Success'),
        (OUTCOME_FAILED, 'Failed'),
        (OUTCOME_RETRY_QUEUED, 'Retry Queued'),
        (OUTCOME_CANCELLED, 'Cancelled'),
    ]

    evv_record = models.ForeignKey(
        EVVRecord,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='submission_attempts',
    )
    amendment = models.ForeignKey(
        Amendment,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='submission_attempts',
    )
    attempt_number = models.PositiveIntegerField()
    attempted_at = models.DateTimeField(default=timezone.now, db_index=True)
    aggregator = models.CharField(max_length=20, blank=True)
    outcome = models.CharField(max_length=20, choices=OUTCOME_CHOICES, db_index=True)
    confirmation_id = models.CharField(max_length=100, blank=True)
    transaction_id = models.CharField(max_length=100, blank=True)
    error_code = models.CharField(max_length=50, blank=True)
    failure_reason = models.TextField(blank=True)
    http_status = models.PositiveIntegerField(null=True, blank=True)
    retryable = models.BooleanField(default=False)
    content_hash = models.CharField(max_length=64, blank=True, db_index=True)
    payload = models.JSONField(default=dict, blank=True)
    next_retry_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['attempted_at', 'attempt_number']

    def __str__(self):
        return f"Attempt {self.attempt_number} {self.outcome} ({self.aggregator})"

    @property
    def subject(self):
        return self.evv_record or self.amendment

    def clean(self):
        super().clean()
        if bool(self.evv_record_id) == bool(self.amendment_id):
            raise ValidationError('A submission attempt belongs to exactly one record or amendment.')
        ensure_same_org(self, self.evv_record, 'evv_record')
        ensure_same_org(self, self.amendment, 'amendment')

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError("Submission attempts cannot be edited")
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        raise ImmutableRecordError("Submission attempts cannot be deleted")
