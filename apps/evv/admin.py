"""
EVV Admin
"""

from django.contrib import admin

from apps.core.admin import OrganizationScopedAdmin, ReadOnlyAdminMixin

from .models import (
    Amendment,
    Caregiver,
    Credential,
    EVVRecord,
    ManualOverride,
    ServiceClient,
    SubmissionAttempt,
    TimeEntry,
    Visit,
)


@admin.register(ServiceClient)
class ServiceClientAdmin(OrganizationScopedAdmin):
    list_display = ['full_name', 'medicaid_id', 'state', 'payer_type', 'geofence_radius_meters', 'is_active']
    list_filter = ['state', 'payer_type', 'is_active']
    search_fields = ['first_name', 'last_name', 'medicaid_id']


class CredentialInline(admin.TabularInline):
    model = Credential
    extra = 0
    fields = ['credential_type', 'status', 'issued_on', 'expires_on', 'reference_number']


@admin.register(Caregiver)
class CaregiverAdmin(OrganizationScopedAdmin):
    list_display = ['full_name', 'employee_id', 'user', 'is_active']
    search_fields = ['first_name', 'last_name', 'employee_id']
    inlines = [CredentialInline]


@admin.register(Visit)
class VisitAdmin(OrganizationScopedAdmin):
    list_display = ['scheduled_start', 'client', 'caregiver', 'service_type_code', 'status']
    list_filter = ['status', 'service_type_code']
    date_hierarchy = 'scheduled_start'


class TimeEntryInline(admin.TabularInline):
    model = TimeEntry
    fk_name = 'record'
    extra = 0
    can_delete = False
    fields = ['entry_type', 'timestamp', 'status', 'verification_level', 'compliance_flags', 'rejection_code']
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(EVVRecord)
class EVVRecordAdmin(ReadOnlyAdminMixin, OrganizationScopedAdmin):
    list_display = [
        'service_date', 'client_name', 'caregiver_name', 'state', 'record_status',
        'verification_level', 'submission_status', 'requires_review',
    ]
    list_filter = ['record_status', 'state', 'verification_level', 'submission_status', 'requires_review']
    search_fields = ['client_name', 'caregiver_name', 'client_medicaid_id', 'confirmation_id']
    date_hierarchy = 'service_date'
    inlines = [TimeEntryInline]


@admin.register(TimeEntry)
class TimeEntryAdmin(ReadOnlyAdminMixin, OrganizationScopedAdmin):
    list_display = ['timestamp', 'entry_type', 'record', 'status', 'verification_level', 'rejection_code']
    list_filter = ['entry_type', 'status', 'verification_level', 'recorded_offline']


@admin.register(ManualOverride)
class ManualOverrideAdmin(ReadOnlyAdminMixin, OrganizationScopedAdmin):
    list_display = ['overridden_at', 'time_entry', 'supervisor', 'reason_code']
    list_filter = ['reason_code']


@admin.register(Amendment)
class AmendmentAdmin(ReadOnlyAdminMixin, OrganizationScopedAdmin):
    list_display = ['created_at', 'original_record', 'reason_code', 'status', 'submission_status', 'expires_at']
    list_filter = ['status', 'reason_code', 'submission_status']


@admin.register(SubmissionAttempt)
class SubmissionAttemptAdmin(ReadOnlyAdminMixin, OrganizationScopedAdmin):
    list_display = ['attempted_at', 'attempt_number', 'aggregator', 'outcome', 'http_status', 'error_code']
    list_filter = ['aggregator', 'outcome', 'retryable']
    search_fields = ['confirmation_id', 'transaction_id', 'content_hash']
