"""EVV app filters."""
import django_filters

from .constants import LEVEL_CHOICES, ENTRY_TYPE_CHOICES
from .models import Amendment, EVVRecord, SubmissionAttempt, SubmittableRecord, TimeEntry


class EVVRecordFilter(django_filters.FilterSet):
    """
    ``flag`` and ``submission_status`` are resolved by the record service
    against the current version of each visit, not here.
    """

    client = django_filters.UUIDFilter(field_name='client_id')
    caregiver = django_filters.UUIDFilter(field_name='caregiver_id')
    visit = django_filters.UUIDFilter(field_name='visit_id')
    state = django_filters.CharFilter(lookup_expr='iexact')
    record_status = django_filters.ChoiceFilter(choices=EVVRecord.STATUS_CHOICES)
    verification_level = django_filters.ChoiceFilter(choices=LEVEL_CHOICES)
    date_from = django_filters.DateFilter(field_name='service_date', lookup_expr='gte')
    date_to = django_filters.DateFilter(field_name='service_date', lookup_expr='lte')
    requires_review = django_filters.BooleanFilter()
    reconciliation_pending = django_filters.BooleanFilter()

    class Meta:
        model = EVVRecord
        fields = [
            'client', 'caregiver', 'visit', 'state', 'record_status',
            'verification_level', 'requires_review', 'reconciliation_pending',
        ]


class TimeEntryFilter(django_filters.FilterSet):
    record = django_filters.UUIDFilter()
    visit = django_filters.UUIDFilter(field_name='visit_id')
    caregiver = django_filters.UUIDFilter(field_name='caregiver_id')
    entry_type = django_filters.ChoiceFilter(choices=ENTRY_TYPE_CHOICES)
    status = django_filters.ChoiceFilter(choices=TimeEntry.STATUS_CHOICES)
    timestamp_after = django_filters.DateTimeFilter(field_name='timestamp', lookup_expr='gte')
    timestamp_before = django_filters.DateTimeFilter(field_name='timestamp', lookup_expr='lte')
    requires_supervisor_review = django_filters.BooleanFilter()

    class Meta:
        model = TimeEntry
        fields = ['record', 'entry_type', 'status', 'requires_supervisor_review']


class AmendmentFilter(django_filters.FilterSet):
    original_record = django_filters.UUIDFilter()
    status = django_filters.ChoiceFilter(choices=Amendment.STATUS_CHOICES)
    submission_status = django_filters.ChoiceFilter(choices=SubmittableRecord.SUBMISSION_STATUS_CHOICES)
    reason_code = django_filters.CharFilter()

    class Meta:
        model = Amendment
        fields = ['original_record', 'status', 'submission_status', 'reason_code']


class SubmissionAttemptFilter(django_filters.FilterSet):
    evv_record = django_filters.UUIDFilter()
    amendment = django_filters.UUIDFilter()
    outcome = django_filters.ChoiceFilter(choices=SubmissionAttempt.OUTCOME_CHOICES)
    aggregator = django_filters.CharFilter()

    class Meta:
        model = SubmissionAttempt
        fields = ['evv_record', 'amendment', 'outcome', 'aggregator']
