"""
EVV Serializers
"""

from django.utils import timezone
from rest_framework import serializers

from .constants import CLOCK_IN, METHOD_CHOICES, METHOD_GPS
from .models import Amendment, EVVRecord, ManualOverride, SubmissionAttempt, TimeEntry
from .verification import ClockEvent, DeviceInfo


# ============================================================================
# REQUEST SERIALIZERS
# ============================================================================

class DeviceInfoSerializer(serializers.Serializer):
    device_id = serializers.CharField(required=False, allow_blank=True, default='')
    model = serializers.CharField(required=False, allow_blank=True, default='')
    os = serializers.CharField(required=False, allow_blank=True, default='')
    app_version = serializers.CharField(required=False, allow_blank=True, default='')
    is_mock_location = serializers.BooleanField(required=False, default=False)
    is_rooted = serializers.BooleanField(required=False, default=False)


class ClockEventSerializer(serializers.Serializer):
    """Clock-in / clock-out payload sent by the mobile app"""

    visit_id = serializers.UUIDField()
    timestamp = serializers.DateTimeField()
    latitude = serializers.FloatField(required=False, allow_null=True)
    longitude = serializers.FloatField(required=False, allow_null=True)
    accuracy = serializers.FloatField(required=False, allow_null=True, min_value=0)
    method = serializers.ChoiceField(choices=METHOD_CHOICES, default=METHOD_GPS)
    device = DeviceInfoSerializer(required=False)
    signature = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    recorded_offline = serializers.BooleanField(required=False, default=False)
    exception_reason = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=50)
    skill_override_reason = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        if (attrs.get('latitude') is None) != (attrs.get('longitude') is None):
            raise serializers.ValidationError({'longitude': 'Latitude and longitude must be sent together.'})
        return attrs

    def to_event(self, entry_type) -> ClockEvent:
        data = self.validated_data
        return ClockEvent(
            visit_id=str(data['visit_id']),
            entry_type=entry_type,
            timestamp=data['timestamp'],
            latitude=data.get('latitude'),
            longitude=data.get('longitude'),
            accuracy=data.get('accuracy'),
            method=data['method'],
            device=DeviceInfo(**data.get('device', {})),
            signature=data.get('signature') or None,
            recorded_offline=data['recorded_offline'],
            exception_reason=data.get('exception_reason') or None,
            received_at=timezone.now(),
        )


class OverrideRequestSerializer(serializers.Serializer):
    reason = serializers.CharField()
    reason_code = serializers.CharField(max_length=50)
    expected_version = serializers.IntegerField(min_value=1)


class AmendmentRequestSerializer(serializers.Serializer):
    clock_in_time = serializers.DateTimeField(required=False)
    clock_out_time = serializers.DateTimeField(required=False)
    reason = serializers.CharField()
    reason_code = serializers.CharField(max_length=50)
    expected_version = serializers.IntegerField(required=False, min_value=1)

    def validate(self, attrs):
        if not attrs.get('clock_in_time') and not attrs.get('clock_out_time'):
            raise serializers.ValidationError('Provide a corrected clock_in_time and/or clock_out_time.')
        return attrs


class AmendmentReviewSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    expected_version = serializers.IntegerField(required=False, min_value=1)


class ComplianceSummaryQuerySerializer(serializers.Serializer):
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)


class CancelRecordSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


# ============================================================================
# RESPONSE SERIALIZERS
# ============================================================================

class TimeEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = TimeEntry
        fields = [
            'id', 'record', 'visit_id', 'caregiver_id', 'entry_type', 'timestamp', 'received_at',
            'latitude', 'longitude', 'accuracy', 'distance_from_address', 'geofence_radius',
            'within_geofence', 'verification_method', 'verification_level', 'exception_reason',
            'device_info', 'signature_captured', 'verification_passed', 'verification_issues',
            'compliance_flags', 'rejection_code', 'requires_supervisor_review', 'status',
            'recorded_offline', 'reconciled_at', 'version', 'created_at',
        ]
        read_only_fields = fields


class ManualOverrideSerializer(serializers.ModelSerializer):
    supervisor_email = serializers.EmailField(source='supervisor.email', read_only=True)

    class Meta:
        model = ManualOverride
        fields = [
            'id', 'time_entry', 'record', 'supervisor', 'supervisor_email', 'overridden_at',
            'reason_code', 'reason', 'prior_outcome',
        ]
        read_only_fields = fields


SUBMISSION_FIELDS = [
    'submission_status', 'submitted_to_payor', 'payor_approval_status', 'confirmation_id',
    'submitted_at', 'submission_attempt_count', 'next_retry_at', 'is_superseded', 'superseded_at',
]


class EVVRecordListSerializer(serializers.ModelSerializer):
    class Meta:
        model = EVVRecord
        fields = [
            'id', 'visit_id', 'client_id', 'caregiver_id', 'client_name', 'caregiver_name',
            'service_type_code', 'state', 'service_date', 'clock_in_time', 'clock_out_time',
            'total_duration', 'record_status', 'verification_level', 'compliance_flags',
            'requires_review', 'reconciliation_pending', 'version',
        ] + SUBMISSION_FIELDS
        read_only_fields = fields


class EVVRecordDetailSerializer(EVVRecordListSerializer):
    time_entries = TimeEntrySerializer(many=True, read_only=True)
    overrides = ManualOverrideSerializer(many=True, read_only=True)

    class Meta(EVVRecordListSerializer.Meta):
        fields = EVVRecordListSerializer.Meta.fields + [
            'client_medicaid_id', 'caregiver_employee_id', 'service_type_name', 'payer_type',
            'aggregator', 'rule_table_version', 'service_latitude', 'service_longitude',
            'service_address', 'scheduled_start', 'scheduled_end', 'time_entries', 'overrides',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class AmendmentSerializer(serializers.ModelSerializer):
    requested_by_email = serializers.EmailField(source='requested_by.email', read_only=True)
    approved_by_email = serializers.EmailField(source='approved_by.email', read_only=True, default=None)

    class Meta:
        model = Amendment
        fields = [
            'id', 'original_record', 'supersedes_amendment', 'clock_in_time', 'clock_out_time',
            'total_duration', 'reason_code', 'reason', 'requested_by', 'requested_by_email',
            'approved_by', 'approved_by_email', 'reviewed_at', 'review_notes', 'status',
            'expires_at', 'original_data', 'corrected_data', 'changes_summary',
            'compliance_flags', 'version', 'created_at',
        ] + SUBMISSION_FIELDS
        read_only_fields = fields


class SubmissionAttemptSerializer(serializers.ModelSerializer):
    class Meta:
        model = SubmissionAttempt
        fields = [
            'id', 'evv_record', 'amendment', 'attempt_number', 'attempted_at', 'aggregator',
            'outcome', 'confirmation_id', 'transaction_id', 'error_code', 'failure_reason',
            'http_status', 'retryable', 'content_hash', 'payload', 'next_retry_at',
        ]
        read_only_fields = fields


class RecordVersionSerializer(serializers.Serializer):
    """
    Current version of a visit: an EVVRecord, or the amendment that superseded it.
    Visit-level fields always come from the original record.
    """

    def to_representation(self, instance):
        amendment = instance if isinstance(instance, Amendment) else None
        record = amendment.original_record if amendment else instance
        return {
            'id': str(instance.pk),
            'kind': 'amendment' if amendment else 'record',
            'record_id': str(record.pk),
            'visit_id': str(record.visit_id),
            'client_id': str(record.client_id),
            'caregiver_id': str(record.caregiver_id),
            'client_name': record.client_name,
            'caregiver_name': record.caregiver_name,
            'service_type_code': record.service_type_code,
            'state': record.state,
            'service_date': record.service_date.isoformat(),
            'record_status': record.record_status,
            'verification_level': record.verification_level,
            'requires_review': record.requires_review,
            'clock_in_time': serializers.DateTimeField().to_representation(instance.clock_in_time)
            if instance.clock_in_time else None,
            'clock_out_time': serializers.DateTimeField().to_representation(instance.clock_out_time)
            if instance.clock_out_time else None,
            'total_duration': instance.total_duration,
            'compliance_flags': list(instance.compliance_flags or []),
            'submission_status': instance.submission_status,
            'submitted_to_payor': instance.submitted_to_payor,
            'confirmation_id': instance.confirmation_id,
            'amendment_status': amendment.status if amendment else None,
            'version': instance.version,
        }


def verification_payload(result, eligibility=None):
    """Plain-dict view of a verification result for clock responses."""
    payload = {
        'passed': result.passed,
        'level': result.level,
        'compliance_flags': result.compliance_flags,
        'requires_supervisor_review': result.requires_supervisor_review,
        'issues': list(result.issues),
    }
    if eligibility is not None:
        payload['eligibility'] = eligibility.as_dict()
    return payload


def clock_response_payload(result, entry_type):
    data = {
        'record': EVVRecordListSerializer(result['record']).data,
        'time_entry': TimeEntrySerializer(result['time_entry']).data,
        'verification': verification_payload(result['verification'], result.get('eligibility')),
        'submission_scheduled': result['submission_scheduled'],
    }
    if entry_type == CLOCK_IN:
        data['warnings'] = list(result['eligibility'].warnings) if result.get('eligibility') else []
    return data
