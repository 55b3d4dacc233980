"""
EVV Views - clock events, record search, overrides, amendments and submissions
"""

import logging

from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter
from rest_framework.permissions import IsAuthenticated

from apps.core.permissions import HasRole, IsOrganizationMember
from apps.core.response import created_response, success_response
from apps.core.tenant_guards import OrganizationViewSetMixin

from .constants import CLOCK_IN, CLOCK_OUT, OVERRIDE_ROLES
from .eligibility import SkillOverride
from .filters import AmendmentFilter, EVVRecordFilter, SubmissionAttemptFilter, TimeEntryFilter
from .models import Amendment, EVVRecord, SubmissionAttempt, TimeEntry
from .serializers import (
    AmendmentRequestSerializer,
    AmendmentReviewSerializer,
    AmendmentSerializer,
    CancelRecordSerializer,
    ClockEventSerializer,
    ComplianceSummaryQuerySerializer,
    EVVRecordDetailSerializer,
    EVVRecordListSerializer,
    OverrideRequestSerializer,
    RecordVersionSerializer,
    SubmissionAttemptSerializer,
    TimeEntrySerializer,
    clock_response_payload,
)
from .services import AmendmentService, ClockService, OverrideService, RecordService, SubmissionService

logger = logging.getLogger(__name__)

STAFF_ROLES = ['COORDINATOR']
REVIEW_ROLES = list(OVERRIDE_ROLES)


class ClockViewSet(OrganizationViewSetMixin, viewsets.ViewSet):
    """Clock-in / clock-out for caregivers (own visits) and coordinators."""

    permission_classes = [IsAuthenticated, IsOrganizationMember]

    @extend_schema(request=ClockEventSerializer)
    @action(detail=False, methods=['post'], url_path='clock-in')
    def clock_in(self, request):
        serializer = ClockEventSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        skill_override = None
        override_reason = serializer.validated_data.get('skill_override_reason')
        if override_reason:
            skill_override = SkillOverride(user=request.user, reason=override_reason)

        result = ClockService.clock_in(
            self.require_organization(),
            request.user,
            serializer.validated_data['visit_id'],
            serializer.to_event(CLOCK_IN),
            skill_override=skill_override,
        )
        return created_response(clock_response_payload(result, CLOCK_IN), message='Clocked in.')

    @extend_schema(request=ClockEventSerializer)
    @action(detail=False, methods=['post'], url_path='clock-out')
    def clock_out(self, request):
        serializer = ClockEventSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ClockService.clock_out(
            self.require_organization(),
            request.user,
            serializer.validated_data['visit_id'],
            serializer.to_event(CLOCK_OUT),
        )
        return created_response(clock_response_payload(result, CLOCK_OUT), message='Clocked out.')


class EVVRecordViewSet(OrganizationViewSetMixin, viewsets.ReadOnlyModelViewSet):
    """
    Visit records. ``list`` returns the current version of each visit, so a
    superseded record is represented by its latest live amendment.
    """

    queryset = EVVRecord.objects.all()
    permission_classes = [IsAuthenticated, IsOrganizationMember, HasRole]
    required_roles = {
        'list': STAFF_ROLES,
        'retrieve': STAFF_ROLES,
        'by_visit': STAFF_ROLES,
        'compliance_summary': STAFF_ROLES,
        'amendments': STAFF_ROLES,
        'retry_submission': STAFF_ROLES,
        'cancel': STAFF_ROLES,
    }
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_class = EVVRecordFilter
    ordering_fields = ['service_date', 'scheduled_start', 'created_at']
    ordering = ['-service_date']

    def get_serializer_class(self):
        if self.action == 'list':
            return RecordVersionSerializer
        return EVVRecordDetailSerializer

    def get_queryset(self):
        return super().get_queryset().prefetch_related('time_entries', 'overrides')

    @extend_schema(parameters=[
        OpenApiParameter('flag', str, description='Compliance flag on the current version'),
        OpenApiParameter('submission_status', str, description='Submission status of the current version'),
    ])
    def list(self, request, *args, **kwargs):
        versions = RecordService.search_records(self.require_organization(), request.query_params)
        page = self.paginate_queryset(versions)
        if page is not None:
            return self.get_paginated_response(RecordVersionSerializer(page, many=True).data)
        return success_response(RecordVersionSerializer(versions, many=True).data)

    @action(detail=False, methods=['get'], url_path=r'by-visit/(?P<visit_id>[^/.]+)')
    def by_visit(self, request, visit_id=None):
        result = RecordService.get_record_for_visit(self.require_organization(), visit_id)
        return success_response({
            'record': EVVRecordDetailSerializer(result['record']).data,
            'amendments': AmendmentSerializer(result['amendments'], many=True).data,
            'current_version': RecordVersionSerializer(result['current_version']).data,
        })

    @extend_schema(parameters=[ComplianceSummaryQuerySerializer])
    @action(detail=False, methods=['get'], url_path='compliance-summary')
    def compliance_summary(self, request):
        query = ComplianceSummaryQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        summary = RecordService.get_compliance_summary(
            self.require_organization(),
            query.validated_data.get('date_from'),
            query.validated_data.get('date_to'),
        )
        return success_response(summary)

    @extend_schema(request=AmendmentRequestSerializer, responses=AmendmentSerializer)
    @action(detail=True, methods=['get', 'post'])
    def amendments(self, request, pk=None):
        record = self.get_object()
        if request.method == 'GET':
            return success_response(AmendmentSerializer(record.amendments.order_by('created_at'), many=True).data)

        serializer = AmendmentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = AmendmentService.create_amendment(
            self.require_organization(),
            request.user,
            record.pk,
            corrections={key: data[key] for key in ('clock_in_time', 'clock_out_time') if data.get(key)},
            reason=data['reason'],
            reason_code=data['reason_code'],
            expected_version=data.get('expected_version'),
        )
        return created_response(AmendmentSerializer(result['amendment']).data, message='Amendment created.')

    @action(detail=True, methods=['post'], url_path='retry-submission')
    def retry_submission(self, request, pk=None):
        record = self.get_object()
        result = SubmissionService.retry_submission(self.require_organization(), request.user, record.pk)
        return success_response(
            RecordVersionSerializer(result['subject']).data,
            message='Submission queued.',
        )

    @extend_schema(request=CancelRecordSerializer)
    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        record = self.get_object()
        serializer = CancelRecordSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = ClockService.cancel_record(
            self.require_organization(), request.user, record.visit_id, serializer.validated_data['reason'],
        )
        return success_response(EVVRecordListSerializer(result['record']).data, message='Record cancelled.')


class TimeEntryViewSet(OrganizationViewSetMixin, viewsets.ReadOnlyModelViewSet):
    queryset = TimeEntry.objects.all()
    serializer_class = TimeEntrySerializer
    permission_classes = [IsAuthenticated, IsOrganizationMember, HasRole]
    required_roles = {
        'list': STAFF_ROLES,
        'retrieve': STAFF_ROLES,
        'override': REVIEW_ROLES,
    }
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_class = TimeEntryFilter
    ordering_fields = ['timestamp', 'created_at']
    ordering = ['-timestamp']

    @extend_schema(request=OverrideRequestSerializer)
    @action(detail=True, methods=['post'])
    def override(self, request, pk=None):
        entry = self.get_object()
        serializer = OverrideRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = OverrideService.apply_manual_override(
            self.require_organization(),
            request.user,
            entry.pk,
            reason=serializer.validated_data['reason'],
            reason_code=serializer.validated_data['reason_code'],
            expected_version=serializer.validated_data['expected_version'],
        )
        return success_response(
            {
                'time_entry': TimeEntrySerializer(result['time_entry']).data,
                'record': EVVRecordListSerializer(result['record']).data,
            },
            message='Time entry overridden.',
        )


class AmendmentViewSet(OrganizationViewSetMixin, viewsets.ReadOnlyModelViewSet):
    queryset = Amendment.objects.select_related('requested_by', 'approved_by')
    serializer_class = AmendmentSerializer
    permission_classes = [IsAuthenticated, IsOrganizationMember, HasRole]
    required_roles = {
        'list': STAFF_ROLES,
        'retrieve': STAFF_ROLES,
        'approve': REVIEW_ROLES,
        'reject': REVIEW_ROLES,
    }
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_class = AmendmentFilter
    ordering_fields = ['created_at', 'expires_at']
    ordering = ['-created_at']

    def _review(self, request, handler, message):
        amendment = self.get_object()
        serializer = AmendmentReviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = handler(
            self.require_organization(),
            request.user,
            amendment.pk,
            expected_version=serializer.validated_data.get('expected_version'),
            notes=serializer.validated_data['notes'],
        )
        return success_response(AmendmentSerializer(result['amendment']).data, message=message)

    @extend_schema(request=AmendmentReviewSerializer)
    @action(detail=True, methods=['post'])
    def approve(self, request, pk=None):
        return self._review(request, AmendmentService.approve_amendment, 'Amendment approved.')

    @extend_schema(request=AmendmentReviewSerializer)
    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        return self._review(request, AmendmentService.reject_amendment, 'Amendment rejected.')


class SubmissionAttemptViewSet(OrganizationViewSetMixin, viewsets.ReadOnlyModelViewSet):
    queryset = SubmissionAttempt.objects.all()
    serializer_class = SubmissionAttemptSerializer
    permission_classes = [IsAuthenticated, IsOrganizationMember, HasRole]
    required_roles = STAFF_ROLES
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_class = SubmissionAttemptFilter
    ordering_fields = ['attempted_at']
    ordering = ['attempted_at']
