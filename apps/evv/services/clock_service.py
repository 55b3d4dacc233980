"""
Clock Services - clock-in / clock-out processing and offline reconciliation
"""

import logging
from datetime import timedelta
from typing import Dict, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.core.audit import record_audit_event
from apps.core.exceptions import PermissionDeniedException, ValidationException
from apps.core.logging import log_extra
from apps.core.permissions import user_has_any_role

from .. import state_machine
from ..constants import (
    CLOCK_IN,
    CLOCK_OUT,
    FLAG_LOCATION_MISMATCH,
    REJECT_NO_CLOCK_IN,
)
from ..eligibility import SkillOverride, check_eligibility
from ..exceptions import (
    DuplicateEntryError,
    EligibilityError,
    InvalidTransitionError,
    RecordNotFound,
    VerificationRejected,
)
from ..geolocation import GeoPoint, LocationFix, haversine_distance
from ..providers import get_provider
from ..rules import JurisdictionKey, rule_registry
from ..verification import ClockEvent, VerificationContext, verify
from .submission_service import SubmissionService

logger = logging.getLogger(__name__)


class ClockService:
    """
    Core EVV service for clock events.
    """

    @staticmethod
    def _authorize_actor(actor, caregiver):
        """Caregivers clock their own visits; coordinators and above may clock on their behalf."""
        if user_has_any_role(actor, ('COORDINATOR',)):
            return
        if caregiver.user_id and str(actor.pk) == caregiver.user_id:
            return
        raise PermissionDeniedException("You can only clock in to your own visits")

    @staticmethod
    def _load_context(organization, visit_id):
        visit = get_provider('visit').get_visit_for_evv(organization, visit_id)
        client = get_provider('client').get_client_for_evv(organization, visit.client_id)
        caregiver = get_provider('caregiver').get_caregiver_for_evv(organization, visit.caregiver_id)
        key = JurisdictionKey(client.state, client.payer_type, visit.service_type_code)
        table = rule_registry.snapshot()
        return visit, client, caregiver, table.resolve(key), table.version

    @staticmethod
    def _get_locked_record(organization, visit, client, caregiver, rules, table_version):
        from apps.evv.models import EVVRecord

        record, created = EVVRecord.objects.get_or_create(
            organization=organization,
            visit_id=visit.id,
            defaults={
                'client_id': client.id,
                'caregiver_id': caregiver.id,
                'client_name': client.name,
                'client_medicaid_id': client.medicaid_id,
                'caregiver_name': caregiver.name,
                'caregiver_employee_id': caregiver.employee_id,
                'service_type_code': visit.service_type_code,
                'service_type_name': visit.service_type_name,
                'state': client.state,
                'payer_type': client.payer_type,
                'rule_table_version': table_version,
                'aggregator': rules.aggregator or '',
                'service_latitude': client.location.latitude if client.location else None,
                'service_longitude': client.location.longitude if client.location else None,
                'service_address': client.address,
                'service_date': visit.service_date,
                'scheduled_start': visit.scheduled_start,
                'scheduled_end': visit.scheduled_end,
            },
        )
        if created:
            logger.info("Created EVV record %s for visit %s", record.pk, visit.id)
        return EVVRecord.objects.select_for_update().get(pk=record.pk)

    @staticmethod
    def _previous_fix(organization, caregiver_id, before) -> Optional[LocationFix]:
        from apps.evv.models import TimeEntry

        entry = TimeEntry.objects.filter(
            organization=organization,
            caregiver_id=caregiver_id,
            latitude__isnull=False,
            longitude__isnull=False,
            timestamp__lt=before,
        ).order_by('-timestamp').first()
        if entry is None:
            return None
        return LocationFix(GeoPoint(entry.latitude, entry.longitude), entry.timestamp)

    @staticmethod
    def _clock_in_point(record) -> Optional[GeoPoint]:
        from apps.evv.models import TimeEntry

        entry = record.time_entries.filter(
            entry_type=CLOCK_IN,
            status__in=TimeEntry.EFFECTIVE_STATUSES,
            latitude__isnull=False,
        ).first()
        return GeoPoint(entry.latitude, entry.longitude) if entry else None

    @classmethod
    def _process(cls, organization, actor, visit_id, event: ClockEvent, skill_override=None) -> Dict:
        from apps.evv.models import TimeEntry

        if event.received_at is None:
            raise ValidationException('received_at is required', field='received_at')

        visit, client, caregiver, rules, table_version = cls._load_context(organization, visit_id)
        cls._authorize_actor(actor, caregiver)

        decision = None
        if event.entry_type == CLOCK_IN:
            decision = check_eligibility(
                caregiver.credentials,
                rules,
                caregiver_skills=caregiver.skills,
                required_skills=visit.required_skills,
                skill_override=skill_override,
                as_of=timezone.localdate(event.timestamp),
            )
            if decision.is_blocked:
                logger.warning(
                    "Eligibility BLOCK for caregiver %s on visit %s: %s",
                    caregiver.id, visit.id, '; '.join(decision.reasons),
                    extra=log_extra(organization=organization, visit_id=visit.id),
                )
                raise EligibilityError(decision.reasons, decision.citations)

        deferred_error = None
        with transaction.atomic():
            record = cls._get_locked_record(organization, visit, client, caregiver, rules, table_version)
            if record.record_status == record.STATUS_CANCELLED:
                raise InvalidTransitionError(record.record_status, 'IN_PROGRESS')

            occupied = record.time_entries.filter(
                entry_type=event.entry_type,
                status__in=TimeEntry.EFFECTIVE_STATUSES + (TimeEntry.STATUS_PROVISIONAL,),
            ).exists()
            context = VerificationContext(
                service_location=client.location,
                client_radius=client.geofence_radius_meters,
                scheduled_start=visit.scheduled_start,
                scheduled_end=visit.scheduled_end,
                clock_in_location=cls._clock_in_point(record) if event.entry_type == CLOCK_OUT else None,
                has_effective_entry=occupied,
                previous_fix=cls._previous_fix(organization, caregiver.id, event.timestamp),
                late_submission_hours=getattr(settings, 'EVV_LATE_SUBMISSION_HOURS', 24),
            )
            result = verify(event, rules, context)

            provisional = False
            issues = list(result.issues)
            rejection = result.rejection
            if event.entry_type == CLOCK_OUT and not record.time_entries.filter(entry_type=CLOCK_IN).exists():
                if event.recorded_offline:
                    provisional = True
                    issues.append('Held until the clock-in for this visit syncs')
                elif rejection is None:
                    rejection = REJECT_NO_CLOCK_IN
                    issues.append('Cannot clock out of a visit that has no clock-in')

            if provisional and not result.is_duplicate:
                status = TimeEntry.STATUS_PROVISIONAL
            elif result.passed and rejection is None:
                status = TimeEntry.STATUS_ACCEPTED
            else:
                status = TimeEntry.STATUS_PENDING_REVIEW

            geo = result.geolocation
            entry = TimeEntry.objects.create(
                organization=organization,
                record=record,
                visit_id=record.visit_id,
                caregiver_id=caregiver.id,
                entry_type=event.entry_type,
                timestamp=event.timestamp,
                received_at=event.received_at,
                latitude=event.latitude,
                longitude=event.longitude,
                accuracy=event.accuracy,
                distance_from_address=geo.distance_meters if geo else None,
                geofence_radius=result.radius_meters,
                within_geofence=geo.is_within_geofence if geo else None,
                verification_method=event.method,
                verification_level=result.level,
                exception_reason=event.exception_reason or '',
                device_info=event.device.as_dict(),
                signature_captured=bool(event.signature),
                verification_passed=result.passed and rejection is None,
                verification_issues=issues,
                compliance_flags=result.compliance_flags,
                rejection_code=rejection or '',
                requires_supervisor_review=result.requires_supervisor_review or rejection is not None,
                status=status,
                recorded_offline=event.recorded_offline,
                created_by=actor,
            )

            if rejection is not None:
                deferred_error = VerificationRejected(rejection, issues, time_entry_id=entry.pk)
            elif result.is_duplicate:
                deferred_error = DuplicateEntryError(event.entry_type, time_entry_id=entry.pk)

            if event.entry_type == CLOCK_IN and status == TimeEntry.STATUS_ACCEPTED:
                cls.promote_provisional(record, rules)

            became_complete = cls._apply_state(record)

            record_audit_event(
                organization=organization,
                action=f"evv.{event.entry_type.lower()}",
                resource=entry,
                user=actor,
                new_values={
                    'status': entry.status,
                    'verification_level': entry.verification_level,
                    'compliance_flags': entry.compliance_flags,
                    'issues': entry.verification_issues,
                    'record_status': record.record_status,
                },
            )

        if deferred_error is not None:
            logger.warning(
                "%s for visit %s stored for review: %s",
                event.entry_type, visit.id, deferred_error.message,
                extra=log_extra(organization=organization, visit_id=visit.id, time_entry_id=entry.pk),
            )
            raise deferred_error

        logger.info(
            "%s accepted for visit %s (level=%s, flags=%s, status=%s)",
            event.entry_type, visit.id, entry.verification_level, entry.compliance_flags, entry.status,
            extra=log_extra(organization=organization, visit_id=visit.id),
        )
        return {
            'record': record,
            'time_entry': entry,
            'verification': result,
            'eligibility': decision,
            'submission_scheduled': became_complete,
        }

    @staticmethod
    def _apply_state(record) -> bool:
        state_machine.recompute(record)
        became_complete = state_machine.advance(record)
        state_machine.save_record(record)
        if became_complete:
            SubmissionService.queue(record)
        return became_complete

    @classmethod
    def clock_in(cls, organization, actor, visit_id, event: ClockEvent, skill_override: SkillOverride = None) -> Dict:
        if event.entry_type != CLOCK_IN:
            raise ValidationException('Event is not a clock-in', field='entry_type')
        return cls._process(organization, actor, visit_id, event, skill_override=skill_override)

    @classmethod
    def clock_out(cls, organization, actor, visit_id, event: ClockEvent) -> Dict:
        if event.entry_type != CLOCK_OUT:
            raise ValidationException('Event is not a clock-out', field='entry_type')
        return cls._process(organization, actor, visit_id, event)

    # ------------------------------------------------------------------
    # Offline reconciliation
    # ------------------------------------------------------------------

    @classmethod
    def promote_provisional(cls, record, rules) -> int:
        """Release PROVISIONAL clock-outs now that an effective clock-in exists."""
        from apps.evv.models import TimeEntry

        clock_in = record.time_entries.filter(
            entry_type=CLOCK_IN, status__in=TimeEntry.EFFECTIVE_STATUSES,
        ).first()
        if clock_in is None:
            return 0

        promoted = 0
        now = timezone.now()
        for entry in record.time_entries.filter(entry_type=CLOCK_OUT, status=TimeEntry.STATUS_PROVISIONAL):
            flags = list(entry.compliance_flags)
            issues = list(entry.verification_issues)
            passed = entry.verification_passed

            if entry.timestamp <= clock_in.timestamp:
                passed = False
                issues.append('Clock-out precedes the clock-in')
            if (
                entry.latitude is not None and clock_in.latitude is not None
                and haversine_distance(
                    GeoPoint(clock_in.latitude, clock_in.longitude),
                    GeoPoint(entry.latitude, entry.longitude),
                ) > rules.location_mismatch_meters
            ) and FLAG_LOCATION_MISMATCH not in flags:
                flags.append(FLAG_LOCATION_MISMATCH)
                issues.append('Clock-out is far from the clock-in location')

            entry.status = TimeEntry.STATUS_ACCEPTED if passed else TimeEntry.STATUS_PENDING_REVIEW
            entry.compliance_flags = flags
            entry.verification_issues = issues
            entry.requires_supervisor_review = entry.requires_supervisor_review or not passed
            entry.reconciled_at = now
            entry.version += 1
            entry.save(update_fields=[
                'status', 'compliance_flags', 'verification_issues',
                'requires_supervisor_review', 'reconciled_at', 'version', 'updated_at',
            ])
            promoted += 1
            logger.info("Reconciled provisional clock-out %s on record %s -> %s", entry.pk, record.pk, entry.status)
        return promoted

    @classmethod
    def reconcile_record(cls, record) -> bool:
        """Reconcile one record under its row lock; returns True if anything changed."""
        from apps.evv.models import EVVRecord

        with transaction.atomic():
            record = EVVRecord.objects.select_for_update().get(pk=record.pk)
            rules = rule_registry.resolve(JurisdictionKey(record.state, record.payer_type, record.service_type_code))
            promoted = cls.promote_provisional(record, rules)
            if not promoted:
                return False
            cls._apply_state(record)
            record_audit_event(
                organization=record.organization,
                action='evv.reconciled',
                resource=record,
                new_values={'promoted_entries': promoted, 'record_status': record.record_status},
            )
        return True

    @classmethod
    def flag_stale_provisional(cls, organization) -> int:
        """Mark records whose held clock-outs outlived the reconciliation window for review."""
        from apps.evv.models import EVVRecord, TimeEntry

        window = timedelta(hours=getattr(settings, 'EVV_RECONCILIATION_WINDOW_HOURS', 24))
        cutoff = timezone.now() - window
        record_ids = TimeEntry.objects.filter(
            organization=organization,
            status=TimeEntry.STATUS_PROVISIONAL,
            received_at__lt=cutoff,
        ).values_list('record_id', flat=True).distinct()
        flagged = EVVRecord.objects.filter(pk__in=list(record_ids), requires_review=False).update(
            requires_review=True,
            updated_at=timezone.now(),
        )
        if flagged:
            logger.warning("%d EVV record(s) have provisional entries older than %s", flagged, window)
        return flagged

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @classmethod
    def cancel_record(cls, organization, actor, visit_id, reason: str = '') -> Dict:
        """Visit cancelled upstream: PENDING or IN_PROGRESS → CANCELLED."""
        from apps.evv.models import EVVRecord

        with transaction.atomic():
            try:
                record = EVVRecord.objects.select_for_update().get(organization=organization, visit_id=visit_id)
            except EVVRecord.DoesNotExist:
                raise RecordNotFound(visit_id)
            previous = record.record_status
            state_machine.transition(record, record.STATUS_CANCELLED)
            state_machine.save_record(record)
            record_audit_event(
                organization=organization,
                action='evv.cancelled',
                resource=record,
                user=actor,
                old_values={'record_status': previous},
                new_values={'record_status': record.record_status, 'reason': reason},
            )
        logger.info("EVV record %s cancelled (%s)", record.pk, reason or 'no reason given')
        return {'record': record}
