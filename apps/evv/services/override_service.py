"""
Manual override of time entries that failed automated verification
"""

import logging
from typing import Dict

from django.db import transaction
from django.utils import timezone

from apps.core.audit import record_audit_event
from apps.core.exceptions import PermissionDeniedException, ValidationException
from apps.core.logging import log_extra
from apps.core.permissions import user_has_any_role

from .. import state_machine
from ..constants import OVERRIDE_ROLES
from ..exceptions import DuplicateEntryError, InvalidTransitionError, RecordNotFound, VersionConflictError
from ..rules import JurisdictionKey, rule_registry
from .clock_service import ClockService
from .submission_service import SubmissionService

logger = logging.getLogger(__name__)


class OverrideService:

    @staticmethod
    def _prior_outcome(entry) -> Dict:
        return {
            'status': entry.status,
            'verification_level': entry.verification_level,
            'verification_passed': entry.verification_passed,
            'verification_issues': list(entry.verification_issues),
            'compliance_flags': list(entry.compliance_flags),
            'rejection_code': entry.rejection_code,
            'version': entry.version,
        }

    @classmethod
    @transaction.atomic
    def apply_manual_override(
        cls,
        organization,
        actor,
        time_entry_id,
        reason: str,
        reason_code: str,
        expected_version: int,
    ) -> Dict:
        """
        Accept a PENDING_REVIEW time entry on a supervisor's authority.

        The entry keeps its original issues and flags; the record gains
        MANUAL_OVERRIDE for good and may now advance.
        """
        from apps.evv.models import EVVRecord, ManualOverride, TimeEntry

        if not user_has_any_role(actor, OVERRIDE_ROLES):
            raise PermissionDeniedException("Only supervisors or administrators can override verification")
        if not (reason or '').strip():
            raise ValidationException('An override reason is required', field='reason')

        try:
            entry = TimeEntry.objects.get(organization=organization, pk=time_entry_id)
        except (TimeEntry.DoesNotExist, ValueError):
            raise RecordNotFound(time_entry_id, resource_type='Time entry')

        record = EVVRecord.objects.select_for_update().get(pk=entry.record_id)
        rules = rule_registry.resolve(JurisdictionKey(record.state, record.payer_type, record.service_type_code))
        if reason_code not in rules.override_reason_codes:
            raise ValidationException(
                f"Reason code {reason_code} is not accepted in {record.state}",
                field='reason_code',
            )

        entry.refresh_from_db()
        if entry.version != expected_version:
            raise VersionConflictError('time entry')
        if record.record_status == record.STATUS_CANCELLED:
            raise InvalidTransitionError(record.record_status, record.STATUS_IN_PROGRESS)
        if entry.status != TimeEntry.STATUS_PENDING_REVIEW:
            raise InvalidTransitionError(entry.status, TimeEntry.STATUS_OVERRIDDEN)
        if record.time_entries.filter(
            entry_type=entry.entry_type,
            status__in=TimeEntry.EFFECTIVE_STATUSES,
        ).exclude(pk=entry.pk).exists():
            raise DuplicateEntryError(entry.entry_type, time_entry_id=entry.pk)

        prior = cls._prior_outcome(entry)
        updated = TimeEntry.objects.filter(
            pk=entry.pk,
            version=expected_version,
            status=TimeEntry.STATUS_PENDING_REVIEW,
        ).update(
            status=TimeEntry.STATUS_OVERRIDDEN,
            version=expected_version + 1,
            updated_by=actor,
            updated_at=timezone.now(),
        )
        if not updated:
            raise VersionConflictError('time entry')
        entry.refresh_from_db()

        override = ManualOverride.objects.create(
            organization=organization,
            time_entry=entry,
            record=record,
            supervisor=actor,
            reason_code=reason_code,
            reason=reason.strip(),
            prior_outcome=prior,
            created_by=actor,
        )

        ClockService.promote_provisional(record, rules)
        state_machine.recompute(record)
        became_complete = state_machine.advance(record)
        state_machine.save_record(record)
        if became_complete:
            SubmissionService.queue(record)

        record_audit_event(
            organization=organization,
            action='evv.manual_override',
            resource=entry,
            user=actor,
            old_values={'status': prior['status']},
            new_values={
                'status': entry.status,
                'reason_code': reason_code,
                'reason': override.reason,
                'record_status': record.record_status,
            },
        )
        logger.info(
            "Time entry %s overridden by %s (%s); record %s is %s",
            entry.pk, actor.email, reason_code, record.pk, record.record_status,
            extra=log_extra(organization=organization, time_entry_id=entry.pk),
        )
        return {'time_entry': entry, 'override': override, 'record': record}
