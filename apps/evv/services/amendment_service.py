"""
Amendment Services - VMUR (Visit Maintenance Unlock Request) workflow

An amendment is a new version of a completed visit. The original record and
earlier amendments are never edited apart from their supersession markers.
"""

import logging
from datetime import timedelta
from typing import Dict, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.core.audit import record_audit_event
from apps.core.exceptions import ConflictException, PermissionDeniedException, ValidationException
from apps.core.logging import log_extra
from apps.core.permissions import user_has_any_role

from ..constants import FLAG_COMPLIANT, FLAG_VMUR_AMENDMENT, OVERRIDE_ROLES
from ..exceptions import InvalidTransitionError, RecordNotFound, VersionConflictError
from ..rules import JurisdictionKey, rule_registry
from .submission_service import SubmissionService

logger = logging.getLogger(__name__)

AMENDABLE_FIELDS = ('clock_in_time', 'clock_out_time')


def _duration_minutes(clock_in, clock_out) -> int:
    return int((clock_out - clock_in).total_seconds() // 60)


def _snapshot(version) -> Dict:
    return {
        'id': str(version.pk),
        'clock_in_time': version.clock_in_time.isoformat() if version.clock_in_time else None,
        'clock_out_time': version.clock_out_time.isoformat() if version.clock_out_time else None,
        'total_duration': version.total_duration,
        'compliance_flags': list(version.compliance_flags or []),
    }


class AmendmentService:
    """Create, approve, reject and expire VMUR amendments."""

    @staticmethod
    def _get_amendment_for_update(organization, amendment_id):
        from apps.evv.models import Amendment

        try:
            return Amendment.objects.select_for_update().get(organization=organization, pk=amendment_id)
        except (Amendment.DoesNotExist, ValueError):
            raise RecordNotFound(amendment_id, resource_type='Amendment')

    @staticmethod
    def _mark_superseded(version):
        now = timezone.now()
        type(version).objects.filter(pk=version.pk).update(
            is_superseded=True,
            superseded_at=now,
            version=F('version') + 1,
            updated_at=now,
        )
        version.refresh_from_db()

    @classmethod
    @transaction.atomic
    def create_amendment(
        cls,
        organization,
        actor,
        record_id,
        corrections: Dict,
        reason: str,
        reason_code: str,
        expected_version: Optional[int] = None,
    ) -> Dict:
        from apps.evv.models import Amendment, EVVRecord

        if not user_has_any_role(actor, ('COORDINATOR',)):
            raise PermissionDeniedException("Only coordinators and above can request amendments")
        if not (reason or '').strip():
            raise ValidationException('An amendment reason is required', field='reason')

        try:
            record = EVVRecord.objects.select_for_update().get(organization=organization, pk=record_id)
        except (EVVRecord.DoesNotExist, ValueError):
            raise RecordNotFound(record_id)

        if expected_version is not None and record.version != expected_version:
            raise VersionConflictError('EVV record')
        if record.record_status != record.STATUS_COMPLETE:
            raise ValidationException('Only completed records can be amended', field='record_status')

        rules = rule_registry.resolve(JurisdictionKey(record.state, record.payer_type, record.service_type_code))
        if reason_code not in rules.vmur_reason_codes:
            raise ValidationException(
                f"Reason code {reason_code} is not a VMUR reason in {record.state}",
                field='reason_code',
            )

        previous = SubmissionService.current_version(record)
        if isinstance(previous, Amendment) and previous.status == Amendment.STATUS_PENDING_APPROVAL:
            raise ConflictException(
                'An amendment for this visit is already awaiting approval',
                code='amendment_pending',
            )

        clock_in = corrections.get('clock_in_time') or previous.clock_in_time
        clock_out = corrections.get('clock_out_time') or previous.clock_out_time
        if clock_out <= clock_in:
            raise ValidationException('Corrected clock-out must be after clock-in', field='clock_out_time')

        corrected = {'clock_in_time': clock_in, 'clock_out_time': clock_out}
        changes = [
            {'field': name, 'from': getattr(previous, name), 'to': corrected[name]}
            for name in AMENDABLE_FIELDS
            if getattr(previous, name) != corrected[name]
        ]
        if not changes:
            raise ValidationException('The amendment does not change anything')

        flags = {f for f in previous.compliance_flags or () if f != FLAG_COMPLIANT}
        flags.add(FLAG_VMUR_AMENDMENT)
        now = timezone.now()
        approved = not rules.amendment_requires_approval

        SubmissionService.cancel_pending_retry(previous, reason='Superseded by a VMUR amendment')
        cls._mark_superseded(previous)

        amendment = Amendment.objects.create(
            organization=organization,
            original_record=record,
            supersedes_amendment=previous if isinstance(previous, Amendment) else None,
            clock_in_time=clock_in,
            clock_out_time=clock_out,
            total_duration=_duration_minutes(clock_in, clock_out),
            reason_code=reason_code,
            reason=reason.strip(),
            requested_by=actor,
            status=Amendment.STATUS_APPROVED if approved else Amendment.STATUS_PENDING_APPROVAL,
            reviewed_at=now if approved else None,
            review_notes='' if not approved else 'Approval not required in this jurisdiction',
            expires_at=now + timedelta(days=getattr(settings, 'EVV_AMENDMENT_EXPIRY_DAYS', 30)),
            original_data=_snapshot(previous),
            corrected_data={
                'clock_in_time': clock_in.isoformat(),
                'clock_out_time': clock_out.isoformat(),
                'total_duration': _duration_minutes(clock_in, clock_out),
            },
            changes_summary=[
                {'field': c['field'], 'from': c['from'].isoformat() if c['from'] else None, 'to': c['to'].isoformat()}
                for c in changes
            ],
            compliance_flags=sorted(flags),
            created_by=actor,
        )
        if approved:
            SubmissionService.queue(amendment)

        record_audit_event(
            organization=organization,
            action='evv.amendment_created',
            resource=amendment,
            user=actor,
            old_values=amendment.original_data,
            new_values=dict(amendment.corrected_data, status=amendment.status, reason_code=reason_code),
        )
        logger.info(
            "VMUR amendment %s created for record %s (%s, %s)",
            amendment.pk, record.pk, reason_code, amendment.status,
            extra=log_extra(organization=organization, record_id=record.pk),
        )
        return {'amendment': amendment, 'record': record, 'superseded': previous}

    @classmethod
    def _review(cls, organization, actor, amendment_id, expected_version, target, notes):
        from apps.evv.models import Amendment

        if not user_has_any_role(actor, OVERRIDE_ROLES):
            raise PermissionDeniedException("Only supervisors or administrators can review amendments")

        amendment = cls._get_amendment_for_update(organization, amendment_id)
        if expected_version is not None and amendment.version != expected_version:
            raise VersionConflictError('amendment')
        if amendment.status != Amendment.STATUS_PENDING_APPROVAL:
            raise InvalidTransitionError(amendment.status, target)

        now = timezone.now()
        updated = Amendment.objects.filter(
            pk=amendment.pk,
            version=amendment.version,
            status=Amendment.STATUS_PENDING_APPROVAL,
        ).update(
            status=target,
            approved_by=actor,
            reviewed_at=now,
            review_notes=notes or '',
            version=F('version') + 1,
            updated_by=actor,
            updated_at=now,
        )
        if not updated:
            raise VersionConflictError('amendment')
        amendment.refresh_from_db()
        return amendment

    @classmethod
    @transaction.atomic
    def approve_amendment(cls, organization, actor, amendment_id, expected_version=None, notes='') -> Dict:
        from apps.evv.models import Amendment

        amendment = cls._review(organization, actor, amendment_id, expected_version, Amendment.STATUS_APPROVED, notes)
        SubmissionService.queue(amendment)
        record_audit_event(
            organization=organization,
            action='evv.amendment_approved',
            resource=amendment,
            user=actor,
            old_values={'status': Amendment.STATUS_PENDING_APPROVAL},
            new_values={'status': amendment.status, 'notes': amendment.review_notes},
        )
        logger.info("VMUR amendment %s approved by %s", amendment.pk, actor.email)
        return {'amendment': amendment}

    @classmethod
    @transaction.atomic
    def reject_amendment(cls, organization, actor, amendment_id, expected_version=None, notes='') -> Dict:
        from apps.evv.models import Amendment

        if not (notes or '').strip():
            raise ValidationException('A rejection note is required', field='notes')
        amendment = cls._review(organization, actor, amendment_id, expected_version, Amendment.STATUS_REJECTED, notes)
        restored = cls._restore_previous(amendment)
        record_audit_event(
            organization=organization,
            action='evv.amendment_rejected',
            resource=amendment,
            user=actor,
            old_values={'status': Amendment.STATUS_PENDING_APPROVAL},
            new_values={'status': amendment.status, 'notes': amendment.review_notes, 'restored': str(restored.pk)},
        )
        logger.info("VMUR amendment %s rejected by %s", amendment.pk, actor.email)
        return {'amendment': amendment, 'restored': restored}

    @classmethod
    def _restore_previous(cls, amendment):
        """Put the version this amendment superseded back in force."""
        previous = amendment.supersedes_amendment or amendment.original_record
        model = type(previous)
        model.objects.filter(pk=previous.pk).update(
            is_superseded=False,
            superseded_at=None,
            version=F('version') + 1,
            updated_at=timezone.now(),
        )
        previous.refresh_from_db()
        if previous.submission_status == model.SUBMISSION_CANCELLED:
            SubmissionService.queue(previous)
        return previous

    @classmethod
    def expire_stale_amendments(cls, organization) -> int:
        """Expire amendments still awaiting approval past their deadline."""
        from apps.evv.models import Amendment

        stale_ids = list(
            Amendment.objects.filter(
                organization=organization,
                status=Amendment.STATUS_PENDING_APPROVAL,
                expires_at__lt=timezone.now(),
            ).values_list('pk', flat=True)
        )
        expired = 0
        for amendment_id in stale_ids:
            with transaction.atomic():
                amendment = Amendment.objects.select_for_update().get(pk=amendment_id)
                if amendment.status != Amendment.STATUS_PENDING_APPROVAL:
                    continue
                Amendment.objects.filter(pk=amendment.pk).update(
                    status=Amendment.STATUS_EXPIRED,
                    version=F('version') + 1,
                    updated_at=timezone.now(),
                )
                amendment.refresh_from_db()
                cls._restore_previous(amendment)
                record_audit_event(
                    organization=organization,
                    action='evv.amendment_expired',
                    resource=amendment,
                    old_values={'status': Amendment.STATUS_PENDING_APPROVAL},
                    new_values={'status': amendment.status},
                )
            expired += 1
        if expired:
            logger.warning("Expired %d unapproved VMUR amendment(s)", expired)
        return expired
