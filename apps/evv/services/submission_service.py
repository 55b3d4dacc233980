"""
Aggregator submission pipeline.

One call to ``SubmissionService.submit`` is one attempt: it resolves the
aggregator from the rule table, builds the payload, short-circuits when the
same content was already accepted, and otherwise posts and logs a
``SubmissionAttempt``. Retries are scheduled as new Celery tasks with an
exponential countdown.
"""

import hashlib
import json
import logging
from datetime import timedelta
from typing import Dict

from celery import current_app
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction
from django.utils import timezone

from apps.core.audit import record_audit_event
from apps.core.exceptions import ConflictException, ValidationException
from apps.core.logging import log_extra

from ..aggregators import SubmissionData, get_aggregator_client, missing_federal_elements
from ..constants import CLOCK_IN, CLOCK_OUT
from ..exceptions import RecordNotFound, TerminalSubmissionError
from ..rules import JurisdictionKey, rule_registry
from ..state_machine import effective_entries

logger = logging.getLogger(__name__)

KIND_RECORD = 'record'
KIND_AMENDMENT = 'amendment'


def _location(entry):
    if entry is None or entry.latitude is None or entry.longitude is None:
        return None
    return {'latitude': entry.latitude, 'longitude': entry.longitude, 'accuracy': entry.accuracy}


class SubmissionService:
    """Submit verified records and amendments to the state aggregator."""

    @staticmethod
    def kind_of(subject) -> str:
        from apps.evv.models import Amendment
        return KIND_AMENDMENT if isinstance(subject, Amendment) else KIND_RECORD

    @staticmethod
    def model_for(kind):
        from apps.evv.models import Amendment, EVVRecord
        if kind == KIND_RECORD:
            return EVVRecord
        if kind == KIND_AMENDMENT:
            return Amendment
        raise ValueError(f"Unknown submission kind: {kind}")

    @classmethod
    def get_subject(cls, organization, kind, subject_id):
        model = cls.model_for(kind)
        try:
            return model.objects.get(organization=organization, pk=subject_id)
        except model.DoesNotExist:
            raise RecordNotFound(subject_id, resource_type='EVV record' if kind == KIND_RECORD else 'Amendment')

    @staticmethod
    def base_record(subject):
        return getattr(subject, 'original_record', None) or subject

    @classmethod
    def rules_for(cls, subject):
        record = cls.base_record(subject)
        return rule_registry.resolve(JurisdictionKey(record.state, record.payer_type, record.service_type_code))

    @classmethod
    def build_submission_data(cls, subject) -> SubmissionData:
        record = cls.base_record(subject)
        grouped = effective_entries(record)
        clock_in = grouped[CLOCK_IN][0] if grouped[CLOCK_IN] else None
        clock_out = grouped[CLOCK_OUT][0] if grouped[CLOCK_OUT] else None
        is_amendment = subject is not record

        clock_in_time = subject.clock_in_time
        return SubmissionData(
            record_id=str(subject.pk),
            visit_id=str(record.visit_id),
            organization_id=str(record.organization_id),
            provider_id=record.organization.medicaid_provider_id,
            state=record.state,
            client_id=str(record.client_id),
            client_name=record.client_name,
            client_medicaid_id=record.client_medicaid_id,
            caregiver_employee_id=record.caregiver_employee_id,
            caregiver_name=record.caregiver_name,
            service_type_code=record.service_type_code,
            service_type_name=record.service_type_name,
            service_date=clock_in_time.date() if is_amendment and clock_in_time else record.service_date,
            clock_in_time=clock_in_time,
            clock_out_time=subject.clock_out_time,
            total_duration=subject.total_duration,
            clock_in_location=_location(clock_in),
            clock_out_location=_location(clock_out),
            verification_method=clock_in.verification_method if clock_in else '',
            verification_level=record.verification_level,
            compliance_flags=tuple(subject.compliance_flags or ()),
            amendment_reason_code=subject.reason_code if is_amendment else '',
        )

    @staticmethod
    def content_hash(payload: Dict) -> str:
        """SHA-256 of the canonical JSON form of ``payload``."""
        canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'), cls=DjangoJSONEncoder)
        return hashlib.sha256(canonical.encode('utf-8')).hexdigest()

    @staticmethod
    def backoff_seconds(attempt_number: int) -> int:
        base = getattr(settings, 'EVV_SUBMISSION_RETRY_BASE_SECONDS', 60)
        cap = getattr(settings, 'EVV_SUBMISSION_RETRY_MAX_SECONDS', 3600)
        return int(min(base * (2 ** max(attempt_number - 1, 0)), cap))

    @staticmethod
    def max_attempts() -> int:
        return getattr(settings, 'EVV_SUBMISSION_MAX_ATTEMPTS', 5)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    @classmethod
    def schedule(cls, subject, countdown=None):
        """Enqueue one submission attempt once the current transaction commits."""
        from apps.evv.tasks import submit_evv_record

        kind = cls.kind_of(subject)
        model = type(subject)
        organization_id = str(subject.organization_id)
        subject_id = str(subject.pk)
        expected_status = subject.submission_status

        def _enqueue():
            result = submit_evv_record.apply_async(args=[organization_id, kind, subject_id], countdown=countdown)
            model.objects.filter(pk=subject_id, submission_status=expected_status).update(retry_task_id=result.id or '')

        transaction.on_commit(_enqueue)

    @classmethod
    def queue(cls, subject):
        """Mark ``subject`` QUEUED and schedule its first attempt after commit."""
        model = type(subject)
        model.objects.filter(pk=subject.pk).update(
            submission_status=model.SUBMISSION_QUEUED,
            updated_at=timezone.now(),
        )
        subject.submission_status = model.SUBMISSION_QUEUED
        cls.schedule(subject)
        logger.info(
            "Queued %s %s for submission",
            cls.kind_of(subject), subject.pk,
            extra=log_extra(organization=subject.organization_id, subject_id=subject.pk),
        )

    @classmethod
    def cancel_pending_retry(cls, subject, reason: str):
        """
        Cancel a queued or retrying submission of a superseded version: revoke the
        Celery task and log a CANCELLED attempt.
        """
        from apps.evv.models import SubmissionAttempt

        model = type(subject)
        if subject.submission_status not in (model.SUBMISSION_QUEUED, model.SUBMISSION_RETRYING):
            return None

        if subject.retry_task_id and not getattr(settings, 'CELERY_TASK_ALWAYS_EAGER', False):
            current_app.control.revoke(subject.retry_task_id)

        attempt = SubmissionAttempt.objects.create(
            organization_id=subject.organization_id,
            **{cls._fk_name(subject): subject},
            attempt_number=cls._next_attempt_number(subject),
            aggregator=cls.rules_for(subject).aggregator or '',
            outcome=SubmissionAttempt.OUTCOME_CANCELLED,
            failure_reason=reason,
        )
        model.objects.filter(pk=subject.pk).update(
            submission_status=model.SUBMISSION_CANCELLED,
            retry_task_id='',
            next_retry_at=None,
            updated_at=timezone.now(),
        )
        subject.submission_status = model.SUBMISSION_CANCELLED
        logger.info("Cancelled pending submission of %s %s: %s", cls.kind_of(subject), subject.pk, reason)
        return attempt

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    @staticmethod
    def _fk_name(subject):
        return 'amendment' if SubmissionService.kind_of(subject) == KIND_AMENDMENT else 'evv_record'

    @classmethod
    def _next_attempt_number(cls, subject):
        from apps.evv.models import SubmissionAttempt
        return SubmissionAttempt.objects.filter(**{cls._fk_name(subject): subject}).count() + 1

    @classmethod
    def submit(cls, subject) -> Dict:
        """
        Run one submission attempt for ``subject`` (an EVVRecord or Amendment).

        Returns a dict with ``status`` in submitted / already_submitted /
        retry_scheduled / failed / skipped.
        """
        from apps.evv.models import SubmissionAttempt

        model = type(subject)
        with transaction.atomic():
            subject = model.objects.select_for_update().get(pk=subject.pk)
            skip = cls._skip_reason(subject)
            if skip:
                logger.info("Skipping submission of %s %s: %s", cls.kind_of(subject), subject.pk, skip)
                return {'status': 'skipped', 'reason': skip}

            rules = cls.rules_for(subject)
            attempt_number = cls._next_attempt_number(subject)
            try:
                if not rules.aggregator:
                    raise TerminalSubmissionError(
                        f"No aggregator configured for {rules.key}", code='NO_AGGREGATOR'
                    )
                data = cls.build_submission_data(subject)
                missing = missing_federal_elements(data)
                if missing:
                    raise TerminalSubmissionError(
                        f"Missing required EVV elements: {', '.join(missing)}", code='MISSING_EVV_ELEMENTS'
                    )
                client = get_aggregator_client(rules.aggregator)
            except TerminalSubmissionError as exc:
                return cls._record_terminal_failure(subject, attempt_number, rules.aggregator or '', exc)

            payload = client.format_payload(data)
            content_hash = cls.content_hash(payload)

            previous = SubmissionAttempt.objects.filter(
                **{cls._fk_name(subject): subject},
                content_hash=content_hash,
                outcome=SubmissionAttempt.OUTCOME_SUCCESS,
            ).order_by('-attempted_at').first()
            if previous is not None:
                cls._mark_submitted(subject, previous.confirmation_id, content_hash, previous.attempted_at)
                logger.info("Submission of %s %s unchanged; reusing confirmation %s",
                            cls.kind_of(subject), subject.pk, previous.confirmation_id)
                return {'status': 'already_submitted', 'confirmation_id': previous.confirmation_id}

        response = client.submit(payload, idempotency_key=f"{subject.pk}:{content_hash}")

        with transaction.atomic():
            subject = model.objects.select_for_update().get(pk=subject.pk)
            common = dict(
                organization_id=subject.organization_id,
                attempt_number=attempt_number,
                aggregator=client.aggregator_id,
                http_status=response.http_status,
                content_hash=content_hash,
                payload=payload,
                transaction_id=response.transaction_id,
                **{cls._fk_name(subject): subject},
            )

            # Superseded or cancelled while the request was in flight
            skip = cls._skip_reason(subject)
            if skip:
                common['attempt_number'] = cls._next_attempt_number(subject)
                SubmissionAttempt.objects.create(
                    outcome=(
                        SubmissionAttempt.OUTCOME_SUCCESS if response.success
                        else SubmissionAttempt.OUTCOME_FAILED
                    ),
                    confirmation_id=response.confirmation_id or '',
                    error_code=response.error_code,
                    failure_reason=response.error_message,
                    retryable=False,
                    **common,
                )
                logger.warning(
                    "Submission of %s %s finished after it was %s; status left unchanged",
                    cls.kind_of(subject), subject.pk, skip,
                    extra=log_extra(organization=subject.organization_id, attempt=attempt_number),
                )
                return {'status': 'skipped', 'reason': skip}

            if response.success:
                SubmissionAttempt.objects.create(
                    outcome=SubmissionAttempt.OUTCOME_SUCCESS,
                    confirmation_id=response.confirmation_id,
                    **common,
                )
                cls._mark_submitted(subject, response.confirmation_id, content_hash, timezone.now())
                logger.info(
                    "Submitted %s %s to %s (confirmation %s)",
                    cls.kind_of(subject), subject.pk, client.aggregator_id, response.confirmation_id,
                    extra=log_extra(organization=subject.organization_id, attempt=attempt_number),
                )
                return {'status': 'submitted', 'confirmation_id': response.confirmation_id}

            run_attempts = subject.submission_attempt_count + 1
            if response.retryable and run_attempts < cls.max_attempts():
                countdown = cls.backoff_seconds(run_attempts)
                next_retry_at = timezone.now() + timedelta(seconds=countdown)
                outcome = (
                    SubmissionAttempt.OUTCOME_RETRY_QUEUED
                    if response.http_status == 429
                    else SubmissionAttempt.OUTCOME_FAILED
                )
                SubmissionAttempt.objects.create(
                    outcome=outcome,
                    error_code=response.error_code,
                    failure_reason=response.error_message,
                    retryable=True,
                    next_retry_at=next_retry_at,
                    **common,
                )
                model.objects.filter(pk=subject.pk).update(
                    submission_status=model.SUBMISSION_RETRYING,
                    submitted_to_payor=False,
                    submission_attempt_count=run_attempts,
                    next_retry_at=next_retry_at,
                    updated_at=timezone.now(),
                )
                subject.submission_status = model.SUBMISSION_RETRYING
                cls.schedule(subject, countdown=countdown)
                logger.warning(
                    "Submission of %s %s failed (%s); retry %d in %ss",
                    cls.kind_of(subject), subject.pk, response.error_code, run_attempts + 1, countdown,
                    extra=log_extra(organization=subject.organization_id, error_code=response.error_code),
                )
                return {'status': 'retry_scheduled', 'countdown': countdown, 'error_code': response.error_code}

            SubmissionAttempt.objects.create(
                outcome=SubmissionAttempt.OUTCOME_FAILED,
                error_code=response.error_code,
                failure_reason=response.error_message,
                retryable=response.retryable,
                **common,
            )
            return cls._mark_failed(subject, run_attempts, response.error_code, response.error_message)

    @classmethod
    def _skip_reason(cls, subject):
        model = type(subject)
        if subject.is_superseded:
            return 'superseded'
        if subject.submission_status == model.SUBMISSION_CANCELLED:
            return 'cancelled'
        if cls.kind_of(subject) == KIND_AMENDMENT and subject.status != subject.STATUS_APPROVED:
            return f"amendment is {subject.status}"
        if cls.kind_of(subject) == KIND_RECORD and subject.record_status != subject.STATUS_COMPLETE:
            return f"record is {subject.record_status}"
        return None

    @classmethod
    def _mark_submitted(cls, subject, confirmation_id, content_hash, submitted_at):
        model = type(subject)
        model.objects.filter(pk=subject.pk).update(
            submission_status=model.SUBMISSION_SUBMITTED,
            submitted_to_payor=True,
            payor_approval_status=model.PAYOR_PENDING,
            confirmation_id=confirmation_id or '',
            submitted_content_hash=content_hash,
            submitted_at=submitted_at,
            retry_task_id='',
            next_retry_at=None,
            updated_at=timezone.now(),
        )

    @classmethod
    def _record_terminal_failure(cls, subject, attempt_number, aggregator, exc):
        from apps.evv.models import SubmissionAttempt

        SubmissionAttempt.objects.create(
            organization_id=subject.organization_id,
            attempt_number=attempt_number,
            aggregator=aggregator,
            outcome=SubmissionAttempt.OUTCOME_FAILED,
            error_code=exc.code,
            failure_reason=exc.message,
            retryable=False,
            **{cls._fk_name(subject): subject},
        )
        return cls._mark_failed(subject, subject.submission_attempt_count + 1, exc.code, exc.message)

    @classmethod
    def _mark_failed(cls, subject, run_attempts, error_code, message):
        model = type(subject)
        model.objects.filter(pk=subject.pk).update(
            submission_status=model.SUBMISSION_FAILED,
            submitted_to_payor=False,
            submission_attempt_count=run_attempts,
            retry_task_id='',
            next_retry_at=None,
            updated_at=timezone.now(),
        )
        subject.refresh_from_db()
        record_audit_event(
            organization=subject.organization,
            action='evv.submission_failed',
            resource=subject,
            new_values={'error_code': error_code, 'message': message, 'attempts': run_attempts},
        )
        logger.error(
            "Submission of %s %s failed permanently after %d attempt(s): %s %s",
            cls.kind_of(subject), subject.pk, run_attempts, error_code, message,
            extra=log_extra(organization=subject.organization_id, error_code=error_code),
        )
        return {'status': 'failed', 'error_code': error_code, 'message': message}

    # ------------------------------------------------------------------
    # Manual retry
    # ------------------------------------------------------------------

    @classmethod
    def current_version(cls, record):
        """The most recent non-superseded version of ``record``."""
        if not record.is_superseded:
            return record
        from apps.evv.models import Amendment

        live = record.amendments.filter(
            is_superseded=False,
            status__in=(Amendment.STATUS_PENDING_APPROVAL, Amendment.STATUS_APPROVED),
        )
        return live.order_by('-created_at').first() or record

    @classmethod
    def retry_submission(cls, organization, actor, record_id) -> Dict:
        from apps.evv.models import EVVRecord

        try:
            record = EVVRecord.objects.get(organization=organization, pk=record_id)
        except EVVRecord.DoesNotExist:
            raise RecordNotFound(record_id)

        if record.record_status != record.STATUS_COMPLETE:
            raise ValidationException('Only completed records can be submitted', field='record_status')

        subject = cls.current_version(record)
        model = type(subject)
        if cls.kind_of(subject) == KIND_AMENDMENT and subject.status != subject.STATUS_APPROVED:
            raise ConflictException(f"Current amendment is {subject.status}", code='amendment_not_approved')
        if subject.submission_status not in (model.SUBMISSION_FAILED, model.SUBMISSION_NOT_SUBMITTED):
            raise ConflictException(
                f"Submission is {subject.submission_status}; only failed or unsubmitted records can be retried",
                code='submission_in_progress',
            )

        with transaction.atomic():
            model.objects.filter(pk=subject.pk).update(submission_attempt_count=0)
            subject.submission_attempt_count = 0
            cls.queue(subject)
            record_audit_event(
                organization=organization,
                action='evv.submission_retry',
                resource=subject,
                user=actor,
                new_values={'submission_status': model.SUBMISSION_QUEUED},
            )
        return {'subject': subject, 'kind': cls.kind_of(subject)}
