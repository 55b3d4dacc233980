import uuid
from datetime import timedelta
from unittest.mock import patch

from django.test import TestCase
from django.utils import timezone

from apps.authentication.models import User
from apps.core.celery_tasks import TenantTaskError
from apps.evv.constants import CLOCK_IN, CLOCK_OUT
from apps.evv.models import Amendment, EVVRecord, TimeEntry
from apps.evv.services import AmendmentService, ClockService
from apps.evv.tasks import (
    expire_stale_amendments,
    reconcile_offline_entries,
    submit_evv_record,
    sweep_pending_submissions,
)

from .factories import OrganizationFactory, UserFactory, clock_event, eligible_visit


class EVVTaskTestCase(TestCase):

    def setUp(self):
        self.organization = OrganizationFactory()
        self.coordinator = UserFactory(organization=self.organization, role=User.ROLE_COORDINATOR)

    def completed_record(self, state='FL'):
        visit = eligible_visit(self.organization, state=state)
        ClockService.clock_in(self.organization, self.coordinator, visit.pk, clock_event(visit, CLOCK_IN))
        result = ClockService.clock_out(self.organization, self.coordinator, visit.pk, clock_event(visit, CLOCK_OUT))
        return result['record']


class SubmissionTaskTests(EVVTaskTestCase):

    def test_unknown_organization_is_refused(self):
        with self.assertRaises(TenantTaskError):
            sweep_pending_submissions(str(uuid.uuid4()))

    def test_missing_subject(self):
        result = submit_evv_record(str(self.organization.pk), 'record', str(uuid.uuid4()))
        self.assertEqual(result, {'status': 'missing'})

    def test_sweep_queues_completed_records_that_were_never_queued(self):
        record = self.completed_record()
        EVVRecord.objects.filter(pk=record.pk).update(submission_status=EVVRecord.SUBMISSION_NOT_SUBMITTED)

        with self.captureOnCommitCallbacks() as callbacks:
            result = sweep_pending_submissions(str(self.organization.pk))

        self.assertEqual(result, {'queued': 1, 'rescheduled': 0})
        self.assertEqual(len(callbacks), 1)
        record.refresh_from_db()
        self.assertEqual(record.submission_status, EVVRecord.SUBMISSION_QUEUED)

    def test_sweep_resends_overdue_retries(self):
        record = self.completed_record()
        EVVRecord.objects.filter(pk=record.pk).update(
            submission_status=EVVRecord.SUBMISSION_RETRYING,
            next_retry_at=timezone.now() - timedelta(minutes=5),
        )

        with self.captureOnCommitCallbacks() as callbacks:
            result = sweep_pending_submissions(str(self.organization.pk))

        self.assertEqual(result, {'queued': 0, 'rescheduled': 1})
        self.assertEqual(len(callbacks), 1)

    def test_sweep_leaves_future_retries_alone(self):
        record = self.completed_record()
        EVVRecord.objects.filter(pk=record.pk).update(
            submission_status=EVVRecord.SUBMISSION_RETRYING,
            next_retry_at=timezone.now() + timedelta(minutes=5),
        )
        self.assertEqual(sweep_pending_submissions(str(self.organization.pk)), {'queued': 0, 'rescheduled': 0})

    def test_sweep_is_scoped_to_the_organization(self):
        record = self.completed_record()
        EVVRecord.objects.filter(pk=record.pk).update(submission_status=EVVRecord.SUBMISSION_NOT_SUBMITTED)
        other = OrganizationFactory()

        self.assertEqual(sweep_pending_submissions(str(other.pk)), {'queued': 0, 'rescheduled': 0})

    @patch('apps.evv.aggregators.requests.post')
    def test_submit_task_runs_one_attempt(self, mock_post):
        mock_post.return_value.status_code = 200
        mock_post.return_value.json.return_value = {'confirmationNumber': 'CONF-42'}
        record = self.completed_record()

        result = submit_evv_record(str(self.organization.pk), 'record', str(record.pk))

        self.assertEqual(result, {'status': 'submitted', 'confirmation_id': 'CONF-42'})


class ReconciliationTaskTests(EVVTaskTestCase):

    def hold_clock_out(self):
        visit = eligible_visit(self.organization, state='FL')
        result = ClockService.clock_out(
            self.organization, self.coordinator, visit.pk,
            clock_event(visit, CLOCK_OUT, recorded_offline=True),
        )
        return visit, result['time_entry']

    def test_nothing_to_promote_without_a_clock_in(self):
        self.hold_clock_out()
        result = reconcile_offline_entries(str(self.organization.pk))
        self.assertEqual(result, {'reconciled': 0, 'flagged': 0})

    def test_old_provisional_entries_flag_the_record(self):
        visit, entry = self.hold_clock_out()
        TimeEntry.objects.filter(pk=entry.pk).update(received_at=timezone.now() - timedelta(hours=30))

        result = reconcile_offline_entries(str(self.organization.pk))

        self.assertEqual(result['flagged'], 1)
        self.assertTrue(EVVRecord.objects.get(visit_id=visit.pk).requires_review)
        self.assertEqual(reconcile_offline_entries(str(self.organization.pk))['flagged'], 0)


class AmendmentExpiryTaskTests(EVVTaskTestCase):

    def test_expires_overdue_amendments(self):
        record = self.completed_record(state='TX')
        amendment = AmendmentService.create_amendment(
            self.organization, self.coordinator, record.pk,
            corrections={'clock_in_time': record.clock_in_time + timedelta(minutes=10)},
            reason='Clock-in tapped after arrival', reason_code='INCORRECT_CLOCK_TIME',
        )['amendment']
        Amendment.objects.filter(pk=amendment.pk).update(expires_at=timezone.now() - timedelta(days=1))

        self.assertEqual(expire_stale_amendments(str(self.organization.pk)), {'expired': 1})
        amendment.refresh_from_db()
        self.assertEqual(amendment.status, Amendment.STATUS_EXPIRED)
