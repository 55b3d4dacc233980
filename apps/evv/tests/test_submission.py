from datetime import date, datetime, timezone as dt_timezone
from unittest.mock import MagicMock, patch

import requests
from django.test import SimpleTestCase, TestCase, override_settings

from apps.authentication.models import User
from apps.core.exceptions import ConflictException
from apps.evv.aggregators import (
    HHAeXchangeClient,
    SandataClient,
    SubmissionData,
    TellusClient,
    get_aggregator_client,
    missing_federal_elements,
)
from apps.evv.constants import CLOCK_IN, CLOCK_OUT
from apps.evv.exceptions import TerminalSubmissionError
from apps.evv.models import EVVRecord, SubmissionAttempt
from apps.evv.services import AmendmentService, ClockService, SubmissionService

from .factories import OrganizationFactory, UserFactory, clock_event, eligible_visit


def aggregator_reply(status_code, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body if body is not None else {}
    return response


ACCEPTED = aggregator_reply(200, {'status': 'ACCEPTED', 'confirmationNumber': 'CONF-1', 'transactionId': 'TX-9'})


class SubmissionPipelineTests(TestCase):

    def setUp(self):
        self.organization = OrganizationFactory()
        self.coordinator = UserFactory(organization=self.organization, role=User.ROLE_COORDINATOR)
        self.visit = eligible_visit(self.organization, state='FL')
        ClockService.clock_in(self.organization, self.coordinator, self.visit.pk, clock_event(self.visit, CLOCK_IN))

    def complete_visit(self):
        with self.captureOnCommitCallbacks(execute=True):
            result = ClockService.clock_out(
                self.organization, self.coordinator, self.visit.pk, clock_event(self.visit, CLOCK_OUT),
            )
        return EVVRecord.objects.get(pk=result['record'].pk)

    def outcomes(self, record):
        return list(
            SubmissionAttempt.objects.filter(evv_record=record)
            .order_by('attempt_number')
            .values_list('outcome', flat=True)
        )

    @patch('apps.evv.aggregators.requests.post')
    def test_server_errors_retry_until_accepted(self, mock_post):
        mock_post.side_effect = [
            aggregator_reply(500), aggregator_reply(500), aggregator_reply(500), ACCEPTED,
        ]

        record = self.complete_visit()

        self.assertEqual(mock_post.call_count, 4)
        self.assertEqual(self.outcomes(record), ['FAILED', 'FAILED', 'FAILED', 'SUCCESS'])
        self.assertEqual(record.submission_status, EVVRecord.SUBMISSION_SUBMITTED)
        self.assertTrue(record.submitted_to_payor)
        self.assertEqual(record.confirmation_id, 'CONF-1')
        self.assertEqual(record.payor_approval_status, EVVRecord.PAYOR_PENDING)
        self.assertIsNone(record.next_retry_at)

        retried = SubmissionAttempt.objects.filter(evv_record=record, outcome='FAILED')
        self.assertTrue(all(attempt.retryable for attempt in retried))
        self.assertEqual({attempt.http_status for attempt in retried}, {500})

    @patch('apps.evv.aggregators.requests.post')
    def test_every_attempt_carries_the_same_idempotency_key(self, mock_post):
        mock_post.side_effect = [aggregator_reply(503), ACCEPTED]

        self.complete_visit()

        keys = {call.kwargs['headers']['Idempotency-Key'] for call in mock_post.call_args_list}
        self.assertEqual(len(keys), 1)
        self.assertEqual(mock_post.call_args.kwargs['headers']['X-API-Key'], 'test-hhax-key')

    @patch('apps.evv.aggregators.requests.post')
    def test_rate_limited_attempts_are_marked_retry_queued(self, mock_post):
        mock_post.side_effect = [aggregator_reply(429, {'errorCode': 'RATE_LIMIT_EXCEEDED'}), ACCEPTED]

        record = self.complete_visit()

        self.assertEqual(self.outcomes(record), ['RETRY_QUEUED', 'SUCCESS'])
        first = SubmissionAttempt.objects.get(evv_record=record, attempt_number=1)
        self.assertEqual(first.error_code, 'RATE_LIMIT_EXCEEDED')
        self.assertIsNotNone(first.next_retry_at)

    @patch('apps.evv.aggregators.requests.post')
    def test_timeouts_are_retried(self, mock_post):
        mock_post.side_effect = [requests.exceptions.Timeout(), ACCEPTED]

        record = self.complete_visit()

        first = SubmissionAttempt.objects.get(evv_record=record, attempt_number=1)
        self.assertEqual(first.error_code, 'NETWORK_TIMEOUT')
        self.assertIsNone(first.http_status)
        self.assertEqual(record.submission_status, EVVRecord.SUBMISSION_SUBMITTED)

    @override_settings(EVV_SUBMISSION_MAX_ATTEMPTS=3)
    @patch('apps.evv.aggregators.requests.post')
    def test_retries_stop_at_the_attempt_limit(self, mock_post):
        mock_post.return_value = aggregator_reply(502)

        record = self.complete_visit()

        self.assertEqual(mock_post.call_count, 3)
        self.assertEqual(self.outcomes(record), ['FAILED', 'FAILED', 'FAILED'])
        self.assertEqual(record.submission_status, EVVRecord.SUBMISSION_FAILED)
        self.assertEqual(record.submission_attempt_count, 3)

    @patch('apps.evv.aggregators.requests.post')
    def test_validation_errors_are_terminal(self, mock_post):
        mock_post.return_value = aggregator_reply(400, {
            'errorCode': 'INVALID_MEMBER',
            'errors': [{'message': 'Member not found'}],
        })

        record = self.complete_visit()

        self.assertEqual(mock_post.call_count, 1)
        self.assertEqual(record.submission_status, EVVRecord.SUBMISSION_FAILED)
        attempt = SubmissionAttempt.objects.get(evv_record=record)
        self.assertFalse(attempt.retryable)
        self.assertEqual(attempt.error_code, 'INVALID_MEMBER')
        self.assertEqual(attempt.failure_reason, 'Member not found')

    @patch('apps.evv.aggregators.requests.post')
    def test_failed_record_can_be_retried(self, mock_post):
        mock_post.side_effect = [aggregator_reply(400, {'errorCode': 'INVALID_MEMBER'}), ACCEPTED]
        record = self.complete_visit()

        with self.captureOnCommitCallbacks(execute=True):
            SubmissionService.retry_submission(self.organization, self.coordinator, record.pk)

        record.refresh_from_db()
        self.assertEqual(record.submission_status, EVVRecord.SUBMISSION_SUBMITTED)
        self.assertEqual(self.outcomes(record), ['FAILED', 'SUCCESS'])

    @patch('apps.evv.aggregators.requests.post')
    def test_submitted_record_cannot_be_retried(self, mock_post):
        mock_post.return_value = ACCEPTED
        record = self.complete_visit()

        with self.assertRaises(ConflictException):
            SubmissionService.retry_submission(self.organization, self.coordinator, record.pk)

    @patch('apps.evv.aggregators.requests.post')
    def test_unchanged_content_is_not_resent(self, mock_post):
        mock_post.return_value = ACCEPTED
        record = self.complete_visit()

        result = SubmissionService.submit(record)

        self.assertEqual(result, {'status': 'already_submitted', 'confirmation_id': 'CONF-1'})
        self.assertEqual(mock_post.call_count, 1)
        self.assertEqual(SubmissionAttempt.objects.filter(evv_record=record).count(), 1)

    @override_settings(EVV_AGGREGATORS={})
    @patch('apps.evv.aggregators.requests.post')
    def test_unconfigured_aggregator_fails_without_calling_out(self, mock_post):
        record = self.complete_visit()

        mock_post.assert_not_called()
        self.assertEqual(record.submission_status, EVVRecord.SUBMISSION_FAILED)
        attempt = SubmissionAttempt.objects.get(evv_record=record)
        self.assertEqual(attempt.error_code, 'AGGREGATOR_NOT_CONFIGURED')

    @patch('apps.evv.aggregators.requests.post')
    def test_superseded_versions_are_skipped(self, mock_post):
        mock_post.return_value = ACCEPTED
        record = self.complete_visit()
        AmendmentService.create_amendment(
            self.organization, self.coordinator, record.pk,
            corrections={'clock_out_time': record.clock_out_time.replace(minute=30)},
            reason='Clock-out entered late', reason_code='INCORRECT_CLOCK_TIME',
        )

        record.refresh_from_db()
        self.assertEqual(SubmissionService.submit(record), {'status': 'skipped', 'reason': 'superseded'})

    def retrying_record(self):
        with self.captureOnCommitCallbacks():
            record = self.complete_visit_without_submitting()
        EVVRecord.objects.filter(pk=record.pk).update(submission_status=EVVRecord.SUBMISSION_RETRYING)
        return EVVRecord.objects.get(pk=record.pk)

    def complete_visit_without_submitting(self):
        result = ClockService.clock_out(
            self.organization, self.coordinator, self.visit.pk, clock_event(self.visit, CLOCK_OUT),
        )
        return result['record']

    def amend_during_request(self, record, reply):
        def post(*args, **kwargs):
            AmendmentService.create_amendment(
                self.organization, self.coordinator, record.pk,
                corrections={'clock_out_time': record.clock_out_time.replace(minute=30)},
                reason='Clock-out entered late', reason_code='INCORRECT_CLOCK_TIME',
            )
            return reply
        return post

    @patch('apps.evv.aggregators.requests.post')
    def test_amendment_during_a_failing_request_keeps_the_record_cancelled(self, mock_post):
        record = self.retrying_record()
        mock_post.side_effect = self.amend_during_request(record, aggregator_reply(500))

        result = SubmissionService.submit(record)

        record.refresh_from_db()
        self.assertEqual(result, {'status': 'skipped', 'reason': 'superseded'})
        self.assertTrue(record.is_superseded)
        self.assertEqual(record.submission_status, EVVRecord.SUBMISSION_CANCELLED)
        self.assertIsNone(record.next_retry_at)
        self.assertEqual(self.outcomes(record), ['CANCELLED', 'FAILED'])
        self.assertFalse(SubmissionAttempt.objects.get(evv_record=record, outcome='FAILED').retryable)

    @patch('apps.evv.aggregators.requests.post')
    def test_amendment_during_an_accepted_request_is_not_marked_submitted(self, mock_post):
        record = self.retrying_record()
        mock_post.side_effect = self.amend_during_request(record, ACCEPTED)

        result = SubmissionService.submit(record)

        record.refresh_from_db()
        self.assertEqual(result['status'], 'skipped')
        self.assertEqual(record.submission_status, EVVRecord.SUBMISSION_CANCELLED)
        self.assertFalse(record.submitted_to_payor)
        self.assertEqual(self.outcomes(record), ['CANCELLED', 'SUCCESS'])

    @patch('apps.evv.aggregators.requests.post')
    def test_amendment_submission_carries_the_reason(self, mock_post):
        mock_post.return_value = ACCEPTED
        record = self.complete_visit()

        with self.captureOnCommitCallbacks(execute=True):
            result = AmendmentService.create_amendment(
                self.organization, self.coordinator, record.pk,
                corrections={'clock_out_time': record.clock_out_time.replace(minute=30)},
                reason='Clock-out entered late', reason_code='INCORRECT_CLOCK_TIME',
            )

        amendment = result['amendment']
        amendment.refresh_from_db()
        self.assertEqual(amendment.submission_status, amendment.SUBMISSION_SUBMITTED)
        payload = mock_post.call_args.kwargs['json']
        self.assertEqual(payload['visitMaintenanceReason'], 'INCORRECT_CLOCK_TIME')
        self.assertEqual(payload['totalMinutes'], amendment.total_duration)
        self.assertTrue(SubmissionAttempt.objects.filter(amendment=amendment, outcome='SUCCESS').exists())


def sample_data(**overrides):
    values = dict(
        record_id='rec-1',
        visit_id='visit-1',
        organization_id='org-1',
        provider_id='PRV-100',
        state='FL',
        client_id='client-1',
        client_name='Ada Lovelace',
        client_medicaid_id='M123',
        caregiver_employee_id='EMP-7',
        caregiver_name='Grace Hopper',
        service_type_code='PCS',
        service_type_name='Personal Care',
        service_date=date(2026, 3, 2),
        clock_in_time=datetime(2026, 3, 2, 9, 0, tzinfo=dt_timezone.utc),
        clock_out_time=datetime(2026, 3, 2, 11, 0, tzinfo=dt_timezone.utc),
        total_duration=120,
        clock_in_location={'latitude': 27.95, 'longitude': -82.45, 'accuracy': 8.0},
        clock_out_location={'latitude': 27.95, 'longitude': -82.45, 'accuracy': 9.0},
        verification_method='GPS',
        verification_level='FULL',
        compliance_flags=('COMPLIANT',),
    )
    values.update(overrides)
    return SubmissionData(**values)


class AggregatorFormatTests(SimpleTestCase):

    def test_hhaexchange_payload(self):
        payload = HHAeXchangeClient('https://hhax.test', 'key').format_payload(sample_data())
        self.assertEqual(payload['memberMedicaidId'], 'M123')
        self.assertEqual(payload['clockInTime'], '2026-03-02T09:00:00+00:00')
        self.assertEqual(payload['clockMethod'], 'MOBILE_GPS')
        self.assertEqual(payload['verificationStatus'], 'VERIFIED')
        self.assertEqual(payload['clockOutAccuracy'], 9.0)
        self.assertNotIn('visitMaintenanceReason', payload)

    def test_hhaexchange_flags_exceptions(self):
        payload = HHAeXchangeClient('https://hhax.test', 'key').format_payload(
            sample_data(compliance_flags=('GEOFENCE_VIOLATION',), verification_method='PHONE'),
        )
        self.assertEqual(payload['verificationStatus'], 'EXCEPTION')
        self.assertEqual(payload['clockMethod'], 'TELEPHONY')

    def test_sandata_payload(self):
        client = SandataClient('https://sandata.test', 'token')
        payload = client.format_payload(sample_data(amendment_reason_code='APP_ERROR'))
        self.assertEqual(payload['memberIdentifier'], 'M123')
        self.assertEqual(payload['serviceLocation']['latitude'], 27.95)
        self.assertEqual(payload['verificationType'], 'GPS')
        self.assertEqual(payload['stateSpecific']['visitChangeReason'], 'APP_ERROR')
        self.assertEqual(client.auth_headers(), {'Authorization': 'Bearer token'})

    def test_tellus_payload(self):
        payload = TellusClient('https://tellus.test', 'key').format_payload(
            sample_data(compliance_flags=('GEOFENCE_VIOLATION',), clock_out_location=None),
        )
        self.assertEqual(payload['timeInfo']['totalMinutes'], 120)
        self.assertIn('checkInLocation', payload['locationInfo'])
        self.assertNotIn('checkOutLocation', payload['locationInfo'])
        self.assertFalse(payload['verificationInfo']['geofenceCompliant'])

    def test_tellus_reply_parsing(self):
        client = TellusClient('https://tellus.test', 'key')
        accepted = client.parse_response(aggregator_reply(200, {'confirmationCode': 'T-1', 'referenceNumber': 'R-2'}))
        self.assertTrue(accepted.success)
        self.assertEqual((accepted.confirmation_id, accepted.transaction_id), ('T-1', 'R-2'))

        rejected = client.parse_response(aggregator_reply(422, {'errors': [{'errorMessage': 'Bad date'}]}))
        self.assertFalse(rejected.success)
        self.assertFalse(rejected.retryable)
        self.assertEqual(rejected.error_code, 'HTTP_422')
        self.assertEqual(rejected.validation_errors, ['Bad date'])

    def test_rejected_status_in_a_200_reply(self):
        response = HHAeXchangeClient('https://hhax.test', 'key').parse_response(
            aggregator_reply(200, {'status': 'REJECTED', 'errorCode': 'TEMPORARY_ERROR'}),
        )
        self.assertFalse(response.success)
        self.assertTrue(response.retryable)

    def test_required_elements(self):
        self.assertEqual(missing_federal_elements(sample_data()), [])
        missing = missing_federal_elements(sample_data(
            service_type_code='', clock_in_location=None, clock_out_time=None,
        ))
        self.assertEqual(missing, ['service_type', 'location', 'begin_end_time'])

    def test_phone_visits_need_no_coordinates(self):
        data = sample_data(clock_in_location=None, verification_method='PHONE')
        self.assertEqual(missing_federal_elements(data), [])

    @override_settings(EVV_AGGREGATORS={'SANDATA': {'endpoint': 'https://sandata.test', 'credential': 'tok'}})
    def test_client_lookup(self):
        self.assertIsInstance(get_aggregator_client('SANDATA'), SandataClient)
        with self.assertRaises(TerminalSubmissionError):
            get_aggregator_client('HHAEXCHANGE')
        with self.assertRaises(TerminalSubmissionError):
            get_aggregator_client('NOPE')
