from datetime import timedelta

from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.authentication.authentication import issue_tokens_for_user
from apps.authentication.models import User
from apps.evv.constants import CLOCK_IN, CLOCK_OUT
from apps.evv.models import Amendment, EVVRecord, TimeEntry
from apps.evv.services import ClockService

from .factories import OrganizationFactory, UserFactory, clock_event, eligible_visit


class EVVAPITestCase(APITestCase):

    def setUp(self):
        self.organization = OrganizationFactory()
        self.coordinator = UserFactory(organization=self.organization, role=User.ROLE_COORDINATOR)
        self.supervisor = UserFactory(organization=self.organization, role=User.ROLE_SUPERVISOR)
        self.visit = eligible_visit(self.organization, state='FL')
        self.authenticate(self.coordinator)

    def authenticate(self, user):
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {issue_tokens_for_user(user)['access']}")

    def clock_payload(self, visit=None, at=None, **overrides):
        visit = visit or self.visit
        payload = {
            'visit_id': str(visit.pk),
            'timestamp': (at or visit.scheduled_start).isoformat(),
            'latitude': visit.client.latitude,
            'longitude': visit.client.longitude,
            'accuracy': 12.0,
            'method': 'GPS',
            'device': {'device_id': 'device-1', 'os': 'iOS 18', 'app_version': '3.2.0'},
        }
        payload.update(overrides)
        return payload

    def complete_visit(self, visit=None):
        visit = visit or self.visit
        ClockService.clock_in(self.organization, self.coordinator, visit.pk, clock_event(visit, CLOCK_IN))
        return ClockService.clock_out(
            self.organization, self.coordinator, visit.pk, clock_event(visit, CLOCK_OUT),
        )['record']


class ClockEndpointTests(EVVAPITestCase):

    def test_clock_in(self):
        response = self.client.post('/api/v1/evv/clock/clock-in/', self.clock_payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['message'], 'Clocked in.')
        self.assertEqual(body['data']['record']['record_status'], EVVRecord.STATUS_IN_PROGRESS)
        self.assertEqual(body['data']['time_entry']['status'], TimeEntry.STATUS_ACCEPTED)
        self.assertTrue(body['data']['verification']['passed'])
        self.assertEqual(body['data']['verification']['eligibility']['outcome'], 'ALLOW')
        self.assertIn('X-Correlation-ID', response)

    def test_clock_out_completes_the_visit(self):
        self.client.post('/api/v1/evv/clock/clock-in/', self.clock_payload(), format='json')

        with self.captureOnCommitCallbacks() as callbacks:
            response = self.client.post(
                '/api/v1/evv/clock/clock-out/',
                self.clock_payload(at=self.visit.scheduled_end),
                format='json',
            )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        data = response.json()['data']
        self.assertEqual(data['record']['record_status'], EVVRecord.STATUS_COMPLETE)
        self.assertTrue(data['submission_scheduled'])
        self.assertEqual(len(callbacks), 1)

    def test_rejected_clock_in_uses_the_error_envelope(self):
        payload = self.clock_payload(at=self.visit.scheduled_start - timedelta(hours=2))

        response = self.client.post('/api/v1/evv/clock/clock-in/', payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        error = response.json()['error']
        self.assertFalse(response.json()['success'])
        self.assertEqual(error['code'], 422)
        self.assertEqual(error['details']['code'], 'verification_rejected')
        self.assertEqual(error['details']['rejection'], 'TOO_EARLY')
        self.assertIn('time_entry_id', error['details'])

    def test_half_a_coordinate_is_a_validation_error(self):
        payload = self.clock_payload()
        del payload['longitude']

        response = self.client.post('/api/v1/evv/clock/clock-in/', payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('longitude', response.json()['error']['details'])

    def test_eligibility_block_is_forbidden(self):
        visit = eligible_visit(self.organization, state='FL')
        visit.caregiver.credentials.all().delete()

        response = self.client.post('/api/v1/evv/clock/clock-in/', self.clock_payload(visit), format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.json()['error']['details']['code'], 'eligibility_blocked')
        self.assertFalse(EVVRecord.objects.filter(visit_id=visit.pk).exists())

    def test_requires_authentication(self):
        self.client.credentials()
        response = self.client.post('/api/v1/evv/clock/clock-in/', self.clock_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_visits_of_another_organization_are_not_found(self):
        outsider = UserFactory(role=User.ROLE_ORG_ADMIN)
        self.authenticate(outsider)

        response = self.client.post('/api/v1/evv/clock/clock-in/', self.clock_payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertFalse(EVVRecord.objects.exists())


class RecordEndpointTests(EVVAPITestCase):

    def test_list_returns_current_versions(self):
        record = self.complete_visit()

        response = self.client.get('/api/v1/evv/records/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        body = response.json()
        self.assertEqual(body['pagination']['count'], 1)
        self.assertEqual(body['data'][0]['record_id'], str(record.pk))
        self.assertEqual(body['data'][0]['kind'], 'record')

    def test_list_filters_on_flags(self):
        self.complete_visit()
        response = self.client.get('/api/v1/evv/records/', {'flag': 'GEOFENCE_VIOLATION'})
        self.assertEqual(response.json()['pagination']['count'], 0)

    def test_records_are_isolated_by_organization(self):
        self.complete_visit()
        self.authenticate(UserFactory(role=User.ROLE_ORG_ADMIN))

        response = self.client.get('/api/v1/evv/records/')

        self.assertEqual(response.json()['pagination']['count'], 0)

    def test_caregivers_cannot_browse_records(self):
        self.authenticate(UserFactory(organization=self.organization, role=User.ROLE_CAREGIVER))
        response = self.client.get('/api/v1/evv/records/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_by_visit(self):
        record = self.complete_visit()

        response = self.client.get(f'/api/v1/evv/records/by-visit/{self.visit.pk}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.json()['data']
        self.assertEqual(data['record']['id'], str(record.pk))
        self.assertEqual(len(data['record']['time_entries']), 2)
        self.assertEqual(data['current_version']['kind'], 'record')
        self.assertEqual(data['amendments'], [])

    def test_by_visit_unknown(self):
        response = self.client.get(f'/api/v1/evv/records/by-visit/{self.visit.pk}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_compliance_summary(self):
        self.complete_visit()

        response = self.client.get('/api/v1/evv/records/compliance-summary/')

        data = response.json()['data']
        self.assertEqual(data['total_records'], 1)
        self.assertEqual(data['complete_records'], 1)
        self.assertEqual(data['compliance_rate'], 100.0)
        self.assertEqual(data['by_status'], {'COMPLETE': 1})

    def test_compliance_summary_rejects_inverted_range(self):
        response = self.client.get(
            '/api/v1/evv/records/compliance-summary/',
            {'date_from': '2026-03-10', 'date_to': '2026-03-01'},
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class OverrideEndpointTests(EVVAPITestCase):

    def setUp(self):
        super().setUp()
        far = self.visit.client.latitude + 800 / 111195.0
        result = ClockService.clock_in(
            self.organization, self.coordinator, self.visit.pk,
            clock_event(self.visit, CLOCK_IN, latitude=far),
        )
        self.entry = result['time_entry']
        self.url = f'/api/v1/evv/time-entries/{self.entry.pk}/override/'
        self.payload = {
            'reason': 'Apartment tower blocks GPS; caregiver confirmed by phone',
            'reason_code': 'GPS_UNAVAILABLE',
            'expected_version': 1,
        }

    def test_coordinators_cannot_override(self):
        response = self.client.post(self.url, self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_supervisor_override(self):
        self.authenticate(self.supervisor)

        response = self.client.post(self.url, self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.json()['data']
        self.assertEqual(data['time_entry']['status'], TimeEntry.STATUS_OVERRIDDEN)
        self.assertIn('MANUAL_OVERRIDE', data['record']['compliance_flags'])

    def test_stale_version_is_a_conflict(self):
        self.authenticate(self.supervisor)
        response = self.client.post(self.url, dict(self.payload, expected_version=7), format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.json()['error']['details']['code'], 'version_conflict')


class AmendmentEndpointTests(EVVAPITestCase):

    def setUp(self):
        super().setUp()
        self.record = self.complete_visit()

    def test_create_and_list(self):
        clock_out = self.record.clock_out_time + timedelta(minutes=20)

        response = self.client.post(
            f'/api/v1/evv/records/{self.record.pk}/amendments/',
            {'clock_out_time': clock_out.isoformat(), 'reason': 'Left late', 'reason_code': 'FORGOT_TO_CLOCK'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.json()['data']['status'], Amendment.STATUS_APPROVED)
        self.assertEqual(response.json()['data']['total_duration'], 140)

        listing = self.client.get(f'/api/v1/evv/records/{self.record.pk}/amendments/')
        self.assertEqual(len(listing.json()['data']), 1)

        records = self.client.get('/api/v1/evv/records/').json()['data']
        self.assertEqual(records[0]['kind'], 'amendment')
        self.assertEqual(records[0]['total_duration'], 140)

    def test_amendment_needs_a_correction(self):
        response = self.client.post(
            f'/api/v1/evv/records/{self.record.pk}/amendments/',
            {'reason': 'Left late', 'reason_code': 'FORGOT_TO_CLOCK'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_texas_review_flow(self):
        visit = eligible_visit(self.organization, state='TX')
        record = self.complete_visit(visit)
        created = self.client.post(
            f'/api/v1/evv/records/{record.pk}/amendments/',
            {
                'clock_in_time': (record.clock_in_time + timedelta(minutes=5)).isoformat(),
                'reason': 'Clocked in before reaching the door',
                'reason_code': 'INCORRECT_CLOCK_TIME',
            },
            format='json',
        ).json()['data']
        self.assertEqual(created['status'], Amendment.STATUS_PENDING_APPROVAL)

        denied = self.client.post(f"/api/v1/evv/amendments/{created['id']}/approve/", {}, format='json')
        self.assertEqual(denied.status_code, status.HTTP_403_FORBIDDEN)

        self.authenticate(self.supervisor)
        response = self.client.post(
            f"/api/v1/evv/amendments/{created['id']}/reject/",
            {'notes': 'Door camera shows 9:00 arrival', 'expected_version': created['version']},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()['data']['status'], Amendment.STATUS_REJECTED)
        record.refresh_from_db()
        self.assertFalse(record.is_superseded)


class AuthenticationEndpointTests(APITestCase):

    def setUp(self):
        self.user = UserFactory(role=User.ROLE_SUPERVISOR)

    def test_login_issues_tenant_bound_tokens(self):
        response = self.client.post(
            reverse('token_obtain_pair'),
            {'email': self.user.email, 'password': 'testpass123'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.json()['data']
        self.assertIn('access', data)
        self.assertEqual(data['user']['organization_id'], str(self.user.organization_id))

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {data['access']}")
        profile = self.client.get(reverse('profile'))
        self.assertEqual(profile.json()['data']['role'], User.ROLE_SUPERVISOR)

    def test_wrong_password(self):
        response = self.client.post(
            reverse('token_obtain_pair'),
            {'email': self.user.email, 'password': 'nope'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(response.json()['success'])

    def test_token_from_a_moved_user_is_refused(self):
        access = issue_tokens_for_user(self.user)['access']
        self.user.organization = OrganizationFactory()
        self.user.save()

        self.client.credentials(HTTP_AUTHORIZATION=f'Bearer {access}')
        response = self.client.get(reverse('profile'))

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
