from django.test import TestCase

from apps.authentication.models import User
from apps.core.exceptions import PermissionDeniedException, ValidationException
from apps.core.models import AuditLog
from apps.evv.constants import (
    CLOCK_IN,
    CLOCK_OUT,
    FLAG_GEOFENCE_VIOLATION,
    FLAG_MANUAL_OVERRIDE,
    LEVEL_MANUAL,
)
from apps.evv.exceptions import (
    DuplicateEntryError,
    ImmutableRecordError,
    InvalidTransitionError,
    VersionConflictError,
)
from apps.evv.models import EVVRecord, ManualOverride, TimeEntry
from apps.evv.services import ClockService, OverrideService

from .factories import OrganizationFactory, UserFactory, clock_event, eligible_visit


def far_from(visit, meters=800):
    return visit.client.latitude + meters / 111195.0


class ManualOverrideTests(TestCase):
    def setUp(self):
        self.organization = OrganizationFactory()
        self.coordinator = UserFactory(organization=self.organization, role=User.ROLE_COORDINATOR)
        self.supervisor = UserFactory(organization=self.organization, role=User.ROLE_SUPERVISOR)
        self.visit = eligible_visit(self.organization, state='FL')
        result = ClockService.clock_in(
            self.organization, self.coordinator, self.visit.pk,
            clock_event(self.visit, CLOCK_IN, latitude=far_from(self.visit)),
        )
        self.entry = result['time_entry']

    def override(self, actor=None, entry=None, **kwargs):
        params = {'reason': 'GPS drift near the apartment tower', 'reason_code': 'GPS_UNAVAILABLE', 'expected_version': 1}
        params.update(kwargs)
        return OverrideService.apply_manual_override(
            self.organization, actor or self.supervisor, (entry or self.entry).pk, **params,
        )

    def test_override_accepts_entry_and_advances_record(self):
        result = self.override()

        entry = result['time_entry']
        record = result['record']
        self.assertEqual(entry.status, TimeEntry.STATUS_OVERRIDDEN)
        self.assertEqual(entry.version, 2)
        self.assertIn(FLAG_GEOFENCE_VIOLATION, entry.compliance_flags)
        self.assertEqual(record.record_status, EVVRecord.STATUS_IN_PROGRESS)
        self.assertIn(FLAG_MANUAL_OVERRIDE, record.compliance_flags)
        self.assertIn(FLAG_GEOFENCE_VIOLATION, record.compliance_flags)
        self.assertEqual(record.verification_level, LEVEL_MANUAL)

        override = ManualOverride.objects.get(time_entry=entry)
        self.assertEqual(override.supervisor, self.supervisor)
        self.assertEqual(override.prior_outcome['status'], TimeEntry.STATUS_PENDING_REVIEW)
        self.assertTrue(AuditLog.objects.filter(action='evv.manual_override').exists())

    def test_override_can_complete_the_visit(self):
        visit = eligible_visit(self.organization, state='FL')
        ClockService.clock_in(self.organization, self.coordinator, visit.pk, clock_event(visit, CLOCK_IN))
        out = ClockService.clock_out(
            self.organization, self.coordinator, visit.pk,
            clock_event(visit, CLOCK_OUT, latitude=far_from(visit)),
        )['time_entry']

        with self.captureOnCommitCallbacks() as callbacks:
            result = self.override(entry=out)

        self.assertEqual(result['record'].record_status, EVVRecord.STATUS_COMPLETE)
        self.assertEqual(result['record'].submission_status, EVVRecord.SUBMISSION_QUEUED)
        self.assertEqual(len(callbacks), 1)

    def test_coordinator_cannot_override(self):
        with self.assertRaises(PermissionDeniedException):
            self.override(actor=self.coordinator)

    def test_reason_is_required(self):
        with self.assertRaises(ValidationException):
            self.override(reason='   ')

    def test_reason_code_must_be_known(self):
        with self.assertRaises(ValidationException):
            self.override(reason_code='BECAUSE')

    def test_stale_version(self):
        with self.assertRaises(VersionConflictError):
            self.override(expected_version=7)
        self.entry.refresh_from_db()
        self.assertEqual(self.entry.status, TimeEntry.STATUS_PENDING_REVIEW)

    def test_cannot_override_twice(self):
        self.override()
        with self.assertRaises(InvalidTransitionError):
            self.override(expected_version=2)
        self.assertEqual(ManualOverride.objects.filter(time_entry=self.entry).count(), 1)

    def test_accepted_entry_cannot_be_overridden(self):
        visit = eligible_visit(self.organization, state='FL')
        accepted = ClockService.clock_in(
            self.organization, self.coordinator, visit.pk, clock_event(visit, CLOCK_IN),
        )['time_entry']
        with self.assertRaises(InvalidTransitionError):
            self.override(entry=accepted)

    def test_override_refused_when_another_entry_is_in_effect(self):
        ClockService.clock_in(self.organization, self.coordinator, self.visit.pk, clock_event(self.visit, CLOCK_IN))
        with self.assertRaises(DuplicateEntryError):
            self.override()

    def test_overrides_are_append_only(self):
        override = self.override()['override']
        override.reason = 'edited'
        with self.assertRaises(ImmutableRecordError):
            override.save()
