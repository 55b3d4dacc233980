import uuid
from datetime import timedelta

from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from apps.evv import state_machine
from apps.evv.constants import (
    CLOCK_IN,
    CLOCK_OUT,
    FLAG_COMPLIANT,
    FLAG_GEOFENCE_VIOLATION,
    LEVEL_FULL,
    LEVEL_MANUAL,
    LEVEL_PARTIAL,
    LEVEL_PHONE,
)
from apps.evv.exceptions import ImmutableRecordError, InvalidTransitionError, VersionConflictError
from apps.evv.models import EVVRecord, TimeEntry

from .factories import OrganizationFactory


def make_record(organization, **overrides):
    start = timezone.now().replace(microsecond=0)
    values = dict(
        organization=organization,
        visit_id=uuid.uuid4(),
        client_id=uuid.uuid4(),
        caregiver_id=uuid.uuid4(),
        client_name='Maria Client',
        caregiver_name='Ana Caregiver',
        service_type_code='PCS',
        state='FL',
        service_date=start.date(),
        scheduled_start=start,
        scheduled_end=start + timedelta(hours=2),
    )
    values.update(overrides)
    return EVVRecord.objects.create(**values)


def make_entry(record, entry_type, at, status=TimeEntry.STATUS_ACCEPTED, level=LEVEL_FULL, flags=None):
    return TimeEntry.objects.create(
        organization=record.organization,
        record=record,
        visit_id=record.visit_id,
        caregiver_id=record.caregiver_id,
        entry_type=entry_type,
        timestamp=at,
        verification_level=level,
        verification_passed=status == TimeEntry.STATUS_ACCEPTED,
        compliance_flags=flags or [FLAG_COMPLIANT],
        status=status,
    )


class TransitionTableTests(SimpleTestCase):
    def test_allowed(self):
        self.assertTrue(state_machine.can_transition('PENDING', 'IN_PROGRESS'))
        self.assertTrue(state_machine.can_transition('IN_PROGRESS', 'COMPLETE'))
        self.assertTrue(state_machine.can_transition('PENDING', 'CANCELLED'))
        self.assertTrue(state_machine.can_transition('IN_PROGRESS', 'CANCELLED'))

    def test_terminal_states(self):
        for target in ('PENDING', 'IN_PROGRESS', 'CANCELLED'):
            self.assertFalse(state_machine.can_transition('COMPLETE', target))
        self.assertFalse(state_machine.can_transition('CANCELLED', 'IN_PROGRESS'))
        self.assertFalse(state_machine.can_transition('PENDING', 'COMPLETE'))

    def test_stricter_level(self):
        self.assertEqual(state_machine.stricter_level(LEVEL_FULL, LEVEL_PHONE), LEVEL_PHONE)
        self.assertEqual(state_machine.stricter_level(LEVEL_PARTIAL, ''), LEVEL_PARTIAL)
        self.assertEqual(state_machine.stricter_level(), '')


class RecordStateTests(TestCase):
    def setUp(self):
        self.organization = OrganizationFactory()
        self.record = make_record(self.organization)
        self.start = self.record.scheduled_start

    def test_skipping_a_state_is_rejected(self):
        with self.assertRaises(InvalidTransitionError):
            state_machine.transition(self.record, EVVRecord.STATUS_COMPLETE)

    def test_advance_through_both_steps(self):
        make_entry(self.record, CLOCK_IN, self.start)
        make_entry(self.record, CLOCK_OUT, self.start + timedelta(minutes=95), level=LEVEL_PARTIAL)

        state_machine.recompute(self.record)
        self.assertTrue(state_machine.advance(self.record))
        self.assertEqual(self.record.record_status, EVVRecord.STATUS_COMPLETE)
        self.assertEqual(self.record.total_duration, 95)
        self.assertEqual(self.record.verification_level, LEVEL_PARTIAL)
        self.assertEqual(self.record.compliance_flags, [FLAG_COMPLIANT])

    def test_pending_review_entries_do_not_count(self):
        make_entry(
            self.record, CLOCK_IN, self.start,
            status=TimeEntry.STATUS_PENDING_REVIEW, flags=[FLAG_GEOFENCE_VIOLATION],
        )
        state_machine.recompute(self.record)
        self.assertFalse(state_machine.advance(self.record))
        self.assertEqual(self.record.record_status, EVVRecord.STATUS_PENDING)
        self.assertIsNone(self.record.clock_in_time)
        self.assertTrue(self.record.requires_review)
        self.assertEqual(self.record.compliance_flags, [FLAG_COMPLIANT])

    def test_overridden_entry_counts_as_manual(self):
        make_entry(self.record, CLOCK_IN, self.start, status=TimeEntry.STATUS_OVERRIDDEN)
        state_machine.recompute(self.record)
        self.assertEqual(self.record.verification_level, LEVEL_MANUAL)

    def test_recompute_is_idempotent(self):
        make_entry(self.record, CLOCK_IN, self.start, flags=[FLAG_GEOFENCE_VIOLATION])
        state_machine.recompute(self.record)
        first = [getattr(self.record, name) for name in state_machine.DERIVED_FIELDS]
        state_machine.recompute(self.record)
        second = [getattr(self.record, name) for name in state_machine.DERIVED_FIELDS]
        self.assertEqual(first, second)

    def test_save_record_bumps_version(self):
        state_machine.save_record(self.record)
        self.record.refresh_from_db()
        self.assertEqual(self.record.version, 2)

    def test_stale_version_conflicts(self):
        stale = EVVRecord.objects.get(pk=self.record.pk)
        state_machine.save_record(self.record)
        with self.assertRaises(VersionConflictError):
            state_machine.save_record(stale)

    def test_records_cannot_be_deleted(self):
        with self.assertRaises(ImmutableRecordError):
            self.record.delete()


class TimeEntryImmutabilityTests(TestCase):
    def setUp(self):
        self.record = make_record(OrganizationFactory())
        self.entry = make_entry(self.record, CLOCK_IN, self.record.scheduled_start)

    def test_evidence_fields_are_frozen(self):
        self.entry.latitude = 10.0
        with self.assertRaises(ImmutableRecordError):
            self.entry.save()

    def test_update_fields_outside_review_state_are_refused(self):
        with self.assertRaises(ImmutableRecordError):
            self.entry.save(update_fields=['timestamp'])

    def test_flags_may_only_grow(self):
        self.entry.compliance_flags = []
        with self.assertRaises(ImmutableRecordError):
            self.entry.save()

    def test_review_state_may_change(self):
        self.entry.status = TimeEntry.STATUS_PENDING_REVIEW
        self.entry.version += 1
        self.entry.save()
        self.entry.refresh_from_db()
        self.assertEqual(self.entry.version, 2)

    def test_entries_cannot_be_deleted(self):
        with self.assertRaises(ImmutableRecordError):
            self.entry.delete()
