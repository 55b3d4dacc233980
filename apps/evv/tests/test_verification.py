from datetime import datetime, timedelta, timezone as dt_timezone

from django.test import SimpleTestCase

from apps.evv.constants import (
    CLOCK_IN,
    CLOCK_OUT,
    FLAG_COMPLIANT,
    FLAG_DEVICE_SUSPICIOUS,
    FLAG_DUPLICATE_ENTRY,
    FLAG_GEOFENCE_VIOLATION,
    FLAG_LATE_SUBMISSION,
    FLAG_LOCATION_MISMATCH,
    FLAG_LOCATION_SUSPICIOUS,
    FLAG_TIME_GAP,
    LEVEL_EXCEPTION,
    LEVEL_FULL,
    LEVEL_MANUAL,
    LEVEL_PARTIAL,
    LEVEL_PHONE,
    REJECT_INVALID_LOCATION,
    REJECT_SIGNATURE_REQUIRED,
    REJECT_TOO_EARLY,
)
from apps.evv.geolocation import GeoPoint, LocationFix
from apps.evv.rules import JurisdictionKey, load_rule_table
from apps.evv.verification import ClockEvent, DeviceInfo, VerificationContext, verify

HOME = GeoPoint(27.9506, -82.4572)
START = datetime(2026, 3, 2, 14, 0, tzinfo=dt_timezone.utc)
END = START + timedelta(hours=2)


def offset(meters):
    return HOME.latitude + meters / 111195.0


def event(entry_type=CLOCK_IN, at=None, **overrides):
    values = {
        'visit_id': 'visit-1',
        'entry_type': entry_type,
        'timestamp': at or (START if entry_type == CLOCK_IN else END),
        'latitude': HOME.latitude,
        'longitude': HOME.longitude,
        'accuracy': 10.0,
        'signature': 'sig' if entry_type == CLOCK_OUT else None,
    }
    values.update(overrides)
    values.setdefault('received_at', values['timestamp'])
    return ClockEvent(**values)


class VerifyTests(SimpleTestCase):
    def setUp(self):
        table = load_rule_table()
        self.texas = table.resolve(JurisdictionKey('TX', 'MEDICAID', 'PCS'))
        self.florida = table.resolve(JurisdictionKey('FL', 'MEDICAID', 'PCS'))
        self.context = VerificationContext(service_location=HOME, scheduled_start=START, scheduled_end=END)

    def test_clean_clock_in_is_full_and_compliant(self):
        result = verify(event(), self.texas, self.context)
        self.assertTrue(result.passed)
        self.assertEqual(result.level, LEVEL_FULL)
        self.assertEqual(result.compliance_flags, [FLAG_COMPLIANT])
        self.assertFalse(result.requires_supervisor_review)

    def test_within_tolerance_is_partial(self):
        result = verify(event(latitude=offset(130), accuracy=40.0), self.texas, self.context)
        self.assertTrue(result.passed)
        self.assertEqual(result.level, LEVEL_PARTIAL)
        self.assertEqual(result.flags, [FLAG_GEOFENCE_VIOLATION])
        self.assertFalse(result.geolocation.is_within_geofence)
        self.assertFalse(result.requires_supervisor_review)

    def test_tolerance_band_around_small_client_fence(self):
        context = VerificationContext(service_location=HOME, client_radius=50, scheduled_start=START)
        result = verify(event(latitude=offset(80), accuracy=40.0), self.texas, context)
        self.assertTrue(result.passed)
        self.assertIn(FLAG_GEOFENCE_VIOLATION, result.flags)
        self.assertNotIn(FLAG_COMPLIANT, result.compliance_flags)

    def test_accurate_fix_inside_small_fence_is_full(self):
        context = VerificationContext(service_location=HOME, client_radius=50, scheduled_start=START)
        result = verify(event(latitude=offset(40), accuracy=5.0), self.texas, context)
        self.assertTrue(result.passed)
        self.assertEqual(result.level, LEVEL_FULL)
        self.assertEqual(result.compliance_flags, [FLAG_COMPLIANT])
        self.assertFalse(result.requires_supervisor_review)

    def test_three_meter_accuracy_on_the_centre_is_suspicious(self):
        context = VerificationContext(service_location=HOME, client_radius=50, scheduled_start=START)
        result = verify(event(accuracy=3.0), self.texas, context)
        self.assertTrue(result.geolocation.is_within_geofence)
        self.assertIn(FLAG_DEVICE_SUSPICIOUS, result.flags)
        self.assertTrue(result.requires_supervisor_review)
        self.assertIsNone(result.rejection)

    def test_outside_fence_flags_geofence_violation(self):
        result = verify(event(latitude=offset(500)), self.texas, self.context)
        self.assertFalse(result.passed)
        self.assertIn(FLAG_GEOFENCE_VIOLATION, result.flags)
        self.assertTrue(result.requires_supervisor_review)
        self.assertIsNone(result.rejection)

    def test_client_radius_is_respected(self):
        context = VerificationContext(service_location=HOME, client_radius=600, scheduled_start=START)
        result = verify(event(latitude=offset(500)), self.texas, context)
        self.assertTrue(result.passed)

    def test_missing_service_coordinates(self):
        context = VerificationContext(service_location=None, scheduled_start=START)
        result = verify(event(), self.texas, context)
        self.assertIn(FLAG_GEOFENCE_VIOLATION, result.flags)

    def test_poor_accuracy_fix_is_discarded(self):
        result = verify(event(accuracy=5000.0), self.texas, self.context)
        self.assertIn(FLAG_GEOFENCE_VIOLATION, result.flags)
        self.assertEqual(result.level, LEVEL_MANUAL)

    def test_invalid_coordinates_rejected(self):
        result = verify(event(latitude=123.0), self.texas, self.context)
        self.assertEqual(result.rejection, REJECT_INVALID_LOCATION)
        self.assertFalse(result.passed)

    def test_too_early_is_rejected(self):
        result = verify(event(at=START - timedelta(minutes=11)), self.texas, self.context)
        self.assertEqual(result.rejection, REJECT_TOO_EARLY)
        self.assertFalse(result.passed)

    def test_early_within_grace_is_fine(self):
        result = verify(event(at=START - timedelta(minutes=10)), self.texas, self.context)
        self.assertIsNone(result.rejection)

    def test_approved_exception_may_clock_early(self):
        result = verify(
            event(at=START - timedelta(minutes=45), method='EXCEPTION', exception_reason='CLIENT_REQUESTED_EARLY'),
            self.texas,
            self.context,
        )
        self.assertIsNone(result.rejection)
        self.assertEqual(result.level, LEVEL_EXCEPTION)

    def test_unapproved_exception_reason_is_noted(self):
        result = verify(
            event(method='EXCEPTION', exception_reason='FELT_LIKE_IT', latitude=offset(500)),
            self.texas,
            self.context,
        )
        self.assertIn(FLAG_GEOFENCE_VIOLATION, result.flags)
        self.assertTrue(any('FELT_LIKE_IT' in issue for issue in result.issues))

    def test_late_clock_out_flags_time_gap(self):
        result = verify(event(CLOCK_OUT, at=END + timedelta(minutes=30)), self.texas, self.context)
        self.assertIn(FLAG_TIME_GAP, result.flags)
        self.assertTrue(result.passed)

    def test_texas_requires_signature(self):
        result = verify(event(CLOCK_OUT, signature=None), self.texas, self.context)
        self.assertEqual(result.rejection, REJECT_SIGNATURE_REQUIRED)

    def test_florida_does_not_require_signature(self):
        result = verify(event(CLOCK_OUT, signature=None), self.florida, self.context)
        self.assertIsNone(result.rejection)

    def test_clock_out_far_from_clock_in(self):
        context = VerificationContext(
            service_location=HOME, scheduled_end=END, clock_in_location=GeoPoint(offset(-400), HOME.longitude),
        )
        result = verify(event(CLOCK_OUT), self.texas, context)
        self.assertIn(FLAG_LOCATION_MISMATCH, result.flags)

    def test_offline_event_synced_late(self):
        result = verify(
            event(recorded_offline=True, received_at=START + timedelta(hours=30)), self.texas, self.context,
        )
        self.assertIn(FLAG_LATE_SUBMISSION, result.flags)
        self.assertEqual(result.level, LEVEL_MANUAL)

    def test_mock_location_and_rooted_device(self):
        result = verify(event(device=DeviceInfo(is_mock_location=True, is_rooted=True)), self.texas, self.context)
        self.assertEqual(result.flags, [FLAG_DEVICE_SUSPICIOUS])
        self.assertTrue(result.passed)
        self.assertTrue(result.requires_supervisor_review)
        self.assertEqual(result.level, LEVEL_PARTIAL)

    def test_impossible_travel(self):
        context = VerificationContext(
            service_location=HOME,
            scheduled_start=START,
            previous_fix=LocationFix(GeoPoint(offset(80000), HOME.longitude), START - timedelta(minutes=10)),
        )
        result = verify(event(), self.texas, context)
        self.assertIn(FLAG_LOCATION_SUSPICIOUS, result.flags)

    def test_duplicate_entry(self):
        context = VerificationContext(service_location=HOME, scheduled_start=START, has_effective_entry=True)
        result = verify(event(), self.texas, context)
        self.assertFalse(result.passed)
        self.assertTrue(result.is_duplicate)
        self.assertIn(FLAG_DUPLICATE_ENTRY, result.compliance_flags)

    def test_telephony_is_phone_level(self):
        result = verify(event(method='PHONE', latitude=None, longitude=None, accuracy=None), self.texas, self.context)
        self.assertTrue(result.passed)
        self.assertEqual(result.level, LEVEL_PHONE)

    def test_manual_method_is_manual_level(self):
        result = verify(event(method='MANUAL', latitude=None, longitude=None, accuracy=None), self.texas, self.context)
        self.assertTrue(result.passed)
        self.assertEqual(result.level, LEVEL_MANUAL)

    def test_verify_is_deterministic(self):
        first = verify(event(latitude=offset(500)), self.texas, self.context)
        second = verify(event(latitude=offset(500)), self.texas, self.context)
        self.assertEqual((first.passed, first.level, first.flags, first.issues),
                         (second.passed, second.level, second.flags, second.issues))
