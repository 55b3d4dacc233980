"""
Verification engine.

``verify`` evaluates one clock event against the jurisdiction rules and the
visit context and returns a ``VerificationResult``. It never touches the
database and never raises for compliance problems: flags accumulate, and the
few hard rejections are reported through ``result.rejection``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from .constants import (
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
    LOCATION_METHODS,
    METHOD_EXCEPTION,
    METHOD_MANUAL,
    METHOD_PHONE,
    REJECT_INVALID_LOCATION,
    REJECT_SIGNATURE_REQUIRED,
    REJECT_TOO_EARLY,
    SUSPICION_IMPLAUSIBLE_ACCURACY,
    SUSPICION_IMPOSSIBLE_TRAVEL,
    SUSPICION_MOCK_LOCATION,
)
from .geolocation import (
    GeoPoint,
    GeolocationAssessment,
    LocationFix,
    assess_location,
    haversine_distance,
    validate_coordinate,
)
from .rules import JurisdictionRules

# Fixes reported with worse accuracy than this carry no location evidence
MAX_USABLE_ACCURACY_METERS = 1000.0

SUSPICION_TO_FLAG = {
    SUSPICION_IMPLAUSIBLE_ACCURACY: FLAG_DEVICE_SUSPICIOUS,
    SUSPICION_MOCK_LOCATION: FLAG_DEVICE_SUSPICIOUS,
    SUSPICION_IMPOSSIBLE_TRAVEL: FLAG_LOCATION_SUSPICIOUS,
}


@dataclass(frozen=True)
class DeviceInfo:
    device_id: str = ''
    model: str = ''
    os: str = ''
    app_version: str = ''
    is_mock_location: bool = False
    is_rooted: bool = False

    def as_dict(self):
        return {
            'device_id': self.device_id,
            'model': self.model,
            'os': self.os,
            'app_version': self.app_version,
            'is_mock_location': self.is_mock_location,
            'is_rooted': self.is_rooted,
        }


@dataclass(frozen=True)
class ClockEvent:
    visit_id: str
    entry_type: str
    timestamp: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    method: str = 'GPS'
    device: DeviceInfo = DeviceInfo()
    signature: Optional[str] = None
    recorded_offline: bool = False
    exception_reason: Optional[str] = None
    received_at: Optional[datetime] = None

    @property
    def point(self) -> Optional[GeoPoint]:
        if self.latitude is None or self.longitude is None:
            return None
        return GeoPoint(self.latitude, self.longitude)


@dataclass(frozen=True)
class VerificationContext:
    service_location: Optional[GeoPoint]
    client_radius: Optional[float] = None
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    clock_in_location: Optional[GeoPoint] = None
    has_effective_entry: bool = False
    previous_fix: Optional[LocationFix] = None
    late_submission_hours: float = 24.0


@dataclass
class VerificationResult:
    passed: bool
    level: str
    flags: List[str] = field(default_factory=list)
    requires_supervisor_review: bool = False
    issues: List[str] = field(default_factory=list)
    rejection: Optional[str] = None
    geolocation: Optional[GeolocationAssessment] = None
    radius_meters: Optional[float] = None

    @property
    def compliance_flags(self) -> List[str]:
        return list(self.flags) or [FLAG_COMPLIANT]

    @property
    def is_rejected(self) -> bool:
        return self.rejection is not None

    @property
    def is_duplicate(self) -> bool:
        return FLAG_DUPLICATE_ENTRY in self.flags


class _Collector:
    def __init__(self):
        self.flags = []
        self.issues = []
        self.rejection = None

    def flag(self, flag, issue=None):
        if flag not in self.flags:
            self.flags.append(flag)
        if issue:
            self.issues.append(issue)

    def reject(self, code, issue):
        if self.rejection is None:
            self.rejection = code
        self.issues.append(issue)


def is_approved_exception(event: ClockEvent, rules: JurisdictionRules) -> bool:
    return event.method == METHOD_EXCEPTION and event.exception_reason in rules.exception_reason_codes


def verify(event: ClockEvent, rules: JurisdictionRules, context: VerificationContext) -> VerificationResult:
    out = _Collector()
    approved_exception = is_approved_exception(event, rules)
    radius = rules.effective_radius(context.client_radius)

    # Coordinate sanity
    point = event.point
    if point is not None and not validate_coordinate(point):
        out.reject(REJECT_INVALID_LOCATION, f"Reported coordinates ({event.latitude}, {event.longitude}) are out of range")
        return VerificationResult(
            passed=False,
            level=LEVEL_MANUAL,
            flags=out.flags,
            requires_supervisor_review=True,
            issues=out.issues,
            rejection=out.rejection,
            radius_meters=radius,
        )
    if point is not None and event.accuracy is not None and event.accuracy > MAX_USABLE_ACCURACY_METERS:
        out.issues.append(f"GPS accuracy {event.accuracy:.0f} m is too poor to use")
        point = None

    if event.method == METHOD_EXCEPTION and not approved_exception:
        out.issues.append(f"Exception reason '{event.exception_reason or ''}' is not approved in {rules.state}")

    # Location
    location_exempt = approved_exception or (
        event.method in (METHOD_PHONE, METHOD_MANUAL) and rules.allows_method(event.method)
    )
    assessment = None
    tolerance_only = False
    geofence_blocking = False
    if point is not None and context.service_location is not None:
        assessment = assess_location(
            point,
            event.accuracy,
            context.service_location,
            radius,
            rules.gps_accuracy_tolerance_meters,
            thresholds=rules.spoofing_thresholds,
            mock_location=event.device.is_mock_location,
            previous_fix=context.previous_fix,
            timestamp=event.timestamp,
        )
        if not assessment.is_within_geofence and not location_exempt:
            out.flag(
                FLAG_GEOFENCE_VIOLATION,
                f"Location is {assessment.distance_meters:.0f} m from the service address (allowed {radius:.0f} m)",
            )
            # Inside the accuracy band the flag is informational only
            if assessment.is_within_tolerance:
                tolerance_only = True
            else:
                geofence_blocking = True
        elif not assessment.is_within_geofence:
            tolerance_only = True
    elif not location_exempt and (event.method in LOCATION_METHODS or event.method == METHOD_EXCEPTION):
        if context.service_location is None:
            reason = "Service address has no coordinates on file"
        else:
            reason = "No usable location fix was reported"
        out.flag(FLAG_GEOFENCE_VIOLATION, reason)
        geofence_blocking = True

    # Timing
    if event.entry_type == CLOCK_IN and context.scheduled_start is not None:
        earliest = context.scheduled_start - timedelta(minutes=rules.early_clock_in_grace_minutes)
        if event.timestamp < earliest and not approved_exception:
            minutes_early = int((context.scheduled_start - event.timestamp).total_seconds() // 60)
            out.reject(
                REJECT_TOO_EARLY,
                f"Clock-in is {minutes_early} minutes before the scheduled start "
                f"(grace {rules.early_clock_in_grace_minutes} minutes)",
            )
    if event.entry_type == CLOCK_OUT and context.scheduled_end is not None:
        latest = context.scheduled_end + timedelta(minutes=rules.late_clock_out_grace_minutes)
        if event.timestamp > latest:
            minutes_late = int((event.timestamp - context.scheduled_end).total_seconds() // 60)
            out.flag(FLAG_TIME_GAP, f"Clock-out is {minutes_late} minutes after the scheduled end")
    if event.recorded_offline and event.received_at is not None:
        lag = event.received_at - event.timestamp
        if lag > timedelta(hours=context.late_submission_hours):
            out.flag(FLAG_LATE_SUBMISSION, f"Offline event synced {lag.total_seconds() / 3600:.1f} hours after it was recorded")

    # Device and spoofing
    suspicious = False
    for indicator in (assessment.suspicion_flags if assessment else ()):
        suspicious = True
        out.flag(SUSPICION_TO_FLAG[indicator], f"Spoofing indicator: {indicator}")
    if assessment is None and event.device.is_mock_location:
        suspicious = True
        out.flag(FLAG_DEVICE_SUSPICIOUS, f"Spoofing indicator: {SUSPICION_MOCK_LOCATION}")
    if event.device.is_rooted:
        suspicious = True
        out.flag(FLAG_DEVICE_SUSPICIOUS, "Device reports root or jailbreak access")

    # Signature
    if event.entry_type == CLOCK_OUT and rules.signature_required and not event.signature:
        out.reject(REJECT_SIGNATURE_REQUIRED, f"{rules.state} requires a client signature at clock-out")

    # Cross-event consistency
    if event.entry_type == CLOCK_OUT and point is not None and context.clock_in_location is not None:
        drift = haversine_distance(context.clock_in_location, point)
        if drift > rules.location_mismatch_meters:
            out.flag(FLAG_LOCATION_MISMATCH, f"Clock-out is {drift:.0f} m from the clock-in location")

    # Duplicate
    if context.has_effective_entry:
        out.flag(FLAG_DUPLICATE_ENTRY, f"An accepted {event.entry_type} already exists for this visit")

    passed = (
        out.rejection is None
        and not geofence_blocking
        and FLAG_DUPLICATE_ENTRY not in out.flags
    )

    if approved_exception:
        level = LEVEL_EXCEPTION
    elif event.method == METHOD_PHONE:
        level = LEVEL_PHONE
    elif event.recorded_offline or event.method in (METHOD_MANUAL, METHOD_EXCEPTION) or point is None:
        level = LEVEL_MANUAL
    elif out.flags or tolerance_only or (
        event.accuracy is not None and event.accuracy > rules.min_gps_accuracy_meters
    ):
        level = LEVEL_PARTIAL
    else:
        level = LEVEL_FULL

    return VerificationResult(
        passed=passed,
        level=level,
        flags=out.flags,
        requires_supervisor_review=suspicious or not passed,
        issues=out.issues,
        rejection=out.rejection,
        geolocation=assessment,
        radius_meters=radius,
    )
