"""
Jurisdiction rule table.

Rules are data: each (state, payer type, service type) row is a frozen
``JurisdictionRules``. The table is immutable once built and replaced wholesale
through ``RuleRegistry.swap``; request code only ever reads a snapshot.
"""

import logging
import threading
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

from django.conf import settings

from .constants import (
    AGGREGATOR_HHAEXCHANGE,
    AGGREGATOR_SANDATA,
    AGGREGATOR_TELLUS,
    EXCEPTION_REASON_CODES,
    METHOD_MANUAL,
    METHOD_PHONE,
    OVERRIDE_REASON_CODES,
    VMUR_REASON_CODES,
    WILDCARD,
)
from .geolocation import SpoofingThresholds

logger = logging.getLogger(__name__)

PAYER_MEDICAID = 'MEDICAID'
UNCONFIGURED_CREDENTIAL = 'UNCONFIGURED_JURISDICTION'


@dataclass(frozen=True)
class JurisdictionKey:
    state: str
    payer_type: str = PAYER_MEDICAID
    service_type: str = WILDCARD

    def __post_init__(self):
        object.__setattr__(self, 'state', (self.state or '').strip().upper())
        object.__setattr__(self, 'payer_type', (self.payer_type or WILDCARD).strip().upper())
        object.__setattr__(self, 'service_type', (self.service_type or WILDCARD).strip().upper())

    def as_dict(self) -> Dict[str, str]:
        return {'state': self.state, 'payer_type': self.payer_type, 'service_type': self.service_type}

    def __str__(self):
        return f"{self.state}/{self.payer_type}/{self.service_type}"


@dataclass(frozen=True)
class CredentialRequirement:
    code: str
    label: str
    citation: str


@dataclass(frozen=True)
class JurisdictionRules:
    state: str
    payer_type: str = PAYER_MEDICAID
    service_type: str = WILDCARD
    required_credentials: Tuple[CredentialRequirement, ...] = ()
    early_clock_in_grace_minutes: int = 0
    late_clock_out_grace_minutes: int = 0
    signature_required: bool = True
    aggregator: Optional[str] = None
    geofence_radius_meters: float = 50.0
    geofence_radius_override: Optional[float] = None
    gps_accuracy_tolerance_meters: float = 0.0
    min_gps_accuracy_meters: float = 50.0
    implausible_accuracy_meters: float = 3.0
    perfect_match_meters: float = 1.0
    max_travel_speed_kmh: float = 120.0
    shift_window_hours: float = 12.0
    location_mismatch_meters: float = 300.0
    credential_warning_days: int = 30
    allowed_methods: Tuple[str, ...] = ()
    exception_reason_codes: Tuple[str, ...] = ()
    override_reason_codes: Tuple[str, ...] = OVERRIDE_REASON_CODES
    vmur_reason_codes: Tuple[str, ...] = VMUR_REASON_CODES
    amendment_requires_approval: bool = False
    immutable_after_days: int = 30
    retention_years: int = 6
    is_fallback: bool = False

    @property
    def key(self) -> JurisdictionKey:
        return JurisdictionKey(self.state, self.payer_type, self.service_type)

    @property
    def spoofing_thresholds(self) -> SpoofingThresholds:
        return SpoofingThresholds(
            implausible_accuracy_meters=self.implausible_accuracy_meters,
            perfect_match_meters=self.perfect_match_meters,
            max_travel_speed_kmh=self.max_travel_speed_kmh,
            shift_window_hours=self.shift_window_hours,
        )

    def effective_radius(self, client_radius: Optional[float] = None) -> float:
        """State override beats the client's own fence, which beats the state default."""
        if self.geofence_radius_override:
            return float(self.geofence_radius_override)
        if client_radius:
            return float(client_radius)
        return float(self.geofence_radius_meters)

    def allows_method(self, method: str) -> bool:
        return method in self.allowed_methods


def fail_closed_rules(key: JurisdictionKey) -> JurisdictionRules:
    """
    Rules for a jurisdiction with no configuration.

    Strictest values everywhere, and a credential nobody can hold so the
    eligibility gate blocks every clock-in until the row is configured.
    """
    return JurisdictionRules(
        state=key.state,
        payer_type=key.payer_type,
        service_type=key.service_type,
        required_credentials=(
            CredentialRequirement(
                code=UNCONFIGURED_CREDENTIAL,
                label='Jurisdiction configuration',
                citation=f"No EVV rule configuration exists for {key}; configure the jurisdiction before clocking visits",
            ),
        ),
        early_clock_in_grace_minutes=0,
        late_clock_out_grace_minutes=0,
        signature_required=True,
        aggregator=None,
        geofence_radius_meters=50.0,
        gps_accuracy_tolerance_meters=0.0,
        min_gps_accuracy_meters=50.0,
        allowed_methods=(),
        exception_reason_codes=(),
        amendment_requires_approval=True,
        is_fallback=True,
    )


class RuleTable(Mapping):
    """Immutable, versioned mapping of ``JurisdictionKey`` → ``JurisdictionRules``."""

    def __init__(self, rules: Iterable[JurisdictionRules], version: int = 1):
        self._rules = MappingProxyType({rule.key: rule for rule in rules})
        self.version = int(version)

    def __getitem__(self, key):
        return self._rules[key]

    def __iter__(self):
        return iter(self._rules)

    def __len__(self):
        return len(self._rules)

    def resolve(self, key: JurisdictionKey) -> JurisdictionRules:
        """
        Exact row first, then the explicit wildcard rows. Anything else gets the
        fail-closed rule set, never a permissive default.
        """
        candidates = (
            key,
            JurisdictionKey(key.state, key.payer_type, WILDCARD),
            JurisdictionKey(key.state, WILDCARD, WILDCARD),
        )
        for candidate in candidates:
            rules = self._rules.get(candidate)
            if rules is not None:
                return rules

        logger.warning("No EVV rules configured for %s; using fail-closed rules", key)
        return fail_closed_rules(key)


class RuleRegistry:
    """Holds the current table; readers snapshot, writers swap the whole table."""

    def __init__(self, loader=None):
        self._loader = loader
        self._table: Optional[RuleTable] = None
        self._lock = threading.Lock()

    def snapshot(self) -> RuleTable:
        table = self._table
        if table is not None:
            return table
        with self._lock:
            if self._table is None:
                self._table = self._loader() if self._loader else RuleTable((), version=0)
            return self._table

    def swap(self, new_table: RuleTable) -> RuleTable:
        with self._lock:
            current = self._table
            if current is not None and new_table.version <= current.version:
                raise ValueError(
                    f"Rule table version must increase (current={current.version}, new={new_table.version})"
                )
            self._table = new_table
        logger.info("EVV rule table swapped to version %s (%d rows)", new_table.version, len(new_table))
        return new_table

    def resolve(self, key: JurisdictionKey) -> JurisdictionRules:
        return self.snapshot().resolve(key)


def _credential(row) -> CredentialRequirement:
    if isinstance(row, CredentialRequirement):
        return row
    return CredentialRequirement(code=row['code'], label=row.get('label', row['code']), citation=row['citation'])


def build_table(rows: Iterable[dict], version: int = 1) -> RuleTable:
    """Build a table from plain dict rows (settings, fixtures, admin imports)."""
    rules = []
    for row in rows:
        data = dict(row)
        data['required_credentials'] = tuple(_credential(c) for c in data.get('required_credentials', ()))
        for name in ('allowed_methods', 'exception_reason_codes', 'override_reason_codes', 'vmur_reason_codes'):
            if name in data:
                data[name] = tuple(data[name])
        key = JurisdictionKey(data.pop('state'), data.pop('payer_type', PAYER_MEDICAID), data.pop('service_type', WILDCARD))
        rules.append(JurisdictionRules(state=key.state, payer_type=key.payer_type, service_type=key.service_type, **data))
    return RuleTable(rules, version=version)


_COMMON = {
    'payer_type': PAYER_MEDICAID,
    'service_type': WILDCARD,
    'allowed_methods': (METHOD_PHONE, METHOD_MANUAL),
    'exception_reason_codes': EXCEPTION_REASON_CODES,
}

BUILTIN_RULES = (
    dict(
        _COMMON,
        state='TX',
        required_credentials=(
            {
                'code': 'BACKGROUND_SCREENING',
                'label': 'Employee Misconduct Registry background screening',
                'citation': 'Texas Human Resources Code §40.053, 26 TAC §558.259',
            },
            {
                'code': 'HHSC_ORIENTATION',
                'label': 'HHSC EVV orientation',
                'citation': '26 TAC §558.259',
            },
        ),
        geofence_radius_meters=100, gps_accuracy_tolerance_meters=50,
        early_clock_in_grace_minutes=10, late_clock_out_grace_minutes=10,
        min_gps_accuracy_meters=100, signature_required=True,
        aggregator=AGGREGATOR_HHAEXCHANGE, amendment_requires_approval=True,
        immutable_after_days=30, retention_years=6,
    ),
    dict(
        _COMMON,
        state='FL',
        required_credentials=(
            {
                'code': 'LEVEL_2_SCREENING',
                'label': 'Level 2 background screening',
                'citation': 'Florida Statutes Chapter 435, Florida Administrative Code 59A-8',
            },
        ),
        geofence_radius_meters=150, gps_accuracy_tolerance_meters=100,
        early_clock_in_grace_minutes=15, late_clock_out_grace_minutes=15,
        min_gps_accuracy_meters=150, signature_required=False,
        aggregator=AGGREGATOR_HHAEXCHANGE, immutable_after_days=45, retention_years=6,
    ),
    dict(
        _COMMON,
        state='OH',
        required_credentials=(
            {'code': 'BACKGROUND_CHECK', 'label': 'Criminal records check', 'citation': 'Ohio Revised Code §5164.34'},
        ),
        geofence_radius_meters=125, gps_accuracy_tolerance_meters=75,
        early_clock_in_grace_minutes=10, late_clock_out_grace_minutes=10,
        min_gps_accuracy_meters=125, signature_required=False,
        aggregator=AGGREGATOR_SANDATA, immutable_after_days=30, retention_years=6,
    ),
    dict(
        _COMMON,
        state='PA',
        required_credentials=(
            {'code': 'CRIMINAL_HISTORY', 'label': 'Criminal history report', 'citation': '28 Pa. Code § 51'},
        ),
        geofence_radius_meters=100, gps_accuracy_tolerance_meters=50,
        early_clock_in_grace_minutes=15, late_clock_out_grace_minutes=15,
        min_gps_accuracy_meters=100, signature_required=False,
        aggregator=AGGREGATOR_SANDATA, immutable_after_days=35, retention_years=7,
    ),
    dict(
        _COMMON,
        state='GA',
        required_credentials=(
            {'code': 'BACKGROUND_CHECK', 'label': 'Fingerprint background check', 'citation': 'GA Comp. R. & Regs. 111-8-70'},
        ),
        geofence_radius_meters=150, gps_accuracy_tolerance_meters=100,
        early_clock_in_grace_minutes=15, late_clock_out_grace_minutes=15,
        min_gps_accuracy_meters=150, signature_required=False,
        aggregator=AGGREGATOR_TELLUS, immutable_after_days=45, retention_years=6,
    ),
    dict(
        _COMMON,
        state='NC',
        required_credentials=(
            {'code': 'BACKGROUND_CHECK', 'label': 'Criminal background check', 'citation': '10A NCAC 13F'},
        ),
        geofence_radius_meters=120, gps_accuracy_tolerance_meters=60,
        early_clock_in_grace_minutes=10, late_clock_out_grace_minutes=10,
        min_gps_accuracy_meters=120, signature_required=False,
        aggregator=AGGREGATOR_SANDATA, immutable_after_days=30, retention_years=6,
    ),
    dict(
        _COMMON,
        state='AZ',
        required_credentials=(
            {
                'code': 'FINGERPRINT_CLEARANCE',
                'label': 'DPS fingerprint clearance card',
                'citation': 'Arizona Revised Statutes §36-425.03',
            },
        ),
        geofence_radius_meters=100, gps_accuracy_tolerance_meters=50,
        early_clock_in_grace_minutes=10, late_clock_out_grace_minutes=10,
        min_gps_accuracy_meters=100, signature_required=False,
        aggregator=AGGREGATOR_SANDATA, immutable_after_days=30, retention_years=6,
    ),
)


def load_rule_table() -> RuleTable:
    """Built-in rows plus any ``EVV_JURISDICTION_OVERRIDES`` rows from settings."""
    rows = list(BUILTIN_RULES)
    rows.extend(getattr(settings, 'EVV_JURISDICTION_OVERRIDES', ()) or ())
    return build_table(rows, version=1)


rule_registry = RuleRegistry(loader=load_rule_table)


def with_changes(rules: JurisdictionRules, **changes) -> JurisdictionRules:
    """Copy of ``rules`` with some fields replaced (used by overrides and tests)."""
    return replace(rules, **changes)
