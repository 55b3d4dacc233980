"""
EVV record state machine.

PENDING → IN_PROGRESS → COMPLETE, and PENDING | IN_PROGRESS → CANCELLED.
The derived fields (clock times, duration, level, flags) are always rebuilt
from the current time entries; nothing is appended in place.
"""

import logging

from django.db.models import F
from django.utils import timezone

from .constants import (
    CLOCK_IN,
    CLOCK_OUT,
    FLAG_COMPLIANT,
    FLAG_DUPLICATE_ENTRY,
    FLAG_MANUAL_OVERRIDE,
    LEVEL_MANUAL,
    LEVEL_STRICTNESS,
)
from .exceptions import InvalidTransitionError, VersionConflictError

logger = logging.getLogger(__name__)

TRANSITIONS = {
    'PENDING': ('IN_PROGRESS', 'CANCELLED'),
    'IN_PROGRESS': ('COMPLETE', 'CANCELLED'),
    'COMPLETE': (),
    'CANCELLED': (),
}

DERIVED_FIELDS = (
    'clock_in_time',
    'clock_out_time',
    'total_duration',
    'verification_level',
    'compliance_flags',
    'requires_review',
    'reconciliation_pending',
)


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


def transition(record, target: str) -> None:
    """Move ``record`` to ``target`` in memory; persist with ``save_record``."""
    if not can_transition(record.record_status, target):
        raise InvalidTransitionError(record.record_status, target)
    logger.info("EVV record %s: %s -> %s", record.id, record.record_status, target)
    record.record_status = target


def stricter_level(*levels):
    present = [level for level in levels if level]
    if not present:
        return ''
    return max(present, key=lambda level: LEVEL_STRICTNESS[level])


def _effective_level(entry):
    if entry.status == entry.STATUS_OVERRIDDEN:
        return stricter_level(entry.verification_level, LEVEL_MANUAL)
    return entry.verification_level


def effective_entries(record):
    """Effective entries grouped by type: ``{CLOCK_IN: [...], CLOCK_OUT: [...]}``."""
    from .models import TimeEntry

    grouped = {CLOCK_IN: [], CLOCK_OUT: []}
    for entry in record.time_entries.filter(status__in=TimeEntry.EFFECTIVE_STATUSES).order_by('timestamp'):
        grouped[entry.entry_type].append(entry)
    return grouped


def recompute(record) -> None:
    """Rebuild every derived field on ``record`` (in memory) from its entries."""
    from .models import ManualOverride, TimeEntry

    grouped = effective_entries(record)
    clock_in = grouped[CLOCK_IN][0] if grouped[CLOCK_IN] else None
    clock_out = grouped[CLOCK_OUT][0] if grouped[CLOCK_OUT] else None

    record.clock_in_time = clock_in.timestamp if clock_in else None
    record.clock_out_time = clock_out.timestamp if clock_out else None
    if clock_in and clock_out:
        record.total_duration = max(int((clock_out.timestamp - clock_in.timestamp).total_seconds() // 60), 0)
    else:
        record.total_duration = None

    effective = [e for e in (clock_in, clock_out) if e is not None]
    record.verification_level = stricter_level(*(_effective_level(e) for e in effective))

    flags = set()
    for entry in effective:
        flags.update(f for f in entry.compliance_flags or () if f != FLAG_COMPLIANT)

    all_entries = record.time_entries.all()
    if any(FLAG_DUPLICATE_ENTRY in (e.compliance_flags or ()) for e in all_entries):
        flags.add(FLAG_DUPLICATE_ENTRY)
    if ManualOverride.objects.filter(record=record).exists():
        flags.add(FLAG_MANUAL_OVERRIDE)

    record.compliance_flags = sorted(flags) or [FLAG_COMPLIANT]
    record.reconciliation_pending = any(e.status == TimeEntry.STATUS_PROVISIONAL for e in all_entries)
    record.requires_review = bool(flags) or any(
        e.status == TimeEntry.STATUS_PENDING_REVIEW for e in all_entries
    )


def advance(record) -> bool:
    """
    Apply every transition the effective entries now allow, one step at a time.
    Returns True when the record reached COMPLETE on this call.
    """
    grouped = effective_entries(record)
    if record.record_status == record.STATUS_PENDING and grouped[CLOCK_IN]:
        transition(record, record.STATUS_IN_PROGRESS)
    if record.record_status == record.STATUS_IN_PROGRESS and grouped[CLOCK_OUT]:
        if len(grouped[CLOCK_IN]) != 1 or len(grouped[CLOCK_OUT]) != 1:
            logger.error(
                "EVV record %s has %d clock-ins and %d clock-outs in effect; not completing",
                record.id, len(grouped[CLOCK_IN]), len(grouped[CLOCK_OUT]),
            )
            return False
        transition(record, record.STATUS_COMPLETE)
        return True
    return False


def save_record(record, extra_fields=()) -> None:
    """
    Persist status and derived fields with an optimistic version check.

    ``record.version`` is the version the caller read; a concurrent writer
    that got there first makes the update match zero rows.
    """
    from .models import EVVRecord

    fields = ('record_status',) + DERIVED_FIELDS + tuple(extra_fields)
    values = {name: getattr(record, name) for name in fields}
    updated = EVVRecord.objects.filter(pk=record.pk, version=record.version).update(
        version=F('version') + 1,
        updated_at=timezone.now(),
        **values,
    )
    if not updated:
        raise VersionConflictError('EVV record')
    record.version += 1
