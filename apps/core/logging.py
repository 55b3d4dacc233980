"""
Logging helpers: correlation ids and tenant fields on every record.

Production settings attach ``CorrelationIdFilter`` to the JSON handler so each
line carries ``correlation_id`` and ``organization_id``.
"""

from contextvars import ContextVar
from typing import Optional

from apps.core.context import get_current_organization

# Async-safe storage for correlation ID
_correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)


def set_correlation_id(correlation_id: Optional[str]) -> None:
    _correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    return _correlation_id_var.get()


class CorrelationIdFilter:
    def filter(self, record):
        record.correlation_id = get_correlation_id() or 'unknown'
        if not hasattr(record, 'organization_id'):
            organization = get_current_organization()
            record.organization_id = str(organization.id) if organization else None
        return True


def log_extra(organization=None, **fields) -> dict:
    """
    Build the ``extra`` mapping for a structured log call.

    UUIDs and other non-JSON values are stringified so the JSON formatter
    never chokes on them.
    """
    extra = {key: (str(value) if value is not None and not isinstance(value, (int, float, bool, str, list, dict)) else value)
             for key, value in fields.items()}
    if organization is not None:
        extra['organization_id'] = str(getattr(organization, 'id', organization))
    return extra
