"""
Audit trail writer.

Every compliance-relevant write goes through ``record_audit_event`` so the
trail is append-only and carries request context.
"""

import logging

from django.core.serializers.json import DjangoJSONEncoder
import json

from apps.core.context import get_client_ip, get_current_user
from apps.core.logging import get_correlation_id

logger = logging.getLogger("security.audit")


def _jsonable(values):
    if values is None:
        return None
    return json.loads(json.dumps(values, cls=DjangoJSONEncoder))


def record_audit_event(
    *,
    organization,
    action: str,
    resource,
    user=None,
    old_values=None,
    new_values=None,
):
    """Persist one AuditLog row; ``resource`` is a model instance."""
    from apps.core.models import AuditLog

    user = user or get_current_user()
    if user is not None and not getattr(user, 'is_authenticated', False):
        user = None

    old_values = _jsonable(old_values)
    new_values = _jsonable(new_values)
    changed_fields = sorted(
        key for key in (new_values or {})
        if (old_values or {}).get(key) != new_values.get(key)
    )

    entry = AuditLog.objects.create(
        organization=organization,
        user=user,
        user_email=getattr(user, 'email', None),
        action=action,
        resource_type=resource.__class__.__name__,
        resource_id=str(resource.pk),
        resource_repr=str(resource)[:255],
        old_values=old_values,
        new_values=new_values,
        changed_fields=changed_fields,
        ip_address=get_client_ip(),
        request_id=get_correlation_id(),
    )
    logger.info(
        "AUDIT_EVENT action=%s resource=%s:%s user=%s",
        action,
        entry.resource_type,
        entry.resource_id,
        entry.user_email or 'system',
    )
    return entry
