"""
Request middleware: correlation ids and organization context.

The organization is resolved here for session-authenticated requests (admin);
JWT requests are resolved later by ``OrganizationAwareJWTAuthentication`` because
DRF authenticates inside the view.
"""

import uuid
import logging
from django.utils.deprecation import MiddlewareMixin

from apps.core.context import (
    clear_context,
    set_client_ip,
    set_current_organization,
    set_current_user,
)
from apps.core.logging import set_correlation_id

logger = logging.getLogger(__name__)

CORRELATION_HEADER = 'HTTP_X_CORRELATION_ID'

PUBLIC_PATHS = (
    "/api/schema",
    "/api/docs",
    "/api/redoc",
    "/api/v1/health",
    "/static",
)


def is_public_path(path: str) -> bool:
    return any(path == p or path.startswith(p + "/") for p in PUBLIC_PATHS)


class CorrelationIdMiddleware(MiddlewareMixin):
    """Propagates ``X-Correlation-ID`` (or a fresh UUID) into log records."""

    def process_request(self, request):
        correlation_id = request.META.get(CORRELATION_HEADER) or uuid.uuid4().hex
        request.correlation_id = correlation_id
        set_correlation_id(correlation_id)

    def process_response(self, request, response):
        correlation_id = getattr(request, 'correlation_id', None)
        if correlation_id:
            response['X-Correlation-ID'] = correlation_id
        return response


class OrganizationMiddleware(MiddlewareMixin):
    """
    Resolves organization context for session-authenticated users.

    MUST run AFTER AuthenticationMiddleware.
    """

    def process_request(self, request):
        clear_context()
        request.organization = None
        set_client_ip(request.META.get('REMOTE_ADDR'))

        if is_public_path(request.path):
            return None

        user = getattr(request, 'user', None)
        if not user or not user.is_authenticated:
            return None

        set_current_user(user)
        organization = user.organization
        if organization is not None and organization.is_active:
            request.organization = organization
            set_current_organization(organization)
        return None

    def process_response(self, request, response):
        clear_context()
        return response
