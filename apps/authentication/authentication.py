"""
Custom JWT Authentication with Tenant Validation
SECURITY: Validates organization_id claim in JWT matches the user's organization
"""

import logging
from drf_spectacular.extensions import OpenApiAuthenticationExtension
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.tokens import RefreshToken
from django.utils.translation import gettext_lazy as _

from apps.core.context import set_current_organization, set_current_user

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security.audit")


class OrganizationAwareJWTAuthentication(JWTAuthentication):
    """
    - JWT must be tenant-bound
    - Token org must match the user's org
    - Role claim is informational; the user row is authoritative
    """

    def authenticate(self, request):
        result = super().authenticate(request)

        if result is None:
            return None

        user, token = result

        organization = self._resolve_org_binding(user, token)
        request.organization = organization
        set_current_user(user)
        set_current_organization(organization)

        return user, token

    def _resolve_org_binding(self, user, token):
        token_org_id = token.get('organization_id')

        if not token_org_id:
            if user.is_superuser:
                return None
            logger.error("JWT rejected: missing organization_id claim")
            raise AuthenticationFailed(_('Organization binding missing in token'))

        if str(user.organization_id) != str(token_org_id):
            security_logger.error(
                "SECURITY VIOLATION: Cross-tenant token usage user=%s token_org=%s user_org=%s",
                user.email,
                token_org_id,
                user.organization_id,
            )
            raise AuthenticationFailed(_('Your credentials do not belong to this organization'))

        organization = user.organization
        if organization is None or not organization.is_active:
            raise AuthenticationFailed(_('Invalid organization in token'))
        return organization


def add_tenant_claims(token, user):
    """Bind a token to the user's organization; non-superusers must have one."""
    if not user.is_superuser and not user.organization_id:
        raise AuthenticationFailed(_('User is not assigned to any organization'))
    token['organization_id'] = str(user.organization_id) if user.organization_id else None
    token['role'] = user.role
    token['email'] = user.email
    return token


def issue_tokens_for_user(user):
    """Refresh/access pair carrying the tenant and role claims."""
    refresh = add_tenant_claims(RefreshToken.for_user(user), user)
    return {
        'refresh': str(refresh),
        'access': str(refresh.access_token),
    }


class OrganizationAwareJWTAuthenticationScheme(OpenApiAuthenticationExtension):
    target_class = 'apps.authentication.authentication.OrganizationAwareJWTAuthentication'
    name = 'JWTAuth'

    def get_security_definition(self, auto_schema):
        return {
            'type': 'http',
            'scheme': 'bearer',
            'bearerFormat': 'JWT',
        }
