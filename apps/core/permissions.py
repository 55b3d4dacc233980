"""
Role-based permission enforcement
"""

from rest_framework.permissions import BasePermission

from .tenant_guards import resolve_request_organization


# =============================================================================
# HELPERS
# =============================================================================

def user_has_any_role(user, role_names) -> bool:
    if not user or not getattr(user, 'is_authenticated', False):
        return False
    if user.is_superuser:
        return True
    return any(user.has_role(role_name) for role_name in role_names)


# =============================================================================
# DRF PERMISSION CLASSES
# =============================================================================

class HasRole(BasePermission):
    """
    DRF permission class for checking roles per action.

    Usage:
        permission_classes = [HasRole]
        required_roles = {
            'list': ['COORDINATOR', 'SUPERVISOR'],
            'override': ['SUPERVISOR'],
        }

    Actions missing from the mapping only require authentication.
    """

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        if request.user.is_superuser:
            return True

        required = getattr(view, 'required_roles', {})
        if isinstance(required, (list, tuple)):
            roles = required
        else:
            roles = required.get(getattr(view, 'action', None), ())

        if not roles:
            return True
        return user_has_any_role(request.user, roles)


class IsOrganizationMember(BasePermission):
    """Requires an active organization context and same-org objects."""

    message = 'Resources must be accessed through an active organization context.'

    def has_permission(self, request, view):
        return resolve_request_organization(request) is not None

    def has_object_permission(self, request, view, obj):
        organization = resolve_request_organization(request)
        if not organization:
            return False
        obj_org_id = getattr(obj, 'organization_id', None)
        return obj_org_id in (None, organization.id)
