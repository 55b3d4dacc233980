"""
Organization Safety Guards - Prevent cross-organization data leakage
"""

from rest_framework.exceptions import PermissionDenied

from .context import get_current_organization


def resolve_request_organization(request):
    """
    Organization for a DRF request.

    Order: request attribute set by middleware/JWT auth, then the context var,
    then the authenticated user's own organization.
    """
    org = getattr(request, 'organization', None) or get_current_organization()
    if org is not None:
        return org
    user = getattr(request, 'user', None)
    if user is not None and getattr(user, 'is_authenticated', False):
        org = user.organization
        if org is not None and org.is_active:
            request.organization = org
            return org
    return None


class OrganizationViewSetMixin:
    """
    ViewSet safety net for organization filtering.
    FAIL-CLOSED: returns empty queryset when no organization context.
    """

    def get_organization(self):
        return resolve_request_organization(self.request)

    def require_organization(self):
        org = self.get_organization()
        if org is None:
            raise PermissionDenied("Access denied: no organization context available")
        return org

    def get_queryset(self):
        queryset = super().get_queryset()

        org = self.get_organization()

        if not org:
            # FAIL-CLOSED: no organization context → no data
            return queryset.none()

        if hasattr(queryset.model, 'organization_id'):
            queryset = queryset.filter(organization_id=org.id)

        return queryset

