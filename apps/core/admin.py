"""
Core Admin - Secure base classes with automatic organization filtering
"""

from django.contrib import admin

from .models import AuditLog, Organization


class OrganizationScopedAdmin(admin.ModelAdmin):
    """
    Base admin that limits non-superusers to their own organization.
    Prevents cross-organization data access in Django admin.
    """

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        if request.user.is_superuser:
            return qs
        if not request.user.organization_id or not hasattr(self.model, 'organization_id'):
            return qs.none()
        return qs.filter(organization_id=request.user.organization_id)


class ReadOnlyAdminMixin:
    """Admin mixin for append-only compliance records."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Organization)
class OrganizationAdmin(admin.ModelAdmin):
    list_display = ['name', 'email', 'medicaid_provider_id', 'timezone', 'is_active', 'created_at']
    list_filter = ['is_active']
    search_fields = ['name', 'email', 'medicaid_provider_id']


@admin.register(AuditLog)
class AuditLogAdmin(ReadOnlyAdminMixin, OrganizationScopedAdmin):
    list_display = ['timestamp', 'action', 'resource_type', 'resource_id', 'user_email', 'organization']
    list_filter = ['action', 'resource_type']
    search_fields = ['resource_id', 'user_email', 'request_id']
    date_hierarchy = 'timestamp'
