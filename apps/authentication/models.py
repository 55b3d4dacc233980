"""
Authentication Models - Custom User Model with EVV roles
Multi-Tenancy: Organization → User
"""

import uuid
from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin, BaseUserManager
from django.db import models
from django.utils import timezone


class UserManager(BaseUserManager):
    """Custom user manager"""

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('Email is required')
        organization = extra_fields.pop('organization', None)
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        if organization is not None:
            user.organization = organization
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('role', User.ROLE_ORG_ADMIN)

        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """
    Platform user. Organization scope is denormalized on ``organization_id``.

    Roles are ranked: a user holding a higher role passes checks for every
    lower role (an ORG_ADMIN can do what a SUPERVISOR can).
    """

    ROLE_CAREGIVER = 'CAREGIVER'
    ROLE_COORDINATOR = 'COORDINATOR'
    ROLE_SUPERVISOR = 'SUPERVISOR'
    ROLE_BRANCH_ADMIN = 'BRANCH_ADMIN'
    ROLE_ORG_ADMIN = 'ORG_ADMIN'

    ROLE_CHOICES = [
        (ROLE_CAREGIVER, 'Caregiver'),
        (ROLE_COORDINATOR, 'Coordinator'),
        (ROLE_SUPERVISOR, 'Supervisor'),
        (ROLE_BRANCH_ADMIN, 'Branch Admin'),
        (ROLE_ORG_ADMIN, 'Organization Admin'),
    ]

    ROLE_RANK = {
        ROLE_CAREGIVER: 0,
        ROLE_COORDINATOR: 1,
        ROLE_SUPERVISOR: 2,
        ROLE_BRANCH_ADMIN: 3,
        ROLE_ORG_ADMIN: 4,
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    organization_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Organization ID (denormalized for performance)",
    )

    email = models.EmailField(unique=True, db_index=True)
    first_name = models.CharField(max_length=50)
    last_name = models.CharField(max_length=50)
    employee_id = models.CharField(max_length=50, blank=True, db_index=True)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_CAREGIVER, db_index=True)

    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)

    date_joined = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['first_name', 'last_name']

    class Meta:
        ordering = ['first_name', 'last_name']

    def __str__(self):
        return f"{self.full_name} ({self.email})"

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def organization(self):
        """Resolve the organization object (cached per instance)."""
        if not self.organization_id:
            return None
        cached = getattr(self, '_organization_cache', None)
        if cached is not None and cached.id == self.organization_id:
            return cached
        from apps.core.models import Organization
        cached = Organization.objects.filter(id=self.organization_id).first()
        self._organization_cache = cached
        return cached

    @organization.setter
    def organization(self, value):
        if hasattr(value, 'id'):
            self.organization_id = value.id
            self._organization_cache = value
        else:
            self.organization_id = value
            self._organization_cache = None

    def has_role(self, role_identifier):
        """True when the user's role ranks at or above ``role_identifier``."""
        if self.is_superuser:
            return True
        required = self.ROLE_RANK.get(str(role_identifier).upper())
        if required is None:
            return False
        return self.ROLE_RANK.get(self.role, -1) >= required

