"""
Providers - read-only access to client, caregiver and visit master data.

The engine only sees the frozen snapshots defined here. The database-backed
implementations read the reference models; deployments that own this data
elsewhere point ``EVV_PROVIDERS`` at their own classes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Tuple

from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils.module_loading import import_string

from .eligibility import CredentialSnapshot
from .exceptions import CaregiverNotFound, ClientNotFound, VisitNotFound
from .geolocation import GeoPoint


@dataclass(frozen=True)
class ClientSnapshot:
    id: str
    name: str
    medicaid_id: str
    state: str
    payer_type: str
    location: Optional[GeoPoint]
    geofence_radius_meters: Optional[float]
    address: str = ''


@dataclass(frozen=True)
class CaregiverSnapshot:
    id: str
    name: str
    employee_id: str
    skills: Tuple[str, ...]
    credentials: Tuple[CredentialSnapshot, ...]
    user_id: Optional[str] = None


@dataclass(frozen=True)
class VisitSnapshot:
    id: str
    client_id: str
    caregiver_id: str
    service_type_code: str
    service_type_name: str
    required_skills: Tuple[str, ...]
    scheduled_start: datetime
    scheduled_end: datetime
    status: str

    @property
    def service_date(self) -> date:
        return self.scheduled_start.date()


class ClientProvider(ABC):
    @abstractmethod
    def get_client_for_evv(self, organization, client_id) -> ClientSnapshot:
        """Return the client snapshot or raise ``ClientNotFound``."""


class CaregiverProvider(ABC):
    @abstractmethod
    def get_caregiver_for_evv(self, organization, caregiver_id) -> CaregiverSnapshot:
        """Return the caregiver snapshot or raise ``CaregiverNotFound``."""


class VisitProvider(ABC):
    @abstractmethod
    def get_visit_for_evv(self, organization, visit_id) -> VisitSnapshot:
        """Return the visit snapshot or raise ``VisitNotFound``."""


def _get_scoped(model, organization, pk, not_found):
    try:
        return model.objects.get(organization=organization, pk=pk, is_active=True)
    except (model.DoesNotExist, ValueError, ValidationError):
        raise not_found(pk)


class DatabaseClientProvider(ClientProvider):
    def get_client_for_evv(self, organization, client_id):
        from .models import ServiceClient

        client = _get_scoped(ServiceClient, organization, client_id, ClientNotFound)
        location = None
        if client.latitude is not None and client.longitude is not None:
            location = GeoPoint(client.latitude, client.longitude)
        address = ', '.join(p for p in (client.address_line, client.city, client.state, client.postal_code) if p)
        return ClientSnapshot(
            id=str(client.id),
            name=client.full_name,
            medicaid_id=client.medicaid_id,
            state=client.state,
            payer_type=client.payer_type,
            location=location,
            geofence_radius_meters=client.geofence_radius_meters,
            address=address,
        )


class DatabaseCaregiverProvider(CaregiverProvider):
    def get_caregiver_for_evv(self, organization, caregiver_id):
        from .models import Caregiver

        caregiver = _get_scoped(Caregiver, organization, caregiver_id, CaregiverNotFound)
        credentials = tuple(
            CredentialSnapshot(
                credential_type=credential.credential_type,
                status=credential.status,
                expires_on=credential.expires_on,
            )
            for credential in caregiver.credentials.filter(is_active=True)
        )
        return CaregiverSnapshot(
            id=str(caregiver.id),
            name=caregiver.full_name,
            employee_id=caregiver.employee_id,
            skills=tuple(caregiver.skills or ()),
            credentials=credentials,
            user_id=str(caregiver.user_id) if caregiver.user_id else None,
        )


class DatabaseVisitProvider(VisitProvider):
    def get_visit_for_evv(self, organization, visit_id):
        from .models import Visit

        visit = _get_scoped(Visit, organization, visit_id, VisitNotFound)
        return VisitSnapshot(
            id=str(visit.id),
            client_id=str(visit.client_id),
            caregiver_id=str(visit.caregiver_id),
            service_type_code=visit.service_type_code,
            service_type_name=visit.service_type_name,
            required_skills=tuple(visit.required_skills or ()),
            scheduled_start=visit.scheduled_start,
            scheduled_end=visit.scheduled_end,
            status=visit.status,
        )


DEFAULT_PROVIDERS = {
    'client': 'apps.evv.providers.DatabaseClientProvider',
    'caregiver': 'apps.evv.providers.DatabaseCaregiverProvider',
    'visit': 'apps.evv.providers.DatabaseVisitProvider',
}


def get_provider(kind: str):
    """Instantiate the provider configured for ``kind`` in ``EVV_PROVIDERS``."""
    configured = getattr(settings, 'EVV_PROVIDERS', {}) or {}
    path = configured.get(kind, DEFAULT_PROVIDERS[kind])
    return import_string(path)()
