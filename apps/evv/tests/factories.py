"""
factory_boy factories for the EVV test suite.
"""

from datetime import date, timedelta

import factory
from django.utils import timezone

from apps.authentication.models import User
from apps.core.models import Organization
from apps.evv.constants import CLOCK_IN, CLOCK_OUT, CREDENTIAL_STATUS_ACTIVE
from apps.evv.models import Caregiver, Credential, ServiceClient, Visit
from apps.evv.rules import JurisdictionKey, rule_registry
from apps.evv.verification import ClockEvent, DeviceInfo

# Tampa, FL
SERVICE_LATITUDE = 27.9506
SERVICE_LONGITUDE = -82.4572


class OrganizationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Organization

    name = factory.Sequence(lambda n: f'Sunrise Home Care {n}')
    email = factory.Sequence(lambda n: f'agency{n}@example.com')
    medicaid_provider_id = factory.Sequence(lambda n: f'PRV{n:06d}')


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = User

    email = factory.Sequence(lambda n: f'user{n}@example.com')
    first_name = 'Test'
    last_name = factory.Sequence(lambda n: f'User{n}')
    role = User.ROLE_COORDINATOR
    organization = factory.SubFactory(OrganizationFactory)

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        password = kwargs.pop('password', 'testpass123')
        return model_class.objects.create_user(*args, password=password, **kwargs)


class ServiceClientFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ServiceClient

    organization = factory.SubFactory(OrganizationFactory)
    first_name = 'Maria'
    last_name = factory.Sequence(lambda n: f'Client{n}')
    medicaid_id = factory.Sequence(lambda n: f'MCD{n:08d}')
    address_line = '100 Main St'
    city = 'Tampa'
    state = 'FL'
    postal_code = '33602'
    latitude = SERVICE_LATITUDE
    longitude = SERVICE_LONGITUDE


class CaregiverFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Caregiver

    organization = factory.SubFactory(OrganizationFactory)
    first_name = 'Ana'
    last_name = factory.Sequence(lambda n: f'Caregiver{n}')
    employee_id = factory.Sequence(lambda n: f'CG{n:05d}')
    skills = factory.LazyFunction(list)


class CredentialFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Credential

    caregiver = factory.SubFactory(CaregiverFactory)
    organization = factory.SelfAttribute('caregiver.organization')
    credential_type = 'LEVEL_2_SCREENING'
    status = CREDENTIAL_STATUS_ACTIVE
    issued_on = factory.LazyFunction(lambda: date.today() - timedelta(days=30))
    expires_on = factory.LazyFunction(lambda: date.today() + timedelta(days=365))


def _next_hour():
    return timezone.now().replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)


class VisitFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Visit

    organization = factory.SubFactory(OrganizationFactory)
    client = factory.SubFactory(ServiceClientFactory, organization=factory.SelfAttribute('..organization'))
    caregiver = factory.SubFactory(CaregiverFactory, organization=factory.SelfAttribute('..organization'))
    service_type_code = 'PCS'
    service_type_name = 'Personal Care Services'
    required_skills = factory.LazyFunction(list)
    scheduled_start = factory.LazyFunction(_next_hour)
    scheduled_end = factory.LazyAttribute(lambda o: o.scheduled_start + timedelta(hours=2))


def grant_required_credentials(caregiver, state, payer_type='MEDICAID', service_type='PCS'):
    """Give ``caregiver`` every credential the jurisdiction requires."""
    rules = rule_registry.resolve(JurisdictionKey(state, payer_type, service_type))
    return [
        CredentialFactory(caregiver=caregiver, credential_type=requirement.code)
        for requirement in rules.required_credentials
    ]


def eligible_visit(organization, state='FL', **kwargs):
    """A visit whose caregiver holds every credential the client's state requires."""
    client = ServiceClientFactory(organization=organization, state=state)
    visit = VisitFactory(organization=organization, client=client, **kwargs)
    grant_required_credentials(visit.caregiver, state)
    return visit


def clock_event(visit, entry_type=CLOCK_IN, at=None, **overrides):
    """A well-formed GPS clock event at the client's address."""
    if at is None:
        at = visit.scheduled_start if entry_type == CLOCK_IN else visit.scheduled_end
    values = {
        'visit_id': str(visit.pk),
        'entry_type': entry_type,
        'timestamp': at,
        'latitude': visit.client.latitude,
        'longitude': visit.client.longitude,
        'accuracy': 10.0,
        'method': 'GPS',
        'device': DeviceInfo(device_id='device-1', model='Pixel', os='Android 14', app_version='3.2.0'),
        'signature': 'data:image/png;base64,AAAA' if entry_type == CLOCK_OUT else None,
        'received_at': at,
    }
    values.update(overrides)
    return ClockEvent(**values)
