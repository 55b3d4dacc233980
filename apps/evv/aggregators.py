"""
State aggregator clients - wire formats and HTTP transport.

Each client turns the aggregator-neutral ``SubmissionData`` into its own
payload, posts it with ``requests`` and normalises the reply into an
``AggregatorResponse``. Deciding what to do with a failure (retry, give up)
belongs to the submission pipeline, not here.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

import requests
from django.conf import settings

from .constants import (
    AGGREGATOR_HHAEXCHANGE,
    AGGREGATOR_SANDATA,
    AGGREGATOR_TELLUS,
    FLAG_GEOFENCE_VIOLATION,
)
from .exceptions import TerminalSubmissionError

logger = logging.getLogger(__name__)

RETRYABLE_HTTP_STATUSES = (408, 429)
RETRYABLE_ERROR_CODES = (
    'NETWORK_TIMEOUT',
    'SERVICE_UNAVAILABLE',
    'RATE_LIMIT_EXCEEDED',
    'TEMPORARY_ERROR',
)


@dataclass(frozen=True)
class SubmissionData:
    """Everything an aggregator needs about one record version."""

    record_id: str
    visit_id: str
    organization_id: str
    provider_id: str
    state: str
    client_id: str
    client_name: str
    client_medicaid_id: str
    caregiver_employee_id: str
    caregiver_name: str
    service_type_code: str
    service_type_name: str
    service_date: Optional[date]
    clock_in_time: Optional[datetime]
    clock_out_time: Optional[datetime]
    total_duration: Optional[int]
    clock_in_location: Optional[Dict] = None
    clock_out_location: Optional[Dict] = None
    verification_method: str = ''
    verification_level: str = ''
    compliance_flags: Tuple[str, ...] = ()
    amendment_reason_code: str = ''


@dataclass
class AggregatorResponse:
    success: bool
    confirmation_id: str = ''
    transaction_id: str = ''
    error_code: str = ''
    error_message: str = ''
    http_status: Optional[int] = None
    retryable: bool = False
    validation_errors: List[str] = field(default_factory=list)


def missing_federal_elements(data: SubmissionData) -> List[str]:
    """
    The six elements the 21st Century Cures Act requires on every visit:
    service type, client, caregiver, date, location and begin/end time.
    """
    missing = []
    if not data.service_type_code:
        missing.append('service_type')
    if not (data.client_medicaid_id or data.client_id):
        missing.append('client')
    if not (data.caregiver_employee_id or data.caregiver_name):
        missing.append('caregiver')
    if not data.service_date:
        missing.append('service_date')
    location = data.clock_in_location or {}
    if location.get('latitude') is None or location.get('longitude') is None:
        if data.verification_method not in ('PHONE', 'MANUAL', 'EXCEPTION'):
            missing.append('location')
    if not data.clock_in_time or not data.clock_out_time:
        missing.append('begin_end_time')
    return missing


def _iso(value):
    return value.isoformat() if value is not None else None


class AggregatorClient(ABC):
    aggregator_id = ''

    def __init__(self, endpoint: str, credential: str, timeout: float = 15):
        self.endpoint = endpoint
        self.credential = credential
        self.timeout = timeout

    @abstractmethod
    def format_payload(self, data: SubmissionData) -> Dict:
        """Aggregator-specific JSON body."""

    @abstractmethod
    def auth_headers(self) -> Dict[str, str]:
        """Authentication headers for every request."""

    def submit(self, payload: Dict, idempotency_key: str) -> AggregatorResponse:
        headers = {
            'Content-Type': 'application/json',
            'Idempotency-Key': idempotency_key,
        }
        headers.update(self.auth_headers())

        try:
            response = requests.post(self.endpoint, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.warning("%s submission timed out after %ss", self.aggregator_id, self.timeout)
            return AggregatorResponse(
                success=False,
                error_code='NETWORK_TIMEOUT',
                error_message='Request timeout',
                retryable=True,
            )
        except requests.exceptions.RequestException as exc:
            logger.warning("%s submission failed at transport level: %s", self.aggregator_id, exc)
            return AggregatorResponse(
                success=False,
                error_code='NETWORK_ERROR',
                error_message=str(exc) or 'Connection failed',
                retryable=True,
            )

        return self.parse_response(response)

    def parse_response(self, response) -> AggregatorResponse:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        status_code = response.status_code
        if 200 <= status_code < 300 and self.is_success(body):
            return AggregatorResponse(
                success=True,
                confirmation_id=str(self.confirmation_from(body) or ''),
                transaction_id=str(self.transaction_from(body) or ''),
                http_status=status_code,
            )

        error_code = str(body.get('errorCode') or body.get('error_code') or f"HTTP_{status_code}")
        errors = self.errors_from(body)
        retryable = (
            status_code >= 500
            or status_code in RETRYABLE_HTTP_STATUSES
            or error_code in RETRYABLE_ERROR_CODES
        )
        return AggregatorResponse(
            success=False,
            transaction_id=str(self.transaction_from(body) or ''),
            error_code=error_code,
            error_message='; '.join(errors) or body.get('errorMessage') or f"HTTP error {status_code}",
            http_status=status_code,
            retryable=retryable,
            validation_errors=errors,
        )

    def is_success(self, body) -> bool:
        status = body.get('status')
        return status in (None, 'SUCCESS', 'ACCEPTED')

    def confirmation_from(self, body):
        return body.get('confirmationNumber')

    def transaction_from(self, body):
        return body.get('transactionId')

    def errors_from(self, body) -> List[str]:
        errors = body.get('errors') or body.get('validationErrors') or []
        messages = []
        for error in errors:
            if isinstance(error, dict):
                messages.append(str(error.get('message') or error.get('errorMessage') or error))
            else:
                messages.append(str(error))
        return messages


class HHAeXchangeClient(AggregatorClient):
    """Texas and Florida. Flat payload, API key header."""

    aggregator_id = AGGREGATOR_HHAEXCHANGE

    CLOCK_METHODS = {'GPS': 'MOBILE_GPS', 'NETWORK': 'MOBILE_GPS', 'PHONE': 'TELEPHONY', 'BIOMETRIC': 'BIOMETRIC'}

    def auth_headers(self):
        return {'X-API-Key': self.credential}

    def format_payload(self, data):
        clock_in = data.clock_in_location or {}
        payload = {
            'visitId': data.visit_id,
            'memberId': data.client_id,
            'memberName': data.client_name,
            'memberMedicaidId': data.client_medicaid_id,
            'providerId': data.caregiver_employee_id,
            'providerName': data.caregiver_name,
            'agencyProviderId': data.provider_id,
            'serviceCode': data.service_type_code,
            'serviceName': data.service_type_name,
            'serviceDate': _iso(data.service_date),
            'clockInTime': _iso(data.clock_in_time),
            'clockOutTime': _iso(data.clock_out_time),
            'totalMinutes': data.total_duration,
            'clockInLatitude': clock_in.get('latitude'),
            'clockInLongitude': clock_in.get('longitude'),
            'clockInAccuracy': clock_in.get('accuracy'),
            'clockMethod': self.CLOCK_METHODS.get(data.verification_method, 'MANUAL'),
            'verificationType': data.verification_level,
            'verificationStatus': 'VERIFIED' if not data.compliance_flags or data.compliance_flags == ('COMPLIANT',) else 'EXCEPTION',
            'stateCode': data.state,
        }
        if data.clock_out_location:
            payload['clockOutLatitude'] = data.clock_out_location.get('latitude')
            payload['clockOutLongitude'] = data.clock_out_location.get('longitude')
            payload['clockOutAccuracy'] = data.clock_out_location.get('accuracy')
        if data.amendment_reason_code:
            payload['visitMaintenanceReason'] = data.amendment_reason_code
        return payload


class SandataClient(AggregatorClient):
    """Ohio, Pennsylvania, North Carolina, Arizona. Bearer token."""

    aggregator_id = AGGREGATOR_SANDATA

    VERIFICATION_TYPES = {'GPS': 'GPS', 'NETWORK': 'GPS', 'PHONE': 'IVR', 'BIOMETRIC': 'BIO'}

    def auth_headers(self):
        return {'Authorization': f"Bearer {self.credential}"}

    def format_payload(self, data):
        location = data.clock_in_location or {}
        payload = {
            'serviceType': data.service_type_code,
            'memberIdentifier': data.client_medicaid_id or data.client_id,
            'memberName': data.client_name,
            'providerIdentifier': data.caregiver_employee_id,
            'providerName': data.caregiver_name,
            'serviceDate': _iso(data.service_date),
            'serviceStartTime': _iso(data.clock_in_time),
            'serviceEndTime': _iso(data.clock_out_time),
            'serviceLocation': {
                'latitude': location.get('latitude'),
                'longitude': location.get('longitude'),
                'accuracy': location.get('accuracy'),
            },
            'visitId': data.visit_id,
            'organizationId': data.organization_id,
            'verificationType': self.VERIFICATION_TYPES.get(data.verification_method, 'MANUAL'),
            'duration': data.total_duration or 0,
            'stateSpecific': {
                'state': data.state,
                'agencyProviderId': data.provider_id,
                'verificationLevel': data.verification_level,
                'complianceFlags': list(data.compliance_flags),
            },
        }
        if data.amendment_reason_code:
            payload['stateSpecific']['visitChangeReason'] = data.amendment_reason_code
        return payload

    def confirmation_from(self, body):
        return body.get('confirmationNumber') or body.get('confirmationId')


class TellusClient(AggregatorClient):
    """Georgia. Nested payload, API key header."""

    aggregator_id = AGGREGATOR_TELLUS

    def auth_headers(self):
        return {'X-API-Key': self.credential}

    def format_payload(self, data):
        location_info = {}
        if data.clock_in_location:
            location_info['checkInLocation'] = dict(data.clock_in_location, timestamp=_iso(data.clock_in_time))
        if data.clock_out_location:
            location_info['checkOutLocation'] = dict(data.clock_out_location, timestamp=_iso(data.clock_out_time))
        payload = {
            'visitReference': data.visit_id,
            'clientInfo': {
                'medicaidId': data.client_medicaid_id or data.client_id,
                'fullName': data.client_name,
            },
            'providerInfo': {
                'employeeId': data.caregiver_employee_id,
                'fullName': data.caregiver_name,
                'agencyId': data.provider_id,
            },
            'serviceInfo': {
                'serviceCode': data.service_type_code,
                'serviceName': data.service_type_name,
                'serviceDate': _iso(data.service_date),
            },
            'timeInfo': {
                'clockIn': _iso(data.clock_in_time),
                'clockOut': _iso(data.clock_out_time),
                'totalMinutes': data.total_duration or 0,
            },
            'locationInfo': location_info,
            'verificationInfo': {
                'method': data.verification_method,
                'level': data.verification_level,
                'geofenceCompliant': FLAG_GEOFENCE_VIOLATION not in data.compliance_flags,
            },
        }
        if data.amendment_reason_code:
            payload['verificationInfo']['correctionReason'] = data.amendment_reason_code
        return payload

    def confirmation_from(self, body):
        return body.get('confirmationCode')

    def transaction_from(self, body):
        return body.get('referenceNumber')

    def errors_from(self, body):
        return [
            str(error.get('errorMessage') if isinstance(error, dict) else error)
            for error in body.get('errors') or []
        ]


AGGREGATOR_CLIENTS = {
    AGGREGATOR_HHAEXCHANGE: HHAeXchangeClient,
    AGGREGATOR_SANDATA: SandataClient,
    AGGREGATOR_TELLUS: TellusClient,
}


def get_aggregator_client(aggregator_id: str) -> AggregatorClient:
    """Client for ``aggregator_id`` configured from ``EVV_AGGREGATORS``."""
    client_class = AGGREGATOR_CLIENTS.get(aggregator_id)
    if client_class is None:
        raise TerminalSubmissionError(f"Unknown aggregator: {aggregator_id!r}", code='AGGREGATOR_UNKNOWN')

    config = (getattr(settings, 'EVV_AGGREGATORS', {}) or {}).get(aggregator_id) or {}
    endpoint = config.get('endpoint')
    credential = config.get('credential')
    if not endpoint or not credential:
        raise TerminalSubmissionError(
            f"Aggregator {aggregator_id} has no endpoint or credential configured",
            code='AGGREGATOR_NOT_CONFIGURED',
        )
    timeout = getattr(settings, 'EVV_AGGREGATOR_TIMEOUT_SECONDS', 15)
    return client_class(endpoint, credential, timeout=timeout)
