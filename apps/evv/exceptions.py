"""
EVV domain errors.

Request-path errors extend the platform ``APIException`` hierarchy so the DRF
handler renders them in the standard envelope; submission errors stay in the
background and never reach a response.
"""

from rest_framework import status

from apps.core.exceptions import APIException, ConflictException, ResourceNotFoundException


class EligibilityError(APIException):
    """Clock-in blocked by the eligibility gate."""

    def __init__(self, reasons, citations=()):
        self.reasons = list(reasons)
        self.citations = list(citations)
        message = self.reasons[0] if self.reasons else 'Caregiver is not eligible for this visit'
        super().__init__(message, code='eligibility_blocked', status_code=status.HTTP_403_FORBIDDEN)

    def get_details(self):
        return {'reasons': self.reasons, 'citations': self.citations}


class VerificationRejected(APIException):
    """Hard rejection of a clock event (TOO_EARLY, SIGNATURE_REQUIRED, ...)."""

    def __init__(self, rejection, issues=(), time_entry_id=None):
        self.rejection = rejection
        self.issues = list(issues)
        self.time_entry_id = time_entry_id
        message = self.issues[0] if self.issues else f"Clock event rejected: {rejection}"
        super().__init__(
            message,
            code='verification_rejected',
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    def get_details(self):
        details = {'rejection': self.rejection, 'issues': self.issues}
        if self.time_entry_id:
            details['time_entry_id'] = str(self.time_entry_id)
        return details


class DuplicateEntryError(ConflictException):
    def __init__(self, entry_type, time_entry_id=None):
        self.entry_type = entry_type
        self.time_entry_id = time_entry_id
        super().__init__(
            f"An accepted {entry_type} already exists for this visit",
            code='duplicate_entry',
        )

    def get_details(self):
        details = super().get_details()
        details['entry_type'] = self.entry_type
        if self.time_entry_id:
            details['time_entry_id'] = str(self.time_entry_id)
        return details


class VersionConflictError(ConflictException):
    """Optimistic version check failed; the caller should reload and retry."""

    retryable = True

    def __init__(self, resource='record'):
        super().__init__(
            f"The {resource} was modified concurrently. Reload and retry.",
            code='version_conflict',
        )


class InvalidTransitionError(ConflictException):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move record from {current} to {target}",
            code='invalid_transition',
        )

    def get_details(self):
        details = super().get_details()
        details.update({'from': self.current, 'to': self.target})
        return details


class ImmutableRecordError(ConflictException):
    def __init__(self, message='Verified EVV data cannot be modified or deleted'):
        super().__init__(message, code='immutable_record')


class ClientNotFound(ResourceNotFoundException):
    def __init__(self, client_id):
        super().__init__('Client', client_id)


class CaregiverNotFound(ResourceNotFoundException):
    def __init__(self, caregiver_id):
        super().__init__('Caregiver', caregiver_id)


class VisitNotFound(ResourceNotFoundException):
    def __init__(self, visit_id):
        super().__init__('Visit', visit_id)


class RecordNotFound(ResourceNotFoundException):
    def __init__(self, resource_id, resource_type='EVV record'):
        super().__init__(resource_type, resource_id)


class SubmissionError(Exception):
    """Base for aggregator submission failures."""

    retryable = False

    def __init__(self, message, code=None, http_status=None):
        self.message = message
        self.code = code or 'SUBMISSION_ERROR'
        self.http_status = http_status
        super().__init__(message)


class TerminalSubmissionError(SubmissionError):
    retryable = False
