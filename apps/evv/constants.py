"""
EVV vocabulary shared by the pure engine modules and the models.
"""

# Entry types
CLOCK_IN = 'CLOCK_IN'
CLOCK_OUT = 'CLOCK_OUT'
ENTRY_TYPE_CHOICES = [
    (CLOCK_IN, 'Clock In'),
    (CLOCK_OUT, 'Clock Out'),
]

# Verification methods
METHOD_GPS = 'GPS'
METHOD_NETWORK = 'NETWORK'
METHOD_PHONE = 'PHONE'
METHOD_MANUAL = 'MANUAL'
METHOD_BIOMETRIC = 'BIOMETRIC'
METHOD_EXCEPTION = 'EXCEPTION'
METHOD_CHOICES = [
    (METHOD_GPS, 'GPS'),
    (METHOD_NETWORK, 'Network'),
    (METHOD_PHONE, 'Telephony'),
    (METHOD_MANUAL, 'Manual'),
    (METHOD_BIOMETRIC, 'Biometric'),
    (METHOD_EXCEPTION, 'Exception'),
]
LOCATION_METHODS = (METHOD_GPS, METHOD_NETWORK, METHOD_BIOMETRIC)

# Verification levels, ordered from strongest to weakest evidence
LEVEL_FULL = 'FULL'
LEVEL_PARTIAL = 'PARTIAL'
LEVEL_PHONE = 'PHONE'
LEVEL_MANUAL = 'MANUAL'
LEVEL_EXCEPTION = 'EXCEPTION'
LEVEL_CHOICES = [
    (LEVEL_FULL, 'Full'),
    (LEVEL_PARTIAL, 'Partial'),
    (LEVEL_PHONE, 'Phone'),
    (LEVEL_MANUAL, 'Manual'),
    (LEVEL_EXCEPTION, 'Exception'),
]
LEVEL_STRICTNESS = {
    LEVEL_FULL: 0,
    LEVEL_PARTIAL: 1,
    LEVEL_PHONE: 2,
    LEVEL_MANUAL: 3,
    LEVEL_EXCEPTION: 4,
}

# Compliance flags
FLAG_COMPLIANT = 'COMPLIANT'
FLAG_GEOFENCE_VIOLATION = 'GEOFENCE_VIOLATION'
FLAG_TIME_GAP = 'TIME_GAP'
FLAG_DEVICE_SUSPICIOUS = 'DEVICE_SUSPICIOUS'
FLAG_LOCATION_SUSPICIOUS = 'LOCATION_SUSPICIOUS'
FLAG_LOCATION_MISMATCH = 'LOCATION_MISMATCH'
FLAG_DUPLICATE_ENTRY = 'DUPLICATE_ENTRY'
FLAG_LATE_SUBMISSION = 'LATE_SUBMISSION'
FLAG_MANUAL_OVERRIDE = 'MANUAL_OVERRIDE'
FLAG_VMUR_AMENDMENT = 'VMUR_AMENDMENT'
FLAG_MISSING_SIGNATURE = 'MISSING_SIGNATURE'

# Hard rejections
REJECT_TOO_EARLY = 'TOO_EARLY'
REJECT_SIGNATURE_REQUIRED = 'SIGNATURE_REQUIRED'
REJECT_INVALID_LOCATION = 'INVALID_LOCATION'
REJECT_NO_CLOCK_IN = 'NO_CLOCK_IN'

# Geolocation suspicion indicators
SUSPICION_IMPLAUSIBLE_ACCURACY = 'IMPLAUSIBLE_ACCURACY'
SUSPICION_IMPOSSIBLE_TRAVEL = 'IMPOSSIBLE_TRAVEL'
SUSPICION_MOCK_LOCATION = 'MOCK_LOCATION'

# Eligibility outcomes
ELIGIBILITY_ALLOW = 'ALLOW'
ELIGIBILITY_ALLOW_WITH_WARNING = 'ALLOW_WITH_WARNING'
ELIGIBILITY_BLOCK = 'BLOCK'

# Credential statuses that satisfy a requirement
CREDENTIAL_STATUS_ACTIVE = 'ACTIVE'
CREDENTIAL_STATUS_CLEARED = 'CLEARED'
CREDENTIAL_STATUS_PENDING = 'PENDING'
CREDENTIAL_STATUS_EXPIRED = 'EXPIRED'
CREDENTIAL_STATUS_REVOKED = 'REVOKED'
CREDENTIAL_STATUS_CHOICES = [
    (CREDENTIAL_STATUS_ACTIVE, 'Active'),
    (CREDENTIAL_STATUS_CLEARED, 'Cleared'),
    (CREDENTIAL_STATUS_PENDING, 'Pending'),
    (CREDENTIAL_STATUS_EXPIRED, 'Expired'),
    (CREDENTIAL_STATUS_REVOKED, 'Revoked'),
]
VALID_CREDENTIAL_STATUSES = (CREDENTIAL_STATUS_ACTIVE, CREDENTIAL_STATUS_CLEARED)

# Aggregators
AGGREGATOR_HHAEXCHANGE = 'HHAEXCHANGE'
AGGREGATOR_SANDATA = 'SANDATA'
AGGREGATOR_TELLUS = 'TELLUS'
AGGREGATOR_CHOICES = [
    (AGGREGATOR_HHAEXCHANGE, 'HHAeXchange'),
    (AGGREGATOR_SANDATA, 'Sandata'),
    (AGGREGATOR_TELLUS, 'Tellus'),
]

# Manual override reason codes
OVERRIDE_REASON_CODES = (
    'GPS_UNAVAILABLE',
    'DEVICE_MALFUNCTION',
    'EMERGENCY',
    'RURAL_AREA',
    'TECHNICAL_ISSUE',
    'CLIENT_LOCATION_CHANGE',
    'OTHER',
)

# VMUR reason codes
VMUR_REASON_CODES = (
    'DEVICE_MALFUNCTION',
    'GPS_UNAVAILABLE',
    'NETWORK_OUTAGE',
    'APP_ERROR',
    'SYSTEM_DOWNTIME',
    'RURAL_POOR_SIGNAL',
    'SERVICE_LOCATION_CHANGE',
    'EMERGENCY_EVACUATION',
    'HOSPITAL_TRANSPORT',
    'FORGOT_TO_CLOCK',
    'TRAINING_NEW_STAFF',
    'INCORRECT_CLOCK_TIME',
    'DUPLICATE_ENTRY',
    'OTHER_APPROVED',
)

# Reasons a caregiver may clock outside the normal rules (approved exception path)
EXCEPTION_REASON_CODES = (
    'CLIENT_REQUESTED_EARLY',
    'EMERGENCY',
    'SCHEDULE_CHANGE_APPROVED',
    'GPS_UNAVAILABLE',
)

# Roles allowed to accept a failed clock event
OVERRIDE_ROLES = ('SUPERVISOR', 'BRANCH_ADMIN', 'ORG_ADMIN')

WILDCARD = '*'
