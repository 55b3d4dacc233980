from .amendment_service import AmendmentService
from .clock_service import ClockService
from .override_service import OverrideService
from .record_service import RecordService
from .submission_service import SubmissionService

__all__ = [
    'AmendmentService',
    'ClockService',
    'OverrideService',
    'RecordService',
    'SubmissionService',
]
