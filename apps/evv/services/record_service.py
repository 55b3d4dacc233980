"""
Record queries: visit lookup, search over current versions, compliance summary
"""

import logging
from collections import Counter
from typing import Dict, List

from django.db.models import Count

from apps.core.exceptions import ValidationException

from ..constants import FLAG_COMPLIANT
from ..exceptions import RecordNotFound
from .submission_service import SubmissionService

logger = logging.getLogger(__name__)


class RecordService:

    @staticmethod
    def get_record_for_visit(organization, visit_id) -> Dict:
        from apps.evv.models import EVVRecord

        try:
            record = EVVRecord.objects.prefetch_related(
                'time_entries', 'overrides', 'amendments',
            ).get(organization=organization, visit_id=visit_id)
        except (EVVRecord.DoesNotExist, ValueError):
            raise RecordNotFound(visit_id, resource_type='EVV record for visit')

        return {
            'record': record,
            'time_entries': list(record.time_entries.all()),
            'amendments': list(record.amendments.order_by('created_at')),
            'current_version': SubmissionService.current_version(record),
        }

    @staticmethod
    def search_records(organization, params) -> List:
        """
        Filter the organization's visits and return the current version of each:
        the record itself, or the latest live amendment once it is superseded.
        """
        from apps.evv.filters import EVVRecordFilter
        from apps.evv.models import EVVRecord

        filterset = EVVRecordFilter(params, queryset=EVVRecord.objects.filter(organization=organization))
        if not filterset.is_valid():
            field, errors = next(iter(filterset.errors.items()))
            raise ValidationException(f"{field}: {errors[0]}", field=field)

        flag = (params.get('flag') or '').upper()
        submission_status = (params.get('submission_status') or '').upper()

        results = []
        for record in filterset.qs:
            current = SubmissionService.current_version(record)
            if flag and flag not in (current.compliance_flags or []):
                continue
            if submission_status and current.submission_status != submission_status:
                continue
            results.append(current)
        return results

    @staticmethod
    def get_compliance_summary(organization, date_from=None, date_to=None) -> Dict:
        from apps.evv.models import EVVRecord

        records = EVVRecord.objects.filter(organization=organization)
        if date_from:
            records = records.filter(service_date__gte=date_from)
        if date_to:
            records = records.filter(service_date__lte=date_to)
        if date_from and date_to and date_to < date_from:
            raise ValidationException('date_to must not be before date_from', field='date_to')

        by_status = {
            row['record_status']: row['count']
            for row in records.values('record_status').annotate(count=Count('id'))
        }
        by_level = {
            row['verification_level']: row['count']
            for row in records.exclude(verification_level='').values('verification_level').annotate(count=Count('id'))
        }

        flags = Counter()
        submissions = Counter()
        complete = 0
        compliant = 0
        for record in records:
            current = SubmissionService.current_version(record)
            flags.update(current.compliance_flags or [])
            submissions[current.submission_status] += 1
            if record.record_status == EVVRecord.STATUS_COMPLETE:
                complete += 1
                if list(current.compliance_flags or []) == [FLAG_COMPLIANT]:
                    compliant += 1

        return {
            'date_from': date_from,
            'date_to': date_to,
            'total_records': sum(by_status.values()),
            'by_status': by_status,
            'by_verification_level': by_level,
            'by_flag': dict(flags),
            'by_submission_status': dict(submissions),
            'complete_records': complete,
            'compliant_records': compliant,
            'compliance_rate': round(compliant * 100.0 / complete, 2) if complete else 0.0,
        }
