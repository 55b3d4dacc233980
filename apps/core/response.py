"""
Standardized JSON response helpers and pagination.

All API responses follow the envelope:

    Success:  {"success": true,  "data": ..., "message": "..."}
    Error:    {"success": false, "error": {"code": 400, "message": "...", "details": {...}}}

Paginated responses follow:

    {"success": true, "data": [...], "pagination": {...}}
"""

from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


def success_response(data=None, message='OK', http_status=status.HTTP_200_OK, **extra):
    """Return a successful JSON envelope."""
    payload = {'success': True, 'data': data, 'message': message}
    payload.update(extra)
    return Response(payload, status=http_status)


def created_response(data=None, message='Created successfully.'):
    return success_response(data=data, message=message, http_status=status.HTTP_201_CREATED)


class StandardResultsPagination(PageNumberPagination):
    """Standard pagination with configurable page size"""

    page_size = 20
    page_size_query_param = 'page_size'
    max_page_size = 100

    def get_paginated_response(self, data):
        return Response({
            'success': True,
            'data': data,
            'pagination': {
                'count': self.page.paginator.count,
                'total_pages': self.page.paginator.num_pages,
                'current_page': self.page.number,
                'page_size': self.get_page_size(self.request),
                'next': self.get_next_link(),
                'previous': self.get_previous_link(),
            }
        })
