"""
EVV URLs
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import (
    AmendmentViewSet, ClockViewSet, EVVRecordViewSet, SubmissionAttemptViewSet, TimeEntryViewSet,
)

router = DefaultRouter()
router.register(r'records', EVVRecordViewSet, basename='evv-record')
router.register(r'clock', ClockViewSet, basename='evv-clock')
router.register(r'time-entries', TimeEntryViewSet, basename='evv-time-entry')
router.register(r'amendments', AmendmentViewSet, basename='evv-amendment')
router.register(r'submission-attempts', SubmissionAttemptViewSet, basename='evv-submission-attempt')

urlpatterns = [
    path('', include(router.urls)),
]
