"""
Authentication Views - login, logout and profile
"""

import logging

from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.views import APIView
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenObtainPairView

from apps.core.response import success_response

from .serializers import CustomTokenObtainPairSerializer, LogoutSerializer, UserSerializer
from .throttles import LoginRateThrottle

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security.audit")


class CustomTokenObtainPairView(TokenObtainPairView):
    """
    🔒 Tenant-bound login
    """
    permission_classes = [AllowAny]
    throttle_classes = [LoginRateThrottle]
    serializer_class = CustomTokenObtainPairSerializer


class LogoutView(APIView):
    permission_classes = [IsAuthenticated]
    serializer_class = LogoutSerializer

    def post(self, request):
        serializer = LogoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            RefreshToken(serializer.validated_data['refresh_token']).blacklist()
        except TokenError as exc:
            security_logger.warning("Logout with unusable refresh token user=%s: %s", request.user.email, exc)
        return success_response(message='Logged out.')


class ProfileView(APIView):
    permission_classes = [IsAuthenticated]
    serializer_class = UserSerializer

    def get(self, request):
        return success_response(UserSerializer(request.user).data)
