"""
Authentication Serializers
"""

from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from .authentication import add_tenant_claims
from .models import User


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    JWT login by email.
    SECURITY: every token carries the organization_id claim checked on each request.
    """

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        return add_tenant_claims(token, user)

    def validate(self, attrs):
        data = super().validate(attrs)
        data['user'] = UserSerializer(self.user).data
        return data


class UserSerializer(serializers.ModelSerializer):
    organization_name = serializers.CharField(source='organization.name', read_only=True, default=None)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'first_name', 'last_name', 'employee_id', 'role',
            'organization_id', 'organization_name', 'is_active', 'date_joined',
        ]
        read_only_fields = fields


class LogoutSerializer(serializers.Serializer):
    refresh_token = serializers.CharField()
