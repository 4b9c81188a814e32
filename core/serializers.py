from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenRefreshSerializer

from core import services
from core.models import Vendor

User = get_user_model()


class VendorSerializer(serializers.ModelSerializer):
    class Meta:
        model = Vendor
        fields = [
            "id",
            "name",
            "code",
            "contact_person",
            "contact_email",
            "contact_phone",
            "address",
            "gst_number",
            "is_active",
            "status",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class VendorWriteSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255, required=False)
    code = serializers.CharField(max_length=32, required=False, allow_null=True, allow_blank=True)
    contact_person = serializers.CharField(max_length=255, required=False, allow_blank=True)
    contact_email = serializers.EmailField(required=False, allow_blank=True)
    contact_phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    address = serializers.CharField(required=False, allow_blank=True)
    gst_number = serializers.CharField(max_length=32, required=False, allow_blank=True)
    is_active = serializers.BooleanField(required=False)


class ErpVendorSerializer(VendorWriteSerializer):
    id = serializers.UUIDField(required=False, allow_null=True)


class VendorSignupSerializer(serializers.Serializer):
    """Required-field checks live in the signup service so every caller gets the same errors."""

    vendor_name = serializers.CharField(required=False, allow_blank=True, default="")
    contact_person = serializers.CharField(required=False, allow_blank=True, default="")
    contact_email = serializers.CharField(required=False, allow_blank=True, default="")
    contact_phone = serializers.CharField(required=False, allow_blank=True, default="")
    address = serializers.CharField(required=False, allow_blank=True, default="")
    gst_number = serializers.CharField(required=False, allow_blank=True, default="")
    password = serializers.CharField(required=False, allow_blank=True, default="", write_only=True, trim_whitespace=False)
    confirm_password = serializers.CharField(
        required=False, allow_blank=True, default="", write_only=True, trim_whitespace=False
    )


class UserSerializer(serializers.ModelSerializer):
    vendor_name = serializers.CharField(source="vendor.name", read_only=True, default=None)

    class Meta:
        model = User
        fields = ["id", "name", "email", "role", "vendor", "vendor_name", "is_active", "last_login", "created_at"]
        read_only_fields = fields


class UserWriteSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    email = serializers.EmailField(required=False)
    password = serializers.CharField(required=False, write_only=True, min_length=6, trim_whitespace=False)
    role = serializers.ChoiceField(choices=User.Role.choices, required=False)
    vendor_id = serializers.UUIDField(required=False, allow_null=True)
    is_active = serializers.BooleanField(required=False)


class LoginSerializer(serializers.Serializer):
    email = serializers.CharField()
    password = serializers.CharField(write_only=True, trim_whitespace=False)


class PortalTokenRefreshSerializer(TokenRefreshSerializer):
    def validate(self, attrs):
        return services.refresh_access_token(attrs["refresh"])
