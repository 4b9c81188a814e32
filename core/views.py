import logging

from django.db import DatabaseError, connections
from django.db.migrations.executor import MigrationExecutor
from rest_framework import generics, status, viewsets
from rest_framework.decorators import action, api_view, authentication_classes, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.views import TokenRefreshView

from common.exceptions import BadRequest
from common.permissions import IsAdminRole
from core import services
from core.serializers import (
    LoginSerializer,
    PortalTokenRefreshSerializer,
    UserSerializer,
    UserWriteSerializer,
    VendorSerializer,
    VendorSignupSerializer,
    VendorWriteSerializer,
)

logger = logging.getLogger(__name__)


class LoginView(generics.GenericAPIView):
    serializer_class = LoginSerializer
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"

    def get_authenticate_header(self, request):
        # Without authenticators DRF would turn failed logins into 403.
        return 'Bearer realm="api"'

    def post(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = services.login(serializer.validated_data["email"], serializer.validated_data["password"])
        return Response(
            {
                "access": result["access"],
                "refresh": result["refresh"],
                "user": UserSerializer(result["user"]).data,
            }
        )


class PortalTokenRefreshView(TokenRefreshView):
    serializer_class = PortalTokenRefreshSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class MeView(generics.RetrieveAPIView):
    serializer_class = UserSerializer
    permission_classes = [IsAuthenticated]

    def get_object(self):
        return self.request.user


class VendorSignupView(generics.GenericAPIView):
    serializer_class = VendorSignupSerializer
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"

    def post(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vendor, _ = services.public_signup(**serializer.validated_data)
        return Response(
            {
                "message": "Vendor signup successful. Your account is pending approval from the admin.",
                "vendor_id": str(vendor.id),
            },
            status=status.HTTP_201_CREATED,
        )


class AdminVendorViewSet(viewsets.ModelViewSet):
    serializer_class = VendorSerializer
    permission_classes = [IsAuthenticated, IsAdminRole]

    def get_queryset(self):
        return services.list_vendors(
            status=self.request.query_params.get("status"),
            search=self.request.query_params.get("search"),
        )

    def create(self, request, *args, **kwargs):
        serializer = VendorWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vendor = services.create_vendor(serializer.validated_data)
        return Response(VendorSerializer(vendor).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        serializer = VendorWriteSerializer(data=request.data, partial=kwargs.pop("partial", False))
        serializer.is_valid(raise_exception=True)
        vendor = services.update_vendor(kwargs["pk"], serializer.validated_data)
        return Response(VendorSerializer(vendor).data)

    def destroy(self, request, *args, **kwargs):
        services.delete_vendor(kwargs["pk"])
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, pk=None):
        vendor = services.approve_vendor(pk)
        return Response(VendorSerializer(vendor).data)

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        vendor = services.reject_vendor(pk)
        return Response(VendorSerializer(vendor).data)

    @action(detail=True, methods=["post"], url_path="users")
    def users(self, request, pk=None):
        serializer = UserWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = services.create_vendor_user(pk, serializer.validated_data)
        return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)


class AdminUserViewSet(viewsets.ModelViewSet):
    serializer_class = UserSerializer
    permission_classes = [IsAuthenticated, IsAdminRole]

    def get_queryset(self):
        return services.list_users(
            role=self.request.query_params.get("role"),
            vendor_id=self.request.query_params.get("vendor_id"),
        )

    def create(self, request, *args, **kwargs):
        serializer = UserWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = services.create_user(serializer.validated_data)
        return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        serializer = UserWriteSerializer(data=request.data, partial=kwargs.pop("partial", False))
        serializer.is_valid(raise_exception=True)
        user = services.update_user(kwargs["pk"], serializer.validated_data)
        return Response(UserSerializer(user).data)

    def destroy(self, request, *args, **kwargs):
        if str(request.user.id) == str(kwargs["pk"]):
            raise BadRequest("You cannot delete your own account.")
        services.delete_user(kwargs["pk"])
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
@throttle_classes([])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
@throttle_classes([])
def readyz(request):
    """Ready once the database answers and every migration has been applied."""
    request_id = getattr(request, "request_id", None)
    try:
        connection = connections["default"]
        executor = MigrationExecutor(connection)
        pending = executor.migration_plan(executor.loader.graph.leaf_nodes())
    except DatabaseError as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": request_id, "detail": str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    if pending:
        return Response(
            {"status": "migrating", "request_id": request_id, "pending_migrations": len(pending)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return Response({"status": "ready", "request_id": request_id})
