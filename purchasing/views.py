import logging
from datetime import timedelta

from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.pagination import LineItemResultsSetPagination, parse_page_params
from common.permissions import IsAdminRole, IsErpService, IsVendorRole
from common.utils import parse_uuid, to_date
from core import services as core_services
from core.authentication import ErpApiKeyAuthentication
from core.serializers import ErpVendorSerializer, VendorSerializer
from purchasing import history, services
from purchasing.serializers import (
    AcceptPurchaseOrderSerializer,
    ClosureUpdateSerializer,
    ErpPurchaseOrderSerializer,
    ExpectedDateUpdateSerializer,
    HistoryEntrySerializer,
    LineItemListSerializer,
    LineItemSerializer,
    PriorityUpdateSerializer,
    PurchaseOrderListSerializer,
    PurchaseOrderSerializer,
    StatusUpdateSerializer,
)

logger = logging.getLogger(__name__)

DEFAULT_LIST_WINDOW_DAYS = 180
LINE_ITEM_PATH = r"line-items/(?P<line_item_id>[^/.]+)"


def _status_filter(query_params):
    raw = query_params.get("status")
    if not raw:
        return None
    return [value.strip() for value in raw.split(",") if value.strip()]


def _created_after(query_params):
    """Lists default to the last six months unless the caller widens the window."""
    raw = query_params.get("created_after")
    if raw == "all":
        return None
    if raw:
        return to_date(raw, "Invalid created_after date")
    return timezone.localdate() - timedelta(days=DEFAULT_LIST_WINDOW_DAYS)


def _vendor_scope(user):
    if user.vendor_id is None:
        raise PermissionDenied("Your user account is not associated with a vendor")
    return user.vendor_id


class PurchaseOrderReadMixin:
    def get_serializer_class(self):
        if self.action == "list":
            return PurchaseOrderListSerializer
        return PurchaseOrderSerializer

    def _filtered_queryset(self, vendor_id=None):
        params = self.request.query_params
        return services.list_purchase_orders(
            vendor_id=vendor_id,
            statuses=_status_filter(params),
            priority=params.get("priority"),
            po_type=params.get("po_type"),
            created_after=_created_after(params),
            search=params.get("search"),
        )

    def retrieve(self, request, pk=None):
        purchase_order = services.get_purchase_order(pk, request.user)
        return Response(PurchaseOrderSerializer(purchase_order).data)

    @action(detail=True, methods=["get"], url_path="history")
    def po_history(self, request, pk=None):
        entries = history.get_history(pk, request.user)
        return Response(HistoryEntrySerializer(entries, many=True).data)


class AdminPurchaseOrderViewSet(PurchaseOrderReadMixin, viewsets.ReadOnlyModelViewSet):
    permission_classes = [IsAuthenticated, IsAdminRole]

    def get_queryset(self):
        return self._filtered_queryset(vendor_id=parse_uuid(self.request.query_params.get("vendor_id")))

    @action(detail=True, methods=["put"], url_path="priority")
    def update_priority(self, request, pk=None):
        serializer = PriorityUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        purchase_order = services.update_po_priority(
            pk,
            serializer.validated_data["priority"],
            request.user,
            apply_to_line_items=serializer.validated_data["apply_to_line_items"],
        )
        return Response(PurchaseOrderSerializer(purchase_order).data)

    @action(detail=True, methods=["put"], url_path="status")
    def update_status(self, request, pk=None):
        serializer = StatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        purchase_order = services.update_po_status(pk, serializer.validated_data["status"], request.user)
        return Response(PurchaseOrderSerializer(purchase_order).data)

    @action(detail=True, methods=["put"], url_path="closure")
    def update_closure(self, request, pk=None):
        serializer = ClosureUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        purchase_order = services.update_po_closure(pk, serializer.validated_data, request.user)
        return Response(PurchaseOrderSerializer(purchase_order).data)

    @action(detail=True, methods=["put"], url_path=f"{LINE_ITEM_PATH}/priority")
    def line_item_priority(self, request, pk=None, line_item_id=None):
        serializer = PriorityUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        line_item = services.update_line_item_priority(pk, line_item_id, serializer.validated_data["priority"], request.user)
        return Response(LineItemSerializer(line_item).data)


class VendorPurchaseOrderViewSet(PurchaseOrderReadMixin, viewsets.ReadOnlyModelViewSet):
    permission_classes = [IsAuthenticated, IsVendorRole]

    def get_queryset(self):
        return self._filtered_queryset(vendor_id=_vendor_scope(self.request.user))

    @action(detail=True, methods=["post"], url_path="accept")
    def accept(self, request, pk=None):
        serializer = AcceptPurchaseOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        purchase_order = services.accept_purchase_order(
            pk, serializer.validated_data.get("line_items", []), request.user
        )
        return Response(PurchaseOrderSerializer(purchase_order).data)

    @action(detail=True, methods=["put"], url_path=f"{LINE_ITEM_PATH}/expected-delivery-date")
    def line_item_expected_date(self, request, pk=None, line_item_id=None):
        serializer = ExpectedDateUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        line_item = services.update_line_item_expected_date(
            pk, line_item_id, serializer.validated_data["expected_delivery_date"], request.user
        )
        return Response(LineItemSerializer(line_item).data)

    @action(detail=True, methods=["put"], url_path=f"{LINE_ITEM_PATH}/status")
    def line_item_status(self, request, pk=None, line_item_id=None):
        serializer = StatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        line_item = services.update_line_item_status(pk, line_item_id, serializer.validated_data["status"], request.user)
        return Response(LineItemSerializer(line_item).data)


class LineItemReadMixin:
    serializer_class = LineItemListSerializer
    pagination_class = LineItemResultsSetPagination

    def _filtered_queryset(self, vendor_id=None):
        params = self.request.query_params
        return services.list_line_items(
            vendor_id=vendor_id,
            status=params.get("status"),
            priority=params.get("priority"),
            purchase_order_id=parse_uuid(params.get("purchase_order_id")),
            search=params.get("search"),
        )


class AdminLineItemViewSet(LineItemReadMixin, viewsets.ReadOnlyModelViewSet):
    permission_classes = [IsAuthenticated, IsAdminRole]

    def get_queryset(self):
        return self._filtered_queryset(vendor_id=parse_uuid(self.request.query_params.get("vendor_id")))


class VendorLineItemViewSet(LineItemReadMixin, viewsets.ReadOnlyModelViewSet):
    permission_classes = [IsAuthenticated, IsVendorRole]

    def get_queryset(self):
        return self._filtered_queryset(vendor_id=_vendor_scope(self.request.user))


class AdminHistoryView(APIView):
    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request):
        page, limit = parse_page_params(request.query_params)
        result = history.get_all_history(vendor_id=parse_uuid(request.query_params.get("vendor_id")), page=page, limit=limit)
        result["results"] = HistoryEntrySerializer(result["results"], many=True).data
        return Response(result)


class VendorHistoryView(APIView):
    permission_classes = [IsAuthenticated, IsVendorRole]

    def get(self, request):
        page, limit = parse_page_params(request.query_params)
        result = history.get_all_history(vendor_id=_vendor_scope(request.user), page=page, limit=limit)
        result["results"] = HistoryEntrySerializer(result["results"], many=True).data
        return Response(result)


class ErpVendorView(APIView):
    authentication_classes = [ErpApiKeyAuthentication]
    permission_classes = [IsErpService]

    def post(self, request):
        serializer = ErpVendorSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vendor, created = core_services.upsert_vendor_from_erp(serializer.validated_data)
        return Response(
            VendorSerializer(vendor).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class ErpPurchaseOrderView(APIView):
    authentication_classes = [ErpApiKeyAuthentication]
    permission_classes = [IsErpService]

    def post(self, request):
        serializer = ErpPurchaseOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        purchase_order = services.create_purchase_order(
            serializer.validated_data.get("po", {}),
            serializer.validated_data.get("line_items", []),
        )
        logger.info("erp_purchase_order_received", extra={"purchase_order_id": str(purchase_order.id)})
        return Response(PurchaseOrderSerializer(purchase_order).data, status=status.HTTP_201_CREATED)


class AdminDashboardView(APIView):
    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request):
        return Response(services.dashboard_stats(vendor_id=parse_uuid(request.query_params.get("vendor_id"))))


class VendorDashboardView(APIView):
    permission_classes = [IsAuthenticated, IsVendorRole]

    def get(self, request):
        return Response(services.dashboard_stats(vendor_id=_vendor_scope(request.user)))
