from django.urls import path
from rest_framework.routers import DefaultRouter

from purchasing.views import (
    AdminDashboardView,
    AdminHistoryView,
    AdminLineItemViewSet,
    AdminPurchaseOrderViewSet,
    ErpPurchaseOrderView,
    ErpVendorView,
    VendorDashboardView,
    VendorHistoryView,
    VendorLineItemViewSet,
    VendorPurchaseOrderViewSet,
)

router = DefaultRouter()
router.register(r"admin/purchase-orders", AdminPurchaseOrderViewSet, basename="admin-purchase-order")
router.register(r"admin/line-items", AdminLineItemViewSet, basename="admin-line-item")
router.register(r"vendor/purchase-orders", VendorPurchaseOrderViewSet, basename="vendor-purchase-order")
router.register(r"vendor/line-items", VendorLineItemViewSet, basename="vendor-line-item")

urlpatterns = router.urls + [
    path("admin/history/", AdminHistoryView.as_view(), name="admin_history"),
    path("vendor/history/", VendorHistoryView.as_view(), name="vendor_history"),
    path("admin/dashboard/stats/", AdminDashboardView.as_view(), name="admin_dashboard_stats"),
    path("vendor/dashboard/stats/", VendorDashboardView.as_view(), name="vendor_dashboard_stats"),
    path("erp/vendors/", ErpVendorView.as_view(), name="erp_vendor_upsert"),
    path("erp/purchase-orders/", ErpPurchaseOrderView.as_view(), name="erp_purchase_order_create"),
]
