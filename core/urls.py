from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import AdminUserViewSet, AdminVendorViewSet, LoginView, MeView, VendorSignupView, healthz, readyz

router = DefaultRouter()
router.register(r"admin/vendors", AdminVendorViewSet, basename="admin-vendor")
router.register(r"admin/users", AdminUserViewSet, basename="admin-user")

urlpatterns = router.urls + [
    path("auth/login/", LoginView.as_view(), name="login"),
    path("auth/me/", MeView.as_view(), name="me"),
    path("public/vendor-signup/", VendorSignupView.as_view(), name="vendor_signup"),
    path("healthz/", healthz, name="healthz"),
    path("readyz/", readyz, name="readyz"),
]
