from django.contrib import admin
from django.urls import include, path

from core.views import PortalTokenRefreshView

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/v1/auth/token/refresh/", PortalTokenRefreshView.as_view(), name="token_refresh"),
    path("api/v1/", include("core.urls")),
    path("api/v1/", include("purchasing.urls")),
]
