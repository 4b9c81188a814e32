import hmac
import logging

from django.conf import settings
from django.contrib.auth.models import AnonymousUser
from rest_framework.authentication import BaseAuthentication
from rest_framework.exceptions import AuthenticationFailed

from common.permissions import ERP_SERVICE_AUTH

logger = logging.getLogger("security.authorization")

ERP_API_KEY_HEADER = "X-ERP-API-Key"


class ErpApiKeyAuthentication(BaseAuthentication):
    """Authenticate machine-to-machine ERP calls by a shared API key header.

    Returns ``None`` when the header is absent so the permission layer answers
    401; a present but wrong key fails immediately.
    """

    def authenticate(self, request):
        provided = request.headers.get(ERP_API_KEY_HEADER)
        if provided is None:
            return None

        expected = getattr(settings, "ERP_API_KEY", "") or ""
        if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
            logger.warning(
                "erp_api_key_rejected method=%s path=%s remote_addr=%s",
                request.method,
                request.path,
                request.META.get("REMOTE_ADDR"),
            )
            raise AuthenticationFailed("Invalid ERP API key")

        return AnonymousUser(), ERP_SERVICE_AUTH

    def authenticate_header(self, request):
        return ERP_API_KEY_HEADER
