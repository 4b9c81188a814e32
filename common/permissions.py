import logging

from rest_framework.exceptions import NotAuthenticated, PermissionDenied
from rest_framework.permissions import BasePermission

from common.exceptions import BadRequest
from core.models import User

logger = logging.getLogger("security.authorization")

ERP_SERVICE_AUTH = "erp-service"


def get_user_role(user):
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return User.Role.ADMIN
    return getattr(user, "role", None)


def _log_denied(event, user, **fields):
    details = " ".join(f"{key}={value}" for key, value in fields.items())
    logger.warning(
        "%s user=%s role=%s %s",
        event,
        getattr(user, "email", None) or "anonymous",
        get_user_role(user),
        details,
    )


def require_role(user, role):
    """Raise unless `user` is authenticated and acts with `role`."""
    if not user or not user.is_authenticated:
        raise NotAuthenticated("Authentication required")
    if get_user_role(user) != role:
        _log_denied("role_denied", user, required=role)
        if role == User.Role.ADMIN:
            raise PermissionDenied("Admin access required")
        raise PermissionDenied("Vendor access required")


def ensure_purchase_order_access(user, purchase_order):
    """Ownership check shared by every purchase order and line item operation."""
    role = get_user_role(user)
    if role == User.Role.ADMIN:
        return
    if role == User.Role.VENDOR:
        if user.vendor_id is None:
            _log_denied("ownership_denied", user, reason="no_vendor", po=purchase_order.id)
            raise PermissionDenied("Your user account is not associated with a vendor")
        if purchase_order.vendor_id is None:
            raise BadRequest("This purchase order is not associated with a vendor")
        if purchase_order.vendor_id != user.vendor_id:
            _log_denied("ownership_denied", user, reason="vendor_mismatch", po=purchase_order.id)
            raise PermissionDenied("You do not have permission to access this purchase order")
        return
    _log_denied("ownership_denied", user, reason="unknown_role", po=purchase_order.id)
    raise PermissionDenied("You do not have permission to access this purchase order")


class RequireRole(BasePermission):
    role = None

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        if get_user_role(user) == self.role:
            return True
        logger.warning(
            "permission_denied required=%s user=%s role=%s method=%s path=%s view=%s",
            self.role,
            getattr(user, "email", None),
            get_user_role(user),
            request.method,
            request.path,
            view.__class__.__name__,
        )
        return False


class IsAdminRole(RequireRole):
    role = User.Role.ADMIN
    message = "Admin access required"


class IsVendorRole(RequireRole):
    role = User.Role.VENDOR
    message = "Vendor access required"


class IsErpService(BasePermission):
    """Grants access only to requests authenticated with the ERP API key."""

    message = "Invalid ERP API key"

    def has_permission(self, request, view):
        return request.auth == ERP_SERVICE_AUTH
