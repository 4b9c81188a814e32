import logging
import re

from django.conf import settings
from django.db import transaction
from django.contrib.auth.models import update_last_login
from django.db.models import ProtectedError, Q
from rest_framework.exceptions import AuthenticationFailed, NotAuthenticated, NotFound
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken, RefreshToken

from common.exceptions import BadRequest, Conflict, translate_integrity_errors
from common.utils import parse_uuid, require_uuid
from core.models import User, Vendor

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6

VENDOR_PROFILE_FIELDS = ("name", "contact_person", "contact_email", "contact_phone", "address", "gst_number")
USER_FIELDS = ("name", "role", "is_active")


# Authentication


def _stamp_identity(refresh, user):
    refresh["id"] = str(user.id)
    refresh["email"] = user.email
    refresh["role"] = user.role
    refresh["vendor_id"] = str(user.vendor_id) if user.vendor_id else None


def _access_for(refresh, user):
    access = refresh.access_token
    lifetime = settings.ACCESS_TOKEN_LIFETIME_BY_ROLE.get(user.role)
    if lifetime is not None:
        access.set_exp(lifetime=lifetime)
    return access


def build_token_pair(user):
    """Issue a refresh/access pair carrying the portal identity claims."""
    refresh = RefreshToken.for_user(user)
    _stamp_identity(refresh, user)
    return {"refresh": str(refresh), "access": str(_access_for(refresh, user))}


def ensure_can_sign_in(user):
    if not user.is_active:
        raise AuthenticationFailed("Your account is not active. Please contact the administrator.")

    if user.role == User.Role.VENDOR:
        vendor = user.vendor
        if vendor is None or vendor.status != Vendor.Status.ACTIVE:
            raise AuthenticationFailed("Your vendor account is pending approval or has been rejected.")


def login(email, password):
    user = User.objects.select_related("vendor").by_email(email).first()
    if user is None or not password or not user.check_password(password):
        logger.warning("login_failed", extra={"reason": "invalid_credentials"})
        raise AuthenticationFailed("Invalid email or password")

    ensure_can_sign_in(user)
    update_last_login(None, user)
    return {"user": user, **build_token_pair(user)}


def refresh_access_token(raw_refresh):
    """Exchange a refresh token for a new access token.

    The holder is reloaded and must still pass the login gate; claims and the
    access lifetime follow the user's current role and vendor.
    """
    try:
        refresh = RefreshToken(raw_refresh)
    except TokenError as exc:
        raise AuthenticationFailed("Invalid or expired refresh token") from exc

    user_id = parse_uuid(refresh.get("id") or refresh.get("user_id"))
    user = User.objects.select_related("vendor").filter(id=user_id).first() if user_id else None
    if user is None:
        raise AuthenticationFailed("Invalid or expired refresh token")

    try:
        ensure_can_sign_in(user)
    except AuthenticationFailed:
        logger.warning("token_refresh_denied", extra={"user_id": str(user.id), "role": user.role})
        raise

    _stamp_identity(refresh, user)
    return {"access": str(_access_for(refresh, user))}


def identity_from_token(raw_token):
    """Resolve the acting user from a bearer access token."""
    if not raw_token:
        raise NotAuthenticated("No token provided")

    try:
        token = AccessToken(raw_token)
    except TokenError as exc:
        raise AuthenticationFailed("Invalid token") from exc

    user = User.objects.select_related("vendor").filter(id=token.get("id") or token.get("user_id")).first()
    if user is None or not user.is_active:
        raise AuthenticationFailed("Invalid token")
    return user


# Users


def get_user(user_id):
    user = User.objects.select_related("vendor").filter(id=require_uuid(user_id, "User not found")).first()
    if user is None:
        raise NotFound("User not found")
    return user


def list_users(*, role=None, vendor_id=None):
    queryset = User.objects.select_related("vendor").order_by("-created_at")
    if role:
        queryset = queryset.filter(role=role)
    if vendor_id:
        queryset = queryset.for_vendor(parse_uuid(vendor_id))
    return queryset


def _validate_affiliation(role, vendor_id):
    if role == User.Role.VENDOR:
        if not vendor_id:
            raise BadRequest("vendor_id is required for VENDOR role")
        if not Vendor.objects.filter(id=require_uuid(vendor_id, "Vendor not found")).exists():
            raise NotFound("Vendor not found")
    elif role == User.Role.ADMIN:
        if vendor_id:
            raise BadRequest("ADMIN users cannot be associated with a vendor")
    else:
        raise BadRequest(f"Invalid role: {role}")


def create_user(data):
    email = (data.get("email") or "").strip().lower()
    if not email or not data.get("password"):
        raise BadRequest("email and password are required")
    if User.objects.by_email(email).exists():
        raise Conflict("Email already exists")

    role = data.get("role") or User.Role.VENDOR
    vendor_id = data.get("vendor_id")
    _validate_affiliation(role, vendor_id)

    with translate_integrity_errors(), transaction.atomic():
        user = User.objects.create_user(
            email=email,
            password=data["password"],
            name=data.get("name") or "",
            role=role,
            vendor_id=vendor_id or None,
            is_active=data.get("is_active", True),
        )

    logger.info("user_created", extra={"user_id": str(user.id), "vendor_id": str(vendor_id) if vendor_id else None})
    return user


def update_user(user_id, data):
    user = get_user(user_id)

    email = data.get("email")
    if email:
        email = email.strip().lower()
        if email != user.email and User.objects.by_email(email).exclude(id=user.id).exists():
            raise Conflict("Email already exists")

    role = data.get("role", user.role)
    vendor_id = data["vendor_id"] if "vendor_id" in data else user.vendor_id
    _validate_affiliation(role, vendor_id)

    for field in USER_FIELDS:
        if field in data:
            setattr(user, field, data[field])
    if email:
        user.email = email
        user.username = email
    user.vendor_id = vendor_id or None
    if data.get("password"):
        user.set_password(data["password"])

    with translate_integrity_errors(), transaction.atomic():
        user.save()
    return user


def delete_user(user_id):
    user = get_user(user_id)
    user.delete()
    logger.info("user_deleted", extra={"user_id": str(user_id)})


# Vendors


def get_vendor(vendor_id):
    vendor = Vendor.objects.filter(id=require_uuid(vendor_id, "Vendor not found")).first()
    if vendor is None:
        raise NotFound("Vendor not found")
    return vendor


def list_vendors(*, status=None, search=None):
    queryset = Vendor.objects.all()
    if status:
        queryset = queryset.filter(status=status)
    if search:
        queryset = queryset.filter(Q(name__icontains=search) | Q(code__icontains=search))
    return queryset.order_by("name")


def next_vendor_code():
    prefix = f"{settings.VENDOR_CODE_PREFIX}_"
    existing = list(Vendor.objects.codes_with_prefix(prefix))
    serial = max([int(code[len(prefix):]) for code in existing if code[len(prefix):].isdigit()] + [0]) + 1
    return f"{prefix}{serial:05d}"


def create_vendor(data):
    """Create a vendor on behalf of an admin or the ERP; such vendors start out approved."""
    if not data.get("name"):
        raise BadRequest("Vendor name is required")

    code = data.get("code") or None
    if code and Vendor.objects.filter(code=code).exists():
        raise Conflict("Vendor code already exists")

    with translate_integrity_errors(), transaction.atomic():
        vendor = Vendor.objects.create(
            **{field: data[field] for field in VENDOR_PROFILE_FIELDS if data.get(field) is not None},
            code=code or next_vendor_code(),
            status=Vendor.Status.ACTIVE,
            is_active=data.get("is_active", True),
        )

    logger.info("vendor_created", extra={"vendor_id": str(vendor.id)})
    return vendor


def update_vendor(vendor_id, data):
    vendor = get_vendor(vendor_id)

    code = data.get("code")
    if code and code != vendor.code:
        if vendor.status != Vendor.Status.ACTIVE:
            raise BadRequest("Only active vendors can be assigned a code")
        if Vendor.objects.filter(code=code).exclude(id=vendor.id).exists():
            raise Conflict("Vendor code already exists")

    for field in VENDOR_PROFILE_FIELDS:
        if field in data and data[field] is not None:
            setattr(vendor, field, data[field])
    if code:
        vendor.code = code
    if "is_active" in data and vendor.status == Vendor.Status.ACTIVE:
        vendor.is_active = bool(data["is_active"])

    with translate_integrity_errors(), transaction.atomic():
        vendor.save()
    return vendor


def delete_vendor(vendor_id):
    vendor = get_vendor(vendor_id)
    try:
        with transaction.atomic():
            vendor.delete()
    except ProtectedError as exc:
        raise BadRequest("Vendor has purchase orders and cannot be deleted") from exc
    logger.info("vendor_deleted", extra={"vendor_id": str(vendor_id)})


def upsert_vendor_from_erp(data):
    """Update the vendor named by `id`, or create one; returns `(vendor, created)`."""
    if data.get("id"):
        return update_vendor(data["id"], data), False
    return create_vendor(data), True


def create_vendor_user(vendor_id, data):
    vendor = get_vendor(vendor_id)
    return create_user(
        {
            **data,
            "role": User.Role.VENDOR,
            "vendor_id": vendor.id,
            "is_active": vendor.status == Vendor.Status.ACTIVE,
        }
    )


def approve_vendor(vendor_id):
    with translate_integrity_errors(), transaction.atomic():
        vendor = Vendor.objects.select_for_update().filter(id=require_uuid(vendor_id, "Vendor not found")).first()
        if vendor is None:
            raise NotFound("Vendor not found")
        if vendor.status == Vendor.Status.ACTIVE:
            raise Conflict("Vendor is already approved")

        if not vendor.code:
            vendor.code = next_vendor_code()
        vendor.status = Vendor.Status.ACTIVE
        vendor.is_active = True
        vendor.save(update_fields=["code", "status", "is_active", "updated_at"])
        activated = vendor.users.update(is_active=True)

    logger.info("vendor_approved", extra={"vendor_id": str(vendor.id), "vendor_code": vendor.code, "users_activated": activated})
    return vendor


def reject_vendor(vendor_id):
    with transaction.atomic():
        vendor = Vendor.objects.select_for_update().filter(id=require_uuid(vendor_id, "Vendor not found")).first()
        if vendor is None:
            raise NotFound("Vendor not found")

        vendor.status = Vendor.Status.REJECTED
        vendor.is_active = False
        vendor.save(update_fields=["status", "is_active", "updated_at"])
        vendor.users.update(is_active=False)

    logger.info("vendor_rejected", extra={"vendor_id": str(vendor.id)})
    return vendor


def public_signup(
    *,
    vendor_name=None,
    contact_person=None,
    contact_email=None,
    password=None,
    confirm_password=None,
    contact_phone="",
    address="",
    gst_number="",
):
    if not (vendor_name and contact_person and contact_email and password and confirm_password):
        raise BadRequest("All required fields must be provided")
    if password != confirm_password:
        raise BadRequest("Passwords do not match")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise BadRequest("Password must be at least 6 characters long")

    email = contact_email.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise BadRequest("Invalid email format")
    if User.objects.by_email(email).exists():
        raise BadRequest("Email already registered")

    with translate_integrity_errors(), transaction.atomic():
        vendor = Vendor.objects.create(
            name=vendor_name,
            contact_person=contact_person,
            contact_email=email,
            contact_phone=contact_phone or "",
            address=address or "",
            gst_number=gst_number or "",
            status=Vendor.Status.PENDING_APPROVAL,
            is_active=False,
        )
        user = User.objects.create_user(
            email=email,
            password=password,
            name=contact_person,
            role=User.Role.VENDOR,
            vendor=vendor,
            is_active=False,
        )

    logger.info("vendor_signup_received", extra={"vendor_id": str(vendor.id), "user_id": str(user.id)})
    return vendor, user
