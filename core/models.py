import uuid

from django.contrib.auth.models import AbstractUser
from django.contrib.auth.models import UserManager as DjangoUserManager
from django.db import models
from django.db.models import Q
from django.db.models.functions import Lower


class VendorQuerySet(models.QuerySet):
    def active(self):
        return self.filter(status=Vendor.Status.ACTIVE, is_active=True)

    def pending(self):
        return self.filter(status=Vendor.Status.PENDING_APPROVAL)

    def codes_with_prefix(self, prefix):
        return self.filter(code__startswith=prefix).values_list("code", flat=True)


class Vendor(models.Model):
    class Status(models.TextChoices):
        PENDING_APPROVAL = "PENDING_APPROVAL", "Pending approval"
        ACTIVE = "ACTIVE", "Active"
        REJECTED = "REJECTED", "Rejected"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=32, unique=True, null=True, blank=True)
    contact_person = models.CharField(max_length=255, blank=True, default="")
    contact_email = models.EmailField(blank=True, default="")
    contact_phone = models.CharField(max_length=32, blank=True, default="")
    address = models.TextField(blank=True, default="")
    gst_number = models.CharField(max_length=32, blank=True, default="")
    is_active = models.BooleanField(default=False)
    status = models.CharField(max_length=32, choices=Status, default=Status.PENDING_APPROVAL)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = VendorQuerySet.as_manager()

    class Meta:
        ordering = ["name"]
        constraints = [
            models.CheckConstraint(
                condition=~Q(status="PENDING_APPROVAL") | Q(code__isnull=True),
                name="core_vendor_pending_without_code",
            )
        ]
        indexes = [
            models.Index(fields=["status", "is_active"], name="core_vendor_status_active_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.code})" if self.code else self.name


class UserQuerySet(models.QuerySet):
    def for_vendor(self, vendor_id):
        return self.filter(vendor_id=vendor_id)

    def by_email(self, email):
        return self.filter(email__iexact=(email or "").strip())


class UserManager(DjangoUserManager.from_queryset(UserQuerySet)):
    """Users are identified by email; the username column mirrors it."""

    def create_user(self, email, password=None, **extra_fields):
        username = extra_fields.pop("username", None) or email
        return super().create_user(username, email=email, password=password, **extra_fields)

    def create_superuser(self, email, password=None, **extra_fields):
        username = extra_fields.pop("username", None) or email
        extra_fields.setdefault("role", User.Role.ADMIN)
        return super().create_superuser(username, email=email, password=password, **extra_fields)


class User(AbstractUser):
    class Role(models.TextChoices):
        ADMIN = "ADMIN", "Admin"
        VENDOR = "VENDOR", "Vendor"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, blank=True, default="")
    email = models.EmailField(unique=True)
    vendor = models.ForeignKey(Vendor, on_delete=models.SET_NULL, null=True, blank=True, related_name="users")
    role = models.CharField(max_length=32, choices=Role, default=Role.VENDOR)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = ["username"]

    class Meta(AbstractUser.Meta):
        constraints = [
            models.UniqueConstraint(
                Lower("email"),
                name="core_user_email_ci_unique",
            )
        ]

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.strip().lower()
        if not self.username:
            self.username = self.email
        super().save(*args, **kwargs)

    @property
    def display_name(self):
        return self.name or self.email
