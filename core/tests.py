import time

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase, override_settings
from rest_framework.exceptions import AuthenticationFailed, NotAuthenticated, PermissionDenied
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from common.permissions import require_role
from core import services
from core.models import Vendor

SIGNUP_URL = "/api/v1/public/vendor-signup/"
LOGIN_URL = "/api/v1/auth/login/"
REFRESH_URL = "/api/v1/auth/token/refresh/"
ERP_KEY = "test-erp-key"


def signup_payload(**overrides):
    payload = {
        "vendor_name": "Acme Jewels",
        "contact_person": "Asha Rao",
        "contact_email": "asha@acme.example.com",
        "contact_phone": "+91 98450 00000",
        "password": "secret123",
        "confirm_password": "secret123",
    }
    payload.update(overrides)
    return payload


class VendorOnboardingTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(
            email="admin@portal.example.com",
            password="admin-pass-1",
            role="ADMIN",
        )

    def _signup(self, **overrides):
        return self.client.post(SIGNUP_URL, signup_payload(**overrides), format="json")

    def test_signup_creates_pending_vendor_and_inactive_user(self):
        response = self._signup()

        self.assertEqual(response.status_code, 201)
        vendor = Vendor.objects.get(id=response.json()["vendor_id"])
        self.assertEqual(vendor.status, Vendor.Status.PENDING_APPROVAL)
        self.assertIsNone(vendor.code)
        self.assertFalse(vendor.is_active)

        user = self.user_model.objects.get(email="asha@acme.example.com")
        self.assertEqual(user.role, "VENDOR")
        self.assertEqual(user.vendor_id, vendor.id)
        self.assertFalse(user.is_active)

    def test_signup_validation_messages(self):
        cases = [
            ({"vendor_name": ""}, "All required fields must be provided"),
            ({"confirm_password": "different"}, "Passwords do not match"),
            ({"password": "abc", "confirm_password": "abc"}, "Password must be at least 6 characters long"),
            ({"contact_email": "not-an-email"}, "Invalid email format"),
        ]
        for overrides, message in cases:
            with self.subTest(message=message):
                response = self._signup(**overrides)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["code"], "bad_request")
                self.assertEqual(response.json()["message"], message)

        self.assertFalse(Vendor.objects.exists())

    def test_signup_rejects_registered_email_case_insensitively(self):
        self.assertEqual(self._signup().status_code, 201)

        response = self._signup(vendor_name="Other", contact_email="ASHA@acme.example.com")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Email already registered")
        self.assertEqual(Vendor.objects.count(), 1)

    def test_pending_vendor_cannot_login_until_approved(self):
        vendor_id = self._signup().json()["vendor_id"]
        credentials = {"email": "asha@acme.example.com", "password": "secret123"}

        blocked = self.client.post(LOGIN_URL, credentials, format="json")
        self.assertEqual(blocked.status_code, 401)
        self.assertEqual(blocked.json()["message"], "Your account is not active. Please contact the administrator.")

        self.client.force_authenticate(user=self.admin)
        approved = self.client.post(f"/api/v1/admin/vendors/{vendor_id}/approve/")
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["code"], "VEN_00001")
        self.assertEqual(approved.json()["status"], "ACTIVE")
        self.client.force_authenticate(user=None)

        response = self.client.post(LOGIN_URL, credentials, format="json")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["user"]["role"], "VENDOR")
        token = AccessToken(payload["access"])
        self.assertEqual(token["role"], "VENDOR")
        self.assertEqual(token["email"], "asha@acme.example.com")
        self.assertEqual(token["vendor_id"], vendor_id)
        self.assertGreater(token["exp"] - int(time.time()), 24 * 3600)

    def test_active_user_of_rejected_vendor_cannot_login(self):
        vendor = Vendor.objects.create(name="Rejected Co", status=Vendor.Status.REJECTED)
        self.user_model.objects.create_user(
            email="rejected@vendor.example.com",
            password="secret123",
            role="VENDOR",
            vendor=vendor,
        )

        response = self.client.post(
            LOGIN_URL, {"email": "rejected@vendor.example.com", "password": "secret123"}, format="json"
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["message"], "Your vendor account is pending approval or has been rejected.")

    def test_login_rejects_wrong_password(self):
        response = self.client.post(
            LOGIN_URL, {"email": "admin@portal.example.com", "password": "wrong"}, format="json"
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_failed")
        self.assertEqual(response.json()["message"], "Invalid email or password")

    def test_admin_login_issues_admin_claims(self):
        response = self.client.post(
            LOGIN_URL, {"email": "ADMIN@portal.example.com", "password": "admin-pass-1"}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        token = AccessToken(response.json()["access"])
        self.assertEqual(token["role"], "ADMIN")
        self.assertIsNone(token["vendor_id"])
        self.assertEqual(token["id"], str(self.admin.id))
        self.assertLessEqual(token["exp"] - int(time.time()), 24 * 3600)

    def test_refreshed_vendor_token_keeps_vendor_lifetime(self):
        vendor, _ = services.public_signup(**signup_payload())
        services.approve_vendor(vendor.id)
        login = self.client.post(
            LOGIN_URL, {"email": "asha@acme.example.com", "password": "secret123"}, format="json"
        ).json()

        response = self.client.post(REFRESH_URL, {"refresh": login["refresh"]}, format="json")

        self.assertEqual(response.status_code, 200)
        token = AccessToken(response.json()["access"])
        self.assertAlmostEqual(token["exp"] - int(time.time()), 168 * 3600, delta=5)
        self.assertEqual(token["role"], "VENDOR")
        self.assertEqual(token["vendor_id"], str(vendor.id))

    def test_refresh_is_refused_once_vendor_is_rejected(self):
        vendor, user = services.public_signup(**signup_payload())
        services.approve_vendor(vendor.id)
        refresh = services.login("asha@acme.example.com", "secret123")["refresh"]
        services.reject_vendor(vendor.id)
        services.update_user(user.id, {"is_active": True})

        response = self.client.post(REFRESH_URL, {"refresh": refresh}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["message"], "Your vendor account is pending approval or has been rejected.")

    def test_refresh_rejects_garbage_token(self):
        response = self.client.post(REFRESH_URL, {"refresh": "not-a-token"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["message"], "Invalid or expired refresh token")

    def test_approving_twice_is_a_conflict(self):
        vendor_id = self._signup().json()["vendor_id"]
        self.client.force_authenticate(user=self.admin)

        self.assertEqual(self.client.post(f"/api/v1/admin/vendors/{vendor_id}/approve/").status_code, 200)
        response = self.client.post(f"/api/v1/admin/vendors/{vendor_id}/approve/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "conflict")
        self.assertEqual(response.json()["message"], "Vendor is already approved")

    def test_vendor_codes_are_sequential(self):
        first, _ = services.public_signup(**signup_payload())
        second, _ = services.public_signup(**signup_payload(vendor_name="Beta", contact_email="b@beta.example.com"))

        self.assertEqual(services.approve_vendor(first.id).code, "VEN_00001")
        self.assertEqual(services.approve_vendor(second.id).code, "VEN_00002")

    def test_reapproving_rejected_vendor_keeps_code(self):
        vendor, user = services.public_signup(**signup_payload())
        services.approve_vendor(vendor.id)
        services.reject_vendor(vendor.id)
        user.refresh_from_db()
        self.assertFalse(user.is_active)

        vendor = services.approve_vendor(vendor.id)

        self.assertEqual(vendor.code, "VEN_00001")
        user.refresh_from_db()
        self.assertTrue(user.is_active)

    def test_approve_unknown_vendor_is_not_found(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/v1/admin/vendors/not-a-uuid/approve/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")


class RoleGuardTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.vendor = Vendor.objects.create(name="Guarded", code="VEN_00009", status=Vendor.Status.ACTIVE, is_active=True)
        self.vendor_user = self.user_model.objects.create_user(
            email="vendor@guarded.example.com",
            password="secret123",
            role="VENDOR",
            vendor=self.vendor,
        )
        self.admin = self.user_model.objects.create_user(
            email="root@portal.example.com",
            password="secret123",
            role="ADMIN",
        )

    def test_vendor_cannot_use_admin_endpoints_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.vendor_user)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.get("/api/v1/admin/vendors/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["message"], "Admin access required")
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_admin_cannot_use_vendor_endpoints(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/vendor/purchase-orders/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["message"], "Vendor access required")

    def test_anonymous_request_is_unauthenticated(self):
        response = self.client.get("/api/v1/admin/vendors/")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")

    def test_superuser_acts_as_admin(self):
        superuser = self.user_model.objects.create_superuser(email="super@portal.example.com", password="secret123")
        self.client.force_authenticate(user=superuser)

        response = self.client.get("/api/v1/admin/vendors/")

        self.assertEqual(response.status_code, 200)

    def test_require_role(self):
        require_role(self.admin, "ADMIN")
        with self.assertRaises(PermissionDenied):
            require_role(self.vendor_user, "ADMIN")
        with self.assertRaises(NotAuthenticated):
            require_role(None, "VENDOR")

    def test_identity_from_token(self):
        tokens = services.build_token_pair(self.vendor_user)

        self.assertEqual(services.identity_from_token(tokens["access"]), self.vendor_user)
        with self.assertRaises(NotAuthenticated):
            services.identity_from_token("")
        with self.assertRaises(AuthenticationFailed):
            services.identity_from_token("garbage.token.value")

    def test_bearer_token_authenticates_api_requests(self):
        tokens = services.build_token_pair(self.vendor_user)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")

        response = self.client.get("/api/v1/auth/me/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["email"], "vendor@guarded.example.com")
        self.assertEqual(response.json()["vendor_name"], "Guarded")

    def test_request_id_is_echoed_and_logged(self):
        self.client.force_authenticate(user=self.admin)
        with self.assertLogs("api.request", level="INFO") as cm:
            response = self.client.get("/api/v1/admin/vendors/", HTTP_X_REQUEST_ID="req-42")

        self.assertEqual(response["X-Request-ID"], "req-42")
        record = cm.records[-1]
        self.assertEqual(record.request_id, "req-42")
        self.assertEqual(record.status_code, 200)
        self.assertEqual(record.role, "ADMIN")


@override_settings(ERP_API_KEY=ERP_KEY)
class ErpVendorSyncTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()

    def test_missing_key_is_unauthenticated(self):
        response = self.client.post("/api/v1/erp/vendors/", {"name": "ERP Vendor"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")

    def test_wrong_key_is_rejected_and_logged(self):
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post(
                "/api/v1/erp/vendors/", {"name": "ERP Vendor"}, format="json", HTTP_X_ERP_API_KEY="nope"
            )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["message"], "Invalid ERP API key")
        self.assertTrue(any("erp_api_key_rejected" in message for message in cm.output))
        self.assertFalse(Vendor.objects.exists())

    def test_upsert_creates_then_updates(self):
        created = self.client.post(
            "/api/v1/erp/vendors/", {"name": "ERP Vendor"}, format="json", HTTP_X_ERP_API_KEY=ERP_KEY
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["status"], "ACTIVE")
        self.assertEqual(created.json()["code"], "VEN_00001")

        updated = self.client.post(
            "/api/v1/erp/vendors/",
            {"id": created.json()["id"], "contact_person": "Ravi"},
            format="json",
            HTTP_X_ERP_API_KEY=ERP_KEY,
        )

        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.json()["contact_person"], "Ravi")
        self.assertEqual(Vendor.objects.count(), 1)


class AdminVendorAndUserTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(
            email="ops@portal.example.com",
            password="secret123",
            role="ADMIN",
        )
        self.client.force_authenticate(user=self.admin)

    def test_admin_created_vendor_is_active_with_code(self):
        response = self.client.post("/api/v1/admin/vendors/", {"name": "Direct Vendor"}, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["status"], "ACTIVE")
        self.assertEqual(response.json()["code"], "VEN_00001")

    def test_duplicate_vendor_code_is_a_conflict(self):
        Vendor.objects.create(name="Taken", code="SUP_1", status=Vendor.Status.ACTIVE)

        response = self.client.post("/api/v1/admin/vendors/", {"name": "Again", "code": "SUP_1"}, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["message"], "Vendor code already exists")

    def test_rejected_vendor_cannot_be_given_a_code(self):
        rejected = Vendor.objects.create(name="Rejected Co", status=Vendor.Status.REJECTED)

        response = self.client.patch(f"/api/v1/admin/vendors/{rejected.id}/", {"code": "VEN_00042"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Only active vendors can be assigned a code")
        rejected.refresh_from_db()
        self.assertIsNone(rejected.code)

    def test_vendor_list_filters_by_status(self):
        Vendor.objects.create(name="Pending Co")
        Vendor.objects.create(name="Live Co", code="VEN_00005", status=Vendor.Status.ACTIVE, is_active=True)

        response = self.client.get("/api/v1/admin/vendors/", {"status": "PENDING_APPROVAL"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "limit", "next", "page", "previous", "results"])
        self.assertEqual([row["name"] for row in payload["results"]], ["Pending Co"])

    def test_vendor_user_inherits_vendor_activation(self):
        pending = Vendor.objects.create(name="Pending Co")

        response = self.client.post(
            f"/api/v1/admin/vendors/{pending.id}/users/",
            {"email": "staff@pending.example.com", "password": "secret123", "name": "Staff"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["role"], "VENDOR")
        self.assertFalse(response.json()["is_active"])

    def test_user_email_is_unique_case_insensitively(self):
        response = self.client.post(
            "/api/v1/admin/users/",
            {"email": "OPS@portal.example.com", "password": "secret123", "role": "ADMIN"},
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["message"], "Email already exists")

    def test_vendor_role_requires_vendor(self):
        response = self.client.post(
            "/api/v1/admin/users/",
            {"email": "lonely@vendor.example.com", "password": "secret123", "role": "VENDOR"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "vendor_id is required for VENDOR role")

    def test_admin_user_cannot_belong_to_vendor(self):
        vendor = Vendor.objects.create(name="Any", code="VEN_00003", status=Vendor.Status.ACTIVE)

        response = self.client.post(
            "/api/v1/admin/users/",
            {"email": "mixed@portal.example.com", "password": "secret123", "role": "ADMIN", "vendor_id": str(vendor.id)},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "ADMIN users cannot be associated with a vendor")

    def test_admin_cannot_delete_own_account(self):
        response = self.client.delete(f"/api/v1/admin/users/{self.admin.id}/")

        self.assertEqual(response.status_code, 400)
        self.assertTrue(self.user_model.objects.filter(id=self.admin.id).exists())

    def test_user_update_changes_password(self):
        vendor = Vendor.objects.create(name="Upd", code="VEN_00004", status=Vendor.Status.ACTIVE)
        user = self.user_model.objects.create_user(
            email="upd@vendor.example.com", password="secret123", role="VENDOR", vendor=vendor
        )

        response = self.client.patch(
            f"/api/v1/admin/users/{user.id}/", {"password": "changed-pass", "name": "Renamed"}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        user.refresh_from_db()
        self.assertEqual(user.name, "Renamed")
        self.assertTrue(user.check_password("changed-pass"))


class HealthCheckTests(TestCase):
    def test_health_checks_are_public(self):
        client = APIClient()

        health = client.get("/api/v1/healthz/")
        ready = client.get("/api/v1/readyz/")

        self.assertEqual(health.status_code, 200)
        self.assertEqual(health.json()["status"], "ok")
        self.assertEqual(ready.status_code, 200)
        self.assertEqual(ready.json()["status"], "ready")
