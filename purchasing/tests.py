from datetime import date, timedelta

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied
from rest_framework.test import APIClient

from common.exceptions import BadRequest, Conflict
from core.models import Vendor
from purchasing import history, services
from purchasing.models import (
    ImmutableHistoryError,
    LineItem,
    LineItemHistory,
    PurchaseOrder,
    PurchaseOrderHistory,
)

ERP_KEY = "test-erp-key"


class PurchasingTestCase(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.user_model = get_user_model()

        self.vendor_a = Vendor.objects.create(name="Vendor A", code="VEN_00001", status=Vendor.Status.ACTIVE, is_active=True)
        self.vendor_b = Vendor.objects.create(name="Vendor B", code="VEN_00002", status=Vendor.Status.ACTIVE, is_active=True)

        self.admin = self.user_model.objects.create_user(email="admin@portal.example.com", password="secret123", role="ADMIN")
        self.vendor_user_a = self.user_model.objects.create_user(
            email="a@vendor.example.com", password="secret123", role="VENDOR", vendor=self.vendor_a, name="Anil"
        )
        self.vendor_user_b = self.user_model.objects.create_user(
            email="b@vendor.example.com", password="secret123", role="VENDOR", vendor=self.vendor_b
        )

        self.po = self.create_po("PO-1", self.vendor_a)
        self.item_1, self.item_2 = list(self.po.line_items.order_by("line_number"))

    def create_po(self, po_number, vendor, quantities=(10, 20)):
        return services.create_purchase_order(
            {"po_number": po_number, "vendor_id": vendor.id, "priority": "MEDIUM"},
            [
                {"product_code": f"P{index}", "product_name": f"Ring {index}", "quantity": quantity}
                for index, quantity in enumerate(quantities, start=1)
            ],
        )

    def accept_all(self, when=date(2030, 1, 15)):
        return services.accept_purchase_order(
            self.po.id,
            [
                {"line_item_id": self.item_1.id, "expected_delivery_date": when},
                {"line_item_id": self.item_2.id, "expected_delivery_date": when},
            ],
            self.vendor_user_a,
        )

    def po_url(self, scope, suffix=""):
        return f"/api/v1/{scope}/purchase-orders/{self.po.id}/{suffix}"

    def line_item_url(self, scope, line_item, suffix):
        return self.po_url(scope, f"line-items/{line_item.id}/{suffix}/")


class PurchaseOrderCreationTests(PurchasingTestCase):
    def test_created_po_and_items_start_in_created(self):
        self.assertEqual(self.po.status, "CREATED")
        self.assertEqual([item.line_number for item in (self.item_1, self.item_2)], [1, 2])
        self.assertEqual([item.quantity for item in (self.item_1, self.item_2)], [10, 20])
        self.assertTrue(all(item.status == "CREATED" for item in self.po.line_items.all()))
        self.assertFalse(PurchaseOrderHistory.objects.exists())
        self.assertFalse(LineItemHistory.objects.exists())

    def test_duplicate_po_number_is_a_conflict(self):
        with self.assertRaisesMessage(Conflict, "PO number already exists"):
            self.create_po("PO-1", self.vendor_b)
        self.assertEqual(PurchaseOrder.objects.count(), 1)

    def test_line_items_are_required(self):
        with self.assertRaises(BadRequest):
            services.create_purchase_order({"po_number": "PO-EMPTY", "vendor_id": self.vendor_a.id}, [])

    def test_unknown_vendor_is_rejected(self):
        with self.assertRaisesMessage(BadRequest, "A valid vendor_id is required"):
            services.create_purchase_order(
                {"po_number": "PO-X", "vendor_id": "not-a-uuid"},
                [{"product_code": "P1", "product_name": "Ring", "quantity": 1}],
            )

    def test_numeric_po_number_is_stored_as_text(self):
        purchase_order = services.create_purchase_order(
            {"po_number": 4501, "vendor_id": self.vendor_a.id},
            [{"product_code": "P1", "product_name": "Ring", "quantity": 1}],
        )

        self.assertEqual(purchase_order.po_number, "4501")


@override_settings(ERP_API_KEY=ERP_KEY)
class ErpPurchaseOrderTests(PurchasingTestCase):
    def payload(self, po_number="PO-ERP-1"):
        return {
            "po": {"po_number": po_number, "vendor_id": str(self.vendor_b.id), "po_type": "REPEAT"},
            "line_items": [
                {"product_code": "NK-1", "product_name": "Necklace", "quantity": "3", "price": "1500.00"},
                {"product_code": "BR-7", "product_name": "Bracelet", "quantity": "5"},
            ],
        }

    def test_erp_creates_purchase_order(self):
        response = self.client.post(
            "/api/v1/erp/purchase-orders/", self.payload(), format="json", HTTP_X_ERP_API_KEY=ERP_KEY
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["status"], "CREATED")
        self.assertEqual(body["po_type"], "REPEAT")
        self.assertEqual(body["vendor_code"], "VEN_00002")
        self.assertEqual([item["product_code"] for item in body["line_items"]], ["NK-1", "BR-7"])

    def test_erp_duplicate_po_number_is_a_conflict(self):
        response = self.client.post(
            "/api/v1/erp/purchase-orders/", self.payload("PO-1"), format="json", HTTP_X_ERP_API_KEY=ERP_KEY
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "conflict")

    def test_erp_requires_po_and_line_items(self):
        response = self.client.post(
            "/api/v1/erp/purchase-orders/", {"line_items": []}, format="json", HTTP_X_ERP_API_KEY=ERP_KEY
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "PO data and line items are required")

    def test_erp_requires_key(self):
        response = self.client.post("/api/v1/erp/purchase-orders/", self.payload(), format="json")

        self.assertEqual(response.status_code, 401)


class VendorAcceptanceTests(PurchasingTestCase):
    def test_vendor_accepts_po_with_dates(self):
        self.client.force_authenticate(user=self.vendor_user_a)

        response = self.client.post(
            self.po_url("vendor", "accept/"),
            {
                "line_items": [
                    {"line_item_id": str(self.item_1.id), "expected_delivery_date": "2030-01-15"},
                    {"line_item_id": str(self.item_2.id), "expected_delivery_date": "2030-02-01"},
                ]
            },
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ACCEPTED")
        self.assertEqual([item["status"] for item in body["line_items"]], ["ACCEPTED", "ACCEPTED"])
        self.assertEqual(
            [item["expected_delivery_date"] for item in body["line_items"]], ["2030-01-15", "2030-02-01"]
        )

        self.assertEqual(LineItemHistory.objects.filter(action_type="DATE_CHANGE").count(), 2)
        self.assertEqual(LineItemHistory.objects.filter(action_type="VENDOR_ACCEPT").count(), 2)
        po_entry = PurchaseOrderHistory.objects.get()
        self.assertEqual(po_entry.action_type, "VENDOR_ACCEPT")
        self.assertEqual((po_entry.old_value, po_entry.new_value), ("CREATED", "ACCEPTED"))
        self.assertEqual(po_entry.changed_by_id, self.vendor_user_a.id)
        self.assertEqual(po_entry.changed_by_role, "VENDOR")

    def test_accept_requires_every_date_and_writes_nothing(self):
        with self.assertRaisesMessage(BadRequest, "expected_delivery_date is required for every line item"):
            services.accept_purchase_order(
                self.po.id,
                [
                    {"line_item_id": self.item_1.id, "expected_delivery_date": date(2030, 1, 15)},
                    {"line_item_id": self.item_2.id, "expected_delivery_date": None},
                ],
                self.vendor_user_a,
            )

        self.item_1.refresh_from_db()
        self.po.refresh_from_db()
        self.assertEqual(self.item_1.status, "CREATED")
        self.assertIsNone(self.item_1.expected_delivery_date)
        self.assertEqual(self.po.status, "CREATED")
        self.assertFalse(LineItemHistory.objects.exists())

    def test_accept_rejects_repeated_line_item(self):
        with self.assertRaisesMessage(BadRequest, "Each line item may appear only once"):
            services.accept_purchase_order(
                self.po.id,
                [
                    {"line_item_id": self.item_1.id, "expected_delivery_date": date(2030, 1, 15)},
                    {"line_item_id": self.item_1.id, "expected_delivery_date": date(2030, 2, 1)},
                ],
                self.vendor_user_a,
            )

        self.item_1.refresh_from_db()
        self.assertIsNone(self.item_1.expected_delivery_date)
        self.assertFalse(LineItemHistory.objects.exists())

    def test_accept_only_from_created(self):
        self.accept_all()

        with self.assertRaisesMessage(BadRequest, "PO can only be accepted when in CREATED status"):
            self.accept_all(when=date(2031, 1, 1))

        self.item_1.refresh_from_db()
        self.assertEqual(self.item_1.expected_delivery_date, date(2030, 1, 15))

    def test_accept_rejects_foreign_line_item(self):
        other_po = self.create_po("PO-2", self.vendor_a)
        foreign_item = other_po.line_items.first()

        with self.assertRaisesMessage(BadRequest, "Line item does not belong to this PO"):
            services.accept_purchase_order(
                self.po.id,
                [{"line_item_id": foreign_item.id, "expected_delivery_date": date(2030, 1, 15)}],
                self.vendor_user_a,
            )

    def test_other_vendor_cannot_accept(self):
        self.client.force_authenticate(user=self.vendor_user_b)

        response = self.client.post(
            self.po_url("vendor", "accept/"),
            {"line_items": [{"line_item_id": str(self.item_1.id), "expected_delivery_date": "2030-01-15"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["message"], "You do not have permission to access this purchase order")
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "CREATED")


class LineItemLifecycleTests(PurchasingTestCase):
    def setUp(self):
        super().setUp()
        self.accept_all()
        self.client.force_authenticate(user=self.vendor_user_a)

    def put_status(self, line_item, status):
        return self.client.put(self.line_item_url("vendor", line_item, "status"), {"status": status}, format="json")

    def test_po_delivered_only_when_every_item_delivered(self):
        self.assertEqual(self.put_status(self.item_1, "DELIVERED").status_code, 200)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "ACCEPTED")

        response = self.put_status(self.item_2, "PLANNED")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.put_status(self.item_2, "DELIVERED").status_code, 200)

        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "DELIVERED")
        rollup = PurchaseOrderHistory.objects.get(action_type="STATUS_CHANGE")
        self.assertEqual((rollup.old_value, rollup.new_value), ("ACCEPTED", "DELIVERED"))

    def test_line_item_status_cannot_regress(self):
        self.put_status(self.item_1, "PLANNED")

        response = self.put_status(self.item_1, "ACCEPTED")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Cannot move line item to a previous status")
        self.item_1.refresh_from_db()
        self.assertEqual(self.item_1.status, "PLANNED")

    def test_line_item_must_belong_to_po(self):
        other_po = self.create_po("PO-2", self.vendor_a)
        foreign_item = other_po.line_items.first()

        response = self.put_status(foreign_item, "PLANNED")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Line item does not belong to this PO")

    def test_expected_date_locked_after_delivery(self):
        moved = self.client.put(
            self.line_item_url("vendor", self.item_1, "expected-delivery-date"),
            {"expected_delivery_date": "2030-03-01"},
            format="json",
        )
        self.assertEqual(moved.status_code, 200)
        self.assertEqual(moved.json()["expected_delivery_date"], "2030-03-01")

        self.put_status(self.item_1, "DELIVERED")
        response = self.client.put(
            self.line_item_url("vendor", self.item_1, "expected-delivery-date"),
            {"expected_delivery_date": "2030-04-01"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Cannot update expected date for delivered line item")

    def test_other_vendor_cannot_touch_line_item(self):
        with self.assertRaises(PermissionDenied):
            services.update_line_item_status(self.po.id, self.item_1.id, "PLANNED", self.vendor_user_b)


class AdminPurchaseOrderTests(PurchasingTestCase):
    def setUp(self):
        super().setUp()
        self.client.force_authenticate(user=self.admin)

    def test_priority_cascades_to_open_line_items(self):
        response = self.client.put(
            self.po_url("admin", "priority/"), {"priority": "URGENT", "apply_to_line_items": True}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["priority"], "URGENT")
        self.assertEqual({item["line_priority"] for item in response.json()["line_items"]}, {"URGENT"})
        self.assertEqual(PurchaseOrderHistory.objects.filter(action_type="PRIORITY_CHANGE").count(), 1)
        self.assertEqual(LineItemHistory.objects.filter(action_type="PRIORITY_CHANGE").count(), 2)

    def test_priority_locked_on_delivered_po(self):
        services.update_po_status(self.po.id, "DELIVERED", self.admin)

        response = self.client.put(self.po_url("admin", "priority/"), {"priority": "HIGH"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Cannot update priority of delivered PO")

    def test_line_item_priority(self):
        response = self.client.put(
            self.line_item_url("admin", self.item_2, "priority"), {"priority": "LOW"}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["line_priority"], "LOW")
        entry = LineItemHistory.objects.get()
        self.assertEqual((entry.old_value, entry.new_value), ("MEDIUM", "LOW"))

    def test_line_item_priority_locked_after_delivery(self):
        services.update_line_item_status(self.po.id, self.item_1.id, "DELIVERED", self.admin)
        recorded = LineItemHistory.objects.count()

        response = self.client.put(
            self.line_item_url("admin", self.item_1, "priority"), {"priority": "URGENT"}, format="json"
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Cannot update priority for delivered line item")
        self.assertEqual(LineItemHistory.objects.count(), recorded)
        self.assertFalse(LineItemHistory.objects.filter(action_type="PRIORITY_CHANGE").exists())
        self.item_1.refresh_from_db()
        self.assertEqual(self.item_1.line_priority, "MEDIUM")

    def test_vendor_cannot_change_priority(self):
        with self.assertRaises(PermissionDenied):
            services.update_po_priority(self.po.id, "HIGH", self.vendor_user_a)

    def test_status_override_allows_regression_and_is_recorded(self):
        services.update_po_status(self.po.id, "DELIVERED", self.admin)

        with self.assertLogs("purchasing.services", level="WARNING") as cm:
            response = self.client.put(self.po_url("admin", "status/"), {"status": "CREATED"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "CREATED")
        self.assertTrue(any("purchase_order_status_regressed" in message for message in cm.output))
        overrides = PurchaseOrderHistory.objects.filter(action_type="STATUS_OVERRIDE").order_by("created_at")
        self.assertEqual(
            [(entry.old_value, entry.new_value) for entry in overrides],
            [("CREATED", "DELIVERED"), ("DELIVERED", "CREATED")],
        )

    def test_closure_records_one_entry_per_changed_field(self):
        payload = {"closure_status": "PARTIALLY_CLOSED", "closed_amount": "1250.50"}

        first = self.client.put(self.po_url("admin", "closure/"), payload, format="json")
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()["closure_status"], "PARTIALLY_CLOSED")
        self.assertEqual(first.json()["closed_amount"], "1250.50")
        entries = PurchaseOrderHistory.objects.filter(action_type="CLOSURE_CHANGE")
        self.assertEqual(entries.count(), 2)
        amount = entries.get(field_name="closed_amount")
        self.assertEqual((amount.old_value, amount.new_value), ("0.00", "1250.50"))

        repeat = self.client.put(self.po_url("admin", "closure/"), payload, format="json")
        self.assertEqual(repeat.status_code, 200)
        self.assertEqual(entries.count(), 2)

    def test_closed_amount_cannot_be_negative(self):
        response = self.client.put(self.po_url("admin", "closure/"), {"closed_amount": "-1"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Closed amount cannot be negative")

    def test_admin_lists_all_vendors_purchase_orders(self):
        self.create_po("PO-B", self.vendor_b)

        response = self.client.get("/api/v1/admin/purchase-orders/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual({row["po_number"] for row in response.json()["results"]}, {"PO-1", "PO-B"})
        self.assertEqual(response.json()["results"][0]["line_item_count"], 2)

        filtered = self.client.get("/api/v1/admin/purchase-orders/", {"vendor_id": str(self.vendor_b.id)})
        self.assertEqual([row["po_number"] for row in filtered.json()["results"]], ["PO-B"])

    def test_vendor_with_purchase_orders_cannot_be_deleted(self):
        response = self.client.delete(f"/api/v1/admin/vendors/{self.vendor_a.id}/")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Vendor has purchase orders and cannot be deleted")


class VendorScopeTests(PurchasingTestCase):
    def test_vendor_sees_only_own_purchase_orders(self):
        self.create_po("PO-B", self.vendor_b)
        self.client.force_authenticate(user=self.vendor_user_a)

        response = self.client.get("/api/v1/vendor/purchase-orders/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["po_number"] for row in response.json()["results"]], ["PO-1"])

    def test_old_purchase_orders_hidden_by_default(self):
        PurchaseOrder.objects.filter(id=self.po.id).update(created_at=timezone.now() - timedelta(days=365))
        self.client.force_authenticate(user=self.vendor_user_a)

        default = self.client.get("/api/v1/vendor/purchase-orders/")
        widened = self.client.get("/api/v1/vendor/purchase-orders/", {"created_after": "all"})

        self.assertEqual(default.json()["count"], 0)
        self.assertEqual(widened.json()["count"], 1)

    def test_other_vendor_cannot_read_po(self):
        self.client.force_authenticate(user=self.vendor_user_b)

        detail = self.client.get(self.po_url("vendor"))
        trail = self.client.get(self.po_url("vendor", "history/"))

        self.assertEqual(detail.status_code, 403)
        self.assertEqual(trail.status_code, 403)

    def test_malformed_created_after_is_rejected(self):
        self.client.force_authenticate(user=self.admin)

        for value in ("2024-02-30", "last-week"):
            with self.subTest(created_after=value):
                response = self.client.get("/api/v1/admin/purchase-orders/", {"created_after": value})

                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["message"], "Invalid created_after date")

    def test_vendor_user_without_vendor_is_forbidden(self):
        orphan = self.user_model.objects.create_user(email="orphan@vendor.example.com", password="secret123", role="VENDOR")
        self.client.force_authenticate(user=orphan)

        response = self.client.get("/api/v1/vendor/purchase-orders/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["message"], "Your user account is not associated with a vendor")

    def test_delayed_line_items(self):
        other_po = self.create_po("PO-B", self.vendor_b)
        yesterday = timezone.localdate() - timedelta(days=1)
        LineItem.objects.filter(id=self.item_1.id).update(expected_delivery_date=yesterday)
        LineItem.objects.filter(id=self.item_2.id).update(expected_delivery_date=yesterday, status="DELIVERED")
        other_po.line_items.update(expected_delivery_date=yesterday)
        self.client.force_authenticate(user=self.vendor_user_a)

        response = self.client.get("/api/v1/vendor/line-items/", {"status": "DELAYED"})

        self.assertEqual(response.status_code, 200)
        rows = response.json()["results"]
        self.assertEqual([row["id"] for row in rows], [str(self.item_1.id)])
        self.assertTrue(rows[0]["is_delayed"])
        self.assertEqual(rows[0]["po_number"], "PO-1")


class DashboardTests(PurchasingTestCase):
    def setUp(self):
        super().setUp()
        today = timezone.localdate()
        LineItem.objects.filter(id=self.item_1.id).update(expected_delivery_date=today - timedelta(days=2))
        LineItem.objects.filter(id=self.item_2.id).update(expected_delivery_date=today)

        self.delivered_po = self.create_po("PO-B", self.vendor_b)
        self.delivered_po.line_items.update(expected_delivery_date=today + timedelta(days=5))
        for line_item in self.delivered_po.line_items.all():
            services.update_line_item_status(self.delivered_po.id, line_item.id, "DELIVERED", self.admin)

    def test_admin_stats_cover_every_vendor(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/dashboard/stats/")

        self.assertEqual(response.status_code, 200)
        stats = response.json()
        self.assertEqual(stats["delayed_po_count"], 1)
        self.assertEqual(stats["delayed_line_item_count"], 1)
        self.assertEqual(stats["delivering_today_po_count"], 1)
        self.assertEqual(stats["delivering_today_line_item_count"], 1)
        self.assertEqual(stats["delivered_po_counts"], {"this_week": 1, "this_month": 1, "this_year": 1})
        self.assertEqual(stats["delivered_line_item_counts"], {"this_week": 2, "this_month": 2, "this_year": 2})
        self.assertEqual(stats["on_time_line_item_count_this_month"], 2)
        self.assertEqual(stats["delayed_line_item_count_this_month"], 0)
        self.assertEqual(stats["open_pos_by_priority"], {"LOW": 0, "MEDIUM": 1, "HIGH": 0, "URGENT": 0})

    def test_vendor_stats_are_scoped_to_own_vendor(self):
        self.client.force_authenticate(user=self.vendor_user_b)

        response = self.client.get("/api/v1/vendor/dashboard/stats/")

        self.assertEqual(response.status_code, 200)
        stats = response.json()
        self.assertEqual(stats["delayed_line_item_count"], 0)
        self.assertEqual(stats["delivered_line_item_counts"]["this_week"], 2)
        self.assertEqual(stats["open_pos_by_priority"], {"LOW": 0, "MEDIUM": 0, "HIGH": 0, "URGENT": 0})

    def test_late_delivery_counts_as_delayed(self):
        LineItem.objects.filter(id=self.item_1.id).update(status="DELIVERED")

        stats = services.dashboard_stats(vendor_id=self.vendor_a.id)

        self.assertEqual(stats["delayed_line_item_count"], 0)
        self.assertEqual(stats["delayed_line_item_count_this_month"], 1)
        self.assertEqual(stats["on_time_line_item_count_this_month"], 0)
        self.assertEqual(stats["delivering_today_line_item_count"], 1)

    def test_dashboards_follow_roles(self):
        self.client.force_authenticate(user=self.vendor_user_a)
        self.assertEqual(self.client.get("/api/v1/admin/dashboard/stats/").status_code, 403)

        self.client.force_authenticate(user=self.admin)
        self.assertEqual(self.client.get("/api/v1/vendor/dashboard/stats/").status_code, 403)


class HistoryTests(PurchasingTestCase):
    def test_po_history_merges_levels_newest_first(self):
        self.accept_all()
        self.client.force_authenticate(user=self.vendor_user_a)

        response = self.client.get(self.po_url("vendor", "history/"))

        self.assertEqual(response.status_code, 200)
        rows = response.json()
        self.assertEqual(len(rows), 5)
        self.assertEqual({row["level"] for row in rows}, {"PO", "LINE_ITEM"})
        timestamps = [row["created_at"] for row in rows]
        self.assertEqual(timestamps, sorted(timestamps, reverse=True))
        line_rows = [row for row in rows if row["level"] == "LINE_ITEM"]
        self.assertEqual({row["line_item_reference"] for row in line_rows}, {"P1 - Ring 1", "P2 - Ring 2"})
        self.assertTrue(all(row["changed_by_name"] == "Anil" for row in rows))

    def test_deleted_line_item_reads_as_unknown(self):
        self.accept_all()
        LineItem.objects.get(id=self.item_2.id).delete()

        rows = history.get_history(self.po.id, self.admin)

        orphaned = [row for row in rows if row["line_item_id"] == self.item_2.id]
        self.assertEqual(len(orphaned), 2)
        self.assertTrue(all(row["line_item_reference"] == "Unknown Item" for row in orphaned))

    def test_unchanged_value_is_not_recorded(self):
        self.assertIsNone(
            history.record_po_change(self.po, "PRIORITY_CHANGE", "priority", "MEDIUM", "MEDIUM", self.admin)
        )
        self.assertFalse(PurchaseOrderHistory.objects.exists())

    def test_entries_are_immutable(self):
        entry = history.record_po_change(self.po, "PRIORITY_CHANGE", "priority", "MEDIUM", "HIGH", self.admin)

        entry.new_value = "LOW"
        with self.assertRaises(ImmutableHistoryError):
            entry.save()
        with self.assertRaises(ImmutableHistoryError):
            entry.delete()

    def test_all_history_pages_across_both_tables(self):
        base = timezone.now() - timedelta(hours=1)
        for minutes, (model, kwargs) in enumerate(
            [
                (PurchaseOrderHistory, {}),
                (LineItemHistory, {"line_item": self.item_1}),
                (PurchaseOrderHistory, {}),
                (LineItemHistory, {"line_item": self.item_2}),
                (LineItemHistory, {"line_item": self.item_1}),
            ]
        ):
            model.objects.create(
                entity_id=kwargs["line_item"].id if kwargs else self.po.id,
                purchase_order=self.po,
                action_type="PRIORITY_CHANGE",
                field_name="priority",
                old_value="MEDIUM",
                new_value=str(minutes),
                created_at=base + timedelta(minutes=minutes),
                **kwargs,
            )

        first = history.get_all_history(page=1, limit=2)
        second = history.get_all_history(page=2, limit=2)
        third = history.get_all_history(page=3, limit=2)

        self.assertEqual(first["count"], 5)
        self.assertEqual([row["new_value"] for row in first["results"]], ["4", "3"])
        self.assertEqual([row["new_value"] for row in second["results"]], ["2", "1"])
        self.assertEqual([row["new_value"] for row in third["results"]], ["0"])
        self.assertEqual(history.get_all_history(vendor_id=self.vendor_b.id)["count"], 0)

    def test_admin_history_endpoint(self):
        self.accept_all()
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/history/", {"limit": 2})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["count"], 5)
        self.assertEqual(body["limit"], 2)
        self.assertEqual(len(body["results"]), 2)

    def test_vendor_history_is_scoped(self):
        self.accept_all()
        self.client.force_authenticate(user=self.vendor_user_b)

        response = self.client.get("/api/v1/vendor/history/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 0)
