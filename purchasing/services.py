import logging
from datetime import timedelta

from django.db import transaction
from django.db.models import Count, F, Q
from django.db.models.functions import TruncDate
from django.utils import timezone
from rest_framework.exceptions import NotFound

from common.exceptions import BadRequest, Conflict, translate_integrity_errors
from common.permissions import ensure_purchase_order_access, require_role
from common.utils import parse_uuid, require_uuid, to_date, to_money
from core.models import User, Vendor
from purchasing.history import record_line_item_change, record_po_change
from purchasing.lifecycle import all_delivered, is_regression, is_terminal, is_valid_status, status_index
from purchasing.models import HistoryActionType, LifecycleStatus, LineItem, Priority, PurchaseOrder

logger = logging.getLogger(__name__)

PO_NOT_FOUND = "Purchase order not found"
LINE_ITEM_NOT_FOUND = "Line item not found"
DELAYED = "DELAYED"

PURCHASE_ORDER_FIELDS = ("po_date", "priority", "po_type", "erp_reference_id")
LINE_ITEM_FIELDS = (
    "product_code",
    "product_name",
    "quantity",
    "gst_percent",
    "price",
    "mrp",
    "line_priority",
    "expected_delivery_date",
    "design_code",
    "combination_code",
    "style",
    "sub_style",
    "region",
    "color",
    "sub_color",
    "polish",
    "size",
    "weight",
    "received_qty",
    "category",
)


def _validate_priority(priority):
    if priority not in Priority.values:
        raise BadRequest(f"Invalid priority: {priority}")


def _validate_status(status):
    if not is_valid_status(status):
        raise BadRequest(f"Invalid status: {status}")


def _locked_purchase_order(purchase_order_id):
    po_id = require_uuid(purchase_order_id, PO_NOT_FOUND)
    purchase_order = PurchaseOrder.objects.select_for_update().filter(id=po_id).first()
    if purchase_order is None:
        raise NotFound(PO_NOT_FOUND)
    return purchase_order


def _guarded_line_item(purchase_order_id, line_item_id, actor):
    """Load a line item for mutation, applying the shared guard sequence."""
    item_id = require_uuid(line_item_id, LINE_ITEM_NOT_FOUND)
    line_item = LineItem.objects.select_for_update().select_related("purchase_order").filter(id=item_id).first()
    if line_item is None:
        raise NotFound(LINE_ITEM_NOT_FOUND)
    if line_item.purchase_order_id != require_uuid(purchase_order_id, PO_NOT_FOUND):
        raise BadRequest("Line item does not belong to this PO")
    ensure_purchase_order_access(actor, line_item.purchase_order)
    return line_item


# Creation and reads


def create_purchase_order(po_data, line_items, actor=None):
    if not po_data or not line_items:
        raise BadRequest("PO data and line items are required")

    po_number = str(po_data.get("po_number") or "").strip()
    if not po_number:
        raise BadRequest("po_number is required")

    vendor_id = po_data.get("vendor_id")
    vendor_id = parse_uuid(vendor_id)
    if vendor_id is None or not Vendor.objects.filter(id=vendor_id).exists():
        raise BadRequest("A valid vendor_id is required")

    if PurchaseOrder.objects.filter(po_number=po_number).exists():
        raise Conflict("PO number already exists")

    if po_data.get("priority") is not None:
        _validate_priority(po_data["priority"])
    if po_data.get("po_type") is not None and po_data["po_type"] not in PurchaseOrder.Type.values:
        raise BadRequest(f"Invalid PO type: {po_data['po_type']}")

    for position, item in enumerate(line_items, start=1):
        if item.get("line_priority") is not None:
            _validate_priority(item["line_priority"])
        if not item.get("product_code") or not item.get("product_name") or item.get("quantity") in (None, ""):
            raise BadRequest(f"Line item {position}: product_code, product_name and quantity are required")

    with translate_integrity_errors(), transaction.atomic():
        purchase_order = PurchaseOrder.objects.create(
            po_number=po_number,
            vendor_id=vendor_id,
            status=LifecycleStatus.CREATED,
            **{field: po_data[field] for field in PURCHASE_ORDER_FIELDS if po_data.get(field) is not None},
        )
        LineItem.objects.bulk_create(
            [
                LineItem(
                    purchase_order=purchase_order,
                    line_number=position,
                    status=LifecycleStatus.CREATED,
                    **{field: item[field] for field in LINE_ITEM_FIELDS if item.get(field) is not None},
                )
                for position, item in enumerate(line_items, start=1)
            ]
        )

    logger.info(
        "purchase_order_created",
        extra={"purchase_order_id": str(purchase_order.id), "vendor_id": str(vendor_id), "line_items": len(line_items)},
    )
    return PurchaseOrder.objects.with_line_items().get(id=purchase_order.id)


def get_purchase_order(purchase_order_id, actor=None):
    po_id = require_uuid(purchase_order_id, PO_NOT_FOUND)
    purchase_order = PurchaseOrder.objects.with_line_items().filter(id=po_id).first()
    if purchase_order is None:
        raise NotFound(PO_NOT_FOUND)
    if actor is not None:
        ensure_purchase_order_access(actor, purchase_order)
    return purchase_order


def list_purchase_orders(*, vendor_id=None, statuses=None, priority=None, po_type=None, created_after=None, search=None):
    queryset = PurchaseOrder.objects.with_line_items().order_by("-created_at")
    if vendor_id is not None:
        queryset = queryset.for_vendor(vendor_id)
    if statuses:
        queryset = queryset.filter(status__in=statuses)
    if priority:
        queryset = queryset.filter(priority=priority)
    if po_type:
        queryset = queryset.filter(po_type=po_type)
    if created_after:
        queryset = queryset.filter(created_at__date__gte=created_after)
    if search:
        queryset = queryset.filter(po_number__icontains=search)
    return queryset


def list_line_items(*, vendor_id=None, status=None, priority=None, purchase_order_id=None, search=None):
    queryset = LineItem.objects.select_related("purchase_order", "purchase_order__vendor")
    if vendor_id is not None:
        queryset = queryset.for_vendor(vendor_id)
    if purchase_order_id:
        queryset = queryset.for_purchase_order(purchase_order_id)
    if status == DELAYED:
        queryset = queryset.delayed()
    elif status:
        queryset = queryset.filter(status=status)
    if priority:
        queryset = queryset.filter(line_priority=priority)
    if search:
        queryset = queryset.filter(Q(product_code__icontains=search) | Q(product_name__icontains=search))
    return queryset.order_by(F("expected_delivery_date").asc(nulls_last=True), "purchase_order__po_number", "line_number")


# Purchase order mutations


def update_po_priority(purchase_order_id, priority, actor, *, apply_to_line_items=False):
    require_role(actor, User.Role.ADMIN)
    _validate_priority(priority)

    with transaction.atomic():
        purchase_order = _locked_purchase_order(purchase_order_id)
        if is_terminal(purchase_order.status):
            raise BadRequest("Cannot update priority of delivered PO")

        old_priority = purchase_order.priority
        purchase_order.priority = priority
        purchase_order.save(update_fields=["priority", "updated_at"])
        record_po_change(purchase_order, HistoryActionType.PRIORITY_CHANGE, "priority", old_priority, priority, actor)

        if apply_to_line_items:
            for line_item in purchase_order.line_items.exclude(status=LifecycleStatus.DELIVERED).select_for_update():
                if line_item.line_priority == priority:
                    continue
                old_line_priority = line_item.line_priority
                line_item.line_priority = priority
                line_item.save(update_fields=["line_priority", "updated_at"])
                record_line_item_change(
                    line_item, HistoryActionType.PRIORITY_CHANGE, "line_priority", old_line_priority, priority, actor
                )

    return get_purchase_order(purchase_order.id)


def update_po_status(purchase_order_id, status, actor):
    """Administrative override: sets any known status without transition checks."""
    require_role(actor, User.Role.ADMIN)
    _validate_status(status)

    with transaction.atomic():
        purchase_order = _locked_purchase_order(purchase_order_id)
        old_status = purchase_order.status
        purchase_order.status = status
        purchase_order.save(update_fields=["status", "updated_at"])
        record_po_change(purchase_order, HistoryActionType.STATUS_OVERRIDE, "status", old_status, status, actor)

    if is_regression(old_status, status):
        logger.warning(
            "purchase_order_status_regressed",
            extra={"purchase_order_id": str(purchase_order.id), "old_status": old_status, "new_status": status},
        )
    return get_purchase_order(purchase_order.id)


def accept_purchase_order(purchase_order_id, line_item_updates, actor):
    """Vendor acceptance: set delivery dates, mark items and the PO as ACCEPTED.

    Every update is validated before anything is written, and all writes share
    one transaction, so a rejected call leaves the line items untouched.
    """
    with transaction.atomic():
        purchase_order = _locked_purchase_order(purchase_order_id)
        ensure_purchase_order_access(actor, purchase_order)
        if purchase_order.status != LifecycleStatus.CREATED:
            raise BadRequest("PO can only be accepted when in CREATED status")
        if not line_item_updates:
            raise BadRequest("At least one line item update is required")

        line_items = {item.id: item for item in purchase_order.line_items.select_for_update()}
        planned = []
        seen = set()
        for update in line_item_updates:
            item_id = require_uuid(update.get("line_item_id"), LINE_ITEM_NOT_FOUND)
            if item_id not in line_items:
                raise BadRequest("Line item does not belong to this PO")
            if item_id in seen:
                raise BadRequest("Each line item may appear only once")
            seen.add(item_id)
            if not update.get("expected_delivery_date"):
                raise BadRequest("expected_delivery_date is required for every line item")
            expected = to_date(update["expected_delivery_date"], "Invalid expected delivery date")
            planned.append((line_items[item_id], expected))

        for line_item, expected in planned:
            old_date, old_status = line_item.expected_delivery_date, line_item.status
            line_item.expected_delivery_date = expected
            if status_index(line_item.status) < status_index(LifecycleStatus.ACCEPTED):
                line_item.status = LifecycleStatus.ACCEPTED
            line_item.save(update_fields=["expected_delivery_date", "status", "updated_at"])
            record_line_item_change(
                line_item, HistoryActionType.DATE_CHANGE, "expected_delivery_date", old_date, expected, actor
            )
            record_line_item_change(line_item, HistoryActionType.VENDOR_ACCEPT, "status", old_status, line_item.status, actor)

        purchase_order.status = LifecycleStatus.ACCEPTED
        purchase_order.save(update_fields=["status", "updated_at"])
        record_po_change(
            purchase_order, HistoryActionType.VENDOR_ACCEPT, "status", LifecycleStatus.CREATED, LifecycleStatus.ACCEPTED, actor
        )

    logger.info(
        "purchase_order_accepted",
        extra={"purchase_order_id": str(purchase_order.id), "line_items": len(planned), "user_id": str(actor.id)},
    )
    return get_purchase_order(purchase_order.id)


def update_po_closure(purchase_order_id, closure_data, actor):
    require_role(actor, User.Role.ADMIN)
    closure_status = closure_data.get("closure_status")
    if closure_status is not None and closure_status not in PurchaseOrder.ClosureStatus.values:
        raise BadRequest(f"Invalid closure status: {closure_status}")

    closed_amount = closure_data.get("closed_amount")
    if closed_amount is not None:
        closed_amount = to_money(closed_amount, "Closed amount must be a number")
        if closed_amount < 0:
            raise BadRequest("Closed amount cannot be negative")

    with transaction.atomic():
        purchase_order = _locked_purchase_order(purchase_order_id)
        changed_fields = []

        if closure_status is not None and closure_status != purchase_order.closure_status:
            record_po_change(
                purchase_order,
                HistoryActionType.CLOSURE_CHANGE,
                "closure_status",
                purchase_order.closure_status,
                closure_status,
                actor,
            )
            purchase_order.closure_status = closure_status
            changed_fields.append("closure_status")

        if closed_amount is not None and closed_amount != purchase_order.closed_amount:
            record_po_change(
                purchase_order,
                HistoryActionType.CLOSURE_CHANGE,
                "closed_amount",
                to_money(purchase_order.closed_amount or 0, "Closed amount must be a number"),
                closed_amount,
                actor,
            )
            purchase_order.closed_amount = closed_amount
            changed_fields.append("closed_amount")

        if changed_fields:
            purchase_order.save(update_fields=[*changed_fields, "updated_at"])

    return get_purchase_order(purchase_order.id)


# Line item mutations


def update_line_item_expected_date(purchase_order_id, line_item_id, expected_delivery_date, actor):
    expected = to_date(expected_delivery_date, "Invalid expected delivery date")

    with transaction.atomic():
        line_item = _guarded_line_item(purchase_order_id, line_item_id, actor)
        if is_terminal(line_item.status):
            raise BadRequest("Cannot update expected date for delivered line item")

        old_date = line_item.expected_delivery_date
        line_item.expected_delivery_date = expected
        line_item.save(update_fields=["expected_delivery_date", "updated_at"])
        record_line_item_change(line_item, HistoryActionType.DATE_CHANGE, "expected_delivery_date", old_date, expected, actor)

    return line_item


def update_line_item_status(purchase_order_id, line_item_id, status, actor):
    """Advance one line item; delivering the last open item delivers the PO."""
    _validate_status(status)

    with transaction.atomic():
        _locked_purchase_order(purchase_order_id)
        line_item = _guarded_line_item(purchase_order_id, line_item_id, actor)
        if is_regression(line_item.status, status):
            raise BadRequest("Cannot move line item to a previous status")

        old_status = line_item.status
        line_item.status = status
        line_item.save(update_fields=["status", "updated_at"])
        record_line_item_change(line_item, HistoryActionType.STATUS_CHANGE, "status", old_status, status, actor)

        purchase_order = line_item.purchase_order
        statuses = purchase_order.line_items.values_list("status", flat=True)
        if all_delivered(statuses) and purchase_order.status != LifecycleStatus.DELIVERED:
            old_po_status = purchase_order.status
            purchase_order.status = LifecycleStatus.DELIVERED
            purchase_order.save(update_fields=["status", "updated_at"])
            record_po_change(
                purchase_order, HistoryActionType.STATUS_CHANGE, "status", old_po_status, LifecycleStatus.DELIVERED, actor
            )
            logger.info("purchase_order_delivered", extra={"purchase_order_id": str(purchase_order.id)})

    return line_item


def update_line_item_priority(purchase_order_id, line_item_id, priority, actor):
    require_role(actor, User.Role.ADMIN)
    _validate_priority(priority)

    with transaction.atomic():
        line_item = _guarded_line_item(purchase_order_id, line_item_id, actor)
        if is_terminal(line_item.status):
            raise BadRequest("Cannot update priority for delivered line item")

        old_priority = line_item.line_priority
        line_item.line_priority = priority
        line_item.save(update_fields=["line_priority", "updated_at"])
        record_line_item_change(line_item, HistoryActionType.PRIORITY_CHANGE, "line_priority", old_priority, priority, actor)

    return line_item


# Dashboard

DELIVERY_WINDOWS = (("this_week", 7), ("this_month", 30), ("this_year", 365))


def _distinct_purchase_orders(line_items):
    return line_items.order_by().values("purchase_order_id").distinct().count()


def dashboard_stats(vendor_id=None, today=None):
    """Delivery and workload counters for the admin dashboard, or one vendor's when scoped.

    Delivery time is approximated by the line item's last update.
    """
    today = today or timezone.localdate()
    line_items = LineItem.objects.all()
    purchase_orders = PurchaseOrder.objects.all()
    if vendor_id is not None:
        line_items = line_items.for_vendor(vendor_id)
        purchase_orders = purchase_orders.for_vendor(vendor_id)

    delayed = line_items.delayed(today)
    due_today = line_items.exclude(status=LifecycleStatus.DELIVERED).filter(expected_delivery_date=today)
    delivered = line_items.delivered()

    delivered_po_counts, delivered_line_item_counts = {}, {}
    for label, days in DELIVERY_WINDOWS:
        recent = delivered.filter(updated_at__date__gte=today - timedelta(days=days))
        delivered_po_counts[label] = _distinct_purchase_orders(recent)
        delivered_line_item_counts[label] = recent.count()

    last_month = delivered.filter(updated_at__date__gte=today - timedelta(days=30)).annotate(
        delivered_on=TruncDate("updated_at")
    )

    open_by_priority = dict.fromkeys(Priority.values, 0)
    for row in purchase_orders.open().order_by().values("priority").annotate(count=Count("id")):
        open_by_priority[row["priority"]] = row["count"]

    return {
        "delayed_po_count": _distinct_purchase_orders(delayed),
        "delayed_line_item_count": delayed.count(),
        "delivering_today_po_count": _distinct_purchase_orders(due_today),
        "delivering_today_line_item_count": due_today.count(),
        "delivered_po_counts": delivered_po_counts,
        "delivered_line_item_counts": delivered_line_item_counts,
        "on_time_line_item_count_this_month": last_month.filter(expected_delivery_date__gte=F("delivered_on")).count(),
        "delayed_line_item_count_this_month": last_month.filter(expected_delivery_date__lt=F("delivered_on")).count(),
        "open_pos_by_priority": open_by_priority,
    }
