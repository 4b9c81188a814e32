"""Append-only change history for purchase orders and their line items.

Every lifecycle mutation records one entry per field whose value actually
changed. Reads merge the two history tables into a single newest-first feed.
"""

from __future__ import annotations

import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from rest_framework.exceptions import NotFound

from common.permissions import ensure_purchase_order_access, get_user_role
from common.utils import require_uuid
from purchasing.models import LineItem, LineItemHistory, PurchaseOrder, PurchaseOrderHistory

PO_NOT_FOUND = "Purchase order not found"
PO_LEVEL = "PO"
LINE_ITEM_LEVEL = "LINE_ITEM"
UNKNOWN_ITEM_REFERENCE = "Unknown Item"
SYSTEM_ROLE = "SYSTEM"


def stringify(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def _actor_fields(actor) -> dict[str, Any]:
    if actor is None or not getattr(actor, "is_authenticated", False):
        return {"changed_by": None, "changed_by_name": "", "changed_by_role": SYSTEM_ROLE}
    return {
        "changed_by": actor,
        "changed_by_name": actor.display_name,
        "changed_by_role": get_user_role(actor) or "",
    }


def record_po_change(purchase_order: PurchaseOrder, action_type, field_name, old, new, actor=None):
    old_value, new_value = stringify(old), stringify(new)
    if old_value == new_value:
        return None
    return PurchaseOrderHistory.objects.create(
        entity_id=purchase_order.id,
        purchase_order=purchase_order,
        action_type=action_type,
        field_name=field_name,
        old_value=old_value,
        new_value=new_value,
        **_actor_fields(actor),
    )


def record_line_item_change(line_item: LineItem, action_type, field_name, old, new, actor=None):
    old_value, new_value = stringify(old), stringify(new)
    if old_value == new_value:
        return None
    return LineItemHistory.objects.create(
        entity_id=line_item.id,
        purchase_order_id=line_item.purchase_order_id,
        line_item=line_item,
        action_type=action_type,
        field_name=field_name,
        old_value=old_value,
        new_value=new_value,
        **_actor_fields(actor),
    )


def _serialize_entry(entry, level) -> dict[str, Any]:
    line_item_reference = None
    line_item_id = None
    if level == LINE_ITEM_LEVEL:
        line_item_id = entry.entity_id
        line_item_reference = entry.line_item.reference if entry.line_item_id else UNKNOWN_ITEM_REFERENCE

    return {
        "id": entry.id,
        "level": level,
        "entity_id": entry.entity_id,
        "purchase_order_id": entry.purchase_order_id,
        "po_number": entry.purchase_order.po_number,
        "line_item_id": line_item_id,
        "line_item_reference": line_item_reference,
        "action_type": entry.action_type,
        "field_name": entry.field_name,
        "old_value": entry.old_value,
        "new_value": entry.new_value,
        "changed_by_id": entry.changed_by_id,
        "changed_by_name": entry.changed_by_name,
        "changed_by_role": entry.changed_by_role,
        "created_at": entry.created_at,
    }


def _merge(po_entries, line_item_entries) -> list[dict[str, Any]]:
    rows = [_serialize_entry(entry, PO_LEVEL) for entry in po_entries]
    rows.extend(_serialize_entry(entry, LINE_ITEM_LEVEL) for entry in line_item_entries)
    rows.sort(key=lambda row: row["created_at"], reverse=True)
    return rows


def get_history(purchase_order_id, actor=None) -> list[dict[str, Any]]:
    """Full history of one purchase order, newest first."""
    purchase_order = PurchaseOrder.objects.filter(id=require_uuid(purchase_order_id, PO_NOT_FOUND)).first()
    if purchase_order is None:
        raise NotFound(PO_NOT_FOUND)
    if actor is not None:
        ensure_purchase_order_access(actor, purchase_order)

    po_entries = PurchaseOrderHistory.objects.filter(purchase_order=purchase_order).select_related("purchase_order")
    line_item_entries = LineItemHistory.objects.filter(purchase_order=purchase_order).select_related(
        "purchase_order", "line_item"
    )
    return _merge(po_entries, line_item_entries)


def get_all_history(*, vendor_id=None, page=1, limit=10) -> dict[str, Any]:
    """History across purchase orders, optionally limited to one vendor's.

    Both tables are merged and sorted before the page is cut, so each table
    only has to contribute its newest ``page * limit`` rows.
    """
    po_entries = PurchaseOrderHistory.objects.select_related("purchase_order").order_by("-created_at")
    line_item_entries = LineItemHistory.objects.select_related("purchase_order", "line_item").order_by("-created_at")
    if vendor_id is not None:
        po_entries = po_entries.filter(purchase_order__vendor_id=vendor_id)
        line_item_entries = line_item_entries.filter(purchase_order__vendor_id=vendor_id)

    count = po_entries.count() + line_item_entries.count()
    window = page * limit
    rows = _merge(po_entries[:window], line_item_entries[:window])
    offset = (page - 1) * limit
    return {
        "count": count,
        "page": page,
        "limit": limit,
        "results": rows[offset:offset + limit],
    }
