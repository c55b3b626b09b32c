"""
ORM-level immutability enforcement.

SQLAlchemy fires ``before_update`` / ``before_delete`` before the SQL for a
flushed object is sent.  The listeners below check the procurement
record rules and raise ImmutabilityViolationError, which aborts the flush
and leaves the database untouched:

    Entity              | Rule
    --------------------|-----------------------------------------------
    AuditEntry          | never updated, never deleted
    Delivery            | never updated, never deleted
    DeliveryItem        | never updated, never deleted
    PurchaseOrderItem   | request_item_id, ordered_qty, unit_price frozen;
                        | total_delivered never decreases; never deleted
    PurchaseOrder       | CLOSED never returns to OPEN; never deleted

The delivery reconciler increments ``total_delivered`` through a Core
UPDATE, which does not pass through these listeners; the CHECK constraint
on the table bounds that path instead.

Usage:

    from procurement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

    # Tests that tamper on purpose:
    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from procurement_kernel.exceptions import ImmutabilityViolationError
from procurement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = ("updated_at", "updated_by_id")


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    return [
        attr.key
        for attr in inspect(target).attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    ]


# Always-immutable records


def _check_audit_entry_update(mapper, connection, target):
    _block("AuditEntry", target, "UPDATE", "Audit entries are append-only")


def _check_audit_entry_delete(mapper, connection, target):
    _block("AuditEntry", target, "DELETE", "Audit entries cannot be deleted")


def _check_delivery_update(mapper, connection, target):
    fields = _changed_fields(target)
    if fields:
        _block(
            "Delivery", target, "UPDATE",
            "Recorded deliveries are immutable; record a new delivery instead",
            field=fields[0],
        )


def _check_delivery_delete(mapper, connection, target):
    _block("Delivery", target, "DELETE", "Recorded deliveries cannot be deleted")


def _check_delivery_item_update(mapper, connection, target):
    fields = _changed_fields(target)
    if fields:
        _block(
            "DeliveryItem", target, "UPDATE",
            "Delivery lines are immutable",
            field=fields[0],
        )


def _check_delivery_item_delete(mapper, connection, target):
    _block("DeliveryItem", target, "DELETE", "Delivery lines cannot be deleted")


# Purchase orders

_FROZEN_PO_ITEM_FIELDS = ("request_item_id", "ordered_qty", "unit_price", "purchase_order_id")


def _check_purchase_order_item_update(mapper, connection, target):
    for field in _FROZEN_PO_ITEM_FIELDS:
        if get_history(target, field).has_changes():
            _block(
                "PurchaseOrderItem", target, "UPDATE",
                f"Field '{field}' is fixed once the line is created",
                field=field,
            )

    delivered = get_history(target, "total_delivered")
    if delivered.deleted and delivered.added:
        old, new = delivered.deleted[0], delivered.added[0]
        if old is not None and new is not None and new < old:
            _block(
                "PurchaseOrderItem", target, "UPDATE",
                f"total_delivered cannot decrease ({old} -> {new})",
                field="total_delivered",
            )


def _check_purchase_order_item_delete(mapper, connection, target):
    _block("PurchaseOrderItem", target, "DELETE", "Purchase order lines cannot be deleted")


def _check_purchase_order_update(mapper, connection, target):
    from procurement_kernel.domain.status import PurchaseOrderStatus

    status = get_history(target, "status")
    if status.deleted and status.deleted[0] == PurchaseOrderStatus.CLOSED.value:
        _block(
            "PurchaseOrder", target, "UPDATE",
            "A closed purchase order cannot be reopened",
            field="status",
        )


def _check_purchase_order_delete(mapper, connection, target):
    _block("PurchaseOrder", target, "DELETE", "Purchase orders cannot be deleted")


def _listeners():
    from procurement_kernel.models.audit_entry import AuditEntryModel
    from procurement_kernel.models.delivery import DeliveryItemModel, DeliveryModel
    from procurement_kernel.models.purchase_order import (
        PurchaseOrderItemModel,
        PurchaseOrderModel,
    )

    return (
        (AuditEntryModel, "before_update", _check_audit_entry_update),
        (AuditEntryModel, "before_delete", _check_audit_entry_delete),
        (DeliveryModel, "before_update", _check_delivery_update),
        (DeliveryModel, "before_delete", _check_delivery_delete),
        (DeliveryItemModel, "before_update", _check_delivery_item_update),
        (DeliveryItemModel, "before_delete", _check_delivery_item_delete),
        (PurchaseOrderItemModel, "before_update", _check_purchase_order_item_update),
        (PurchaseOrderItemModel, "before_delete", _check_purchase_order_item_delete),
        (PurchaseOrderModel, "before_update", _check_purchase_order_update),
        (PurchaseOrderModel, "before_delete", _check_purchase_order_delete),
    )


def register_immutability_listeners():
    """
    Register every immutability listener.  Safe to call more than once.

    Call after the models are importable and before any writes.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the listeners.

    WARNING: tests only, for deliberately tampering with records to prove
    that chain validation notices.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
