"""
ORM-level immutability tests.

Audit entries, deliveries and delivery lines never change once written;
purchase order lines keep their claim, quantity and price; a closed
purchase order stays closed.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from procurement_kernel.domain.dtos import DeliveryLineSpec
from procurement_kernel.exceptions import ImmutabilityViolationError
from procurement_kernel.models.audit_entry import AuditEntryModel
from procurement_kernel.models.delivery import DeliveryItemModel, DeliveryModel
from procurement_kernel.models.purchase_order import PurchaseOrderItemModel, PurchaseOrderModel


def first(session, model):
    return session.execute(select(model).limit(1)).scalar_one()


class TestAuditEntries:

    def test_update_blocked(self, submitted_request, session):
        submitted_request()
        entry = first(session, AuditEntryModel)
        entry.comment = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_delete_blocked(self, submitted_request, session):
        submitted_request()
        session.delete(first(session, AuditEntryModel))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestDeliveries:

    @pytest.fixture
    def delivered(self, open_purchase_order, reconciler, engineer):
        po = open_purchase_order()
        return reconciler.record_delivery(engineer, po.id, [DeliveryLineSpec(po.items[0].id, 2)])

    def test_delivery_update_blocked(self, delivered, session):
        delivery = first(session, DeliveryModel)
        delivery.notes = "changed my mind"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_delivery_line_update_blocked(self, delivered, session):
        line = first(session, DeliveryItemModel)
        line.quantity_delivered = Decimal("1")
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "DeliveryItem"
        session.rollback()

    def test_delivery_line_delete_blocked(self, delivered, session):
        session.delete(first(session, DeliveryItemModel))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_violation_is_logged(self, delivered, session, captured_logs):
        delivery = first(session, DeliveryModel)
        delivery.notes = "edited"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
        blocked = next(
            r for r in captured_logs() if r["message"] == "immutability_violation_blocked"
        )
        assert blocked["entity_type"] == "Delivery"
        assert blocked["operation"] == "UPDATE"


class TestPurchaseOrderLines:

    @pytest.mark.parametrize(
        "field,value",
        [("ordered_qty", Decimal("1")), ("unit_price", Decimal("1"))],
    )
    def test_frozen_fields(self, open_purchase_order, session, field, value):
        open_purchase_order()
        line = first(session, PurchaseOrderItemModel)
        setattr(line, field, value)
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert field in exc_info.value.reason
        session.rollback()

    def test_delivered_total_cannot_decrease(
        self, open_purchase_order, reconciler, engineer, session,
    ):
        po = open_purchase_order()
        reconciler.record_delivery(engineer, po.id, [DeliveryLineSpec(po.items[0].id, 5)])
        line = session.get(PurchaseOrderItemModel, po.items[0].id, populate_existing=True)
        line.total_delivered = Decimal("1")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_line_delete_blocked(self, open_purchase_order, session):
        open_purchase_order()
        session.delete(first(session, PurchaseOrderItemModel))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestPurchaseOrderClosure:

    def test_closed_order_cannot_reopen(
        self, open_purchase_order, reconciler, engineer, session,
    ):
        po = open_purchase_order()
        reconciler.record_delivery(
            engineer, po.id, [DeliveryLineSpec(line.id, line.ordered_qty) for line in po.items],
        )
        order = session.get(PurchaseOrderModel, po.id, populate_existing=True)
        assert order.status == "closed"
        order.status = "open"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_open_order_may_be_annotated(self, open_purchase_order, session):
        po = open_purchase_order()
        order = session.get(PurchaseOrderModel, po.id)
        order.notes = "call before unloading"
        session.flush()
        session.commit()
