"""
Module: procurement_kernel.models.delivery
Responsibility: ORM persistence for recorded deliveries.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Deliveries and their items are immutable once flushed; a correction
      is a new delivery (ORM listeners in db/immutability.py).
    - quantity_delivered > 0 (CHECK constraint).

Audit relevance:
    Together with the DELIVERY_RECORDED audit entries, these rows explain
    every unit in PurchaseOrderItemModel.total_delivered.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import Base, UUIDString
from procurement_kernel.db.types import Quantity, ShortCode
from procurement_kernel.domain.dtos import DeliveryItemView, DeliveryView
from procurement_kernel.domain.status import DeliveryCondition


class DeliveryModel(Base):
    """One delivery event against a purchase order."""

    __tablename__ = "procurement_deliveries"

    __table_args__ = (
        Index("idx_delivery_purchase_order", "purchase_order_id", "delivered_at"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_purchase_orders.id"), nullable=False,
    )
    received_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    delivered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    recorded_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    items: Mapped[list["DeliveryItemModel"]] = relationship(
        "DeliveryItemModel",
        back_populates="delivery",
        lazy="selectin",
    )

    def to_dto(self) -> DeliveryView:
        return DeliveryView(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            received_by_id=self.received_by_id,
            delivered_at=self.delivered_at,
            recorded_by_id=self.recorded_by_id,
            notes=self.notes,
            items=tuple(item.to_dto() for item in self.items),
        )


class DeliveryItemModel(Base):
    __tablename__ = "procurement_delivery_items"

    __table_args__ = (
        Index("idx_delivery_item_delivery", "delivery_id"),
        Index("idx_delivery_item_po_item", "purchase_order_item_id"),
        CheckConstraint("quantity_delivered > 0", name="ck_delivery_item_quantity_positive"),
    )

    delivery_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_deliveries.id"), nullable=False,
    )
    purchase_order_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_purchase_order_items.id"), nullable=False,
    )
    quantity_delivered: Mapped[Quantity]
    condition: Mapped[ShortCode] = mapped_column(default=DeliveryCondition.GOOD.value)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    delivery: Mapped["DeliveryModel"] = relationship(
        "DeliveryModel",
        back_populates="items",
    )

    def to_dto(self) -> DeliveryItemView:
        return DeliveryItemView(
            id=self.id,
            purchase_order_item_id=self.purchase_order_item_id,
            quantity_delivered=self.quantity_delivered,
            condition=DeliveryCondition(self.condition),
            notes=self.notes,
        )
