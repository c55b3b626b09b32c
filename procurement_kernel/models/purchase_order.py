"""
Module: procurement_kernel.models.purchase_order
Responsibility: ORM persistence for purchase orders and their lines.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - request_item_id is UNIQUE across all purchase order lines: a request
      item can be claimed by one purchase order line, ever.
    - 0 <= total_delivered <= ordered_qty (CHECK constraint; the delivery
      reconciler's conditional UPDATE never attempts to cross it).
    - ordered_qty > 0, unit_price >= 0.
    - status CLOSED iff every line is fully delivered; recomputed by the
      delivery reconciler and one-way (db/immutability.py).

Failure modes:
    - IntegrityError on a second claim of the same request item, mapped to
      ItemAlreadyClaimedError by the assembler.

Audit relevance:
    Creation, every delivery and closure are audited against the purchase
    order id.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase, UUIDString
from procurement_kernel.db.types import Label, Money, Quantity, ShortCode
from procurement_kernel.domain.dtos import PurchaseOrderItemView, PurchaseOrderView
from procurement_kernel.domain.status import PurchaseOrderStatus


class PurchaseOrderModel(TrackedBase):
    """A purchase order for one project."""

    __tablename__ = "procurement_purchase_orders"

    __table_args__ = (
        UniqueConstraint("po_number", name="uq_purchase_order_number"),
        Index("idx_purchase_order_project", "project_id"),
        Index("idx_purchase_order_status", "status"),
    )

    po_number: Mapped[ShortCode]
    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    site_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    vendor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    status: Mapped[ShortCode] = mapped_column(default=PurchaseOrderStatus.OPEN.value)
    total_value: Mapped[Money] = mapped_column(default=Decimal("0"))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[list["PurchaseOrderItemModel"]] = relationship(
        "PurchaseOrderItemModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItemModel.line_number",
        lazy="selectin",
    )

    def to_dto(self) -> PurchaseOrderView:
        return PurchaseOrderView(
            id=self.id,
            po_number=self.po_number,
            project_id=self.project_id,
            site_id=self.site_id,
            vendor_name=self.vendor_name,
            notes=self.notes,
            status=PurchaseOrderStatus(self.status),
            total_value=self.total_value,
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            closed_at=self.closed_at,
            items=tuple(item.to_dto() for item in self.items),
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.po_number} [{self.status}]>"


class PurchaseOrderItemModel(TrackedBase):
    """
    One purchase order line, built from exactly one approved request item.

    The request item reference is a claim, not ownership: nothing here ever
    writes to the request item.
    """

    __tablename__ = "procurement_purchase_order_items"

    __table_args__ = (
        UniqueConstraint("request_item_id", name="uq_purchase_order_item_claim"),
        UniqueConstraint("purchase_order_id", "line_number", name="uq_purchase_order_item_line"),
        Index("idx_purchase_order_item_po", "purchase_order_id"),
        CheckConstraint("ordered_qty > 0", name="ck_po_item_ordered_positive"),
        CheckConstraint("unit_price >= 0", name="ck_po_item_price_non_negative"),
        CheckConstraint(
            "total_delivered >= 0 AND total_delivered <= ordered_qty",
            name="ck_po_item_delivered_within_ordered",
        ),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_purchase_orders.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    request_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_request_items.id"), nullable=False,
    )
    display_name: Mapped[Label]
    ordered_qty: Mapped[Quantity]
    unit: Mapped[str] = mapped_column(String(50), nullable=False)
    unit_price: Mapped[Money]
    line_total: Mapped[Money]
    total_delivered: Mapped[Quantity] = mapped_column(default=Decimal("0"))

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="items",
    )

    @property
    def fully_delivered(self) -> bool:
        return self.total_delivered == self.ordered_qty

    def to_dto(self) -> PurchaseOrderItemView:
        return PurchaseOrderItemView(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            line_number=self.line_number,
            request_item_id=self.request_item_id,
            display_name=self.display_name,
            ordered_qty=self.ordered_qty,
            unit=self.unit,
            unit_price=self.unit_price,
            line_total=self.line_total,
            total_delivered=self.total_delivered,
        )

    def __repr__(self) -> str:
        return (
            f"<PurchaseOrderItemModel {self.line_number}:{self.display_name} "
            f"{self.total_delivered}/{self.ordered_qty}>"
        )
