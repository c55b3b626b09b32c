"""
DTOs -- immutable inputs and views crossing the service boundary.

Responsibility:
    Defines what callers hand to the services (ItemSpec, ItemRevision,
    PurchaseOrderSelection, DeliveryLineSpec) and what they get back
    (RequestView, PurchaseOrderView, DeliveryOutcome, ...).  Services and
    selectors never return ORM instances.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ORM models build views through their
    ``to_dto()`` methods.

Invariants enforced:
    - Every DTO is a frozen dataclass; collections are tuples.
    - Views are snapshots taken inside the operation's transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from procurement_kernel.domain.status import (
    DeliveryCondition,
    FulfillmentStatus,
    ItemStatus,
    Priority,
    PurchaseOrderStatus,
    RequestStatus,
    ResourceType,
)
from procurement_kernel.domain.values import ZERO, remaining
from procurement_kernel.exceptions import ProcurementError

# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ItemSpec:
    """A new BOQ line."""

    name: str
    quantity: Decimal | int | str
    unit: str
    rate_estimate: Decimal | int | str
    resource_type: ResourceType = ResourceType.MATERIAL


@dataclass(frozen=True)
class ItemRevision:
    """Edited fields of an existing line; None leaves a field unchanged."""

    quantity: Decimal | int | str | None = None
    unit: str | None = None
    rate_estimate: Decimal | int | str | None = None
    name: str | None = None


@dataclass(frozen=True)
class PurchaseOrderSelection:
    """
    One approved request item to put on a purchase order.

    Defaults: the approved quantity, the item's rate estimate as unit price,
    and the item's unit.
    """

    request_item_id: UUID
    ordered_qty: Decimal | int | str | None = None
    unit_price: Decimal | int | str | None = None
    unit: str | None = None


@dataclass(frozen=True)
class DeliveryLineSpec:
    po_item_id: UUID
    quantity_delivered: Decimal | int | str
    condition: DeliveryCondition = DeliveryCondition.GOOD
    notes: str | None = None


# ---------------------------------------------------------------------------
# Request views
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequestItemView:
    id: UUID
    request_id: UUID
    line_number: int
    resource_type: ResourceType
    name: str
    quantity: Decimal
    unit: str
    rate_estimate: Decimal
    total_estimate: Decimal
    status: ItemStatus
    rejection_comment: str | None = None
    revision_count: int = 0
    decided_by_id: UUID | None = None
    decided_at: datetime | None = None


@dataclass(frozen=True)
class RequestView:
    id: UUID
    reference_code: str
    project_id: UUID
    title: str
    priority: Priority
    status: RequestStatus
    revision_number: int
    total_value: Decimal
    created_by_id: UUID
    created_at: datetime
    items: tuple[RequestItemView, ...] = ()
    site_id: UUID | None = None
    submitted_at: datetime | None = None
    planned_start: datetime | None = None
    planned_end: datetime | None = None
    additional_details: str | None = None
    is_duplicate_flagged: bool = False
    duplicate_explanation: str | None = None

    @property
    def pending_count(self) -> int:
        return sum(1 for i in self.items if i.status == ItemStatus.PENDING)

    def item(self, item_id: UUID) -> RequestItemView:
        for candidate in self.items:
            if candidate.id == item_id:
                return candidate
        raise KeyError(item_id)


# ---------------------------------------------------------------------------
# Audit views
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditEntryView:
    seq: int
    entity_type: str
    entity_id: UUID
    aggregate_id: UUID
    action: str
    actor_id: UUID
    occurred_at: datetime
    comment: str | None
    status_snapshot: str | None
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrail:
    """Every entry of one aggregate (or one entity), oldest first."""

    subject_id: UUID
    entries: tuple[AuditEntryView, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(e.action for e in self.entries)

    @property
    def last_action(self) -> str | None:
        return self.entries[-1].action if self.entries else None


# ---------------------------------------------------------------------------
# Purchase order views
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PurchaseOrderItemView:
    id: UUID
    purchase_order_id: UUID
    line_number: int
    request_item_id: UUID
    display_name: str
    ordered_qty: Decimal
    unit: str
    unit_price: Decimal
    line_total: Decimal
    total_delivered: Decimal = ZERO

    @property
    def remaining(self) -> Decimal:
        return remaining(self.ordered_qty, self.total_delivered)

    @property
    def fully_delivered(self) -> bool:
        return self.total_delivered == self.ordered_qty


@dataclass(frozen=True)
class PurchaseOrderView:
    id: UUID
    po_number: str
    project_id: UUID
    status: PurchaseOrderStatus
    total_value: Decimal
    created_by_id: UUID
    created_at: datetime
    items: tuple[PurchaseOrderItemView, ...] = ()
    site_id: UUID | None = None
    vendor_name: str | None = None
    notes: str | None = None
    closed_at: datetime | None = None

    def item_for(self, request_item_id: UUID) -> PurchaseOrderItemView:
        for candidate in self.items:
            if candidate.request_item_id == request_item_id:
                return candidate
        raise KeyError(request_item_id)


@dataclass(frozen=True)
class ClaimableItem:
    """An approved request item not yet on any purchase order."""

    request_id: UUID
    reference_code: str
    request_item_id: UUID
    resource_type: ResourceType
    name: str
    quantity: Decimal
    unit: str
    rate_estimate: Decimal


@dataclass(frozen=True)
class ItemFulfillment:
    request_item_id: UUID
    name: str
    requested_qty: Decimal
    ordered_qty: Decimal
    delivered_qty: Decimal
    status: FulfillmentStatus


# ---------------------------------------------------------------------------
# Delivery views
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeliveryItemView:
    id: UUID
    purchase_order_item_id: UUID
    quantity_delivered: Decimal
    condition: DeliveryCondition
    notes: str | None = None


@dataclass(frozen=True)
class DeliveryView:
    id: UUID
    purchase_order_id: UUID
    received_by_id: UUID
    delivered_at: datetime
    recorded_by_id: UUID
    items: tuple[DeliveryItemView, ...] = ()
    notes: str | None = None


@dataclass(frozen=True)
class DeliveryLineResult:
    """An applied delivery line and the line's totals right after it."""

    po_item_id: UUID
    quantity_delivered: Decimal
    total_delivered: Decimal
    ordered_qty: Decimal

    @property
    def fully_delivered(self) -> bool:
        return self.total_delivered == self.ordered_qty


@dataclass(frozen=True)
class DeliveryLineRejection:
    line_index: int
    po_item_id: UUID
    error: ProcurementError


@dataclass(frozen=True)
class DeliveryOutcome:
    purchase_order_id: UUID
    po_status: PurchaseOrderStatus
    delivery: DeliveryView
    accepted: tuple[DeliveryLineResult, ...] = ()
    rejected: tuple[DeliveryLineRejection, ...] = ()
    closed: bool = False

    @property
    def is_partial(self) -> bool:
        return bool(self.rejected)
