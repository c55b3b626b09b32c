"""
PurchaseOrderAssembler: turns approved request items into a purchase order.

Responsibility:
    Validates a selection of approved request items, claims each of them
    for one new purchase order line, and records the order.

Architecture position:
    Kernel > Services.  Reads RequestModel / RequestItemModel, writes
    PurchaseOrderModel / PurchaseOrderItemModel.  Never writes a request
    item.  Transaction owner: commits on success, rolls back on failure.

Invariants enforced:
    - A request item is claimed by at most one purchase order line, ever.
      The UNIQUE constraint on request_item_id is the guarantee; the
      pre-check only produces a friendlier error when no race is involved.
    - 0 < ordered_qty <= the item's approved quantity.
    - line_total = line_total(ordered_qty, unit_price); the order total is
      their sum.

Failure modes:
    - InvalidSelectionError: empty selection, or an item selected twice.
    - RequestItemNotFoundError, ProjectMismatchError.
    - InvalidTransitionError (attempted action "claim") for items that are
      not APPROVED.
    - ItemAlreadyClaimedError: the item is already on an order, including
      a claim that committed between our check and our insert.
    - OverOrderError / InvalidQuantityError on quantities and prices.

Audit relevance:
    PURCHASE_ORDER_CREATED against the new order, listing every claimed
    request item.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procurement_kernel.domain.authority import Actor, Permission, require_permission
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.dtos import PurchaseOrderSelection, PurchaseOrderView
from procurement_kernel.domain.policy import EnginePolicy
from procurement_kernel.domain.status import ItemStatus, PurchaseOrderStatus
from procurement_kernel.domain.values import (
    ZERO,
    line_total,
    non_negative_amount,
    positive_quantity,
    sum_totals,
)
from procurement_kernel.exceptions import (
    InvalidSelectionError,
    InvalidTransitionError,
    ItemAlreadyClaimedError,
    OverOrderError,
    ProjectMismatchError,
    RequestItemNotFoundError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.models.audit_entry import AuditAction
from procurement_kernel.models.purchase_order import PurchaseOrderItemModel, PurchaseOrderModel
from procurement_kernel.models.request import RequestItemModel, RequestModel
from procurement_kernel.services.audit_log import AuditLog
from procurement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.purchase_order_assembler")

PURCHASE_ORDER_ENTITY = "PurchaseOrder"


class PurchaseOrderAssembler:
    """Creates purchase orders from approved, unclaimed request items."""

    def __init__(
        self,
        session: Session,
        policy: EnginePolicy | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._policy = policy or EnginePolicy.defaults()
        self._clock = clock or SystemClock()
        self._audit = AuditLog(session, self._clock)
        self._sequences = SequenceService(session)

    def create_purchase_order(
        self,
        actor: Actor,
        project_id: UUID,
        selections: list[PurchaseOrderSelection] | tuple[PurchaseOrderSelection, ...],
        *,
        vendor_name: str | None = None,
        site_id: UUID | None = None,
        notes: str | None = None,
    ) -> PurchaseOrderView:
        """
        Create an OPEN purchase order with one line per selection.

        Unset selection fields default to the request item's approved
        quantity, rate estimate and unit.
        """
        require_permission(
            self._policy.role_permissions, actor, Permission.PURCHASE_ORDER_CREATE,
        )

        with LogContext.bind(actor_id=actor.actor_id, project_id=project_id):
            try:
                self._check_selection_shape(selections)
                items = self._load_items([s.request_item_id for s in selections])

                now = self._clock.now()
                order = PurchaseOrderModel(
                    id=uuid4(),
                    project_id=project_id,
                    site_id=site_id,
                    vendor_name=(vendor_name or "").strip() or None,
                    notes=notes,
                    status=PurchaseOrderStatus.OPEN.value,
                    created_by_id=actor.actor_id,
                    created_at=now,
                    updated_at=now,
                )

                for line_number, selection in enumerate(selections, start=1):
                    item = items.get(selection.request_item_id)
                    if item is None:
                        raise RequestItemNotFoundError(str(selection.request_item_id))
                    order.items.append(
                        self._build_line(project_id, selection, item, line_number, actor, now)
                    )

                order.total_value = sum_totals(line.line_total for line in order.items)
                order.po_number = self._sequences.next_reference(
                    SequenceService.PURCHASE_ORDER_REFERENCE, now.year,
                )

                self._session.add(order)
                try:
                    self._session.flush()
                except IntegrityError:
                    self._session.rollback()
                    conflict = self._lost_claim_race(selections)
                    if conflict is None:
                        raise
                    raise conflict from None

                self._audit.append(
                    PURCHASE_ORDER_ENTITY,
                    order.id,
                    AuditAction.PURCHASE_ORDER_CREATED,
                    actor.actor_id,
                    aggregate_id=order.id,
                    status_snapshot=order.status,
                    payload={
                        "po_number": order.po_number,
                        "project_id": project_id,
                        "vendor_name": order.vendor_name,
                        "total_value": order.total_value,
                        "lines": [
                            {
                                "line_number": line.line_number,
                                "request_item_id": line.request_item_id,
                                "request_id": items[line.request_item_id].request_id,
                                "ordered_qty": line.ordered_qty,
                                "unit_price": line.unit_price,
                                "line_total": line.line_total,
                            }
                            for line in order.items
                        ],
                    },
                )

                self._session.commit()
                logger.info(
                    "purchase_order_created",
                    extra={
                        "purchase_order_id": str(order.id),
                        "po_number": order.po_number,
                        "line_count": len(order.items),
                        "total_value": str(order.total_value),
                    },
                )
                return order.to_dto()

            except Exception:
                self._session.rollback()
                raise

    def _check_selection_shape(self, selections) -> None:
        if not selections:
            raise InvalidSelectionError("a purchase order needs at least one item")
        seen: set[UUID] = set()
        for selection in selections:
            if selection.request_item_id in seen:
                raise InvalidSelectionError(
                    "request item selected more than once",
                    request_item_id=str(selection.request_item_id),
                )
            seen.add(selection.request_item_id)

    def _load_items(self, item_ids: list[UUID]) -> dict[UUID, RequestItemModel]:
        rows = self._session.execute(
            select(RequestItemModel)
            .where(RequestItemModel.id.in_(item_ids))
            .execution_options(populate_existing=True)
        ).scalars().all()
        return {row.id: row for row in rows}

    def _existing_claim(self, request_item_id: UUID) -> UUID | None:
        return self._session.execute(
            select(PurchaseOrderItemModel.purchase_order_id)
            .where(PurchaseOrderItemModel.request_item_id == request_item_id)
        ).scalar_one_or_none()

    def _build_line(
        self,
        project_id: UUID,
        selection: PurchaseOrderSelection,
        item: RequestItemModel,
        line_number: int,
        actor: Actor,
        now: datetime,
    ) -> PurchaseOrderItemModel:
        request_project = self._session.execute(
            select(RequestModel.project_id).where(RequestModel.id == item.request_id)
        ).scalar_one()
        if request_project != project_id:
            raise ProjectMismatchError(str(item.id), str(project_id), str(request_project))

        if item.status != ItemStatus.APPROVED.value:
            raise InvalidTransitionError("RequestItem", str(item.id), item.status, "claim")

        claimed_by = self._existing_claim(item.id)
        if claimed_by is not None:
            raise ItemAlreadyClaimedError(str(item.id), str(claimed_by))

        ordered_qty = (
            positive_quantity(selection.ordered_qty, "ordered_qty")
            if selection.ordered_qty is not None
            else item.quantity
        )
        if ordered_qty > item.quantity:
            raise OverOrderError(str(item.id), ordered_qty, item.quantity)

        unit_price = (
            non_negative_amount(selection.unit_price, "unit_price")
            if selection.unit_price is not None
            else item.rate_estimate
        )

        return PurchaseOrderItemModel(
            id=uuid4(),
            line_number=line_number,
            request_item_id=item.id,
            display_name=item.name,
            ordered_qty=ordered_qty,
            unit=(selection.unit or "").strip() or item.unit,
            unit_price=unit_price,
            line_total=line_total(ordered_qty, unit_price, "line_total"),
            total_delivered=ZERO,
            created_by_id=actor.actor_id,
            created_at=now,
            updated_at=now,
        )

    def _lost_claim_race(self, selections) -> ItemAlreadyClaimedError | None:
        """
        After a failed insert, find which selected item another order
        claimed in the meantime.
        """
        for selection in selections:
            claimed_by = self._existing_claim(selection.request_item_id)
            if claimed_by is not None:
                logger.warning(
                    "purchase_order_claim_conflict",
                    extra={
                        "request_item_id": str(selection.request_item_id),
                        "claimed_by": str(claimed_by),
                    },
                )
                return ItemAlreadyClaimedError(
                    str(selection.request_item_id), str(claimed_by),
                )
        return None
