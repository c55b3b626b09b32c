"""
DeliveryReconciler: records deliveries against purchase order lines.

Responsibility:
    Applies each delivered quantity to its purchase order line, records
    the accepted lines as one immutable Delivery, and closes the order
    once every line is fully delivered.

Architecture position:
    Kernel > Services.  Writes DeliveryModel / DeliveryItemModel and the
    delivered totals and status of purchase orders.  Transaction owner:
    commits on success, rolls back on failure.

Invariants enforced:
    - 0 <= total_delivered <= ordered_qty.  Each increment is one
      conditional UPDATE (``... WHERE total_delivered + q <= ordered_qty``)
      so two concurrent deliveries can never both push a line over; the
      CHECK constraint on the table backs it up.
    - total_delivered only grows.
    - status is CLOSED iff every line is fully delivered.  Closure is
      one-way: deliveries against a CLOSED order are refused.
    - Under the all-or-nothing policy a submission is applied entirely or
      not at all.  Under the partial policy at least one line must apply.

Failure modes:
    - PurchaseOrderNotFoundError, InvalidTransitionError (order closed).
    - DeliveryRejectedError carrying every per-line failure
      (PurchaseOrderItemNotFoundError, InvalidQuantityError,
      OverDeliveryError) when the submission is refused as a whole.  When
      every failing line over-delivered it is an OverDeliveryRejectedError,
      which callers can also catch as OverDeliveryError.

Audit relevance:
    DELIVERY_RECORDED for every stored delivery, and PURCHASE_ORDER_CLOSED
    when it completes the order.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from procurement_kernel.domain.authority import Actor, Permission, require_permission
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.dtos import (
    DeliveryLineRejection,
    DeliveryLineResult,
    DeliveryLineSpec,
    DeliveryOutcome,
)
from procurement_kernel.domain.policy import DeliveryPolicy, EnginePolicy
from procurement_kernel.domain.status import DeliveryCondition, PurchaseOrderStatus
from procurement_kernel.domain.values import positive_quantity, remaining
from procurement_kernel.exceptions import (
    DeliveryRejectedError,
    InvalidTransitionError,
    OverDeliveryError,
    ProcurementError,
    PurchaseOrderItemNotFoundError,
    PurchaseOrderNotFoundError,
    ValidationError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.models.audit_entry import AuditAction
from procurement_kernel.models.delivery import DeliveryItemModel, DeliveryModel
from procurement_kernel.models.purchase_order import PurchaseOrderItemModel, PurchaseOrderModel
from procurement_kernel.services.audit_log import AuditLog

logger = get_logger("services.delivery_reconciler")

PURCHASE_ORDER_ENTITY = "PurchaseOrder"


class DeliveryReconciler:
    """
    Delivery intake for purchase orders.

    The delivery policy comes from the EnginePolicy and may be overridden
    per call.
    """

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

    def record_delivery(
        self,
        actor: Actor,
        po_id: UUID,
        lines: list[DeliveryLineSpec] | tuple[DeliveryLineSpec, ...],
        *,
        received_by: UUID | None = None,
        delivered_at: datetime | None = None,
        notes: str | None = None,
        policy: DeliveryPolicy | str | None = None,
    ) -> DeliveryOutcome:
        """
        Record one delivery event.

        Args:
            received_by: Who signed for the goods; defaults to the actor.
            delivered_at: When the goods arrived; defaults to now.
            policy: Overrides the configured delivery policy for this call.

        Returns:
            DeliveryOutcome with the accepted lines (and, under the partial
            policy, the rejected ones).

        Raises:
            DeliveryRejectedError: Nothing was recorded.  Also an
                OverDeliveryError when every failing line over-delivered.
        """
        require_permission(self._policy.role_permissions, actor, Permission.DELIVERY_RECORD)
        effective_policy = (
            DeliveryPolicy(policy) if policy is not None else self._policy.delivery_policy
        )

        with LogContext.bind(actor_id=actor.actor_id, purchase_order_id=po_id):
            try:
                if not lines:
                    raise ValidationError("a delivery needs at least one line")

                order = self._lock_order(po_id)
                if order.status == PurchaseOrderStatus.CLOSED.value:
                    raise InvalidTransitionError(
                        PURCHASE_ORDER_ENTITY, str(po_id), order.status, "record_delivery",
                    )

                now = self._clock.now()
                order_lines = {line.id: line for line in order.items}
                applied: list[tuple[DeliveryLineSpec, DeliveryCondition, DeliveryLineResult]] = []
                rejected: list[DeliveryLineRejection] = []

                for index, spec in enumerate(lines):
                    try:
                        condition, result = self._apply_line(
                            spec, order_lines, actor, now,
                        )
                    except ProcurementError as exc:
                        logger.warning(
                            "delivery_line_rejected",
                            extra={
                                "line_index": index,
                                "po_item_id": str(spec.po_item_id),
                                "error_code": exc.code,
                            },
                        )
                        rejected.append(DeliveryLineRejection(index, spec.po_item_id, exc))
                        continue
                    applied.append((spec, condition, result))

                if rejected and (
                    effective_policy is DeliveryPolicy.ALL_OR_NOTHING or not applied
                ):
                    self._session.rollback()
                    logger.warning(
                        "delivery_rejected",
                        extra={
                            "policy": effective_policy.value,
                            "failed_lines": len(rejected),
                            "accepted_lines": len(applied),
                        },
                    )
                    raise DeliveryRejectedError.from_failures(
                        str(po_id), tuple(r.error for r in rejected),
                    )

                delivery = DeliveryModel(
                    id=uuid4(),
                    purchase_order_id=order.id,
                    received_by_id=received_by or actor.actor_id,
                    delivered_at=delivered_at or now,
                    notes=notes,
                    recorded_by_id=actor.actor_id,
                    recorded_at=now,
                    items=[
                        DeliveryItemModel(
                            id=uuid4(),
                            purchase_order_item_id=spec.po_item_id,
                            quantity_delivered=result.quantity_delivered,
                            condition=condition.value,
                            notes=spec.notes,
                        )
                        for spec, condition, result in applied
                    ],
                )
                self._session.add(delivery)
                self._session.flush()

                fresh_lines = self._reload_lines(order.id)
                self._audit.append(
                    PURCHASE_ORDER_ENTITY,
                    order.id,
                    AuditAction.DELIVERY_RECORDED,
                    actor.actor_id,
                    aggregate_id=order.id,
                    comment=notes,
                    status_snapshot=order.status,
                    payload={
                        "delivery_id": delivery.id,
                        "received_by_id": delivery.received_by_id,
                        "delivered_at": delivery.delivered_at,
                        "lines": [
                            {
                                "po_item_id": result.po_item_id,
                                "quantity_delivered": result.quantity_delivered,
                                "total_delivered": result.total_delivered,
                                "ordered_qty": result.ordered_qty,
                                "condition": condition.value,
                            }
                            for _, condition, result in applied
                        ],
                        "rejected_lines": [r.line_index for r in rejected],
                    },
                )

                closed = all(line.total_delivered == line.ordered_qty for line in fresh_lines)
                if closed:
                    order.status = PurchaseOrderStatus.CLOSED.value
                    order.closed_at = now
                    order.updated_by_id = actor.actor_id
                    order.updated_at = now
                    self._session.flush()
                    self._audit.append(
                        PURCHASE_ORDER_ENTITY,
                        order.id,
                        AuditAction.PURCHASE_ORDER_CLOSED,
                        actor.actor_id,
                        aggregate_id=order.id,
                        status_snapshot=order.status,
                        payload={
                            "po_number": order.po_number,
                            "delivery_id": delivery.id,
                        },
                    )

                self._session.commit()
                logger.info(
                    "delivery_recorded",
                    extra={
                        "delivery_id": str(delivery.id),
                        "accepted_lines": len(applied),
                        "rejected_lines": len(rejected),
                        "po_status": order.status,
                    },
                )
                if closed:
                    logger.info("purchase_order_closed", extra={"po_number": order.po_number})

                return DeliveryOutcome(
                    purchase_order_id=order.id,
                    po_status=PurchaseOrderStatus(order.status),
                    delivery=delivery.to_dto(),
                    accepted=tuple(result for _, _, result in applied),
                    rejected=tuple(rejected),
                    closed=closed,
                )

            except Exception:
                self._session.rollback()
                raise

    def _lock_order(self, po_id: UUID) -> PurchaseOrderModel:
        order = self._session.execute(
            select(PurchaseOrderModel)
            .where(PurchaseOrderModel.id == po_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise PurchaseOrderNotFoundError(str(po_id))
        return order

    def _reload_lines(self, po_id: UUID) -> list[PurchaseOrderItemModel]:
        return list(
            self._session.execute(
                select(PurchaseOrderItemModel)
                .where(PurchaseOrderItemModel.purchase_order_id == po_id)
                .execution_options(populate_existing=True)
            ).scalars().all()
        )

    def _apply_line(
        self,
        spec: DeliveryLineSpec,
        order_lines: dict[UUID, PurchaseOrderItemModel],
        actor: Actor,
        now: datetime,
    ) -> tuple[DeliveryCondition, DeliveryLineResult]:
        """
        Validate one line and increment its delivered total.

        Raises a ProcurementError for the caller to collect; the line's
        row is only changed if the increment fits.
        """
        line = order_lines.get(spec.po_item_id)
        if line is None:
            raise PurchaseOrderItemNotFoundError(str(spec.po_item_id))

        quantity = positive_quantity(spec.quantity_delivered, "quantity_delivered")
        try:
            condition = DeliveryCondition(spec.condition)
        except ValueError:
            raise ValidationError(f"unknown delivery condition: {spec.condition!r}") from None

        result = self._session.execute(
            update(PurchaseOrderItemModel)
            .where(
                PurchaseOrderItemModel.id == line.id,
                PurchaseOrderItemModel.total_delivered + quantity
                <= PurchaseOrderItemModel.ordered_qty,
            )
            .values(
                total_delivered=PurchaseOrderItemModel.total_delivered + quantity,
                updated_by_id=actor.actor_id,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        delivered, ordered = self._session.execute(
            select(PurchaseOrderItemModel.total_delivered, PurchaseOrderItemModel.ordered_qty)
            .where(PurchaseOrderItemModel.id == line.id)
        ).one()

        if result.rowcount == 0:
            raise OverDeliveryError(str(line.id), quantity, remaining(ordered, delivered))

        return condition, DeliveryLineResult(
            po_item_id=line.id,
            quantity_delivered=quantity,
            total_delivered=delivered,
            ordered_qty=ordered,
        )
