"""
Module: procurement_kernel.selectors.request_selector
Responsibility: Read models over requests: single lookups, project listings,
    the reviewer queue, items ready to be ordered, and per-item fulfillment.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only; returns DTOs.
    - Fulfillment is derived from purchase order lines at read time; no
      fulfillment state is stored on request items.
"""

from uuid import UUID

from sqlalchemy import case, exists, select

from procurement_kernel.domain.dtos import ClaimableItem, ItemFulfillment, RequestView
from procurement_kernel.domain.status import (
    ItemStatus,
    Priority,
    RequestStatus,
    ResourceType,
    fulfillment_status,
)
from procurement_kernel.domain.values import ZERO
from procurement_kernel.exceptions import RequestNotFoundError
from procurement_kernel.models.purchase_order import PurchaseOrderItemModel
from procurement_kernel.models.request import RequestItemModel, RequestModel
from procurement_kernel.selectors.base import BaseSelector


class RequestSelector(BaseSelector[RequestModel]):
    """Queries over procurement requests."""

    def _get_model(self, request_id: UUID) -> RequestModel:
        request = self.session.execute(
            select(RequestModel)
            .where(RequestModel.id == request_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return request

    def get(self, request_id: UUID) -> RequestView:
        return self._get_model(request_id).to_dto()

    def list_for_project(
        self,
        project_id: UUID,
        status: RequestStatus | None = None,
    ) -> tuple[RequestView, ...]:
        """Requests of a project, oldest first, optionally by aggregate status."""
        stmt = select(RequestModel).where(RequestModel.project_id == project_id)
        if status is not None:
            stmt = stmt.where(RequestModel.status == RequestStatus(status).value)
        stmt = stmt.order_by(RequestModel.created_at, RequestModel.reference_code)
        rows = self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def review_queue(self, project_id: UUID | None = None) -> tuple[RequestView, ...]:
        """
        Submitted requests that still have at least one PENDING item.

        Emergency (HIGH priority) requests come first, then the oldest
        submission.
        """
        has_pending = exists().where(
            RequestItemModel.request_id == RequestModel.id,
            RequestItemModel.status == ItemStatus.PENDING.value,
        )
        urgency = case((RequestModel.priority == Priority.HIGH.value, 0), else_=1)

        stmt = select(RequestModel).where(
            RequestModel.submitted_at.is_not(None),
            has_pending,
        )
        if project_id is not None:
            stmt = stmt.where(RequestModel.project_id == project_id)
        stmt = stmt.order_by(urgency, RequestModel.submitted_at, RequestModel.reference_code)

        rows = self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def claimable_items(self, project_id: UUID) -> tuple[ClaimableItem, ...]:
        """APPROVED items of the project that no purchase order line claims."""
        stmt = (
            select(RequestItemModel, RequestModel.reference_code)
            .join(RequestModel, RequestItemModel.request_id == RequestModel.id)
            .outerjoin(
                PurchaseOrderItemModel,
                PurchaseOrderItemModel.request_item_id == RequestItemModel.id,
            )
            .where(
                RequestModel.project_id == project_id,
                RequestItemModel.status == ItemStatus.APPROVED.value,
                PurchaseOrderItemModel.id.is_(None),
            )
            .order_by(RequestModel.created_at, RequestModel.reference_code, RequestItemModel.line_number)
        )
        return tuple(
            ClaimableItem(
                request_id=item.request_id,
                reference_code=reference_code,
                request_item_id=item.id,
                resource_type=ResourceType(item.resource_type),
                name=item.name,
                quantity=item.quantity,
                unit=item.unit,
                rate_estimate=item.rate_estimate,
            )
            for item, reference_code in self.session.execute(stmt).all()
        )

    def fulfillment(self, request_id: UUID) -> tuple[ItemFulfillment, ...]:
        """Requested, ordered and delivered quantities for every item."""
        request = self._get_model(request_id)
        item_ids = [item.id for item in request.items]

        lines = {}
        if item_ids:
            rows = self.session.execute(
                select(PurchaseOrderItemModel)
                .where(PurchaseOrderItemModel.request_item_id.in_(item_ids))
                .execution_options(populate_existing=True)
            ).scalars().all()
            lines = {row.request_item_id: row for row in rows}

        result = []
        for item in request.items:
            line = lines.get(item.id)
            ordered = line.ordered_qty if line else ZERO
            delivered = line.total_delivered if line else ZERO
            result.append(
                ItemFulfillment(
                    request_item_id=item.id,
                    name=item.name,
                    requested_qty=item.quantity,
                    ordered_qty=ordered,
                    delivered_qty=delivered,
                    status=fulfillment_status(item.quantity, ordered, delivered),
                )
            )
        return tuple(result)
