"""
Module: procurement_kernel.selectors.purchase_order_selector
Responsibility: Read models over purchase orders and their deliveries.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import select

from procurement_kernel.domain.dtos import DeliveryView, PurchaseOrderView
from procurement_kernel.domain.status import PurchaseOrderStatus
from procurement_kernel.exceptions import PurchaseOrderNotFoundError
from procurement_kernel.models.delivery import DeliveryModel
from procurement_kernel.models.purchase_order import PurchaseOrderModel
from procurement_kernel.selectors.base import BaseSelector


class PurchaseOrderSelector(BaseSelector[PurchaseOrderModel]):
    """Queries over purchase orders."""

    def _get_model(self, po_id: UUID) -> PurchaseOrderModel:
        order = self.session.execute(
            select(PurchaseOrderModel)
            .where(PurchaseOrderModel.id == po_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise PurchaseOrderNotFoundError(str(po_id))
        return order

    def get(self, po_id: UUID) -> PurchaseOrderView:
        return self._get_model(po_id).to_dto()

    def list_for_project(
        self,
        project_id: UUID,
        status: PurchaseOrderStatus | None = None,
    ) -> tuple[PurchaseOrderView, ...]:
        stmt = select(PurchaseOrderModel).where(PurchaseOrderModel.project_id == project_id)
        if status is not None:
            stmt = stmt.where(PurchaseOrderModel.status == PurchaseOrderStatus(status).value)
        stmt = stmt.order_by(PurchaseOrderModel.created_at, PurchaseOrderModel.po_number)
        rows = self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def deliveries(self, po_id: UUID) -> tuple[DeliveryView, ...]:
        """Every delivery against the order, in delivery order."""
        self._get_model(po_id)
        rows = self.session.execute(
            select(DeliveryModel)
            .where(DeliveryModel.purchase_order_id == po_id)
            .order_by(DeliveryModel.delivered_at, DeliveryModel.recorded_at)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)
