"""ORM models for the procurement kernel."""

from procurement_kernel.models.audit_entry import AuditAction, AuditEntryModel
from procurement_kernel.models.delivery import DeliveryItemModel, DeliveryModel
from procurement_kernel.models.purchase_order import (
    PurchaseOrderItemModel,
    PurchaseOrderModel,
)
from procurement_kernel.models.request import RequestItemModel, RequestModel

__all__ = [
    "AuditAction",
    "AuditEntryModel",
    "DeliveryItemModel",
    "DeliveryModel",
    "PurchaseOrderItemModel",
    "PurchaseOrderModel",
    "RequestItemModel",
    "RequestModel",
]
