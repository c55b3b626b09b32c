"""Services for the procurement kernel (write side)."""

from procurement_kernel.services.audit_log import AuditLog
from procurement_kernel.services.delivery_reconciler import DeliveryReconciler
from procurement_kernel.services.purchase_order_assembler import PurchaseOrderAssembler
from procurement_kernel.services.request_lifecycle import RequestLifecycleService
from procurement_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "AuditLog",
    "DeliveryReconciler",
    "PurchaseOrderAssembler",
    "RequestLifecycleService",
    "SequenceCounter",
    "SequenceService",
]
