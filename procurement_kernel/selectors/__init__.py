"""Selectors for the procurement kernel (read side)."""

from procurement_kernel.selectors.purchase_order_selector import PurchaseOrderSelector
from procurement_kernel.selectors.request_selector import RequestSelector

__all__ = [
    "PurchaseOrderSelector",
    "RequestSelector",
]
