"""
Procurement Kernel

A server-owned request approval and delivery-reconciliation engine with:
- Per-item review of multi-line Bill of Quantities requests
- Revision and resubmission of rejected items without touching siblings
- Exactly-once claiming of approved items into Purchase Orders
- Over-delivery-safe reconciliation of partial deliveries
- Full auditability via a hash-chained, append-only log
"""

__version__ = "0.1.0"
