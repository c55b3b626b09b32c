"""
Module: procurement_kernel.models.audit_entry
Responsibility: ORM persistence for the append-only, hash-chained audit log.
Architecture position: Kernel > Models.  May import from db/ and domain/dtos.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listeners in db/immutability.py).
    - seq is globally unique and monotonic, allocated by SequenceService.
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
      Validated by AuditLog.validate_chain().

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a mismatch.

Audit relevance:
    This IS the audit trail.  Every request, item, purchase order and
    delivery transition writes exactly one entry (plus a request-level
    APPROVED/REJECTED entry when a decision settles the whole request).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base, UUIDString
from procurement_kernel.db.types import PayloadHash, Sequence, ShortCode
from procurement_kernel.domain.dtos import AuditEntryView


class AuditAction(str, Enum):
    """Recorded transitions."""

    # Request lifecycle
    CREATED = "created"
    UPDATED = "updated"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"

    # Item lifecycle
    MATERIAL_APPROVED = "material_approved"
    MATERIAL_REJECTED = "material_rejected"
    RESUBMITTED = "resubmitted"

    # Purchase order lifecycle
    PURCHASE_ORDER_CREATED = "purchase_order_created"
    DELIVERY_RECORDED = "delivery_recorded"
    PURCHASE_ORDER_CLOSED = "purchase_order_closed"


class AuditEntryModel(Base):
    """
    One immutable audit record.

    ``aggregate_id`` names the Request or PurchaseOrder the entry belongs to,
    so item-level entries are returned with their request's history.
    """

    __tablename__ = "procurement_audit_entries"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_aggregate", "aggregate_id"),
        Index("idx_audit_occurred", "occurred_at", "seq"),
    )

    seq: Mapped[Sequence] = mapped_column(unique=True)
    entity_type: Mapped[ShortCode]
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    aggregate_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[ShortCode]
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    comment: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    status_snapshot: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[PayloadHash]
    # Null only for the first entry ever written
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[PayloadHash]

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None

    def to_dto(self) -> AuditEntryView:
        return AuditEntryView(
            seq=self.seq,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            aggregate_id=self.aggregate_id,
            action=self.action,
            actor_id=self.actor_id,
            occurred_at=self.occurred_at,
            comment=self.comment,
            status_snapshot=self.status_snapshot,
            payload=dict(self.payload or {}),
            hash=self.hash,
        )

    def __repr__(self) -> str:
        return f"<AuditEntryModel #{self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"
