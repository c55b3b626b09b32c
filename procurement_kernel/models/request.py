"""
Module: procurement_kernel.models.request
Responsibility: ORM persistence for requests (Bills of Quantities) and their
    line items.
Architecture position: Kernel > Models.  May import from db/ and the pure
    domain vocabulary (domain/status.py, domain/dtos.py).

Invariants enforced:
    - total_estimate == line_total(quantity, rate_estimate); the lifecycle
      service writes all three together, never one alone.
    - quantity > 0 and rate_estimate >= 0 (CHECK constraints).
    - reference_code is unique; (request_id, line_number) is unique.
    - status and total_value on the request are caches of
      domain.status.aggregate() and the sum of item estimates.

Failure modes:
    - IntegrityError on CHECK or UNIQUE violation.

Audit relevance:
    Every change to these rows is paired with an AuditEntry in the same
    transaction (services/request_lifecycle.py).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase, UUIDString
from procurement_kernel.db.types import Label, Money, Quantity, ShortCode
from procurement_kernel.domain.dtos import RequestItemView, RequestView
from procurement_kernel.domain.status import (
    ItemStatus,
    Priority,
    RequestStatus,
    ResourceType,
)


class RequestModel(TrackedBase):
    """
    A procurement request: header plus an ordered list of items.

    Guarantees:
        - revision_number starts at 1 and grows by one per item resubmission.
        - submitted_at is null exactly while status is DRAFT.
    """

    __tablename__ = "procurement_requests"

    __table_args__ = (
        UniqueConstraint("reference_code", name="uq_request_reference_code"),
        Index("idx_request_project", "project_id"),
        Index("idx_request_status", "status"),
        CheckConstraint("revision_number >= 1", name="ck_request_revision_positive"),
    )

    reference_code: Mapped[ShortCode]
    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    site_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    title: Mapped[Label]
    priority: Mapped[ShortCode] = mapped_column(default=Priority.NORMAL.value)
    status: Mapped[ShortCode] = mapped_column(default=RequestStatus.DRAFT.value)
    revision_number: Mapped[int] = mapped_column(nullable=False, default=1)
    total_value: Mapped[Money] = mapped_column(default=Decimal("0"))
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    planned_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    planned_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    additional_details: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    is_duplicate_flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    duplicate_explanation: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    items: Mapped[list["RequestItemModel"]] = relationship(
        "RequestItemModel",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestItemModel.line_number",
        lazy="selectin",
    )

    @property
    def is_submitted(self) -> bool:
        return self.submitted_at is not None

    def to_dto(self) -> RequestView:
        return RequestView(
            id=self.id,
            reference_code=self.reference_code,
            project_id=self.project_id,
            site_id=self.site_id,
            title=self.title,
            priority=Priority(self.priority),
            status=RequestStatus(self.status),
            revision_number=self.revision_number,
            total_value=self.total_value,
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            submitted_at=self.submitted_at,
            planned_start=self.planned_start,
            planned_end=self.planned_end,
            additional_details=self.additional_details,
            is_duplicate_flagged=self.is_duplicate_flagged,
            duplicate_explanation=self.duplicate_explanation,
            items=tuple(item.to_dto() for item in self.items),
        )

    def __repr__(self) -> str:
        return f"<RequestModel {self.reference_code} [{self.status}]>"


class RequestItemModel(TrackedBase):
    """
    One line of a request.

    Guarantees:
        - Belongs to exactly one RequestModel.
        - rejection_comment is set only while status is REJECTED.
    """

    __tablename__ = "procurement_request_items"

    __table_args__ = (
        UniqueConstraint("request_id", "line_number", name="uq_request_item_line"),
        Index("idx_request_item_request", "request_id"),
        Index("idx_request_item_status", "status"),
        CheckConstraint("quantity > 0", name="ck_request_item_quantity_positive"),
        CheckConstraint("rate_estimate >= 0", name="ck_request_item_rate_non_negative"),
    )

    request_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_requests.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    resource_type: Mapped[ShortCode] = mapped_column(default=ResourceType.MATERIAL.value)
    name: Mapped[Label]
    quantity: Mapped[Quantity]
    unit: Mapped[str] = mapped_column(String(50), nullable=False)
    rate_estimate: Mapped[Money]
    total_estimate: Mapped[Money]
    status: Mapped[ShortCode] = mapped_column(default=ItemStatus.PENDING.value)
    rejection_comment: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    revision_count: Mapped[int] = mapped_column(nullable=False, default=0)
    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    request: Mapped["RequestModel"] = relationship(
        "RequestModel",
        back_populates="items",
    )

    def to_dto(self) -> RequestItemView:
        return RequestItemView(
            id=self.id,
            request_id=self.request_id,
            line_number=self.line_number,
            resource_type=ResourceType(self.resource_type),
            name=self.name,
            quantity=self.quantity,
            unit=self.unit,
            rate_estimate=self.rate_estimate,
            total_estimate=self.total_estimate,
            status=ItemStatus(self.status),
            rejection_comment=self.rejection_comment,
            revision_count=self.revision_count,
            decided_by_id=self.decided_by_id,
            decided_at=self.decided_at,
        )

    def __repr__(self) -> str:
        return f"<RequestItemModel {self.line_number}:{self.name} [{self.status}]>"
