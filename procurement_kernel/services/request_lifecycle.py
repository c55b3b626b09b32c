"""
RequestLifecycleService: drafting, submission, per-item review and
resubmission of procurement requests.

Responsibility:
    Owns every write to RequestModel and RequestItemModel.  Each public
    method checks the actor's permission, performs one read-check-write,
    appends its audit entries, and commits; any exception rolls the whole
    operation back.

Architecture position:
    Kernel > Services.  Composes AuditLog and SequenceService and calls
    the pure aggregator in domain/status.py.  Transaction owner: commits
    on success, rolls back on failure.

Invariants enforced:
    - Item status changes are compare-and-swap UPDATEs keyed by the
      expected current status; a lost race affects zero rows and surfaces
      as ItemAlreadyDecidedError or InvalidTransitionError.
    - A decision or resubmission writes exactly one item row; siblings
      are only read.
    - Request.status is always domain.status.aggregate() of the items, and
      total_value the sum of their line totals.  Both are refreshed under
      a row lock on the request after every item change.
    - Lock order is item row, then request row.
    - total_estimate is only ever written as line_total(quantity, rate).

Failure modes:
    - UnauthorizedError before anything is read.
    - RequestNotFoundError / RequestItemNotFoundError.
    - InvalidTransitionError for edits after submission, double
      submission, decisions on drafts, resubmitting non-rejected items.
    - EmptyRequestError, RejectionCommentRequiredError,
      DuplicateExplanationRequiredError, InvalidQuantityError.
    - ItemAlreadyDecidedError when another reviewer decided first.

Audit relevance:
    CREATED, UPDATED, SUBMITTED, MATERIAL_APPROVED, MATERIAL_REJECTED,
    RESUBMITTED, plus a request-level APPROVED / REJECTED entry when a
    decision settles the whole request.  Entries are written in the same
    transaction as the change, so a rolled back operation leaves none.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from procurement_kernel.domain.authority import Actor, Permission, require_permission
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.dtos import ItemRevision, ItemSpec, RequestView
from procurement_kernel.domain.policy import EnginePolicy
from procurement_kernel.domain.status import (
    Decision,
    ItemStatus,
    Priority,
    RequestStatus,
    ResourceType,
    aggregate,
)
from procurement_kernel.domain.values import (
    line_total,
    non_negative_amount,
    positive_quantity,
    sum_totals,
)
from procurement_kernel.exceptions import (
    DuplicateExplanationRequiredError,
    EmptyRequestError,
    InvalidTransitionError,
    ItemAlreadyDecidedError,
    RejectionCommentRequiredError,
    RequestItemNotFoundError,
    RequestNotFoundError,
    ValidationError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.models.audit_entry import AuditAction
from procurement_kernel.models.request import RequestItemModel, RequestModel
from procurement_kernel.services.audit_log import AuditLog
from procurement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.request_lifecycle")

REQUEST_ENTITY = "Request"
ITEM_ENTITY = "RequestItem"


def _required_text(value: str | None, field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} must not be blank")
    return text


class RequestLifecycleService:
    """
    Request and item state machine.

    Usage:
        service = RequestLifecycleService(session, clock=clock)
        view = service.create_request(actor, project_id, "Level 2 slab", items)
        view = service.submit(actor, view.id)
        view = service.decide_item(manager, view.id, item_id, Decision.APPROVED)
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
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Drafting
    # ------------------------------------------------------------------

    def create_request(
        self,
        actor: Actor,
        project_id: UUID,
        title: str,
        items: list[ItemSpec] | tuple[ItemSpec, ...] = (),
        *,
        site_id: UUID | None = None,
        emergency: bool = False,
        planned_start: datetime | None = None,
        planned_end: datetime | None = None,
        additional_details: str | None = None,
        duplicate_flagged: bool = False,
        duplicate_explanation: str | None = None,
    ) -> RequestView:
        """
        Create a DRAFT request with a fresh BOQ reference.

        ``duplicate_flagged`` is the external duplicate check's verdict.
        When set, and the policy requires it, the explanation must not be
        blank.
        """
        require_permission(self._policy.role_permissions, actor, Permission.REQUEST_CREATE)

        with LogContext.bind(actor_id=actor.actor_id, project_id=project_id):
            try:
                title = _required_text(title, "title")
                explanation = (duplicate_explanation or "").strip() or None
                if (
                    duplicate_flagged
                    and self._policy.require_duplicate_explanation
                    and explanation is None
                ):
                    raise DuplicateExplanationRequiredError(str(project_id), title)
                if planned_start and planned_end and planned_end < planned_start:
                    raise ValidationError("planned_end must not be before planned_start")

                now = self._clock.now()
                request = RequestModel(
                    id=uuid4(),
                    reference_code=self._sequences.next_reference(
                        SequenceService.REQUEST_REFERENCE, now.year,
                    ),
                    project_id=project_id,
                    site_id=site_id,
                    title=title,
                    priority=(Priority.HIGH if emergency else Priority.NORMAL).value,
                    status=RequestStatus.DRAFT.value,
                    revision_number=1,
                    planned_start=planned_start,
                    planned_end=planned_end,
                    additional_details=additional_details,
                    is_duplicate_flagged=duplicate_flagged,
                    duplicate_explanation=explanation,
                    created_by_id=actor.actor_id,
                    created_at=now,
                    updated_at=now,
                )
                for line_number, spec in enumerate(items, start=1):
                    request.items.append(self._build_item(spec, line_number, actor, now))
                request.total_value = sum_totals(i.total_estimate for i in request.items)

                self._session.add(request)
                self._session.flush()

                self._audit.append(
                    REQUEST_ENTITY,
                    request.id,
                    AuditAction.CREATED,
                    actor.actor_id,
                    aggregate_id=request.id,
                    status_snapshot=request.status,
                    payload={
                        "reference_code": request.reference_code,
                        "title": request.title,
                        "priority": request.priority,
                        "item_count": len(request.items),
                        "total_value": request.total_value,
                        "duplicate_flagged": duplicate_flagged,
                    },
                )

                self._session.commit()
                logger.info(
                    "request_created",
                    extra={
                        "request_id": str(request.id),
                        "reference_code": request.reference_code,
                        "item_count": len(request.items),
                        "priority": request.priority,
                    },
                )
                return request.to_dto()

            except Exception:
                self._session.rollback()
                raise

    def add_item(self, actor: Actor, request_id: UUID, item: ItemSpec) -> RequestView:
        """Append a line to a DRAFT request."""
        require_permission(self._policy.role_permissions, actor, Permission.REQUEST_EDIT)

        with LogContext.bind(actor_id=actor.actor_id, request_id=request_id):
            try:
                request = self._load_request(request_id, lock=True)
                self._require_draft(request, "edit")

                now = self._clock.now()
                next_line = max((i.line_number for i in request.items), default=0) + 1
                new_item = self._build_item(item, next_line, actor, now)
                request.items.append(new_item)
                self._touch_draft(request, actor, now)
                self._session.flush()

                self._audit.append(
                    REQUEST_ENTITY,
                    request.id,
                    AuditAction.UPDATED,
                    actor.actor_id,
                    aggregate_id=request.id,
                    status_snapshot=request.status,
                    payload={
                        "change": "item_added",
                        "item_id": new_item.id,
                        "name": new_item.name,
                        "quantity": new_item.quantity,
                        "rate_estimate": new_item.rate_estimate,
                        "total_value": request.total_value,
                    },
                )

                self._session.commit()
                logger.info(
                    "request_item_added",
                    extra={"item_id": str(new_item.id), "line_number": next_line},
                )
                return request.to_dto()

            except Exception:
                self._session.rollback()
                raise

    def update_item(
        self,
        actor: Actor,
        request_id: UUID,
        item_id: UUID,
        revision: ItemRevision,
    ) -> RequestView:
        """Edit a line of a DRAFT request."""
        require_permission(self._policy.role_permissions, actor, Permission.REQUEST_EDIT)

        with LogContext.bind(actor_id=actor.actor_id, request_id=request_id):
            try:
                request = self._load_request(request_id, lock=True)
                self._require_draft(request, "edit")
                item = self._find_item(request, item_id)

                now = self._clock.now()
                before = self._item_values(item)
                values = self._revised_values(item, revision)
                item.name = values["name"]
                item.quantity = values["quantity"]
                item.unit = values["unit"]
                item.rate_estimate = values["rate_estimate"]
                item.total_estimate = values["total_estimate"]
                item.updated_by_id = actor.actor_id
                item.updated_at = now
                self._touch_draft(request, actor, now)
                self._session.flush()

                self._audit.append(
                    REQUEST_ENTITY,
                    request.id,
                    AuditAction.UPDATED,
                    actor.actor_id,
                    aggregate_id=request.id,
                    status_snapshot=request.status,
                    payload={
                        "change": "item_updated",
                        "item_id": item.id,
                        "before": before,
                        "after": self._item_values(item),
                        "total_value": request.total_value,
                    },
                )

                self._session.commit()
                logger.info("request_item_updated", extra={"item_id": str(item.id)})
                return request.to_dto()

            except Exception:
                self._session.rollback()
                raise

    def remove_item(self, actor: Actor, request_id: UUID, item_id: UUID) -> RequestView:
        """Delete a line from a DRAFT request."""
        require_permission(self._policy.role_permissions, actor, Permission.REQUEST_EDIT)

        with LogContext.bind(actor_id=actor.actor_id, request_id=request_id):
            try:
                request = self._load_request(request_id, lock=True)
                self._require_draft(request, "edit")
                item = self._find_item(request, item_id)

                now = self._clock.now()
                removed = self._item_values(item)
                request.items.remove(item)
                self._touch_draft(request, actor, now)
                self._session.flush()

                self._audit.append(
                    REQUEST_ENTITY,
                    request.id,
                    AuditAction.UPDATED,
                    actor.actor_id,
                    aggregate_id=request.id,
                    status_snapshot=request.status,
                    payload={
                        "change": "item_removed",
                        "item_id": item_id,
                        "removed": removed,
                        "total_value": request.total_value,
                    },
                )

                self._session.commit()
                logger.info("request_item_removed", extra={"item_id": str(item_id)})
                return request.to_dto()

            except Exception:
                self._session.rollback()
                raise

    # ------------------------------------------------------------------
    # Submission and review
    # ------------------------------------------------------------------

    def submit(self, actor: Actor, request_id: UUID) -> RequestView:
        """
        Send a DRAFT request for review.  Every item becomes PENDING.

        Raises:
            EmptyRequestError: The request has no items.
            InvalidTransitionError: The request was already submitted.
        """
        require_permission(self._policy.role_permissions, actor, Permission.REQUEST_SUBMIT)

        with LogContext.bind(actor_id=actor.actor_id, request_id=request_id):
            try:
                request = self._load_request(request_id, lock=True)
                self._require_draft(request, "submit")
                if not request.items:
                    raise EmptyRequestError(str(request.id))

                now = self._clock.now()
                for item in request.items:
                    item.status = ItemStatus.PENDING.value
                request.submitted_at = now
                request.status = aggregate(
                    (i.status for i in request.items), submitted=True,
                ).value
                request.updated_by_id = actor.actor_id
                request.updated_at = now
                self._session.flush()

                self._audit.append(
                    REQUEST_ENTITY,
                    request.id,
                    AuditAction.SUBMITTED,
                    actor.actor_id,
                    aggregate_id=request.id,
                    status_snapshot=request.status,
                    payload={
                        "reference_code": request.reference_code,
                        "item_count": len(request.items),
                        "total_value": request.total_value,
                    },
                )

                self._session.commit()
                logger.info(
                    "request_submitted",
                    extra={
                        "reference_code": request.reference_code,
                        "item_count": len(request.items),
                    },
                )
                return request.to_dto()

            except Exception:
                self._session.rollback()
                raise

    def decide_item(
        self,
        actor: Actor,
        request_id: UUID,
        item_id: UUID,
        decision: Decision | str,
        comment: str | None = None,
    ) -> RequestView:
        """
        Approve or reject one PENDING item.

        The item row is changed only if it is still PENDING at write time,
        so of two concurrent reviewers exactly one succeeds.

        Raises:
            RejectionCommentRequiredError: REJECTED without a comment.
            ItemAlreadyDecidedError: The item is no longer PENDING.
        """
        require_permission(self._policy.role_permissions, actor, Permission.REQUEST_DECIDE)
        decision = Decision(decision)
        action = "approve" if decision is Decision.APPROVED else "reject"

        with LogContext.bind(actor_id=actor.actor_id, request_id=request_id):
            try:
                request = self._load_request(request_id)
                if not request.is_submitted:
                    raise InvalidTransitionError(
                        REQUEST_ENTITY, str(request.id), request.status, action,
                    )
                item = self._find_item(request, item_id)

                comment = (comment or "").strip() or None
                if decision is Decision.REJECTED and comment is None:
                    raise RejectionCommentRequiredError(str(request.id), str(item.id))

                now = self._clock.now()
                result = self._session.execute(
                    update(RequestItemModel)
                    .where(
                        RequestItemModel.id == item_id,
                        RequestItemModel.request_id == request_id,
                        RequestItemModel.status == ItemStatus.PENDING.value,
                    )
                    .values(
                        status=decision.item_status.value,
                        rejection_comment=comment if decision is Decision.REJECTED else None,
                        decided_by_id=actor.actor_id,
                        decided_at=now,
                        updated_by_id=actor.actor_id,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    current = self._current_item_status(item_id)
                    logger.warning(
                        "item_decision_conflict",
                        extra={
                            "item_id": str(item_id),
                            "current_status": current,
                            "attempted_action": action,
                        },
                    )
                    raise ItemAlreadyDecidedError(
                        str(request_id), str(item_id), current, action,
                    )

                previous_status = request.status
                request = self._refresh_aggregate(request_id, actor, now)
                item = self._find_item(request, item_id)

                self._audit.append(
                    ITEM_ENTITY,
                    item.id,
                    (
                        AuditAction.MATERIAL_APPROVED
                        if decision is Decision.APPROVED
                        else AuditAction.MATERIAL_REJECTED
                    ),
                    actor.actor_id,
                    aggregate_id=request.id,
                    comment=comment,
                    status_snapshot=request.status,
                    payload={
                        "item_name": item.name,
                        "line_number": item.line_number,
                        "item_status": item.status,
                        "quantity": item.quantity,
                        "total_estimate": item.total_estimate,
                    },
                )

                settled = {
                    RequestStatus.APPROVED.value: AuditAction.APPROVED,
                    RequestStatus.REJECTED.value: AuditAction.REJECTED,
                }
                if request.status in settled and request.status != previous_status:
                    self._audit.append(
                        REQUEST_ENTITY,
                        request.id,
                        settled[request.status],
                        actor.actor_id,
                        aggregate_id=request.id,
                        status_snapshot=request.status,
                        payload={
                            "reference_code": request.reference_code,
                            "total_value": request.total_value,
                        },
                    )

                self._session.commit()
                logger.info(
                    "item_decided",
                    extra={
                        "item_id": str(item_id),
                        "decision": decision.value,
                        "request_status": request.status,
                    },
                )
                return request.to_dto()

            except Exception:
                self._session.rollback()
                raise

    def resubmit_item(
        self,
        actor: Actor,
        request_id: UUID,
        item_id: UUID,
        revision: ItemRevision,
    ) -> RequestView:
        """
        Revise a REJECTED item and send it back for review.

        Decided siblings keep their status; the request's revision number
        goes up by one.

        Raises:
            InvalidTransitionError: The item is not REJECTED (carries its
                current status).
        """
        require_permission(self._policy.role_permissions, actor, Permission.REQUEST_RESUBMIT)

        with LogContext.bind(actor_id=actor.actor_id, request_id=request_id):
            try:
                request = self._load_request(request_id)
                if not request.is_submitted:
                    raise InvalidTransitionError(
                        REQUEST_ENTITY, str(request.id), request.status, "resubmit",
                    )
                item = self._find_item(request, item_id)

                before = self._item_values(item)
                values = self._revised_values(item, revision)
                now = self._clock.now()

                result = self._session.execute(
                    update(RequestItemModel)
                    .where(
                        RequestItemModel.id == item_id,
                        RequestItemModel.request_id == request_id,
                        RequestItemModel.status == ItemStatus.REJECTED.value,
                    )
                    .values(
                        name=values["name"],
                        quantity=values["quantity"],
                        unit=values["unit"],
                        rate_estimate=values["rate_estimate"],
                        total_estimate=values["total_estimate"],
                        status=ItemStatus.PENDING.value,
                        rejection_comment=None,
                        decided_by_id=None,
                        decided_at=None,
                        revision_count=RequestItemModel.revision_count + 1,
                        updated_by_id=actor.actor_id,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    current = self._current_item_status(item_id)
                    raise InvalidTransitionError(ITEM_ENTITY, str(item_id), current, "resubmit")

                request = self._refresh_aggregate(request_id, actor, now, bump_revision=True)
                item = self._find_item(request, item_id)

                self._audit.append(
                    ITEM_ENTITY,
                    item.id,
                    AuditAction.RESUBMITTED,
                    actor.actor_id,
                    aggregate_id=request.id,
                    status_snapshot=request.status,
                    payload={
                        "before": before,
                        "after": self._item_values(item),
                        "revision_count": item.revision_count,
                        "revision_number": request.revision_number,
                    },
                )

                self._session.commit()
                logger.info(
                    "item_resubmitted",
                    extra={
                        "item_id": str(item_id),
                        "revision_number": request.revision_number,
                        "request_status": request.status,
                    },
                )
                return request.to_dto()

            except Exception:
                self._session.rollback()
                raise

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_request(self, request_id: UUID, lock: bool = False) -> RequestModel:
        stmt = select(RequestModel).where(RequestModel.id == request_id)
        if lock:
            stmt = stmt.with_for_update()
        request = self._session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return request

    def _find_item(self, request: RequestModel, item_id: UUID) -> RequestItemModel:
        for item in request.items:
            if item.id == item_id:
                return item
        raise RequestItemNotFoundError(str(item_id))

    def _current_item_status(self, item_id: UUID) -> str | None:
        return self._session.execute(
            select(RequestItemModel.status).where(RequestItemModel.id == item_id)
        ).scalar_one_or_none()

    def _require_draft(self, request: RequestModel, action: str) -> None:
        if request.status != RequestStatus.DRAFT.value:
            raise InvalidTransitionError(REQUEST_ENTITY, str(request.id), request.status, action)

    def _build_item(
        self, spec: ItemSpec, line_number: int, actor: Actor, now: datetime,
    ) -> RequestItemModel:
        quantity = positive_quantity(spec.quantity, "quantity")
        rate = non_negative_amount(spec.rate_estimate, "rate_estimate")
        return RequestItemModel(
            id=uuid4(),
            line_number=line_number,
            resource_type=ResourceType(spec.resource_type).value,
            name=_required_text(spec.name, "name"),
            quantity=quantity,
            unit=_required_text(spec.unit, "unit"),
            rate_estimate=rate,
            total_estimate=line_total(quantity, rate, "total_estimate"),
            status=ItemStatus.PENDING.value,
            revision_count=0,
            created_by_id=actor.actor_id,
            created_at=now,
            updated_at=now,
        )

    def _revised_values(self, item: RequestItemModel, revision: ItemRevision) -> dict:
        quantity = (
            positive_quantity(revision.quantity, "quantity")
            if revision.quantity is not None
            else item.quantity
        )
        rate = (
            non_negative_amount(revision.rate_estimate, "rate_estimate")
            if revision.rate_estimate is not None
            else item.rate_estimate
        )
        return {
            "name": _required_text(revision.name, "name") if revision.name is not None else item.name,
            "unit": _required_text(revision.unit, "unit") if revision.unit is not None else item.unit,
            "quantity": quantity,
            "rate_estimate": rate,
            "total_estimate": line_total(quantity, rate, "total_estimate"),
        }

    @staticmethod
    def _item_values(item: RequestItemModel) -> dict:
        return {
            "name": item.name,
            "quantity": item.quantity,
            "unit": item.unit,
            "rate_estimate": item.rate_estimate,
            "total_estimate": item.total_estimate,
        }

    def _touch_draft(self, request: RequestModel, actor: Actor, now: datetime) -> None:
        request.total_value = sum_totals(i.total_estimate for i in request.items)
        request.updated_by_id = actor.actor_id
        request.updated_at = now

    def _refresh_aggregate(
        self,
        request_id: UUID,
        actor: Actor,
        now: datetime,
        bump_revision: bool = False,
    ) -> RequestModel:
        """
        Lock the request row, re-read every item, and rewrite the cached
        status and total.
        """
        request = self._load_request(request_id, lock=True)
        items = self._session.execute(
            select(RequestItemModel)
            .where(RequestItemModel.request_id == request_id)
            .execution_options(populate_existing=True)
        ).scalars().all()

        request.status = aggregate(
            (i.status for i in items), submitted=request.is_submitted,
        ).value
        request.total_value = sum_totals(i.total_estimate for i in items)
        if bump_revision:
            request.revision_number = request.revision_number + 1
        request.updated_by_id = actor.actor_id
        request.updated_at = now
        self._session.flush()

        logger.debug(
            "request_aggregate_refreshed",
            extra={
                "request_id": str(request_id),
                "status": request.status,
                "pending": sum(1 for i in items if i.status == ItemStatus.PENDING.value),
            },
        )
        return request
