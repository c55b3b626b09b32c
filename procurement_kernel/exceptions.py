"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the engine (an HTTP layer, a worker, a test) have to decide what
to do with a failure: retry with fresh state, show it to a human, or page
someone.  That decision must never depend on parsing message strings.

Every error therefore:
  1. Has its own class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA: the entity id, its current status and the
     attempted action, or the quantities that broke an invariant

Example - WRONG way:
    try:
        service.decide_item(...)
    except Exception as e:
        if "already" in str(e):
            refresh()

Example - RIGHT way:
    try:
        service.decide_item(...)
    except ItemAlreadyDecidedError as e:
        return conflict(code=e.code, item=e.entity_id, status=e.current_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProcurementError (base)
    |
    +-- ValidationError
    |   +-- EmptyRequestError
    |   +-- RejectionCommentRequiredError
    |   +-- DuplicateExplanationRequiredError
    |   +-- InvalidQuantityError
    |   +-- InvalidSelectionError
    |   +-- ProjectMismatchError
    |
    +-- NotFoundError
    |   +-- RequestNotFoundError
    |   +-- RequestItemNotFoundError
    |   +-- PurchaseOrderNotFoundError
    |   +-- PurchaseOrderItemNotFoundError
    |
    +-- InvalidTransitionError
    |
    +-- ConcurrencyConflictError
    |   +-- ItemAlreadyDecidedError
    |   +-- ItemAlreadyClaimedError
    |
    +-- QuantityError
    |   +-- OverOrderError
    |   +-- OverDeliveryError
    |
    +-- DeliveryRejectedError
    |   +-- OverDeliveryRejectedError (also an OverDeliveryError)
    |
    +-- UnauthorizedError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CONCURRENCY CONFLICTS ARE EXPECTED:

    except ConcurrencyConflictError:
        view = selector.get(request_id)   # refresh
        ...                               # let the caller decide again

2. VALIDATION AND QUANTITY ERRORS GO TO A HUMAN:

    except OverDeliveryError as e:
        return {"error": e.code, "remaining": str(e.remaining)}

3. AUDIT CHAIN ERRORS ARE CRITICAL:

    except AuditChainBrokenError:
        halt_processing()

Every failed operation has already been rolled back when the error reaches
the caller: no partial quantity increments, no orphan audit entries.
===============================================================================
"""

from decimal import Decimal


class ProcurementError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    identification.
    """

    code: str = "PROCUREMENT_ERROR"


# Validation


class ValidationError(ProcurementError):
    """Input rejected before any state was touched."""

    code: str = "VALIDATION_ERROR"


class EmptyRequestError(ValidationError):
    """A request cannot be submitted without items."""

    code: str = "EMPTY_REQUEST"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request {request_id} has no items to submit")


class RejectionCommentRequiredError(ValidationError):
    """Rejecting an item requires a non-empty comment."""

    code: str = "REJECTION_COMMENT_REQUIRED"

    def __init__(self, request_id: str, item_id: str):
        self.request_id = request_id
        self.item_id = item_id
        super().__init__(
            f"Rejecting item {item_id} of request {request_id} requires a comment"
        )


class DuplicateExplanationRequiredError(ValidationError):
    """A request flagged as a possible duplicate must explain itself."""

    code: str = "DUPLICATE_EXPLANATION_REQUIRED"

    def __init__(self, project_id: str, title: str):
        self.project_id = project_id
        self.title = title
        super().__init__(
            f"Request '{title}' in project {project_id} is flagged as a "
            "possible duplicate and needs an explanation"
        )


class InvalidQuantityError(ValidationError):
    """A quantity, rate or price is malformed or out of range."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class InvalidSelectionError(ValidationError):
    """Purchase order selections are empty or reference an item twice."""

    code: str = "INVALID_SELECTION"

    def __init__(self, reason: str, request_item_id: str | None = None):
        self.reason = reason
        self.request_item_id = request_item_id
        super().__init__(f"Invalid purchase order selection: {reason}")


class ProjectMismatchError(ValidationError):
    """A selected request item belongs to a different project."""

    code: str = "PROJECT_MISMATCH"

    def __init__(self, request_item_id: str, expected_project_id: str, actual_project_id: str):
        self.request_item_id = request_item_id
        self.expected_project_id = expected_project_id
        self.actual_project_id = actual_project_id
        super().__init__(
            f"Request item {request_item_id} belongs to project "
            f"{actual_project_id}, not {expected_project_id}"
        )


# Not found


class NotFoundError(ProcurementError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class RequestNotFoundError(NotFoundError):
    code: str = "REQUEST_NOT_FOUND"
    entity_type = "Request"


class RequestItemNotFoundError(NotFoundError):
    code: str = "REQUEST_ITEM_NOT_FOUND"
    entity_type = "RequestItem"


class PurchaseOrderNotFoundError(NotFoundError):
    code: str = "PURCHASE_ORDER_NOT_FOUND"
    entity_type = "PurchaseOrder"


class PurchaseOrderItemNotFoundError(NotFoundError):
    code: str = "PURCHASE_ORDER_ITEM_NOT_FOUND"
    entity_type = "PurchaseOrderItem"


# Transitions


class InvalidTransitionError(ProcurementError):
    """The operation is not valid for the entity's current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        attempted_action: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.attempted_action = attempted_action
        super().__init__(
            f"Cannot {attempted_action} {entity_type} {entity_id} "
            f"in status {current_status}"
        )


# Concurrency


class ConcurrencyConflictError(ProcurementError):
    """
    Lost a race to another actor.

    The caller should refresh its view of the entity and retry.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str | None,
        attempted_action: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.attempted_action = attempted_action
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id} "
            f"while attempting {attempted_action} (current status: {current_status})"
        )


class ItemAlreadyDecidedError(ConcurrencyConflictError):
    """The item is no longer PENDING; somebody else decided it first."""

    code: str = "ITEM_ALREADY_DECIDED"

    def __init__(self, request_id: str, item_id: str, current_status: str, attempted_action: str):
        self.request_id = request_id
        super().__init__("RequestItem", item_id, current_status, attempted_action)


class ItemAlreadyClaimedError(ConcurrencyConflictError):
    """The approved item is already a line on a purchase order."""

    code: str = "ITEM_ALREADY_CLAIMED"

    def __init__(self, request_item_id: str, purchase_order_id: str | None = None):
        self.purchase_order_id = purchase_order_id
        super().__init__("RequestItem", request_item_id, "approved", "claim")


# Quantities


class QuantityError(ProcurementError):
    """A quantity invariant would be violated."""

    code: str = "QUANTITY_ERROR"


class OverOrderError(QuantityError):
    """Ordered quantity exceeds the approved quantity."""

    code: str = "OVER_ORDER"

    def __init__(self, request_item_id: str, ordered_qty: Decimal, approved_qty: Decimal):
        self.request_item_id = request_item_id
        self.ordered_qty = ordered_qty
        self.approved_qty = approved_qty
        super().__init__(
            f"Cannot order {ordered_qty} of request item {request_item_id}: "
            f"only {approved_qty} approved"
        )


class OverDeliveryError(QuantityError):
    """Delivered quantity exceeds what remains to be delivered on a line."""

    code: str = "OVER_DELIVERY"

    def __init__(self, purchase_order_item_id: str, attempted_qty: Decimal, remaining: Decimal):
        self.purchase_order_item_id = purchase_order_item_id
        self.attempted_qty = attempted_qty
        self.remaining = remaining
        super().__init__(
            f"Cannot deliver {attempted_qty} on purchase order item "
            f"{purchase_order_item_id}: only {remaining} remaining"
        )


def _rejection_message(purchase_order_id: str, failures: tuple[ProcurementError, ...]) -> str:
    details = "; ".join(f"{f.code}: {f}" for f in failures)
    return (
        f"Delivery on purchase order {purchase_order_id} rejected "
        f"({len(failures)} failing line(s)): {details}"
    )


class DeliveryRejectedError(ProcurementError):
    """
    A delivery submission was rejected as a whole.

    Raised when no line could be applied, or when the all-or-nothing policy
    is in force and at least one line failed.  ``failures`` holds every
    per-line error, in submission order.  Build it with ``from_failures``
    so a rejection made only of over-deliveries is also an
    OverDeliveryError.
    """

    code: str = "DELIVERY_REJECTED"

    def __init__(self, purchase_order_id: str, failures: tuple[ProcurementError, ...]):
        self.purchase_order_id = purchase_order_id
        self.failures = failures
        super().__init__(_rejection_message(purchase_order_id, failures))

    @classmethod
    def from_failures(
        cls, purchase_order_id: str, failures: tuple[ProcurementError, ...],
    ) -> "DeliveryRejectedError":
        if failures and all(isinstance(f, OverDeliveryError) for f in failures):
            return OverDeliveryRejectedError(purchase_order_id, failures)
        return cls(purchase_order_id, failures)


class OverDeliveryRejectedError(DeliveryRejectedError, OverDeliveryError):
    """
    A rejected delivery whose every failing line was an over-delivery.

    Catchable as OverDeliveryError or DeliveryRejectedError.  The
    over-delivery fields describe the first failing line; ``failures``
    holds all of them.
    """

    code: str = "OVER_DELIVERY"

    def __init__(self, purchase_order_id: str, failures: tuple[OverDeliveryError, ...]):
        first = failures[0]
        self.purchase_order_id = purchase_order_id
        self.failures = failures
        self.purchase_order_item_id = first.purchase_order_item_id
        self.attempted_qty = first.attempted_qty
        self.remaining = first.remaining
        # Both parents' __init__ take different arguments; go straight to the base
        ProcurementError.__init__(self, _rejection_message(purchase_order_id, failures))


# Authorization


class UnauthorizedError(ProcurementError):
    """The actor's roles do not grant the required permission."""

    code: str = "UNAUTHORIZED"

    def __init__(self, actor_id: str, permission: str, reason: str):
        self.actor_id = actor_id
        self.permission = permission
        self.reason = reason
        super().__init__(f"Actor {actor_id} may not {permission}: {reason}")


# Audit


class AuditError(ProcurementError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_entry_id: str, expected_hash: str, actual_hash: str):
        self.audit_entry_id = audit_entry_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_entry_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Immutability


class ImmutabilityError(ProcurementError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Audit entries and deliveries are immutable from creation; purchase
    order lines freeze their claim, quantity and price.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
