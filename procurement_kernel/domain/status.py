"""
Status -- status vocabularies and the pure status derivations.

Responsibility:
    Defines every status enum of the engine and the two pure functions that
    derive one status from others:

    * ``aggregate()`` -- a request's aggregate status from its items' statuses.
    * ``fulfillment_status()`` -- how far a request item has been ordered and
      delivered.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Imported by models/,
    services/ and selectors/.

Invariants enforced:
    - The aggregate is a deterministic function of the multiset of item
      statuses; the order of items never matters.
    - ``Request.status`` is only ever written with the result of
      ``aggregate()`` (see services/request_lifecycle.py).

Failure modes:
    - ValueError from the Enum constructors on unknown stored values.
"""

from collections import Counter
from collections.abc import Iterable
from decimal import Decimal
from enum import Enum


class RequestStatus(str, Enum):
    """Aggregate status of a request."""

    DRAFT = "draft"
    PENDING = "pending"
    PARTIALLY_APPROVED = "partially_approved"
    APPROVED = "approved"
    REJECTED = "rejected"


class ItemStatus(str, Enum):
    """Review status of a single request item."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Decision(str, Enum):
    """A reviewer's verdict on one item."""

    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def item_status(self) -> ItemStatus:
        return ItemStatus(self.value)


class Priority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"


class ResourceType(str, Enum):
    MATERIAL = "material"
    LABOUR = "labour"


class PurchaseOrderStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class DeliveryCondition(str, Enum):
    """Condition of delivered goods as recorded at the site."""

    GOOD = "good"
    DAMAGED = "damaged"
    PARTIAL_DAMAGE = "partial_damage"
    OTHER = "other"


class FulfillmentStatus(str, Enum):
    """Ordering/delivery progress of one request item."""

    NOT_ORDERED = "not_ordered"
    ORDERED = "ordered"
    PARTIALLY_DELIVERED = "partially_delivered"
    DELIVERED = "delivered"


def aggregate(
    item_statuses: Iterable[ItemStatus | str],
    *,
    submitted: bool = True,
) -> RequestStatus:
    """
    Derive a request's aggregate status from its items' statuses.

    Rules:
        - never submitted                     -> DRAFT
        - every item pending                  -> PENDING
        - nothing pending, nothing rejected   -> APPROVED
        - nothing pending, nothing approved   -> REJECTED
        - any other mix (including decided items next to pending ones)
                                              -> PARTIALLY_APPROVED

    Args:
        item_statuses: Status of every item, in any order.  Plain strings
            (as stored in the database) are accepted.
        submitted: False while the request is still a draft.

    Returns:
        The aggregate RequestStatus.
    """
    if not submitted:
        return RequestStatus.DRAFT

    statuses = [ItemStatus(s) for s in item_statuses]
    counts = Counter(statuses)
    pending = counts[ItemStatus.PENDING]
    approved = counts[ItemStatus.APPROVED]
    rejected = counts[ItemStatus.REJECTED]

    if pending == len(statuses):
        return RequestStatus.PENDING
    if pending == 0 and rejected == 0:
        return RequestStatus.APPROVED
    if pending == 0 and approved == 0:
        return RequestStatus.REJECTED
    return RequestStatus.PARTIALLY_APPROVED


def fulfillment_status(
    requested: Decimal,
    ordered: Decimal,
    delivered: Decimal,
) -> FulfillmentStatus:
    """
    Classify how far a request item has progressed through ordering and
    delivery.

    An item whose purchase order line is fully delivered still counts as
    partially delivered when less was ordered than was requested.
    """
    if ordered <= 0:
        return FulfillmentStatus.NOT_ORDERED
    if delivered <= 0:
        return FulfillmentStatus.ORDERED
    if delivered < ordered or ordered < requested:
        return FulfillmentStatus.PARTIALLY_DELIVERED
    return FulfillmentStatus.DELIVERED
