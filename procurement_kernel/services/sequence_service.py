"""
SequenceService: monotonic sequence allocation via locked counter rows.

Responsibility:
    Hands out strictly increasing integers for audit entry ordering and
    for the human-readable reference codes of requests (BOQ-2024-001) and
    purchase orders (PO-2024-0001).  One counter row per sequence name,
    read with ``SELECT ... FOR UPDATE``.

Architecture position:
    Kernel > Services.  Called by AuditLog, RequestLifecycleService and
    PurchaseOrderAssembler.  Flushes, never commits.

Invariants enforced:
    - No max(seq)+1 queries: the locked counter row is the only source of
      the next value.
    - The increment is visible only once the caller commits; a rollback
      returns the value.

Failure modes:
    - IntegrityError when two transactions create the same counter row at
      once.  Handled with a savepoint rollback and a locked re-read.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from procurement_kernel.db.base import Base
from procurement_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """One named counter.  Row-level locking keeps it monotonic."""

    __tablename__ = "procurement_sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Transactional sequence numbers.

    Usage:
        seq = SequenceService(session).next_value(SequenceService.AUDIT_ENTRY)
        # committed with the caller's transaction, returned on rollback
    """

    AUDIT_ENTRY = "audit_entry"

    # Reference code kinds: (prefix, zero-padded width)
    REQUEST_REFERENCE = ("BOQ", 3)
    PURCHASE_ORDER_REFERENCE = ("PO", 4)

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use), increment it and
        return the new value.

        Returns:
            An integer > 0, strictly greater than any value previously
            returned for ``sequence_name`` in a committed transaction.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use.  Another transaction may be creating the same row,
            # so insert under a savepoint and fall back to a locked re-read.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def next_reference(self, kind: tuple[str, int], year: int) -> str:
        """
        Allocate the next reference code of ``kind`` for ``year``.

        Counters are per prefix and per year, so numbering restarts each
        January: BOQ-2024-001, BOQ-2024-002, ..., BOQ-2025-001.
        """
        prefix, width = kind
        value = self.next_value(f"{prefix.lower()}_{year}")
        return f"{prefix}-{year}-{value:0{width}d}"
