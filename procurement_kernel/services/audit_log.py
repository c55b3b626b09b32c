"""
AuditLog: append-only, hash-chained history of every transition.

Responsibility:
    Writes one ``AuditEntryModel`` per recorded transition, linked to the
    previous entry by hash, and reads an aggregate's history back in
    order.  Validates the whole chain on demand.

Architecture position:
    Kernel > Services.  Called by RequestLifecycleService,
    PurchaseOrderAssembler and DeliveryReconciler inside their own
    transactions.  Flushes, never commits.

Invariants enforced:
    - seq comes from SequenceService's locked counter; holding that lock
      until commit also serializes reads of the previous hash.
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash),
      and payload_hash covers aggregate, actor, comment, status snapshot
      and payload.  Altering any stored field breaks validate_chain().
    - Entries are never updated or deleted (db/immutability.py).

Failure modes:
    - AuditChainBrokenError from validate_chain() on any mismatch.

Audit relevance:
    This IS the audit log.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.dtos import AuditTrail
from procurement_kernel.exceptions import AuditChainBrokenError
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.audit_entry import AuditAction, AuditEntryModel
from procurement_kernel.services.base import BaseService
from procurement_kernel.services.sequence_service import SequenceService
from procurement_kernel.utils.hashing import hash_audit_entry, hash_payload, to_json_safe

logger = get_logger("services.audit_log")


def _entry_body(
    aggregate_id: UUID,
    actor_id: UUID,
    comment: str | None,
    status_snapshot: str | None,
    payload: dict[str, Any] | None,
) -> dict[str, Any]:
    return {
        "aggregate_id": str(aggregate_id),
        "actor_id": str(actor_id),
        "comment": comment,
        "status_snapshot": status_snapshot,
        "payload": payload or {},
    }


class AuditLog(BaseService[AuditEntryModel]):
    """
    Append and read audit entries.

    Non-goals:
        - Does NOT call ``session.commit()``; the calling operation owns
          the transaction, so a failed operation leaves no entry behind.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        last_entry = self.session.execute(
            select(AuditEntryModel).order_by(AuditEntryModel.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last_entry.hash if last_entry else None

    def append(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        *,
        aggregate_id: UUID,
        comment: str | None = None,
        status_snapshot: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> AuditEntryModel:
        """
        Append one entry to the chain.

        ``payload`` may hold Decimals, UUIDs, enums and datetimes; it is
        stored in its canonical JSON form so the hash can be recomputed
        from the stored row.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_ENTRY)
        prev_hash = self._get_last_hash()

        stored_payload = to_json_safe(payload or {})
        payload_hash = hash_payload(
            _entry_body(aggregate_id, actor_id, comment, status_snapshot, stored_payload)
        )
        entry_hash = hash_audit_entry(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        entry = AuditEntryModel(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            aggregate_id=aggregate_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            comment=comment,
            status_snapshot=status_snapshot,
            payload=stored_payload,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=entry_hash,
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "audit_entry_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "aggregate_id": str(aggregate_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return entry

    def history(self, aggregate_id: UUID) -> AuditTrail:
        """Every entry recorded against a request or purchase order."""
        entries = self.session.execute(
            select(AuditEntryModel)
            .where(AuditEntryModel.aggregate_id == aggregate_id)
            .order_by(AuditEntryModel.occurred_at, AuditEntryModel.seq)
        ).scalars().all()
        return AuditTrail(
            subject_id=aggregate_id,
            entries=tuple(e.to_dto() for e in entries),
        )

    def entity_history(self, entity_type: str, entity_id: UUID) -> AuditTrail:
        entries = self.session.execute(
            select(AuditEntryModel)
            .where(
                AuditEntryModel.entity_type == entity_type,
                AuditEntryModel.entity_id == entity_id,
            )
            .order_by(AuditEntryModel.occurred_at, AuditEntryModel.seq)
        ).scalars().all()
        return AuditTrail(
            subject_id=entity_id,
            entries=tuple(e.to_dto() for e in entries),
        )

    def validate_chain(self) -> bool:
        """
        Recompute every payload hash and entry hash in seq order.

        Raises:
            AuditChainBrokenError: At the first entry that does not match.
        """
        entries = self.session.execute(
            select(AuditEntryModel).order_by(AuditEntryModel.seq)
        ).scalars().all()

        if not entries:
            return True

        if entries[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": entries[0].seq})
            raise AuditChainBrokenError(str(entries[0].id), "None", entries[0].prev_hash)

        previous_hash: str | None = None
        for entry in entries:
            if entry.prev_hash != previous_hash:
                logger.critical("audit_chain_broken", extra={"seq": entry.seq})
                raise AuditChainBrokenError(
                    str(entry.id), previous_hash or "None", entry.prev_hash or "None",
                )

            expected_payload_hash = hash_payload(
                _entry_body(
                    entry.aggregate_id,
                    entry.actor_id,
                    entry.comment,
                    entry.status_snapshot,
                    entry.payload,
                )
            )
            if expected_payload_hash != entry.payload_hash:
                logger.critical("audit_chain_broken", extra={"seq": entry.seq})
                raise AuditChainBrokenError(
                    str(entry.id), expected_payload_hash, entry.payload_hash,
                )

            expected_hash = hash_audit_entry(
                entity_type=entry.entity_type,
                entity_id=str(entry.entity_id),
                action=entry.action,
                payload_hash=entry.payload_hash,
                prev_hash=entry.prev_hash,
            )
            if expected_hash != entry.hash:
                logger.critical("audit_chain_broken", extra={"seq": entry.seq})
                raise AuditChainBrokenError(str(entry.id), expected_hash, entry.hash)

            previous_hash = entry.hash

        logger.info("audit_chain_valid", extra={"entry_count": len(entries)})
        return True
