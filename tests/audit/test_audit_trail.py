"""
Audit trail tests.

Every state-changing operation appends exactly the expected entries in
its own transaction; failed operations append none; the hash chain
validates after any sequence of operations and breaks on tampering.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select, text

from procurement_kernel.domain.dtos import (
    DeliveryLineSpec,
    ItemRevision,
    ItemSpec,
    PurchaseOrderSelection,
)
from procurement_kernel.domain.status import Decision
from procurement_kernel.exceptions import (
    AuditChainBrokenError,
    ItemAlreadyDecidedError,
    OverOrderError,
    RejectionCommentRequiredError,
)
from procurement_kernel.models.audit_entry import AuditAction, AuditEntryModel


def audit_count(session) -> int:
    return session.execute(select(func.count()).select_from(AuditEntryModel)).scalar_one()


class TestRequestHistory:

    def test_full_request_history(
        self, submitted_request, lifecycle, manager, engineer, audit_log,
    ):
        view = submitted_request()
        m1, m2 = view.items
        lifecycle.decide_item(manager, view.id, m1.id, Decision.APPROVED)
        lifecycle.decide_item(manager, view.id, m2.id, Decision.REJECTED, comment="too costly")
        lifecycle.resubmit_item(engineer, view.id, m2.id, ItemRevision(rate_estimate=150))
        lifecycle.decide_item(manager, view.id, m2.id, Decision.APPROVED)

        trail = audit_log.history(view.id)
        assert trail.actions == (
            AuditAction.CREATED.value,
            AuditAction.SUBMITTED.value,
            AuditAction.MATERIAL_APPROVED.value,
            AuditAction.MATERIAL_REJECTED.value,
            AuditAction.RESUBMITTED.value,
            AuditAction.MATERIAL_APPROVED.value,
            AuditAction.APPROVED.value,
        )
        rejection = trail.entries[3]
        assert rejection.comment == "too costly"
        assert rejection.entity_type == "RequestItem"
        assert rejection.entity_id == m2.id
        assert rejection.actor_id == manager.actor_id
        assert rejection.status_snapshot == "partially_approved"
        assert trail.last_action == "approved"

    def test_item_history(self, submitted_request, lifecycle, manager, audit_log):
        view = submitted_request()
        item_id = view.items[0].id
        lifecycle.decide_item(manager, view.id, item_id, Decision.APPROVED)
        trail = audit_log.entity_history("RequestItem", item_id)
        assert trail.actions == ("material_approved",)

    def test_all_rejected_appends_request_rejection(
        self, submitted_request, lifecycle, manager, audit_log,
    ):
        view = submitted_request([ItemSpec(name="Glass", quantity=2, unit="sheet", rate_estimate=900)])
        lifecycle.decide_item(manager, view.id, view.items[0].id, Decision.REJECTED, comment="spec")
        assert audit_log.history(view.id).actions[-2:] == ("material_rejected", "rejected")

    def test_draft_edits_are_updates(self, lifecycle, engineer, project_id, audit_log):
        view = lifecycle.create_request(engineer, project_id, "Doors")
        view = lifecycle.add_item(
            engineer, view.id, ItemSpec(name="Flush door", quantity=4, unit="nos", rate_estimate=4200),
        )
        lifecycle.remove_item(engineer, view.id, view.items[0].id)
        trail = audit_log.history(view.id)
        assert trail.actions == ("created", "updated", "updated")
        assert [e.payload.get("change") for e in trail.entries[1:]] == [
            "item_added", "item_removed",
        ]


class TestPurchaseOrderHistory:

    def test_order_and_delivery_history(
        self, open_purchase_order, reconciler, engineer, audit_log,
    ):
        po = open_purchase_order()
        reconciler.record_delivery(
            engineer, po.id, [DeliveryLineSpec(line.id, line.ordered_qty) for line in po.items],
        )
        trail = audit_log.history(po.id)
        assert trail.actions == (
            "purchase_order_created",
            "delivery_recorded",
            "purchase_order_closed",
        )
        created = trail.entries[0]
        assert created.payload["po_number"] == po.po_number
        assert len(created.payload["lines"]) == 2
        assert created.payload["lines"][0]["ordered_qty"] == "10"


class TestFailedOperationsLeaveNoTrace:

    def test_rejection_without_comment(self, submitted_request, lifecycle, manager, session):
        view = submitted_request()
        before = audit_count(session)
        with pytest.raises(RejectionCommentRequiredError):
            lifecycle.decide_item(manager, view.id, view.items[0].id, Decision.REJECTED)
        assert audit_count(session) == before

    def test_lost_decision(self, submitted_request, lifecycle, manager, second_manager, session):
        view = submitted_request()
        lifecycle.decide_item(manager, view.id, view.items[0].id, Decision.APPROVED)
        before = audit_count(session)
        with pytest.raises(ItemAlreadyDecidedError):
            lifecycle.decide_item(second_manager, view.id, view.items[0].id, Decision.APPROVED)
        assert audit_count(session) == before

    def test_over_order(self, approved_request, assembler, accountant, project_id, session):
        request = approved_request()
        before = audit_count(session)
        with pytest.raises(OverOrderError):
            assembler.create_purchase_order(
                accountant, project_id,
                [PurchaseOrderSelection(request.items[0].id, ordered_qty=999)],
            )
        assert audit_count(session) == before


class TestHashChain:

    def test_empty_chain_is_valid(self, audit_log):
        assert audit_log.validate_chain() is True

    def test_chain_valid_after_workflow(
        self, open_purchase_order, reconciler, engineer, audit_log, session,
    ):
        po = open_purchase_order()
        reconciler.record_delivery(engineer, po.id, [DeliveryLineSpec(po.items[0].id, 3)])
        assert audit_log.validate_chain() is True

        entries = session.execute(
            select(AuditEntryModel).order_by(AuditEntryModel.seq)
        ).scalars().all()
        assert entries[0].prev_hash is None
        for previous, current in zip(entries, entries[1:]):
            assert current.prev_hash == previous.hash
            assert current.seq == previous.seq + 1

    def test_tampered_comment_is_detected(
        self, submitted_request, lifecycle, manager, audit_log, session,
    ):
        view = submitted_request()
        lifecycle.decide_item(manager, view.id, view.items[0].id, Decision.REJECTED, comment="no")
        session.execute(
            text("UPDATE procurement_audit_entries SET comment = 'yes' WHERE comment = 'no'")
        )
        session.commit()
        with pytest.raises(AuditChainBrokenError):
            audit_log.validate_chain()

    def test_tampered_payload_is_detected(self, submitted_request, audit_log, session):
        submitted_request()
        session.execute(
            text("UPDATE procurement_audit_entries SET payload = :p WHERE seq = 1"),
            {"p": '{"title": "forged"}'},
        )
        session.commit()
        with pytest.raises(AuditChainBrokenError):
            audit_log.validate_chain()

    def test_deleted_entry_is_detected(self, submitted_request, audit_log, session):
        submitted_request()
        submitted_request()
        session.execute(text("DELETE FROM procurement_audit_entries WHERE seq = 2"))
        session.commit()
        with pytest.raises(AuditChainBrokenError):
            audit_log.validate_chain()

    def test_break_is_logged_as_critical(
        self, submitted_request, audit_log, session, captured_logs,
    ):
        submitted_request()
        session.execute(text("UPDATE procurement_audit_entries SET action = 'approved' WHERE seq = 1"))
        session.commit()
        with pytest.raises(AuditChainBrokenError):
            audit_log.validate_chain()
        assert any(
            r["message"] == "audit_chain_broken" and r["level"] == "CRITICAL"
            for r in captured_logs()
        )

    def test_unknown_aggregate_has_empty_history(self, audit_log):
        assert audit_log.history(uuid4()).is_empty
