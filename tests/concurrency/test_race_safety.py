"""
Concurrency tests: invariants under truly concurrent callers.

Each worker runs in its own thread with its own session; a Barrier lines
them up so the operations overlap as much as the database allows.  On
SQLite writers are serialized by BEGIN IMMEDIATE; on PostgreSQL
(DATABASE_URL) the row locks and conditional updates do the work.

Skip with: pytest -m "not slow_locks"
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from procurement_kernel.domain.authority import Actor, ProjectRole
from procurement_kernel.domain.dtos import DeliveryLineSpec, ItemSpec, PurchaseOrderSelection
from procurement_kernel.domain.status import Decision, ItemStatus, RequestStatus
from procurement_kernel.exceptions import (
    DeliveryRejectedError,
    ItemAlreadyClaimedError,
    ItemAlreadyDecidedError,
    OverDeliveryError,
    ProcurementError,
)
from procurement_kernel.models.audit_entry import AuditEntryModel
from procurement_kernel.models.delivery import DeliveryItemModel
from procurement_kernel.models.purchase_order import PurchaseOrderItemModel
from procurement_kernel.selectors import RequestSelector
from procurement_kernel.services import (
    AuditLog,
    DeliveryReconciler,
    PurchaseOrderAssembler,
    RequestLifecycleService,
)

pytestmark = pytest.mark.slow_locks

WORKERS = 8


def run_concurrently(session_factory, count, operation):
    """
    Run ``operation(session, index)`` in ``count`` threads at once.

    Returns one result per worker: the operation's return value, or the
    ProcurementError it raised.
    """
    barrier = Barrier(count)

    def worker(index):
        session = session_factory()
        try:
            barrier.wait(timeout=30)
            return operation(session, index)
        except ProcurementError as exc:
            return exc
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=count) as pool:
        futures = [pool.submit(worker, i) for i in range(count)]
        return [f.result(timeout=120) for f in futures]


def successes(results):
    return [r for r in results if not isinstance(r, Exception)]


def failures(results):
    return [r for r in results if isinstance(r, Exception)]


class TestConcurrentDecisions:

    def test_one_winner_per_item(
        self, submitted_request, session_factory, session, deterministic_clock,
    ):
        request = submitted_request()
        item_id = request.items[0].id
        reviewers = [
            Actor.with_roles(uuid4(), [ProjectRole.PROJECT_MANAGER]) for _ in range(WORKERS)
        ]

        def decide(sess, index):
            service = RequestLifecycleService(sess, clock=deterministic_clock)
            if index % 2:
                return service.decide_item(
                    reviewers[index], request.id, item_id, Decision.REJECTED, comment="over budget",
                )
            return service.decide_item(reviewers[index], request.id, item_id, Decision.APPROVED)

        results = run_concurrently(session_factory, WORKERS, decide)

        assert len(successes(results)) == 1
        assert len(failures(results)) == WORKERS - 1
        assert all(isinstance(f, ItemAlreadyDecidedError) for f in failures(results))

        trail = AuditLog(session).entity_history("RequestItem", item_id)
        assert len(trail.entries) == 1
        assert AuditLog(session).validate_chain()

    def test_parallel_decisions_on_siblings_keep_aggregate_exact(
        self, submitted_request, session_factory, session, deterministic_clock, manager,
    ):
        items = [
            ItemSpec(name=f"Item {n}", quantity=n + 1, unit="nos", rate_estimate=10)
            for n in range(WORKERS)
        ]
        request = submitted_request(items)

        def approve(sess, index):
            service = RequestLifecycleService(sess, clock=deterministic_clock)
            return service.decide_item(
                manager, request.id, request.items[index].id, Decision.APPROVED,
            )

        results = run_concurrently(session_factory, WORKERS, approve)
        assert not failures(results)

        final = RequestSelector(session).get(request.id)
        assert all(i.status == ItemStatus.APPROVED for i in final.items)
        assert final.status == RequestStatus.APPROVED
        assert final.total_value == Decimal(10 * sum(range(1, WORKERS + 1)))

        actions = AuditLog(session).history(request.id).actions
        assert actions.count("material_approved") == WORKERS
        assert actions.count("approved") == 1


class TestConcurrentClaims:

    def test_item_lands_on_exactly_one_order(
        self, approved_request, session_factory, session, deterministic_clock, accountant,
        project_id,
    ):
        request = approved_request()
        item_id = request.items[0].id

        def claim(sess, index):
            assembler = PurchaseOrderAssembler(sess, clock=deterministic_clock)
            return assembler.create_purchase_order(
                accountant, project_id, [PurchaseOrderSelection(item_id)],
                vendor_name=f"Vendor {index}",
            )

        results = run_concurrently(session_factory, WORKERS, claim)

        assert len(successes(results)) == 1
        assert all(isinstance(f, ItemAlreadyClaimedError) for f in failures(results))
        claims = session.execute(
            select(func.count())
            .select_from(PurchaseOrderItemModel)
            .where(PurchaseOrderItemModel.request_item_id == item_id)
        ).scalar_one()
        assert claims == 1


class TestConcurrentDeliveries:

    def test_never_exceeds_ordered_quantity(
        self, open_purchase_order, session_factory, session, deterministic_clock, engineer,
    ):
        po = open_purchase_order(
            [ItemSpec(name="Ready-mix M25", quantity=100, unit="cum", rate_estimate=5200)]
        )
        line_id = po.items[0].id

        def deliver(sess, index):
            reconciler = DeliveryReconciler(sess, clock=deterministic_clock)
            return reconciler.record_delivery(engineer, po.id, [DeliveryLineSpec(line_id, 15)])

        results = run_concurrently(session_factory, WORKERS, deliver)

        assert len(successes(results)) == 6
        for failure in failures(results):
            assert isinstance(failure, DeliveryRejectedError)
            assert isinstance(failure.failures[0], OverDeliveryError)

        line = session.get(PurchaseOrderItemModel, line_id, populate_existing=True)
        assert line.total_delivered == Decimal("90")
        recorded = session.execute(
            select(func.sum(DeliveryItemModel.quantity_delivered))
            .where(DeliveryItemModel.purchase_order_item_id == line_id)
        ).scalar_one()
        assert Decimal(recorded) == Decimal("90")

    def test_order_closes_exactly_once(
        self, open_purchase_order, session_factory, session, deterministic_clock, engineer,
    ):
        po = open_purchase_order(
            [ItemSpec(name="Binding wire", quantity=WORKERS, unit="kg", rate_estimate=80)]
        )
        line_id = po.items[0].id

        def deliver(sess, index):
            reconciler = DeliveryReconciler(sess, clock=deterministic_clock)
            return reconciler.record_delivery(engineer, po.id, [DeliveryLineSpec(line_id, 1)])

        results = run_concurrently(session_factory, WORKERS, deliver)

        assert len(successes(results)) == WORKERS
        assert sum(1 for r in successes(results) if r.closed) == 1
        closures = session.execute(
            select(func.count())
            .select_from(AuditEntryModel)
            .where(AuditEntryModel.action == "purchase_order_closed")
        ).scalar_one()
        assert closures == 1


class TestConcurrentReferences:

    def test_reference_codes_are_unique_and_gapless(
        self, session_factory, deterministic_clock, engineer, project_id, db_engine,
    ):
        def create(sess, index):
            service = RequestLifecycleService(sess, clock=deterministic_clock)
            return service.create_request(engineer, project_id, f"Request {index}")

        results = run_concurrently(session_factory, WORKERS, create)

        codes = sorted(r.reference_code for r in successes(results))
        assert codes == [f"BOQ-2024-{n:03d}" for n in range(1, WORKERS + 1)]
