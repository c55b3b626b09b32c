"""Tests for RequestSelector read models."""

from decimal import Decimal
from uuid import uuid4

import pytest

from procurement_kernel.domain.dtos import DeliveryLineSpec, ItemSpec, PurchaseOrderSelection
from procurement_kernel.domain.status import (
    Decision,
    FulfillmentStatus,
    Priority,
    RequestStatus,
)
from procurement_kernel.exceptions import RequestNotFoundError


class TestGetAndList:

    def test_get(self, submitted_request, request_selector):
        view = submitted_request()
        fetched = request_selector.get(view.id)
        assert fetched.reference_code == view.reference_code
        assert fetched.status == RequestStatus.PENDING
        assert len(fetched.items) == 2

    def test_get_unknown(self, request_selector):
        with pytest.raises(RequestNotFoundError):
            request_selector.get(uuid4())

    def test_list_for_project_with_status_filter(
        self, lifecycle, engineer, project_id, submitted_request, request_selector,
    ):
        draft = lifecycle.create_request(engineer, project_id, "Still drafting")
        submitted = submitted_request()
        lifecycle.create_request(engineer, uuid4(), "Another project")

        assert [r.id for r in request_selector.list_for_project(project_id)] == [
            draft.id, submitted.id,
        ]
        drafts = request_selector.list_for_project(project_id, RequestStatus.DRAFT)
        assert [r.id for r in drafts] == [draft.id]
        pending = request_selector.list_for_project(project_id, "pending")
        assert [r.id for r in pending] == [submitted.id]


class TestReviewQueue:

    def test_emergency_first_then_oldest(
        self, submitted_request, request_selector, deterministic_clock,
    ):
        old = submitted_request(title="Formwork")
        deterministic_clock.advance(60)
        newer = submitted_request(title="Curing compound")
        deterministic_clock.advance(60)
        urgent = submitted_request(title="Dewatering pump", emergency=True)

        queue = request_selector.review_queue()
        assert [r.id for r in queue] == [urgent.id, old.id, newer.id]
        assert queue[0].priority == Priority.HIGH

    def test_excludes_drafts_and_fully_decided(
        self, lifecycle, engineer, manager, project_id, submitted_request, approved_request,
        request_selector,
    ):
        lifecycle.create_request(engineer, project_id, "Draft")
        approved_request()
        half = submitted_request()
        lifecycle.decide_item(manager, half.id, half.items[0].id, Decision.APPROVED)

        queue = request_selector.review_queue(project_id)
        assert [r.id for r in queue] == [half.id]
        assert queue[0].status == RequestStatus.PARTIALLY_APPROVED
        assert queue[0].pending_count == 1

    def test_filters_by_project(self, submitted_request, request_selector):
        submitted_request()
        assert request_selector.review_queue(uuid4()) == ()


class TestClaimableItems:

    def test_only_approved_unclaimed(
        self, submitted_request, lifecycle, manager, assembler, accountant, project_id,
        request_selector,
    ):
        request = submitted_request(
            [
                ItemSpec(name="Tiles", quantity=50, unit="box", rate_estimate=700),
                ItemSpec(name="Grout", quantity=10, unit="kg", rate_estimate=90),
                ItemSpec(name="Spacers", quantity=5, unit="pack", rate_estimate=40),
            ]
        )
        tiles, grout, spacers = request.items
        lifecycle.decide_item(manager, request.id, tiles.id, Decision.APPROVED)
        lifecycle.decide_item(manager, request.id, grout.id, Decision.APPROVED)
        lifecycle.decide_item(manager, request.id, spacers.id, Decision.REJECTED, comment="stock")
        assembler.create_purchase_order(accountant, project_id, [PurchaseOrderSelection(tiles.id)])

        claimable = request_selector.claimable_items(project_id)
        assert [c.request_item_id for c in claimable] == [grout.id]
        assert claimable[0].reference_code == request.reference_code
        assert claimable[0].quantity == Decimal("10")


class TestFulfillment:

    def test_tracks_ordering_and_delivery(
        self, approved_request, assembler, reconciler, accountant, engineer, project_id,
        request_selector,
    ):
        request = approved_request(
            [
                ItemSpec(name="Paint", quantity=40, unit="litre", rate_estimate=300),
                ItemSpec(name="Primer", quantity=20, unit="litre", rate_estimate=200),
                ItemSpec(name="Putty", quantity=30, unit="kg", rate_estimate=25),
                ItemSpec(name="Brushes", quantity=6, unit="nos", rate_estimate=150),
            ]
        )
        paint, primer, putty, brushes = request.items
        po = assembler.create_purchase_order(
            accountant,
            project_id,
            [
                PurchaseOrderSelection(paint.id),
                PurchaseOrderSelection(primer.id),
                PurchaseOrderSelection(putty.id, ordered_qty=20),
            ],
        )
        reconciler.record_delivery(
            engineer,
            po.id,
            [
                DeliveryLineSpec(po.item_for(paint.id).id, 40),
                DeliveryLineSpec(po.item_for(putty.id).id, 20),
            ],
        )

        by_item = {f.request_item_id: f for f in request_selector.fulfillment(request.id)}
        assert by_item[paint.id].status == FulfillmentStatus.DELIVERED
        assert by_item[primer.id].status == FulfillmentStatus.ORDERED
        assert by_item[putty.id].status == FulfillmentStatus.PARTIALLY_DELIVERED
        assert by_item[putty.id].ordered_qty == Decimal("20")
        assert by_item[putty.id].delivered_qty == Decimal("20")
        assert by_item[brushes.id].status == FulfillmentStatus.NOT_ORDERED
        assert by_item[brushes.id].ordered_qty == Decimal("0")
