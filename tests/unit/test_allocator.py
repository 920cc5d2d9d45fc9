"""Tests for the Allocator - sales, parking and pending assignment.

Every test runs against both InMemoryStore and SqlStore (in-memory SQLite).
"""

import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from recharge_engine.models import (
    CodeStatus,
    FailureReason,
    PaymentMethod,
    PurchaseStatus,
)
from recharge_engine.repositories import InMemoryStore, SqlStore
from recharge_engine.repositories.plan_repository import PlanNotFoundError
from recharge_engine.services.allocator import Allocator
from recharge_engine.services.code_pool import CodePool

from support import START_TIME


@pytest.fixture(params=["memory", "sql"])
def store(request):
    store = InMemoryStore() if request.param == "memory" else SqlStore()
    yield store
    store.clear()


@pytest.fixture
def pool(store, plan_repo, clock, engine_settings):
    return CodePool(store=store, plan_repository=plan_repo, time_controller=clock, settings=engine_settings)


@pytest.fixture
def allocator(store, plan_repo, clock, engine_settings, pool):
    return Allocator(
        store=store,
        plan_repository=plan_repo,
        time_controller=clock,
        settings=engine_settings,
        code_pool=pool,
    )


class TestSell:
    def test_sell_binds_code_and_purchase(self, allocator, pool, buyer, store):
        pool.import_codes("recarga-mensal", ["AB12CD34"])

        result = allocator.sell("recarga-mensal", buyer)

        assert result.success
        assert result.code.status == CodeStatus.SOLD
        assert result.code.sold_at == START_TIME
        purchase = result.purchase
        assert purchase.status == PurchaseStatus.APPROVED
        assert purchase.recharge_code == "AB12CD34"
        assert purchase.assigned_code_id == result.code.id
        assert purchase.amount == Decimal("29.90")
        assert purchase.approved_at == START_TIME
        assert purchase.expires_at == START_TIME + timedelta(days=30)
        assert purchase.reseller_id == "system"
        assert purchase.payment_id.startswith("pay_")
        assert store.find_purchase(purchase.id) is not None

    def test_sell_uses_oldest_code(self, allocator, pool, buyer, clock):
        pool.import_codes("recarga-mensal", ["FIRST"])
        clock.advance_time(minutes=1)
        pool.import_codes("recarga-mensal", ["SECOND"])

        assert allocator.sell("recarga-mensal", buyer).code.code == "FIRST"
        assert allocator.sell("recarga-mensal", buyer).code.code == "SECOND"

    def test_amount_comes_from_code_value(self, allocator, store, make_code, buyer):
        store.add_codes([make_code("LEGACY", value=Decimal("25.00"))])
        assert allocator.sell("recarga-mensal", buyer).purchase.amount == Decimal("25.00")

    def test_validity_comes_from_plan(self, allocator, pool, buyer):
        pool.import_codes("pacote-dados", ["DATA1"])
        purchase = allocator.sell("pacote-dados", buyer).purchase
        assert purchase.expires_at == START_TIME + timedelta(days=7)

    def test_buyer_details_are_kept(self, allocator, pool, buyer):
        pool.import_codes("recarga-mensal", ["AAA"])
        buyer = buyer.model_copy(update={
            "payment_method": PaymentMethod.PIX,
            "payment_id": "pay_gateway_1",
            "reseller_id": "res_42",
        })
        purchase = allocator.sell("recarga-mensal", buyer).purchase

        assert purchase.payment_method == PaymentMethod.PIX
        assert purchase.payment_id == "pay_gateway_1"
        assert purchase.reseller_id == "res_42"
        assert purchase.customer_data.name == "Maria Silva"

    def test_exhausted_pool(self, allocator, buyer, store):
        result = allocator.sell("recarga-mensal", buyer)

        assert not result.success
        assert result.reason == FailureReason.CODE_UNAVAILABLE
        assert store.count_purchases() == 0

    def test_unknown_plan(self, allocator, buyer):
        result = allocator.sell("nope", buyer)
        assert result.reason == FailureReason.PLAN_NOT_FOUND

    def test_expired_codes_are_not_sold(self, allocator, pool, buyer, clock):
        pool.import_codes("recarga-mensal", ["AAA"])
        clock.advance_time(days=31)
        pool.expire_stale_codes()

        assert allocator.sell("recarga-mensal", buyer).reason == FailureReason.CODE_UNAVAILABLE

    def test_codes_past_expiry_are_not_sold_before_the_expiry_pass(self, allocator, pool, buyer, clock, store):
        code = pool.import_codes("recarga-mensal", ["AAA"]).codes[0]
        clock.advance_time(days=45)

        result = allocator.sell("recarga-mensal", buyer)

        assert result.reason == FailureReason.CODE_UNAVAILABLE
        assert store.find_code(code.id).status == CodeStatus.AVAILABLE
        assert store.count_purchases() == 0

    def test_code_expiring_now_is_not_sold(self, allocator, pool, buyer, clock):
        pool.import_codes("recarga-mensal", ["AAA"])
        clock.advance_time(days=30)

        assert allocator.sell("recarga-mensal", buyer).reason == FailureReason.CODE_UNAVAILABLE

    def test_stale_oldest_code_is_skipped(self, allocator, store, make_code, buyer):
        store.add_codes([
            make_code("OLD", created_at=START_TIME - timedelta(days=31)),
            make_code("NEW"),
        ])

        result = allocator.sell("recarga-mensal", buyer)

        assert result.code.code == "NEW"
        assert result.purchase.recharge_code == "NEW"

    def test_concurrent_sales_never_share_a_code(self, allocator, pool, buyer, store):
        pool.import_codes("recarga-mensal", [f"CODE{i:03d}" for i in range(20)])
        results = []
        lock = threading.Lock()

        def worker():
            result = allocator.sell("recarga-mensal", buyer)
            with lock:
                results.append(result)

        threads = [threading.Thread(target=worker) for _ in range(30)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        sold = [r for r in results if r.success]
        assert len(sold) == 20
        assert len({r.code.id for r in sold}) == 20
        assert all(r.reason == FailureReason.CODE_UNAVAILABLE for r in results if not r.success)
        assert store.count_codes(status=CodeStatus.AVAILABLE) == 0
        assert store.count_purchases(PurchaseStatus.APPROVED) == 20
        for purchase in store.get_purchases_by_status(PurchaseStatus.APPROVED):
            code = store.find_code(purchase.assigned_code_id)
            assert code.status == CodeStatus.SOLD
            assert purchase.recharge_code == code.code

    def test_lost_race_retries_next_code(self, allocator, pool, buyer, store, monkeypatch):
        pool.import_codes("recarga-mensal", ["AAA"])
        pool.import_codes("recarga-mensal", ["BBB"])
        stolen = pool.find_available("recarga-mensal")
        original_find = pool.find_available
        calls = []

        def stale_find(plan_id, now=None):
            calls.append(plan_id)
            if len(calls) == 1:
                # Another seller grabs the code between lookup and claim
                store.claim_code_for_new_purchase(stolen.id, START_TIME, _purchase_for(allocator, buyer))
                return stolen
            return original_find(plan_id, now)

        monkeypatch.setattr(pool, "find_available", stale_find)
        result = allocator.sell("recarga-mensal", buyer)

        assert result.success
        assert result.code.id != stolen.id
        assert len(calls) == 2


def _purchase_for(allocator, buyer):
    plan = allocator._plans.get_by_id("recarga-mensal")
    return allocator._new_purchase(plan, buyer, START_TIME, PurchaseStatus.APPROVED)


class TestParkAndReject:
    def test_park_pending_delivery(self, allocator, buyer):
        purchase = allocator.park_pending_delivery("recarga-mensal", buyer)

        assert purchase.status == PurchaseStatus.PENDING_CODE_DELIVERY
        assert purchase.recharge_code == ""
        assert purchase.assigned_code_id is None
        assert purchase.code_delivery_failure_reason == "no_available_codes"
        assert purchase.amount == Decimal("29.90")
        assert purchase.approved_at is None

    def test_park_with_custom_reason(self, allocator, buyer):
        purchase = allocator.park_pending_delivery("recarga-mensal", buyer, reason="manual_review")
        assert purchase.code_delivery_failure_reason == "manual_review"

    def test_park_unknown_plan(self, allocator, buyer):
        with pytest.raises(PlanNotFoundError):
            allocator.park_pending_delivery("nope", buyer)

    def test_record_rejected_payment(self, allocator, buyer, store):
        purchase = allocator.record_rejected_payment("recarga-mensal", buyer)
        assert purchase.status == PurchaseStatus.REJECTED
        assert store.count_purchases(PurchaseStatus.REJECTED) == 1


class TestAssignToPending:
    def test_assign(self, allocator, pool, buyer, clock):
        parked = allocator.park_pending_delivery("recarga-mensal", buyer)
        code = pool.import_codes("recarga-mensal", ["LATE1"]).codes[0]
        clock.advance_time(hours=2)

        result = allocator.assign_code_to_pending(parked.id, code.id)

        assert result.success
        assert result.purchase.status == PurchaseStatus.APPROVED
        assert result.purchase.recharge_code == "LATE1"
        assert result.purchase.approved_at == START_TIME + timedelta(hours=2)
        assert result.code.status == CodeStatus.SOLD

    def test_assign_twice(self, allocator, pool, buyer):
        parked = allocator.park_pending_delivery("recarga-mensal", buyer)
        first, second = pool.import_codes("recarga-mensal", ["C1", "C2"]).codes
        allocator.assign_code_to_pending(parked.id, first.id)

        result = allocator.assign_code_to_pending(parked.id, second.id)

        assert result.reason == FailureReason.PURCHASE_NOT_FOUND
        assert pool.find_code(second.id).status == CodeStatus.AVAILABLE

    def test_unknown_purchase(self, allocator, pool):
        code = pool.import_codes("recarga-mensal", ["C1"]).codes[0]
        assert allocator.assign_code_to_pending("pur_missing", code.id).reason == FailureReason.PURCHASE_NOT_FOUND

    def test_unknown_code(self, allocator, buyer):
        parked = allocator.park_pending_delivery("recarga-mensal", buyer)
        result = allocator.assign_code_to_pending(parked.id, "code_missing")
        assert result.reason == FailureReason.CODE_NOT_FOUND

    def test_sold_code(self, allocator, pool, buyer, store):
        pool.import_codes("recarga-mensal", ["C1"])
        sold = allocator.sell("recarga-mensal", buyer).code
        parked = allocator.park_pending_delivery("recarga-mensal", buyer)

        result = allocator.assign_code_to_pending(parked.id, sold.id)

        assert result.reason == FailureReason.CODE_NOT_AVAILABLE
        assert store.find_purchase(parked.id).status == PurchaseStatus.PENDING_CODE_DELIVERY

    def test_code_from_other_plan_is_accepted(self, allocator, pool, buyer):
        parked = allocator.park_pending_delivery("recarga-mensal", buyer)
        code = pool.import_codes("pacote-dados", ["DATA1"]).codes[0]
        assert allocator.assign_code_to_pending(parked.id, code.id).success

    def test_code_past_expiry(self, allocator, pool, buyer, clock, store):
        code = pool.import_codes("recarga-mensal", ["OLD1"]).codes[0]
        parked = allocator.park_pending_delivery("recarga-mensal", buyer)
        clock.advance_time(days=31)

        result = allocator.assign_code_to_pending(parked.id, code.id)

        assert result.reason == FailureReason.CODE_NOT_AVAILABLE
        assert store.find_code(code.id).status == CodeStatus.AVAILABLE
        assert store.find_purchase(parked.id).status == PurchaseStatus.PENDING_CODE_DELIVERY

    def test_concurrent_assignments_to_one_purchase(self, allocator, pool, buyer, store):
        parked = allocator.park_pending_delivery("recarga-mensal", buyer)
        codes = pool.import_codes("recarga-mensal", ["C1", "C2"]).codes
        barrier = threading.Barrier(len(codes))
        results = {}

        def worker(code):
            barrier.wait()
            results[code.id] = allocator.assign_code_to_pending(parked.id, code.id)

        threads = [threading.Thread(target=worker, args=(code,)) for code in codes]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [code_id for code_id, r in results.items() if r.success]
        losers = [r for r in results.values() if not r.success]
        assert len(winners) == 1
        assert [r.reason for r in losers] == [FailureReason.PURCHASE_NOT_FOUND]
        assert store.count_codes(status=CodeStatus.SOLD) == 1
        assert store.count_codes(status=CodeStatus.AVAILABLE) == 1
        approved = store.find_purchase(parked.id)
        assert approved.status == PurchaseStatus.APPROVED
        assert approved.assigned_code_id == winners[0]
