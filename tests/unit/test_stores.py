"""Tests for the storage backends.

Every test runs against both InMemoryStore and SqlStore (in-memory SQLite).
"""

import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from recharge_engine.config import ConfigurationError
from recharge_engine.models import (
    CodeStatus,
    PurchaseStatus,
    ReminderMilestone,
    StorageConfig,
)
from recharge_engine.repositories import (
    CodeNotAvailableError,
    CodeNotFoundError,
    DuplicateRecordError,
    InMemoryStore,
    PurchaseNotFoundError,
    PurchaseNotPendingError,
    SqlStore,
    create_store,
)

from support import START_TIME


@pytest.fixture(params=["memory", "sql"])
def backend(request):
    store = InMemoryStore() if request.param == "memory" else SqlStore()
    yield store
    store.clear()


class TestCodes:
    def test_add_codes_skips_known_and_repeated_tokens(self, backend, make_code):
        backend.add_codes([make_code("AAA")])
        inserted = backend.add_codes([make_code("AAA"), make_code("BBB"), make_code("BBB")])

        assert [c.code for c in inserted] == ["BBB"]
        assert backend.count_codes() == 2
        assert backend.code_exists("BBB")
        assert not backend.code_exists("CCC")

    def test_find_code_round_trip(self, backend, make_code):
        code = backend.add_codes([make_code("AAA")])[0]
        found = backend.find_code(code.id)

        assert found.code == "AAA"
        assert found.value == Decimal("29.90")
        assert found.created_at == START_TIME
        assert found.status == CodeStatus.AVAILABLE
        assert backend.find_code("code_missing") is None

    def test_find_available_returns_oldest(self, backend, make_code):
        backend.add_codes([
            make_code("NEWER", created_at=START_TIME + timedelta(hours=2)),
            make_code("OLDEST", created_at=START_TIME),
            make_code("OTHER", plan_id="pacote-dados", created_at=START_TIME - timedelta(days=1)),
        ])
        assert backend.find_available_code("recarga-mensal", START_TIME).code == "OLDEST"
        assert backend.find_available_code("plano-vazio", START_TIME) is None

    def test_find_available_skips_codes_past_expiry(self, backend, make_code):
        backend.add_codes([
            make_code("STALE", created_at=START_TIME - timedelta(days=2), expires_at=START_TIME),
            make_code("FRESH", created_at=START_TIME - timedelta(days=1)),
        ])

        assert backend.find_available_code("recarga-mensal", START_TIME).code == "FRESH"
        assert backend.find_available_code("recarga-mensal", START_TIME - timedelta(hours=1)).code == "STALE"
        assert backend.find_available_code("recarga-mensal", START_TIME + timedelta(days=40)) is None

    def test_counts_and_status_filter(self, backend, make_code):
        backend.add_codes([
            make_code("A1"),
            make_code("A2"),
            make_code("B1", plan_id="pacote-dados"),
        ])
        assert backend.count_codes(plan_id="recarga-mensal") == 2
        assert backend.count_codes(status=CodeStatus.AVAILABLE) == 3
        assert backend.count_codes(status=CodeStatus.SOLD) == 0
        assert len(backend.get_codes_by_status(CodeStatus.AVAILABLE, plan_id="pacote-dados")) == 1

    def test_list_codes_search_and_paging(self, backend, make_code):
        backend.add_codes([
            make_code(f"XY{i:02d}", created_at=START_TIME + timedelta(minutes=i)) for i in range(5)
        ] + [make_code("ZZ99")])

        page, total = backend.list_codes(search="xy", offset=0, limit=2)
        assert total == 5
        assert [c.code for c in page] == ["XY04", "XY03"]

        page, total = backend.list_codes(search="xy", offset=4, limit=2)
        assert [c.code for c in page] == ["XY00"]

    def test_expire_codes_only_touches_available_past_horizon(self, backend, make_code, make_purchase):
        stale = make_code("STALE", expires_at=START_TIME + timedelta(days=1))
        fresh = make_code("FRESH", expires_at=START_TIME + timedelta(days=10))
        sold = make_code("SOLD", expires_at=START_TIME + timedelta(days=1))
        backend.add_codes([stale, fresh, sold])
        backend.claim_code_for_new_purchase(sold.id, START_TIME, make_purchase())

        expired = backend.expire_codes(START_TIME + timedelta(days=2))

        assert [c.code for c in expired] == ["STALE"]
        assert backend.find_code(stale.id).status == CodeStatus.EXPIRED
        assert backend.find_code(fresh.id).status == CodeStatus.AVAILABLE
        assert backend.find_code(sold.id).status == CodeStatus.SOLD
        assert backend.expire_codes(START_TIME + timedelta(days=2)) == []


class TestPurchases:
    def test_add_and_find(self, backend, make_purchase):
        purchase = make_purchase(status=PurchaseStatus.PENDING_CODE_DELIVERY)
        backend.add_purchase(purchase)
        found = backend.find_purchase(purchase.id)

        assert found.status == PurchaseStatus.PENDING_CODE_DELIVERY
        assert found.customer_data.name == "Maria Silva"
        assert found.amount == Decimal("29.90")
        assert found.expires_at == purchase.expires_at
        assert not found.expiry_reminders.is_sent(ReminderMilestone.REMINDER_TODAY)

    def test_duplicate_id_raises(self, backend, make_purchase):
        purchase = make_purchase()
        backend.add_purchase(purchase)
        with pytest.raises(DuplicateRecordError):
            backend.add_purchase(purchase)

    def test_find_unknown(self, backend):
        assert backend.find_purchase("pur_missing") is None

    def test_status_queries(self, backend, make_purchase):
        backend.add_purchase(make_purchase())
        backend.add_purchase(make_purchase(status=PurchaseStatus.PENDING_CODE_DELIVERY))
        backend.add_purchase(make_purchase(status=PurchaseStatus.REJECTED))

        assert backend.count_purchases() == 3
        assert backend.count_purchases(PurchaseStatus.APPROVED) == 1
        assert len(backend.get_purchases_by_status(PurchaseStatus.REJECTED)) == 1

    def test_list_purchases_filters(self, backend, make_purchase):
        backend.add_purchase(make_purchase(customer_id="cus_a", created_at=START_TIME))
        backend.add_purchase(make_purchase(customer_id="cus_b", created_at=START_TIME + timedelta(hours=1)))
        backend.add_purchase(make_purchase(customer_id="cus_b", plan_id="pacote-dados",
                                           created_at=START_TIME + timedelta(hours=2)))

        page, total = backend.list_purchases(customer_id="cus_b")
        assert total == 2
        assert page[0].plan_id == "pacote-dados"

        page, total = backend.list_purchases(plan_id="recarga-mensal", limit=1)
        assert total == 2
        assert len(page) == 1


class TestClaims:
    def test_claim_for_new_purchase(self, backend, make_code, make_purchase):
        code = backend.add_codes([make_code("AAA")])[0]
        purchase = make_purchase()
        purchase.assigned_code_id = code.id

        claimed, recorded = backend.claim_code_for_new_purchase(code.id, START_TIME, purchase)

        assert claimed.status == CodeStatus.SOLD
        assert claimed.sold_at == START_TIME
        assert recorded.id == purchase.id
        assert backend.find_purchase(purchase.id) is not None

    def test_second_claim_loses(self, backend, make_code, make_purchase):
        code = backend.add_codes([make_code("AAA")])[0]
        backend.claim_code_for_new_purchase(code.id, START_TIME, make_purchase())

        loser = make_purchase()
        with pytest.raises(CodeNotAvailableError):
            backend.claim_code_for_new_purchase(code.id, START_TIME, loser)
        assert backend.find_purchase(loser.id) is None

    def test_claim_unknown_code(self, backend, make_purchase):
        with pytest.raises(CodeNotFoundError):
            backend.claim_code_for_new_purchase("code_missing", START_TIME, make_purchase())

    def test_claim_for_pending(self, backend, make_code, make_purchase):
        code = backend.add_codes([make_code("AAA")])[0]
        parked = backend.add_purchase(make_purchase(status=PurchaseStatus.PENDING_CODE_DELIVERY))
        sold_at = START_TIME + timedelta(hours=3)

        claimed, approved = backend.claim_code_for_pending(code.id, parked.id, sold_at)

        assert claimed.status == CodeStatus.SOLD
        assert approved.status == PurchaseStatus.APPROVED
        assert approved.recharge_code == "AAA"
        assert approved.assigned_code_id == code.id
        assert approved.approved_at == sold_at
        assert backend.find_purchase(parked.id).status == PurchaseStatus.APPROVED

    def test_claim_for_pending_rejects_non_pending(self, backend, make_code, make_purchase):
        code = backend.add_codes([make_code("AAA")])[0]
        approved = backend.add_purchase(make_purchase())

        with pytest.raises(PurchaseNotPendingError):
            backend.claim_code_for_pending(code.id, approved.id, START_TIME)
        assert backend.find_code(code.id).status == CodeStatus.AVAILABLE

    def test_claim_for_pending_unknown_purchase(self, backend, make_code):
        code = backend.add_codes([make_code("AAA")])[0]
        with pytest.raises(PurchaseNotFoundError):
            backend.claim_code_for_pending(code.id, "pur_missing", START_TIME)

    def test_claim_for_pending_with_sold_code_mutates_nothing(self, backend, make_code, make_purchase):
        code = backend.add_codes([make_code("AAA")])[0]
        backend.claim_code_for_new_purchase(code.id, START_TIME, make_purchase())
        parked = backend.add_purchase(make_purchase(status=PurchaseStatus.PENDING_CODE_DELIVERY))

        with pytest.raises(CodeNotAvailableError):
            backend.claim_code_for_pending(code.id, parked.id, START_TIME)

        still_parked = backend.find_purchase(parked.id)
        assert still_parked.status == PurchaseStatus.PENDING_CODE_DELIVERY
        assert still_parked.recharge_code == ""

    def test_claim_past_expiry_loses(self, backend, make_code, make_purchase):
        code = backend.add_codes([make_code("AAA", expires_at=START_TIME + timedelta(days=1))])[0]
        purchase = make_purchase()

        with pytest.raises(CodeNotAvailableError, match="expiry"):
            backend.claim_code_for_new_purchase(code.id, START_TIME + timedelta(days=1), purchase)

        assert backend.find_code(code.id).status == CodeStatus.AVAILABLE
        assert backend.find_purchase(purchase.id) is None

    def test_claim_for_pending_past_expiry_mutates_nothing(self, backend, make_code, make_purchase):
        code = backend.add_codes([make_code("AAA", expires_at=START_TIME + timedelta(days=1))])[0]
        parked = backend.add_purchase(make_purchase(status=PurchaseStatus.PENDING_CODE_DELIVERY))

        with pytest.raises(CodeNotAvailableError):
            backend.claim_code_for_pending(code.id, parked.id, START_TIME + timedelta(days=2))

        assert backend.find_code(code.id).status == CodeStatus.AVAILABLE
        assert backend.find_purchase(parked.id).status == PurchaseStatus.PENDING_CODE_DELIVERY

    def test_concurrent_claims_of_one_code(self, backend, make_code, make_purchase):
        code = backend.add_codes([make_code("AAA")])[0]
        contenders = [make_purchase() for _ in range(8)]
        barrier = threading.Barrier(len(contenders))
        outcomes = []

        def worker(purchase):
            barrier.wait()
            try:
                backend.claim_code_for_new_purchase(code.id, START_TIME, purchase)
                outcomes.append("won")
            except CodeNotAvailableError:
                outcomes.append("lost")

        threads = [threading.Thread(target=worker, args=(p,)) for p in contenders]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["lost"] * 7 + ["won"]
        assert backend.count_purchases() == 1
        assert backend.find_code(code.id).status == CodeStatus.SOLD


class TestReminderLatch:
    def test_latch_is_set_once(self, backend, make_purchase):
        purchase = backend.add_purchase(make_purchase())
        milestone = ReminderMilestone.REMINDER_3_DAYS

        assert backend.mark_reminder_sent(purchase.id, milestone, START_TIME, "msg-1") is True
        assert backend.mark_reminder_sent(purchase.id, milestone, START_TIME, "msg-2") is False

        record = backend.find_purchase(purchase.id).expiry_reminders.get(milestone)
        assert record.sent
        assert record.message_id == "msg-1"
        assert record.sent_at == START_TIME

    def test_milestones_are_independent(self, backend, make_purchase):
        purchase = backend.add_purchase(make_purchase())
        backend.mark_reminder_sent(purchase.id, ReminderMilestone.REMINDER_3_DAYS, START_TIME)

        reminders = backend.find_purchase(purchase.id).expiry_reminders
        assert reminders.is_sent(ReminderMilestone.REMINDER_3_DAYS)
        assert not reminders.is_sent(ReminderMilestone.REMINDER_1_DAY)
        assert not reminders.is_sent(ReminderMilestone.REMINDER_TODAY)

    def test_not_approved_is_not_latched(self, backend, make_purchase):
        parked = backend.add_purchase(make_purchase(status=PurchaseStatus.PENDING_CODE_DELIVERY))
        assert backend.mark_reminder_sent(parked.id, ReminderMilestone.REMINDER_TODAY, START_TIME) is False

    def test_unknown_purchase_raises(self, backend):
        with pytest.raises(PurchaseNotFoundError):
            backend.mark_reminder_sent("pur_missing", ReminderMilestone.REMINDER_TODAY, START_TIME)


class TestHousekeeping:
    def test_statistics_and_clear(self, backend, make_code, make_purchase):
        backend.add_codes([make_code("AAA"), make_code("BBB", plan_id="pacote-dados")])
        backend.add_purchase(make_purchase())

        assert backend.get_statistics() == {"total_codes": 2, "total_purchases": 1, "unique_plans": 2}

        backend.clear()
        assert backend.get_statistics() == {"total_codes": 0, "total_purchases": 0, "unique_plans": 0}


class TestCreateStore:
    def test_memory_backend(self):
        assert isinstance(create_store(StorageConfig(backend="memory")), InMemoryStore)

    def test_sql_backend(self):
        store = create_store(StorageConfig(backend="sql", url="sqlite:///:memory:"))
        assert isinstance(store, SqlStore)
        store.dispose()

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError, match="Unknown storage backend"):
            create_store(StorageConfig(backend="redis"))

    def test_sql_file_backend_persists(self, tmp_path, make_code):
        url = f"sqlite:///{tmp_path / 'engine.db'}"
        first = SqlStore(url=url)
        first.add_codes([make_code("AAA")])
        first.dispose()

        second = SqlStore(url=url)
        assert second.code_exists("AAA")
        second.dispose()
