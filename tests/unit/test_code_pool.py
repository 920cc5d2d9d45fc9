"""Tests for CodePool - import, availability and the code expiry pass."""

from datetime import timedelta
from decimal import Decimal

import pytest

from recharge_engine.models import CodeStatus
from recharge_engine.repositories.plan_repository import PlanNotFoundError
from recharge_engine.services.code_pool import CodePool

from support import START_TIME


@pytest.fixture
def pool(store, plan_repo, clock, engine_settings):
    return CodePool(store=store, plan_repository=plan_repo, time_controller=clock, settings=engine_settings)


class TestImport:
    def test_import_normalises_and_stamps_plan_data(self, pool):
        result = pool.import_codes("recarga-mensal", ["  ab12cd34 ", "EF56GH78"])

        assert result.inserted_count == 2
        assert result.skipped_count == 0
        code = result.codes[0]
        assert code.code == "AB12CD34"
        assert code.value == Decimal("29.90")
        assert code.app_name == "TV Box Pro"
        assert code.status == CodeStatus.AVAILABLE
        assert code.created_at == START_TIME
        assert code.expires_at == START_TIME + timedelta(days=30)

    def test_blank_strings_are_dropped(self, pool):
        result = pool.import_codes("recarga-mensal", ["", "   ", "AAA"])
        assert result.total_count == 1
        assert result.inserted_count == 1

    def test_duplicates_are_skipped(self, pool):
        pool.import_codes("recarga-mensal", ["AAA"])
        result = pool.import_codes("recarga-mensal", ["aaa", "BBB", "bbb"])

        assert result.total_count == 3
        assert result.inserted_count == 1
        assert result.skipped_count == 2

    def test_same_token_for_another_plan_is_skipped(self, pool):
        pool.import_codes("recarga-mensal", ["AAA"])
        result = pool.import_codes("pacote-dados", ["AAA"])
        assert result.inserted_count == 0

    def test_unknown_plan(self, pool):
        with pytest.raises(PlanNotFoundError):
            pool.import_codes("nope", ["AAA"])

    def test_plan_without_app_gets_default_label(self, pool):
        code = pool.import_codes("pacote-dados", ["DDD"]).codes[0]
        assert code.app_name == "App Padrão"
        assert code.value == Decimal("15.00")


class TestQueries:
    def test_find_available_is_fifo(self, pool, clock):
        pool.import_codes("recarga-mensal", ["FIRST"])
        clock.advance_time(minutes=5)
        pool.import_codes("recarga-mensal", ["SECOND"])

        assert pool.find_available("recarga-mensal").code == "FIRST"

    def test_exhausted_pool(self, pool):
        assert pool.find_available("recarga-mensal") is None

    def test_codes_past_expiry_are_skipped(self, pool, clock):
        pool.import_codes("recarga-mensal", ["OLD"])
        clock.advance_time(days=10)
        pool.import_codes("recarga-mensal", ["NEW"])
        clock.advance_time(days=25)

        assert pool.find_available("recarga-mensal").code == "NEW"
        assert pool.find_available("recarga-mensal", now=START_TIME).code == "OLD"

    def test_status_counts(self, pool):
        pool.import_codes("recarga-mensal", ["A1", "A2"])
        pool.import_codes("pacote-dados", ["B1"])

        assert pool.status_counts("recarga-mensal") == {"available": 2, "sold": 0, "expired": 0, "total": 2}
        assert pool.status_counts()["total"] == 3
        assert pool.count_by_status("pacote-dados", CodeStatus.AVAILABLE) == 1

    def test_list_codes(self, pool):
        pool.import_codes("recarga-mensal", ["XA1", "XA2", "YB1"])
        items, total = pool.list_codes(search="xa")
        assert total == 2
        assert {c.code for c in items} == {"XA1", "XA2"}


class TestExpiry:
    def test_expire_stale_codes(self, pool, clock):
        pool.import_codes("recarga-mensal", ["OLD"])
        clock.advance_time(days=10)
        pool.import_codes("recarga-mensal", ["NEW"])

        clock.advance_time(days=25)
        expired = pool.expire_stale_codes()

        assert [c.code for c in expired] == ["OLD"]
        assert pool.find_available("recarga-mensal").code == "NEW"

    def test_nothing_to_expire(self, pool):
        pool.import_codes("recarga-mensal", ["AAA"])
        assert pool.expire_stale_codes() == []
