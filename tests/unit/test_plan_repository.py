"""Tests for PlanRepository."""

from unittest.mock import MagicMock

import pytest

from recharge_engine.models import PlanCategory
from recharge_engine.repositories.plan_repository import (
    PlanNotFoundError,
    PlanRepository,
    get_plan_repository,
    reset_plan_repository,
)


class TestLookups:
    def test_get_by_id(self, plan_repo):
        plan = plan_repo.get_by_id("recarga-mensal")
        assert plan.name == "Recarga Mensal"
        assert plan.app_name == "TV Box Pro"

    def test_get_by_id_unknown_raises(self, plan_repo):
        with pytest.raises(PlanNotFoundError, match="nope"):
            plan_repo.get_by_id("nope")

    def test_find_by_id_unknown_returns_none(self, plan_repo):
        assert plan_repo.find_by_id("nope") is None

    def test_active_plans_exclude_inactive(self, plan_repo):
        active = {p.id for p in plan_repo.get_active()}
        assert active == {"recarga-mensal", "pacote-dados"}
        assert len(plan_repo.get_all()) == 3

    def test_by_category(self, plan_repo):
        data = plan_repo.get_by_category(PlanCategory.DATA_PACKAGE)
        assert [p.id for p in data] == ["pacote-dados"]

    def test_membership(self, plan_repo):
        assert "recarga-mensal" in plan_repo
        assert plan_repo.exists("pacote-dados")
        assert not plan_repo.exists("nope")
        assert len(plan_repo) == 3

    def test_default_app_name(self, plan_repo):
        assert plan_repo.get_by_id("pacote-dados").app_name == "App Padrão"


class TestConfigBacked:
    def test_reads_plans_from_config(self, plans):
        config = MagicMock()
        config.plans = plans
        repo = PlanRepository(config=config)
        assert len(repo) == 3

    def test_reload(self, plans):
        config = MagicMock()
        config.plans = plans
        repo = PlanRepository(config=config)
        config.plans = plans[:1]
        repo.reload()
        config.reload.assert_called_once()
        assert len(repo) == 1

    def test_explicit_plans_ignore_reload(self, plan_repo):
        plan_repo.reload()
        assert len(plan_repo) == 3


class TestSingleton:
    def test_get_plan_repository_returns_same_instance(self):
        reset_plan_repository()
        try:
            assert get_plan_repository() is get_plan_repository()
        finally:
            reset_plan_repository()
