"""Shared fixtures: a small plan catalogue, engine settings and a frozen clock."""

from datetime import timedelta
from decimal import Decimal

import pytest

from recharge_engine.models import (
    AppConfig,
    BuyerInfo,
    CodeStatus,
    CustomerData,
    EngineSettings,
    PlanDefinition,
    Purchase,
    PurchaseStatus,
    RechargeCode,
)
from recharge_engine.repositories import InMemoryStore, PlanRepository
from recharge_engine.services.time_controller import TimeController
from recharge_engine.utils.identifiers import generate_code_id, generate_purchase_id

from support import START_TIME


@pytest.fixture
def plans():
    return [
        PlanDefinition(
            id="recarga-mensal",
            name="Recarga Mensal",
            value=Decimal("29.90"),
            validity_days=30,
            app_config=AppConfig(app_name="TV Box Pro", has_app=True),
        ),
        PlanDefinition(
            id="pacote-dados",
            name="Pacote de Dados",
            value=Decimal("15.00"),
            validity_days=7,
            category="data_package",
        ),
        PlanDefinition(
            id="plano-antigo",
            name="Plano Antigo",
            value=Decimal("9.90"),
            validity_days=30,
            is_active=False,
        ),
    ]


@pytest.fixture
def plan_repo(plans):
    return PlanRepository(plans=plans)


@pytest.fixture
def engine_settings():
    return EngineSettings(timezone="America/Sao_Paulo", code_validity_days=30)


@pytest.fixture
def clock():
    return TimeController(start_time=START_TIME)


@pytest.fixture
def store():
    store = InMemoryStore()
    yield store
    store.clear()


@pytest.fixture
def buyer():
    return BuyerInfo(
        customer_id="cus_0000000000000001",
        customer_data=CustomerData(name="Maria Silva", phone="(11) 98888-7777"),
    )


@pytest.fixture
def make_code():
    """Factory for code records in a given state."""

    def _make(
        token="AB12CD34",
        plan_id="recarga-mensal",
        created_at=START_TIME,
        expires_at=None,
        status=CodeStatus.AVAILABLE,
        value=Decimal("29.90"),
    ):
        return RechargeCode(
            id=generate_code_id(),
            code=token,
            value=value,
            status=status,
            created_at=created_at,
            expires_at=expires_at or created_at + timedelta(days=30),
            plan_id=plan_id,
            app_name="TV Box Pro",
        )

    return _make


@pytest.fixture
def make_purchase():
    """Factory for purchase records in a given state."""

    def _make(
        status=PurchaseStatus.APPROVED,
        plan_id="recarga-mensal",
        created_at=START_TIME,
        expires_at=None,
        phone="11988887777",
        name="Maria Silva",
        customer_id="cus_0000000000000001",
        amount=Decimal("29.90"),
    ):
        return Purchase(
            id=generate_purchase_id(),
            customer_id=customer_id,
            plan_id=plan_id,
            recharge_code="AB12CD34" if status == PurchaseStatus.APPROVED else "",
            amount=amount,
            status=status,
            payment_id="pay_1790000000000_abcdef",
            created_at=created_at,
            approved_at=created_at if status == PurchaseStatus.APPROVED else None,
            expires_at=expires_at or created_at + timedelta(days=30),
            reseller_id="system",
            customer_data=CustomerData(name=name, phone=phone),
        )

    return _make
