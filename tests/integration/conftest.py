"""Fixtures wiring the FastAPI app to a fresh store, a frozen clock and a fake transport."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from recharge_engine.main import create_app
from recharge_engine.models import SendResult
from recharge_engine.repositories import InMemoryStore, set_store
from recharge_engine.services import reset_services
from recharge_engine.services.time_controller import TimeController, set_time_controller
from recharge_engine.services.whatsapp import set_notification_transport

from support import START_TIME


@pytest.fixture
def transport():
    transport = MagicMock()
    transport.is_configured = True
    transport.send_message.return_value = SendResult(success=True, message_id="msg-checkout")
    transport.send_reminder.return_value = SendResult(success=True, message_id="msg-reminder")
    transport.test_connection.return_value = {"success": True, "details": {"connected": True}}
    return transport


@pytest.fixture
def engine_store():
    return InMemoryStore()


@pytest.fixture
def virtual_clock():
    return TimeController(start_time=START_TIME)


@pytest.fixture(autouse=True)
def wired_engine(engine_store, virtual_clock, transport):
    set_store(engine_store)
    set_time_controller(virtual_clock)
    set_notification_transport(transport)
    reset_services()
    yield
    reset_services()
    set_store(None)
    set_time_controller(None)
    set_notification_transport(None)


@pytest.fixture
def client():
    return TestClient(create_app())


@pytest.fixture
def customer():
    return {"name": "Maria Silva", "phone": "(11) 98888-7777", "email": "maria@example.com"}
