"""
Shared test fixtures
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("FOLLOWUP_SCHEDULER_ENABLED", "false")

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from crm_core.core.database import Base
from crm_core.core.exceptions import SendError
from crm_core.models import Business, Contact, ContactStage, Message, MessageDirection
from crm_core.services.automation_engine import AutomationEngine
from crm_core.services.followup_service import FollowUpService
from crm_core.services.trigger_bus import TriggerBus
from crm_core.services.whatsapp_service import SendResult


class FakeMessagingGateway:
    """Records sends instead of calling WhatsApp"""

    def __init__(self, failing_phones=()):
        self.failing_phones = set(failing_phones)
        self.sent = []

    async def send_text(self, db, business_id, phone, text):
        if phone in self.failing_phones:
            raise SendError(f"provider rejected {phone}")
        self.sent.append({"business_id": business_id, "phone": phone, "text": text})
        return SendResult(message_id=f"wamid.{len(self.sent)}")

    async def send_template(self, db, business_id, phone, template):
        if phone in self.failing_phones:
            raise SendError(f"provider rejected {phone}")
        self.sent.append({"business_id": business_id, "phone": phone, "template": template})
        return SendResult(message_id=f"wamid.{len(self.sent)}")

    def texts_to(self, phone):
        return [item.get("text") for item in self.sent if item["phone"] == phone]


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    """Create test database session"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def business(db_session):
    business = Business(business_name="Acme Bakery", email="owner@acme.test")
    db_session.add(business)
    db_session.commit()
    return business


@pytest.fixture
def make_contact(db_session, business):
    def _make(phone="15550001111", name="Alice", stage=ContactStage.NEW, business_id=None):
        contact = Contact(
            business_id=business_id or business.id,
            phone=phone,
            name=name,
            stage=stage,
        )
        db_session.add(contact)
        db_session.commit()
        return contact
    return _make


@pytest.fixture
def make_message(db_session):
    def _make(contact, content, direction=MessageDirection.INBOUND, hours_ago=0):
        message = Message(
            business_id=contact.business_id,
            contact_id=contact.id,
            direction=direction,
            content=content,
            status="delivered",
            sent_at=datetime.utcnow() - timedelta(hours=hours_ago),
        )
        db_session.add(message)
        db_session.commit()
        return message
    return _make


@pytest.fixture
def messaging():
    return FakeMessagingGateway()


@pytest.fixture
def engine(messaging):
    return AutomationEngine(messaging)


@pytest.fixture
def bus(engine):
    return TriggerBus(engine)


@pytest.fixture
def followup(messaging, bus, session_factory):
    return FollowUpService(messaging, bus, session_factory=session_factory)


def build_webhook(phone="15550001111", name="Dana", text="Hello", phone_number_id="PNID-1", timestamp="1700000000"):
    """Meta WhatsApp Cloud API inbound message delivery"""
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "WABA-1",
            "changes": [{
                "field": "messages",
                "value": {
                    "messaging_product": "whatsapp",
                    "metadata": {"display_phone_number": "15550009999", "phone_number_id": phone_number_id},
                    "contacts": [{"profile": {"name": name}, "wa_id": phone}],
                    "messages": [{
                        "from": phone,
                        "id": "wamid.IN1",
                        "timestamp": timestamp,
                        "type": "text",
                        "text": {"body": text},
                    }],
                },
            }],
        }],
    }


@pytest.fixture
def webhook_payload():
    return build_webhook
