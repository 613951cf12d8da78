"""
Tests for inbound webhook processing
"""
import pytest
from crm_core.models import (
    AutomationRule,
    AutomationTrigger,
    Contact,
    ContactStage,
    ContactTag,
    Message,
    MessageDirection,
    WhatsAppAccount,
)
from crm_core.services.webhook_service import WebhookService


@pytest.fixture
def account(db_session, business):
    account = WhatsAppAccount(
        business_id=business.id,
        phone_number="+15550009999",
        api_token="token",
        phone_number_id="PNID-1",
    )
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture
def webhooks(bus, followup):
    return WebhookService(bus, followup)


def test_resolve_business_id(db_session, business, account, webhooks, webhook_payload):
    assert webhooks.resolve_business_id(db_session, webhook_payload()) == business.id
    assert webhooks.resolve_business_id(db_session, webhook_payload(phone_number_id="unknown")) is None
    assert webhooks.resolve_business_id(db_session, {"object": "whatsapp_business_account"}) is None


@pytest.mark.asyncio
async def test_first_message_creates_contact_and_fires_welcome(db_session, business, account, webhooks, messaging, webhook_payload):
    db_session.add(AutomationRule(
        business_id=business.id,
        trigger=AutomationTrigger.CONTACT_CREATED,
        condition={},
        action={"type": "send_message", "message": "Welcome!"},
    ))
    db_session.commit()

    message = await webhooks.process_incoming_message(db_session, webhook_payload(), business.id)

    contact = db_session.query(Contact).filter(Contact.phone == "15550001111").one()
    assert contact.name == "Dana"
    assert contact.stage == ContactStage.NEW
    assert contact.last_active is not None
    assert message.direction == MessageDirection.INBOUND
    assert message.status == "delivered"
    assert message.whatsapp_account_id == account.id
    assert message.sent_at.year == 2023
    assert messaging.texts_to("15550001111") == ["Welcome!"]


@pytest.mark.asyncio
async def test_repeat_sender_reuses_contact(db_session, business, account, webhooks, messaging, webhook_payload):
    db_session.add(AutomationRule(
        business_id=business.id,
        trigger=AutomationTrigger.CONTACT_CREATED,
        condition={},
        action={"type": "send_message", "message": "Welcome!"},
    ))
    db_session.commit()

    await webhooks.process_incoming_message(db_session, webhook_payload(text="Hi"), business.id)
    await webhooks.process_incoming_message(db_session, webhook_payload(text="Are you open?"), business.id)

    assert db_session.query(Contact).count() == 1
    assert db_session.query(Message).count() == 2
    assert messaging.texts_to("15550001111") == ["Welcome!"]


@pytest.mark.asyncio
async def test_message_received_rules_and_classification(db_session, business, account, webhooks, webhook_payload):
    db_session.add(AutomationRule(
        business_id=business.id,
        trigger=AutomationTrigger.MESSAGE_RECEIVED,
        condition={"content": {"operator": "contains", "value": "price"}},
        action={"type": "add_tag", "tag": "asked-price"},
    ))
    db_session.commit()

    await webhooks.process_incoming_message(db_session, webhook_payload(text="What's the price? Yes, I'll buy it"), business.id)

    contact = db_session.query(Contact).one()
    tags = {row.tag for row in db_session.query(ContactTag).filter(ContactTag.contact_id == contact.id)}
    assert tags == {"asked-price", "deal-closed"}
    assert contact.stage == ContactStage.WON


@pytest.mark.asyncio
async def test_invalid_payload_is_ignored(db_session, business, webhooks):
    assert await webhooks.process_incoming_message(db_session, {"entry": []}, business.id) is None
    assert await webhooks.process_incoming_message(db_session, {"object": "x", "entry": [{"changes": [{"value": {}}]}]}, business.id) is None
    assert db_session.query(Contact).count() == 0
