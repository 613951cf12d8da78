"""
Tests for inbound classification, follow-up scheduling and the sweep
"""
from datetime import datetime, timedelta

import pytest
from crm_core.core.exceptions import NotFoundError, ValidationError
from crm_core.models import (
    AutomationLog,
    AutomationRule,
    AutomationTrigger,
    ContactStage,
    ContactTag,
    FollowUpAttempt,
    MessageDirection,
    PipelineHistory,
)
from crm_core.services.followup_rules import FollowUpRule, FollowUpRuleTable
from crm_core.services.followup_service import FollowUpService
from crm_core.services.keyword_classifier import DealStatus, Sentiment


def tags_of(db_session, contact):
    return {row.tag for row in db_session.query(ContactTag).filter(ContactTag.contact_id == contact.id)}


def scheduled_rules(db_session, contact):
    return db_session.query(AutomationRule).filter(
        AutomationRule.trigger == AutomationTrigger.SCHEDULED_FOLLOWUP,
        AutomationRule.business_id == contact.business_id
    ).all()


# ---------------------------------------------------------------------------
# Reactive path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_won_message_closes_deal(db_session, make_contact, make_message, followup):
    contact = make_contact(stage=ContactStage.NEGOTIATION)
    message = make_message(contact, "Yes, let's proceed with the order")

    result = await followup.analyze_message(db_session, message.id)

    assert result.deal_status == DealStatus.WON
    assert result.previous_stage == ContactStage.NEGOTIATION
    assert result.current_stage == ContactStage.WON
    assert result.scheduled_rule_id is None

    db_session.refresh(contact)
    assert contact.stage == ContactStage.WON
    history = db_session.query(PipelineHistory).filter(PipelineHistory.contact_id == contact.id).one()
    assert (history.from_stage, history.to_stage) == ("Negotiation", "Won")
    assert "deal-closed" in tags_of(db_session, contact)
    assert scheduled_rules(db_session, contact) == []


@pytest.mark.asyncio
async def test_lost_message_fires_stage_changed(db_session, business, make_contact, make_message, followup, messaging):
    db_session.add(AutomationRule(
        business_id=business.id,
        trigger=AutomationTrigger.STAGE_CHANGED,
        condition={"stage": "Lost"},
        action={"type": "send_message", "message": "Sorry to see you go"},
    ))
    db_session.commit()
    contact = make_contact(stage=ContactStage.PROPOSAL)
    message = make_message(contact, "Not interested, thanks")

    result = await followup.analyze_message(db_session, message.id)

    assert result.deal_status == DealStatus.LOST
    assert "deal-lost" in tags_of(db_session, contact)
    assert messaging.texts_to(contact.phone) == ["Sorry to see you go"]
    assert db_session.query(AutomationLog).count() == 1


@pytest.mark.asyncio
async def test_needs_followup_schedules_stage_rule(db_session, make_contact, make_message, followup):
    contact = make_contact(name="Bob", stage=ContactStage.QUALIFIED)
    message = make_message(contact, "I need to think about it")

    result = await followup.analyze_message(db_session, message.id)

    assert result.deal_status == DealStatus.NEEDS_FOLLOWUP
    assert result.tag_added == "needs-followup"
    assert "needs-followup" in tags_of(db_session, contact)

    rules = scheduled_rules(db_session, contact)
    assert len(rules) == 1
    assert rules[0].id == result.scheduled_rule_id
    assert rules[0].delay_minutes == 1440
    assert rules[0].condition == {"contact_id": contact.id}
    assert rules[0].action == {
        "type": "send_message",
        "message": "Hi Bob! Just checking in. Do you have any questions about moving forward?",
    }


@pytest.mark.asyncio
async def test_neutral_message_schedules_followup_with_default_name(db_session, make_contact, make_message, followup):
    contact = make_contact(name=None, stage=ContactStage.PROPOSAL)
    message = make_message(contact, "What are your opening hours?")

    result = await followup.analyze_message(db_session, message.id)

    assert result.deal_status == DealStatus.NEUTRAL
    rule = scheduled_rules(db_session, contact)[0]
    assert rule.delay_minutes == 12 * 60
    assert rule.action["message"] == "Hi there! Have you had a chance to review the proposal I sent?"


@pytest.mark.asyncio
async def test_repeat_messages_keep_one_scheduled_rule(db_session, make_contact, make_message, followup):
    contact = make_contact(name="Bob", stage=ContactStage.QUALIFIED)
    first = await followup.analyze_message(db_session, make_message(contact, "Hello").id)

    contact.stage = ContactStage.PROPOSAL
    db_session.commit()
    second = await followup.analyze_message(db_session, make_message(contact, "Still reading it").id)

    rules = scheduled_rules(db_session, contact)
    assert len(rules) == 1
    assert second.scheduled_rule_id == first.scheduled_rule_id == rules[0].id
    assert rules[0].delay_minutes == 12 * 60
    assert rules[0].action["message"] == "Hi Bob! Have you had a chance to review the proposal I sent?"


@pytest.mark.asyncio
async def test_second_contact_gets_its_own_scheduled_rule(db_session, make_contact, make_message, followup):
    alice = make_contact(phone="15550001111", name="Alice", stage=ContactStage.NEW)
    bob = make_contact(phone="15550002222", name="Bob", stage=ContactStage.NEW)

    await followup.analyze_message(db_session, make_message(alice, "Hello").id)
    await followup.analyze_message(db_session, make_message(bob, "Hello").id)

    rules = scheduled_rules(db_session, alice)
    assert sorted(rule.condition["contact_id"] for rule in rules) == sorted([alice.id, bob.id])


@pytest.mark.asyncio
async def test_terminal_contact_never_gets_followup(db_session, make_contact, make_message, followup):
    contact = make_contact(stage=ContactStage.WON)
    message = make_message(contact, "hmm, let me think")

    result = await followup.analyze_message(db_session, message.id)

    assert result.scheduled_rule_id is None
    assert scheduled_rules(db_session, contact) == []


@pytest.mark.asyncio
async def test_outbound_messages_are_ignored(db_session, make_contact, make_message, followup):
    contact = make_contact(stage=ContactStage.NEGOTIATION)
    message = make_message(contact, "Yes, confirmed", direction=MessageDirection.OUTBOUND)

    result = await followup.analyze_message(db_session, message.id)

    assert result.deal_status is None
    db_session.refresh(contact)
    assert contact.stage == ContactStage.NEGOTIATION


@pytest.mark.asyncio
async def test_unknown_message(db_session, followup):
    with pytest.raises(NotFoundError):
        await followup.analyze_message(db_session, 999)
    assert await followup.on_inbound_message(db_session, 999) is None


@pytest.mark.asyncio
async def test_analyze_message_is_tenant_scoped(db_session, business, make_contact, make_message, followup):
    contact = make_contact()
    message = make_message(contact, "hello")
    with pytest.raises(NotFoundError):
        await followup.analyze_message(db_session, message.id, business_id=business.id + 1)


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sweep_sends_to_quiet_contacts(db_session, make_contact, make_message, followup, messaging):
    quiet = make_contact(phone="100", name="Quiet", stage=ContactStage.NEW)
    make_message(quiet, "hello", hours_ago=30)
    recent = make_contact(phone="200", stage=ContactStage.NEW)
    make_message(recent, "hello", hours_ago=2)
    closed = make_contact(phone="300", stage=ContactStage.LOST)
    make_message(closed, "hello", hours_ago=100)
    make_contact(phone="400")  # no messages at all

    summary = await followup.process_pending_followups(db_session)

    assert summary == {"candidates": 1, "sent": 1, "skipped": 0, "failed": 0}
    assert messaging.texts_to("100") == [
        "Hi Quiet! Just following up on our conversation. Is there anything I can help you with?"
    ]
    assert db_session.query(FollowUpAttempt).filter(FollowUpAttempt.contact_id == quiet.id).count() == 1
    assert "followup-sent" in tags_of(db_session, quiet)


@pytest.mark.asyncio
async def test_sweep_respects_hour_threshold(db_session, make_contact, make_message, followup, messaging):
    contact = make_contact(stage=ContactStage.CONTACTED)  # 48h rule
    make_message(contact, "hello", hours_ago=30)

    summary = await followup.process_pending_followups(db_session)

    assert summary["skipped"] == 1
    assert messaging.sent == []


@pytest.mark.asyncio
async def test_sweep_stops_at_max_followups(db_session, business, make_contact, make_message, followup, messaging):
    contact = make_contact(stage=ContactStage.CONTACTED)  # max 2
    make_message(contact, "hello", hours_ago=72)

    await followup.process_pending_followups(db_session)
    await followup.process_pending_followups(db_session)
    summary = await followup.process_pending_followups(db_session)

    assert len(messaging.sent) == 2
    assert summary["sent"] == 0
    assert summary["skipped"] == 1
    assert db_session.query(FollowUpAttempt).count() == 2


@pytest.mark.asyncio
async def test_sweep_isolates_send_failures(db_session, make_contact, make_message, followup, messaging):
    failing = make_contact(phone="500", stage=ContactStage.NEW)
    make_message(failing, "hello", hours_ago=40)
    working = make_contact(phone="600", stage=ContactStage.NEW)
    make_message(working, "hello", hours_ago=40)
    messaging.failing_phones.add("500")

    summary = await followup.process_pending_followups(db_session)

    assert summary["failed"] == 1
    assert summary["sent"] == 1
    assert db_session.query(FollowUpAttempt).filter(FollowUpAttempt.contact_id == failing.id).count() == 0
    assert "followup-sent" not in tags_of(db_session, failing)
    assert "followup-sent" in tags_of(db_session, working)


@pytest.mark.asyncio
async def test_scheduled_sweep_opens_its_own_session(session_factory, db_session, make_contact, make_message, followup, messaging):
    contact = make_contact(stage=ContactStage.NEW)
    make_message(contact, "hello", hours_ago=25)

    summary = await followup.run_scheduled_sweep()

    assert summary["sent"] == 1
    assert messaging.texts_to(contact.phone)


@pytest.mark.asyncio
async def test_custom_rule_table(db_session, make_contact, make_message, messaging, bus, session_factory):
    table = FollowUpRuleTable([
        FollowUpRule(stage=ContactStage.NEW, hours_after_last_message=1, message_template="Ping {name}", max_followups=1),
    ])
    service = FollowUpService(messaging, bus, rule_table=table, session_factory=session_factory)
    contact = make_contact(name="Cara", stage=ContactStage.NEW)
    make_message(contact, "hello", hours_ago=30)

    await service.process_pending_followups(db_session)

    assert messaging.texts_to(contact.phone) == ["Ping Cara"]


def test_rule_table_ignores_terminal_stages():
    table = FollowUpRuleTable([
        FollowUpRule(stage=ContactStage.WON, hours_after_last_message=1, message_template="x", max_followups=1),
    ])
    assert table.for_stage(ContactStage.WON) is None
    assert table.rules == []


def test_default_rule_table():
    table = FollowUpRuleTable()
    assert table.for_stage("Negotiation").max_followups == 5
    assert table.for_stage("Lost") is None


def test_rule_table_from_file(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text('[{"stage": "Proposal", "hours_after_last_message": 2, "message_template": "Hi {name}", "max_followups": 1}]')

    table = FollowUpRuleTable.from_file(str(path))

    assert [rule.stage for rule in table.rules] == [ContactStage.PROPOSAL]
    assert table.render(table.rules[0], None) == "Hi there"


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

def test_identify_hot_leads(db_session, business, make_contact, make_message, followup):
    hot = make_contact(phone="700", stage=ContactStage.NEGOTIATION)
    for hours in (1, 2, 3):
        make_message(hot, "tell me more", hours_ago=hours)
    make_message(hot, "sure", direction=MessageDirection.OUTBOUND, hours_ago=1)

    early = make_contact(phone="800", stage=ContactStage.NEW)
    for hours in (1, 2, 3):
        make_message(early, "hi", hours_ago=hours)

    stale = make_contact(phone="900", stage=ContactStage.PROPOSAL)
    for days in (10, 11, 12):
        make_message(stale, "hi", hours_ago=days * 24)

    leads = followup.identify_hot_leads(db_session, business.id)

    assert [lead["contact_id"] for lead in leads] == [hot.id]
    assert leads[0]["message_count"] == 4
    assert leads[0]["inbound_count"] == 3
    assert leads[0]["stage"] == "Negotiation"
    assert isinstance(leads[0]["last_interaction"], datetime)


def test_followup_stats(db_session, business, make_contact, followup):
    won = make_contact(phone="1", stage=ContactStage.WON)
    make_contact(phone="2", stage=ContactStage.LOST)
    pending = make_contact(phone="3", stage=ContactStage.QUALIFIED)
    db_session.add_all([
        ContactTag(business_id=business.id, contact_id=pending.id, tag="needs-followup"),
        ContactTag(business_id=business.id, contact_id=pending.id, tag="followup-sent"),
        ContactTag(business_id=business.id, contact_id=won.id, tag="followup-sent"),
    ])
    db_session.commit()

    stats = followup.get_followup_stats(db_session, business.id)

    assert stats == {
        "total_contacts": 3,
        "deals_won": 1,
        "deals_lost": 1,
        "followups_sent": 2,
        "needs_followup": 1,
    }


def test_conversation_sentiment(db_session, business, make_contact, make_message, followup):
    contact = make_contact()
    make_message(contact, "This is great, thanks", hours_ago=3)
    make_message(contact, "Perfect", hours_ago=2)
    make_message(contact, "no problem at all", hours_ago=1)
    make_message(contact, "no no no", direction=MessageDirection.OUTBOUND)

    assert followup.analyze_conversation_sentiment(db_session, contact.id) == Sentiment.POSITIVE
    with pytest.raises(NotFoundError):
        followup.analyze_conversation_sentiment(db_session, contact.id, business_id=business.id + 1)


def test_create_custom_followup_rule(db_session, business, followup):
    rule = followup.create_custom_followup_rule(db_session, business.id, {
        "stage": "Proposal",
        "hours_after_last_message": 6,
        "message_template": "Any thoughts on the proposal?",
        "max_followups": 2,
    })

    assert rule.trigger == AutomationTrigger.CUSTOM_FOLLOWUP
    assert rule.condition == {"stage": "Proposal"}
    assert rule.action == {"type": "send_message", "message": "Any thoughts on the proposal?", "max_followups": 2}
    assert rule.delay_minutes == 360
    assert followup.rule_table.for_stage("Proposal").hours_after_last_message == 12


def test_create_custom_followup_rule_validation(db_session, business, followup):
    with pytest.raises(ValidationError):
        followup.create_custom_followup_rule(db_session, business.id, {"stage": "Proposal", "hours_after_last_message": 0, "message_template": "x", "max_followups": 1})
    with pytest.raises(ValidationError):
        followup.create_custom_followup_rule(db_session, business.id, {"stage": "Archived", "hours_after_last_message": 1, "message_template": "x", "max_followups": 1})


def test_custom_followup_rule_requires_max_followups(db_session, business, followup):
    with pytest.raises(ValidationError, match="max_followups"):
        followup.create_custom_followup_rule(db_session, business.id, {
            "stage": "New",
            "hours_after_last_message": 5,
            "message_template": "Hi",
        })
    with pytest.raises(ValidationError, match="max_followups"):
        followup.create_custom_followup_rule(db_session, business.id, {
            "stage": "New",
            "hours_after_last_message": 5,
            "message_template": "Hi",
            "max_followups": 0,
        })
    assert db_session.query(AutomationRule).count() == 0
