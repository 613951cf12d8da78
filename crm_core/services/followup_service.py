"""
Follow-up service

Reactive path: classify each inbound message, close won/lost deals and
schedule a stage-appropriate follow-up for open ones.

Proactive path: a periodic sweep that nudges contacts who went quiet, bounded
by the per-stage attempt limit of the follow-up rule table.

Also hosts the read-only analytics (hot leads, stats, sentiment).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Union

import pydantic
from pydantic import BaseModel, Field
from sqlalchemy import case, distinct, func
from sqlalchemy.orm import Session

from crm_core.core.config import settings
from crm_core.core.database import SessionLocal, transaction
from crm_core.core.exceptions import NotFoundError, ValidationError
from crm_core.models.automation import AutomationRule, AutomationTrigger, FollowUpAttempt
from crm_core.models.contact import (
    Contact,
    ContactStage,
    ContactTag,
    ContactTagName,
    HOT_LEAD_STAGES,
    TERMINAL_STAGES,
)
from crm_core.models.message import Message, MessageDirection
from crm_core.services.followup_rules import FollowUpRuleTable
from crm_core.services.keyword_classifier import DealStatus, Sentiment, classify_deal, classify_sentiment
from crm_core.services.pipeline_service import add_contact_tag, change_contact_stage

logger = logging.getLogger(__name__)

_CLOSING_OUTCOMES = {
    DealStatus.WON: (ContactStage.WON, ContactTagName.DEAL_CLOSED),
    DealStatus.LOST: (ContactStage.LOST, ContactTagName.DEAL_LOST),
}


@dataclass
class InboundAnalysis:
    message_id: int
    contact_id: int
    deal_status: Optional[DealStatus]
    previous_stage: Optional[ContactStage]
    current_stage: Optional[ContactStage]
    tag_added: Optional[str] = None
    scheduled_rule_id: Optional[int] = None


class CustomFollowUpDefinition(BaseModel):
    stage: ContactStage
    hours_after_last_message: int = Field(gt=0)
    message_template: str = Field(min_length=1)
    max_followups: int = Field(gt=0)


@dataclass
class _SweepCandidate:
    contact_id: int
    business_id: int
    phone: str
    name: Optional[str]
    stage: ContactStage
    last_message_at: datetime


class FollowUpService:
    def __init__(self, messaging, bus, rule_table: Optional[FollowUpRuleTable] = None, session_factory=SessionLocal):
        self.messaging = messaging
        self.bus = bus
        self.rule_table = rule_table or FollowUpRuleTable()
        self.session_factory = session_factory

    # =========================================================================
    # Reactive path
    # =========================================================================

    async def on_inbound_message(self, db: Session, message_id: int) -> Optional[InboundAnalysis]:
        """Webhook-side wrapper: classification failures are logged, not raised"""
        try:
            return await self.analyze_message(db, message_id)
        except Exception as e:
            logger.error(f"Follow-up analysis of message {message_id} failed: {e}", exc_info=True)
            db.rollback()
            return None

    async def analyze_message(self, db: Session, message_id: int, business_id: Optional[int] = None) -> InboundAnalysis:
        query = db.query(Message).filter(Message.id == message_id)
        if business_id is not None:
            query = query.filter(Message.business_id == business_id)
        message = query.first()
        if not message:
            raise NotFoundError(f"Message {message_id} not found")

        contact = db.query(Contact).filter(
            Contact.id == message.contact_id,
            Contact.business_id == message.business_id
        ).first()
        if not contact:
            raise NotFoundError(f"Contact for message {message_id} not found")

        previous_stage = ContactStage(contact.stage)
        result = InboundAnalysis(
            message_id=message.id,
            contact_id=contact.id,
            deal_status=None,
            previous_stage=previous_stage,
            current_stage=previous_stage,
        )
        if message.direction == MessageDirection.OUTBOUND:
            return result

        status = classify_deal(message.content)
        result.deal_status = status
        logger.info(f"Message {message_id} from contact {contact.id} classified as {status.value}")

        if status in _CLOSING_OUTCOMES:
            to_stage, tag = _CLOSING_OUTCOMES[status]
            with transaction(db):
                history = change_contact_stage(db, contact, to_stage)
                if add_contact_tag(db, contact.business_id, contact.id, tag.value):
                    result.tag_added = tag.value
            result.current_stage = to_stage

            if history is not None:
                await self.bus.fire(db, AutomationTrigger.STAGE_CHANGED, {
                    "business_id": contact.business_id,
                    "contact_id": contact.id,
                    "from_stage": previous_stage.value,
                    "to_stage": to_stage.value,
                    "stage": to_stage.value,
                })
            return result

        if status == DealStatus.NEEDS_FOLLOWUP:
            with transaction(db):
                if add_contact_tag(db, contact.business_id, contact.id, ContactTagName.NEEDS_FOLLOWUP.value):
                    result.tag_added = ContactTagName.NEEDS_FOLLOWUP.value

        db.refresh(contact)
        result.current_stage = ContactStage(contact.stage)
        if contact.is_terminal:
            logger.info(f"Contact {contact.id} is {contact.stage.value}; no follow-up scheduled")
            return result

        result.scheduled_rule_id = self.schedule_followup(db, contact)
        return result

    def schedule_followup(self, db: Session, contact: Contact) -> Optional[int]:
        """
        Persist the one-shot follow-up rule for the contact's current stage.

        A contact has at most one such rule; a newer message replaces the
        pending rule's text and delay instead of adding another row.
        """
        rule = self.rule_table.for_stage(contact.stage)
        if rule is None:
            return None

        action = {
            "type": "send_message",
            "message": self.rule_table.render(rule, contact.name),
        }
        with transaction(db):
            automation_rule = self._pending_followup_rule(db, contact)
            if automation_rule is None:
                automation_rule = AutomationRule(
                    business_id=contact.business_id,
                    trigger=AutomationTrigger.SCHEDULED_FOLLOWUP,
                    condition={"contact_id": contact.id},
                )
                db.add(automation_rule)
            automation_rule.action = action
            automation_rule.delay_minutes = rule.delay_minutes
            db.flush()
            rule_id = automation_rule.id

        logger.info(f"Scheduled follow-up rule {rule_id} for contact {contact.id} in {rule.hours_after_last_message}h")
        return rule_id

    def _pending_followup_rule(self, db: Session, contact: Contact) -> Optional[AutomationRule]:
        candidates = db.query(AutomationRule).filter(
            AutomationRule.business_id == contact.business_id,
            AutomationRule.trigger == AutomationTrigger.SCHEDULED_FOLLOWUP
        ).order_by(AutomationRule.id).all()
        for automation_rule in candidates:
            if (automation_rule.condition or {}).get("contact_id") == contact.id:
                return automation_rule
        return None

    # =========================================================================
    # Proactive sweep
    # =========================================================================

    async def run_scheduled_sweep(self) -> Optional[Dict[str, int]]:
        """Timer entry point; never raises"""
        try:
            return await self.process_pending_followups()
        except Exception as e:
            logger.error(f"Follow-up sweep failed: {e}", exc_info=True)
            return None

    async def process_pending_followups(self, db: Optional[Session] = None) -> Dict[str, int]:
        owns_session = db is None
        if owns_session:
            db = self.session_factory()
        try:
            return await self._sweep(db)
        finally:
            if owns_session:
                db.close()

    async def _sweep(self, db: Session) -> Dict[str, int]:
        now = datetime.utcnow()
        summary = {"candidates": 0, "sent": 0, "skipped": 0, "failed": 0}

        candidates = self._load_candidates(db, now - timedelta(hours=settings.FOLLOWUP_PREFILTER_HOURS))
        summary["candidates"] = len(candidates)

        for candidate in candidates:
            rule = self.rule_table.for_stage(candidate.stage)
            if rule is None:
                summary["skipped"] += 1
                continue

            attempts = db.query(func.count(FollowUpAttempt.id)).filter(
                FollowUpAttempt.contact_id == candidate.contact_id
            ).scalar() or 0
            if attempts >= rule.max_followups:
                summary["skipped"] += 1
                continue

            hours_since = (now - candidate.last_message_at).total_seconds() / 3600
            if hours_since < rule.hours_after_last_message:
                summary["skipped"] += 1
                continue

            try:
                sent = await self.messaging.send_text(
                    db,
                    candidate.business_id,
                    candidate.phone,
                    self.rule_table.render(rule, candidate.name),
                )
                with transaction(db):
                    db.add(FollowUpAttempt(
                        business_id=candidate.business_id,
                        contact_id=candidate.contact_id,
                        stage=candidate.stage.value,
                        message_id=sent.stored_message_id,
                    ))
                    add_contact_tag(db, candidate.business_id, candidate.contact_id, ContactTagName.FOLLOWUP_SENT.value)
            except Exception as e:
                db.rollback()
                logger.error(f"Follow-up to contact {candidate.contact_id} failed: {e}")
                summary["failed"] += 1
                continue

            logger.info(f"Sent follow-up {attempts + 1}/{rule.max_followups} to contact {candidate.contact_id}")
            summary["sent"] += 1

        logger.info(
            f"Follow-up sweep done: {summary['sent']} sent, {summary['skipped']} skipped, "
            f"{summary['failed']} failed out of {summary['candidates']}"
        )
        return summary

    def _load_candidates(self, db: Session, cutoff: datetime) -> List[_SweepCandidate]:
        last_message = db.query(
            Message.contact_id.label("contact_id"),
            func.max(Message.sent_at).label("last_message_at")
        ).group_by(Message.contact_id).subquery()

        rows = db.query(Contact, last_message.c.last_message_at).join(
            last_message, last_message.c.contact_id == Contact.id
        ).filter(
            Contact.stage.notin_(TERMINAL_STAGES),
            last_message.c.last_message_at < cutoff
        ).all()

        return [
            _SweepCandidate(
                contact_id=contact.id,
                business_id=contact.business_id,
                phone=contact.phone,
                name=contact.name,
                stage=ContactStage(contact.stage),
                last_message_at=last_message_at,
            )
            for contact, last_message_at in rows
        ]

    # =========================================================================
    # Analytics
    # =========================================================================

    def identify_hot_leads(self, db: Session, business_id: int) -> List[Dict[str, Any]]:
        """Late-pipeline contacts with high recent inbound engagement"""
        since = datetime.utcnow() - timedelta(days=settings.HOT_LEAD_WINDOW_DAYS)
        inbound_count = func.sum(case((Message.direction == MessageDirection.INBOUND, 1), else_=0))
        last_interaction = func.max(Message.sent_at)

        rows = db.query(
            Contact.id,
            Contact.name,
            Contact.phone,
            Contact.stage,
            func.count(Message.id).label("message_count"),
            inbound_count.label("inbound_count"),
            last_interaction.label("last_interaction"),
        ).join(
            Message, Message.contact_id == Contact.id
        ).filter(
            Contact.business_id == business_id,
            Contact.stage.in_(HOT_LEAD_STAGES),
            Message.sent_at >= since
        ).group_by(
            Contact.id, Contact.name, Contact.phone, Contact.stage
        ).having(
            inbound_count >= settings.HOT_LEAD_MIN_INBOUND
        ).order_by(last_interaction.desc()).all()

        return [
            {
                "contact_id": row.id,
                "name": row.name,
                "phone": row.phone,
                "stage": ContactStage(row.stage).value,
                "message_count": row.message_count,
                "inbound_count": int(row.inbound_count or 0),
                "last_interaction": row.last_interaction,
            }
            for row in rows
        ]

    def get_followup_stats(self, db: Session, business_id: int) -> Dict[str, int]:
        def contacts_in(stage: ContactStage) -> int:
            return db.query(func.count(Contact.id)).filter(
                Contact.business_id == business_id,
                Contact.stage == stage
            ).scalar() or 0

        def contacts_tagged(tag: ContactTagName) -> int:
            return db.query(func.count(distinct(ContactTag.contact_id))).filter(
                ContactTag.business_id == business_id,
                ContactTag.tag == tag.value
            ).scalar() or 0

        total = db.query(func.count(Contact.id)).filter(Contact.business_id == business_id).scalar() or 0
        return {
            "total_contacts": total,
            "deals_won": contacts_in(ContactStage.WON),
            "deals_lost": contacts_in(ContactStage.LOST),
            "followups_sent": contacts_tagged(ContactTagName.FOLLOWUP_SENT),
            "needs_followup": contacts_tagged(ContactTagName.NEEDS_FOLLOWUP),
        }

    def analyze_conversation_sentiment(self, db: Session, contact_id: int, business_id: Optional[int] = None) -> Sentiment:
        if business_id is not None:
            exists = db.query(Contact.id).filter(
                Contact.id == contact_id,
                Contact.business_id == business_id
            ).first()
            if not exists:
                raise NotFoundError("Contact not found")

        query = db.query(Message.content).filter(
            Message.contact_id == contact_id,
            Message.direction == MessageDirection.INBOUND
        )
        if business_id is not None:
            query = query.filter(Message.business_id == business_id)

        rows = query.order_by(Message.sent_at.desc(), Message.id.desc()).limit(settings.SENTIMENT_WINDOW).all()
        return classify_sentiment((row.content for row in rows), window_size=settings.SENTIMENT_WINDOW)

    def create_custom_followup_rule(
        self,
        db: Session,
        business_id: int,
        definition: Union[CustomFollowUpDefinition, Mapping[str, Any]],
    ) -> AutomationRule:
        """Persist a business-defined follow-up rule; the built-in table is unchanged"""
        if not isinstance(definition, CustomFollowUpDefinition):
            try:
                definition = CustomFollowUpDefinition.model_validate(dict(definition or {}))
            except pydantic.ValidationError as e:
                details = "; ".join(f"{'.'.join(map(str, error['loc']))}: {error['msg']}" for error in e.errors())
                raise ValidationError(f"Invalid follow-up rule: {details}") from e

        with transaction(db):
            rule = AutomationRule(
                business_id=business_id,
                trigger=AutomationTrigger.CUSTOM_FOLLOWUP,
                condition={"stage": definition.stage.value},
                action={
                    "type": "send_message",
                    "message": definition.message_template,
                    "max_followups": definition.max_followups,
                },
                delay_minutes=definition.hours_after_last_message * 60,
            )
            db.add(rule)

        db.refresh(rule)
        logger.info(f"Created custom follow-up rule {rule.id} for stage {definition.stage.value}")
        return rule
