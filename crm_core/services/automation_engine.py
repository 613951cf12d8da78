"""
Automation rule engine

Evaluates a business's rules for one trigger against the event payload and
executes the matching actions. Each rule runs in its own failure scope: its
writes and its AutomationLog row are committed together, or rolled back and
replaced by a failed log row.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_core.core.exceptions import NotFoundError, ValidationError
from crm_core.models.automation import AutomationLog, AutomationLogStatus, AutomationRule
from crm_core.models.contact import Contact
from crm_core.services.pipeline_service import add_contact_tag, change_contact_stage, get_contact
from crm_core.services.rule_definitions import (
    AddTagAction,
    SendMessageAction,
    SendTemplateAction,
    UpdateStageAction,
    evaluate_condition,
    parse_action,
    parse_condition,
)
from crm_core.services.trigger_bus import TriggerEvent

logger = logging.getLogger(__name__)


@dataclass
class DispatchSummary:
    matched: List[int] = field(default_factory=list)
    succeeded: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)


@dataclass
class _RuleSnapshot:
    id: int
    condition: Any
    action: Any
    delay_minutes: int


class AutomationEngine:
    def __init__(self, messaging):
        self.messaging = messaging

    async def trigger_automation(self, db: Session, trigger, payload: Optional[Mapping[str, Any]]) -> Optional[DispatchSummary]:
        """Entry point for domain events. Failures are logged, never raised."""
        try:
            event = TriggerEvent.build(trigger, payload)
            return await self.dispatch(db, event)
        except Exception as e:
            logger.error(f"Automation dispatch for {trigger} failed: {e}", exc_info=True)
            db.rollback()
            return None

    async def dispatch(self, db: Session, event: TriggerEvent) -> DispatchSummary:
        rules = [
            _RuleSnapshot(
                id=rule.id,
                condition=rule.condition,
                action=rule.action,
                delay_minutes=rule.delay_minutes or 0,
            )
            for rule in db.query(AutomationRule).filter(
                AutomationRule.business_id == event.business_id,
                AutomationRule.trigger == event.trigger
            ).order_by(AutomationRule.id).all()
        ]

        summary = DispatchSummary()
        for rule in rules:
            payload = event.as_payload()
            try:
                if not evaluate_condition(parse_condition(rule.condition), payload):
                    continue
                action = parse_action(rule.action)
            except ValidationError as e:
                summary.matched.append(rule.id)
                self._record_failure(db, rule, event, payload, e)
                summary.failed.append(rule.id)
                continue

            summary.matched.append(rule.id)
            if action is None:
                logger.warning(f"Rule {rule.id} has unknown action type {rule.action.get('type')!r}; treating as no-op")
                self._record_noop(db, rule, event, payload)
                summary.skipped.append(rule.id)
                continue

            if rule.delay_minutes > 0:
                logger.warning(
                    f"Rule {rule.id} asks for a {rule.delay_minutes} minute delay; "
                    f"delays are not supported, executing now"
                )

            try:
                contact = await self._execute_action(db, event.business_id, action, payload)
                db.add(AutomationLog(
                    rule_id=rule.id,
                    contact_id=contact.id if contact else None,
                    status=AutomationLogStatus.SUCCESS,
                    trigger_data=jsonable_encoder(payload),
                ))
                db.commit()
            except Exception as e:
                db.rollback()
                self._record_failure(db, rule, event, payload, e)
                summary.failed.append(rule.id)
                continue

            logger.info(f"Rule {rule.id} executed for {event.trigger.value}")
            summary.succeeded.append(rule.id)

        return summary

    async def _execute_action(self, db: Session, business_id: int, action, payload: Dict[str, Any]) -> Optional[Contact]:
        contact = self._resolve_contact(db, business_id, payload)

        if isinstance(action, SendMessageAction):
            await self.messaging.send_text(db, business_id, contact.phone, action.text)
        elif isinstance(action, SendTemplateAction):
            await self.messaging.send_template(db, business_id, contact.phone, action.template_id)
        elif isinstance(action, UpdateStageAction):
            change_contact_stage(db, contact, action.stage)
        elif isinstance(action, AddTagAction):
            add_contact_tag(db, business_id, contact.id, action.tag)
        return contact

    def _resolve_contact(self, db: Session, business_id: int, payload: Dict[str, Any]) -> Contact:
        contact_id = payload.get("contact_id")
        if contact_id is None:
            raise ValidationError("Action needs a contact_id in the trigger payload")
        contact = get_contact(db, business_id, contact_id)
        if not contact:
            raise NotFoundError(f"Contact {contact_id} not found")
        return contact

    def _record_noop(self, db: Session, rule: _RuleSnapshot, event: TriggerEvent, payload):
        contact_id = payload.get("contact_id")
        contact = get_contact(db, event.business_id, contact_id) if isinstance(contact_id, int) else None
        try:
            db.add(AutomationLog(
                rule_id=rule.id,
                contact_id=contact.id if contact else None,
                status=AutomationLogStatus.SUCCESS,
                trigger_data=jsonable_encoder(payload),
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Could not write log for rule {rule.id}: {e}")

    def _record_failure(self, db: Session, rule: _RuleSnapshot, event: TriggerEvent, payload, error: Exception):
        logger.error(f"Rule {rule.id} failed for {event.trigger.value}: {error}")
        contact_id = payload.get("contact_id")
        contact = get_contact(db, event.business_id, contact_id) if isinstance(contact_id, int) else None
        try:
            db.add(AutomationLog(
                rule_id=rule.id,
                contact_id=contact.id if contact else None,
                status=AutomationLogStatus.FAILED,
                trigger_data=jsonable_encoder(payload),
                error_message=str(error),
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Could not write failure log for rule {rule.id}: {e}")
