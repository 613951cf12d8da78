"""
Automation rule management (CRUD and execution logs)
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from crm_core.core.database import transaction
from crm_core.core.exceptions import NotFoundError, ValidationError
from crm_core.models.automation import AutomationLog, AutomationRule, AutomationTrigger
from crm_core.services.rule_definitions import parse_action, parse_condition

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("trigger", "condition", "action", "delay_minutes")


def _coerce_trigger(trigger) -> AutomationTrigger:
    try:
        return AutomationTrigger(trigger)
    except ValueError:
        allowed = ", ".join(t.value for t in AutomationTrigger)
        raise ValidationError(f"Invalid trigger {trigger!r}; expected one of: {allowed}")


def _check_delay(delay_minutes) -> int:
    if not isinstance(delay_minutes, int) or isinstance(delay_minutes, bool) or delay_minutes < 0:
        raise ValidationError("delay_minutes must be a non-negative integer")
    return delay_minutes


def list_rules(db: Session, business_id: int) -> List[AutomationRule]:
    return db.query(AutomationRule).filter(
        AutomationRule.business_id == business_id
    ).order_by(AutomationRule.id.desc()).all()


def get_rule(db: Session, business_id: int, rule_id: int) -> AutomationRule:
    rule = db.query(AutomationRule).filter(
        AutomationRule.id == rule_id,
        AutomationRule.business_id == business_id
    ).first()
    if not rule:
        raise NotFoundError("Automation rule not found")
    return rule


def create_rule(
    db: Session,
    business_id: int,
    trigger,
    condition: Optional[Mapping[str, Any]],
    action: Mapping[str, Any],
    delay_minutes: int = 0
) -> AutomationRule:
    """Validate and store a rule; an unknown action type is stored as-is"""
    trigger = _coerce_trigger(trigger)
    parse_condition(condition)
    parse_action(action)

    with transaction(db):
        rule = AutomationRule(
            business_id=business_id,
            trigger=trigger,
            condition=dict(condition or {}),
            action=dict(action),
            delay_minutes=_check_delay(delay_minutes),
        )
        db.add(rule)

    db.refresh(rule)
    logger.info(f"Created automation rule {rule.id} ({trigger.value}) for business {business_id}")
    return rule


def update_rule(db: Session, business_id: int, rule_id: int, fields: Mapping[str, Any]) -> AutomationRule:
    """Partial update; only keys present in ``fields`` are changed"""
    changes: Dict[str, Any] = {key: fields[key] for key in UPDATABLE_FIELDS if key in fields}
    if not changes:
        raise ValidationError("No fields to update")

    if "trigger" in changes:
        changes["trigger"] = _coerce_trigger(changes["trigger"])
    if "condition" in changes:
        parse_condition(changes["condition"])
        changes["condition"] = dict(changes["condition"] or {})
    if "action" in changes:
        parse_action(changes["action"])
        changes["action"] = dict(changes["action"])
    if "delay_minutes" in changes:
        changes["delay_minutes"] = _check_delay(changes["delay_minutes"])

    with transaction(db):
        rule = get_rule(db, business_id, rule_id)
        for key, value in changes.items():
            setattr(rule, key, value)

    db.refresh(rule)
    logger.info(f"Updated automation rule {rule_id}: {', '.join(changes)}")
    return rule


def delete_rule(db: Session, business_id: int, rule_id: int) -> None:
    with transaction(db):
        rule = get_rule(db, business_id, rule_id)
        db.delete(rule)
    logger.info(f"Deleted automation rule {rule_id}")


def list_rule_logs(db: Session, business_id: int, rule_id: int, limit: int = 100) -> List[AutomationLog]:
    """Execution history of one rule, newest first"""
    get_rule(db, business_id, rule_id)
    return db.query(AutomationLog).filter(
        AutomationLog.rule_id == rule_id
    ).order_by(AutomationLog.executed_at.desc(), AutomationLog.id.desc()).limit(limit).all()
