"""
Trigger bus: the one place domain events enter rule evaluation
"""
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from crm_core.core.exceptions import ValidationError
from crm_core.models.automation import AutomationTrigger

logger = logging.getLogger(__name__)


@dataclass
class TriggerEvent:
    business_id: int
    trigger: AutomationTrigger
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(cls, trigger, payload: Optional[Mapping[str, Any]]) -> "TriggerEvent":
        """Validate a trigger name and a payload carrying business_id"""
        try:
            trigger = AutomationTrigger(trigger)
        except ValueError:
            raise ValidationError(f"Unknown trigger {trigger!r}")

        payload = dict(payload or {})
        business_id = payload.get("business_id")
        if not isinstance(business_id, int) or isinstance(business_id, bool):
            raise ValidationError(f"Trigger {trigger.value} payload needs an integer business_id")
        return cls(business_id=business_id, trigger=trigger, payload=payload)

    @property
    def contact_id(self) -> Optional[int]:
        return self.payload.get("contact_id")

    def as_payload(self) -> Dict[str, Any]:
        """Independent copy, so one rule's evaluation cannot leak into another's"""
        return copy.deepcopy(self.payload)


class TriggerBus:
    """Forwards domain events to the automation engine. Never raises."""

    def __init__(self, engine):
        self.engine = engine

    async def fire(self, db: Session, trigger, payload: Optional[Mapping[str, Any]] = None):
        try:
            event = TriggerEvent.build(trigger, payload)
        except ValidationError as e:
            logger.warning(f"Dropping event: {e.message}")
            return None

        logger.debug(f"Firing {event.trigger.value} for business {event.business_id}")
        return await self.engine.trigger_automation(db, event.trigger, event.as_payload())
