"""
Service wiring

Every service is built once here and handed to the app and the scheduler.
Tests build a container around fakes instead.
"""
from dataclasses import dataclass
from typing import Optional

from crm_core.core.config import settings
from crm_core.core.database import SessionLocal
from crm_core.services.automation_engine import AutomationEngine
from crm_core.services.followup_rules import FollowUpRuleTable
from crm_core.services.followup_service import FollowUpService
from crm_core.services.trigger_bus import TriggerBus
from crm_core.services.webhook_service import WebhookService
from crm_core.services.whatsapp_service import WhatsAppService


@dataclass
class ServiceContainer:
    messaging: object
    engine: AutomationEngine
    bus: TriggerBus
    followup: FollowUpService
    webhooks: WebhookService

    async def close(self):
        close = getattr(self.messaging, "close", None)
        if close is not None:
            await close()


def load_rule_table(path: Optional[str] = None) -> FollowUpRuleTable:
    path = path or settings.FOLLOWUP_RULES_FILE
    if path:
        return FollowUpRuleTable.from_file(path)
    return FollowUpRuleTable()


def build_container(messaging=None, rule_table: Optional[FollowUpRuleTable] = None, session_factory=SessionLocal) -> ServiceContainer:
    messaging = messaging or WhatsAppService()
    engine = AutomationEngine(messaging)
    bus = TriggerBus(engine)
    followup = FollowUpService(
        messaging,
        bus,
        rule_table=rule_table or load_rule_table(),
        session_factory=session_factory,
    )
    return ServiceContainer(
        messaging=messaging,
        engine=engine,
        bus=bus,
        followup=followup,
        webhooks=WebhookService(bus, followup),
    )
