"""
SQLAlchemy models
"""
from crm_core.models.business import Business
from crm_core.models.contact import Contact, ContactStage, ContactTag, ContactTagName, PipelineHistory
from crm_core.models.message import Message, MessageDirection
from crm_core.models.whatsapp import WhatsAppAccount, MessageTemplate
from crm_core.models.automation import (
    AutomationRule, AutomationLog, AutomationTrigger, AutomationLogStatus, FollowUpAttempt
)

__all__ = [
    "Business",
    "Contact",
    "ContactStage",
    "ContactTag",
    "ContactTagName",
    "PipelineHistory",
    "Message",
    "MessageDirection",
    "WhatsAppAccount",
    "MessageTemplate",
    "AutomationRule",
    "AutomationLog",
    "AutomationTrigger",
    "AutomationLogStatus",
    "FollowUpAttempt",
]
