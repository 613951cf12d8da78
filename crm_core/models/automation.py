"""
Automation rule, execution log and follow-up attempt models
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from crm_core.core.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class AutomationTrigger(str, enum.Enum):
    CONTACT_CREATED = "contact_created"
    MESSAGE_RECEIVED = "message_received"
    STAGE_CHANGED = "stage_changed"
    SCHEDULED_FOLLOWUP = "scheduled_followup"
    CUSTOM_FOLLOWUP = "custom_followup"


class AutomationLogStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


class AutomationRule(Base):
    __tablename__ = "automation_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    trigger = Column(
        SQLEnum(AutomationTrigger, name="automationtrigger", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )
    condition = Column(JSONType, nullable=False, default=dict)
    action = Column(JSONType, nullable=False)
    delay_minutes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    business = relationship("Business", back_populates="automation_rules")
    logs = relationship("AutomationLog", back_populates="rule", cascade="all, delete-orphan")


class AutomationLog(Base):
    __tablename__ = "automation_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rule_id = Column(Integer, ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(
        SQLEnum(AutomationLogStatus, name="automationlogstatus", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    trigger_data = Column(JSONType, nullable=True)
    error_message = Column(Text, nullable=True)
    executed_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    rule = relationship("AutomationRule", back_populates="logs")


class FollowUpAttempt(Base):
    """One follow-up message sent by the periodic sweep"""
    __tablename__ = "followup_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    stage = Column(String, nullable=False)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)
    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow)
