"""
WhatsApp message model
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from crm_core.core.database import Base


class MessageDirection(str, enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    whatsapp_account_id = Column(Integer, ForeignKey("whatsapp_accounts.id", ondelete="SET NULL"), nullable=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    direction = Column(
        SQLEnum(MessageDirection, name="messagedirection", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    content = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="sent")  # sent / delivered / read / failed
    provider_message_id = Column(String, nullable=True)
    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    contact = relationship("Contact", back_populates="messages")
