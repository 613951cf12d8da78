"""
WhatsApp account and message template models
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from crm_core.core.database import Base


class WhatsAppAccount(Base):
    __tablename__ = "whatsapp_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    phone_number = Column(String, nullable=False, unique=True, index=True)
    api_token = Column(String, nullable=True)
    phone_number_id = Column(String, nullable=True, index=True)  # Meta phone number id, used to route webhooks
    status = Column(String, nullable=False, default="active")
    connected_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    business = relationship("Business", back_populates="whatsapp_accounts")


class MessageTemplate(Base):
    __tablename__ = "message_templates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
