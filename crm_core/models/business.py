"""
Business (tenant) model
"""
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime
from crm_core.core.database import Base


class Business(Base):
    __tablename__ = "businesses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    status = Column(String, nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    contacts = relationship("Contact", back_populates="business")
    whatsapp_accounts = relationship("WhatsAppAccount", back_populates="business")
    automation_rules = relationship("AutomationRule", back_populates="business")
