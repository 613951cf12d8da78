"""
Contact, tag and pipeline history models
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from crm_core.core.database import Base


class ContactStage(str, enum.Enum):
    NEW = "New"
    CONTACTED = "Contacted"
    QUALIFIED = "Qualified"
    PROPOSAL = "Proposal"
    NEGOTIATION = "Negotiation"
    WON = "Won"
    LOST = "Lost"


TERMINAL_STAGES = (ContactStage.WON, ContactStage.LOST)
HOT_LEAD_STAGES = (ContactStage.QUALIFIED, ContactStage.PROPOSAL, ContactStage.NEGOTIATION)


class ContactTagName(str, enum.Enum):
    """Tags the core writes as "already acted" markers"""
    DEAL_CLOSED = "deal-closed"
    DEAL_LOST = "deal-lost"
    NEEDS_FOLLOWUP = "needs-followup"
    FOLLOWUP_SENT = "followup-sent"


class Contact(Base):
    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("business_id", "phone", name="uq_contacts_business_phone"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    phone = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)
    stage = Column(
        SQLEnum(ContactStage, name="contactstage", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ContactStage.NEW,
        index=True,
    )
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_active = Column(DateTime, nullable=True)

    # Relationships
    business = relationship("Business", back_populates="contacts")
    tags = relationship("ContactTag", back_populates="contact")
    messages = relationship("Message", back_populates="contact", order_by="Message.sent_at")
    pipeline_history = relationship("PipelineHistory", back_populates="contact")

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES


class ContactTag(Base):
    __tablename__ = "contact_tags"
    __table_args__ = (
        UniqueConstraint("contact_id", "tag", name="uq_contact_tags_contact_tag"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    tag = Column(String, nullable=False)

    # Relationships
    contact = relationship("Contact", back_populates="tags")


class PipelineHistory(Base):
    __tablename__ = "pipeline_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    from_stage = Column(String, nullable=True)
    to_stage = Column(String, nullable=False)
    changed_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    contact = relationship("Contact", back_populates="pipeline_history")
