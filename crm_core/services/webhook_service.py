"""
Inbound WhatsApp webhook processing
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from crm_core.core.database import transaction
from crm_core.models.automation import AutomationTrigger
from crm_core.models.contact import Contact, ContactStage
from crm_core.models.message import Message, MessageDirection
from crm_core.models.whatsapp import WhatsAppAccount

logger = logging.getLogger(__name__)


def _first(items) -> Optional[Dict[str, Any]]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return None


def extract_change(webhook_data: Any) -> Optional[Dict[str, Any]]:
    """The ``entry[0].changes[0]`` block of a Meta webhook, if present"""
    if not isinstance(webhook_data, dict):
        return None
    entry = _first(webhook_data.get("entry"))
    return _first(entry.get("changes")) if entry else None


def extract_change_value(webhook_data: Any) -> Optional[Dict[str, Any]]:
    change = extract_change(webhook_data)
    value = change.get("value") if change else None
    return value if isinstance(value, dict) else None


def _parse_timestamp(raw) -> datetime:
    try:
        return datetime.utcfromtimestamp(int(raw))
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.utcnow()


class WebhookService:
    """Turns Meta webhook deliveries into contacts, messages and domain events"""

    def __init__(self, bus, followup):
        self.bus = bus
        self.followup = followup

    def resolve_business_id(self, db: Session, webhook_data: Any) -> Optional[int]:
        value = extract_change_value(webhook_data)
        phone_number_id = (value or {}).get("metadata", {}).get("phone_number_id")
        if not phone_number_id:
            return None

        account = db.query(WhatsAppAccount).filter(
            WhatsAppAccount.phone_number_id == phone_number_id
        ).first()
        if not account:
            logger.warning(f"No WhatsApp account registered for phone_number_id {phone_number_id}")
            return None
        return account.business_id

    async def process_incoming_message(self, db: Session, webhook_data: Any, business_id: int) -> Optional[Message]:
        """
        Store one inbound message and fan it out.

        Creates the contact on first contact (firing ``contact_created``),
        persists the message, fires ``message_received`` and runs deal
        classification. Automation and classification failures are logged by
        their own wrappers and never fail the delivery.
        """
        value = extract_change_value(webhook_data)
        message_data = _first((value or {}).get("messages"))
        contact_data = _first((value or {}).get("contacts"))
        if not message_data or not contact_data:
            logger.warning("Invalid webhook data structure")
            return None

        phone = contact_data.get("wa_id") or contact_data.get("phone_number")
        if not phone:
            logger.warning("Webhook contact has no phone number")
            return None
        name = (contact_data.get("profile") or {}).get("name")
        text = (message_data.get("text") or {}).get("body") or ""
        now = datetime.utcnow()

        created = False
        with transaction(db):
            contact = db.query(Contact).filter(
                Contact.business_id == business_id,
                Contact.phone == phone
            ).first()
            if contact is None:
                contact = Contact(
                    business_id=business_id,
                    phone=phone,
                    name=name,
                    stage=ContactStage.NEW,
                    last_active=now,
                )
                db.add(contact)
                created = True
            else:
                contact.last_active = now

            phone_number_id = value.get("metadata", {}).get("phone_number_id")
            account = None
            if phone_number_id:
                account = db.query(WhatsAppAccount).filter(
                    WhatsAppAccount.business_id == business_id,
                    WhatsAppAccount.phone_number_id == phone_number_id
                ).first()

            db.flush()
            message = Message(
                business_id=business_id,
                whatsapp_account_id=account.id if account else None,
                contact_id=contact.id,
                direction=MessageDirection.INBOUND,
                content=text,
                status="delivered",
                provider_message_id=message_data.get("id"),
                sent_at=_parse_timestamp(message_data.get("timestamp")),
            )
            db.add(message)
            db.flush()
            contact_id = contact.id
            message_id = message.id

        if created:
            logger.info(f"Created contact {contact_id} for {phone}")
            await self.bus.fire(db, AutomationTrigger.CONTACT_CREATED, {
                "business_id": business_id,
                "contact_id": contact_id,
                "phone": phone,
                "name": name,
                "stage": ContactStage.NEW.value,
            })

        await self.bus.fire(db, AutomationTrigger.MESSAGE_RECEIVED, {
            "business_id": business_id,
            "contact_id": contact_id,
            "message_id": message_id,
            "content": text,
            "direction": MessageDirection.INBOUND.value,
        })

        await self.followup.on_inbound_message(db, message_id)

        logger.info(f"Processed incoming WhatsApp message from {phone}")
        return db.query(Message).filter(Message.id == message_id).first()
