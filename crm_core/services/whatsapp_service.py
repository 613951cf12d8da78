"""
WhatsApp messaging gateway

Sends text and template messages through the Meta WhatsApp Cloud API and
records every successful send as an outbound Message row.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union

import httpx
from sqlalchemy.orm import Session

from crm_core.core.config import settings
from crm_core.core.exceptions import NotFoundError, SendError
from crm_core.models.contact import Contact
from crm_core.models.message import Message, MessageDirection
from crm_core.models.whatsapp import MessageTemplate, WhatsAppAccount

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"


@dataclass
class SendResult:
    message_id: str
    stored_message_id: Optional[int] = None


@dataclass
class _Credentials:
    account_id: Optional[int]
    api_token: str
    phone_number_id: str


class WhatsAppService:
    """Messaging gateway backed by the WhatsApp Cloud API"""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_token: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        api_version: Optional[str] = None,
        default_country_code: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url if api_url is not None else settings.WHATSAPP_API_URL
        self.api_token = api_token if api_token is not None else settings.WHATSAPP_API_TOKEN
        self.phone_number_id = phone_number_id if phone_number_id is not None else settings.WHATSAPP_PHONE_NUMBER_ID
        self.api_version = api_version or settings.WHATSAPP_API_VERSION
        self.default_country_code = default_country_code or settings.DEFAULT_COUNTRY_CODE
        self.client = client or httpx.AsyncClient(timeout=settings.WHATSAPP_TIMEOUT_SECONDS)

    async def close(self):
        await self.client.aclose()

    # =========================================================================
    # Gateway operations
    # =========================================================================

    async def send_text(self, db: Session, business_id: int, phone: str, text: str) -> SendResult:
        """Send a free-form text message and record it"""
        credentials = self._get_credentials(db, business_id)
        payload = self._base_payload(phone)
        payload["type"] = "text"
        payload["text"] = {"body": text}

        provider_id = await self._call_api(credentials, payload)
        stored_id = self._record_outbound(db, business_id, phone, text, credentials.account_id, provider_id)
        logger.info(f"Sent WhatsApp text to {self.format_phone_number(phone)} for business {business_id}")
        return SendResult(message_id=provider_id, stored_message_id=stored_id)

    async def send_template(
        self,
        db: Session,
        business_id: int,
        phone: str,
        template: Union[int, str],
        parameters: Optional[list] = None,
    ) -> SendResult:
        """
        Send an approved template message.

        ``template`` is either a MessageTemplate id (looked up for this
        business) or the provider template name itself.
        """
        template_name = self._resolve_template_name(db, business_id, template)
        credentials = self._get_credentials(db, business_id)

        payload = self._base_payload(phone)
        payload["type"] = "template"
        payload["template"] = {
            "name": template_name,
            "language": {"code": "en"},
            "components": [
                {
                    "type": "body",
                    "parameters": [{"type": "text", "text": str(p)} for p in parameters],
                }
            ] if parameters else [],
        }

        provider_id = await self._call_api(credentials, payload)
        stored_id = self._record_outbound(
            db, business_id, phone, f"Template: {template_name}", credentials.account_id, provider_id
        )
        logger.info(f"Sent WhatsApp template '{template_name}' for business {business_id}")
        return SendResult(message_id=provider_id, stored_message_id=stored_id)

    # =========================================================================
    # Helpers
    # =========================================================================

    def format_phone_number(self, phone: str) -> str:
        """International format, digits only; a leading 0 becomes the default country code"""
        cleaned = re.sub(r"\D", "", phone or "")
        if cleaned.startswith("0"):
            cleaned = self.default_country_code + cleaned[1:]
        return cleaned

    def _base_payload(self, phone: str) -> Dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": self.format_phone_number(phone),
        }

    def _get_credentials(self, db: Session, business_id: int) -> _Credentials:
        account = db.query(WhatsAppAccount).filter(
            WhatsAppAccount.business_id == business_id,
            WhatsAppAccount.status == "active"
        ).order_by(WhatsAppAccount.connected_at.desc()).first()

        api_token = (account.api_token if account else None) or self.api_token
        phone_number_id = (account.phone_number_id if account else None) or self.phone_number_id
        if not api_token or not phone_number_id:
            raise SendError(f"WhatsApp API credentials not configured for business {business_id}")

        return _Credentials(
            account_id=account.id if account else None,
            api_token=api_token,
            phone_number_id=phone_number_id,
        )

    def _resolve_template_name(self, db: Session, business_id: int, template: Union[int, str]) -> str:
        if isinstance(template, int):
            row = db.query(MessageTemplate).filter(
                MessageTemplate.id == template,
                MessageTemplate.business_id == business_id
            ).first()
            if not row:
                raise NotFoundError(f"Template {template} not found")
            return row.name
        return template

    async def _call_api(self, credentials: _Credentials, payload: Dict[str, Any]) -> str:
        url = self.api_url or f"{GRAPH_API_BASE}/{self.api_version}/{credentials.phone_number_id}/messages"
        headers = {
            "Authorization": f"Bearer {credentials.api_token}",
            "Content-Type": "application/json",
        }

        try:
            response = await self.client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"WhatsApp API request failed: {e}")
            raise SendError(f"WhatsApp API request failed: {e}") from e

        if response.status_code >= 400:
            try:
                error_message = response.json().get("error", {}).get("message")
            except ValueError:
                error_message = None
            message = error_message or f"WhatsApp API error: {response.status_code} {response.reason_phrase}"
            logger.error(f"WhatsApp send failed: {message}")
            raise SendError(message)

        try:
            data = response.json()
        except ValueError:
            data = {}
        messages = data.get("messages") or [{}]
        return messages[0].get("id") or data.get("id") or "unknown"

    def _record_outbound(
        self,
        db: Session,
        business_id: int,
        phone: str,
        content: str,
        account_id: Optional[int],
        provider_id: str,
    ) -> Optional[int]:
        contact = db.query(Contact).filter(
            Contact.business_id == business_id,
            Contact.phone == phone
        ).first()
        if not contact:
            logger.warning(f"Sent message to {phone} but no contact exists for business {business_id}")
            return None

        message = Message(
            business_id=business_id,
            whatsapp_account_id=account_id,
            contact_id=contact.id,
            direction=MessageDirection.OUTBOUND,
            content=content,
            status="sent",
            provider_message_id=provider_id,
            sent_at=datetime.utcnow(),
        )
        db.add(message)
        db.flush()
        return message.id
