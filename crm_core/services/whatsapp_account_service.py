"""
WhatsApp account registration

Accounts map Meta's phone_number_id to a business; webhook routing and
outbound credentials both read them.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from crm_core.core.database import transaction
from crm_core.core.exceptions import NotFoundError, ValidationError
from crm_core.models.whatsapp import WhatsAppAccount

logger = logging.getLogger(__name__)

ACCOUNT_STATUSES = ("active", "inactive")
UPDATABLE_FIELDS = ("api_token", "phone_number_id", "status")


def _check_phone_number_id_free(db: Session, phone_number_id: Optional[str], account_id: Optional[int] = None):
    if not phone_number_id:
        return
    query = db.query(WhatsAppAccount).filter(WhatsAppAccount.phone_number_id == phone_number_id)
    if account_id is not None:
        query = query.filter(WhatsAppAccount.id != account_id)
    if query.first():
        raise ValidationError("phone_number_id is already connected to another account")


def list_accounts(db: Session, business_id: int) -> List[WhatsAppAccount]:
    return db.query(WhatsAppAccount).filter(
        WhatsAppAccount.business_id == business_id
    ).order_by(WhatsAppAccount.connected_at.desc(), WhatsAppAccount.id.desc()).all()


def get_account(db: Session, business_id: int, account_id: int) -> WhatsAppAccount:
    account = db.query(WhatsAppAccount).filter(
        WhatsAppAccount.id == account_id,
        WhatsAppAccount.business_id == business_id
    ).first()
    if not account:
        raise NotFoundError("WhatsApp account not found")
    return account


def create_account(
    db: Session,
    business_id: int,
    phone_number: Optional[str],
    api_token: Optional[str],
    phone_number_id: Optional[str] = None
) -> WhatsAppAccount:
    if not phone_number or not api_token:
        raise ValidationError("Phone number and API token are required")

    existing = db.query(WhatsAppAccount).filter(WhatsAppAccount.phone_number == phone_number).first()
    if existing:
        raise ValidationError("WhatsApp account already exists for this phone number")
    _check_phone_number_id_free(db, phone_number_id)

    with transaction(db):
        account = WhatsAppAccount(
            business_id=business_id,
            phone_number=phone_number,
            api_token=api_token,
            phone_number_id=phone_number_id or None,
            status="active",
        )
        db.add(account)

    db.refresh(account)
    logger.info(f"Connected WhatsApp account {account.id} for business {business_id}")
    return account


def update_account(db: Session, business_id: int, account_id: int, fields: Mapping[str, Any]) -> WhatsAppAccount:
    """Partial update; the phone number itself is fixed once connected"""
    changes: Dict[str, Any] = {key: fields[key] for key in UPDATABLE_FIELDS if key in fields}
    if not changes:
        raise ValidationError("No fields to update")
    if "status" in changes and changes["status"] not in ACCOUNT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ACCOUNT_STATUSES)}")
    if "api_token" in changes and not changes["api_token"]:
        raise ValidationError("api_token cannot be empty")

    account = get_account(db, business_id, account_id)
    if "phone_number_id" in changes:
        changes["phone_number_id"] = changes["phone_number_id"] or None
        _check_phone_number_id_free(db, changes["phone_number_id"], account.id)

    with transaction(db):
        for key, value in changes.items():
            setattr(account, key, value)

    db.refresh(account)
    logger.info(f"Updated WhatsApp account {account_id}: {', '.join(changes)}")
    return account


def delete_account(db: Session, business_id: int, account_id: int) -> None:
    with transaction(db):
        account = get_account(db, business_id, account_id)
        db.delete(account)
    logger.info(f"Disconnected WhatsApp account {account_id}")
