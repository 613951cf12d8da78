"""
Tests for WhatsApp account registration
"""
import pytest
from crm_core.core.exceptions import NotFoundError, ValidationError
from crm_core.models import WhatsAppAccount
from crm_core.services import whatsapp_account_service


def test_create_and_list_accounts(db_session, business):
    account = whatsapp_account_service.create_account(
        db_session, business.id, phone_number="+15550009999", api_token="token", phone_number_id="PNID-1"
    )

    assert account.status == "active"
    assert account.connected_at is not None
    assert [a.id for a in whatsapp_account_service.list_accounts(db_session, business.id)] == [account.id]
    assert whatsapp_account_service.list_accounts(db_session, business.id + 1) == []


def test_create_account_requires_phone_and_token(db_session, business):
    with pytest.raises(ValidationError):
        whatsapp_account_service.create_account(db_session, business.id, phone_number="+1555", api_token=None)
    with pytest.raises(ValidationError):
        whatsapp_account_service.create_account(db_session, business.id, phone_number="", api_token="token")
    assert db_session.query(WhatsAppAccount).count() == 0


def test_duplicate_phone_or_phone_number_id_rejected(db_session, business):
    whatsapp_account_service.create_account(db_session, business.id, "+15550009999", "token", "PNID-1")

    with pytest.raises(ValidationError, match="already exists"):
        whatsapp_account_service.create_account(db_session, business.id, "+15550009999", "token2")
    with pytest.raises(ValidationError, match="phone_number_id"):
        whatsapp_account_service.create_account(db_session, business.id, "+15550008888", "token2", "PNID-1")


def test_update_account(db_session, business):
    account = whatsapp_account_service.create_account(db_session, business.id, "+15550009999", "token")

    updated = whatsapp_account_service.update_account(
        db_session, business.id, account.id, {"phone_number_id": "PNID-2", "status": "inactive"}
    )
    assert updated.phone_number_id == "PNID-2"
    assert updated.status == "inactive"
    assert updated.api_token == "token"

    with pytest.raises(ValidationError):
        whatsapp_account_service.update_account(db_session, business.id, account.id, {})
    with pytest.raises(ValidationError):
        whatsapp_account_service.update_account(db_session, business.id, account.id, {"status": "paused"})
    with pytest.raises(NotFoundError):
        whatsapp_account_service.update_account(db_session, business.id + 1, account.id, {"status": "active"})


def test_delete_account(db_session, business):
    account = whatsapp_account_service.create_account(db_session, business.id, "+15550009999", "token")

    with pytest.raises(NotFoundError):
        whatsapp_account_service.delete_account(db_session, business.id + 1, account.id)

    whatsapp_account_service.delete_account(db_session, business.id, account.id)
    with pytest.raises(NotFoundError):
        whatsapp_account_service.get_account(db_session, business.id, account.id)
