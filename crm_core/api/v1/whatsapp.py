"""
WhatsApp Cloud API webhook and account endpoints
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime

from crm_core.core.config import settings
from crm_core.core.database import get_db
from crm_core.core.container import ServiceContainer
from crm_core.api.deps import get_business_id, get_services
from crm_core.services import whatsapp_account_service
from crm_core.services.webhook_service import extract_change

logger = logging.getLogger(__name__)

router = APIRouter()


class AccountCreateRequest(BaseModel):
    phone_number: Optional[str] = None
    api_token: Optional[str] = None
    phone_number_id: Optional[str] = None


class AccountUpdateRequest(BaseModel):
    api_token: Optional[str] = None
    phone_number_id: Optional[str] = None
    status: Optional[str] = None


class AccountResponse(BaseModel):
    id: int
    phone_number: str
    phone_number_id: Optional[str]
    status: str
    connected_at: datetime

    class Config:
        from_attributes = True


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge")
):
    """Meta subscription handshake"""
    if (
        mode == "subscribe"
        and settings.WHATSAPP_WEBHOOK_VERIFY_TOKEN
        and token == settings.WHATSAPP_WEBHOOK_VERIFY_TOKEN
    ):
        logger.info("Webhook verified")
        return challenge or ""
    raise HTTPException(status_code=403, detail="Webhook verification failed")


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db)
):
    """
    Inbound message delivery from Meta

    Deliveries for unknown phone numbers or non-message changes are
    acknowledged and ignored.
    """
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    if not isinstance(body, dict) or body.get("object") != "whatsapp_business_account":
        raise HTTPException(status_code=404, detail="Invalid webhook data")

    change = extract_change(body)
    if change and change.get("field") == "messages":
        business_id = services.webhooks.resolve_business_id(db, body)
        if business_id is not None:
            await services.webhooks.process_incoming_message(db, body, business_id)

    return {"success": True}


@router.get("/accounts", response_model=List[AccountResponse])
async def list_accounts(
    business_id: int = Depends(get_business_id),
    db: Session = Depends(get_db)
):
    return whatsapp_account_service.list_accounts(db, business_id)


@router.get("/accounts/{account_id}", response_model=AccountResponse)
async def get_account(
    account_id: int,
    business_id: int = Depends(get_business_id),
    db: Session = Depends(get_db)
):
    return whatsapp_account_service.get_account(db, business_id, account_id)


@router.post("/accounts", response_model=AccountResponse, status_code=201)
async def create_account(
    request: AccountCreateRequest,
    business_id: int = Depends(get_business_id),
    db: Session = Depends(get_db)
):
    """Connect a WhatsApp number; the API token is stored but never returned"""
    return whatsapp_account_service.create_account(
        db,
        business_id,
        phone_number=request.phone_number,
        api_token=request.api_token,
        phone_number_id=request.phone_number_id,
    )


@router.put("/accounts/{account_id}", response_model=AccountResponse)
async def update_account(
    account_id: int,
    request: AccountUpdateRequest,
    business_id: int = Depends(get_business_id),
    db: Session = Depends(get_db)
):
    return whatsapp_account_service.update_account(
        db, business_id, account_id, request.model_dump(exclude_unset=True)
    )


@router.delete("/accounts/{account_id}")
async def delete_account(
    account_id: int,
    business_id: int = Depends(get_business_id),
    db: Session = Depends(get_db)
):
    whatsapp_account_service.delete_account(db, business_id, account_id)
    return {"message": "WhatsApp account disconnected successfully"}
