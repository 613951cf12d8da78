"""
Sales pipeline API endpoints
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional, List, Dict
from datetime import datetime

from crm_core.core.database import get_db
from crm_core.core.container import ServiceContainer
from crm_core.core.exceptions import NotFoundError
from crm_core.api.deps import get_business_id, get_services
from crm_core.models.automation import AutomationTrigger
from crm_core.models.contact import ContactStage
from crm_core.services import pipeline_service

router = APIRouter()


class ContactSummary(BaseModel):
    id: int
    phone: str
    name: Optional[str]
    stage: ContactStage
    last_active: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class MoveRequest(BaseModel):
    stage: str


class MoveResponse(BaseModel):
    contact_id: int
    from_stage: Optional[ContactStage]
    to_stage: ContactStage


class HistoryResponse(BaseModel):
    id: int
    contact_id: int
    from_stage: Optional[str]
    to_stage: str
    changed_at: datetime

    class Config:
        from_attributes = True


@router.get("", response_model=Dict[str, List[ContactSummary]])
async def get_pipeline(
    business_id: int = Depends(get_business_id),
    db: Session = Depends(get_db)
):
    """Contacts grouped by pipeline stage"""
    return pipeline_service.get_pipeline(db, business_id)


@router.put("/move/{contact_id}", response_model=MoveResponse)
async def move_contact(
    contact_id: int,
    request: MoveRequest,
    business_id: int = Depends(get_business_id),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db)
):
    """Move a contact to another stage and fire stage_changed"""
    from_stage, to_stage = pipeline_service.move_contact(db, business_id, contact_id, request.stage)

    if from_stage != to_stage:
        await services.bus.fire(db, AutomationTrigger.STAGE_CHANGED, {
            "business_id": business_id,
            "contact_id": contact_id,
            "from_stage": from_stage.value if from_stage else None,
            "to_stage": to_stage.value,
            "stage": to_stage.value,
        })

    return MoveResponse(contact_id=contact_id, from_stage=from_stage, to_stage=to_stage)


@router.get("/history/{contact_id}", response_model=List[HistoryResponse])
async def pipeline_history(
    contact_id: int,
    business_id: int = Depends(get_business_id),
    db: Session = Depends(get_db)
):
    if not pipeline_service.get_contact(db, business_id, contact_id):
        raise NotFoundError("Contact not found")
    return pipeline_service.get_pipeline_history(db, business_id, contact_id)
