"""
Follow-up API endpoints
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime

from crm_core.core.database import get_db
from crm_core.core.container import ServiceContainer
from crm_core.api.deps import get_business_id, get_services
from crm_core.models.contact import ContactStage
from crm_core.models.automation import AutomationTrigger
from crm_core.services.keyword_classifier import DealStatus, Sentiment

router = APIRouter()


class AnalysisResponse(BaseModel):
    message_id: int
    contact_id: int
    deal_status: Optional[DealStatus]
    previous_stage: Optional[ContactStage]
    current_stage: Optional[ContactStage]
    tag_added: Optional[str] = None
    scheduled_rule_id: Optional[int] = None

    class Config:
        from_attributes = True


class SweepResponse(BaseModel):
    candidates: int
    sent: int
    skipped: int
    failed: int


class StatsResponse(BaseModel):
    total_contacts: int
    deals_won: int
    deals_lost: int
    followups_sent: int
    needs_followup: int


class HotLeadResponse(BaseModel):
    contact_id: int
    name: Optional[str]
    phone: str
    stage: ContactStage
    message_count: int
    inbound_count: int
    last_interaction: datetime


class CustomRuleRequest(BaseModel):
    stage: Optional[str] = None
    hours_after_last_message: Optional[int] = None
    message_template: Optional[str] = None
    max_followups: Optional[int] = None


class CustomRuleResponse(BaseModel):
    id: int
    trigger: AutomationTrigger
    condition: dict
    action: dict
    delay_minutes: int
    created_at: datetime

    class Config:
        from_attributes = True


class SentimentResponse(BaseModel):
    contact_id: int
    sentiment: Sentiment


@router.post("/analyze/{message_id}", response_model=AnalysisResponse)
async def analyze_message(
    message_id: int,
    business_id: int = Depends(get_business_id),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db)
):
    """Classify a stored message and apply its deal outcome"""
    return await services.followup.analyze_message(db, message_id, business_id=business_id)


@router.post("/process", response_model=SweepResponse)
async def process_followups(
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db)
):
    """Run the follow-up sweep now instead of waiting for the scheduler"""
    return await services.followup.process_pending_followups(db)


@router.get("/stats", response_model=StatsResponse)
async def followup_stats(
    business_id: int = Depends(get_business_id),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db)
):
    return services.followup.get_followup_stats(db, business_id)


@router.get("/hot-leads", response_model=List[HotLeadResponse])
async def hot_leads(
    business_id: int = Depends(get_business_id),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db)
):
    return services.followup.identify_hot_leads(db, business_id)


@router.post("/custom-rule", response_model=CustomRuleResponse, status_code=201)
async def create_custom_rule(
    request: CustomRuleRequest,
    business_id: int = Depends(get_business_id),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db)
):
    return services.followup.create_custom_followup_rule(db, business_id, request.model_dump(exclude_none=True))


@router.get("/sentiment/{contact_id}", response_model=SentimentResponse)
async def contact_sentiment(
    contact_id: int,
    business_id: int = Depends(get_business_id),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db)
):
    sentiment = services.followup.analyze_conversation_sentiment(db, contact_id, business_id=business_id)
    return SentimentResponse(contact_id=contact_id, sentiment=sentiment)
