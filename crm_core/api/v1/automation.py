"""
Automation rule API endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from crm_core.core.database import get_db
from crm_core.api.deps import get_business_id
from crm_core.models.automation import AutomationTrigger, AutomationLogStatus
from crm_core.services import automation_rule_service

router = APIRouter()


class RuleCreateRequest(BaseModel):
    trigger: str
    condition: Optional[Dict[str, Any]] = None
    action: Dict[str, Any]
    delay_minutes: int = Field(default=0, ge=0)


class RuleUpdateRequest(BaseModel):
    trigger: Optional[str] = None
    condition: Optional[Dict[str, Any]] = None
    action: Optional[Dict[str, Any]] = None
    delay_minutes: Optional[int] = Field(default=None, ge=0)


class RuleResponse(BaseModel):
    id: int
    business_id: int
    trigger: AutomationTrigger
    condition: Dict[str, Any]
    action: Dict[str, Any]
    delay_minutes: int
    created_at: datetime

    class Config:
        from_attributes = True


class RuleLogResponse(BaseModel):
    id: int
    rule_id: int
    contact_id: Optional[int]
    status: AutomationLogStatus
    trigger_data: Optional[Dict[str, Any]]
    error_message: Optional[str]
    executed_at: datetime

    class Config:
        from_attributes = True


@router.get("/rules", response_model=List[RuleResponse])
async def list_rules(
    business_id: int = Depends(get_business_id),
    db: Session = Depends(get_db)
):
    return automation_rule_service.list_rules(db, business_id)


@router.get("/rules/{rule_id}", response_model=RuleResponse)
async def get_rule(
    rule_id: int,
    business_id: int = Depends(get_business_id),
    db: Session = Depends(get_db)
):
    return automation_rule_service.get_rule(db, business_id, rule_id)


@router.post("/rules", response_model=RuleResponse, status_code=201)
async def create_rule(
    request: RuleCreateRequest,
    business_id: int = Depends(get_business_id),
    db: Session = Depends(get_db)
):
    """Create an automation rule"""
    return automation_rule_service.create_rule(
        db,
        business_id,
        trigger=request.trigger,
        condition=request.condition,
        action=request.action,
        delay_minutes=request.delay_minutes,
    )


@router.put("/rules/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: int,
    request: RuleUpdateRequest,
    business_id: int = Depends(get_business_id),
    db: Session = Depends(get_db)
):
    """Update only the fields present in the request body"""
    return automation_rule_service.update_rule(
        db, business_id, rule_id, request.model_dump(exclude_unset=True)
    )


@router.delete("/rules/{rule_id}")
async def delete_rule(
    rule_id: int,
    business_id: int = Depends(get_business_id),
    db: Session = Depends(get_db)
):
    automation_rule_service.delete_rule(db, business_id, rule_id)
    return {"message": "Automation rule deleted successfully"}


@router.get("/rules/{rule_id}/logs", response_model=List[RuleLogResponse])
async def list_rule_logs(
    rule_id: int,
    limit: int = Query(100, ge=1, le=1000),
    business_id: int = Depends(get_business_id),
    db: Session = Depends(get_db)
):
    """Execution history of a rule, newest first"""
    return automation_rule_service.list_rule_logs(db, business_id, rule_id, limit=limit)
