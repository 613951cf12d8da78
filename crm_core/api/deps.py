"""
Shared FastAPI dependencies
"""
from fastapi import Header, Request

from crm_core.core.container import ServiceContainer
from crm_core.core.exceptions import ValidationError


def get_business_id(x_business_id: str = Header(..., alias="X-Business-Id")) -> int:
    """Tenant id set by the upstream auth layer"""
    try:
        business_id = int(x_business_id)
    except ValueError:
        raise ValidationError("X-Business-Id must be an integer")
    if business_id <= 0:
        raise ValidationError("X-Business-Id must be positive")
    return business_id


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
