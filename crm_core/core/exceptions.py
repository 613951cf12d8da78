"""
Domain error taxonomy
"""
from typing import Optional


class CRMError(Exception):
    """Base class for errors the API layer knows how to translate"""

    status_code = 500
    public_message: Optional[str] = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CRMError):
    """Missing or malformed input (rule fields, contact_id, stage names...)"""

    status_code = 400


class NotFoundError(CRMError):
    """Contact, rule, message or template does not exist for this business"""

    status_code = 404


class SendError(CRMError):
    """Messaging provider rejected or never received an outbound message"""

    status_code = 502
    public_message = "Failed to deliver message"


class StoreError(CRMError):
    """Persistence failure"""

    status_code = 500
    public_message = "Internal server error"
