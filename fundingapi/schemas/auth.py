from pydantic import BaseModel
from typing import Optional
from enum import Enum

class ErrorCode(str, Enum):
    # Auth related
    UNAUTHORIZED = "AUTH_001"
    FORBIDDEN = "AUTH_002"
    TOKEN_EXPIRED = "AUTH_003"

    # Funding related
    UNSUPPORTED_CURRENCY = "FUND_001"
    FUNDING_NOT_FOUND = "FUND_002"
    INVALID_TRANSITION = "FUND_003"
    INELIGIBLE_USER = "FUND_004"

    # Webhook related
    MALFORMED_PAYLOAD = "WEBHOOK_001"

class Error(BaseModel):
    code: ErrorCode
    message: str
    details: Optional[dict] = None

class BaseResponse(BaseModel):
    success: bool = True
    data: Optional[dict] = None
    error: Optional[Error] = None
    meta: Optional[dict] = None

class TokenPayload(BaseModel):
    user_id: int
    sub: Optional[str] = None  # subject, typically user's email
