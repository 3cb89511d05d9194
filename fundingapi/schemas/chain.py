from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ChainEvent(BaseModel):
    """정규화된 온체인 전송 이벤트 (저장하지 않음)"""

    transaction_hash: str = Field(..., min_length=1)
    from_address: Optional[str] = None
    to_address: str = Field(..., min_length=1)
    raw_value: str  # 체인 최소 단위 정수 문자열 (wei, satoshi ...)
    symbol: str
    confirmations: int = Field(default=0, ge=0)
    block_number: Optional[int] = None
    observed_at: datetime

    @field_validator("raw_value", mode="before")
    @classmethod
    def validate_raw_value(cls, v) -> str:
        value = str(v).strip()
        if not value.isdigit():
            raise ValueError(f"raw_value must be a non-negative integer string: {v!r}")
        return value

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        return v.strip().upper()


class IngestionResult(BaseModel):
    received: int = 0
    forwarded: int = 0
    duplicates: int = 0
    malformed: int = 0
    unmonitored: int = 0
    errors: int = 0
    outcomes: List[dict] = Field(default_factory=list)
