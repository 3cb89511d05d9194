from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class UserLedger(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    is_verified: bool
    is_active: bool
    total_invested: Decimal
    current_balance: Decimal
    daily_yield_rate: Decimal
    last_yield_update: Optional[datetime] = None


class YieldAccrualResult(BaseModel):
    processed: int = 0
    accrued: int = 0
    skipped: int = 0
    capped: int = 0
    total_growth: Decimal = Decimal("0")
