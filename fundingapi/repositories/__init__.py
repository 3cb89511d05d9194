# Repository layer - Data access with Pydantic responses

from .base import BaseRepository
from .funding_request_repository import FundingRequestRepository
from .user_ledger_repository import UserLedgerRepository

__all__ = [
    "BaseRepository",
    "FundingRequestRepository",
    "UserLedgerRepository",
]
