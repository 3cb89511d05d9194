import logging
from abc import ABC, abstractmethod

from fundingapi.repositories.user_ledger_repository import UserLedgerRepository

logger = logging.getLogger(__name__)


class EligibilityChecker(ABC):
    @abstractmethod
    def is_eligible(self, user_id: int) -> bool:
        """입금을 계정에 반영해도 되는 사용자인지"""


class VerifiedUserEligibility(EligibilityChecker):
    """신원 확인(KYC)을 마친 활성 사용자만 허용"""

    def __init__(self, user_ledger_repository: UserLedgerRepository):
        self.user_ledger_repository = user_ledger_repository

    def is_eligible(self, user_id: int) -> bool:
        eligible = self.user_ledger_repository.is_eligible(user_id)
        if not eligible:
            logger.info(f"User {user_id} is not eligible for funding")
        return eligible
