from .auth import BaseResponse, TokenPayload
from .chain import ChainEvent, IngestionResult
from .funding import FundingRequest, FundingRequestCreate
from .ledger import UserLedger
from .settlement import SettlementOutcome
