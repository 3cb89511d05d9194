import fundingapi.repositories
import fundingapi.schemas
from fundingapi.schemas import ChainEvent, SettlementOutcome
from fundingapi.schemas.chain import ChainEvent as ChainEventModule
from fundingapi.schemas.settlement import SettlementOutcome as SettlementOutcomeModule


def test_schemas_and_repositories_are_regular_packages():
    # 네임스페이스 패키지는 __file__ 이 None
    assert fundingapi.schemas.__file__ is not None
    assert fundingapi.repositories.__file__ is not None


def test_schemas_package_reexports_models():
    assert ChainEvent is ChainEventModule
    assert SettlementOutcome is SettlementOutcomeModule
