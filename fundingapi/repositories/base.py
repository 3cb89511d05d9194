from abc import ABC
from typing import TypeVar, Generic, Optional, List, Dict, Any, Type
from sqlalchemy.orm import Session
from pydantic import BaseModel

T = TypeVar("T")
SchemaType = TypeVar("SchemaType", bound=BaseModel)


class BaseRepository(Generic[T, SchemaType], ABC):
    """모든 리포지토리의 베이스 클래스 - Pydantic 응답 보장"""

    def __init__(
        self, model_class: Type[T], schema_class: Type[SchemaType], db: Session
    ):
        self.model_class = model_class
        self.schema_class = schema_class
        self.db = db

    def _to_schema(self, model_instance: Any) -> Optional[SchemaType]:
        """SQLAlchemy 모델을 Pydantic 스키마로 변환"""
        if model_instance is None:
            return None
        return self.schema_class.model_validate(model_instance)

    def _to_schemas(self, instances: List[Any]) -> List[SchemaType]:
        return [self._to_schema(i) for i in instances if i is not None]

    def _ensure_clean_session(self) -> None:
        """실패한 트랜잭션만 롤백합니다.

        진행 중인 정상 트랜잭션은 건드리지 않습니다. 서비스가 여러 리포지토리 호출을
        하나의 커밋으로 묶기 때문입니다.
        """
        if not self.db.is_active:
            self.db.rollback()

    def create(self, commit: bool = True, **kwargs) -> Optional[SchemaType]:
        """새 레코드 생성 - Pydantic 스키마 반환"""
        self._ensure_clean_session()
        instance = self.model_class(**kwargs)
        self.db.add(instance)
        try:
            self.db.flush()
            self.db.refresh(instance)
            if commit:
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return self._to_schema(instance)

    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        """레코드 수 조회"""
        self._ensure_clean_session()
        query = self.db.query(self.model_class)

        if filters:
            for key, value in filters.items():
                if hasattr(self.model_class, key):
                    query = query.filter(getattr(self.model_class, key) == value)

        return query.count()
