import sys
import os

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fundingapi.database.connection import engine
from fundingapi.models.base import Base
from fundingapi.models import funding, user  # noqa: F401  (테이블 등록)


def init_db():
    """데이터베이스 초기화 (users, funding_requests 테이블 생성)"""
    try:
        Base.metadata.create_all(bind=engine)
        print(f"Database initialized: {', '.join(sorted(Base.metadata.tables))}")
    except Exception as e:
        print(f"Database initialization failed: {str(e)}")
        raise


if __name__ == "__main__":
    init_db()
