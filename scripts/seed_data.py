"""
로컬 개발용 시드 스크립트
신원 확인이 끝난 데모 사용자를 만들고 API 호출용 액세스 토큰을 출력합니다.
"""

import sys
import os

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import timedelta

from fundingapi.config import settings
from fundingapi.core.security import create_access_token
from fundingapi.database.connection import SessionLocal
from fundingapi.models.user import User
from fundingapi.repositories.user_ledger_repository import UserLedgerRepository


def seed_demo_user(email: str = "demo@example.com"):
    """데모 사용자 시드"""
    db = SessionLocal()
    try:
        existing = db.query(User).filter(User.email == email).first()
        if existing:
            user_id = existing.id
            print(f"ℹ️ 기존 사용자 사용: {email} (id={user_id})")
        else:
            ledger = UserLedgerRepository(db).create_user(
                email=email, name="Demo Investor", is_verified=True
            )
            user_id = ledger.id
            print(f"✅ 데모 사용자 생성 완료: {email} (id={user_id})")

        token = create_access_token(
            {"user_id": user_id, "sub": email}, settings, expires_delta=timedelta(days=7)
        )
        print(f"🔑 Bearer token (7일): {token}")
    except Exception as e:
        db.rollback()
        print(f"❌ 시드 데이터 생성 실패: {str(e)}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_demo_user(*sys.argv[1:2])
