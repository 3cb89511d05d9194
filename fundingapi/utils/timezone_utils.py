"""
타임존 유틸리티

모든 시각은 UTC 기준으로 저장/비교합니다.
"""

from datetime import datetime, timezone
from typing import Optional


def get_utc_now() -> datetime:
    """현재 UTC 시간을 반환합니다."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """naive datetime은 UTC로 간주하여 tz-aware로 변환합니다."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def seconds_since(dt: datetime, now: Optional[datetime] = None) -> float:
    """dt 이후 경과한 초를 반환합니다."""
    now = ensure_utc(now) if now is not None else get_utc_now()
    return (now - ensure_utc(dt)).total_seconds()
