# services/time_utils.py
# 시간 / 포맷 유틸
# 저장소에는 UTC 기준 naive datetime 으로 저장함(SQLite가 tz 정보를 보존하지 않기 때문)

from datetime import datetime, timezone
from typing import Optional

WEEKDAY_EN = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def utcnow() -> datetime:
    """
    현재 시각을 UTC naive datetime으로 반환한다.

    :return: tzinfo가 없는 UTC datetime
    :rtype: datetime
    """

    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    """
    임의의 datetime을 UTC naive로 정규화한다.
    타임존이 없는 값은 이미 UTC라고 간주한다.

    :param dt: 기준 datetime
    :type dt: datetime
    :return: UTC naive datetime
    :rtype: datetime
    """

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_dt(dt_str: Optional[str]) -> Optional[datetime]:
    """
    ISO 8601 유사 문자열(YYYY-MM-DD 포함)을 UTC naive datetime으로 파싱한다.

    :param dt_str: 날짜/시간 문자열
    :type dt_str: Optional[str]
    :return: UTC naive datetime 또는 None(파싱 실패)
    :rtype: Optional[datetime]
    """

    if not dt_str:
        return None
    s = dt_str.strip()
    try:
        if len(s) == 10:
            # YYYY-MM-DD -> 00:00 UTC
            return datetime.fromisoformat(s + "T00:00:00")
        # `Z`를 +00:00으로 바꾼 뒤 UTC로 변환
        return to_utc_naive(datetime.fromisoformat(s.replace("Z", "+00:00")))
    except ValueError:
        return None


def iso_z(dt: Optional[datetime]) -> Optional[str]:
    """
    UTC naive datetime을 'Z'로 끝나는 ISO 문자열로 반환한다. (도구 결과/LLM 입력용)

    :param dt: UTC naive datetime
    :type dt: Optional[datetime]
    :return: 예) "2025-08-28T14:00:00Z"
    :rtype: Optional[str]
    """

    if dt is None:
        return None
    return to_utc_naive(dt).replace(microsecond=0).isoformat() + "Z"


def friendly_today(now: Optional[datetime] = None) -> str:
    # 시스템 프롬프트용 "2025-08-25 (Mon) 13:20 UTC"
    n = now or utcnow()
    return f"{n.strftime('%Y-%m-%d')} ({WEEKDAY_EN[n.weekday()]}) {n.strftime('%H:%M')} UTC"


def format_offset(minutes: int) -> str:
    """
    분 단위 오프셋을 "H:MM" 형태로 바꾼다. (아젠다 formattedText 용)

    :param minutes: 행사 시작 기준 경과 분
    :type minutes: int
    :return: 예) 90 -> "1:30"
    :rtype: str
    """

    return f"{minutes // 60}:{minutes % 60:02d}"
