# services/rate_limiter.py
# 호출자(caller)별 · 티어별 슬라이딩 윈도우 요청 제한

# 티어
# - ai: 단발성 생성 호출(충돌 해결 제안, 시간 추천, 아젠다 등) - 저렴
# - agent: 에이전트 턴 전체(여러 번의 LLM 호출 포함) - 비쌈
#
# 저장소(RateLimitStore)는 교체 가능함. 기본 구현은 프로세스 메모리이며,
# 공유/영속 저장소로 바꿔도 호출부(RateLimiter.check / enforce)는 그대로 유지됨.

import logging
import os
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from services.errors import RateLimited

logger = logging.getLogger(__name__)

MINUTE_WINDOW = 60
DAY_WINDOW = 24 * 60 * 60
# 분당 한도 초과 시 60초, 일일 한도 초과 시 3600초 후 재시도 안내
MINUTE_RETRY_AFTER = 60
DAY_RETRY_AFTER = 3600


@dataclass(frozen=True)
class RateLimitTier:
    name: str
    per_minute: int
    per_day: int


AI_TIER = RateLimitTier(
    "ai",
    int(os.getenv("AI_RATE_PER_MINUTE", "5")),
    int(os.getenv("AI_RATE_PER_DAY", "50")),
)
AGENT_TIER = RateLimitTier(
    "agent",
    int(os.getenv("AGENT_RATE_PER_MINUTE", "3")),
    int(os.getenv("AGENT_RATE_PER_DAY", "20")),
)
TIERS: Dict[str, RateLimitTier] = {AI_TIER.name: AI_TIER, AGENT_TIER.name: AGENT_TIER}


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: int = 0


class RateLimitStore:
    """
    요청 시각 저장소 인터페이스

    구현체 계약
    - hit()은 키 단위로 원자적이어야 함(확인 + 기록이 한 번에). 동시에 들어온 요청이 한도를 넘겨 통과하면 안 됨
    - 일일 윈도우보다 오래된 시각은 보관하지 않음(확인할 때마다 지연 삭제)
    - reset()도 hit()과 같은 키 단위 원자성을 지켜야 함
    - 키별 잠금을 프로세스 메모리에 두는 구현은 지금까지 본 키 수만큼 항목이 남음(InMemoryRateLimitStore 참고)
    """

    def hit(self, key: str, now: float, tier: RateLimitTier) -> RateLimitDecision:
        raise NotImplementedError

    def reset(self, key: Optional[str] = None) -> None:
        raise NotImplementedError


def _decide(timestamps: List[float], now: float, tier: RateLimitTier) -> RateLimitDecision:
    """
    이미 정리된 시각 목록으로 허용/거부를 판단한다. 허용이면 now를 기록한다.

    :param timestamps: 일일 윈도우 안의 요청 시각 목록(in-place로 갱신됨)
    :type timestamps: List[float]
    :param now: 현재 시각(초)
    :type now: float
    :param tier: 적용할 티어
    :type tier: RateLimitTier
    :return: 판정 결과
    :rtype: RateLimitDecision
    """

    minute_ago = now - MINUTE_WINDOW
    recent_minute = sum(1 for t in timestamps if t > minute_ago)
    recent_day = len(timestamps)

    # 두 한도가 모두 걸리면 분당 한도를 우선 안내
    if recent_minute >= tier.per_minute:
        return RateLimitDecision(False, MINUTE_RETRY_AFTER)
    if recent_day >= tier.per_day:
        return RateLimitDecision(False, DAY_RETRY_AFTER)

    timestamps.append(now)
    return RateLimitDecision(True)


class InMemoryRateLimitStore(RateLimitStore):
    """
    프로세스 메모리 기반 기본 구현(재시작 시 초기화됨)

    키별 잠금(_locks)은 호출자 x 티어마다 하나씩 생기고 프로세스가 끝날 때까지 지우지 않음.
    reset()도 시각 목록만 비움. 호출자 수가 제한 없이 늘어나는 배포라면 공유 저장소 구현으로 교체할 것
    """

    def __init__(self):
        self._entries: Dict[str, List[float]] = defaultdict(list)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def hit(self, key: str, now: float, tier: RateLimitTier) -> RateLimitDecision:
        with self._lock_for(key):
            day_ago = now - DAY_WINDOW
            entry = [t for t in self._entries[key] if t > day_ago]
            decision = _decide(entry, now, tier)
            self._entries[key] = entry
            return decision

    def reset(self, key: Optional[str] = None) -> None:
        # hit()과 같은 키 단위 잠금 아래에서 지움(확인 + 기록 사이에 끼어들지 않도록)
        if key is None:
            keys = list(self._entries)
        else:
            keys = [key]
        for k in keys:
            with self._lock_for(k):
                self._entries.pop(k, None)

    def timestamps(self, key: str) -> List[float]:
        return list(self._entries.get(key, []))


class RateLimiter:
    """
    티어별 한도를 적용하는 진입점

    :param store: 요청 시각 저장소(기본: InMemoryRateLimitStore)
    :type store: Optional[RateLimitStore]
    :param clock: 현재 시각(초)을 돌려주는 함수. 테스트에서 고정 시계를 주입함
    :type clock: Callable[[], float]
    """

    def __init__(self, store: Optional[RateLimitStore] = None, clock: Callable[[], float] = time.time):
        self.store = store or InMemoryRateLimitStore()
        self.clock = clock

    def check(self, caller_id: str, tier: RateLimitTier) -> RateLimitDecision:
        key = f"{tier.name}:{caller_id}"
        decision = self.store.hit(key, self.clock(), tier)
        if not decision.allowed:
            logger.warning(
                "[RATE] denied caller=%s tier=%s retry_after=%s",
                caller_id, tier.name, decision.retry_after_seconds,
            )
        return decision

    def enforce(self, caller_id: str, tier: RateLimitTier) -> None:
        """
        check()가 거부하면 RateLimited를 던진다.

        :raises RateLimited: 한도 초과
        """
        decision = self.check(caller_id, tier)
        if decision.allowed:
            return
        if decision.retry_after_seconds == MINUTE_RETRY_AFTER:
            message = f"Maximum {tier.per_minute} {tier.name} requests per minute. Please wait."
        else:
            message = f"Maximum {tier.per_day} {tier.name} requests per day."
        raise RateLimited(decision.retry_after_seconds, message)
