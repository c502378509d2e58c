# services/batching.py
# 청크 단위 "id in (...)" 조회를 스레드 풀에서 병렬로 실행하고, 모두 합류(join)한 뒤 반환함

import logging
import os
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Sequence, TypeVar

from services.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

BATCH_TIMEOUT = float(os.getenv("BATCH_TIMEOUT", "10"))
BATCH_MAX_WORKERS = 4


def chunked(items: Sequence[T], size: int) -> List[List[T]]:
    """
    시퀀스를 size 크기의 리스트 묶음으로 자른다.

    :param items: 원본 시퀀스
    :type items: Sequence[T]
    :param size: 청크 크기(1 이상)
    :type size: int
    :return: 청크 리스트
    :rtype: List[List[T]]
    """

    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def run_chunked(
    items: Sequence[T],
    size: int,
    fn: Callable[[List[T]], R],
    timeout: float = None,
) -> List[R]:
    """
    각 청크에 fn을 병렬로 적용하고 청크 순서대로 결과를 돌려준다.

    - 청크가 하나뿐이면 스레드 없이 바로 실행함
    - timeout 안에 끝나지 않은 청크가 있으면 UpstreamUnavailable

    :param items: 조회 대상 키 목록
    :type items: Sequence[T]
    :param size: 청크 크기
    :type size: int
    :param fn: 청크 하나를 처리하는 함수(스레드마다 자기 세션을 열어야 함)
    :type fn: Callable[[List[T]], R]
    :param timeout: 전체 대기 시간(초). None이면 BATCH_TIMEOUT
    :type timeout: float
    :return: 청크별 결과 리스트
    :rtype: List[R]
    :raises UpstreamUnavailable: 시간 초과
    """

    chunks = chunked(items, size)
    if not chunks:
        return []
    if len(chunks) == 1:
        return [fn(chunks[0])]

    pool = ThreadPoolExecutor(max_workers=min(BATCH_MAX_WORKERS, len(chunks)))
    try:
        futures = [pool.submit(fn, c) for c in chunks]
        done, not_done = wait(futures, timeout=timeout or BATCH_TIMEOUT)
        if not_done:
            for f in not_done:
                f.cancel()
            logger.error("[BATCH] %d/%d chunks timed out", len(not_done), len(futures))
            raise UpstreamUnavailable("Record store lookup timed out")
        # 작업 중 예외가 있으면 여기서 그대로 전파됨
        return [f.result() for f in futures]
    finally:
        pool.shutdown(wait=False)
