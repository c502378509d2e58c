# services/overlap.py
# 시간 구간 겹침 판정 / 참석자별 바쁜 시간 집계

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Sequence

from sqlalchemy.orm import Session

from models.event import AttendanceResponse, Event, COMMITTED_STATUSES
from services.batching import run_chunked

# 참석자 id in (...) 조회 시 한 번에 묶는 개수
BUSY_SLOT_CHUNK = 30


@dataclass
class BusySlot:
    start: datetime
    end: datetime
    event_id: str
    title: str


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """
    반열린 구간 [start, end) 두 개가 겹치는지 판정한다.
    끝과 시작이 맞닿는 경우나 길이 0인 구간은 겹치지 않는다.

    :return: start_a < end_b and end_a > start_b
    :rtype: bool
    """

    return start_a < end_b and end_a > start_b


def overlap_minutes(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> int:
    # 겹치는 길이(분). 겹치지 않으면 0
    if not overlaps(start_a, end_a, start_b, end_b):
        return 0
    seconds = (min(end_a, end_b) - max(start_a, start_b)).total_seconds()
    return int(round(seconds / 60))


def aggregate_busy_slots(
    session_factory: Callable[[], Session],
    subject_ids: Sequence[str],
    range_start: datetime,
    range_end: datetime,
) -> Dict[str, List[BusySlot]]:
    """
    여러 참석자의 확정(ATTENDING/UPCOMING) 일정 중 [range_start, range_end)와 겹치는 것을 모은다.

    - 참석자 id를 BUSY_SLOT_CHUNK 단위로 나눠 병렬 조회 후 합류
    - 일정이 하나도 없는 참석자도 빈 리스트로 반드시 포함(누락 = "알 수 없음"과 구분)

    :param session_factory: 청크마다 새 세션을 여는 팩토리
    :type session_factory: Callable[[], Session]
    :param subject_ids: 참석자(사용자) id 목록
    :type subject_ids: Sequence[str]
    :param range_start: 조회 하한(UTC naive)
    :type range_start: datetime
    :param range_end: 조회 상한(UTC naive)
    :type range_end: datetime
    :return: {subject_id: [BusySlot, ...]} (시작 시각 오름차순)
    :rtype: Dict[str, List[BusySlot]]
    """

    unique_ids = list(dict.fromkeys(subject_ids))

    def _load(chunk: List[str]) -> List[tuple]:
        db = session_factory()
        try:
            rows = (
                db.query(AttendanceResponse, Event.title)
                .join(Event, Event.id == AttendanceResponse.event_id)
                .filter(
                    AttendanceResponse.user_id.in_(chunk),
                    AttendanceResponse.status.in_(COMMITTED_STATUSES),
                    AttendanceResponse.event_start < range_end,
                    AttendanceResponse.event_end > range_start,
                )
                .all()
            )
            return [
                (r.user_id, BusySlot(r.event_start, r.event_end, r.event_id, title or "Busy"))
                for r, title in rows
            ]
        finally:
            db.close()

    busy: Dict[str, List[BusySlot]] = {sid: [] for sid in unique_ids}
    for rows in run_chunked(unique_ids, BUSY_SLOT_CHUNK, _load):
        for subject_id, slot in rows:
            busy[subject_id].append(slot)
    for slots in busy.values():
        slots.sort(key=lambda s: s.start)
    return busy
