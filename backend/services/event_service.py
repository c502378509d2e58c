# services/event_service.py
from sqlalchemy.orm import Session
from sqlalchemy import or_, func
from sqlalchemy.exc import IntegrityError
import logging
from typing import Callable, Dict, List, Optional, Any
from datetime import datetime

from models.event import (
    AttendanceResponse,
    Event,
    RsvpStatus,
    User,
    COMMITTED_STATUSES,
)
from schemas.event_schema import EventReschedule
from schemas.tool_schema import CreateEventInput
from services.batching import run_chunked
from services.errors import Conflict, Forbidden, NotFound, ValidationFailed
from services.identity import Identity
from services.render import pack_event, tags_to_str
from services.time_utils import utcnow

logger = logging.getLogger(__name__)

# search_events 후보 최대 개수(저장소에서 가져오는 상한, 키워드/태그 필터는 그 뒤에 적용)
SEARCH_CANDIDATE_LIMIT = 50
# 이벤트 id in (...) 배치 조회 크기
EVENT_FETCH_CHUNK = 10
# 일정 변경으로 비울 수 없는 필드(NOT NULL 컬럼)
REQUIRED_EVENT_FIELDS = ("title", "start", "end")


def ensure_user(db: Session, identity: Identity) -> User:
    """
    인증된 사용자를 users 테이블에 반영(upsert)한다. 초대 시 이메일 -> 계정 매핑에 사용됨.

    이메일은 유일해야 하므로, 같은 이메일을 가진 다른 subject 행이 있으면
    그 행의 이메일을 자리표시자(<id>@unknown)로 바꿔 넘겨받는다(검증된 신원이 우선).

    :param db: DB 세션
    :type db: Session
    :param identity: 검증된 사용자 정보
    :type identity: Identity
    :return: User 레코드
    :rtype: User
    :raises Conflict: 동시에 같은 이메일을 차지하려는 요청과 충돌
    """
    user = db.get(User, identity.subject_id)
    email = (identity.email or "").strip().lower()
    if email and (user is None or user.email != email):
        stale = db.query(User).filter(User.email == email, User.id != identity.subject_id).first()
        if stale is not None:
            logger.warning("[USER] email moved from user=%s to user=%s", stale.id, identity.subject_id)
            stale.email = f"{stale.id}@unknown"
            db.flush()

    if user is None:
        user = User(id=identity.subject_id, email=email or f"{identity.subject_id}@unknown", name=identity.display_name)
        db.add(user)
    else:
        if email and user.email != email: user.email = email
        if identity.display_name and user.name != identity.display_name: user.name = identity.display_name
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("[USER] could not save user=%s: email already taken", identity.subject_id)
        raise Conflict("This email is already linked to another account")
    return user

def find_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()

def create_event(db: Session, owner_id: str, payload: CreateEventInput, now: Optional[datetime] = None) -> Event:
    """
    이벤트를 만들고 생성자를 UPCOMING 응답으로 자동 등록한다(한 트랜잭션).

    :param db: DB 세션
    :type db: Session
    :param owner_id: 생성자(소유자) id
    :type owner_id: str
    :param payload: 검증된 create_event 입력
    :type payload: CreateEventInput
    :return: 생성된 Event
    :rtype: Event
    """
    now = now or utcnow()
    ev = Event(
        title=payload.title.strip(),
        description=payload.description or None,
        start=payload.start_date_time,
        end=payload.end_date_time,
        location=payload.location or None,
        is_virtual=payload.is_virtual,
        virtual_link=payload.virtual_link or None,
        capacity=payload.capacity,
        is_public=payload.is_public,
        owner_id=owner_id,
        tags=tags_to_str(payload.tags),
        created_at=now,
        updated_at=now,
    )
    db.add(ev)
    db.flush()
    db.add(AttendanceResponse(
        event_id=ev.id,
        user_id=owner_id,
        status=RsvpStatus.UPCOMING.value,
        event_start=ev.start,
        event_end=ev.end,
        responded_at=now,
        updated_at=now,
    ))
    db.commit(); db.refresh(ev)
    return ev

def get(db: Session, event_id: str) -> Optional[Event]:
    return db.get(Event, event_id)

def get_visible(db: Session, event_id: str, user_id: str) -> Event:
    # 공개 이벤트이거나 본인 소유일 때만 읽기 허용
    ev = get(db, event_id)
    if not ev or not (ev.is_public or ev.owner_id == user_id):
        raise NotFound("Event not found")
    return ev

def get_owned(db: Session, event_id: str, user_id: str, action: str = "modify") -> Event:
    ev = get(db, event_id)
    if not ev:
        raise NotFound("Event not found")
    if ev.owner_id != user_id:
        raise Forbidden(f"You can only {action} events you created")
    return ev

def search_candidates(
    db: Session,
    user_id: str,
    scope: str = "upcoming",
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    now: Optional[datetime] = None,
    limit: int = SEARCH_CANDIDATE_LIMIT,
) -> List[Event]:
    """
    검색 후보 이벤트를 시작 시각 오름차순으로 최대 limit개 가져온다.

    :param scope: upcoming(시작 >= now) / past(종료 < now) / all
    :type scope: str
    :return: 호출자에게 보이는(공개 또는 본인 소유) 이벤트 목록
    :rtype: List[Event]
    """
    now = now or utcnow()
    query = db.query(Event).filter(or_(Event.is_public == True, Event.owner_id == user_id))  # noqa: E712
    if scope == "upcoming": query = query.filter(Event.start >= now)
    elif scope == "past":   query = query.filter(Event.end < now)
    if date_from: query = query.filter(Event.start >= date_from)
    if date_to:   query = query.filter(Event.start <= date_to)
    return query.order_by(Event.start.asc()).limit(limit).all()

def committed_responses(
    db: Session,
    user_id: str,
    start_from: Optional[datetime] = None,
    start_to: Optional[datetime] = None,
) -> List[AttendanceResponse]:
    query = db.query(AttendanceResponse).filter(
        AttendanceResponse.user_id == user_id,
        AttendanceResponse.status.in_(COMMITTED_STATUSES),
    )
    if start_from: query = query.filter(AttendanceResponse.event_start >= start_from)
    if start_to:   query = query.filter(AttendanceResponse.event_start <= start_to)
    return query.order_by(AttendanceResponse.event_start.asc()).all()

def fetch_events_by_ids(session_factory: Callable[[], Session], ids: List[str]) -> Dict[str, Dict[str, Any]]:
    """
    이벤트 id 목록을 EVENT_FETCH_CHUNK 단위로 나눠 병렬 조회하고 {id: pack_event(...)}로 합친다.

    :param session_factory: 청크마다 새 세션을 여는 팩토리
    :type session_factory: Callable[[], Session]
    :param ids: 이벤트 id 목록(중복 허용)
    :type ids: List[str]
    :return: 존재하는 이벤트만 담긴 딕셔너리
    :rtype: Dict[str, Dict[str, Any]]
    """
    unique_ids = list(dict.fromkeys(ids))

    def _load(chunk: List[str]) -> List[Dict[str, Any]]:
        db = session_factory()
        try:
            return [pack_event(e) for e in db.query(Event).filter(Event.id.in_(chunk)).all()]
        finally:
            db.close()

    out: Dict[str, Dict[str, Any]] = {}
    for packed in run_chunked(unique_ids, EVENT_FETCH_CHUNK, _load):
        for item in packed:
            out[item["id"]] = item
    return out

def reschedule_event(db: Session, event_id: str, user_id: str, patch: EventReschedule) -> Event:
    """
    소유자가 이벤트 일정을 바꾼다. 모든 참석 응답의 비정규화 시간도 같은 트랜잭션에서 갱신한다.

    :raises NotFound: 이벤트 없음
    :raises Forbidden: 소유자가 아님
    :raises ValidationFailed: 필수 값(title/start/end)을 null로 바꾸려 함, 또는 end <= start
    """
    ev = get_owned(db, event_id, user_id)
    data = patch.model_dump(exclude_unset=True)
    nulls = [k for k in REQUIRED_EVENT_FIELDS if k in data and data[k] is None]
    if nulls:
        raise ValidationFailed(
            "title, start and end cannot be cleared",
            [{"field": k, "message": f"{k} cannot be null"} for k in nulls],
        )
    new_start = data.get("start") or ev.start
    new_end = data.get("end") or ev.end
    if new_end <= new_start:
        raise ValidationFailed("end must be after start", [{"field": "end", "message": "end must be after start"}])
    if "tags" in data:
        data["tags"] = tags_to_str(data["tags"])
    for k, v in data.items():
        setattr(ev, k, v)

    for r in ev.responses:
        r.event_start = ev.start
        r.event_end = ev.end
    db.commit(); db.refresh(ev)
    return ev

def attending_count(db: Session, event_id: str, exclude_user_id: Optional[str] = None) -> int:
    query = db.query(func.count(AttendanceResponse.id)).filter(
        AttendanceResponse.event_id == event_id,
        AttendanceResponse.status == RsvpStatus.ATTENDING.value,
    )
    if exclude_user_id:
        query = query.filter(AttendanceResponse.user_id != exclude_user_id)
    return query.scalar() or 0

def set_rsvp(db: Session, ev: Event, user_id: str, status: RsvpStatus, now: Optional[datetime] = None) -> AttendanceResponse:
    """
    참석 응답을 만들거나 바꾼다. 정원이 찬 이벤트에 ATTENDING으로 바꾸려 하면 Conflict.

    :param ev: 대상 이벤트
    :type ev: Event
    :param user_id: 응답자 id
    :type user_id: str
    :param status: 새 상태
    :type status: RsvpStatus
    :return: 저장된 응답
    :rtype: AttendanceResponse
    :raises Conflict: 정원 초과
    """
    now = now or utcnow()
    status = RsvpStatus(status)
    if status == RsvpStatus.ATTENDING and ev.capacity is not None:
        if attending_count(db, ev.id, exclude_user_id=user_id) >= ev.capacity:
            raise Conflict(f"'{ev.title}' is full ({ev.capacity} attendees)")

    resp = db.query(AttendanceResponse).filter(
        AttendanceResponse.event_id == ev.id,
        AttendanceResponse.user_id == user_id,
    ).first()
    if resp is None:
        resp = AttendanceResponse(event_id=ev.id, user_id=user_id, responded_at=now)
        db.add(resp)
    resp.status = status.value
    resp.event_start = ev.start
    resp.event_end = ev.end
    resp.updated_at = now
    db.commit(); db.refresh(resp)
    return resp
