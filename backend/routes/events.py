# routes/events.py
# 이벤트 일정 변경 / 참석 응답
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from routes.deps import get_clock, require_user
from schemas.event_schema import EventReschedule, RsvpIn
from services import event_service
from services.identity import Identity
from services.render import pack_event_detail
from services.time_utils import iso_z

router = APIRouter(prefix="/events", tags=["events"])


@router.patch("/{event_id}")
def reschedule(
    event_id: str,
    body: EventReschedule,
    user: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    """
    소유자만 수정 가능. 시간이 바뀌면 모든 참석 응답의 시간도 함께 갱신됨
    """
    ev = event_service.reschedule_event(db, event_id, user.subject_id, body)
    return pack_event_detail(ev)


@router.post("/{event_id}/rsvp")
def rsvp(
    event_id: str,
    body: RsvpIn,
    user: Identity = Depends(require_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    ev = event_service.get_visible(db, event_id, user.subject_id)
    resp = event_service.set_rsvp(db, ev, user.subject_id, body.status, clock())
    return {
        "eventId": ev.id,
        "status": resp.status,
        "attending": event_service.attending_count(db, ev.id),
        "capacity": ev.capacity,
        "updatedAt": iso_z(resp.updated_at),
    }
