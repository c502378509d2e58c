# routes/invitations.py
# 토큰 기반 초대 응답
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from routes.deps import APP_URL, get_clock, get_notifier, require_user
from schemas.event_schema import InvitationRespondIn
from services import invitation_service
from services.identity import Identity
from services.notifier import NotificationSender

router = APIRouter(prefix="/invitations", tags=["invitations"])


@router.post("/respond")
def respond(
    body: InvitationRespondIn,
    user: Identity = Depends(require_user),
    db: Session = Depends(get_db),
    notifier: NotificationSender = Depends(get_notifier),
    clock=Depends(get_clock),
):
    """
    초대 수락/거절. 토큰은 1회용이며 초대받은 본인만 응답할 수 있음
    """
    return invitation_service.respond_to_invitation(
        db, body.token, user, body.status, notifier=notifier, app_url=APP_URL, now=clock(),
    )
