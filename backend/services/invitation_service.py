# services/invitation_service.py
# 초대 생성 / 응답
# - (event, invitee_email) 당 초대는 최대 1개. 이미 있으면 건너뜀(skipped) -> 같은 요청을 재시도해도 안전
# - 토큰은 1회용. 응답이 끝난 초대의 토큰은 다시 쓸 수 없음
# - 메일 발송 실패는 초대를 롤백하지 않고 이메일별로 따로 보고함

import html
import logging
import os
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.event import Event, Invitation, InvitationStatus, RsvpStatus, User
from services import event_service
from services.email_utils import dedupe_emails
from services.errors import Conflict, Forbidden, NotFound
from services.identity import Identity
from services.notifier import NotificationSender
from services.time_utils import utcnow

logger = logging.getLogger(__name__)

APP_URL = os.getenv("APP_URL", "http://localhost:3000")


def mint_token() -> str:
    # 32바이트 난수 -> 64자 hex
    return secrets.token_hex(32)


def build_invitation_html(
    event: Event,
    sender_name: str,
    token: str,
    is_existing_user: bool,
    message: Optional[str] = None,
    app_url: str = APP_URL,
) -> str:
    """
    초대 메일 본문(HTML)을 만든다.
    가입된 사용자는 바로 응답 링크, 미가입자는 가입 후 응답 링크를 받는다.

    :param event: 초대 대상 이벤트
    :type event: Event
    :param sender_name: 초대한 사람 표시 이름
    :type sender_name: str
    :param token: 초대 토큰
    :type token: str
    :param is_existing_user: 초대받는 이메일이 가입된 계정인지
    :type is_existing_user: bool
    :param message: 개인 메시지
    :type message: Optional[str]
    :return: HTML 문자열
    :rtype: str
    """

    respond_path = f"/invitations/respond?token={token}"
    if is_existing_user:
        link, label, note = f"{app_url}{respond_path}", "Respond to Invitation", ""
    else:
        link = f"{app_url}/register?redirect={quote(respond_path, safe='')}"
        label = "Create Account &amp; Respond"
        note = '<p style="font-size:14px;color:#555">Create an account to respond to this invitation:</p>'

    when = f'<p style="font-size:14px;color:#777">{event.start.strftime("%b %d, %Y %H:%M")} UTC</p>'
    where = f'<p style="font-size:14px;color:#777">{html.escape(event.location)}</p>' if event.location else ""
    personal = (
        f'<p style="font-size:14px;color:#555;font-style:italic">"{html.escape(message)}"</p>' if message else ""
    )
    return (
        '<div style="font-family:sans-serif;max-width:480px;margin:0 auto;padding:24px">'
        '<h2 style="font-size:20px;color:#333">You\'re Invited!</h2>'
        f'<p style="font-size:16px;color:#555"><strong>{html.escape(sender_name)}</strong> has invited you to '
        f"<strong>{html.escape(event.title)}</strong>.</p>"
        f"{when}{where}{personal}{note}"
        f'<p style="margin-top:20px"><a href="{html.escape(link)}" style="display:inline-block;padding:12px 24px;'
        f'background-color:#000;color:#fff;text-decoration:none;border-radius:6px;font-weight:bold">{label}</a></p>'
        "</div>"
    )


def _existing(db: Session, event_id: str, email: str) -> Optional[Invitation]:
    return db.query(Invitation).filter(
        Invitation.event_id == event_id,
        Invitation.invitee_email == email,
    ).first()


def invite_people(
    db: Session,
    event_id: str,
    inviter: Identity,
    emails: List[str],
    notifier: NotificationSender,
    message: Optional[str] = None,
    app_url: str = APP_URL,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    이벤트에 사람들을 초대한다(소유자만 가능).

    :param db: DB 세션
    :type db: Session
    :param event_id: 이벤트 id
    :type event_id: str
    :param inviter: 초대하는 사용자
    :type inviter: Identity
    :param emails: 초대할 이메일 목록(검증 완료)
    :type emails: List[str]
    :param notifier: 메일 발송기
    :type notifier: NotificationSender
    :param message: 개인 메시지
    :type message: Optional[str]
    :return: {eventId, invited, skipped, emails, skippedEmails, deliveryFailed, emailFailed}
    :rtype: Dict[str, Any]
    :raises NotFound: 이벤트 없음
    :raises Forbidden: 소유자가 아님
    """

    ev = event_service.get_owned(db, event_id, inviter.subject_id, action="invite people to")
    now = now or utcnow()
    sender_name = inviter.display_name or inviter.email

    invited: List[str] = []
    skipped: List[str] = []
    delivery_failed: List[Dict[str, str]] = []

    for email in dedupe_emails(emails):
        if _existing(db, ev.id, email):
            skipped.append(email)
            continue

        user = event_service.find_user_by_email(db, email)
        token = mint_token()
        db.add(Invitation(
            event_id=ev.id,
            inviter_id=inviter.subject_id,
            invitee_email=email,
            invitee_id=user.id if user else None,
            status=InvitationStatus.PENDING.value,
            token=token,
            message=message or None,
            sent_at=now,
        ))
        try:
            db.commit()
        except IntegrityError:
            # 동시에 같은 (event, email) 초대가 먼저 저장된 경우
            db.rollback()
            if _existing(db, ev.id, email):
                skipped.append(email)
                continue
            raise
        invited.append(email)

        result = notifier.send(
            to=email,
            subject=f"{sender_name} invited you to {ev.title}",
            html=build_invitation_html(ev, sender_name, token, bool(user), message, app_url),
            reply_to=inviter.email or None,
        )
        if not result.ok:
            logger.warning("[Invite] invitation %s/%s stored but email failed: %s", ev.id, email, result.error)
            delivery_failed.append({"email": email, "error": result.error or "unknown error"})

    logger.info(
        "[Invite] event=%s invited=%d skipped=%d delivery_failed=%d",
        ev.id, len(invited), len(skipped), len(delivery_failed),
    )
    return {
        "eventId": ev.id,
        "invited": len(invited),
        "skipped": len(skipped),
        "emails": invited,
        "skippedEmails": skipped,
        "deliveryFailed": delivery_failed,
        "emailFailed": bool(delivery_failed),
    }


def respond_to_invitation(
    db: Session,
    token: str,
    invitee: Identity,
    status: str,
    notifier: Optional[NotificationSender] = None,
    app_url: str = APP_URL,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    토큰으로 초대에 응답한다. ACCEPTED면 ATTENDING, DECLINED면 DECLINED 참석 응답을 남긴다.

    :raises NotFound: 토큰이 없거나 이벤트가 사라짐
    :raises Forbidden: 초대받은 사람이 아님
    :raises Conflict: 이미 사용된 토큰 / 정원 초과
    """

    now = now or utcnow()
    inv = db.query(Invitation).filter(Invitation.token == token).first()
    if inv is None:
        raise NotFound("Invalid or expired token")
    email = (invitee.email or "").lower()
    if inv.invitee_email != email and inv.invitee_id != invitee.subject_id:
        raise Forbidden("You are not the invitee")
    if inv.status != InvitationStatus.PENDING.value:
        raise Conflict("This invitation has already been answered")

    ev = event_service.get(db, inv.event_id)
    if ev is None:
        raise NotFound("Event not found")

    rsvp = RsvpStatus.ATTENDING if status == InvitationStatus.ACCEPTED.value else RsvpStatus.DECLINED
    # 정원 초과면 여기서 Conflict -> 초대 상태는 PENDING 그대로 남음
    event_service.set_rsvp(db, ev, invitee.subject_id, rsvp, now)

    inv.status = status
    inv.responded_at = now
    inv.invitee_id = invitee.subject_id
    db.commit()

    if notifier is not None:
        owner = db.get(User, ev.owner_id)
        if owner and owner.email:
            result = notifier.send(
                to=owner.email,
                subject=f"RSVP Update: {ev.title}",
                html=(
                    f"<div><p><strong>{html.escape(invitee.email)}</strong> has <strong>{status.lower()}</strong> "
                    f"your invitation to <strong>{html.escape(ev.title)}</strong>.</p>"
                    f'<p><a href="{app_url}/events/{ev.id}">View Event</a></p></div>'
                ),
            )
            if not result.ok:
                logger.warning("[Invite] owner notification failed for event %s: %s", ev.id, result.error)

    return {"invitationId": inv.id, "eventId": ev.id, "status": inv.status, "rsvp": rsvp.value}
