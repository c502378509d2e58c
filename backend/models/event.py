# models/event.py
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RsvpStatus(str, enum.Enum):
    UPCOMING = "UPCOMING"
    ATTENDING = "ATTENDING"
    MAYBE = "MAYBE"
    DECLINED = "DECLINED"


class InvitationStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"


# 바쁜 시간(busy slot)으로 취급하는 참석 상태
COMMITTED_STATUSES = (RsvpStatus.ATTENDING.value, RsvpStatus.UPCOMING.value)


class User(Base):
    __tablename__ = "users"
    id = Column(String(128), primary_key=True)  # identity provider subject
    email = Column(String(320), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class Event(Base):
    __tablename__ = "events"
    id = Column(String(32), primary_key=True, default=_uuid)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    start = Column(DateTime, nullable=False, index=True)
    end = Column(DateTime, nullable=False)
    location = Column(String(500), nullable=True)
    is_virtual = Column(Boolean, default=False, nullable=False)
    virtual_link = Column(String(500), nullable=True)
    capacity = Column(Integer, nullable=True)
    is_public = Column(Boolean, default=True, nullable=False)
    owner_id = Column(String(128), nullable=False, index=True)
    tags = Column(Text, nullable=True)  # comma-separated
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    responses = relationship(
        "AttendanceResponse", back_populates="event", cascade="all, delete-orphan"
    )


class AttendanceResponse(Base):
    __tablename__ = "attendance_responses"
    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_response_event_user"),)

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(32), ForeignKey("events.id"), nullable=False, index=True)
    user_id = Column(String(128), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=RsvpStatus.UPCOMING.value)
    # 조인 없이 범위 조회를 하기 위한 이벤트 시간 비정규화 사본
    event_start = Column(DateTime, nullable=False, index=True)
    event_end = Column(DateTime, nullable=False)
    responded_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    event = relationship("Event", back_populates="responses")


class Invitation(Base):
    __tablename__ = "invitations"
    __table_args__ = (UniqueConstraint("event_id", "invitee_email", name="uq_invitation_event_email"),)

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(32), ForeignKey("events.id"), nullable=False, index=True)
    inviter_id = Column(String(128), nullable=False)
    invitee_email = Column(String(320), nullable=False, index=True)
    invitee_id = Column(String(128), nullable=True)
    status = Column(String(16), nullable=False, default=InvitationStatus.PENDING.value)
    token = Column(String(64), nullable=False, unique=True, index=True)
    message = Column(Text, nullable=True)
    sent_at = Column(DateTime, default=_utcnow, nullable=False)
    responded_at = Column(DateTime, nullable=True)

    event = relationship("Event")
