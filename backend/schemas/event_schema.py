# schemas/event_schema.py
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal

from schemas.tool_schema import UtcDateTime
from models.event import RsvpStatus


class EventReschedule(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    start: Optional[UtcDateTime] = None
    end: Optional[UtcDateTime] = None
    description: Optional[str] = Field(None, max_length=5000)
    location: Optional[str] = Field(None, max_length=500)
    tags: Optional[List[str]] = Field(None, max_length=10)

    @field_validator("title", "start", "end")
    @classmethod
    def _not_null(cls, v, info):
        # 생략은 "변경 없음". 명시적 null은 필수 컬럼을 비우므로 거부
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

    @field_validator("end")
    @classmethod
    def _end_after_start(cls, v, info):
        start = info.data.get("start")
        if v and start and v <= start:
            raise ValueError("end must be after start")
        return v


class RsvpIn(BaseModel):
    status: RsvpStatus


class InvitationRespondIn(BaseModel):
    token: str = Field(min_length=16, max_length=128)
    status: Literal["ACCEPTED", "DECLINED"]
