# schemas/agent_schema.py
# /ai/* 엔드포인트 입출력 스키마(camelCase)

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from schemas.tool_schema import UtcDateTime


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HistoryItem(ApiModel):
    role: Literal["user", "assistant"]
    content: str = Field(max_length=10000)


class AgentMessageIn(ApiModel):
    """
    /ai/agent 입력. history를 보내면 저장된 기록 대신 그것을 사용함
    """
    message: str = Field(min_length=1, max_length=2000)
    history: Optional[List[HistoryItem]] = Field(None, max_length=20)


class ToolTraceOut(ApiModel):
    tool: str
    input: Any = None
    output: str
    ok: bool = True


class AgentTurnOut(ApiModel):
    reply: str
    status: Literal["done", "aborted"]
    tools_used: List[str]
    tool_trace: List[ToolTraceOut]
    affected_event_ids: List[str]


class StoredMessageOut(ApiModel):
    role: str
    content: str
    timestamp: Optional[str] = None


class HistoryOut(ApiModel):
    history: List[StoredMessageOut]


class ConflictCheckIn(ApiModel):
    start_date_time: UtcDateTime
    end_date_time: UtcDateTime
    event_title: Optional[str] = Field(None, max_length=200)

    @model_validator(mode="after")
    def _check_range(self):
        if self.end_date_time <= self.start_date_time:
            raise ValueError("end must be after start")
        return self


class ConflictCheckOut(ApiModel):
    has_conflicts: bool
    conflicts: List[Dict[str, Any]]
    resolutions: List[Dict[str, Any]]


class GenerateDescriptionIn(ApiModel):
    title: str = Field(min_length=1, max_length=200)
    event_type: Optional[Literal["corporate", "social", "workshop", "meetup", "party", "conference", "other"]] = None
    details: Optional[str] = Field(None, max_length=1000)
    tone: Literal["professional", "casual", "fun", "formal"] = "professional"
    max_length: int = Field(500, ge=50, le=2000)


class SuggestInviteesIn(ApiModel):
    """
    /ai/suggest-invitees 입력. alreadyInvited(사용자 id)와 요청자 본인은 후보에서 제외됨
    """
    event_title: str = Field(min_length=1, max_length=200)
    event_description: Optional[str] = Field(None, max_length=2000)
    tags: Optional[List[str]] = Field(None, max_length=10)
    already_invited: Optional[List[str]] = Field(None, max_length=200)
    max_suggestions: int = Field(5, ge=1, le=20)
