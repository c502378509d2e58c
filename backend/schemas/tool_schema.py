# schemas/tool_schema.py
# 에이전트 도구 입력 스키마 + LLM 출력 형태 스키마
# 도구 인자는 모델이 camelCase로 보내므로 alias_generator=to_camel 사용

from datetime import datetime
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from services.email_utils import split_valid_invalid_emails
from services.time_utils import to_utc_naive

UtcDateTime = Annotated[datetime, AfterValidator(to_utc_naive)]

AGENDA_ITEM_TYPES = ("session", "break", "networking", "keynote", "workshop", "qa", "closing")


class ToolInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _end_after_start(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start and end and end <= start:
        raise ValueError("end must be after start")


class SearchEventsInput(ToolInput):
    keyword: Optional[str] = Field(None, max_length=200, description="Keyword to search in event title or description")
    tags: Optional[List[str]] = Field(None, max_length=10, description="Filter events by tag names")
    date_from: Optional[UtcDateTime] = Field(None, description="ISO 8601 datetime; events starting on or after")
    date_to: Optional[UtcDateTime] = Field(None, description="ISO 8601 datetime; events starting on or before")
    scope: Literal["upcoming", "past", "all"] = Field("upcoming", description='"upcoming" (default), "past" or "all"')


class GetMyScheduleInput(ToolInput):
    days_ahead: int = Field(30, ge=1, le=90, description="Number of days ahead to look (1-90, default 30)")


class CheckConflictsInput(ToolInput):
    start_date_time: UtcDateTime = Field(description="Proposed start in ISO 8601 format")
    end_date_time: UtcDateTime = Field(description="Proposed end in ISO 8601 format")

    @model_validator(mode="after")
    def _check_range(self):
        _end_after_start(self.start_date_time, self.end_date_time)
        return self


class CreateEventInput(ToolInput):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    start_date_time: UtcDateTime = Field(description="Event start in ISO 8601 format")
    end_date_time: UtcDateTime = Field(description="Event end in ISO 8601 format")
    location: Optional[str] = Field(None, max_length=500, description="Physical location")
    is_virtual: bool = False
    virtual_link: Optional[str] = Field(None, max_length=500, description="Zoom/Meet/Teams link")
    capacity: Optional[int] = Field(None, gt=0, description="Max attendee capacity")
    is_public: bool = True
    tags: Optional[List[str]] = Field(None, max_length=10)

    @field_validator("virtual_link")
    @classmethod
    def _link_is_url(cls, v):
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("virtualLink must be an http(s) URL")
        return v

    @field_validator("tags")
    @classmethod
    def _tag_length(cls, v):
        if v and any(len(t) > 50 for t in v):
            raise ValueError("tags must be at most 50 characters")
        return v

    @model_validator(mode="after")
    def _check_range(self):
        _end_after_start(self.start_date_time, self.end_date_time)
        return self


class InvitePeopleInput(ToolInput):
    event_id: str = Field(min_length=1, description="The ID of the event to invite people to")
    emails: List[str] = Field(min_length=1, max_length=50, description="Email addresses to invite (1-50)")
    message: Optional[str] = Field(None, max_length=1000, description="Optional personal message")

    @field_validator("emails")
    @classmethod
    def _valid_emails(cls, v):
        _, invalid = split_valid_invalid_emails(v)
        if invalid:
            raise ValueError(f"invalid email addresses: {', '.join(invalid)}")
        return v


class DateRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_from: UtcDateTime = Field(alias="from")
    date_to: UtcDateTime = Field(alias="to")

    @model_validator(mode="after")
    def _check_range(self):
        _end_after_start(self.date_from, self.date_to)
        return self


class SuggestMeetingTimeInput(ToolInput):
    attendee_ids: List[str] = Field(min_length=1, max_length=20, description="User IDs to check availability for (1-20)")
    date_range: DateRange = Field(description="Preferred window {from, to} in ISO 8601")
    duration_minutes: int = Field(60, ge=15, le=480)


class BuildAgendaInput(ToolInput):
    title: str = Field(min_length=1, max_length=200)
    duration_minutes: int = Field(ge=15, le=480, description="Event duration in minutes (15-480)")
    event_type: Literal["conference", "workshop", "meetup", "social", "corporate", "other"] = "other"
    speaker_count: int = Field(1, ge=1, le=50)


# LLM 출력 형태(complete_json의 response_model)
class LlmOutput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AgendaItem(LlmOutput):
    start_offset: int
    end_offset: int
    title: str
    description: str = ""
    type: str = "session"
    speaker: Optional[str] = None


class AgendaDraft(LlmOutput):
    agenda: List[AgendaItem]
    formatted_text: Optional[str] = None


class TimeSuggestionDraft(LlmOutput):
    start_date_time: str
    end_date_time: str
    score: float = 0.0
    reason: str = ""


class TimeSuggestionsDraft(LlmOutput):
    suggestions: List[TimeSuggestionDraft]


class SuggestedTime(BaseModel):
    start: str
    end: str


class ConflictResolution(LlmOutput):
    type: str
    description: str
    suggested_time: Optional[SuggestedTime] = None
    reasoning: str = ""


class ConflictResolutionsDraft(LlmOutput):
    resolutions: List[ConflictResolution]


class ParsedSearchFilters(LlmOutput):
    keywords: Optional[List[str]] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    location: Optional[str] = None
    tags: Optional[List[str]] = None
    is_virtual: Optional[bool] = None


class DescriptionDraft(LlmOutput):
    description: str = Field(min_length=1)
    alternates: Optional[List[str]] = None


class InviteeSuggestionDraft(LlmOutput):
    user_id: str
    relevance_score: float = 0.0
    reason: str = ""


class InviteeSuggestionsDraft(LlmOutput):
    suggestions: List[InviteeSuggestionDraft]
