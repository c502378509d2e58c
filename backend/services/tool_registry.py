# services/tool_registry.py
# 도구 레지스트리
# - 도구 = (이름, 설명, 입력 스키마(pydantic), 실행 함수)
# - OpenAI function tool 스펙은 입력 스키마의 JSON schema에서 생성함(손으로 적은 스펙과 검증이 어긋나지 않도록)
# - 인자 검증 실패는 필드 단위 ValidationFailed

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from services.completion import CompletionClient
from services.errors import ValidationFailed
from services.identity import Identity
from services.notifier import NotificationSender
from services.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """
    도구 실행 컨텍스트. 루프 밖(/ai/* 엔드포인트, 테스트)에서도 그대로 만들어 쓸 수 있다.

    :param user: 호출자
    :param db: 요청 단위 DB 세션
    :param session_factory: 병렬 배치 조회용 세션 팩토리(워커마다 새 세션)
    :param completion: 생성형 텍스트 클라이언트
    :param notifier: 초대 메일 발송기
    :param clock: 현재 시각(UTC naive) 함수
    :param app_url: 메일 링크에 쓰이는 공개 URL
    """

    user: Identity
    db: Session
    session_factory: Callable[[], Session]
    completion: CompletionClient
    notifier: NotificationSender
    clock: Callable[[], datetime] = utcnow
    app_url: str = "http://localhost:3000"

    def now(self) -> datetime:
        return self.clock()


Executor = Callable[[ToolContext, Any], Dict[str, Any]]


def _schema_of(model: Type[BaseModel]) -> Dict[str, Any]:
    schema = model.model_json_schema(by_alias=True)
    schema.pop("title", None)
    for prop in (schema.get("properties") or {}).values():
        prop.pop("title", None)
    return schema


@dataclass
class Tool:
    name: str
    description: str
    input_model: Type[BaseModel]
    executor: Executor
    # 외부 상태를 바꾸는 도구 여부(로그/감사용)
    mutating: bool = False

    def openai_spec(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": _schema_of(self.input_model),
            },
        }


def validation_details(e: ValidationError) -> List[Dict[str, Any]]:
    # pydantic 에러 -> [{"field": "emails.0", "message": "..."}]
    return [
        {"field": ".".join(str(p) for p in err.get("loc", ())) or "(root)", "message": err.get("msg", "")}
        for err in e.errors()
    ]


@dataclass
class ToolRegistry:
    tools: Dict[str, Tool] = field(default_factory=dict)

    def register(self, tool: Tool) -> Tool:
        if tool.name in self.tools:
            raise ValueError(f"tool already registered: {tool.name}")
        self.tools[tool.name] = tool
        return tool

    def get(self, name: str) -> Tool:
        tool = self.tools.get(name)
        if tool is None:
            raise ValidationFailed(f"Unknown tool: {name}", [{"field": "name", "message": "unknown tool"}])
        return tool

    def names(self) -> List[str]:
        return list(self.tools)

    def specs(self) -> List[Dict[str, Any]]:
        return [t.openai_spec() for t in self.tools.values()]

    def validate(self, name: str, raw_args: Optional[Dict[str, Any]]) -> BaseModel:
        """
        원시 인자를 도구 입력 스키마로 검증한다.

        :param name: 도구 이름
        :type name: str
        :param raw_args: 모델이 보낸 인자(dict)
        :type raw_args: Optional[Dict[str, Any]]
        :return: 검증된 입력 모델
        :rtype: BaseModel
        :raises ValidationFailed: 알 수 없는 도구 또는 인자 검증 실패
        """
        tool = self.get(name)
        if raw_args is not None and not isinstance(raw_args, dict):
            raise ValidationFailed(
                f"Arguments for {name} must be a JSON object",
                [{"field": "(root)", "message": "expected an object"}],
            )
        try:
            return tool.input_model.model_validate(raw_args or {})
        except ValidationError as e:
            details = validation_details(e)
            raise ValidationFailed(
                f"Invalid arguments for {name}: " + "; ".join(f"{d['field']}: {d['message']}" for d in details),
                details,
            )

    def execute(self, name: str, raw_args: Optional[Dict[str, Any]], ctx: ToolContext) -> Dict[str, Any]:
        """
        인자를 검증한 뒤 실행 함수로 보낸다. 실행 중 에러는 그대로 올려보냄(루프가 도구 결과로 변환).
        """
        payload = self.validate(name, raw_args)
        tool = self.tools[name]
        logger.info("[AGENT] user=%s tool=%s%s", ctx.user.subject_id, name, " (mutating)" if tool.mutating else "")
        return tool.executor(ctx, payload)


def build_default_registry() -> ToolRegistry:
    # 순환 import 방지
    from services import tool_executors as ex
    from schemas import tool_schema as ts

    registry = ToolRegistry()
    registry.register(Tool(
        "search_events",
        "Search for events by keyword, tag, or date range. Use this to find existing events.",
        ts.SearchEventsInput, ex.search_events,
    ))
    registry.register(Tool(
        "get_my_schedule",
        "Get the current user's upcoming events and RSVPs for the next N days. "
        "Use this before scheduling to check for conflicts.",
        ts.GetMyScheduleInput, ex.get_my_schedule,
    ))
    registry.register(Tool(
        "check_conflicts",
        "Check if a proposed time slot conflicts with the user's existing events. Call this before creating an event.",
        ts.CheckConflictsInput, ex.check_conflicts,
    ))
    registry.register(Tool(
        "create_event",
        "Create a new event in the system. IMPORTANT: Only call this after confirming the details with the user.",
        ts.CreateEventInput, ex.create_event, mutating=True,
    ))
    registry.register(Tool(
        "invite_people",
        "Send invitations to people for an event you created. "
        "IMPORTANT: Only call this after confirming the recipients with the user.",
        ts.InvitePeopleInput, ex.invite_people, mutating=True,
    ))
    registry.register(Tool(
        "suggest_meeting_time",
        "Suggest optimal time slots for a meeting given attendee IDs and a preferred date range.",
        ts.SuggestMeetingTimeInput, ex.suggest_meeting_time,
    ))
    registry.register(Tool(
        "build_agenda",
        "Generate a time-blocked agenda for an event given its duration and type.",
        ts.BuildAgendaInput, ex.build_agenda,
    ))
    return registry
