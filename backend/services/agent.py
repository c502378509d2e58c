# services/agent.py
# 에이전트 루프 - 다중 도구 호출 지원
#
# 상태: Start -> Reasoning -> (ToolDispatch -> Reasoning)* -> Done | Aborted | Failed
# - 도구 에러: 도구 결과 문자열로 바꿔 모델에게 되돌려줌(턴은 계속)
# - 루프 에러(completion.chat의 MalformedResponse / UpstreamUnavailable): 그대로 전파(Failed, 저장 안 함)
# - 반복 상한 도달: Aborted. 빈 응답 대신 가장 나은 부분 응답을 돌려줌(저장 안 함)

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from services.completion import CompletionClient
from services.conversation_store import ConversationStore, recent_history, to_history
from services.errors import AssistantError, MalformedResponse
from services.json_repair import parse_json_output
from services.prompts import agent_system_prompt
from services.rate_limiter import AGENT_TIER, RateLimiter
from services.time_utils import friendly_today, iso_z
from services.tool_registry import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)

AGENT_MAX_ITERATIONS = int(os.getenv("AGENT_MAX_ITERATIONS", "8"))
AGENT_HISTORY_WINDOW = int(os.getenv("AGENT_HISTORY_WINDOW", "10"))
TOOL_OUTPUT_TRACE_LIMIT = 500

STATUS_DONE = "done"
STATUS_ABORTED = "aborted"

ABORTED_FALLBACK_REPLY = (
    "This request needed more steps than I can take in one turn. "
    "Please split it into smaller requests."
)


@dataclass
class ToolCallRecord:
    tool: str
    input: Any
    output: str
    ok: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"tool": self.tool, "input": self.input, "output": self.output, "ok": self.ok}


@dataclass
class AgentTurnResult:
    reply: str
    status: str = STATUS_DONE
    tools_used: List[str] = field(default_factory=list)
    tool_trace: List[ToolCallRecord] = field(default_factory=list)
    affected_event_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reply": self.reply,
            "status": self.status,
            "toolsUsed": self.tools_used,
            "toolTrace": [r.to_dict() for r in self.tool_trace],
            "affectedEventIds": self.affected_event_ids,
        }


class AgentLoop:
    """
    복합 작업을 위한 '다단계 도구 실행기'.

    모델이 고른 도구를 실제로 실행하고, 결과를 대화 히스토리에 'tool' 역할로 붙여
    연쇄적인 처리(예: 충돌 확인 -> 생성 -> 초대)를 한 번의 사용자 요청으로 수행한다.

    :param completion: 생성형 텍스트 클라이언트
    :type completion: CompletionClient
    :param registry: 도구 레지스트리
    :type registry: ToolRegistry
    :param max_iterations: 추론 단계 상한(무한 루프 방지)
    :type max_iterations: int
    :param history_window: 이전 대화 중 모델에게 보낼 최근 메시지 수
    :type history_window: int
    """

    def __init__(
        self,
        completion: CompletionClient,
        registry: ToolRegistry,
        max_iterations: int = AGENT_MAX_ITERATIONS,
        history_window: int = AGENT_HISTORY_WINDOW,
    ):
        self.completion = completion
        self.registry = registry
        self.max_iterations = max_iterations
        self.history_window = history_window

    def build_messages(self, ctx: ToolContext, message: str, history: List[Dict[str, str]]) -> List[Dict[str, Any]]:
        now = ctx.now()
        system = agent_system_prompt(ctx.user.subject_id, iso_z(now), friendly_today(now))
        return (
            [{"role": "system", "content": system}]
            + recent_history(history, self.history_window)
            + [{"role": "user", "content": message}]
        )

    def run(self, ctx: ToolContext, message: str, history: Optional[List[Dict[str, str]]] = None) -> AgentTurnResult:
        """
        한 턴을 실행한다.
        1) 히스토리를 모델에 전달해 응답을 받음
        2) tool_calls가 있으면 실행하고 결과를 'tool' 메시지로 추가 -> 1)로
        3) tool_calls 없이 텍스트가 오면 Done
        4) 상한에 닿으면 Aborted(부분 응답)

        :param ctx: 도구 컨텍스트
        :type ctx: ToolContext
        :param message: 사용자 메시지
        :type message: str
        :param history: 이전 턴(role + content)
        :type history: Optional[List[Dict[str, str]]]
        :return: 턴 결과
        :rtype: AgentTurnResult
        :raises MalformedResponse: 모델 응답 자체가 깨짐
        :raises UpstreamUnavailable: 모델 호출 실패/타임아웃
        """
        messages = self.build_messages(ctx, message, history or [])
        specs = self.registry.specs()
        result = AgentTurnResult(reply="")
        last_text = ""

        for iteration in range(1, self.max_iterations + 1):
            reply = self.completion.chat(messages, tools=specs)
            tool_calls = reply.get("tool_calls") or []
            content = (reply.get("content") or "").strip()

            if not tool_calls:
                if not content:
                    raise MalformedResponse("The model returned an empty answer")
                result.reply = content
                logger.info(
                    "[AGENT] user=%s done in %d step(s) tools=%s",
                    ctx.user.subject_id, iteration, result.tools_used,
                )
                return result

            if content:
                last_text = content
            messages.append({"role": "assistant", "content": reply.get("content"), "tool_calls": tool_calls})

            for i, tool_call in enumerate(tool_calls):
                call_id = tool_call.get("id") or f"call_{iteration}_{i}"
                name, output = self._execute_single_tool(ctx, tool_call, result)
                messages.append({"role": "tool", "tool_call_id": call_id, "name": name, "content": output})

        logger.warning(
            "[AGENT] max iterations (%d) exceeded for user=%s tools=%s",
            self.max_iterations, ctx.user.subject_id, result.tools_used,
        )
        result.status = STATUS_ABORTED
        result.reply = last_text or self._partial_summary(result)
        return result

    def _execute_single_tool(self, ctx: ToolContext, tool_call: Dict[str, Any], result: AgentTurnResult):
        """
        모델이 요청한 단일 도구 호출을 실행하고 기록한다.
        에러는 {"error", "message"} JSON 문자열로 바꿔 모델에게 돌려준다.

        :return: (도구 이름, 모델에게 줄 결과 문자열)
        :rtype: Tuple[str, str]
        """
        fn = tool_call.get("function") or {}
        name = fn.get("name") or "unknown"
        raw_args = fn.get("arguments")
        if name not in result.tools_used:
            result.tools_used.append(name)

        args: Any = raw_args
        try:
            if isinstance(raw_args, str):
                args = parse_json_output(raw_args) if raw_args.strip() else {}
            output_obj = self.registry.execute(name, args, ctx)
            ok = True
        except AssistantError as e:
            logger.warning("[AGENT] tool %s failed for user=%s: %s", name, ctx.user.subject_id, e.message)
            ctx.db.rollback()
            output_obj, ok = e.to_dict(), False
        except Exception as e:
            logger.exception("[AGENT] tool %s crashed for user=%s", name, ctx.user.subject_id)
            ctx.db.rollback()
            output_obj, ok = {"error": "internal_error", "message": f"{name} failed: {type(e).__name__}"}, False

        output = json.dumps(output_obj, ensure_ascii=False, default=str)
        result.tool_trace.append(ToolCallRecord(name, args, output[:TOOL_OUTPUT_TRACE_LIMIT], ok))

        if ok and isinstance(output_obj, dict):
            event_id = output_obj.get("eventId")
            if name == "create_event" and event_id:
                self._affect(result, event_id)
            elif name == "invite_people" and event_id and output_obj.get("invited", 0) > 0:
                self._affect(result, event_id)
        return name, output

    @staticmethod
    def _affect(result: AgentTurnResult, event_id: str) -> None:
        if event_id not in result.affected_event_ids:
            result.affected_event_ids.append(event_id)

    @staticmethod
    def _partial_summary(result: AgentTurnResult) -> str:
        done = [r.tool for r in result.tool_trace if r.ok]
        if not done:
            return ABORTED_FALLBACK_REPLY
        parts = [f"I couldn't finish this request in one turn. Completed steps: {', '.join(done)}."]
        if result.affected_event_ids:
            parts.append(f"Affected event IDs: {', '.join(result.affected_event_ids)}.")
        parts.append("Please tell me how you'd like to continue.")
        return " ".join(parts)


class AssistantService:
    """
    상위 인터페이스. 요청 제한 -> 기록 로딩 -> 루프 실행 -> (Done이면) 기록 저장

    :param loop: 에이전트 루프
    :type loop: AgentLoop
    :param store: 대화 기록 저장소
    :type store: ConversationStore
    :param limiter: 요청 제한기(agent 티어 적용)
    :type limiter: RateLimiter
    """

    def __init__(self, loop: AgentLoop, store: ConversationStore, limiter: RateLimiter):
        self.loop = loop
        self.store = store
        self.limiter = limiter

    def run_turn(
        self,
        ctx: ToolContext,
        message: str,
        prior_history: Optional[List[Dict[str, str]]] = None,
    ) -> AgentTurnResult:
        """
        :param prior_history: 호출자가 보낸 이전 턴. None이면 저장된 기록을 씀
        :raises RateLimited: agent 티어 한도 초과(루프 시작 전)
        """
        uid = ctx.user.subject_id
        self.limiter.enforce(uid, AGENT_TIER)

        if prior_history is None:
            history = [{"role": m.role, "content": m.content} for m in self.store.get(uid)]
        else:
            history = to_history(prior_history)

        result = self.loop.run(ctx, message, history)
        if result.status == STATUS_DONE:
            try:
                self.store.append_turn(uid, message, result.reply)
            except Exception:
                # 기록 저장 실패는 이미 끝난 턴의 응답을 바꾸지 않음
                logger.exception("[AGENT] failed to save conversation turn for user=%s", uid)
        return result

    def get_history(self, user_id: str) -> List[Dict[str, str]]:
        return [m.to_dict() for m in self.store.get(user_id)]

    def clear_history(self, user_id: str) -> None:
        self.store.clear(user_id)
        logger.info("[AGENT] cleared conversation for user=%s", user_id)
