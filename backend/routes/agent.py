# routes/agent.py
# 대화형 에이전트 라우터(/ai/agent)
import logging

from fastapi import APIRouter, Depends

from routes.deps import get_assistant, get_tool_context, require_user
from schemas.agent_schema import AgentMessageIn, AgentTurnOut, HistoryOut
from services.agent import AssistantService
from services.identity import Identity
from services.tool_registry import ToolContext

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/ai/agent", tags=["agent"])


@router.post("", response_model=AgentTurnOut)
def run_agent(
    body: AgentMessageIn,
    ctx: ToolContext = Depends(get_tool_context),
    assistant: AssistantService = Depends(get_assistant),
):
    """
    에이전트 한 턴 실행

    동작 개요
    - agent 티어 요청 제한 확인(초과 시 429, 루프 시작 안 함)
    - history가 없으면 저장된 대화 기록으로 이어서 진행
    - 다단계 도구 실행 후 응답/사용한 도구/도구 기록/영향받은 이벤트 id 반환
    - 정상 종료(done)된 턴만 대화 기록에 저장

    :param body: 사용자 메시지와 (선택) 이전 턴
    :type body: AgentMessageIn
    :return: 턴 결과
    :rtype: AgentTurnOut
    """
    history = None
    if body.history is not None:
        history = [h.model_dump() for h in body.history]
    result = assistant.run_turn(ctx, body.message, history)
    return result.to_dict()


@router.get("", response_model=HistoryOut)
def get_history(
    user: Identity = Depends(require_user),
    assistant: AssistantService = Depends(get_assistant),
):
    return {"history": assistant.get_history(user.subject_id)}


@router.delete("")
def clear_history(
    user: Identity = Depends(require_user),
    assistant: AssistantService = Depends(get_assistant),
):
    assistant.clear_history(user.subject_id)
    return {"ok": True}
