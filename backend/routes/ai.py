# routes/ai.py
# 단발성 AI 엔드포인트(ai 티어). 에이전트 도구 실행 함수 또는 ai_features를 루프 밖에서 직접 호출함
from fastapi import APIRouter, Depends, Query

from routes.deps import get_rate_limiter, get_tool_context
from schemas.agent_schema import ConflictCheckIn, ConflictCheckOut, GenerateDescriptionIn, SuggestInviteesIn
from schemas.tool_schema import BuildAgendaInput, SuggestMeetingTimeInput
from services import ai_features, tool_executors
from services.rate_limiter import AI_TIER, RateLimiter
from services.tool_registry import ToolContext

router = APIRouter(prefix="/ai", tags=["ai"])


@router.post("/check-conflicts", response_model=ConflictCheckOut)
def check_conflicts(
    body: ConflictCheckIn,
    ctx: ToolContext = Depends(get_tool_context),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    확정 일정과의 충돌 목록(겹친 분 포함) + 충돌이 있으면 AI 해결 방안
    """
    limiter.enforce(ctx.user.subject_id, AI_TIER)
    conflicts = tool_executors.find_conflicts(ctx, body.start_date_time, body.end_date_time)
    resolutions = tool_executors.suggest_conflict_resolutions(
        ctx, body.start_date_time, body.end_date_time, conflicts, body.event_title,
    )
    return {"hasConflicts": bool(conflicts), "conflicts": conflicts, "resolutions": resolutions}


@router.post("/suggest-time")
def suggest_time(
    body: SuggestMeetingTimeInput,
    ctx: ToolContext = Depends(get_tool_context),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    limiter.enforce(ctx.user.subject_id, AI_TIER)
    return tool_executors.suggest_meeting_time(ctx, body)


@router.post("/build-agenda")
def build_agenda(
    body: BuildAgendaInput,
    ctx: ToolContext = Depends(get_tool_context),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    limiter.enforce(ctx.user.subject_id, AI_TIER)
    return tool_executors.build_agenda(ctx, body)


@router.get("/search")
def search(
    q: str = Query(min_length=1, max_length=500),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ctx: ToolContext = Depends(get_tool_context),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    자연어 검색. 모델이 검색어를 필터로 바꾸고 결과는 페이지 단위로 돌려줌
    """
    limiter.enforce(ctx.user.subject_id, AI_TIER)
    return ai_features.natural_language_search(ctx, q, page=page, limit=limit)


@router.post("/generate-description")
def generate_description(
    body: GenerateDescriptionIn,
    ctx: ToolContext = Depends(get_tool_context),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    limiter.enforce(ctx.user.subject_id, AI_TIER)
    return ai_features.generate_description(ctx, body)


@router.post("/suggest-invitees")
def suggest_invitees(
    body: SuggestInviteesIn,
    ctx: ToolContext = Depends(get_tool_context),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    limiter.enforce(ctx.user.subject_id, AI_TIER)
    return ai_features.suggest_invitees(ctx, body)
