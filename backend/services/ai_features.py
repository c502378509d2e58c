# services/ai_features.py
# 에이전트 도구가 아닌 단발성 AI 기능 (/ai/search, /ai/generate-description, /ai/suggest-invitees)
# 모두 (ToolContext, 입력) -> dict 이며 모델 호출은 complete_json 한 번

import json
import logging
from collections import Counter
from typing import Any, Dict, List

from models.event import AttendanceResponse, COMMITTED_STATUSES, Event, Invitation, InvitationStatus, User
from schemas.agent_schema import GenerateDescriptionIn, SuggestInviteesIn
from schemas.tool_schema import DescriptionDraft, InviteeSuggestionsDraft, ParsedSearchFilters
from services import event_service
from services.prompts import description_system_prompt, invitee_ranker_prompt, search_parser_prompt
from services.render import tags_to_list
from services.time_utils import iso_z, parse_dt
from services.tool_executors import _clamp, _matches_keyword, _matches_tags
from services.tool_registry import ToolContext

logger = logging.getLogger(__name__)

# 자연어 검색: 저장소에서 가져오는 후보 상한(키워드/장소 필터 전)
NL_SEARCH_FETCH_LIMIT = 100
# 초대 추천: 태그가 겹치는 과거 이벤트 조회 상한 / 모델에 넘기는 후보 상한
SIMILAR_EVENT_LIMIT = 50
MAX_INVITEE_CANDIDATES = 30


# ---------- /ai/search ----------
def natural_language_search(ctx: ToolContext, query: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    """
    자연어 검색어를 모델로 필터(키워드/기간/장소/태그/온라인 여부)로 바꾼 뒤 이벤트를 찾는다.

    - 기간/태그/온라인 여부로 후보를 좁히고, 키워드(제목 또는 설명)와 장소는 부분 일치로 거름
    - 해석할 수 없는 날짜는 조건에서 빠짐
    - 결과마다 호출자의 참석 응답 상태(myStatus)를 붙임

    :param ctx: 도구 컨텍스트
    :type ctx: ToolContext
    :param query: 자연어 검색어
    :type query: str
    :param page: 1부터 시작하는 페이지 번호
    :type page: int
    :param limit: 페이지 크기
    :type limit: int
    :return: {"query", "parsedFilters", "data": [...], "pagination": {...}}
    :rtype: Dict[str, Any]
    :raises MalformedResponse: 모델 응답 복구 실패
    """

    now = ctx.now()
    filters: ParsedSearchFilters = ctx.completion.complete_json(
        search_parser_prompt(now.strftime("%Y-%m-%d")),
        json.dumps({"query": query}, ensure_ascii=False),
        temperature=0.1, max_tokens=500, response_model=ParsedSearchFilters,
    )
    uid = ctx.user.subject_id
    events = event_service.search_candidates(
        ctx.db, uid, scope="all",
        date_from=parse_dt(filters.date_from), date_to=parse_dt(filters.date_to),
        now=now, limit=NL_SEARCH_FETCH_LIMIT,
    )

    tags = [t for t in (filters.tags or []) if t and t.strip()]
    if tags:
        events = [e for e in events if _matches_tags(e.tags, tags)]
    if filters.is_virtual is not None:
        events = [e for e in events if bool(e.is_virtual) == filters.is_virtual]
    keywords = [k.strip() for k in (filters.keywords or []) if k and k.strip()]
    if keywords:
        events = [e for e in events if any(_matches_keyword(e.title, e.description, k) for k in keywords)]
    location = (filters.location or "").strip().lower()
    if location:
        events = [e for e in events if location in (e.location or "").lower()]

    total = len(events)
    page_events = events[(page - 1) * limit: page * limit]
    statuses: Dict[str, str] = {}
    if page_events:
        rows = ctx.db.query(AttendanceResponse).filter(
            AttendanceResponse.user_id == uid,
            AttendanceResponse.event_id.in_([e.id for e in page_events]),
        ).all()
        statuses = {r.event_id: r.status for r in rows}

    logger.info("[AGENT] user=%s nl-search matched %d event(s)", uid, total)
    return {
        "query": query,
        "parsedFilters": filters.model_dump(by_alias=True),
        "data": [{
            "id": e.id,
            "title": e.title,
            "startDateTime": iso_z(e.start),
            "endDateTime": iso_z(e.end),
            "location": e.location or None,
            "isVirtual": bool(e.is_virtual),
            "tags": tags_to_list(e.tags),
            "myStatus": statuses.get(e.id),
        } for e in page_events],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": (total + limit - 1) // limit,
        },
    }


# ---------- /ai/generate-description ----------
def generate_description(ctx: ToolContext, inp: GenerateDescriptionIn) -> Dict[str, Any]:
    user_prompt = json.dumps({
        "title": inp.title,
        "eventType": inp.event_type or "general",
        "details": inp.details or "No additional details provided",
        "tone": inp.tone,
        "maxLength": inp.max_length,
    }, ensure_ascii=False)
    draft: DescriptionDraft = ctx.completion.complete_json(
        description_system_prompt(inp.max_length), user_prompt,
        temperature=0.7, max_tokens=1000, response_model=DescriptionDraft,
    )
    return {"description": draft.description, "alternates": draft.alternates or []}


# ---------- /ai/suggest-invitees ----------
def _invitee_candidates(ctx: ToolContext, inp: SuggestInviteesIn) -> List[Dict[str, Any]]:
    """
    함께한 이력이 있는 사용자를 빈도순으로 모은다.

    - 태그가 겹치는 이벤트의 확정 참석자(과거 참석 이력)
    - 호출자가 보낸 초대 중 수락된 초대의 대상자
    - 호출자 본인과 alreadyInvited는 제외

    :return: [{"userId", "name", "email", "pastEventCount"}, ...] (최대 MAX_INVITEE_CANDIDATES개)
    :rtype: List[Dict[str, Any]]
    """

    uid = ctx.user.subject_id
    excluded = set(inp.already_invited or []) | {uid}
    counts: Counter = Counter()

    tags = [t for t in (inp.tags or []) if t.strip()]
    if tags:
        similar = event_service.search_candidates(ctx.db, uid, scope="all", now=ctx.now(), limit=SIMILAR_EVENT_LIMIT * 4)
        similar_ids = [e.id for e in similar if _matches_tags(e.tags, tags)][:SIMILAR_EVENT_LIMIT]
        if similar_ids:
            rows = ctx.db.query(AttendanceResponse).filter(
                AttendanceResponse.event_id.in_(similar_ids),
                AttendanceResponse.status.in_(COMMITTED_STATUSES),
            ).all()
            counts.update(r.user_id for r in rows if r.user_id not in excluded)

    accepted = ctx.db.query(Invitation).filter(
        Invitation.inviter_id == uid,
        Invitation.status == InvitationStatus.ACCEPTED.value,
        Invitation.invitee_id.isnot(None),
    ).all()
    counts.update(i.invitee_id for i in accepted if i.invitee_id not in excluded)

    top = [sid for sid, _ in counts.most_common(min(inp.max_suggestions * 3, MAX_INVITEE_CANDIDATES))]
    if not top:
        return []
    users = {u.id: u for u in ctx.db.query(User).filter(User.id.in_(top)).all()}
    return [{
        "userId": sid,
        "name": users[sid].name if sid in users else None,
        "email": users[sid].email if sid in users else None,
        "pastEventCount": counts[sid],
    } for sid in top]


def suggest_invitees(ctx: ToolContext, inp: SuggestInviteesIn) -> Dict[str, Any]:
    """
    초대할 만한 사람을 추천한다. 후보는 저장소 이력에서만 뽑고 모델은 순위와 이유만 정한다.

    :param ctx: 도구 컨텍스트
    :type ctx: ToolContext
    :param inp: 이벤트 제목/설명/태그, 제외 대상, 최대 추천 수
    :type inp: SuggestInviteesIn
    :return: {"suggestions": [{"userId", "relevanceScore", "reason", "user": {...}}, ...]}
    :rtype: Dict[str, Any]
    """

    candidates = _invitee_candidates(ctx, inp)
    if not candidates:
        return {"suggestions": []}

    user_prompt = json.dumps({
        "event": {"title": inp.event_title, "description": inp.event_description, "tags": inp.tags or []},
        "candidates": candidates,
    }, ensure_ascii=False)
    draft: InviteeSuggestionsDraft = ctx.completion.complete_json(
        invitee_ranker_prompt(inp.max_suggestions), user_prompt,
        temperature=0.3, max_tokens=1000, response_model=InviteeSuggestionsDraft,
    )

    by_id = {c["userId"]: c for c in candidates}
    suggestions = []
    seen = set()
    for s in draft.suggestions:
        # 후보 밖의 id는 모델이 지어낸 것
        if s.user_id not in by_id or s.user_id in seen:
            logger.debug("[AGENT] dropping invitee suggestion %s", s.user_id)
            continue
        seen.add(s.user_id)
        c = by_id[s.user_id]
        suggestions.append({
            "userId": s.user_id,
            "relevanceScore": round(_clamp(s.relevance_score), 2),
            "reason": s.reason,
            "user": {"id": c["userId"], "name": c["name"], "email": c["email"]},
        })
    return {"suggestions": suggestions[:inp.max_suggestions]}
