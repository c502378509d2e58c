# services/tool_executors.py
# 에이전트 도구 실행 함수 7종 (+ /ai/check-conflicts 용 충돌 해결 제안)
# 모든 실행 함수는 (ToolContext, 검증된 입력) -> dict 이며 루프 밖에서도 그대로 호출 가능

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from schemas.tool_schema import (
    AGENDA_ITEM_TYPES,
    AgendaDraft,
    AgendaItem,
    BuildAgendaInput,
    CheckConflictsInput,
    ConflictResolutionsDraft,
    CreateEventInput,
    GetMyScheduleInput,
    InvitePeopleInput,
    SearchEventsInput,
    SuggestMeetingTimeInput,
    TimeSuggestionsDraft,
)
from services import event_service, invitation_service
from services.errors import MalformedResponse
from services.overlap import aggregate_busy_slots, overlap_minutes, overlaps
from services.prompts import CONFLICT_RESOLVER_SYSTEM, SUGGEST_TIME_SYSTEM, agenda_system_prompt
from services.render import pack_event, tags_to_list
from services.time_utils import format_offset, iso_z, parse_dt
from services.tool_registry import ToolContext

logger = logging.getLogger(__name__)

SEARCH_PAGE_SIZE = 20
MAX_TIME_SUGGESTIONS = 3


# ---------- search_events ----------
def _matches_tags(tags: Optional[str], wanted: List[str]) -> bool:
    names = {t.lower() for t in tags_to_list(tags)}
    return any(w.lower() in names for w in wanted)


def _matches_keyword(title: Optional[str], description: Optional[str], keyword: str) -> bool:
    q = keyword.lower()
    return q in (title or "").lower() or q in (description or "").lower()


def search_events(ctx: ToolContext, inp: SearchEventsInput) -> Dict[str, Any]:
    """
    이벤트 검색. 저장소에서 후보(최대 50개, 시작 오름차순)를 가져온 뒤
    태그/키워드는 앱 코드에서 대소문자 구분 없이 거르고 20개까지 돌려준다.

    :param ctx: 도구 컨텍스트
    :type ctx: ToolContext
    :param inp: 검색 조건
    :type inp: SearchEventsInput
    :return: {"events": [...], "count": n}
    :rtype: Dict[str, Any]
    """

    events = event_service.search_candidates(
        ctx.db, ctx.user.subject_id,
        scope=inp.scope, date_from=inp.date_from, date_to=inp.date_to, now=ctx.now(),
    )
    tags = [t for t in (inp.tags or []) if t.strip()]
    if tags:
        events = [e for e in events if _matches_tags(e.tags, tags)]
    keyword = (inp.keyword or "").strip()
    if keyword:
        events = [e for e in events if _matches_keyword(e.title, e.description, keyword)]

    results = [pack_event(e) for e in events[:SEARCH_PAGE_SIZE]]
    return {"events": results, "count": len(results)}


# ---------- get_my_schedule ----------
def get_my_schedule(ctx: ToolContext, inp: GetMyScheduleInput) -> Dict[str, Any]:
    now = ctx.now()
    cutoff = now + timedelta(days=inp.days_ahead)
    responses = event_service.committed_responses(ctx.db, ctx.user.subject_id, start_from=now, start_to=cutoff)
    events = event_service.fetch_events_by_ids(ctx.session_factory, [r.event_id for r in responses])

    schedule = []
    for r in responses:
        ev = events.get(r.event_id) or {}
        schedule.append({
            "eventId": r.event_id,
            "title": ev.get("title") or "Unknown Event",
            "startDateTime": iso_z(r.event_start),
            "endDateTime": iso_z(r.event_end),
            "myStatus": r.status,
            "location": ev.get("location"),
            "isVirtual": bool(ev.get("isVirtual")),
        })
    schedule.sort(key=lambda s: s["startDateTime"])
    return {"daysAhead": inp.days_ahead, "schedule": schedule, "count": len(schedule)}


# ---------- check_conflicts ----------
def find_conflicts(ctx: ToolContext, start: datetime, end: datetime) -> List[Dict[str, Any]]:
    """
    호출자의 확정 일정 중 [start, end)와 겹치는 것들을 이벤트 단위로 모은다.

    :return: [{eventId, title, startDateTime, endDateTime, overlapMinutes}, ...] (시작 오름차순)
    :rtype: List[Dict[str, Any]]
    """

    uid = ctx.user.subject_id
    slots = aggregate_busy_slots(ctx.session_factory, [uid], start, end)[uid]
    conflicts: Dict[str, Dict[str, Any]] = {}
    for s in slots:
        if s.event_id in conflicts or not overlaps(start, end, s.start, s.end):
            continue
        conflicts[s.event_id] = {
            "eventId": s.event_id,
            "title": s.title,
            "startDateTime": iso_z(s.start),
            "endDateTime": iso_z(s.end),
            "overlapMinutes": overlap_minutes(start, end, s.start, s.end),
        }
    return list(conflicts.values())


def check_conflicts(ctx: ToolContext, inp: CheckConflictsInput) -> Dict[str, Any]:
    conflicts = find_conflicts(ctx, inp.start_date_time, inp.end_date_time)
    return {"hasConflict": bool(conflicts), "conflicts": conflicts}


def suggest_conflict_resolutions(
    ctx: ToolContext,
    start: datetime,
    end: datetime,
    conflicts: List[Dict[str, Any]],
    event_title: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    충돌이 있을 때 생성형 모델에게 해결 방안(reschedule/shorten/skip/double-book) 2~3개를 받는다.

    :raises MalformedResponse: 응답 복구 실패/형태 불일치
    :raises UpstreamUnavailable: 호출 실패
    """

    if not conflicts:
        return []
    user_prompt = json.dumps({
        "newEvent": {"title": event_title or "New Event", "startDateTime": iso_z(start), "endDateTime": iso_z(end)},
        "conflicts": conflicts,
    }, ensure_ascii=False)
    draft = ctx.completion.complete_json(
        CONFLICT_RESOLVER_SYSTEM, user_prompt,
        temperature=0.3, max_tokens=800, response_model=ConflictResolutionsDraft,
    )
    return [r.model_dump(by_alias=True) for r in draft.resolutions]


# ---------- create_event ----------
def create_event(ctx: ToolContext, inp: CreateEventInput) -> Dict[str, Any]:
    ev = event_service.create_event(ctx.db, ctx.user.subject_id, inp, now=ctx.now())
    logger.info("[AGENT] user=%s created event %s", ctx.user.subject_id, ev.id)
    return {
        "eventId": ev.id,
        "title": ev.title,
        "startDateTime": iso_z(ev.start),
        "endDateTime": iso_z(ev.end),
    }


# ---------- invite_people ----------
def invite_people(ctx: ToolContext, inp: InvitePeopleInput) -> Dict[str, Any]:
    return invitation_service.invite_people(
        ctx.db, inp.event_id, ctx.user, inp.emails, ctx.notifier,
        message=inp.message, app_url=ctx.app_url, now=ctx.now(),
    )


# ---------- suggest_meeting_time ----------
def _clamp(v: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, v))


def suggest_meeting_time(ctx: ToolContext, inp: SuggestMeetingTimeInput) -> Dict[str, Any]:
    """
    참석자 바쁜 시간을 모아 모델에게 후보 3개를 받고,
    각 후보의 가능/충돌 참석자와 점수(0~1)는 바쁜 시간 기준으로 다시 계산한다.

    - 후보 길이는 durationMinutes로 맞춤
    - 선호 기간을 벗어나거나 시간이 깨진 후보는 버림
    - 남는 후보가 없으면 MalformedResponse

    :param ctx: 도구 컨텍스트
    :type ctx: ToolContext
    :param inp: 참석자 id / 선호 기간 / 길이
    :type inp: SuggestMeetingTimeInput
    :return: {"durationMinutes", "suggestions": [...]}
    :rtype: Dict[str, Any]
    """

    range_from, range_to = inp.date_range.date_from, inp.date_range.date_to
    attendee_ids = list(dict.fromkeys(inp.attendee_ids))
    busy = aggregate_busy_slots(ctx.session_factory, attendee_ids, range_from, range_to)

    user_prompt = json.dumps({
        "durationMinutes": inp.duration_minutes,
        "preferredDateRange": {"from": iso_z(range_from), "to": iso_z(range_to)},
        "attendeeBusySlots": {
            sid: [{"start": iso_z(s.start), "end": iso_z(s.end), "title": s.title} for s in slots]
            for sid, slots in busy.items()
        },
    }, ensure_ascii=False)
    draft = ctx.completion.complete_json(
        SUGGEST_TIME_SYSTEM, user_prompt,
        temperature=0.3, max_tokens=800, response_model=TimeSuggestionsDraft,
    )

    duration = timedelta(minutes=inp.duration_minutes)
    suggestions = []
    seen = set()
    for d in draft.suggestions:
        start = parse_dt(d.start_date_time)
        if start is None or start in seen:
            continue
        end = start + duration
        if start < range_from or end > range_to:
            logger.debug("[AGENT] dropping out-of-range suggestion %s", d.start_date_time)
            continue
        seen.add(start)

        conflicted = [sid for sid in attendee_ids if any(overlaps(start, end, s.start, s.end) for s in busy[sid])]
        available = [sid for sid in attendee_ids if sid not in conflicted]
        # 모델 점수는 참고용. 실제 가능 비율을 넘지 않게 자름
        free_ratio = len(available) / len(attendee_ids)
        score = round(min(_clamp(d.score), free_ratio), 2)
        suggestions.append({
            "startDateTime": iso_z(start),
            "endDateTime": iso_z(end),
            "score": score,
            "reason": d.reason,
            "availableAttendees": available,
            "conflictedAttendees": conflicted,
        })

    if not suggestions:
        raise MalformedResponse("AI returned no usable time slots")
    suggestions.sort(key=lambda s: (-s["score"], s["startDateTime"]))
    return {"durationMinutes": inp.duration_minutes, "suggestions": suggestions[:MAX_TIME_SUGGESTIONS]}


# ---------- build_agenda ----------
def normalize_agenda(items: List[AgendaItem], duration_minutes: int) -> List[Dict[str, Any]]:
    """
    모델이 준 아젠다를 0 -> duration_minutes 로 빈틈/겹침 없이 이어지게 정규화한다.

    - 시작 오프셋 순으로 정렬
    - 각 항목은 직전 항목 끝에서 시작, 끝은 [커서, duration] 범위로 자름
    - 길이가 0이 되는 항목은 버림
    - 마지막 항목의 끝은 duration_minutes

    :param items: 모델 출력 항목
    :type items: List[AgendaItem]
    :param duration_minutes: 행사 길이(분)
    :type duration_minutes: int
    :return: camelCase 항목 리스트
    :rtype: List[Dict[str, Any]]
    :raises MalformedResponse: 남는 항목이 없음
    """

    out: List[Dict[str, Any]] = []
    cursor = 0
    for item in sorted(items, key=lambda i: (i.start_offset, i.end_offset)):
        if cursor >= duration_minutes:
            break
        end = min(max(item.end_offset, cursor), duration_minutes)
        if end <= cursor:
            continue
        out.append({
            "startOffset": cursor,
            "endOffset": end,
            "title": (item.title or "").strip() or "Session",
            "description": item.description or "",
            "type": item.type if item.type in AGENDA_ITEM_TYPES else "session",
            "speaker": item.speaker or None,
        })
        cursor = end

    if not out:
        raise MalformedResponse("AI returned an empty agenda")
    out[-1]["endOffset"] = duration_minutes
    return out


def format_agenda(agenda: List[Dict[str, Any]]) -> str:
    lines = []
    for a in agenda:
        line = f"{format_offset(a['startOffset'])} - {format_offset(a['endOffset'])}  {a['title']}"
        if a.get("speaker"):
            line += f" ({a['speaker']})"
        lines.append(line)
    return "\n".join(lines)


def build_agenda(ctx: ToolContext, inp: BuildAgendaInput) -> Dict[str, Any]:
    user_prompt = json.dumps({
        "title": inp.title,
        "eventType": inp.event_type,
        "durationMinutes": inp.duration_minutes,
        "speakerCount": inp.speaker_count,
        "includeBreaks": inp.duration_minutes > 90,
    }, ensure_ascii=False)
    draft: AgendaDraft = ctx.completion.complete_json(
        agenda_system_prompt(inp.duration_minutes, inp.speaker_count), user_prompt,
        temperature=0.5, max_tokens=1500, response_model=AgendaDraft,
    )
    agenda = normalize_agenda(draft.agenda, inp.duration_minutes)
    return {
        "title": inp.title,
        "durationMinutes": inp.duration_minutes,
        "agenda": agenda,
        "formattedText": format_agenda(agenda),
    }
