# services/render.py
# 렌더 / 서식

from typing import Any, Dict, List, Optional

from models.event import Event
from services.time_utils import iso_z


def tags_to_list(tags: Optional[str]) -> List[str]:
    return tags.split(",") if tags else []


def tags_to_str(tags: Optional[List[str]]) -> Optional[str]:
    return ",".join(t.strip() for t in tags if t.strip()) if tags else None


def pack_event(e: Event) -> Dict[str, Any]:
    """
    이벤트 객체에서 도구 결과에 필요한 최소 필드를 추려서 패킹한다.

    :param e: Event ORM 객체
    :type e: Event
    :return: {id, title, startDateTime, endDateTime, location, isVirtual, tagNames}
    :rtype: Dict[str, Any]
    """

    if e is None:
        return {}

    return {
        "id": e.id,
        "title": e.title or "(untitled)",
        "startDateTime": iso_z(e.start),
        "endDateTime": iso_z(e.end),
        "location": e.location or None,
        "isVirtual": bool(e.is_virtual),
        "tagNames": tags_to_list(e.tags),
    }


def pack_event_detail(e: Event) -> Dict[str, Any]:
    # pack_event + 소유자/정원/공개 여부 (API 응답용)
    data = pack_event(e)
    if data:
        data.update({
            "description": e.description or None,
            "virtualLink": e.virtual_link or None,
            "capacity": e.capacity,
            "isPublic": bool(e.is_public),
            "ownerId": e.owner_id,
        })
    return data
