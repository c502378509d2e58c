# services/conversation_store.py
# 사용자별 대화 기록(최근 N개 메시지, FIFO)
# - 한 턴 = user 메시지 1개 + assistant 메시지 1개, 두 개를 한 번에 추가함
# - 상한을 넘으면 가장 오래된 메시지부터 지움. 어떤 시점에도 길이 <= max_messages
# - 같은 사용자의 동시 append는 사용자별 락으로 직렬화

import logging
import os
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.conversation import ConversationMessage
from services.time_utils import iso_z, utcnow

logger = logging.getLogger(__name__)

CONVERSATION_MAX_MESSAGES = int(os.getenv("CONVERSATION_MAX_MESSAGES", "20"))


@dataclass(frozen=True)
class StoredMessage:
    role: str
    content: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content, "timestamp": iso_z(self.timestamp)}


class _KeyedLocks:
    # 키를 지우지 않음. 항목 수 = 지금까지 본 키 수
    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


class ConversationStore:
    """
    대화 기록 저장소 인터페이스

    - get(user_id): 오래된 순 메시지 목록(없으면 빈 리스트)
    - append_turn(user_id, user_message, assistant_reply): 두 메시지를 추가하고 상한으로 자름
    - clear(user_id): 전부 삭제
    """

    max_messages: int = CONVERSATION_MAX_MESSAGES

    def get(self, user_id: str) -> List[StoredMessage]:
        raise NotImplementedError

    def append_turn(self, user_id: str, user_message: str, assistant_reply: str) -> None:
        raise NotImplementedError

    def clear(self, user_id: str) -> None:
        raise NotImplementedError


class InMemoryConversationStore(ConversationStore):
    """
    프로세스 메모리 구현. 사용자별 잠금(_KeyedLocks)은 사용자마다 하나씩 생기고
    clear() 후에도 남아 프로세스가 끝날 때까지 늘어나기만 함
    """

    def __init__(self, max_messages: int = CONVERSATION_MAX_MESSAGES, clock: Callable[[], datetime] = utcnow):
        self.max_messages = max_messages
        self.clock = clock
        self._data: Dict[str, Deque[StoredMessage]] = {}
        self._locks = _KeyedLocks()

    def get(self, user_id: str) -> List[StoredMessage]:
        with self._locks.get(user_id):
            return list(self._data.get(user_id, ()))

    def append_turn(self, user_id: str, user_message: str, assistant_reply: str) -> None:
        now = self.clock()
        with self._locks.get(user_id):
            messages = self._data.get(user_id)
            if messages is None:
                messages = self._data[user_id] = deque(maxlen=self.max_messages)
            messages.append(StoredMessage("user", user_message, now))
            messages.append(StoredMessage("assistant", assistant_reply, now))

    def clear(self, user_id: str) -> None:
        with self._locks.get(user_id):
            self._data.pop(user_id, None)


class SqlConversationStore(ConversationStore):
    """
    conversation_messages 테이블 기반 구현

    seq는 사용자별로 단조 증가하는 논리 타임스탬프. 정렬과 FIFO 삭제 기준으로 쓴다.

    :param session_factory: 호출마다 새 세션을 여는 팩토리
    :type session_factory: Callable[[], Session]
    :param max_messages: 사용자별 최대 메시지 수
    :type max_messages: int
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        max_messages: int = CONVERSATION_MAX_MESSAGES,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.max_messages = max_messages
        self.clock = clock
        self._locks = _KeyedLocks()

    def get(self, user_id: str) -> List[StoredMessage]:
        db = self.session_factory()
        try:
            rows = (
                db.query(ConversationMessage)
                .filter(ConversationMessage.user_id == user_id)
                .order_by(ConversationMessage.seq.asc())
                .all()
            )
            return [StoredMessage(r.role, r.content, r.created_at) for r in rows]
        finally:
            db.close()

    def append_turn(self, user_id: str, user_message: str, assistant_reply: str) -> None:
        now = self.clock()
        with self._locks.get(user_id):
            db = self.session_factory()
            try:
                last = db.query(func.max(ConversationMessage.seq)).filter(
                    ConversationMessage.user_id == user_id
                ).scalar() or 0
                db.add(ConversationMessage(user_id=user_id, seq=last + 1, role="user", content=user_message, created_at=now))
                db.add(ConversationMessage(user_id=user_id, seq=last + 2, role="assistant", content=assistant_reply, created_at=now))
                db.flush()

                # 상한 초과분(가장 오래된 것부터) 삭제
                keep_from = last + 2 - self.max_messages
                if keep_from > 0:
                    db.query(ConversationMessage).filter(
                        ConversationMessage.user_id == user_id,
                        ConversationMessage.seq <= keep_from,
                    ).delete(synchronize_session=False)
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def clear(self, user_id: str) -> None:
        with self._locks.get(user_id):
            db = self.session_factory()
            try:
                db.query(ConversationMessage).filter(ConversationMessage.user_id == user_id).delete()
                db.commit()
            finally:
                db.close()


def recent_history(messages: List[Dict[str, str]], window: int) -> List[Dict[str, str]]:
    # 루프 입력용: 최근 window개의 (role, content)만
    if window <= 0:
        return []
    return [{"role": m["role"], "content": m["content"]} for m in messages[-window:]]


def to_history(items: Optional[List[Dict[str, str]]]) -> List[Dict[str, str]]:
    # 호출자가 보낸 이전 턴 정리(user/assistant만, 빈 내용 제외)
    out = []
    for m in items or []:
        role, content = m.get("role"), (m.get("content") or "").strip()
        if role in ("user", "assistant") and content:
            out.append({"role": role, "content": content})
    return out
