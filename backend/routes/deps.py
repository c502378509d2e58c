# routes/deps.py
# 라우터 공용 의존성
# - require_user: 모든 엔드포인트는 도구/루프 로직 전에 Bearer 토큰 검증을 통과해야 함
# - 외부 연동 객체(LLM/메일/인증/요청 제한/대화 기록)는 프로세스 단위 싱글톤. 테스트는 app.dependency_overrides로 교체

import os
from functools import lru_cache
from typing import Callable, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from database import get_db, get_session_factory
from services import event_service
from services.agent import AgentLoop, AssistantService
from services.completion import CompletionClient
from services.conversation_store import ConversationStore, SqlConversationStore
from services.identity import Identity, IdentityVerifier, OidcIdentityVerifier, bearer_token
from services.notifier import NotificationSender, ResendNotifier
from services.rate_limiter import RateLimiter
from services.tool_registry import ToolContext, ToolRegistry, build_default_registry
from services.time_utils import utcnow

APP_URL = os.getenv("APP_URL", "http://localhost:3000")


@lru_cache()
def get_identity_verifier() -> IdentityVerifier:
    return OidcIdentityVerifier()


@lru_cache()
def get_completion() -> CompletionClient:
    return CompletionClient()


@lru_cache()
def get_notifier() -> NotificationSender:
    return ResendNotifier()


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    return RateLimiter()


@lru_cache()
def get_registry() -> ToolRegistry:
    return build_default_registry()


@lru_cache()
def get_conversation_store() -> ConversationStore:
    return SqlConversationStore(get_session_factory())


def get_clock() -> Callable:
    return utcnow


def require_user(
    authorization: Optional[str] = Header(None),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    db: Session = Depends(get_db),
) -> Identity:
    """
    Authorization 헤더의 Bearer 토큰을 검증하고 사용자 레코드를 갱신한다.

    :raises Unauthorized: 토큰 누락/무효
    :raises UpstreamUnavailable: 인증 서버 장애
    """
    identity = verifier.verify(bearer_token(authorization))
    event_service.ensure_user(db, identity)
    return identity


def get_tool_context(
    user: Identity = Depends(require_user),
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    completion: CompletionClient = Depends(get_completion),
    notifier: NotificationSender = Depends(get_notifier),
    clock: Callable = Depends(get_clock),
) -> ToolContext:
    return ToolContext(
        user=user,
        db=db,
        session_factory=session_factory,
        completion=completion,
        notifier=notifier,
        clock=clock,
        app_url=APP_URL,
    )


def get_assistant(
    completion: CompletionClient = Depends(get_completion),
    registry: ToolRegistry = Depends(get_registry),
    store: ConversationStore = Depends(get_conversation_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> AssistantService:
    return AssistantService(AgentLoop(completion, registry), store, limiter)
