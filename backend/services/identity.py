# services/identity.py
# Bearer 토큰 검증
# - 기본 구현은 OpenID Connect userinfo 엔드포인트를 호출해 (sub, email, name)을 얻음
# - 모든 엔드포인트는 도구/루프 로직보다 먼저 이 검증을 통과해야 함(routes/deps.require_user)

import os, logging
from dataclasses import dataclass
from typing import Optional

import requests

from services.errors import Unauthorized, UpstreamUnavailable

logger = logging.getLogger(__name__)

OIDC_USERINFO_URL = os.getenv("OIDC_USERINFO_URL", "https://openidconnect.googleapis.com/v1/userinfo")
OIDC_TIMEOUT = 15


@dataclass(frozen=True)
class Identity:
    subject_id: str
    email: str
    display_name: Optional[str] = None


class IdentityVerifier:
    def verify(self, token: str) -> Identity:
        raise NotImplementedError


class OidcIdentityVerifier(IdentityVerifier):
    """
    OIDC userinfo 기반 검증기

    :param userinfo_url: userinfo 엔드포인트
    :type userinfo_url: Optional[str]
    :param timeout: 요청 타임아웃(초)
    :type timeout: float
    """

    def __init__(self, userinfo_url: Optional[str] = None, timeout: float = OIDC_TIMEOUT):
        self.userinfo_url = userinfo_url or OIDC_USERINFO_URL
        self.timeout = timeout

    def verify(self, token: str) -> Identity:
        """
        토큰으로 사용자 프로필을 조회한다.

        :param token: Bearer 토큰(접두어 제외)
        :type token: str
        :return: 검증된 사용자 정보
        :rtype: Identity
        :raises Unauthorized: 토큰 누락/무효/만료
        :raises UpstreamUnavailable: 인증 서버 타임아웃/연결 실패
        """
        if not token:
            raise Unauthorized("Missing or invalid token")
        try:
            r = requests.get(
                self.userinfo_url,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("[Identity] userinfo request failed: %s", e)
            raise UpstreamUnavailable("Identity provider unavailable")

        if r.status_code in (401, 403):
            raise Unauthorized("Invalid or expired token")
        if not r.ok:
            logger.error("[Identity] userinfo error %s %s", r.status_code, r.text[:200])
            raise UpstreamUnavailable("Identity provider unavailable")

        data = r.json()
        if not data.get("sub"):
            raise Unauthorized("Invalid or expired token")
        return Identity(
            subject_id=str(data["sub"]),
            email=data.get("email") or "",
            display_name=data.get("name"),
        )


def bearer_token(authorization: Optional[str]) -> str:
    # "Bearer xxx" -> "xxx"
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("Missing or invalid token")
    return authorization[len("Bearer "):].strip()
