# services/notifier.py
# 초대 메일 발송(out-of-band 알림)
# 발송 실패는 호출한 도구를 실패시키지 않음. 구조화된 실패(SendResult)로 돌려줌

import os, logging
from dataclasses import dataclass
from typing import Optional

import requests

logger = logging.getLogger(__name__)

RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
MAIL_FROM = os.getenv("MAIL_FROM", "Events <onboarding@resend.dev>")
MAIL_TIMEOUT = 15


@dataclass(frozen=True)
class SendResult:
    ok: bool
    error: Optional[str] = None


class NotificationSender:
    def send(self, to: str, subject: str, html: str, reply_to: Optional[str] = None) -> SendResult:
        raise NotImplementedError


class ResendNotifier(NotificationSender):
    """
    Resend HTTP API 기반 발송기

    :param api_key: RESEND_API_KEY
    :type api_key: Optional[str]
    :param sender: From 헤더
    :type sender: Optional[str]
    """

    def __init__(self, api_key: Optional[str] = None, sender: Optional[str] = None, timeout: float = MAIL_TIMEOUT):
        self.api_key = RESEND_API_KEY if api_key is None else api_key
        self.sender = sender or MAIL_FROM
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str, reply_to: Optional[str] = None) -> SendResult:
        if not self.api_key:
            return SendResult(False, "RESEND_API_KEY not set")

        body = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        if reply_to:
            body["reply_to"] = reply_to
        try:
            r = requests.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("[Mail] send to %s failed: %s", to, e)
            return SendResult(False, "email provider unreachable")

        if not r.ok:
            logger.error("[Mail] send to %s rejected: %s %s", to, r.status_code, r.text[:300])
            try:
                payload = r.json()
            except ValueError:
                payload = None
            # 객체가 아닌 JSON(리스트, 문자열 등)은 본문 그대로 사용
            detail = (payload.get("message") if isinstance(payload, dict) else None) or r.text
            return SendResult(False, f"email provider error ({r.status_code}): {str(detail)[:200]}")
        return SendResult(True)
