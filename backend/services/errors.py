# services/errors.py
# 에러 분류 체계
# - 서비스 레이어에서는 아래 타입만 raise 하고, HTTP 응답 변환은 main.py의 핸들러 한 곳에서 처리함
# - 에이전트 루프는 도구 실행 중 발생한 AssistantError를 도구 결과 문자열로 바꿔 모델에게 되돌려줌

from typing import Any, Dict, List, Optional


class AssistantError(Exception):
    """
    어시스턴트 코어의 모든 타입 에러의 기반 클래스

    :param message: 로그/도구 결과용 상세 메시지
    :type message: str
    """

    code = "internal_error"
    status_code = 500
    # 사용자에게 그대로 보여줄 수 있는 친절한 문구
    friendly_message = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.friendly_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        HTTP 응답 본문 및 도구 결과에 쓰이는 직렬화 형태

        :return: {"error": code, "message": ...}
        :rtype: Dict[str, Any]
        """
        return {"error": self.code, "message": self.message}


class RateLimited(AssistantError):
    code = "rate_limited"
    status_code = 429
    friendly_message = "You're sending requests too quickly. Please wait a moment and try again."

    def __init__(self, retry_after_seconds: int, message: Optional[str] = None):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retryAfter"] = self.retry_after_seconds
        return data


class Unauthorized(AssistantError):
    code = "unauthorized"
    status_code = 401
    friendly_message = "Please sign in again."


class Forbidden(AssistantError):
    code = "forbidden"
    status_code = 403
    friendly_message = "You don't have permission to do that."


class ValidationFailed(AssistantError):
    """
    입력 검증 실패. 필드 단위 상세(details)를 함께 전달함

    :param details: [{"field": "emails.0", "message": "..."}] 형태의 목록
    :type details: Optional[List[Dict[str, Any]]]
    """

    code = "validation_failed"
    status_code = 422
    friendly_message = "Some of the provided values are invalid."

    def __init__(self, message: Optional[str] = None, details: Optional[List[Dict[str, Any]]] = None):
        self.details = details or []
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["details"] = self.details
        return data


class NotFound(AssistantError):
    code = "not_found"
    status_code = 404
    friendly_message = "The requested item could not be found."


class Conflict(AssistantError):
    code = "conflict"
    status_code = 409
    friendly_message = "That action conflicts with the current state (for example, the event is full)."


class MalformedResponse(AssistantError):
    code = "malformed_response"
    status_code = 502
    friendly_message = "The AI assistant returned an unreadable answer. Please try again."


class UpstreamUnavailable(AssistantError):
    code = "upstream_unavailable"
    status_code = 503
    friendly_message = "The AI assistant is temporarily unavailable. Please try again later."
