# services/completion.py
# OpenAI 호환 Chat Completions 호출 래퍼
# - complete_json: 단발성 JSON 생성(충돌 해결 제안, 시간 추천, 아젠다) + 복구 파이프라인
# - chat: 에이전트 루프용 도구 호출(tool calling)

import os, logging
from typing import Any, Dict, List, Optional, Type

import requests
from pydantic import BaseModel, ValidationError

from services.errors import MalformedResponse, UpstreamUnavailable
from services.json_repair import parse_json_output

logger = logging.getLogger(__name__)

###############################################
# OPENAI_API_KEY : OPENAI API 인증키            #
# OPENAI_BASE : OPENAI API 엔드포인트 기본 URL   #
# OPENAI_MODEL : 기본 모델 이름                  #
# OPENAI_TIMEOUT : 호출 1회당 타임아웃(초)        #
###############################################
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE = os.getenv("OPENAI_BASE", "https://api.openai.com/v1")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TIMEOUT = float(os.getenv("OPENAI_TIMEOUT", "45"))

JSON_ONLY_SUFFIX = (
    "\n\nIMPORTANT: Respond ONLY with valid JSON. No markdown, no code fences, no extra text."
)


class CompletionClient:
    """
    생성형 텍스트 서비스 클라이언트

    :param api_key: API 키(기본: OPENAI_API_KEY)
    :type api_key: Optional[str]
    :param base_url: 엔드포인트 기본 URL
    :type base_url: Optional[str]
    :param model: 기본 모델 이름
    :type model: Optional[str]
    :param timeout: 요청 타임아웃(초)
    :type timeout: Optional[float]
    :param http: requests.Session 등 post()를 가진 객체(테스트 주입용)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        http=None,
    ):
        self.api_key = OPENAI_API_KEY if api_key is None else api_key
        self.base_url = (base_url or OPENAI_BASE).rstrip("/")
        self.model = model or OPENAI_MODEL
        self.timeout = timeout or OPENAI_TIMEOUT
        self.http = http or requests

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Chat Completions 엔드포인트를 호출하고 원본 응답(JSON)을 돌려준다.

        :param payload: 요청 본문
        :type payload: Dict[str, Any]
        :raises UpstreamUnavailable: 키 미설정, 타임아웃, 연결 실패, 비정상 상태코드
        :raises MalformedResponse: 응답 본문이 JSON이 아님
        :return: OpenAI API 원본 응답
        :rtype: Dict[str, Any]
        """
        if not self.api_key:
            raise UpstreamUnavailable("OPENAI_API_KEY not set")

        try:
            r = self.http.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self.timeout,
            )
        except requests.Timeout:
            logger.error("[LLM] timeout after %ss", self.timeout)
            raise UpstreamUnavailable("LLM call timed out")
        except requests.RequestException as e:
            logger.error("[LLM] connection error: %s", e)
            raise UpstreamUnavailable("LLM call failed")

        if not r.ok:
            logger.error("OpenAI API error: %s %s", r.status_code, r.text[:500])
            raise UpstreamUnavailable(f"LLM call failed ({r.status_code})")

        try:
            data = r.json()
        except ValueError:
            raise MalformedResponse("LLM response body is not JSON")
        if not isinstance(data, dict) or not data.get("choices"):
            raise MalformedResponse("LLM response has no choices")
        return data

    @staticmethod
    def _message_of(data: Dict[str, Any]) -> Dict[str, Any]:
        message = (data["choices"][0] or {}).get("message")
        if not isinstance(message, dict):
            raise MalformedResponse("LLM response has no message")
        return message

    def chat(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        에이전트 루프용 호출. 도구 목록을 함께 보내고 assistant 메시지(dict)를 돌려준다.
        한 번의 추론 단계에서 도구는 하나씩만 고르도록 parallel_tool_calls를 끔.

        :param messages: 시스템/유저/어시스턴트/툴 메시지 히스토리
        :type messages: List[Dict[str, Any]]
        :param tools: OpenAI function tool 스펙 목록
        :type tools: Optional[List[Dict[str, Any]]]
        :return: {"role": "assistant", "content": ..., "tool_calls": [...]} 형태
        :rtype: Dict[str, Any]
        """
        payload: Dict[str, Any] = {
            "model": model or self.model,
            "temperature": temperature,
            "messages": messages,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
            payload["parallel_tool_calls"] = False

        last_user = next((m for m in reversed(messages) if m.get("role") == "user"), {})
        logger.debug(
            "[LLM] req: model=%s messages=%d user='%s...'",
            payload["model"], len(messages), (last_user.get("content") or "")[:80].replace("\n", " "),
        )

        message = self._message_of(self._post(payload))

        tool_calls = message.get("tool_calls") or []
        logger.debug(
            "[LLM] res: tool_calls=%d content='%s...'",
            len(tool_calls), (message.get("content") or "")[:80].replace("\n", " "),
        )
        for i, tc in enumerate(tool_calls, 1):
            logger.debug("  tool[%d]=%s", i, (tc.get("function") or {}).get("name"))
        return message

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        model: Optional[str] = None,
        response_model: Optional[Type[BaseModel]] = None,
    ) -> Any:
        """
        JSON 전용 단발성 생성. 출력은 복구 파이프라인을 거쳐 파싱된다.

        :param system_prompt: 시스템 지시문
        :type system_prompt: str
        :param user_prompt: 사용자 페이로드(보통 JSON 문자열)
        :type user_prompt: str
        :param temperature: 샘플링 온도
        :type temperature: float
        :param max_tokens: 최대 출력 토큰
        :type max_tokens: int
        :param model: 모델 변형(없으면 기본 모델)
        :type model: Optional[str]
        :param response_model: 기대하는 형태(pydantic 모델). 주어지면 검증된 인스턴스를 돌려줌
        :type response_model: Optional[Type[BaseModel]]
        :raises MalformedResponse: 복구 불가 또는 형태 불일치(기본값으로 대체하지 않음)
        :raises UpstreamUnavailable: 호출 실패/타임아웃
        :return: 파싱된 값 또는 response_model 인스턴스
        :rtype: Any
        """
        payload = {
            "model": model or self.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt + JSON_ONLY_SUFFIX},
            ],
        }
        logger.debug("[LLM] json req: model=%s max_tokens=%s", payload["model"], max_tokens)

        message = self._message_of(self._post(payload))
        content = message.get("content")
        if not content:
            raise MalformedResponse("Empty response from the model")

        value = parse_json_output(content)
        if response_model is None:
            return value
        try:
            return response_model.model_validate(value)
        except ValidationError as e:
            logger.error("[LLM] response shape mismatch for %s: %s", response_model.__name__, e)
            raise MalformedResponse(f"AI response did not match {response_model.__name__}")
