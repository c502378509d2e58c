# services/json_repair.py
# LLM 출력 JSON 복구 파이프라인
#
# 모델에게 JSON만 내보내라고 지시해도 실제 출력은
#   (a) ```json 코드펜스로 감싸져 있거나
#   (b) 앞/뒤에 설명 문장이 붙어 있거나
#   (c) 토큰 한도로 값 중간에서 잘려 있을 수 있음
# 아래 순서대로 시도하고 처음 성공한 결과를 사용함
#   1) 앞뒤 코드펜스 제거 후 바로 파싱
#   2) 원문의 첫 여는 괄호에서 시작하는 {...} / [...] 구간을 추출해 파싱
#   3) 구조 복구(닫히지 않은 문자열/괄호 닫기, 매달린 콤마 제거) 후 파싱
# 복구는 문법만 고친다. 필드 값을 새로 만들어 넣지 않음.

import json
import logging
import re
from typing import Any, List, Optional

from services.errors import MalformedResponse

logger = logging.getLogger(__name__)

FENCE_START_RE = re.compile(r"^\s*```(?:json)?\s*", re.IGNORECASE)
FENCE_END_RE = re.compile(r"\s*```\s*$")
# 첫 여는 괄호부터 마지막 닫는 괄호까지(greedy)
JSON_SPAN_RE = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")

_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fences(text: str) -> str:
    """
    앞뒤의 ``` / ```json 코드펜스를 제거한다.

    :param text: 모델 원문
    :type text: str
    :return: 펜스가 제거된 문자열(양끝 공백 제거)
    :rtype: str
    """

    return FENCE_END_RE.sub("", FENCE_START_RE.sub("", text)).strip()


def _first_opener(text: str) -> int:
    # 첫 '{' 또는 '[' 위치(없으면 -1)
    positions = [p for p in (text.find("{"), text.find("[")) if p >= 0]
    return min(positions) if positions else -1


def extract_balanced_span(text: str) -> Optional[str]:
    """
    첫 여는 괄호에서 시작해 짝이 맞는 닫는 괄호까지의 구간을 돌려준다.
    문자열 안의 괄호와 이스케이프(\\)는 무시한다.

    :param text: 모델 원문
    :type text: str
    :return: 균형 잡힌 JSON 구간 또는 None(짝이 맞지 않음)
    :rtype: Optional[str]
    """

    start = _first_opener(text)
    if start < 0:
        return None
    stack: List[str] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "}]":
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return text[start:i + 1]
    return None


def _drop_dangling_comma(out: List[str]) -> None:
    # out 끝의 공백과 콤마 하나를 제거(문자열 밖에서만 호출됨)
    i = len(out) - 1
    while i >= 0 and out[i].isspace():
        i -= 1
    if i >= 0 and out[i] == ",":
        del out[i:]


def repair_truncated_json(text: str) -> Optional[str]:
    """
    잘린/약간 깨진 JSON 텍스트의 문법만 복구한다.

    1) 문자열 내부 여부를 추적하며 한 글자씩 순회(이스케이프 처리 포함)
    2) 닫는 괄호 직전의 매달린 콤마 제거
    3) 끝까지 열려 있는 문자열을 닫고, 마지막 매달린 콤마 제거
    4) 아직 열려 있는 { / [ 를 스택(LIFO) 순서대로 닫음

    :param text: 코드펜스가 제거된 모델 출력
    :type text: str
    :return: 복구된 JSON 문자열 또는 None(JSON으로 보이지 않거나 괄호 짝이 어긋남)
    :rtype: Optional[str]
    """

    start = _first_opener(text)
    if start < 0:
        return None

    out: List[str] = []
    stack: List[str] = []
    in_string = False
    escaped = False
    for ch in text[start:].rstrip():
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
            out.append(ch)
        elif ch in "}]":
            if not stack or stack[-1] != ch:
                return None
            _drop_dangling_comma(out)
            stack.pop()
            out.append(ch)
            if not stack:
                # 최상위 값이 닫혔으면 뒤따르는 설명 문장은 버림
                break
        else:
            out.append(ch)

    if in_string:
        if escaped:
            # 문자열이 역슬래시로 끝나면 그 역슬래시는 버림
            out.pop()
        out.append('"')
    _drop_dangling_comma(out)
    while stack:
        out.append(stack.pop())
    return "".join(out)


def parse_json_output(raw: str) -> Any:
    """
    복구 파이프라인 전체를 실행해 파이썬 값으로 돌려준다.

    :param raw: 모델 원문
    :type raw: str
    :return: json.loads 결과(dict/list 등)
    :rtype: Any
    :raises MalformedResponse: 세 단계 모두 실패
    """

    if raw is None or not raw.strip():
        raise MalformedResponse("Empty response from the model")

    cleaned = strip_code_fences(raw)

    # 1) 바로 파싱
    try:
        return json.loads(cleaned)
    except ValueError:
        pass

    # 2) 구간 추출
    for candidate in (_match_span(raw), extract_balanced_span(raw)):
        if not candidate:
            continue
        try:
            return json.loads(candidate)
        except ValueError:
            continue

    # 3) 구조 복구
    repaired = repair_truncated_json(cleaned)
    if repaired:
        try:
            value = json.loads(repaired)
            logger.debug("[LLM] repaired truncated JSON (%d -> %d chars)", len(cleaned), len(repaired))
            return value
        except ValueError:
            pass

    logger.error("[LLM] failed to parse model output as JSON. raw=%r", raw[:2000])
    raise MalformedResponse("Failed to parse AI response as JSON")


def _match_span(text: str) -> Optional[str]:
    # 첫 여는 괄호에 고정. 잘린 최상위 값 안쪽의 객체를 대신 꺼내지 않도록
    start = _first_opener(text)
    if start < 0:
        return None
    m = JSON_SPAN_RE.match(text, start)
    return m.group(1) if m else None
