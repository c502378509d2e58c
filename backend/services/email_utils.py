# services/email_utils.py
# 이메일 유틸

import re
from typing import Iterable, List, Optional, Tuple

# 간단한 이메일 정규식(로컬/도메인 포함)
EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$")


def split_valid_invalid_emails(v) -> Tuple[List[str], List[str]]:
    """
    입력 값들을 유효 이메일과 무효 토큰으로 분리한다.

    :param v: 단일 문자열 또는 문자열 리스트
    :type v: Union[str, List[str], None]
    :return: (valid_emails, invalid_tokens)
    :rtype: Tuple[List[str], List[str]]
    """

    if v is None:
        return [], []
    if not isinstance(v, list):
        v = [v]
    valid, invalid = [], []
    for x in v:
        if not x:
            continue
        if isinstance(x, str):
            s = x.strip()
            (valid if EMAIL_RE.match(s) else invalid).append(s)
        else:
            invalid.append(str(x))
    return valid, invalid


def dedupe_emails(emails: Optional[Iterable[str]]) -> List[str]:
    """
    이메일 목록에서 중복/공백을 제거하고 소문자로 정규화함. 입력 순서는 유지.

    :param emails: 이메일 문자열 목록(또는 None)
    :type emails: Optional[Iterable[str]]
    :return: 중복 제거된 이메일 리스트
    :rtype: List[str]
    """
    out: List[str] = []
    seen: set = set()
    for e in emails or []:
        ee = (e or "").strip().lower()
        if ee and ee not in seen:
            seen.add(ee)
            out.append(ee)
    return out
