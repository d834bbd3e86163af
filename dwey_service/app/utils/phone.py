from __future__ import annotations

import re

from ..exceptions import InvalidInputError


_NON_DIGITS = re.compile(r"\D")

COUNTRY_CODE = "234"
MIN_DIGITS = 10
MAX_DIGITS = 15


def normalize_phone(raw: str) -> str:
    """전화번호를 숫자만 있는 국제 형식으로 정규화한다.

    - 08012345678  -> 2348012345678 (앞자리 0 을 국가 코드로 교체)
    - 8012345678   -> 2348012345678 (10자리는 국가 코드를 붙임)
    - +234 801 ... -> 2348012345678
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if len(digits) < MIN_DIGITS or len(digits) > MAX_DIGITS:
        raise InvalidInputError("Phone number must be between 10-15 digits")

    if digits.startswith("0"):
        return COUNTRY_CODE + digits[1:]
    if digits.startswith(COUNTRY_CODE):
        return digits
    if len(digits) == MIN_DIGITS:
        return COUNTRY_CODE + digits
    return digits
