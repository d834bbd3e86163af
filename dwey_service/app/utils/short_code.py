from __future__ import annotations

import re
import secrets
import string
from urllib.parse import quote

from ..exceptions import InvalidInputError


_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_ALPHABET = string.ascii_lowercase + string.digits

MIN_CUSTOM_LENGTH = 3
MAX_CUSTOM_LENGTH = 20
MAX_VARIATION_SUFFIX = 99


def normalize_code(code: str) -> str:
    """조회용 정규화. 코드는 대소문자를 구분하지 않는다."""
    return (code or "").strip().lower()


def sanitize_custom_code(raw: str) -> str:
    code = _NON_ALNUM.sub("", raw or "").lower()
    if len(code) < MIN_CUSTOM_LENGTH:
        raise InvalidInputError("Custom short code must be at least 3 characters")
    if len(code) > MAX_CUSTOM_LENGTH:
        raise InvalidInputError("Custom short code must be less than 20 characters")
    return code


def generate_random_code(length: int = 6) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def code_variations(code: str, limit: int = MAX_VARIATION_SUFFIX) -> list[str]:
    """code1, code2, ... 형태의 대체 후보 목록."""
    return [f"{code}{index}" for index in range(1, limit + 1)]


def build_whatsapp_url(phone: str, message: str) -> str:
    encoded = quote(message, safe="!'()*")
    return f"https://wa.me/{phone}?text={encoded}"


def build_redirect_url(short_domain: str, code: str) -> str:
    return f"{short_domain.rstrip('/')}/{code}"
