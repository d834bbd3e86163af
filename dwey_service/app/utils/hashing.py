from __future__ import annotations

import hashlib
import hmac


def salted_hash(value: str, salt: str) -> str:
    """방문자 IP/지문 저장용 해시. 원문은 어디에도 남기지 않는다."""
    return hmac.new(salt.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()


def visitor_fingerprint(ip: str, user_agent: str | None) -> str:
    return f"{ip}|{user_agent or ''}"
