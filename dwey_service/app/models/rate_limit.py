from __future__ import annotations

from pydantic import BaseModel


class RateLimitDecision(BaseModel):
    allowed: bool
    retry_after_seconds: int = 0
    remaining: int = 0
