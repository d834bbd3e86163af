from __future__ import annotations


class DweyError(Exception):
    """d-wey 도메인 예외의 베이스.

    message 는 채팅 봇이 그대로 사용자에게 보여줄 수 있는 문장이어야 한다.
    code 는 API 응답의 기계 판독용 식별자, status_code 는 HTTP 매핑이다.
    """

    code = "dwey_error"
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        self.message = message or "Something went wrong. Please try again."
        super().__init__(self.message)


# --- 잔액 ----------------------------------------------------------------


class InsufficientBalanceError(DweyError):
    code = "insufficient_balance"
    status_code = 402

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        shortfall = max(0, required - available)
        super().__init__(
            f"Insufficient balance. Need {required} tums, you have {available}. "
            f"Top up at least {shortfall} tums with 'fund wallet' and try again."
        )


# --- 조회 실패 -------------------------------------------------------------


class NotFoundError(DweyError):
    code = "not_found"
    status_code = 404


class AccountNotFound(NotFoundError):
    code = "account_not_found"

    def __init__(self, phone: str) -> None:
        self.phone = phone
        super().__init__(
            "Account not found. Send 'register <your email>' to get started."
        )


class LinkNotFound(NotFoundError):
    code = "link_not_found"

    def __init__(self, short_code: str) -> None:
        self.short_code = short_code
        super().__init__(
            f"Link '{short_code}' not found. Send 'my links' to see your links."
        )


class CouponNotFound(NotFoundError):
    code = "coupon_not_found"

    def __init__(self, code: str) -> None:
        self.coupon_code = code
        super().__init__("Invalid coupon code. Check my status for valid coupons!")


class TransactionNotFound(NotFoundError):
    code = "transaction_not_found"

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"No payment found for reference {reference}.")


# --- 중복 ------------------------------------------------------------------


class AlreadyExistsError(DweyError):
    code = "already_exists"
    status_code = 409


class CodeUnavailable(AlreadyExistsError):
    code = "code_unavailable"

    def __init__(self, short_code: str, suggestions: list[str] | None = None) -> None:
        self.short_code = short_code
        self.suggestions = list(suggestions or [])
        message = f"Custom short code '{short_code}' is taken."
        if self.suggestions:
            message += " Try one of: " + ", ".join(self.suggestions)
        super().__init__(message)


class EmailAlreadySet(AlreadyExistsError):
    code = "email_already_set"

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"Email cannot be changed. Your registered email is: {email}")


class EmailTaken(AlreadyExistsError):
    code = "email_taken"

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(
            "That email is already registered to another number. Use a different email."
        )


# --- 입력 오류 -------------------------------------------------------------


class InvalidInputError(DweyError):
    code = "invalid_input"
    status_code = 422


class TargetInvalid(InvalidInputError):
    code = "target_invalid"

    def __init__(self, raw_target: str) -> None:
        self.raw_target = raw_target
        super().__init__(
            "Phone number must be between 10-15 digits, e.g. 08012345678 or 2348012345678."
        )


# --- 멱등성 거절 -----------------------------------------------------------


class AlreadySettledError(DweyError):
    code = "already_settled"
    status_code = 409

    def __init__(self, reference: str, status: str) -> None:
        self.reference = reference
        self.status = status
        super().__init__(f"Payment {reference} was already processed ({status}).")


class AlreadyUsedError(DweyError):
    code = "already_used"
    status_code = 409


class CouponAlreadyUsed(AlreadyUsedError):
    code = "coupon_already_used"

    def __init__(self, code: str) -> None:
        self.coupon_code = code
        super().__init__("You already used this coupon. Check my status for new ones!")


# --- 쿠폰 ------------------------------------------------------------------


class CouponDisabled(DweyError):
    code = "coupon_disabled"
    status_code = 410

    def __init__(self, code: str) -> None:
        self.coupon_code = code
        super().__init__(
            "This coupon is no longer valid. Check my status for new codes!"
        )


class CouponExpired(DweyError):
    code = "coupon_expired"
    status_code = 410

    def __init__(self, code: str) -> None:
        self.coupon_code = code
        super().__init__("This coupon has expired. Check my status for fresh codes!")


class CouponUsageLimitReached(DweyError):
    code = "coupon_usage_limit_reached"
    status_code = 410

    def __init__(self, code: str) -> None:
        self.coupon_code = code
        super().__init__(
            "This coupon has reached its usage limit. Check my status for new codes!"
        )


class EmailRequired(DweyError):
    code = "email_required"
    status_code = 403

    def __init__(self) -> None:
        super().__init__(
            "Please register your email first. Send 'register <your email>'."
        )


# --- 링크 ------------------------------------------------------------------


class NotLinkOwner(DweyError):
    code = "not_link_owner"
    status_code = 403

    def __init__(self, short_code: str) -> None:
        self.short_code = short_code
        super().__init__("You do not have access to this link.")


class LinkAlreadyActive(DweyError):
    code = "link_already_active"
    status_code = 409

    def __init__(self, short_code: str) -> None:
        self.short_code = short_code
        super().__init__(f"Link '{short_code}' is already active.")


class TemporalTargetAlreadySet(DweyError):
    code = "temporal_target_already_set"
    status_code = 409

    def __init__(self, short_code: str) -> None:
        self.short_code = short_code
        super().__init__(
            "Temporal target already set. Kill it first to set a new one."
        )


class TemporalTargetNotSet(DweyError):
    code = "temporal_target_not_set"
    status_code = 409

    def __init__(self, short_code: str) -> None:
        self.short_code = short_code
        super().__init__("No temporal target set for this link.")


# --- 인프라/경쟁 -----------------------------------------------------------


class UpstreamTimeoutError(DweyError):
    code = "upstream_timeout"
    status_code = 503

    def __init__(self, upstream: str) -> None:
        self.upstream = upstream
        super().__init__("The service is busy right now. Please try again shortly.")


class RaceLostError(DweyError):
    code = "race_lost"
    status_code = 409

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__("Could not reserve a short code. Please try again.")


class RateLimitedError(DweyError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, retry_after_seconds: int) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Rate limit exceeded. Please wait {retry_after_seconds} seconds "
            "before trying again."
        )


class PaymentGatewayError(DweyError):
    code = "payment_gateway_error"
    status_code = 502

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__("Could not start the payment right now. Please try again.")
