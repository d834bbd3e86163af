from __future__ import annotations

import json
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from dwey_service.app.clients.paystack import SIGNATURE_HEADER, compute_signature
from dwey_service.app.config import AppConfig, PaymentConfig, RateLimitConfig, get_config
from dwey_service.app.main import create_app
from dwey_service.app.services.account_service import AccountService, get_account_repository
from dwey_service.app.services.coupon_service import get_coupon_repository
from dwey_service.app.services.ledger_service import get_ledger_repository
from dwey_service.app.services.link_service import (
    LinkService,
    get_click_repository,
    get_link_repository,
)
from dwey_service.app.services.notification_queue import get_notification_queue
from dwey_service.app.services.payment_service import PaymentService
from dwey_service.app.services.rate_limiter import InMemoryRateLimiter, get_rate_limiter
from dwey_service.tests.fakes import (
    CREATOR,
    TARGET,
    FakeAccountRepository,
    FakeClickRepository,
    FakeCouponRepository,
    FakeLedgerRepository,
    FakeLinkRepository,
    FakeNotificationQueue,
)


SECRET = "sk_test_secret"


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        payment=PaymentConfig(paystack_secret_key=SECRET),
        rate_limit=RateLimitConfig(window_seconds=60, max_requests=5, overrides={"redirect": 3}),
    )


@pytest.fixture
def client(
    app_config: AppConfig,
    account_repo: FakeAccountRepository,
    ledger_repo: FakeLedgerRepository,
    coupon_repo: FakeCouponRepository,
    link_repo: FakeLinkRepository,
    click_repo: FakeClickRepository,
    queue: FakeNotificationQueue,
) -> Iterator[TestClient]:
    app = create_app()
    limiter = InMemoryRateLimiter(app_config.rate_limit)
    app.dependency_overrides.update(
        {
            get_config: lambda: app_config,
            get_account_repository: lambda: account_repo,
            get_ledger_repository: lambda: ledger_repo,
            get_coupon_repository: lambda: coupon_repo,
            get_link_repository: lambda: link_repo,
            get_click_repository: lambda: click_repo,
            get_notification_queue: lambda: queue,
            get_rate_limiter: lambda: limiter,
        }
    )
    # lifespan(스케줄러)을 띄우지 않도록 컨텍스트 매니저 없이 쓴다.
    yield TestClient(app)
    app.dependency_overrides.clear()


def _signed(body: dict) -> tuple[bytes, dict[str, str]]:
    raw = json.dumps(body).encode("utf-8")
    return raw, {SIGNATURE_HEADER: compute_signature(raw, SECRET), "content-type": "application/json"}


def test_health(client: TestClient) -> None:
    assert client.get("/health").status_code == 200


def test_redirect_sends_302_with_no_cache_headers(
    client: TestClient, link_service: LinkService, link_repo: FakeLinkRepository
) -> None:
    link = link_service.create(CREATOR, TARGET, custom_code="shop").link

    resp = client.get("/shop", follow_redirects=False)

    assert resp.status_code == 302
    assert resp.headers["location"] == link.whatsapp_url
    assert resp.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    assert resp.headers["pragma"] == "no-cache"
    assert resp.headers["expires"] == "0"
    stored = link_repo.find_by_code("shop")
    assert stored is not None
    assert stored.total_clicks == 1


def test_unknown_code_redirects_to_bot(client: TestClient) -> None:
    resp = client.get("/nothing", follow_redirects=False)

    assert resp.status_code == 302
    assert resp.headers["location"].startswith("https://wa.me/2348012345678?text=")
    assert "nothing" in resp.headers["location"]


def test_redirect_is_rate_limited_per_client(
    client: TestClient, link_service: LinkService
) -> None:
    link_service.create(CREATOR, TARGET, custom_code="shop")

    statuses = [
        client.get("/shop", follow_redirects=False, headers={"x-forwarded-for": "9.9.9.9"}).status_code
        for _ in range(4)
    ]
    other = client.get("/shop", follow_redirects=False, headers={"x-forwarded-for": "8.8.8.8"})

    assert statuses == [302, 302, 302, 429]
    assert other.status_code == 302


def test_public_info_uses_camel_case(client: TestClient, link_service: LinkService) -> None:
    link_service.create(CREATOR, TARGET, custom_code="shop")

    body = client.get("/api/info/shop").json()

    assert body["shortCode"] == "shop"
    assert body["isActive"] is True
    assert body["totalClicks"] == 0
    assert "createdAt" in body and "expiresAt" in body
    assert client.get("/api/info/missing").status_code == 404


def test_create_link_and_error_mapping(client: TestClient) -> None:
    created = client.post(
        "/api/v1/links",
        json={"creator_phone": "08011111111", "target": TARGET, "custom_code": "shop"},
    )
    taken = client.post(
        "/api/v1/links",
        json={"creator_phone": "08011111111", "target": TARGET, "custom_code": "shop"},
    )

    assert created.status_code == 201
    assert created.json()["new_balance"] == 750
    assert created.json()["link"]["short_code"] == "shop"
    assert taken.status_code == 409
    assert taken.json()["code"] == "code_unavailable"
    assert taken.json()["suggestions"] == ["shop1", "shop2", "shop3"]


def test_account_rate_limit_returns_retry_after(client: TestClient) -> None:
    statuses = []
    for index in range(6):
        resp = client.post(
            "/api/v1/links",
            json={"creator_phone": CREATOR, "target": TARGET, "custom_code": f"code{index}x"},
        )
        statuses.append(resp.status_code)

    assert statuses[:4] == [201, 201, 201, 201]
    assert statuses[4] == 402
    assert resp.status_code == 429
    assert int(resp.headers["retry-after"]) > 0


def test_wallet_balance_and_history(client: TestClient, account_service: AccountService) -> None:
    account_service.soft_register(CREATOR)

    balance = client.get(f"/api/v1/wallet/{CREATOR}/balance").json()
    history = client.get(f"/api/v1/wallet/{CREATOR}/history", params={"page_size": 5}).json()

    assert balance["balance"] == 1000
    assert history["total"] == 1
    assert history["items"][0]["payment_method"] == "signup_bonus"


def test_webhook_settles_once(
    client: TestClient,
    account_service: AccountService,
    payment_service: PaymentService,
    ledger_repo: FakeLedgerRepository,
) -> None:
    account_service.register_email(CREATOR, "ada@example.com")
    pending = payment_service.create_pending(CREATOR, 500)
    raw, headers = _signed(
        {"event": "charge.success", "data": {"reference": pending.reference, "amount": 50000}}
    )

    first = client.post("/webhook/paystack", content=raw, headers=headers)
    second = client.post("/webhook/paystack", content=raw, headers=headers)

    assert first.status_code == 200
    assert first.json() == {"status": "processed", "transaction_status": "completed"}
    assert second.status_code == 200
    assert second.json() == {"status": "already_settled"}
    assert ledger_repo.get_balance(CREATOR) == 1500


def test_webhook_rejects_bad_signature(client: TestClient) -> None:
    raw = json.dumps({"event": "charge.success", "data": {"reference": "x"}}).encode("utf-8")

    resp = client.post(
        "/webhook/paystack",
        content=raw,
        headers={SIGNATURE_HEADER: "not-a-signature", "content-type": "application/json"},
    )

    assert resp.status_code == 401
    assert resp.json()["code"] == "invalid_signature"


def test_webhook_ignores_unknown_events_and_references(client: TestClient) -> None:
    raw, headers = _signed({"event": "transfer.success", "data": {"reference": "x"}})
    unknown_raw, unknown_headers = _signed(
        {"event": "charge.success", "data": {"reference": "pay_missing"}}
    )

    assert client.post("/webhook/paystack", content=raw, headers=headers).json() == {
        "status": "ignored"
    }
    assert client.post(
        "/webhook/paystack", content=unknown_raw, headers=unknown_headers
    ).json() == {"status": "unknown_reference"}


def test_webhook_rejects_signed_non_object_payloads(client: TestClient) -> None:
    raw = json.dumps([{"event": "charge.success"}]).encode("utf-8")
    headers = {SIGNATURE_HEADER: compute_signature(raw, SECRET), "content-type": "application/json"}

    resp = client.post("/webhook/paystack", content=raw, headers=headers)

    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_payload"

    odd_raw, odd_headers = _signed({"event": "charge.success", "data": ["pay_missing"]})
    assert client.post("/webhook/paystack", content=odd_raw, headers=odd_headers).json() == {
        "status": "ignored"
    }
