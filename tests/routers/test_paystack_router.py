"""Paystack 웹훅 라우터 테스트"""
import hashlib
import hmac
import json
from typing import Any, Dict, List

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.background import BackgroundTaskRunner
from core.billing_config import AffiliateConfig
from mocks import RecordingSleep, patch_async_client
from routers import paystack_router
from schemas import WebhookAck
from services.affiliate_client import AffiliateClient

SECRET = "sk_test_webhook_secret"


def _sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


class StubSubscriptionService:
    def __init__(self, error: Exception = None):
        self.error = error
        self.events: List[tuple] = []

    async def handle_charge_event(self, event: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self.events.append((event, data))
        if self.error:
            raise self.error
        return {"handled": True, "action": "activated", "user_id": "U"}


class StubAffiliateClient:
    def __init__(self):
        self.forwarded: List[Dict[str, Any]] = []

    async def forward_transfer_event(self, event: Dict[str, Any]) -> bool:
        self.forwarded.append(event)
        return True


class StubRunner:
    """제출된 코루틴을 실행하지 않고 이름만 기록"""

    def __init__(self):
        self.submitted: List[str] = []

    def submit(self, coro, name=None):
        coro.close()
        self.submitted.append(name)
        return None


@pytest.fixture
def services():
    subscription = StubSubscriptionService()
    affiliate = StubAffiliateClient()
    runner = StubRunner()
    paystack_router.set_dependencies(subscription, affiliate, runner, SECRET)
    return subscription, affiliate, runner


@pytest.fixture
def test_client(services) -> TestClient:
    """웹훅 라우터만 포함한 경량 FastAPI 앱"""
    app = FastAPI()
    app.include_router(paystack_router.router)
    return TestClient(app)


def _post(client: TestClient, payload: Any, signature: str = None, raw: bytes = None):
    body = raw if raw is not None else json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if signature != "":
        headers["x-paystack-signature"] = signature if signature is not None else _sign(body)
    return _post_raw(client, body, headers)


def _post_raw(client: TestClient, body: bytes, headers: Dict[str, str]):
    return client.post("/api/v1/webhooks/paystack", content=body, headers=headers)


CHARGE = {"event": "charge.success", "data": {"reference": "R1", "metadata": {"user_id": "U"}}}


def test_valid_charge_event_is_acknowledged(test_client, services):
    subscription, _, _ = services

    response = _post(test_client, CHARGE)

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert WebhookAck(**response.json()).ok is True
    assert subscription.events == [("charge.success", CHARGE["data"])]


@pytest.mark.parametrize("signature", ["", "deadbeef", _sign(b"other body")])
def test_bad_signature_rejected_before_processing(test_client, services, signature):
    subscription, _, _ = services

    response = _post(test_client, CHARGE, signature=signature)

    assert response.status_code == 401
    assert response.json() == {"ok": False}
    assert subscription.events == []


def test_missing_secret_rejects_everything(test_client, services):
    subscription, affiliate, runner = services
    paystack_router.set_dependencies(subscription, affiliate, runner, None)
    body = json.dumps(CHARGE).encode("utf-8")

    response = _post_raw(test_client, body, {"x-paystack-signature": _sign(body, "")})

    assert response.status_code == 401
    assert subscription.events == []


def test_signature_is_checked_against_raw_bytes(test_client, services):
    subscription, _, _ = services
    body = b'{"event": "charge.failed",   "data": {"metadata": {"user_id": "U"}}}'

    response = _post(test_client, None, raw=body)

    assert response.status_code == 200
    assert subscription.events[0][0] == "charge.failed"


def test_transfer_event_is_handed_to_background(test_client, services):
    subscription, _, runner = services
    payload = {"event": "transfer.success", "data": {"reference": "T1"}}

    response = _post(test_client, payload)

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert runner.submitted == ["transfer-forward:T1"]
    assert subscription.events == []


def test_unknown_event_is_acknowledged(test_client, services):
    subscription, _, runner = services

    response = _post(test_client, {"event": "subscription.create", "data": {}})

    assert response.status_code == 200
    assert subscription.events == []
    assert runner.submitted == []


def test_processing_error_returns_500(test_client, services):
    _, affiliate, runner = services
    paystack_router.set_dependencies(StubSubscriptionService(error=RuntimeError("db down")), affiliate, runner, SECRET)

    response = _post(test_client, CHARGE)

    assert response.status_code == 500
    assert response.json() == {"ok": False}


def test_signed_invalid_json_returns_500(test_client):
    response = _post(test_client, None, raw=b"{not json")

    assert response.status_code == 500
    assert response.json() == {"ok": False}


def test_liveness_check(test_client):
    response = test_client.get("/api/v1/webhooks/paystack")

    assert response.status_code == 200
    assert response.json()["data"] == {"ok": True}


@pytest.mark.asyncio
async def test_transfer_relay_failure_does_not_affect_routing(monkeypatch):
    """중계 대상이 500을 돌려줘도 라우팅 결과는 그대로이고 작업은 정상 종료된다"""
    calls = patch_async_client(monkeypatch, "services.affiliate_client", [httpx.Response(status_code=500)])
    affiliate = AffiliateClient(
        AffiliateConfig(
            api_url="https://affiliate.test/api/commissions",
            api_secret="shared-secret",
            transfer_webhook_url="https://affiliate.test/api/transfers",
        )
    )
    affiliate._sleep_backoff = RecordingSleep()
    runner = BackgroundTaskRunner()
    paystack_router.set_dependencies(StubSubscriptionService(), affiliate, runner, SECRET)

    outcome = await paystack_router.route_event({"event": "transfer.failed", "data": {"reference": "T9"}})
    await runner.drain()

    assert outcome == {"route": "transfer", "event": "transfer.failed"}
    assert len(calls) == 1
    assert calls[0]["url"] == "https://affiliate.test/api/transfers"
    assert runner.pending == 0
