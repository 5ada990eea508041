"""구독 라우터 테스트 - 결제 초기화와 리다이렉트 검증"""
from types import SimpleNamespace
from typing import Any, Dict

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.middleware import setup_exception_handlers
from core.responses import PaymentRequiredException
from routers import auth_router, subscription_router


class StubSubscriptionService:
    def __init__(self, verify_error: Exception = None):
        self.verify_error = verify_error
        self.verified = []
        self.checkouts = []

    async def verify_and_activate(self, reference: str) -> Dict[str, Any]:
        self.verified.append(reference)
        if self.verify_error:
            raise self.verify_error
        return {
            "handled": True,
            "action": "activated",
            "user_id": "U",
            "redirect_url": "https://app.test/dashboard?subscription=success",
        }

    async def initialize_checkout(self, user_id: str, email, plan_name: str) -> Dict[str, Any]:
        self.checkouts.append((user_id, email, plan_name))
        return {
            "authorization_url": "https://checkout.test/xyz",
            "reference": "ref_xyz",
            "access_code": "ac_1",
            "plan": "Professional",
            "amount": 99900,
        }


def _app(service: StubSubscriptionService) -> TestClient:
    app = FastAPI()
    setup_exception_handlers(app)
    app.include_router(subscription_router.router)
    subscription_router.set_dependencies(service)

    async def override_get_current_user():
        return SimpleNamespace(id="U", email="buyer@example.com")

    app.dependency_overrides[auth_router.get_current_user] = override_get_current_user
    return TestClient(app)


def test_verify_redirects_to_dashboard():
    service = StubSubscriptionService()
    client = _app(service)

    response = client.get(
        "/api/v1/subscriptions/verify", params={"reference": "R1"}, follow_redirects=False
    )

    assert response.status_code == 303
    assert response.headers["location"] == "https://app.test/dashboard?subscription=success"
    assert service.verified == ["R1"]


def test_verify_unsuccessful_payment_returns_error_envelope():
    client = _app(StubSubscriptionService(verify_error=PaymentRequiredException()))

    response = client.get(
        "/api/v1/subscriptions/verify", params={"reference": "R1"}, follow_redirects=False
    )

    assert response.status_code == 402
    body = response.json()
    assert body["status"] == "error"
    assert body["error_code"] == "PAYMENT_NOT_SUCCESSFUL"


def test_initialize_uses_authenticated_user():
    service = StubSubscriptionService()
    client = _app(service)

    response = client.post("/api/v1/subscriptions/initialize", json={"plan": "Professional"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["data"]["authorization_url"] == "https://checkout.test/xyz"
    assert body["data"]["amount"] == 99900
    assert service.checkouts == [("U", "buyer@example.com", "Professional")]


def test_initialize_requires_plan():
    client = _app(StubSubscriptionService())

    response = client.post("/api/v1/subscriptions/initialize", json={})

    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION_ERROR"


def test_initialize_requires_token_without_override():
    app = FastAPI()
    setup_exception_handlers(app)
    app.include_router(subscription_router.router)
    subscription_router.set_dependencies(StubSubscriptionService())
    auth_router.set_dependencies(SimpleNamespace(), None)

    response = TestClient(app).post("/api/v1/subscriptions/initialize", json={"plan": "Professional"})

    assert response.status_code == 401
