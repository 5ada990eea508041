"""CommissionService 테스트 - 자격 판단, 통지, 감사 로그, 재시도 스윕"""
import logging
from itertools import product

import httpx
import pytest

from core.billing_config import (
    AffiliateConfig,
    PlanCatalog,
    PlanSpec,
    SubscriptionPlan,
)
from mocks import InMemoryDatabaseHelper, RecordingSleep, patch_async_client
from services.affiliate_client import AffiliateClient
from services.commission_service import CommissionService, evaluate_eligibility

CONFIG = AffiliateConfig(
    api_url="https://affiliate.test/api/commissions",
    api_secret="shared-secret",
)


def _eligible_profile(user_id="u1", **overrides):
    profile = {
        "user_id": user_id,
        "email": "buyer@example.com",
        "full_name": "Buyer One",
        "plan": "Professional",
        "subscription_active": True,
        "referrer_id": "AGENT1",
        "commission_notified": False,
    }
    profile.update(overrides)
    return profile


def _service(db, config: AffiliateConfig = CONFIG, catalog: PlanCatalog = None):
    client = AffiliateClient(config)
    client._sleep_backoff = RecordingSleep()
    if catalog is None:
        return CommissionService(db, client), client
    return CommissionService(db, client, catalog), client


@pytest.mark.parametrize(
    "has_referrer, active, already_notified, valid_email",
    list(product([True, False], repeat=4)),
)
def test_eligibility_requires_all_four_conditions(has_referrer, active, already_notified, valid_email):
    profile = _eligible_profile(
        referrer_id="AGENT1" if has_referrer else None,
        subscription_active=active,
        commission_notified=already_notified,
        email="buyer@example.com" if valid_email else "not-an-email",
    )

    eligible, reason = evaluate_eligibility(profile)

    expected = has_referrer and active and not already_notified and valid_email
    assert eligible is expected
    assert (reason is None) is expected


@pytest.mark.parametrize("referrer", ["", "   "])
def test_blank_referrer_is_not_eligible(referrer):
    assert evaluate_eligibility(_eligible_profile(referrer_id=referrer)) == (False, "no_referrer")


def test_missing_profile_is_not_eligible():
    assert evaluate_eligibility(None) == (False, "profile_not_found")


@pytest.mark.asyncio
async def test_should_notify_returns_dispatch_parameters():
    db = InMemoryDatabaseHelper([_eligible_profile(plan="pro")])
    service, _ = _service(db)

    result = await service.should_notify("u1")

    assert result["should"] is True
    assert result["agent_code"] == "AGENT1"
    assert result["email"] == "buyer@example.com"
    assert result["plan"] == "Professional"
    assert result["client_name"] == "Buyer One"


@pytest.mark.asyncio
async def test_notify_success_records_row_and_sets_flag(monkeypatch):
    db = InMemoryDatabaseHelper([_eligible_profile()])
    calls = patch_async_client(
        monkeypatch, "services.affiliate_client", [httpx.Response(status_code=200, json={"ok": True})]
    )
    service, _ = _service(db)

    result = await service.notify("u1", "AGENT1", "buyer@example.com", "Professional", "R1", "Buyer One")

    assert result["success"] is True
    assert calls[0]["json"] == {
        "agent_code": "AGENT1",
        "user_email": "buyer@example.com",
        "plan_type": "Professional",
        "reference": "R1",
        "client_name": "Buyer One",
    }
    row = db.notifications[("u1", "R1")]
    assert row["status"] == "success"
    assert row["retry_count"] == 0
    assert row["response_data"] == {"ok": True}
    assert db.profiles["u1"]["commission_notified"] is True
    # 최초 시도는 pending 으로 먼저 남는다
    assert db.record_calls[0]["status"] == "pending"


@pytest.mark.asyncio
async def test_notify_skips_network_when_reference_already_succeeded(monkeypatch):
    db = InMemoryDatabaseHelper([_eligible_profile()])
    db.add_notification(user_id="u1", payment_reference="R1", status="success", referrer_id="AGENT1")
    calls = patch_async_client(monkeypatch, "services.affiliate_client", [])
    service, _ = _service(db)

    result = await service.notify("u1", "AGENT1", "buyer@example.com", "Professional", "R1")

    assert result == {"success": True, "already_notified": True, "reference": "R1"}
    assert calls == []
    assert db.record_calls == []


@pytest.mark.asyncio
async def test_five_server_errors_leave_failed_row_with_three_retries(monkeypatch):
    db = InMemoryDatabaseHelper([_eligible_profile()])
    responses = [httpx.Response(status_code=500, json={"error": "down"}) for _ in range(5)]
    calls = patch_async_client(monkeypatch, "services.affiliate_client", responses)
    service, _ = _service(db)

    result = await service.notify("u1", "AGENT1", "buyer@example.com", "Professional", "R1")

    assert len(calls) == 3
    assert result["success"] is False
    assert result["retryable"] is True
    row = db.notifications[("u1", "R1")]
    assert row["status"] == "failed"
    assert row["retry_count"] == 3
    assert "HTTP 500" in row["error_message"]
    assert db.profiles["u1"]["commission_notified"] is False
    # 예산을 모두 쓴 행은 스윕 대상이 아니다
    assert await db.list_retryable_commission_notifications(10, 3) == []


@pytest.mark.asyncio
async def test_unknown_agent_fails_once_without_backoff(monkeypatch):
    db = InMemoryDatabaseHelper([_eligible_profile()])
    calls = patch_async_client(
        monkeypatch, "services.affiliate_client", [httpx.Response(status_code=404, json={"error": "unknown"})]
    )
    service, client = _service(db)

    result = await service.notify("u1", "AGENT1", "buyer@example.com", "Professional", "R1")

    assert len(calls) == 1
    assert client._sleep_backoff.delays == []
    assert result["success"] is False
    assert result["code"] == "unknown_agent"
    row = db.notifications[("u1", "R1")]
    assert row["status"] == "failed"
    assert row["error_message"] == "Invalid agent_code: AGENT1 not found in Affiliate System"
    # 종결 실패는 자동 재시도 대상에서 빠진다
    assert await db.list_retryable_commission_notifications(10, 3) == []


@pytest.mark.asyncio
async def test_missing_configuration_records_failure_without_request(monkeypatch):
    db = InMemoryDatabaseHelper([_eligible_profile()])
    calls = patch_async_client(monkeypatch, "services.affiliate_client", [])
    service, _ = _service(db, AffiliateConfig(api_url=None, api_secret=None))

    result = await service.notify("u1", "AGENT1", "buyer@example.com", "Professional", "R1")

    assert result["success"] is False
    assert result["code"] == "configuration_error"
    assert calls == []
    row = db.notifications[("u1", "R1")]
    assert row["status"] == "failed"
    assert row["retry_count"] == 0
    assert "AFFILIATE_API_URL" in row["error_message"]


@pytest.mark.asyncio
async def test_retry_budget_carries_over_between_dispatches(monkeypatch):
    db = InMemoryDatabaseHelper([_eligible_profile()])
    db.add_notification(user_id="u1", payment_reference="R1", status="failed", retry_count=2, referrer_id="AGENT1")
    calls = patch_async_client(
        monkeypatch, "services.affiliate_client", [httpx.Response(status_code=503) for _ in range(3)]
    )
    service, _ = _service(db)

    result = await service.notify("u1", "AGENT1", "buyer@example.com", "Professional", "R1")

    assert len(calls) == 1
    assert result["retry_count"] == 3
    assert db.notifications[("u1", "R1")]["retry_count"] == 3


@pytest.mark.asyncio
async def test_amount_payload_uses_plan_commission(monkeypatch):
    db = InMemoryDatabaseHelper([_eligible_profile()])
    calls = patch_async_client(monkeypatch, "services.affiliate_client", [httpx.Response(status_code=200, json={})])
    catalog = PlanCatalog(
        {
            SubscriptionPlan.INDIVIDUAL: PlanSpec(price=49900, commission_amount=5000),
            SubscriptionPlan.PROFESSIONAL: PlanSpec(price=99900, commission_amount=10000),
        }
    )
    config = AffiliateConfig(api_url=CONFIG.api_url, api_secret=CONFIG.api_secret, payload_version="amount")
    service, _ = _service(db, config, catalog)

    await service.notify("u1", "AGENT1", "buyer@example.com", "Professional", "R1")

    assert calls[0]["json"]["referrer_id"] == "AGENT1"
    assert calls[0]["json"]["amount"] == 10000
    assert db.notifications[("u1", "R1")]["amount"] == 10000


@pytest.mark.asyncio
async def test_process_activation_skips_ineligible_user(monkeypatch):
    db = InMemoryDatabaseHelper([_eligible_profile(referrer_id=None)])
    calls = patch_async_client(monkeypatch, "services.affiliate_client", [])
    service, _ = _service(db)

    result = await service.process_activation("u1", "R1")

    assert result["skipped"] is True
    assert result["reason"] == "no_referrer"
    assert calls == []
    assert db.notifications == {}


@pytest.mark.asyncio
async def test_retry_failed_rechecks_eligibility_and_counts_successes(monkeypatch):
    db = InMemoryDatabaseHelper(
        [
            _eligible_profile("u1"),
            _eligible_profile("u2", email="second@example.com", referrer_id="AGENT2"),
            _eligible_profile("u3", subscription_active=False),
        ]
    )
    db.add_notification(user_id="u1", payment_reference="R1", status="failed", retry_count=1,
                        referrer_id="AGENT1", user_email="buyer@example.com")
    db.add_notification(user_id="u3", payment_reference="R3", status="failed", retry_count=0,
                        referrer_id="AGENT1", user_email="buyer@example.com")
    db.add_notification(user_id="u2", payment_reference="R2", status="failed", retry_count=0,
                        referrer_id="AGENT2", user_email="second@example.com")
    calls = patch_async_client(
        monkeypatch,
        "services.affiliate_client",
        [httpx.Response(status_code=200, json={}), httpx.Response(status_code=200, json={})],
    )
    service, _ = _service(db)

    retried = await service.retry_failed(limit=10)

    assert retried == 2
    # 오래된 순서로 처리, 자격 상실(u3)은 건너뜀
    assert [call["json"]["reference"] for call in calls] == ["R1", "R2"]
    assert db.notifications[("u1", "R1")]["status"] == "success"
    assert db.notifications[("u1", "R1")]["retry_count"] == 1
    assert db.notifications[("u3", "R3")]["status"] == "failed"
    assert db.logged_events[-1]["event_type"] == "commission_retry_sweep"
    assert db.logged_events[-1]["event_data"]["skipped"] == 1


@pytest.mark.asyncio
async def test_retry_failed_respects_limit(monkeypatch):
    db = InMemoryDatabaseHelper([_eligible_profile("u1"), _eligible_profile("u2")])
    db.add_notification(user_id="u1", payment_reference="R1", status="failed", referrer_id="AGENT1")
    db.add_notification(user_id="u2", payment_reference="R2", status="failed", referrer_id="AGENT1")
    calls = patch_async_client(monkeypatch, "services.affiliate_client", [httpx.Response(status_code=200, json={})])
    service, _ = _service(db)

    assert await service.retry_failed(limit=1) == 1
    assert len(calls) == 1
    assert db.notifications[("u2", "R2")]["status"] == "failed"


@pytest.mark.asyncio
async def test_reset_commission_clears_rows_and_flag():
    db = InMemoryDatabaseHelper([_eligible_profile(commission_notified=True)])
    db.add_notification(user_id="u1", payment_reference="R1", status="success")
    service, _ = _service(db)

    result = await service.reset_commission("u1", admin_id="admin-1")

    assert result == {"user_id": "u1", "deleted_notifications": 1}
    assert db.notifications == {}
    assert db.profiles["u1"]["commission_notified"] is False
    assert db.logged_events[-1]["event_type"] == "commission_reset"

    status = await service.get_commission_status("u1")
    assert status["eligible"] is True
    assert status["notifications"] == []


@pytest.mark.asyncio
async def test_audit_write_failure_is_logged_with_reference(monkeypatch, caplog):
    db = InMemoryDatabaseHelper([_eligible_profile()])
    db.fail_audit_writes = True
    patch_async_client(monkeypatch, "services.affiliate_client", [httpx.Response(status_code=500) for _ in range(3)])
    service, _ = _service(db)

    with caplog.at_level(logging.ERROR):
        result = await service.notify("u1", "AGENT1", "buyer@example.com", "Professional", "R1")

    assert result["success"] is False
    assert db.notifications == {}
    messages = [record.getMessage() for record in caplog.records if record.levelno == logging.ERROR]
    assert any("감사 로그 기록 실패" in message and "reference=R1" in message and "status=failed" in message
               for message in messages)
