"""DatabaseHelper 쿼리 구성 테스트 (supabase 체인 호출 기록용 더블 사용)"""
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from database_helper import COMMISSION_CONFLICT_KEY, DatabaseHelper


class RecordingQuery:
    def __init__(self, table: str, log: List[tuple], data: List[Dict[str, Any]]):
        self.table = table
        self.log = log
        self.data = data

    def __getattr__(self, name):
        def _call(*args, **kwargs):
            self.log.append((self.table, name, args, kwargs))
            return self
        return _call

    def execute(self):
        return SimpleNamespace(data=self.data, count=len(self.data))


class RecordingClient:
    def __init__(self, data: List[Dict[str, Any]] = None):
        self.log: List[tuple] = []
        self.data = data if data is not None else []

    def table(self, name: str) -> RecordingQuery:
        return RecordingQuery(name, self.log, self.data)


@pytest.mark.asyncio
async def test_record_notification_upserts_on_composite_key():
    client = RecordingClient([{"id": 1}])
    helper = DatabaseHelper(client)

    await helper.record_commission_notification(
        {"user_id": "U", "payment_reference": "R1", "status": "failed", "retry_count": 3, "extra": "x"}
    )

    table, method, args, kwargs = client.log[0]
    assert (table, method) == ("commission_notifications", "upsert")
    assert kwargs == {"on_conflict": COMMISSION_CONFLICT_KEY, "ignore_duplicates": False}
    assert "extra" not in args[0]
    assert args[0]["retry_count"] == 3


@pytest.mark.asyncio
async def test_pending_insert_does_not_overwrite():
    client = RecordingClient()
    helper = DatabaseHelper(client)

    await helper.record_commission_notification({"user_id": "U", "payment_reference": "R1"}, overwrite=False)

    assert client.log[0][3]["ignore_duplicates"] is True


@pytest.mark.asyncio
async def test_referrer_update_is_conditional_on_null():
    client = RecordingClient([{"user_id": "U"}])
    helper = DatabaseHelper(client)

    assert await helper.set_referrer_if_absent("U", "AGENT1") is True

    methods = [(entry[1], entry[2]) for entry in client.log]
    assert ("eq", ("user_id", "U")) in methods
    assert ("is_", ("referrer_id", "null")) in methods


@pytest.mark.asyncio
async def test_subscription_update_distinguishes_missing_row_from_error():
    helper = DatabaseHelper(RecordingClient([]))
    assert await helper.update_subscription_state("ghost", {"subscription_active": True}) == {}

    class BrokenClient:
        def table(self, name):
            raise RuntimeError("connection reset")

    broken = DatabaseHelper(BrokenClient())
    assert await broken.update_subscription_state("U", {"subscription_active": True}) is None
