"""제휴(어필리에이트) 시스템 API 클라이언트"""
from __future__ import annotations

import asyncio
import json as jsonlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from core.billing_config import AffiliateConfig


logger = logging.getLogger(__name__)


class AffiliateConfigError(ValueError):
    """제휴 API URL/시크릿 누락 - 운영자 설정 오류이므로 재시도하지 않는다"""


class AffiliateAPIError(RuntimeError):
    """제휴 API 오류"""

    def __init__(
        self,
        message: str,
        status_code: int,
        payload: Optional[Dict[str, Any]] = None,
        *,
        code: Optional[str] = None,
        failed_attempts: int = 0,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}
        self.code = code
        self.failed_attempts = failed_attempts
        self.retryable = retryable


@dataclass
class AffiliateDelivery:
    """성공한 통지 결과"""

    status_code: int
    response_data: Dict[str, Any] = field(default_factory=dict)
    failed_attempts: int = 0


def build_commission_payload(
    version: str,
    *,
    agent_code: str,
    user_email: str,
    plan: str,
    reference: str,
    amount: int = 0,
    client_name: Optional[str] = None,
) -> Dict[str, Any]:
    """제휴 시스템 계약 버전에 맞는 커미션 페이로드 생성

    - plan: agent_code / plan_type 기반 (현재 계약)
    - amount: referrer_id / amount 기반 (이전 계약)
    """

    if version == "amount":
        return {
            "referrer_id": agent_code,
            "user_email": user_email,
            "amount": int(amount or 0),
            "reference": reference,
            "client_name": client_name or "",
        }

    return {
        "agent_code": agent_code,
        "user_email": user_email,
        "plan_type": plan,
        "reference": reference,
        "client_name": client_name or "",
    }


def build_transfer_payload(event: Dict[str, Any]) -> Dict[str, Any]:
    """transfer.* 이벤트를 제휴 시스템 형식으로 변환 (원본 페이로드 포함)"""

    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    recipient = data.get("recipient")
    if isinstance(recipient, dict):
        recipient = recipient.get("recipient_code") or recipient.get("id") or recipient

    return {
        "event": event.get("event"),
        "reference": data.get("reference"),
        "amount": data.get("amount"),
        "recipient": recipient,
        "transfer_code": data.get("transfer_code"),
        "status": data.get("status"),
        "reason": data.get("reason"),
        "raw": event,
    }


class AffiliateClient:
    """제휴 시스템 비동기 클라이언트"""

    NON_RETRYABLE_STATUS = {400, 401, 404}

    def __init__(self, config: AffiliateConfig) -> None:
        self.config = config

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def ensure_configured(self) -> None:
        if not self.config.is_configured:
            raise AffiliateConfigError(
                "Affiliate API configuration missing (AFFILIATE_API_URL or AFFILIATE_API_SECRET)"
            )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_secret}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def backoff_delay(self, attempt_index: int) -> float:
        """지수 백오프 (1s, 2s, ... 최대 backoff_max)"""

        delay = self.config.backoff_base * (2**attempt_index)
        return max(0.0, min(delay, self.config.backoff_max))

    async def _sleep_backoff(self, attempt_index: int) -> None:
        delay = self.backoff_delay(attempt_index)
        if delay > 0:
            logger.info("[AFFILIATE] waiting %.1fs before retry", delay)
            await asyncio.sleep(delay)

    async def send_commission(
        self,
        payload: Dict[str, Any],
        *,
        max_attempts: Optional[int] = None,
    ) -> AffiliateDelivery:
        """커미션 통지 전송

        2xx는 성공, 404/400/401은 즉시 실패(재시도 없음), 그 외(5xx, 네트워크 오류)는
        max_attempts 안에서 지수 백오프로 재시도한다.
        """

        self.ensure_configured()

        allowed = self.config.max_attempts if max_attempts is None else max_attempts
        if allowed <= 0:
            raise AffiliateAPIError(
                "재시도 예산이 소진되었습니다.",
                status_code=0,
                code="retry_budget_exhausted",
                retryable=False,
            )

        agent_code = payload.get("agent_code") or payload.get("referrer_id")
        failed = 0
        last_error = ""
        last_status = 0
        last_payload: Dict[str, Any] = {}

        while failed < allowed:
            try:
                async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                    response = await client.post(self.config.api_url, headers=self._headers(), json=payload)
            except httpx.RequestError as exc:
                failed += 1
                last_error = f"Network error: {exc}"
                last_status = 0
                last_payload = {}
                logger.warning("[AFFILIATE] network error attempt=%s/%s error=%s", failed, allowed, exc)
                if failed < allowed:
                    await self._sleep_backoff(failed - 1)
                continue

            data = self._safe_json(response)

            if response.is_success:
                logger.info(
                    "[AFFILIATE] commission accepted agent=%s reference=%s status=%s",
                    agent_code,
                    payload.get("reference"),
                    response.status_code,
                )
                return AffiliateDelivery(response.status_code, data, failed)

            if response.status_code == 404:
                message = f"Invalid agent_code: {agent_code} not found in Affiliate System"
                logger.error("[AFFILIATE] %s", message)
                raise AffiliateAPIError(
                    message,
                    404,
                    data,
                    code="unknown_agent",
                    failed_attempts=failed,
                )

            if response.status_code in self.NON_RETRYABLE_STATUS:
                message = f"HTTP {response.status_code}: {jsonlib.dumps(data, ensure_ascii=False)}"
                logger.error("[AFFILIATE] request rejected %s", message)
                raise AffiliateAPIError(
                    message,
                    response.status_code,
                    data,
                    code="rejected",
                    failed_attempts=failed,
                )

            failed += 1
            last_status = response.status_code
            last_payload = data
            last_error = f"HTTP {response.status_code}: {jsonlib.dumps(data, ensure_ascii=False)}"
            logger.warning("[AFFILIATE] server error attempt=%s/%s %s", failed, allowed, last_error)
            if failed < allowed:
                await self._sleep_backoff(failed - 1)

        raise AffiliateAPIError(
            last_error or "Affiliate API 요청이 반복적으로 실패했습니다.",
            last_status,
            last_payload,
            code="retries_exhausted",
            failed_attempts=failed,
            retryable=True,
        )

    async def forward_transfer_event(self, event: Dict[str, Any]) -> bool:
        """transfer.* 이벤트 중계 (best-effort: 실패는 기록만 하고 삼킨다)"""

        url = (self.config.transfer_webhook_url or "").strip()
        if not url or not (self.config.api_secret or "").strip():
            logger.warning("[AFFILIATE] transfer forward skipped: endpoint or secret not configured")
            return False

        body = build_transfer_payload(event)
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                response = await client.post(url, headers=self._headers(), json=body)
        except httpx.RequestError as exc:
            logger.error("[AFFILIATE] transfer forward network error reference=%s error=%s", body.get("reference"), exc)
            return False

        if not response.is_success:
            logger.error(
                "[AFFILIATE] transfer forward failed reference=%s status=%s",
                body.get("reference"),
                response.status_code,
            )
            return False

        logger.info("[AFFILIATE] transfer forwarded event=%s reference=%s", body.get("event"), body.get("reference"))
        return True

    @staticmethod
    def _safe_json(response: httpx.Response) -> Dict[str, Any]:
        """JSON 파싱 실패 시 안전하게 fallback"""

        try:
            payload = response.json()
            return payload if isinstance(payload, dict) else {"data": payload}
        except Exception:
            return {"raw": response.text}
