"""Paystack API 클라이언트 및 웹훅 서명 검증"""
from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx


logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


def compute_webhook_signature(raw: bytes, secret: str) -> str:
    """원본 바디 바이트에 대한 HMAC-SHA512 hex 다이제스트"""

    return hmac.new(secret.encode("utf-8"), raw, hashlib.sha512).hexdigest()


def verify_webhook_signature(raw: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Paystack 웹훅 서명 검증

    반드시 JSON 파싱 전의 원본 바이트로 검증해야 한다. 서명/시크릿 누락이나 불일치는 모두 거부.
    """

    if not secret or not secret.strip():
        logger.warning("[PAYSTACK] webhook secret not configured; rejecting")
        return False

    if not signature or not signature.strip():
        logger.warning("[PAYSTACK] missing %s header", SIGNATURE_HEADER)
        return False

    if isinstance(raw, str):
        raw = raw.encode("utf-8")

    expected = compute_webhook_signature(raw, secret.strip())
    if hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8", "surrogatepass")):
        return True

    logger.warning("[PAYSTACK] signature mismatch")
    return False


class PaystackAPIError(RuntimeError):
    """Paystack API 오류"""

    def __init__(
        self,
        message: str,
        status_code: int,
        payload: Optional[Dict[str, Any]] = None,
        *,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}
        self.code = code or self._extract_error_code()

    def _extract_error_code(self) -> Optional[str]:
        """응답 페이로드에서 오류 코드를 추출"""

        if not isinstance(self.payload, dict):
            return None
        code = self.payload.get("code") or self.payload.get("type")
        return code if isinstance(code, str) else None


class PaystackClient:
    """Paystack REST API 비동기 클라이언트"""

    STATUS_MESSAGES: Dict[int, str] = {
        400: "Paystack API 요청 파라미터가 올바르지 않습니다.",
        401: "Paystack API 인증에 실패했습니다.",
        404: "요청한 Paystack 거래를 찾지 못했습니다.",
        429: "Paystack API 호출이 제한되었습니다. 잠시 후 다시 시도하세요.",
        500: "Paystack API 서버 오류가 발생했습니다.",
        503: "Paystack API 서비스가 일시적으로 불가합니다.",
    }

    RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 15.0,
        *,
        max_retries: int = 2,
        backoff_factor: float = 0.5,
        sandbox_only: bool = False,
    ) -> None:
        if not secret_key or not secret_key.strip():
            raise ValueError("Paystack 시크릿 키가 설정되지 않았습니다.")
        if sandbox_only and not secret_key.startswith("sk_test_"):
            raise ValueError("PAYSTACK_SANDBOX_ONLY 설정에서는 sk_test_ 키만 사용할 수 있습니다.")

        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(0, int(max_retries))
        self.backoff_factor = max(0.0, float(backoff_factor))

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, headers=headers, json=json)
            except httpx.RequestError as exc:
                logger.warning(
                    "[PAYSTACK] API request network error: %s %s attempt=%s error=%s",
                    method,
                    path,
                    attempt + 1,
                    exc,
                )

                if attempt == self.max_retries:
                    raise PaystackAPIError(
                        "Paystack API 네트워크 오류가 발생했습니다.",
                        status_code=0,
                        payload={"message": str(exc)},
                        code="network_error",
                    ) from exc

                await self._sleep_backoff(attempt)
                continue

            if response.status_code >= 400:
                payload = self._safe_json(response)
                message = self._resolve_error_message(payload, response.status_code)
                error = PaystackAPIError(message, response.status_code, payload)

                if response.status_code in self.RETRYABLE_STATUS and attempt < self.max_retries:
                    logger.warning(
                        "[PAYSTACK] API request retry: %s %s status=%s attempt=%s",
                        method,
                        path,
                        response.status_code,
                        attempt + 1,
                    )
                    await self._sleep_backoff(attempt)
                    continue

                logger.error(
                    "[PAYSTACK] API request failed: %s %s status=%s payload=%s",
                    method,
                    path,
                    response.status_code,
                    payload,
                )
                raise error

            payload = self._safe_json(response)
            if payload.get("status") is False:
                raise PaystackAPIError(
                    self._resolve_error_message(payload, response.status_code),
                    response.status_code,
                    payload,
                    code="request_rejected",
                )
            data = payload.get("data")
            return data if isinstance(data, dict) else {}

        raise PaystackAPIError("Paystack API 요청이 반복적으로 실패했습니다.", status_code=0)

    async def verify_transaction(self, reference: str) -> Dict[str, Any]:
        """reference로 거래 상태를 조회 (리다이렉트 파라미터를 신뢰하지 않기 위한 pull 검증)"""

        if not reference or not reference.strip():
            raise ValueError("reference가 비어 있습니다.")
        return await self._request("GET", f"/transaction/verify/{quote(reference.strip(), safe='')}")

    async def initialize_transaction(
        self,
        email: str,
        amount: int,
        callback_url: str,
        metadata: Optional[Dict[str, Any]] = None,
        currency: Optional[str] = None,
    ) -> Dict[str, Any]:
        """결제 페이지용 거래 초기화. amount는 최소 화폐 단위"""

        body: Dict[str, Any] = {
            "email": email,
            "amount": int(amount),
            "callback_url": callback_url,
            "metadata": metadata or {},
        }
        if currency:
            body["currency"] = currency
        return await self._request("POST", "/transaction/initialize", json=body)

    async def _sleep_backoff(self, attempt: int) -> None:
        """재시도 전 지수 백오프 딜레이"""

        delay = self.backoff_factor * (2**attempt)
        if delay > 0:
            await asyncio.sleep(delay)

    def _resolve_error_message(self, payload: Dict[str, Any], status_code: int) -> str:
        message = payload.get("message") if isinstance(payload, dict) else None
        if isinstance(message, str) and message.strip():
            return message

        status_message = self.STATUS_MESSAGES.get(status_code)
        if status_message:
            return status_message

        return "Paystack API 요청에 실패했습니다"

    @staticmethod
    def _safe_json(response: httpx.Response) -> Dict[str, Any]:
        """JSON 파싱 실패 시 안전하게 fallback"""

        try:
            payload = response.json()
            return payload if isinstance(payload, dict) else {"data": payload}
        except Exception:
            return {"message": response.text}
