"""
Paystack Webhook Router

Handles Paystack webhook events:
- HMAC-SHA512 signature verification over the raw body (fails closed)
- charge.success / charge.failed -> subscription state machine
- transfer.* -> best-effort relay to the affiliate service
- everything else is logged and acknowledged
"""
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from core.responses import success_response
from schemas import WebhookAck
from services.paystack_client import SIGNATURE_HEADER, verify_webhook_signature
from services.subscription_service import CHARGE_FAILED, CHARGE_SUCCESS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks", "paystack"])

TRANSFER_EVENT_PREFIX = "transfer."
CHARGE_EVENTS = {CHARGE_SUCCESS, CHARGE_FAILED}

# 의존성 주입 대상
subscription_service = None  # type: ignore
affiliate_client = None  # type: ignore
task_runner = None  # type: ignore
webhook_secret: str = ""


def set_dependencies(subscription_svc, affiliate_cli, runner, secret: Optional[str]) -> None:
    """main.py에서 호출하여 서비스 인스턴스와 서명 시크릿을 주입한다."""
    global subscription_service, affiliate_client, task_runner, webhook_secret
    subscription_service = subscription_svc
    affiliate_client = affiliate_cli
    task_runner = runner
    webhook_secret = (secret or "").strip()


async def route_event(payload: Dict[str, Any]) -> Dict[str, Any]:
    """이벤트 이름에 따라 처리기로 분기"""

    event = payload.get("event")
    event = event if isinstance(event, str) else ""
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}

    if event.startswith(TRANSFER_EVENT_PREFIX):
        # 중계 실패가 웹훅 응답에 영향을 주지 않도록 응답과 분리해서 실행
        task_runner.submit(
            affiliate_client.forward_transfer_event(payload),
            name=f"transfer-forward:{data.get('reference')}",
        )
        return {"route": "transfer", "event": event}

    if event in CHARGE_EVENTS:
        result = await subscription_service.handle_charge_event(event, data)
        return {"route": "charge", "event": event, **result}

    logger.info("[PAYSTACK] unhandled event ignored: %s", event or "<missing>")
    return {"route": "ignored", "event": event}


@router.get("/paystack")
async def paystack_webhook_get():
    return success_response(data={"ok": True}, message="paystack webhook alive")


@router.post("/paystack", response_model=WebhookAck)
async def paystack_webhook(
    request: Request,
    paystack_signature: Optional[str] = Header(default=None, alias=SIGNATURE_HEADER),
):
    try:
        raw = await request.body()
        logger.info(
            "[PAYSTACK] webhook received: len=%s, has_signature=%s",
            len(raw),
            bool(paystack_signature),
        )

        if not verify_webhook_signature(raw, paystack_signature, webhook_secret):
            return JSONResponse(status_code=401, content=WebhookAck(ok=False).model_dump())

        payload = json.loads(raw.decode("utf-8"))
        if not isinstance(payload, dict):
            logger.warning("[PAYSTACK] non-object payload ignored: %s", type(payload).__name__)
            return WebhookAck(ok=True)

        outcome = await route_event(payload)
        logger.info("[PAYSTACK] webhook processed: %s", outcome)
        return WebhookAck(ok=True)
    except Exception as e:
        logger.error("[PAYSTACK] webhook processing error: %s", e, exc_info=True)
        return JSONResponse(status_code=500, content=WebhookAck(ok=False).model_dump())
