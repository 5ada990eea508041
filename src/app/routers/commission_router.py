"""
커미션 재시도 라우터 (운영자/cron 호출용)

curl -H "Authorization: Bearer $CRON_SECRET" https://<host>/api/retry-commissions?limit=20
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Header, Query
from fastapi.responses import JSONResponse

from schemas import RetryCommissionsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["commissions"])

DEFAULT_RETRY_LIMIT = 10
MAX_RETRY_LIMIT = 50

commission_service = None  # type: ignore
cron_secret: str = ""
allow_unauthenticated: bool = False


def set_dependencies(commission_svc, secret: Optional[str] = None, allow_without_secret: bool = False) -> None:
    """main.py에서 호출. CRON_SECRET이 없으면 allow_without_secret(개발 모드)일 때만 열어둔다."""
    global commission_service, cron_secret, allow_unauthenticated
    commission_service = commission_svc
    cron_secret = (secret or "").strip()
    allow_unauthenticated = allow_without_secret


def parse_limit(raw: Optional[str]) -> int:
    """limit 쿼리 파싱 (기본 10, 1~50으로 제한)"""
    try:
        value = int(str(raw).strip()) if raw is not None else DEFAULT_RETRY_LIMIT
    except ValueError:
        value = DEFAULT_RETRY_LIMIT
    return max(1, min(value, MAX_RETRY_LIMIT))


def is_authorized(authorization: Optional[str]) -> bool:
    if not cron_secret:
        return allow_unauthenticated
    expected = f"Bearer {cron_secret}"
    return hmac.compare_digest(expected.encode("utf-8"), (authorization or "").encode("utf-8"))


@router.get("/retry-commissions")
async def retry_commissions(
    limit: Optional[str] = Query(default=None),
    authorization: Optional[str] = Header(default=None),
):
    if not is_authorized(authorization):
        logger.warning("[SWEEP] unauthorized retry-commissions attempt")
        return JSONResponse(status_code=401, content={"success": False, "error": "Unauthorized"})

    resolved_limit = parse_limit(limit)
    try:
        logger.info("[SWEEP] retry of failed commissions requested (limit=%s)", resolved_limit)
        retried = await commission_service.retry_failed(resolved_limit)
    except Exception as e:
        logger.error("[SWEEP] retry-commissions failed: %s", e, exc_info=True)
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})

    return RetryCommissionsResponse(
        success=True,
        retriedCount=retried,
        limit=resolved_limit,
        message=f"Successfully retried {retried} failed commission(s)",
    ).model_dump()
