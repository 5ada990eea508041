"""
애플리케이션 설정 관리
"""
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import validator
from pydantic_settings import BaseSettings

from core.billing_config import AffiliateConfig, PlanCatalog, PlanSpec, SubscriptionPlan


_FILE_PATH = Path(__file__).resolve()


def _collect_env_files(file_path: Path) -> tuple[Path, ...]:
    """환경 파일 후보를 가까운 디렉터리부터 수집"""

    collected: list[Path] = []
    seen: set[Path] = set()

    for directory in file_path.parents:
        for name in (".env", ".env.local"):
            candidate = directory / name
            if candidate.exists() and candidate not in seen:
                collected.append(candidate)
                seen.add(candidate)

    return tuple(collected)


_ENV_FILES = _collect_env_files(_FILE_PATH)


def _load_dotenv_files() -> None:
    """프로젝트 전체에서 활용할 .env 파일들을 순차적으로 로드"""

    for dotenv_path in _ENV_FILES:
        load_dotenv(dotenv_path, override=False)


_load_dotenv_files()


class Settings(BaseSettings):
    """애플리케이션 설정"""

    # 서버 설정
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    APP_BASE_URL: str = "http://localhost:3000"
    # 결제 완료 후 Paystack이 리다이렉트할 이 서버의 외부 주소
    API_PUBLIC_URL: str = "http://localhost:8000"

    # Supabase 설정
    SUPABASE_URL: str
    SUPABASE_ANON_KEY: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: str

    # 로깅 설정
    LOG_LEVEL: str = "INFO"

    # Paystack 설정
    PAYSTACK_SECRET_KEY: Optional[str] = None
    PAYSTACK_API_BASE_URL: str = "https://api.paystack.co"
    # 비어 있으면 PAYSTACK_SECRET_KEY로 서명을 검증한다
    PAYSTACK_WEBHOOK_SECRET: Optional[str] = None
    PAYSTACK_SANDBOX_ONLY: bool = False
    PAYSTACK_CURRENCY: str = "KES"

    # 요금제 (금액은 최소 화폐 단위)
    PLAN_PRICE_INDIVIDUAL: int = 49900
    PLAN_PRICE_PROFESSIONAL: int = 99900
    # 요금제별 활성 구독자 상한 (None이면 무제한)
    PLAN_MAX_ACTIVE_INDIVIDUAL: Optional[int] = None
    PLAN_MAX_ACTIVE_PROFESSIONAL: Optional[int] = None
    SUBSCRIPTION_PERIOD_DAYS: int = 30

    # 제휴 시스템 설정
    AFFILIATE_API_URL: Optional[str] = None
    AFFILIATE_API_SECRET: Optional[str] = None
    AFFILIATE_TRANSFER_WEBHOOK_URL: Optional[str] = None
    AFFILIATE_PAYLOAD_VERSION: str = "plan"
    AFFILIATE_TIMEOUT_SECONDS: float = 10.0
    COMMISSION_AMOUNT_INDIVIDUAL: int = 0
    COMMISSION_AMOUNT_PROFESSIONAL: int = 0
    COMMISSION_MAX_ATTEMPTS: int = 3
    COMMISSION_BACKOFF_BASE_SECONDS: float = 1.0
    COMMISSION_BACKOFF_MAX_SECONDS: float = 10.0

    # 재시도 스윕 설정
    CRON_SECRET: Optional[str] = None
    RETRY_SWEEP_INTERVAL_SECONDS: int = 3600
    RETRY_SWEEP_BATCH_SIZE: int = 10

    @validator('SUPABASE_URL')
    def validate_supabase_url(cls, v):
        if not v:
            raise ValueError('SUPABASE_URL은 필수입니다')
        return v

    @validator('SUPABASE_SERVICE_ROLE_KEY')
    def validate_supabase_service_role_key(cls, v):
        if not v:
            raise ValueError('SUPABASE_SERVICE_ROLE_KEY는 필수입니다')
        return v

    @validator('AFFILIATE_PAYLOAD_VERSION')
    def validate_payload_version(cls, v):
        normalized = (v or "plan").strip().lower()
        if normalized not in ("plan", "amount"):
            raise ValueError('AFFILIATE_PAYLOAD_VERSION은 plan 또는 amount 여야 합니다')
        return normalized

    @property
    def webhook_secret(self) -> str:
        return (self.PAYSTACK_WEBHOOK_SECRET or self.PAYSTACK_SECRET_KEY or "").strip()

    def affiliate_config(self) -> AffiliateConfig:
        """제휴 연동 설정을 불변 객체로 변환"""
        return AffiliateConfig(
            api_url=self.AFFILIATE_API_URL,
            api_secret=self.AFFILIATE_API_SECRET,
            transfer_webhook_url=self.AFFILIATE_TRANSFER_WEBHOOK_URL,
            payload_version=self.AFFILIATE_PAYLOAD_VERSION,
            timeout=self.AFFILIATE_TIMEOUT_SECONDS,
            max_attempts=self.COMMISSION_MAX_ATTEMPTS,
            backoff_base=self.COMMISSION_BACKOFF_BASE_SECONDS,
            backoff_max=self.COMMISSION_BACKOFF_MAX_SECONDS,
        )

    def plan_catalog(self) -> PlanCatalog:
        """요금제별 가격/커미션/좌석 상한을 카탈로그로 구성"""
        return PlanCatalog(
            {
                SubscriptionPlan.INDIVIDUAL: PlanSpec(
                    price=self.PLAN_PRICE_INDIVIDUAL,
                    commission_amount=self.COMMISSION_AMOUNT_INDIVIDUAL,
                    max_active=self.PLAN_MAX_ACTIVE_INDIVIDUAL,
                ),
                SubscriptionPlan.PROFESSIONAL: PlanSpec(
                    price=self.PLAN_PRICE_PROFESSIONAL,
                    commission_amount=self.COMMISSION_AMOUNT_PROFESSIONAL,
                    max_active=self.PLAN_MAX_ACTIVE_PROFESSIONAL,
                ),
            },
            period_days=self.SUBSCRIPTION_PERIOD_DAYS,
        )

    class Config:
        env_file = tuple(str(path) for path in _ENV_FILES) if _ENV_FILES else None
        case_sensitive = True
        extra = "allow"  # 추가 환경변수 허용

# 전역 설정 인스턴스
settings = Settings()
