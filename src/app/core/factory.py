"""
서비스 팩토리 - 의존성 주입 설정
"""
from supabase import Client, create_client
import logging

from core.background import BackgroundTaskRunner
from core.config import settings
from core.container import container
from core.interfaces import IAuthService, ICommissionService, IDatabaseHelper, ISubscriptionService
from database_helper import DatabaseHelper
from services.affiliate_client import AffiliateClient
from services.auth_service import AuthService
from services.commission_service import CommissionService
from services.paystack_client import PaystackClient
from services.profile_service import ProfileService
from services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

class ServiceFactory:
    """서비스 의존성 등록 및 초기화"""

    @staticmethod
    def configure_dependencies():
        """의존성 주입 컨테이너 설정 - 설정값은 여기서 한 번만 읽어 주입한다"""
        # 인증 검증용 클라이언트와 데이터 접근용 service-role 클라이언트
        supabase_admin = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
        supabase_client = supabase_admin
        if settings.SUPABASE_ANON_KEY:
            supabase_client = create_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)
        container.register_singleton(Client, supabase_client)

        db_helper = DatabaseHelper(supabase_client, supabase_admin)
        container.register_singleton(IDatabaseHelper, db_helper)

        auth_service = AuthService(supabase_client, db_helper)
        container.register_singleton(IAuthService, auth_service)

        # Paystack API 클라이언트 설정
        paystack_client = None
        if settings.PAYSTACK_SECRET_KEY:
            paystack_client = PaystackClient(
                secret_key=settings.PAYSTACK_SECRET_KEY,
                base_url=settings.PAYSTACK_API_BASE_URL,
                sandbox_only=settings.PAYSTACK_SANDBOX_ONLY,
            )
            container.register_singleton(PaystackClient, paystack_client)
        else:
            logger.warning("[PAYSTACK] PAYSTACK_SECRET_KEY가 설정되지 않아 PaystackClient를 초기화하지 않습니다.")

        if not settings.webhook_secret:
            logger.warning("[PAYSTACK] 웹훅 서명 시크릿이 없어 모든 웹훅이 401로 거부됩니다.")

        affiliate_client = AffiliateClient(settings.affiliate_config())
        container.register_singleton(AffiliateClient, affiliate_client)
        if not affiliate_client.is_configured:
            logger.warning("[AFFILIATE] AFFILIATE_API_URL/AFFILIATE_API_SECRET 미설정 - 커미션 통지는 실패로 기록됩니다.")

        task_runner = BackgroundTaskRunner()
        container.register_singleton(BackgroundTaskRunner, task_runner)

        plan_catalog = settings.plan_catalog()

        commission_service = CommissionService(db_helper, affiliate_client, plan_catalog)
        container.register_singleton(ICommissionService, commission_service)

        subscription_service = SubscriptionService(
            db_helper,
            commission_service,
            task_runner,
            paystack_client=paystack_client,
            plan_catalog=plan_catalog,
            app_base_url=settings.APP_BASE_URL,
            api_public_url=settings.API_PUBLIC_URL,
            currency=settings.PAYSTACK_CURRENCY,
        )
        container.register_singleton(ISubscriptionService, subscription_service)

        container.register_singleton(ProfileService, ProfileService(db_helper))

    @staticmethod
    def get_auth_service() -> AuthService:
        """인증 서비스 조회"""
        return container.get(IAuthService)

    @staticmethod
    def get_db_helper() -> IDatabaseHelper:
        """DB 헬퍼 조회"""
        return container.get(IDatabaseHelper)

    @staticmethod
    def get_commission_service() -> CommissionService:
        """커미션 서비스 조회"""
        return container.get(ICommissionService)

    @staticmethod
    def get_subscription_service() -> SubscriptionService:
        """구독 서비스 조회"""
        return container.get(ISubscriptionService)

    @staticmethod
    def get_profile_service() -> ProfileService:
        """프로필 서비스 조회"""
        return container.get(ProfileService)

    @staticmethod
    def get_affiliate_client() -> AffiliateClient:
        return container.get(AffiliateClient)

    @staticmethod
    def get_task_runner() -> BackgroundTaskRunner:
        """백그라운드 작업 실행기 조회"""
        return container.get(BackgroundTaskRunner)
