"""
배경 작업 스케줄러
실패한 커미션 통지 재시도 스윕 및 만료 구독 정리 같은 정기 작업 관리
"""
import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)

EXPIRY_CHECK_INTERVAL_SECONDS = 3600

class BackgroundScheduler:
    def __init__(
        self,
        commission_service,
        subscription_service,
        sweep_interval_seconds: int = 3600,
        sweep_batch_size: int = 10,
    ):
        self.commission_service = commission_service
        self.subscription_service = subscription_service
        self.sweep_interval_seconds = sweep_interval_seconds
        self.sweep_batch_size = sweep_batch_size
        self.running = False
        self.tasks = []

    async def start(self):
        """스케줄러 시작"""
        if self.running:
            return

        self.running = True
        logger.info("백그라운드 스케줄러 시작")

        # 실패한 커미션 통지 재시도 (0이면 외부 cron만 사용)
        if self.sweep_interval_seconds > 0:
            self.tasks.append(
                asyncio.create_task(self._retry_sweep_scheduler())
            )
        else:
            logger.info("[SWEEP] 주기 실행 비활성화 - /api/retry-commissions 호출로만 동작")

        # 만료된 구독 체크 (매시간)
        self.tasks.append(
            asyncio.create_task(self._hourly_expiry_check())
        )

    async def stop(self):
        """스케줄러 중지"""
        if not self.running:
            return

        self.running = False
        logger.info("백그라운드 스케줄러 중지")

        for task in self.tasks:
            if not task.done():
                task.cancel()

        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)

        self.tasks.clear()

    async def _retry_sweep_scheduler(self):
        """주기적으로 재시도 스윕 실행"""
        while self.running:
            try:
                await asyncio.sleep(self.sweep_interval_seconds)

                if not self.running:
                    break

                await self.run_retry_sweep()

            except asyncio.CancelledError:
                logger.info("[SWEEP] 재시도 스케줄러 취소됨")
                break
            except Exception as e:
                logger.error(f"[SWEEP] 재시도 스케줄러 오류: {e}")

    async def _hourly_expiry_check(self):
        """매시간 만료된 구독 비활성화"""
        while self.running:
            try:
                await asyncio.sleep(EXPIRY_CHECK_INTERVAL_SECONDS)

                if not self.running:
                    break

                await self.subscription_service.deactivate_expired()

            except asyncio.CancelledError:
                logger.info("만료 구독 체크 스케줄러 취소됨")
                break
            except Exception as e:
                logger.error(f"만료 구독 체크 스케줄러 오류: {e}")

    async def run_retry_sweep(self) -> int:
        """재시도 스윕 1회 실행"""
        logger.info(f"[SWEEP] 실패한 커미션 통지 재시도 시작 (batch={self.sweep_batch_size})")
        retried = await self.commission_service.retry_failed(self.sweep_batch_size)
        logger.info(f"[SWEEP] 재시도 완료: {retried}건 성공")
        return retried

# 전역 스케줄러 인스턴스
scheduler: Optional[BackgroundScheduler] = None

def get_scheduler() -> Optional[BackgroundScheduler]:
    """스케줄러 인스턴스 반환"""
    return scheduler

async def initialize_scheduler(commission_service, subscription_service, sweep_interval_seconds: int = 3600,
                               sweep_batch_size: int = 10):
    """스케줄러 초기화"""
    global scheduler
    if scheduler is None:
        scheduler = BackgroundScheduler(
            commission_service,
            subscription_service,
            sweep_interval_seconds=sweep_interval_seconds,
            sweep_batch_size=sweep_batch_size,
        )
        await scheduler.start()
        logger.info("백그라운드 스케줄러 초기화 완료")

async def cleanup_scheduler():
    """스케줄러 정리"""
    global scheduler
    if scheduler:
        await scheduler.stop()
        scheduler = None
        logger.info("백그라운드 스케줄러 정리 완료")
