"""
요청 수명과 분리된 백그라운드 작업 실행기
웹훅/리다이렉트 응답을 기다리게 하지 않고 커미션 통지 같은 후속 작업을 처리한다.
"""
import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

logger = logging.getLogger(__name__)

class BackgroundTaskRunner:
    """asyncio 작업을 띄우고, 끝날 때까지 참조를 유지하며, 실패를 기록한다"""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> Optional[asyncio.Task]:
        """작업 제출 - 호출자는 완료를 기다리지 않는다"""
        if self._closed:
            logger.warning(f"종료 중이라 백그라운드 작업을 거부합니다: {name}")
            coro.close()
            return None

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info(f"백그라운드 작업 취소됨: {task.get_name()}")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"백그라운드 작업 실패: {task.get_name()} {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self) -> None:
        """현재 대기 중인 작업이 모두 끝날 때까지 대기 (새로 제출된 작업 포함)"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 15.0) -> None:
        """새 작업을 막고, timeout 동안 완료를 기다린 뒤 남은 작업은 취소"""
        self._closed = True
        if not self._tasks:
            return

        logger.info(f"백그라운드 작업 {len(self._tasks)}개 완료 대기")
        done, pending = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"완료되지 않은 백그라운드 작업 {len(pending)}개 취소")
