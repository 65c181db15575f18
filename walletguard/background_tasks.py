import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
import structlog

from .alerts import AlertService
from .cache import CacheService
from .config import settings

logger = structlog.get_logger()

TaskCallback = Callable[[], Union[Any, Awaitable[Any]]]


class PeriodicTask:
    """Cancellable fixed-interval ticker.

    Sleeps ``interval`` seconds, runs the callback, repeats until ``stop``.
    ``run_once`` executes a single tick so tests can drive time themselves.
    """

    def __init__(self, name: str, interval: float, callback: TaskCallback):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.callback = callback
        self.runs = 0
        self.failures = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.is_running:
            logger.warning("Periodic task already running", task=self.name)
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("Periodic task started", task=self.name, interval_seconds=self.interval)

    async def stop(self):
        if self._task is None:
            return

        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Periodic task stopped", task=self.name, runs=self.runs)

    async def run_once(self) -> Any:
        """Run the callback once; errors are logged and swallowed so the loop survives"""
        self.runs += 1
        try:
            result = self.callback()
            if inspect.isawaitable(result):
                result = await result
            return result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            logger.error("Error in periodic task", task=self.name, error=str(e))
            return None

    async def _loop(self):
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()


class BackgroundTaskManager:
    """Owns the cache sweep and the alert evaluator loops"""

    def __init__(
        self,
        cache: CacheService,
        alert_service: AlertService,
        cache_sweep_interval: Optional[float] = None,
        alert_check_interval: Optional[float] = None,
    ):
        self.cache = cache
        self.alert_service = alert_service
        self.tasks: List[PeriodicTask] = [
            PeriodicTask(
                "cache_sweep",
                cache_sweep_interval or settings.CACHE_SWEEP_INTERVAL,
                self._sweep_cache,
            ),
            PeriodicTask(
                "alert_evaluator",
                alert_check_interval or settings.ALERT_CHECK_INTERVAL,
                self.alert_service.check_alerts,
            ),
        ]

    @property
    def is_running(self) -> bool:
        return any(task.is_running for task in self.tasks)

    async def start(self):
        """Start all background tasks"""
        if self.is_running:
            logger.warning("Background tasks already running")
            return

        logger.info("Starting background tasks", task_count=len(self.tasks))
        for task in self.tasks:
            task.start()

    async def stop(self):
        """Stop all background tasks"""
        if not self.is_running:
            return

        logger.info("Stopping background tasks")
        await asyncio.gather(*(task.stop() for task in self.tasks))

    def get_task(self, name: str) -> Optional[PeriodicTask]:
        return next((task for task in self.tasks if task.name == name), None)

    def status(self) -> Dict[str, Dict[str, Any]]:
        return {
            task.name: {
                "running": task.is_running,
                "interval_seconds": task.interval,
                "runs": task.runs,
                "failures": task.failures,
            }
            for task in self.tasks
        }

    def _sweep_cache(self) -> int:
        evicted = self.cache.sweep()
        logger.info("cache_swept", evicted=evicted, remaining=len(self.cache))
        return evicted
