"""后备定时触发器

进程内按固定间隔调用监控流水线，作为外部 cron 之外的兜底。
"""

import asyncio
from typing import Optional

from ..utils.log_manager import get_logger
from .monitor_pipeline import MonitorPipeline

TRIGGER_NAME = 'interval'


class TickScheduler:
    """按固定间隔触发检测"""

    def __init__(self, pipeline: MonitorPipeline, interval: float = 60):
        """
        Args:
            pipeline: 监控流水线
            interval: 触发间隔（秒）
        """
        if interval <= 0:
            raise ValueError("触发间隔必须是正数")
        self.pipeline = pipeline
        self.interval = interval
        self.is_running = False
        self._stop_event: Optional[asyncio.Event] = None
        self.logger = get_logger('tick_scheduler')

    async def start(self):
        """运行定时循环，直到 stop 被调用"""
        if self.is_running:
            self.logger.warning("定时触发器已经在运行")
            return

        self.is_running = True
        self._stop_event = asyncio.Event()
        self.logger.info(f"启动定时触发器，间隔: {self.interval}秒")

        try:
            while self.is_running:
                try:
                    await self.pipeline.run_tick(TRIGGER_NAME)
                except Exception as e:
                    self.logger.error(f"定时检测异常: {e}")

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            self.logger.info("定时触发器被取消")
            raise
        finally:
            self.is_running = False
            self.logger.info("定时触发器已停止")

    async def stop(self):
        """停止定时循环"""
        if not self.is_running:
            return
        self.is_running = False
        if self._stop_event:
            self._stop_event.set()

    def update_interval(self, interval: float):
        if interval <= 0:
            raise ValueError("触发间隔必须是正数")
        old = self.interval
        self.interval = interval
        self.logger.info(f"更新触发间隔: {old}s -> {interval}s")
