"""监控流水线

所有触发源（HTTP 端点、后备定时器、保活客户端、命令行）共用的入口：
探测 -> 状态跟踪（比较并持久化）-> 状态变化时分发通知。
"""

import asyncio
from datetime import datetime
from typing import Dict, Any, Iterable, List, Optional

from ..models.monitor import (
    Project, ChannelConfig, ProjectCycleResult, TickReport, ProbeResult
)
from ..notifications.dispatcher import NotificationDispatcher
from ..probes.http_prober import HttpProber
from ..storage.base import MonitorStore
from ..utils.cache import LRUCache
from ..utils.exceptions import PersistenceError, ErrorCode
from ..utils.log_manager import get_logger
from .status_tracker import StatusTracker

_CHANNEL_SETTINGS_KEY = 'channel_settings'


class MonitorPipeline:
    """监控流水线

    触发不做去重，重复触发只会多写几条历史记录；
    是否发送通知完全由状态跟踪器的比较结果决定。
    """

    def __init__(self, store: MonitorStore, prober: HttpProber,
                 dispatcher: NotificationDispatcher,
                 tracker: Optional[StatusTracker] = None,
                 max_concurrent_probes: int = 10,
                 settings_cache_size: int = 8):
        """
        Args:
            store: 监控数据存储
            prober: HTTP 探测器
            dispatcher: 通知分发器
            tracker: 状态跟踪器，默认基于 store 创建
            max_concurrent_probes: 一次触发内同时探测的项目数上限
            settings_cache_size: 渠道设置缓存容量
        """
        if max_concurrent_probes <= 0:
            raise ValueError("max_concurrent_probes 必须是正整数")

        self.store = store
        self.prober = prober
        self.dispatcher = dispatcher
        self.tracker = tracker or StatusTracker(store)
        self.max_concurrent_probes = max_concurrent_probes
        self._settings_cache: LRUCache[Dict[str, ChannelConfig]] = LRUCache(settings_cache_size)
        self.logger = get_logger('pipeline')

        self.tick_count = 0
        self.last_tick: Optional[TickReport] = None

    async def run_tick(self, trigger: str = 'manual') -> TickReport:
        """
        对所有启用的项目执行一轮检测

        Args:
            trigger: 触发来源，仅用于日志

        Returns:
            TickReport: 本轮汇总；加载项目列表失败时 error 非空
        """
        report = TickReport(trigger=trigger)
        self.tick_count += 1
        self.logger.info(f"开始第 {self.tick_count} 轮检测 (触发来源: {trigger})")

        try:
            projects = await self.store.list_projects(enabled_only=True)
        except Exception as e:
            report.error = f"加载项目列表失败: {e}"
            self.logger.error(report.error)
            self.last_tick = report
            return report

        if projects:
            semaphore = asyncio.Semaphore(self.max_concurrent_probes)

            async def bounded(project: Project) -> ProjectCycleResult:
                async with semaphore:
                    return await self.check_project(project)

            report.results = list(await asyncio.gather(*(bounded(p) for p in projects)))

        failed = [r.project_id for r in report.results if not r.ok]
        self.logger.info(
            f"第 {self.tick_count} 轮检测完成: 项目 {len(report.results)} 个, "
            f"状态变化 {len(report.transitions)} 个, 失败 {len(failed)} 个"
        )
        self.last_tick = report
        return report

    async def check_project(self, project: Project, notify: bool = True) -> ProjectCycleResult:
        """
        对单个项目执行一轮：探测、记录、必要时通知

        持久化失败只中止本项目，不影响同一轮的其他项目。
        notify 为 False 时状态变化照常记录，但不分发通知。
        """
        cycle = ProjectCycleResult(project_id=project.id)

        cycle.probe = await self.prober.probe(project.url, project_id=project.id)

        try:
            cycle.transition = await self.tracker.record(project.id, cycle.probe, project=project)
        except PersistenceError as e:
            cycle.error = e.format_error()
            self.logger.error(f"项目 {project.id} 本轮检测中止: {cycle.error}")
            return cycle

        if cycle.transition is None or not notify:
            return cycle

        # 状态和历史已提交，之后的通知失败不影响它们
        try:
            configs = await self.get_channel_configs()
        except PersistenceError as e:
            cycle.error = e.format_error()
            self.logger.error(f"项目 {project.id} 读取通知设置失败: {cycle.error}")
            return cycle

        cycle.dispatch = await self.dispatcher.dispatch(cycle.transition, configs)
        return cycle

    async def probe_url(self, url: str) -> ProbeResult:
        """临时探测，不写入历史"""
        return await self.prober.probe(url)

    async def get_channel_configs(self) -> Dict[str, ChannelConfig]:
        """获取渠道设置，结果缓存到下一次设置更新"""
        cached = self._settings_cache.get(_CHANNEL_SETTINGS_KEY)
        if cached is not None:
            return cached

        try:
            configs = await self.store.get_channel_settings()
        except Exception as e:
            raise PersistenceError(
                "读取通知设置失败",
                ErrorCode.SETTINGS_ERROR,
                operation='get_channel_settings',
                cause=e
            ) from e

        self._settings_cache.set(_CHANNEL_SETTINGS_KEY, configs)
        return configs

    async def update_channel_settings(self, config: ChannelConfig) -> None:
        """写入一个渠道的设置并使缓存失效"""
        try:
            await self.store.upsert_channel_settings(config)
        except Exception as e:
            raise PersistenceError(
                f"保存通知设置失败: {config.channel_type}",
                ErrorCode.SETTINGS_ERROR,
                operation='upsert_channel_settings',
                cause=e
            ) from e
        finally:
            self._settings_cache.invalidate(_CHANNEL_SETTINGS_KEY)

        self.logger.info(f"通知渠道 {config.channel_type} 设置已更新 (启用: {config.enabled})")

    async def sync_config(self, projects: Iterable[Project],
                          channels: Iterable[ChannelConfig] = ()) -> None:
        """
        把配置文件中的项目和渠道设置同步到存储

        配置文件中不再出现的项目会被置为停用，历史记录保留。
        """
        projects = list(projects)
        configured_ids = {p.id for p in projects}

        for project in projects:
            await self.store.upsert_project(project)

        for existing in await self.store.list_projects():
            if existing.id not in configured_ids and existing.enabled:
                await self.store.upsert_project(
                    Project(id=existing.id, url=existing.url, name=existing.name, enabled=False)
                )
                self.logger.info(f"项目 {existing.id} 已从配置中移除，停止监控")

        for channel in channels:
            await self.update_channel_settings(channel)

        self.logger.info(f"配置已同步: 项目 {len(projects)} 个")

    async def get_history(self, project_id: str, since: Optional[datetime] = None,
                          limit: Optional[int] = None) -> List[ProbeResult]:
        return await self.tracker.get_history(project_id, since=since, limit=limit)

    def get_status(self) -> Dict[str, Any]:
        """获取流水线运行信息"""
        return {
            'tick_count': self.tick_count,
            'last_tick': self.last_tick.to_dict() if self.last_tick else None,
            'max_concurrent_probes': self.max_concurrent_probes,
        }
