"""状态跟踪器

负责保存每个项目最后已知的状态，比较新的探测结果，
在状态变化时生成 TransitionEvent，并追加探测历史。
"""

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Any

from ..models.monitor import (
    Project, ProbeResult, ProjectState, ProjectStatus, TransitionEvent
)
from ..storage.base import MonitorStore
from ..utils.exceptions import PersistenceError, ErrorCode
from ..utils.log_manager import get_logger


class StatusTracker:
    """状态跟踪器

    同一项目的写入通过项目级 asyncio.Lock 串行化。
    持久化失败以 PersistenceError 抛出，只影响该项目本轮，不在内部重试。
    """

    def __init__(self, store: MonitorStore):
        """
        Args:
            store: 监控数据存储
        """
        self.store = store
        self._locks: Dict[str, asyncio.Lock] = {}
        self.logger = get_logger('status_tracker')

    def _lock_for(self, project_id: str) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[project_id] = lock
        return lock

    async def record(self, project_id: str, result: ProbeResult,
                     project: Optional[Project] = None) -> Optional[TransitionEvent]:
        """
        记录一次探测结果

        Args:
            project_id: 项目ID
            result: 新的探测结果
            project: 项目信息，用于在事件中带上名称和地址

        Returns:
            状态发生变化时返回 TransitionEvent，否则返回 None

        Raises:
            PersistenceError: 读取状态、追加历史或写入状态失败
        """
        if result.project_id != project_id:
            result = result.for_project(project_id)

        async with self._lock_for(project_id):
            try:
                state = await self.store.get_state(project_id)
            except Exception as e:
                raise PersistenceError(
                    f"读取项目状态失败: {project_id}",
                    ErrorCode.STATE_READ_ERROR,
                    project_id=project_id,
                    operation='get_state',
                    cause=e
                ) from e

            if state is None:
                state = ProjectState.initial(project_id)

            try:
                await self.store.append_probe(result)
            except Exception as e:
                raise PersistenceError(
                    f"追加探测历史失败: {project_id}",
                    ErrorCode.HISTORY_APPEND_ERROR,
                    project_id=project_id,
                    operation='append_probe',
                    cause=e
                ) from e

            previous_status = state.last_status
            new_status = ProjectStatus.from_outcome(result.outcome)

            new_state = replace(
                state,
                last_status=new_status,
                last_checked=result.timestamp,
                consecutive_failures=0 if result.is_success else state.consecutive_failures + 1
            )

            try:
                await self.store.upsert_state(new_state)
            except Exception as e:
                raise PersistenceError(
                    f"写入项目状态失败: {project_id}",
                    ErrorCode.STATE_WRITE_ERROR,
                    project_id=project_id,
                    operation='upsert_state',
                    cause=e
                ) from e

        if previous_status == new_status:
            self.logger.debug(
                f"项目 {project_id} 状态未变化: {new_status.value}"
                f" (连续失败 {new_state.consecutive_failures} 次)"
            )
            return None

        event = TransitionEvent(
            project_id=project_id,
            previous_status=previous_status,
            new_status=new_status,
            timestamp=result.timestamp,
            latency_ms=result.latency_ms,
            project_name=project.name if project else None,
            project_url=project.url if project else result.url,
            error_message=result.error_message
        )
        self.logger.warning(
            f"项目 {project_id} 状态变化: {previous_status.value} -> {new_status.value}"
        )
        return event

    async def get_state(self, project_id: str) -> ProjectState:
        """获取项目当前状态，从未检测过的项目返回 unknown"""
        try:
            state = await self.store.get_state(project_id)
        except Exception as e:
            raise PersistenceError(
                f"读取项目状态失败: {project_id}",
                ErrorCode.STATE_READ_ERROR,
                project_id=project_id,
                operation='get_state',
                cause=e
            ) from e
        return state or ProjectState.initial(project_id)

    async def get_history(self, project_id: str, since: Optional[datetime] = None,
                          limit: Optional[int] = None) -> List[ProbeResult]:
        """
        获取探测历史

        Args:
            project_id: 项目ID
            since: 只返回此时间之后的记录
            limit: 最多返回的条数

        Returns:
            按时间倒序排列的探测结果
        """
        return await self.store.get_history(project_id, since=since, limit=limit)

    async def get_project_stats(self, project_id: str, since: Optional[datetime] = None) -> Dict[str, Any]:
        """
        获取项目统计信息

        Args:
            project_id: 项目ID
            since: 统计起始时间，为 None 时统计全部历史

        Returns:
            包含探测次数、可用率和平均延迟的字典
        """
        history = await self.store.get_history(project_id, since=since)
        state = await self.get_state(project_id)

        total = len(history)
        successful = sum(1 for r in history if r.is_success)
        latencies = [r.latency_ms for r in history if r.is_success and r.latency_ms is not None]

        return {
            'project_id': project_id,
            'current_status': state.last_status.value,
            'last_checked': state.last_checked.isoformat() if state.last_checked else None,
            'consecutive_failures': state.consecutive_failures,
            'total_probes': total,
            'successful_probes': successful,
            'failed_probes': total - successful,
            'uptime_percentage': (successful / total * 100) if total > 0 else 0,
            'average_latency_ms': (sum(latencies) / len(latencies)) if latencies else None,
        }
