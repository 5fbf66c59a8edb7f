"""内存存储实现，用于测试和无数据库的运行方式"""

from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from .base import MonitorStore
from ..models.monitor import Project, ProbeResult, ProjectState, ChannelConfig


class MemoryStore(MonitorStore):
    """进程内存中的监控数据存储"""

    def __init__(self):
        self._projects: Dict[str, Project] = {}
        self._states: Dict[str, ProjectState] = {}
        self._history: Dict[str, List[ProbeResult]] = {}
        self._channels: Dict[str, ChannelConfig] = {}

    async def list_projects(self, enabled_only: bool = False) -> List[Project]:
        projects = list(self._projects.values())
        if enabled_only:
            projects = [p for p in projects if p.enabled]
        return projects

    async def get_project(self, project_id: str) -> Optional[Project]:
        return self._projects.get(project_id)

    async def upsert_project(self, project: Project) -> None:
        self._projects[project.id] = project

    async def get_state(self, project_id: str) -> Optional[ProjectState]:
        state = self._states.get(project_id)
        # 返回副本，调用方修改不影响已存储的行
        return replace(state) if state else None

    async def upsert_state(self, state: ProjectState) -> None:
        self._states[state.project_id] = replace(state)

    async def append_probe(self, result: ProbeResult) -> None:
        self._history.setdefault(result.project_id, []).append(result)

    async def get_history(self, project_id: str, since: Optional[datetime] = None,
                          limit: Optional[int] = None) -> List[ProbeResult]:
        rows = self._history.get(project_id, [])
        if since is not None:
            rows = [r for r in rows if r.timestamp >= since]
        rows = sorted(rows, key=lambda r: r.timestamp, reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def count_probes(self, project_id: str) -> int:
        return len(self._history.get(project_id, []))

    async def get_channel_settings(self) -> Dict[str, ChannelConfig]:
        return {k: replace(v, options=dict(v.options)) for k, v in self._channels.items()}

    async def upsert_channel_settings(self, config: ChannelConfig) -> None:
        self._channels[config.channel_type] = replace(config, options=dict(config.options))
