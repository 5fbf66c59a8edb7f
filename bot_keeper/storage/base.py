"""监控数据存储抽象基类"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from ..models.monitor import Project, ProbeResult, ProjectState, ChannelConfig


class MonitorStore(ABC):
    """监控数据存储

    四类数据：
    - 项目表
    - 探测历史（按项目和时间，只插入）
    - 项目当前状态（每个项目一行，覆盖写入）
    - 通知渠道设置（每个渠道类型一行，覆盖写入）
    """

    async def initialize(self) -> None:
        """建表或准备资源，默认无操作"""

    @abstractmethod
    async def list_projects(self, enabled_only: bool = False) -> List[Project]:
        pass

    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[Project]:
        pass

    @abstractmethod
    async def upsert_project(self, project: Project) -> None:
        pass

    @abstractmethod
    async def get_state(self, project_id: str) -> Optional[ProjectState]:
        pass

    @abstractmethod
    async def upsert_state(self, state: ProjectState) -> None:
        pass

    @abstractmethod
    async def append_probe(self, result: ProbeResult) -> None:
        pass

    @abstractmethod
    async def get_history(self, project_id: str, since: Optional[datetime] = None,
                          limit: Optional[int] = None) -> List[ProbeResult]:
        """按时间倒序返回探测历史"""

    @abstractmethod
    async def count_probes(self, project_id: str) -> int:
        pass

    @abstractmethod
    async def get_channel_settings(self) -> Dict[str, ChannelConfig]:
        pass

    @abstractmethod
    async def upsert_channel_settings(self, config: ChannelConfig) -> None:
        pass

    async def close(self) -> None:
        """释放资源，默认无操作"""
