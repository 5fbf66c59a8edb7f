"""监控相关的数据模型"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional, List


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProbeOutcome(str, Enum):
    """单次探测结果"""
    SUCCESS = 'success'
    FAILURE = 'failure'


class ProjectStatus(str, Enum):
    """项目状态，UNKNOWN 仅表示从未检测过"""
    ONLINE = 'online'
    OFFLINE = 'offline'
    UNKNOWN = 'unknown'

    @classmethod
    def from_outcome(cls, outcome: ProbeOutcome) -> 'ProjectStatus':
        return cls.ONLINE if outcome == ProbeOutcome.SUCCESS else cls.OFFLINE


class ProbeErrorType(str, Enum):
    """探测失败分类"""
    VALIDATION = 'validation'
    TIMEOUT = 'timeout'
    CONNECTION = 'connection'
    PROTOCOL = 'protocol'


@dataclass(frozen=True)
class Project:
    """被监控的项目"""
    id: str
    url: str
    name: str
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Project':
        return cls(
            id=str(data['id']),
            url=str(data['url']),
            name=str(data.get('name') or data['id']),
            enabled=bool(data.get('enabled', True))
        )

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'url': self.url, 'name': self.name, 'enabled': self.enabled}


@dataclass(frozen=True)
class ProbeResult:
    """探测结果，创建后不可变，只追加到历史记录"""
    url: str
    outcome: ProbeOutcome
    project_id: Optional[str] = None
    status_code: Optional[int] = None
    latency_ms: Optional[int] = None
    error_message: Optional[str] = None
    error_type: Optional[ProbeErrorType] = None
    method: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def is_success(self) -> bool:
        return self.outcome == ProbeOutcome.SUCCESS

    @property
    def is_validation_error(self) -> bool:
        return self.error_type == ProbeErrorType.VALIDATION

    def for_project(self, project_id: str) -> 'ProbeResult':
        """返回绑定到指定项目的副本"""
        return ProbeResult(
            url=self.url,
            outcome=self.outcome,
            project_id=project_id,
            status_code=self.status_code,
            latency_ms=self.latency_ms,
            error_message=self.error_message,
            error_type=self.error_type,
            method=self.method,
            timestamp=self.timestamp
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'project_id': self.project_id,
            'url': self.url,
            'outcome': self.outcome.value,
            'status_code': self.status_code,
            'latency_ms': self.latency_ms,
            'error_message': self.error_message,
            'error_type': self.error_type.value if self.error_type else None,
            'method': self.method,
            'timestamp': self.timestamp.isoformat()
        }


@dataclass
class ProjectState:
    """项目当前状态，每个项目只有一份，每轮检测覆盖写入"""
    project_id: str
    last_status: ProjectStatus = ProjectStatus.UNKNOWN
    last_checked: Optional[datetime] = None
    consecutive_failures: int = 0

    @classmethod
    def initial(cls, project_id: str) -> 'ProjectState':
        return cls(project_id=project_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'project_id': self.project_id,
            'last_status': self.last_status.value,
            'last_checked': self.last_checked.isoformat() if self.last_checked else None,
            'consecutive_failures': self.consecutive_failures
        }


@dataclass(frozen=True)
class TransitionEvent:
    """状态变化事件，由分发器消费一次，不单独持久化"""
    project_id: str
    previous_status: ProjectStatus
    new_status: ProjectStatus
    timestamp: datetime = field(default_factory=utc_now)
    latency_ms: Optional[int] = None
    project_name: Optional[str] = None
    project_url: Optional[str] = None
    error_message: Optional[str] = None
    is_test: bool = False

    @property
    def is_up(self) -> bool:
        return self.new_status == ProjectStatus.ONLINE

    @property
    def is_down(self) -> bool:
        return self.new_status == ProjectStatus.OFFLINE

    @property
    def display_name(self) -> str:
        return self.project_name or self.project_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            'project_id': self.project_id,
            'project_name': self.project_name,
            'project_url': self.project_url,
            'previous_status': self.previous_status.value,
            'new_status': self.new_status.value,
            'timestamp': self.timestamp.isoformat(),
            'latency_ms': self.latency_ms,
            'error_message': self.error_message,
            'is_test': self.is_test
        }


@dataclass
class ChannelConfig:
    """单个通知渠道的配置，一次分发期间只读"""
    channel_type: str
    enabled: bool = False
    destination: str = ''
    display_name: Optional[str] = None
    notify_on_up: bool = True
    notify_on_down: bool = True
    options: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_configured(self) -> bool:
        return bool(self.destination and str(self.destination).strip())

    def allows(self, event: TransitionEvent) -> bool:
        """按方向过滤：恢复或宕机"""
        if event.is_up:
            return self.notify_on_up
        if event.is_down:
            return self.notify_on_down
        return True

    @classmethod
    def from_settings(cls, channel_type: str, settings: Dict[str, Any],
                      destination_field: str) -> 'ChannelConfig':
        """从设置字典构造

        同时接受两种写法：
        - 扁平写法 ``{webhook_enabled, webhook_url}``（设置表、测试接口）
        - 配置文件写法 ``{enabled, destination}``
        """
        enabled = settings.get(f'{channel_type}_enabled', settings.get('enabled', False))
        destination = settings.get(destination_field, settings.get('destination')) or ''
        known = {
            f'{channel_type}_enabled', 'enabled', destination_field, 'destination',
            'display_name', 'notify_on_up', 'notify_on_down'
        }
        return cls(
            channel_type=channel_type,
            enabled=bool(enabled),
            destination=str(destination).strip(),
            display_name=settings.get('display_name'),
            notify_on_up=bool(settings.get('notify_on_up', True)),
            notify_on_down=bool(settings.get('notify_on_down', True)),
            options={k: v for k, v in settings.items() if k not in known}
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'channel_type': self.channel_type,
            'enabled': self.enabled,
            'destination': self.destination,
            'display_name': self.display_name,
            'notify_on_up': self.notify_on_up,
            'notify_on_down': self.notify_on_down,
            'options': dict(self.options)
        }


class DeliveryStatus(str, Enum):
    """渠道分发结果"""
    DELIVERED = 'delivered'
    FAILED = 'failed'
    CONFIG_ERROR = 'config_error'
    FILTERED = 'filtered'


@dataclass
class ChannelOutcome:
    """单个渠道的分发结果"""
    channel_type: str
    status: DeliveryStatus
    error: Optional[str] = None

    @property
    def attempted(self) -> bool:
        return self.status in (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {'status': self.status.value, 'error': self.error}


@dataclass
class DispatchResult:
    """一次分发的汇总结果

    success 表示每个已启用且配置完整的渠道都尝试过发送，
    并不要求全部发送成功。
    """
    success: bool
    outcomes: Dict[str, ChannelOutcome] = field(default_factory=dict)

    @property
    def delivered(self) -> List[str]:
        return [name for name, o in self.outcomes.items()
                if o.status == DeliveryStatus.DELIVERED]

    @property
    def failed(self) -> List[str]:
        return [name for name, o in self.outcomes.items()
                if o.status != DeliveryStatus.DELIVERED and o.status != DeliveryStatus.FILTERED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'channels': {name: o.to_dict() for name, o in self.outcomes.items()}
        }


@dataclass
class ProjectCycleResult:
    """单个项目一轮检测的结果"""
    project_id: str
    probe: Optional[ProbeResult] = None
    transition: Optional[TransitionEvent] = None
    dispatch: Optional[DispatchResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'project_id': self.project_id,
            'ok': self.ok,
            'outcome': self.probe.outcome.value if self.probe else None,
            'latency_ms': self.probe.latency_ms if self.probe else None,
            'transition': self.transition.to_dict() if self.transition else None,
            'dispatch': self.dispatch.to_dict() if self.dispatch else None,
            'error': self.error
        }


@dataclass
class TickReport:
    """一次触发的汇总结果"""
    trigger: str
    timestamp: datetime = field(default_factory=utc_now)
    results: List[ProjectCycleResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def transitions(self) -> List[TransitionEvent]:
        return [r.transition for r in self.results if r.transition is not None]

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'success': self.success,
            'timestamp': self.timestamp.isoformat(),
            'trigger': self.trigger,
            'checked': len(self.results),
            'transitions': len(self.transitions),
            'failed_projects': [r.project_id for r in self.results if not r.ok],
        }
        if self.error:
            data['error'] = self.error
        return data
