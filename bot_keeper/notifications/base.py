"""通知渠道基类"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from ..models.monitor import ChannelConfig, TransitionEvent, ProjectStatus

STATUS_LABELS = {
    ProjectStatus.ONLINE: 'UP',
    ProjectStatus.OFFLINE: 'DOWN',
    ProjectStatus.UNKNOWN: 'UNKNOWN',
}


class BaseChannel(ABC):
    """通知渠道抽象基类

    所有渠道遵循同一个约定：deliver(destination, payload) -> bool。
    网络层异常可以抛出，由分发器捕获并记录。
    """

    channel_type: str = ''
    # 设置字典里保存目标地址的字段名，例如 webhook_url
    destination_field: str = 'destination'

    def __init__(self, options: Optional[Dict[str, Any]] = None):
        """
        Args:
            options: 渠道级别的附加配置，例如超时时间、SMTP 参数
        """
        self.options = options or {}

    @abstractmethod
    def build_payload(self, event: TransitionEvent, config: ChannelConfig) -> Any:
        """
        根据状态变化事件构造渠道消息

        Args:
            event: 状态变化事件
            config: 渠道配置

        Returns:
            渠道专用的消息体
        """
        pass

    @abstractmethod
    async def deliver(self, destination: str, payload: Any) -> bool:
        """
        发送消息

        Args:
            destination: 目标地址
            payload: build_payload 返回的消息体

        Returns:
            bool: 发送是否成功
        """
        pass

    def validate_destination(self, destination: str) -> bool:
        """目标地址是否可用，默认只要求非空"""
        return bool(destination and destination.strip())

    def get_timeout(self) -> float:
        """
        获取超时时间配置

        Returns:
            float: 超时时间（秒）
        """
        return float(self.options.get('timeout', 10))

    @staticmethod
    def describe_transition(event: TransitionEvent) -> str:
        """生成一行变化描述，例如 "UNKNOWN -> UP" """
        return f"{STATUS_LABELS[event.previous_status]} -> {STATUS_LABELS[event.new_status]}"
