"""通知渠道注册表"""

from typing import Any, Dict, List, Optional, Type

from .base import BaseChannel
from ..utils.exceptions import ValidationError, ErrorCode, ChannelError


class ChannelRegistry:
    """通知渠道注册表，按渠道类型管理渠道实现"""

    def __init__(self):
        self._channels: Dict[str, Type[BaseChannel]] = {}

    def register(self, channel_type: str, channel_class: Type[BaseChannel]):
        """
        注册渠道类

        Args:
            channel_type: 渠道类型名称
            channel_class: 渠道实现类

        Raises:
            ChannelError: 类型不合法或重复注册
        """
        if not issubclass(channel_class, BaseChannel):
            raise ChannelError(f"渠道类 {channel_class.__name__} 必须继承自 BaseChannel")

        if channel_type in self._channels:
            raise ChannelError(f"渠道类型 '{channel_type}' 已经注册")

        channel_class.channel_type = channel_type
        self._channels[channel_type] = channel_class

    def unregister(self, channel_type: str):
        self._channels.pop(channel_type, None)

    def create(self, channel_type: str, options: Optional[Dict[str, Any]] = None) -> BaseChannel:
        """
        创建渠道实例

        Raises:
            ValidationError: 渠道类型不支持
        """
        return self.get_channel_class(channel_type)(options)

    def get_channel_class(self, channel_type: str) -> Type[BaseChannel]:
        if not self.is_type_supported(channel_type):
            raise ValidationError(
                f"不支持的通知渠道类型: '{channel_type}'",
                ErrorCode.INVALID_CHANNEL_TYPE,
                field='type'
            )
        return self._channels[channel_type]

    def get_supported_types(self) -> List[str]:
        return list(self._channels.keys())

    def is_type_supported(self, channel_type: str) -> bool:
        return isinstance(channel_type, str) and channel_type in self._channels


# 全局注册表实例
channel_registry = ChannelRegistry()


def register_channel(channel_type: str):
    """
    装饰器：注册通知渠道类

    Args:
        channel_type: 渠道类型名称
    """
    def decorator(channel_class: Type[BaseChannel]):
        channel_registry.register(channel_type, channel_class)
        return channel_class

    return decorator
