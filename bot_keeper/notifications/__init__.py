"""通知模块

导入各渠道模块以完成注册。
"""

from .base import BaseChannel
from .registry import ChannelRegistry, channel_registry, register_channel
from .webhook_channel import WebhookChannel
from .chat_channel import ChatChannel
from .email_channel import EmailChannel, EmailPayload
from .dispatcher import NotificationDispatcher

__all__ = [
    'BaseChannel', 'ChannelRegistry', 'channel_registry', 'register_channel',
    'WebhookChannel', 'ChatChannel', 'EmailChannel', 'EmailPayload',
    'NotificationDispatcher'
]
