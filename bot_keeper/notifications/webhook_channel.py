"""通用 Webhook 通知渠道"""

import asyncio
import json
from typing import Dict, Any
from urllib.parse import urlparse

import aiohttp

from .base import BaseChannel, STATUS_LABELS
from .registry import register_channel
from ..models.monitor import ChannelConfig, TransitionEvent
from ..utils.exceptions import ChannelConfigError, ChannelDeliveryError
from ..utils.log_manager import get_logger


def is_http_url(url: str) -> bool:
    """是否为 http/https 地址"""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


@register_channel('webhook')
class WebhookChannel(BaseChannel):
    """通过 HTTP POST 把状态变化推送到任意地址"""

    destination_field = 'webhook_url'

    def __init__(self, options: Dict[str, Any] = None):
        super().__init__(options)
        self.content_type = self.options.get('content_type', 'application/json')
        self.headers = dict(self.options.get('headers', {}))
        self.logger = get_logger(f'channel.{self.channel_type}')

    def validate_destination(self, destination: str) -> bool:
        return bool(destination) and is_http_url(destination)

    def build_payload(self, event: TransitionEvent, config: ChannelConfig) -> Dict[str, Any]:
        return {
            'project': event.display_name,
            'projectId': event.project_id,
            'url': event.project_url,
            'status': STATUS_LABELS[event.new_status],
            'previousStatus': STATUS_LABELS[event.previous_status],
            'responseTime': event.latency_ms,
            'error': event.error_message,
            'test': event.is_test,
            'timestamp': event.timestamp.isoformat(),
        }

    async def deliver(self, destination: str, payload: Any) -> bool:
        """
        POST 消息到目标地址

        Args:
            destination: 目标 URL，必须是 http/https
            payload: 消息体

        Returns:
            bool: 收到 2xx 响应时返回 True

        Raises:
            ChannelConfigError: 目标地址不是 http/https
            ChannelDeliveryError: 网络错误或超时
        """
        if not self.validate_destination(destination):
            raise ChannelConfigError(f"Webhook 地址无效: {destination}", channel_type=self.channel_type)

        request_kwargs = self._prepare_request(payload)
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(destination, **request_kwargs) as response:
                    if 200 <= response.status < 300:
                        self.logger.debug(f"{self.channel_type} 发送成功 (状态码: {response.status})")
                        return True

                    response_text = await response.text()
                    self.logger.warning(
                        f"{self.channel_type} 收到错误响应 "
                        f"(状态码: {response.status}, 响应: {response_text[:200]})"
                    )
                    return False

        except aiohttp.ClientError as e:
            self.logger.error(f"{self.channel_type} 网络请求失败: {e}")
            raise ChannelDeliveryError(f"HTTP请求失败: {e}", channel_type=self.channel_type, cause=e)
        except asyncio.TimeoutError as e:
            self.logger.error(f"{self.channel_type} 请求超时")
            raise ChannelDeliveryError("HTTP请求超时", channel_type=self.channel_type, cause=e)

    def _prepare_request(self, payload: Any) -> Dict[str, Any]:
        headers = dict(self.headers)
        if self.content_type == 'application/json':
            return {'json': payload, 'headers': headers}

        headers['Content-Type'] = self.content_type
        data = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)
        return {'data': data, 'headers': headers}
