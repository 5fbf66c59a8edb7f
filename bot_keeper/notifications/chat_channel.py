"""聊天平台 Embed 通知渠道（Discord 风格的 webhook）"""

from typing import Dict, Any, List

from .base import STATUS_LABELS
from .registry import register_channel
from .webhook_channel import WebhookChannel
from ..models.monitor import ChannelConfig, TransitionEvent

COLOR_UP = 3066993       # 绿色
COLOR_DOWN = 15158332    # 红色
COLOR_NEUTRAL = 10070709  # 灰色

BOT_USERNAME = 'Bot Keeper'
FOOTER_TEXT = 'Bot Keeper Monitoring'


def embed_color(event: TransitionEvent) -> int:
    if event.is_up:
        return COLOR_UP
    if event.is_down:
        return COLOR_DOWN
    return COLOR_NEUTRAL


@register_channel('chat')
class ChatChannel(WebhookChannel):
    """发送结构化 embed 到聊天平台 webhook"""

    destination_field = 'chat_webhook_url'

    def build_payload(self, event: TransitionEvent, config: ChannelConfig) -> Dict[str, Any]:
        status = STATUS_LABELS[event.new_status]
        name = event.display_name

        if event.is_up:
            description = f"**{name}** is now UP and responding normally."
        elif event.is_down:
            description = f"**{name}** is DOWN and not responding."
        else:
            description = f"**{name}** status is {status}."

        fields: List[Dict[str, Any]] = [
            {'name': 'Website', 'value': event.project_url or '-', 'inline': True},
            {'name': 'Previous Status', 'value': STATUS_LABELS[event.previous_status], 'inline': True},
        ]
        if event.is_up and event.latency_ms is not None:
            fields.append({'name': 'Response Time', 'value': f"{event.latency_ms}ms", 'inline': True})
        if event.is_down and event.error_message:
            fields.append({'name': 'Error', 'value': event.error_message[:1024], 'inline': False})

        title = f"Status Change: {status}"
        if event.is_test:
            title = f"[Test] {title}"

        embed = {
            'title': title,
            'description': description,
            'url': event.project_url,
            'color': embed_color(event),
            'fields': fields,
            'timestamp': event.timestamp.isoformat(),
            'footer': {'text': FOOTER_TEXT},
        }

        return {
            'username': config.display_name or BOT_USERNAME,
            'content': f"{name} is {status}",
            'embeds': [embed],
        }
