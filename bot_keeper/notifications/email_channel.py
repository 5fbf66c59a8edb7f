"""邮件通知渠道"""

import re
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Dict, Any, List

import aiosmtplib

from .base import BaseChannel, STATUS_LABELS
from .registry import register_channel
from ..models.monitor import ChannelConfig, TransitionEvent
from ..utils.exceptions import ChannelDeliveryError
from ..utils.log_manager import get_logger

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


@dataclass(frozen=True)
class EmailPayload:
    subject: str
    body: str


def split_recipients(destination: str) -> List[str]:
    return [addr.strip() for addr in destination.split(',') if addr.strip()]


@register_channel('email')
class EmailChannel(BaseChannel):
    """通过 SMTP 发送状态变化邮件

    SMTP 参数来自 options（配置文件的 smtp 段）。未配置 SMTP 时
    只记录日志并返回 False。
    """

    destination_field = 'email_address'

    def __init__(self, options: Dict[str, Any] = None):
        super().__init__(options)
        self.logger = get_logger(f'channel.{self.channel_type}')

        self.smtp_server = self.options.get('smtp_server', '')
        self.smtp_port = self.options.get('smtp_port', 587)
        self.username = self.options.get('username', '')
        self.password = self.options.get('password', '')
        self.use_tls = self.options.get('use_tls', True)
        self.use_ssl = self.options.get('use_ssl', False)
        self.from_email = self.options.get('from_email', self.username or 'notifications@botkeeper.app')
        self.from_name = self.options.get('from_name', 'Bot Keeper')

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_server)

    def validate_destination(self, destination: str) -> bool:
        recipients = split_recipients(destination or '')
        return bool(recipients) and all(EMAIL_PATTERN.match(addr) for addr in recipients)

    def build_payload(self, event: TransitionEvent, config: ChannelConfig) -> EmailPayload:
        status = STATUS_LABELS[event.new_status]
        name = event.display_name

        prefix = '[Bot Keeper Test]' if event.is_test else '[Bot Keeper]'
        subject = f"{prefix} {name} is {status}"

        lines = [
            f"{name} is {status}",
            '',
            f"URL: {event.project_url or '-'}",
            f"Status change: {self.describe_transition(event)}",
            f"Time: {event.timestamp.strftime('%Y-%m-%d %H:%M:%S %Z')}",
        ]
        if event.latency_ms is not None and event.is_up:
            lines.append(f"Response time: {event.latency_ms}ms")
        if event.error_message and event.is_down:
            lines.append(f"Error: {event.error_message}")
        if event.is_test:
            lines += ['', 'This is a test notification sent from the notification settings.']
        lines += ['', '---', 'This message was sent automatically by Bot Keeper.']

        return EmailPayload(subject=subject, body='\n'.join(lines))

    async def deliver(self, destination: str, payload: Any) -> bool:
        """
        发送邮件

        Args:
            destination: 收件人，多个地址用逗号分隔
            payload: EmailPayload

        Returns:
            bool: 发送是否成功
        """
        recipients = split_recipients(destination or '')
        if not self.smtp_configured:
            self.logger.warning(f"未配置 SMTP，邮件未发送: {payload.subject} -> {', '.join(recipients)}")
            return False

        message = MIMEMultipart()
        message['From'] = formataddr((self.from_name, self.from_email))
        message['To'] = ', '.join(recipients)
        message['Subject'] = payload.subject
        message.attach(MIMEText(payload.body, 'plain', 'utf-8'))

        smtp_kwargs = {
            'hostname': self.smtp_server,
            'port': self.smtp_port,
            'timeout': self.get_timeout(),
        }
        if self.use_ssl:
            smtp_kwargs['use_tls'] = True
        elif self.use_tls:
            smtp_kwargs['start_tls'] = True
        if self.username:
            smtp_kwargs['username'] = self.username
            smtp_kwargs['password'] = self.password

        try:
            await aiosmtplib.send(message, recipients=recipients, **smtp_kwargs)
        except aiosmtplib.SMTPException as e:
            self.logger.error(f"SMTP发送失败: {e}")
            raise ChannelDeliveryError(f"SMTP发送失败: {e}", channel_type=self.channel_type, cause=e)

        self.logger.info(f"邮件发送成功: {self.from_email} -> {', '.join(recipients)}")
        return True
