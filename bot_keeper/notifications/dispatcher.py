"""通知分发器

把一个状态变化事件并发投递到所有已启用且配置完整的渠道。
单个渠道的失败或超时只记录在该渠道的结果里，不影响其他渠道。
"""

import asyncio
from dataclasses import replace
from typing import Dict, Any, Optional, Tuple

from .base import BaseChannel
from .registry import ChannelRegistry, channel_registry
from ..models.monitor import (
    ChannelConfig, ChannelOutcome, DeliveryStatus, DispatchResult,
    TransitionEvent, ProjectStatus
)
from ..utils.exceptions import BotKeeperError, ValidationError, ErrorCode
from ..utils.log_manager import get_logger

DISPATCH_TIMEOUT = 15.0  # 秒

TEST_PROJECT_ID = 'test-project-id'
TEST_PROJECT_NAME = 'Test Project'
TEST_PROJECT_URL = 'https://example.com'


class NotificationDispatcher:
    """通知分发器"""

    def __init__(self, registry: Optional[ChannelRegistry] = None,
                 channel_options: Optional[Dict[str, Dict[str, Any]]] = None,
                 timeout: float = DISPATCH_TIMEOUT):
        """
        Args:
            registry: 渠道注册表，默认使用全局注册表
            channel_options: 按渠道类型提供的附加配置，例如 {'email': smtp配置}
            timeout: 单个渠道投递的超时时间（秒）
        """
        self.registry = registry or channel_registry
        self.channel_options = channel_options or {}
        self.timeout = timeout
        self.logger = get_logger('dispatcher')

    def _create_channel(self, config: ChannelConfig) -> BaseChannel:
        options = dict(self.channel_options.get(config.channel_type, {}))
        options.update(config.options)
        return self.registry.create(config.channel_type, options)

    async def dispatch(self, event: TransitionEvent,
                       configs: Dict[str, ChannelConfig]) -> DispatchResult:
        """
        分发状态变化事件

        Args:
            event: 状态变化事件
            configs: 当前的渠道配置，按渠道类型索引

        Returns:
            DispatchResult: 每个渠道的结果；未启用的渠道不出现在结果中
        """
        outcomes: Dict[str, ChannelOutcome] = {}
        pending = []

        for channel_type, config in configs.items():
            if not config.enabled:
                continue

            if not self.registry.is_type_supported(channel_type):
                outcomes[channel_type] = self._config_error(channel_type, "不支持的渠道类型")
                continue

            channel = self._create_channel(config)
            if not config.is_configured:
                outcomes[channel_type] = self._config_error(channel_type, "渠道已启用但缺少目标地址")
                continue
            if not channel.validate_destination(config.destination):
                outcomes[channel_type] = self._config_error(
                    channel_type, f"目标地址无效: {config.destination}"
                )
                continue

            if not config.allows(event):
                self.logger.debug(f"渠道 {channel_type} 不接收 {event.new_status.value} 通知，跳过")
                outcomes[channel_type] = ChannelOutcome(channel_type, DeliveryStatus.FILTERED)
                continue

            pending.append(self._deliver_one(channel, config, event))

        attempted_all = True
        if pending:
            results = await asyncio.gather(*pending)
            for outcome, attempted in results:
                outcomes[outcome.channel_type] = outcome
                attempted_all = attempted_all and attempted

        result = DispatchResult(success=attempted_all, outcomes=outcomes)
        self._log_results(event, result)
        return result

    def _config_error(self, channel_type: str, reason: str) -> ChannelOutcome:
        self.logger.warning(f"渠道 {channel_type} 配置错误: {reason}")
        return ChannelOutcome(channel_type, DeliveryStatus.CONFIG_ERROR, reason)

    async def _deliver_one(self, channel: BaseChannel, config: ChannelConfig,
                           event: TransitionEvent) -> Tuple[ChannelOutcome, bool]:
        """投递到单个渠道，返回 (结果, 是否真正调用了 deliver)"""
        channel_type = config.channel_type
        try:
            payload = channel.build_payload(event, config)
        except Exception as e:
            self.logger.error(f"渠道 {channel_type} 构造消息失败: {e}")
            return ChannelOutcome(channel_type, DeliveryStatus.FAILED, f"构造消息失败: {e}"), False

        try:
            delivered = await asyncio.wait_for(
                channel.deliver(config.destination, payload),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            self.logger.error(f"渠道 {channel_type} 投递超时 ({self.timeout}秒)")
            return ChannelOutcome(channel_type, DeliveryStatus.FAILED, "投递超时"), True
        except BotKeeperError as e:
            self.logger.error(f"渠道 {channel_type} 投递失败: {e.format_error()}")
            status = (DeliveryStatus.CONFIG_ERROR
                      if e.error_code == ErrorCode.CHANNEL_CONFIG_ERROR else DeliveryStatus.FAILED)
            return ChannelOutcome(channel_type, status, e.message), True
        except Exception as e:
            self.logger.error(f"渠道 {channel_type} 投递异常: {e}")
            return ChannelOutcome(channel_type, DeliveryStatus.FAILED, str(e)), True

        if delivered:
            return ChannelOutcome(channel_type, DeliveryStatus.DELIVERED), True
        return ChannelOutcome(channel_type, DeliveryStatus.FAILED, "渠道返回失败"), True

    def _log_results(self, event: TransitionEvent, result: DispatchResult):
        if not result.outcomes:
            self.logger.info(f"项目 {event.project_id} 没有启用的通知渠道")
            return

        summary = ', '.join(f"{name}={o.status.value}" for name, o in result.outcomes.items())
        if result.failed:
            self.logger.warning(f"项目 {event.project_id} 通知结果: {summary}")
        else:
            self.logger.info(f"项目 {event.project_id} 通知结果: {summary}")

    async def send_test(self, channel_type: str, settings: Dict[str, Any]) -> DispatchResult:
        """
        发送测试通知

        使用合成的测试项目和 unknown -> online 的合成状态变化。

        Args:
            channel_type: 渠道类型
            settings: 渠道设置，例如 {'webhook_enabled': True, 'webhook_url': '...'}

        Returns:
            DispatchResult: 分发结果，不论是否投递成功

        Raises:
            ValidationError: 渠道类型无效、渠道未启用或设置不完整
        """
        if not channel_type:
            raise ValidationError("缺少通知渠道类型", ErrorCode.MISSING_PARAMETER, field='type')
        if not isinstance(settings, dict):
            raise ValidationError("渠道设置必须是对象", field='settings')

        channel_class = self.registry.get_channel_class(channel_type)
        config = ChannelConfig.from_settings(channel_type, settings, channel_class.destination_field)

        if not config.enabled:
            raise ValidationError(f"通知渠道 {channel_type} 未启用", field=f'{channel_type}_enabled')
        if not config.is_configured:
            raise ValidationError(
                f"通知渠道 {channel_type} 缺少目标地址",
                ErrorCode.MISSING_PARAMETER,
                field=channel_class.destination_field
            )

        channel = self._create_channel(config)
        if not channel.validate_destination(config.destination):
            raise ValidationError(
                f"通知渠道 {channel_type} 目标地址无效: {config.destination}",
                field=channel_class.destination_field
            )

        # 测试通知不受方向过滤影响
        config = replace(config, notify_on_up=True, notify_on_down=True)
        event = TransitionEvent(
            project_id=TEST_PROJECT_ID,
            previous_status=ProjectStatus.UNKNOWN,
            new_status=ProjectStatus.ONLINE,
            project_name=TEST_PROJECT_NAME,
            project_url=TEST_PROJECT_URL,
            is_test=True
        )
        self.logger.info(f"发送测试通知: {channel_type} -> {config.destination}")
        return await self.dispatch(event, {channel_type: config})
