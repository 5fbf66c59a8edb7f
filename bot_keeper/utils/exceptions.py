"""自定义异常类和错误代码"""

import traceback
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime


class ErrorCode(Enum):
    """错误代码枚举"""
    # 通用错误 (1000-1999)
    UNKNOWN_ERROR = 1000
    VALIDATION_ERROR = 1001
    INVALID_URL = 1002
    MISSING_PARAMETER = 1003
    INVALID_CHANNEL_TYPE = 1004

    # 配置错误 (2000-2999)
    CONFIG_FILE_NOT_FOUND = 2000
    CONFIG_PARSE_ERROR = 2001
    CONFIG_VALIDATION_ERROR = 2002
    CONFIG_RELOAD_ERROR = 2003

    # 持久化错误 (3000-3999)
    PERSISTENCE_ERROR = 3000
    HISTORY_APPEND_ERROR = 3001
    STATE_WRITE_ERROR = 3002
    STATE_READ_ERROR = 3003
    SETTINGS_ERROR = 3004

    # 通知渠道错误 (4000-4999)
    CHANNEL_CONFIG_ERROR = 4000
    CHANNEL_DELIVERY_ERROR = 4001
    CHANNEL_PAYLOAD_ERROR = 4002


class BotKeeperError(Exception):
    """监控系统基础异常类"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            'error_code': self.error_code.value,
            'error_name': self.error_code.name,
            'message': self.message,
            'details': self.details,
            'recoverable': self.recoverable,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'traceback': traceback.format_exc() if self.cause else None
        }

    def format_error(self) -> str:
        """格式化错误信息"""
        error_msg = f"[{self.error_code.name}] {self.message}"
        if self.details:
            details_str = ", ".join([f"{k}={v}" for k, v in self.details.items()])
            error_msg += f" (详情: {details_str})"
        if self.cause:
            error_msg += f" (原因: {str(self.cause)})"
        return error_msg


class ValidationError(BotKeeperError):
    """输入校验异常：URL格式错误、缺少参数、无效的渠道类型等

    这类错误不会产生任何网络或存储副作用，直接返回给调用方。
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        field: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if field:
            details['field'] = field
        super().__init__(message, error_code, details, recoverable=False, **kwargs)


class ConfigError(BotKeeperError):
    """配置相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_VALIDATION_ERROR,
        config_path: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if config_path:
            details['config_path'] = config_path
        super().__init__(message, error_code, details, **kwargs)


class PersistenceError(BotKeeperError):
    """持久化异常，仅中止对应项目的本轮检测"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.PERSISTENCE_ERROR,
        project_id: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if project_id:
            details['project_id'] = project_id
        if operation:
            details['operation'] = operation
        super().__init__(message, error_code, details, **kwargs)


class ChannelError(BotKeeperError):
    """通知渠道相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CHANNEL_DELIVERY_ERROR,
        channel_type: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if channel_type:
            details['channel_type'] = channel_type
        super().__init__(message, error_code, details, **kwargs)


class ChannelConfigError(ChannelError):
    """通知渠道配置异常"""

    def __init__(self, message: str, channel_type: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            ErrorCode.CHANNEL_CONFIG_ERROR,
            channel_type=channel_type,
            recoverable=False,
            **kwargs
        )


class ChannelDeliveryError(ChannelError):
    """通知发送异常"""

    def __init__(self, message: str, channel_type: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            ErrorCode.CHANNEL_DELIVERY_ERROR,
            channel_type=channel_type,
            recoverable=True,
            **kwargs
        )
