"""工具模块"""

from .exceptions import (
    BotKeeperError, ConfigError, ValidationError, PersistenceError,
    ChannelError, ChannelConfigError, ChannelDeliveryError
)
from .log_manager import LogManager, LogLevel, get_logger, configure_logging, log_manager

__all__ = [
    'BotKeeperError', 'ConfigError', 'ValidationError', 'PersistenceError',
    'ChannelError', 'ChannelConfigError', 'ChannelDeliveryError',
    'LogManager', 'LogLevel', 'get_logger', 'configure_logging', 'log_manager'
]
