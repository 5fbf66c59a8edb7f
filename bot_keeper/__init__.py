"""Bot Keeper：项目可达性监控与状态变化通知"""

__version__ = "1.0.0"
