"""监控数据存储模块"""

from .base import MonitorStore
from .memory_store import MemoryStore
from .sqlite_store import SQLiteStore


def create_store(database: str = None) -> MonitorStore:
    """
    根据配置创建存储

    Args:
        database: SQLite 文件路径；为空或 ":memory:" 时使用内存存储

    Returns:
        MonitorStore: 存储实例，调用方需要先 await initialize()
    """
    if not database or database == ':memory:':
        return MemoryStore()
    return SQLiteStore(database)


__all__ = ['MonitorStore', 'MemoryStore', 'SQLiteStore', 'create_store']
