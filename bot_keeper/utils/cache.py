"""LRU 缓存"""

from collections import OrderedDict
from typing import Any, Generic, Hashable, Optional, TypeVar

V = TypeVar('V')


class LRUCache(Generic[V]):
    """容量固定的最近最少使用缓存

    由使用它的组件创建并持有，容量在构造时注入。
    """

    def __init__(self, capacity: int = 100):
        if capacity <= 0:
            raise ValueError("缓存容量必须是正整数")
        self.capacity = capacity
        self._data: 'OrderedDict[Hashable, V]' = OrderedDict()

    def get(self, key: Hashable, default: Optional[V] = None) -> Optional[V]:
        if key not in self._data:
            return default
        self._data.move_to_end(key)
        return self._data[key]

    def set(self, key: Hashable, value: V) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        elif len(self._data) >= self.capacity:
            self._data.popitem(last=False)
        self._data[key] = value

    def invalidate(self, key: Hashable) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: Any) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)
