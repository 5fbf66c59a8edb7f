"""保活客户端

定期请求服务自身的 worker 端点和预热端点，防止托管平台休眠，
同时顺带触发一轮检测。每个端点的请求由 RetryCoordinator 包装。
"""

import asyncio
import time
from typing import Dict, List, Optional

import aiohttp

from ..probes.http_prober import NO_CACHE_HEADERS, DEFAULT_USER_AGENT
from ..utils.log_manager import get_logger
from ..utils.retry import RetryCoordinator, RetryPolicy

DEFAULT_ENDPOINTS = ['/worker/tick', '/warmup']
KEEPALIVE_INTERVAL = 240  # 秒
REQUEST_TIMEOUT = 10.0  # 秒


class KeepAliveClient:
    """保活客户端"""

    def __init__(self, base_url: str,
                 endpoints: Optional[List[str]] = None,
                 interval: float = KEEPALIVE_INTERVAL,
                 policy: Optional[RetryPolicy] = None,
                 timeout: float = REQUEST_TIMEOUT,
                 user_agent: str = DEFAULT_USER_AGENT):
        """
        Args:
            base_url: 服务根地址，例如 http://127.0.0.1:8080
            endpoints: 需要请求的路径列表
            interval: 两轮保活之间的间隔（秒）
            policy: 每个端点的重试策略
            timeout: 单次请求超时时间（秒）
            user_agent: 客户端标识
        """
        self.base_url = base_url.rstrip('/')
        self.endpoints = list(endpoints) if endpoints else list(DEFAULT_ENDPOINTS)
        self.interval = interval
        self.timeout = timeout
        self.user_agent = user_agent
        self.retry = RetryCoordinator(policy or RetryPolicy(), name='keepalive')
        self.is_running = False
        self._stop_event: Optional[asyncio.Event] = None
        self.logger = get_logger('keepalive')

    def build_url(self, endpoint: str) -> str:
        if not endpoint.startswith('/'):
            endpoint = '/' + endpoint
        return f"{self.base_url}{endpoint}"

    async def ping(self, endpoint: str) -> bool:
        """
        请求单个端点一次

        Returns:
            bool: 收到 2xx 响应时返回 True

        Raises:
            aiohttp.ClientError: 网络错误，由重试协调器处理
        """
        headers = dict(NO_CACHE_HEADERS)
        headers['User-Agent'] = self.user_agent
        params = {'keepalive': 'true', 't': str(int(time.time() * 1000))}
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self.build_url(endpoint), headers=headers, params=params) as response:
                if 200 <= response.status < 300:
                    return True
                self.logger.warning(f"保活请求 {endpoint} 返回状态码 {response.status}")
                return False

    async def ping_all(self) -> Dict[str, bool]:
        """
        依次请求所有端点，每个端点失败后按策略重试

        Returns:
            端点到是否成功的映射
        """
        results = {}
        for endpoint in self.endpoints:
            outcome = await self.retry.run(lambda ep=endpoint: self.ping(ep))
            results[endpoint] = outcome.success
            if outcome.success:
                self.logger.debug(f"保活请求成功: {endpoint} (尝试 {outcome.attempts} 次)")
            else:
                self.logger.error(f"保活请求失败: {endpoint} ({outcome.last_error})")
        return results

    async def run_forever(self):
        """按间隔循环保活，直到 stop 被调用"""
        self.is_running = True
        self._stop_event = asyncio.Event()
        self.logger.info(f"启动保活客户端: {self.base_url} {self.endpoints}, 间隔 {self.interval}秒")

        try:
            while self.is_running:
                await self.ping_all()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.is_running = False
            self.logger.info("保活客户端已停止")

    async def stop(self):
        self.is_running = False
        if self._stop_event:
            self._stop_event.set()
