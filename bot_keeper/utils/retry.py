"""重试协调器

固定间隔的有限次重试。用于保活客户端调用 worker 端点，
也可以包装任何幂等的异步远程调用。

间隔固定，不做指数退避；需要时可在 RetryPolicy 上替换 calculate_delay。
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .log_manager import get_logger

MAX_RETRIES = 3
RETRY_DELAY = 5.0  # 秒


@dataclass
class RetryPolicy:
    """重试策略"""
    max_retries: int = MAX_RETRIES
    retry_delay: float = RETRY_DELAY

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries 不能为负数")
        if self.retry_delay < 0:
            raise ValueError("retry_delay 不能为负数")

    @property
    def max_attempts(self) -> int:
        """首次尝试加上重试次数"""
        return self.max_retries + 1

    def calculate_delay(self, attempt: int) -> float:
        """第 attempt 次失败后的等待时间"""
        return self.retry_delay


@dataclass
class RetryOutcome:
    """重试执行结果"""
    success: bool
    attempts: int
    result: Any = None
    last_error: Optional[BaseException] = None


def _default_is_success(result: Any) -> bool:
    return result is not False and result is not None


class RetryCoordinator:
    """重试协调器

    执行操作，失败（抛出异常或结果未通过 is_success 判定）后等待固定间隔再试，
    直到成功或重试次数用尽。重试用尽后返回失败结果，不向外抛出异常。
    """

    def __init__(self, policy: Optional[RetryPolicy] = None,
                 is_success: Callable[[Any], bool] = _default_is_success,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 name: str = 'retry'):
        """
        Args:
            policy: 重试策略，默认 MAX_RETRIES=3, RETRY_DELAY=5秒
            is_success: 判定操作结果是否成功的函数
            sleep: 等待函数，测试时可替换
            name: 用于日志的名称
        """
        self.policy = policy or RetryPolicy()
        self.is_success = is_success
        self._sleep = sleep
        self.name = name
        self.logger = get_logger(f'retry.{name}')

    async def run(self, operation: Callable[[], Awaitable[Any]]) -> RetryOutcome:
        """
        执行操作直到成功或重试用尽

        Args:
            operation: 无参数的异步可调用对象，必须是幂等的

        Returns:
            RetryOutcome: 执行结果
        """
        last_error: Optional[BaseException] = None
        result: Any = None

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                result = await operation()
                last_error = None
                if self.is_success(result):
                    if attempt > 1:
                        self.logger.info(f"{self.name} 第 {attempt} 次尝试成功")
                    return RetryOutcome(success=True, attempts=attempt, result=result)
                self.logger.warning(
                    f"{self.name} 执行失败 (尝试 {attempt}/{self.policy.max_attempts}): "
                    f"结果未通过校验: {result!r}"
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                self.logger.warning(
                    f"{self.name} 执行失败 (尝试 {attempt}/{self.policy.max_attempts}): {e}"
                )

            if attempt < self.policy.max_attempts:
                delay = self.policy.calculate_delay(attempt)
                self.logger.debug(f"等待 {delay:.2f} 秒后重试")
                await self._sleep(delay)

        self.logger.error(f"{self.name} 已重试 {self.policy.max_retries} 次，放弃")
        return RetryOutcome(
            success=False,
            attempts=self.policy.max_attempts,
            result=result,
            last_error=last_error
        )

    async def __call__(self, operation: Callable[[], Awaitable[Any]]) -> bool:
        outcome = await self.run(operation)
        return outcome.success
