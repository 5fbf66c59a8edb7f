"""HTTP(S) 可达性探测器"""

import asyncio
import ipaddress
import re
import time
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

import aiohttp

from ..models.monitor import ProbeResult, ProbeOutcome, ProbeErrorType
from ..utils.exceptions import ValidationError, ErrorCode
from ..utils.log_manager import get_logger

PROBE_TIMEOUT = 8.0  # 秒
DEFAULT_USER_AGENT = 'BotKeeper-Uptime-Monitor/1.0'

_HOST_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")

NO_CACHE_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0',
}


def validate_probe_url(url: Optional[str]) -> str:
    """
    校验探测地址

    Args:
        url: 待校验的地址

    Returns:
        str: 去掉首尾空白后的地址

    Raises:
        ValidationError: 地址为空、含空白字符、协议不是 http/https、
            主机名非法或端口超出范围
    """
    if url is None or not str(url).strip():
        raise ValidationError("缺少URL参数", ErrorCode.MISSING_PARAMETER, field='url')

    url = str(url).strip()
    if any(ch.isspace() for ch in url):
        raise ValidationError(f"URL格式无效: {url}", ErrorCode.INVALID_URL, field='url')

    try:
        parsed = urlparse(url)
        # 端口越界或非数字时 urlparse 在访问 port 时才抛出 ValueError
        parsed.port
    except ValueError as e:
        raise ValidationError(f"URL格式无效: {url}", ErrorCode.INVALID_URL, field='url', cause=e)

    if parsed.scheme not in ('http', 'https') or not parsed.netloc or not parsed.hostname:
        raise ValidationError(f"URL格式无效: {url}", ErrorCode.INVALID_URL, field='url')

    if not _is_valid_host(parsed.hostname, bracketed='[' in parsed.netloc):
        raise ValidationError(f"URL主机名无效: {url}", ErrorCode.INVALID_URL, field='url')

    return url


def _is_valid_host(hostname: str, bracketed: bool) -> bool:
    if bracketed:
        try:
            return ipaddress.ip_address(hostname).version == 6
        except ValueError:
            return False
    return bool(_HOST_PATTERN.match(hostname)) and '..' not in hostname


class HttpProber:
    """HTTP 探测器

    先发 HEAD 请求，失败后用 GET 再试一次。只要收到任意 HTTP 响应
    （包括 4xx/5xx）就认为服务可达。probe 方法从不抛出异常。
    """

    def __init__(self, timeout: float = PROBE_TIMEOUT,
                 user_agent: str = DEFAULT_USER_AGENT,
                 session: Optional[aiohttp.ClientSession] = None,
                 cache_bust: bool = False):
        """
        Args:
            timeout: 单次请求超时时间（秒），HEAD 和 GET 各自独立计时
            user_agent: 请求头中的客户端标识
            session: 外部注入的会话，注入后由调用方负责关闭
            cache_bust: 是否附加 keepalive=true 和 t=<毫秒时间戳> 查询参数
        """
        self.timeout = timeout
        self.user_agent = user_agent
        self.cache_bust = cache_bust
        self._session = session
        self.logger = get_logger('probe.http')

    def _build_headers(self) -> Dict[str, str]:
        headers = dict(NO_CACHE_HEADERS)
        headers['User-Agent'] = self.user_agent
        return headers

    def _build_params(self) -> Optional[Dict[str, str]]:
        if not self.cache_bust:
            return None
        return {'keepalive': 'true', 't': str(int(time.time() * 1000))}

    async def probe(self, url: str, project_id: Optional[str] = None) -> ProbeResult:
        """
        对 URL 执行一次可达性探测

        Args:
            url: 目标地址
            project_id: 所属项目，临时探测时为 None

        Returns:
            ProbeResult: 探测结果
        """
        try:
            url = validate_probe_url(url)
        except ValidationError as e:
            self.logger.warning(f"探测地址校验失败: {e.message}")
            return ProbeResult(
                url=str(url or ''),
                outcome=ProbeOutcome.FAILURE,
                project_id=project_id,
                error_message=e.message,
                error_type=ProbeErrorType.VALIDATION
            )

        if self._session is not None:
            return await self._probe_with(self._session, url, project_id)

        async with aiohttp.ClientSession() as session:
            return await self._probe_with(session, url, project_id)

    async def _probe_with(self, session: aiohttp.ClientSession, url: str,
                          project_id: Optional[str]) -> ProbeResult:
        status, latency_ms, error_message, error_type = await self._attempt(session, 'HEAD', url)
        method = 'HEAD'

        if status is None:
            self.logger.debug(f"HEAD 请求失败，改用 GET: {url} ({error_message})")
            status, latency_ms, error_message, error_type = await self._attempt(session, 'GET', url)
            method = 'GET'

        if status is not None:
            self.logger.debug(f"探测成功: {url} {method} {status} {latency_ms}ms")
            return ProbeResult(
                url=url,
                outcome=ProbeOutcome.SUCCESS,
                project_id=project_id,
                status_code=status,
                latency_ms=latency_ms,
                method=method
            )

        self.logger.info(f"探测失败: {url} - {error_message}")
        return ProbeResult(
            url=url,
            outcome=ProbeOutcome.FAILURE,
            project_id=project_id,
            latency_ms=latency_ms,
            error_message=error_message,
            error_type=error_type,
            method=method
        )

    async def _attempt(self, session: aiohttp.ClientSession, method: str, url: str
                       ) -> Tuple[Optional[int], Optional[int], Optional[str], Optional[ProbeErrorType]]:
        """执行单个请求，返回 (状态码, 延迟毫秒, 错误信息, 错误类型)"""
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        start = time.monotonic()
        try:
            async with session.request(
                method,
                url,
                headers=self._build_headers(),
                params=self._build_params(),
                timeout=timeout,
                allow_redirects=True
            ) as response:
                # 进入上下文时响应头已经收到
                latency_ms = int((time.monotonic() - start) * 1000)
                return response.status, latency_ms, None, None
        except asyncio.TimeoutError:
            return None, None, f"{method} 请求超时 ({self.timeout}秒)", ProbeErrorType.TIMEOUT
        except aiohttp.ClientConnectionError as e:
            return None, None, f"{method} 连接失败: {e}", ProbeErrorType.CONNECTION
        except aiohttp.ClientError as e:
            return None, None, f"{method} 请求错误: {e}", ProbeErrorType.PROTOCOL
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return None, None, f"{method} 请求异常: {e}", ProbeErrorType.PROTOCOL

    async def close(self):
        """关闭外部注入的会话"""
        if self._session is not None and not self._session.closed:
            await self._session.close()
