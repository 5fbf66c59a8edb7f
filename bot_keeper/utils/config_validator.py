"""配置验证工具"""

from typing import Dict, Any, List
from urllib.parse import urlparse

from .exceptions import ConfigError

SUPPORTED_CHANNEL_TYPES = ['webhook', 'email', 'chat']
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


def _is_http_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def _require_positive_number(config: Dict[str, Any], key: str, section: str,
                             integer: bool = False) -> None:
    value = config.get(key)
    if value is None:
        return
    allowed = (int,) if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, allowed) or value <= 0:
        kind = "正整数" if integer else "正数"
        raise ConfigError(f"{section}.{key} 必须是{kind}")


class ConfigValidator:
    """配置验证器"""

    @staticmethod
    def validate_global_config(global_config: Dict[str, Any]) -> None:
        """
        验证全局配置

        Args:
            global_config: 全局配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(global_config, dict):
            raise ConfigError("全局配置必须是字典类型")

        _require_positive_number(global_config, 'probe_timeout', 'global')
        _require_positive_number(global_config, 'tick_interval', 'global')
        _require_positive_number(global_config, 'max_concurrent_probes', 'global', integer=True)

        log_level = global_config.get('log_level')
        if log_level is not None and str(log_level).upper() not in VALID_LOG_LEVELS:
            raise ConfigError(f"log_level 必须是以下值之一: {VALID_LOG_LEVELS}")

        server = global_config.get('server')
        if server is not None:
            if not isinstance(server, dict):
                raise ConfigError("global.server 必须是字典类型")
            port = server.get('port')
            if port is not None and (not isinstance(port, int) or not 0 < port < 65536):
                raise ConfigError("global.server.port 必须是 1-65535 之间的整数")

    @staticmethod
    def validate_project_config(project_config: Dict[str, Any]) -> None:
        """
        验证单个项目配置

        Raises:
            ConfigError: 缺少 id/url 或 url 不是 http/https 地址
        """
        if not isinstance(project_config, dict):
            raise ConfigError("项目配置必须是字典类型")

        for field in ('id', 'url'):
            if not project_config.get(field):
                raise ConfigError(f"项目配置缺少必需的配置项: {field}")

        if not _is_http_url(project_config['url']):
            raise ConfigError(f"项目 '{project_config['id']}' 的 url 无效: {project_config['url']}")

    @classmethod
    def validate_projects(cls, projects: List[Dict[str, Any]]) -> None:
        """验证项目列表，项目 id 不能重复"""
        if not isinstance(projects, list):
            raise ConfigError("projects 配置必须是列表类型")

        seen = set()
        for project_config in projects:
            cls.validate_project_config(project_config)
            project_id = str(project_config['id'])
            if project_id in seen:
                raise ConfigError(f"项目 id 重复: {project_id}")
            seen.add(project_id)

    @staticmethod
    def validate_channel_config(channel_type: str, channel_config: Dict[str, Any]) -> None:
        """
        验证通知渠道配置

        启用但没有目标地址的渠道不算配置错误，运行时会以 config_error 结果跳过。
        """
        if channel_type not in SUPPORTED_CHANNEL_TYPES:
            raise ConfigError(
                f"通知渠道类型 '{channel_type}' 不受支持。支持的类型: {SUPPORTED_CHANNEL_TYPES}")

        if not isinstance(channel_config, dict):
            raise ConfigError(f"通知渠道 '{channel_type}' 的配置必须是字典类型")

        destination = channel_config.get('destination')
        if destination and channel_type in ('webhook', 'chat') and not _is_http_url(destination):
            raise ConfigError(f"通知渠道 '{channel_type}' 的 destination 必须是 http/https 地址")

    @staticmethod
    def validate_smtp_config(smtp_config: Dict[str, Any]) -> None:
        if not isinstance(smtp_config, dict):
            raise ConfigError("smtp 配置必须是字典类型")

        if not smtp_config.get('smtp_server'):
            raise ConfigError("smtp 配置缺少必需的配置项: smtp_server")

        port = smtp_config.get('smtp_port', 587)
        if not isinstance(port, int) or port <= 0:
            raise ConfigError(f"SMTP端口无效: {port}")

        if smtp_config.get('use_ssl') and smtp_config.get('use_tls'):
            raise ConfigError("smtp 配置不能同时启用SSL和TLS")

    @staticmethod
    def validate_keepalive_config(keepalive_config: Dict[str, Any]) -> None:
        if not isinstance(keepalive_config, dict):
            raise ConfigError("keepalive 配置必须是字典类型")

        if keepalive_config.get('enabled') and not _is_http_url(keepalive_config.get('base_url')):
            raise ConfigError("启用 keepalive 时 base_url 必须是 http/https 地址")

        endpoints = keepalive_config.get('endpoints')
        if endpoints is not None:
            if not isinstance(endpoints, list) or not all(isinstance(e, str) for e in endpoints):
                raise ConfigError("keepalive.endpoints 必须是字符串列表")

        _require_positive_number(keepalive_config, 'interval', 'keepalive')

        max_retries = keepalive_config.get('max_retries')
        if max_retries is not None and (not isinstance(max_retries, int) or max_retries < 0):
            raise ConfigError("keepalive.max_retries 必须是非负整数")

        retry_delay = keepalive_config.get('retry_delay')
        if retry_delay is not None and (not isinstance(retry_delay, (int, float)) or retry_delay < 0):
            raise ConfigError("keepalive.retry_delay 不能为负数")
