"""探测模块"""

from .http_prober import HttpProber, validate_probe_url, PROBE_TIMEOUT, DEFAULT_USER_AGENT

__all__ = ['HttpProber', 'validate_probe_url', 'PROBE_TIMEOUT', 'DEFAULT_USER_AGENT']
