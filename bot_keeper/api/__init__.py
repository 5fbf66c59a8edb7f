"""HTTP 接口模块"""

from .server import create_app, start_http_api

__all__ = ['create_app', 'start_http_api']
