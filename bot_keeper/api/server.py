"""HTTP 触发端点（aiohttp.web）

外部 cron、保活客户端、手动请求和预热请求都从这里进入监控流水线。
除纯输入校验失败返回 400 外，/probe 和 /worker/tick 总是返回 200。
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aiohttp import web

from ..models.monitor import ChannelConfig
from ..notifications.dispatcher import NotificationDispatcher
from ..probes.http_prober import validate_probe_url
from ..services.monitor_pipeline import MonitorPipeline
from ..utils.exceptions import BotKeeperError, ValidationError, ErrorCode
from ..utils.log_manager import get_logger

logger = get_logger('api')

DEFAULT_HISTORY_LIMIT = 100
MAX_HISTORY_LIMIT = 1000

PIPELINE_KEY = web.AppKey('pipeline', MonitorPipeline)
DISPATCHER_KEY = web.AppKey('dispatcher', NotificationDispatcher)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _validation_response(error: ValidationError) -> web.Response:
    logger.info(f"请求参数无效: {error.message}")
    body = {'success': False, 'message': error.message, 'timestamp': _timestamp()}
    if 'field' in error.details:
        body['field'] = error.details['field']
    return web.json_response(body, status=400)


async def _read_json(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("请求体不是有效的JSON", cause=e)
    if not isinstance(body, dict):
        raise ValidationError("请求体必须是JSON对象")
    return body


def _read_channel_type(body: Dict[str, Any]) -> str:
    channel_type = body.get('type')
    if channel_type is None or channel_type == '':
        raise ValidationError("缺少通知渠道类型", ErrorCode.MISSING_PARAMETER, field='type')
    if not isinstance(channel_type, str):
        raise ValidationError(
            f"通知渠道类型必须是字符串: {channel_type!r}",
            ErrorCode.INVALID_CHANNEL_TYPE,
            field='type'
        )
    return channel_type


def _parse_limit(raw: Optional[str]) -> int:
    if raw is None or raw == '':
        return DEFAULT_HISTORY_LIMIT
    try:
        limit = int(raw)
    except ValueError:
        raise ValidationError(f"limit 必须是整数: {raw}", field='limit')
    if limit <= 0:
        raise ValidationError("limit 必须是正整数", field='limit')
    return min(limit, MAX_HISTORY_LIMIT)


def _parse_since(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        since = datetime.fromisoformat(raw.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f"since 不是有效的ISO时间: {raw}", field='since')
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return since


async def handle_probe(request: web.Request) -> web.Response:
    """GET /probe?url=  临时探测一个地址，不写入历史"""
    pipeline = request.app[PIPELINE_KEY]
    try:
        url = validate_probe_url(request.query.get('url'))
    except ValidationError as e:
        return _validation_response(e)

    result = await pipeline.probe_url(url)
    body = {
        'success': result.is_success,
        'status': result.status_code,
        'responseTime': result.latency_ms,
        'method': result.method,
        'message': result.error_message or 'OK',
        'timestamp': _timestamp(),
    }
    return web.json_response(body)


async def handle_tick(request: web.Request) -> web.Response:
    """GET /worker/tick  对所有启用的项目执行一轮检测"""
    pipeline = request.app[PIPELINE_KEY]
    trigger = request.query.get('source') or 'http'
    try:
        report = await pipeline.run_tick(trigger)
    except Exception as e:
        logger.error(f"检测触发失败: {e}", exc_info=True)
        return web.json_response({'success': False, 'timestamp': _timestamp(), 'error': str(e)})

    return web.json_response(report.to_dict())


async def handle_check_project(request: web.Request) -> web.Response:
    """GET|POST /check  手动检测单个项目：探测、记录，状态变化时通知

    参数 projectId 和 silent 可放在查询串或 JSON 请求体中，
    silent=true 时只记录不通知。
    """
    pipeline = request.app[PIPELINE_KEY]
    try:
        params: Dict[str, Any] = dict(request.query)
        if request.method == 'POST' and request.can_read_body:
            params.update(await _read_json(request))
        project_id = params.get('projectId')
        if not isinstance(project_id, str) or not project_id.strip():
            raise ValidationError("缺少 projectId 参数", ErrorCode.MISSING_PARAMETER, field='projectId')
        silent = str(params.get('silent', '')).lower() == 'true'
    except ValidationError as e:
        return _validation_response(e)

    try:
        project = await pipeline.store.get_project(project_id)
    except Exception as e:
        logger.error(f"读取项目失败: {project_id} - {e}")
        return web.json_response(
            {'success': False, 'error': '读取项目失败', 'timestamp': _timestamp()}, status=500
        )

    if project is None:
        return web.json_response(
            {'success': False, 'error': f'项目不存在: {project_id}', 'timestamp': _timestamp()}, status=404
        )
    if not project.enabled:
        return web.json_response(
            {'success': False, 'error': f'项目已停用: {project_id}', 'timestamp': _timestamp()}, status=400
        )

    logger.info(f"手动检测项目: {project_id}")
    cycle = await pipeline.check_project(project, notify=not silent)
    body = cycle.to_dict()
    body['success'] = cycle.ok
    body['timestamp'] = _timestamp()
    return web.json_response(body)


async def handle_warmup(request: web.Request) -> web.Response:
    """GET /warmup  预热请求，只确认服务在线"""
    return web.json_response({
        'success': True,
        'message': 'Warmup successful',
        'timestamp': _timestamp(),
    })


async def handle_test_notification(request: web.Request) -> web.Response:
    """POST /notifications/test  {type, settings}"""
    dispatcher = request.app[DISPATCHER_KEY]
    try:
        body = await _read_json(request)
        channel_type = _read_channel_type(body)
        result = await dispatcher.send_test(channel_type, body.get('settings') or {})
    except ValidationError as e:
        return _validation_response(e)

    outcome = result.outcomes.get(channel_type)
    delivered = bool(outcome and outcome.status.value == 'delivered')
    return web.json_response({
        'success': result.success,
        'delivered': delivered,
        'message': 'Test notification sent' if delivered else 'Test notification attempted but not delivered',
        'channels': result.to_dict()['channels'],
        'timestamp': _timestamp(),
    })


async def handle_history(request: web.Request) -> web.Response:
    """GET /history?projectId=&limit=&since="""
    pipeline = request.app[PIPELINE_KEY]
    try:
        project_id = request.query.get('projectId')
        if not project_id:
            raise ValidationError("缺少 projectId 参数", ErrorCode.MISSING_PARAMETER, field='projectId')
        limit = _parse_limit(request.query.get('limit'))
        since = _parse_since(request.query.get('since'))
    except ValidationError as e:
        return _validation_response(e)

    try:
        history = await pipeline.get_history(project_id, since=since, limit=limit)
    except Exception as e:
        logger.error(f"读取探测历史失败: {project_id} - {e}")
        return web.json_response(
            {'success': False, 'error': '读取探测历史失败', 'timestamp': _timestamp()}, status=500
        )

    return web.json_response({
        'success': True,
        'projectId': project_id,
        'count': len(history),
        'history': [r.to_dict() for r in history],
    })


async def handle_get_settings(request: web.Request) -> web.Response:
    """GET /notifications/settings"""
    pipeline = request.app[PIPELINE_KEY]
    try:
        configs = await pipeline.get_channel_configs()
    except BotKeeperError as e:
        logger.error(f"读取通知设置失败: {e.format_error()}")
        return web.json_response({'success': False, 'error': e.message}, status=500)

    return web.json_response({
        'success': True,
        'settings': {name: config.to_dict() for name, config in configs.items()},
    })


async def handle_update_settings(request: web.Request) -> web.Response:
    """POST /notifications/settings  {type, settings}"""
    pipeline = request.app[PIPELINE_KEY]
    dispatcher = request.app[DISPATCHER_KEY]
    try:
        body = await _read_json(request)
        channel_type = _read_channel_type(body)
        settings = body.get('settings')
        if not isinstance(settings, dict):
            raise ValidationError("settings 必须是对象", field='settings')
        channel_class = dispatcher.registry.get_channel_class(channel_type)
        config = ChannelConfig.from_settings(channel_type, settings, channel_class.destination_field)
    except ValidationError as e:
        return _validation_response(e)

    try:
        await pipeline.update_channel_settings(config)
    except BotKeeperError as e:
        logger.error(f"保存通知设置失败: {e.format_error()}")
        return web.json_response({'success': False, 'error': e.message}, status=500)

    return web.json_response({'success': True, 'settings': config.to_dict()})


def create_app(pipeline: MonitorPipeline, dispatcher: NotificationDispatcher) -> web.Application:
    """
    创建 HTTP 应用

    Args:
        pipeline: 监控流水线
        dispatcher: 通知分发器，测试通知与设置接口使用
    """
    app = web.Application()
    app[PIPELINE_KEY] = pipeline
    app[DISPATCHER_KEY] = dispatcher
    app.router.add_get('/probe', handle_probe)
    app.router.add_get('/worker/tick', handle_tick)
    app.router.add_get('/check', handle_check_project)
    app.router.add_post('/check', handle_check_project)
    app.router.add_get('/warmup', handle_warmup)
    app.router.add_get('/history', handle_history)
    app.router.add_post('/notifications/test', handle_test_notification)
    app.router.add_get('/notifications/settings', handle_get_settings)
    app.router.add_post('/notifications/settings', handle_update_settings)
    return app


async def start_http_api(app: web.Application, host: str, port: int) -> web.AppRunner:
    """启动 HTTP 服务并返回 runner，调用方负责 cleanup"""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"HTTP 服务已启动: http://{host}:{port}")
    return runner
