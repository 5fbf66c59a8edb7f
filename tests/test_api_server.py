"""HTTP 端点测试"""

from datetime import datetime, timedelta, timezone

import pytest
from aiohttp.test_utils import TestClient, TestServer
from unittest.mock import AsyncMock, patch

from bot_keeper.api.server import create_app
from bot_keeper.models.monitor import (
    Project, ProbeResult, ProbeOutcome, ProbeErrorType, ChannelConfig
)
from bot_keeper.notifications import NotificationDispatcher
from bot_keeper.notifications.webhook_channel import WebhookChannel
from bot_keeper.services.monitor_pipeline import MonitorPipeline
from bot_keeper.storage import MemoryStore


class StubProber:
    """返回固定结果的探测器"""

    def __init__(self, outcome=ProbeOutcome.SUCCESS):
        self.outcome = outcome

    async def probe(self, url, project_id=None):
        if self.outcome == ProbeOutcome.SUCCESS:
            return ProbeResult(url=url, outcome=self.outcome, project_id=project_id,
                               status_code=200, latency_ms=42, method='HEAD')
        return ProbeResult(url=url, outcome=self.outcome, project_id=project_id,
                           error_message='GET 请求超时 (8.0秒)',
                           error_type=ProbeErrorType.TIMEOUT, method='GET')


def build_app(outcome=ProbeOutcome.SUCCESS, store=None):
    store = store or MemoryStore()
    dispatcher = NotificationDispatcher()
    pipeline = MonitorPipeline(store, StubProber(outcome), dispatcher)
    return create_app(pipeline, dispatcher), pipeline, store


class TestProbeEndpoint:

    @pytest.mark.asyncio
    async def test_missing_url(self):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/probe')
            body = await resp.json()

        assert resp.status == 400
        assert body['success'] is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize('url', [
        'not a url', 'http://exa mple.com', 'http://example.com:99999', 'http://a<b>.com',
    ])
    async def test_malformed_url(self, url):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/probe', params={'url': url})

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_unreachable_target_still_200(self):
        app, _, store = build_app(ProbeOutcome.FAILURE)
        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/probe', params={'url': 'https://down.example.com'})
            body = await resp.json()

        assert resp.status == 200
        assert body['success'] is False
        assert body['status'] is None
        assert '超时' in body['message']
        assert await store.count_probes(None) == 0

    @pytest.mark.asyncio
    async def test_reachable_target(self):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/probe', params={'url': 'https://example.com'})
            body = await resp.json()

        assert body['success'] is True
        assert body['status'] == 200
        assert body['responseTime'] == 42
        assert body['method'] == 'HEAD'
        assert 'timestamp' in body


class TestTickEndpoint:

    @pytest.mark.asyncio
    async def test_tick_summary(self):
        app, pipeline, _ = build_app()
        await pipeline.sync_config([Project('api', 'https://api.example.com')])

        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/worker/tick', params={'source': 'cron'})
            body = await resp.json()

        assert resp.status == 200
        assert body['success'] is True
        assert body['trigger'] == 'cron'
        assert body['checked'] == 1
        assert body['transitions'] == 1

    @pytest.mark.asyncio
    async def test_internal_error_still_200(self):
        app, pipeline, _ = build_app()
        pipeline.run_tick = AsyncMock(side_effect=RuntimeError("unexpected"))

        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/worker/tick')
            body = await resp.json()

        assert resp.status == 200
        assert body['success'] is False
        assert body['error'] == 'unexpected'
        assert 'timestamp' in body

    @pytest.mark.asyncio
    async def test_project_list_failure_reported(self):
        store = MemoryStore()
        store.list_projects = AsyncMock(side_effect=OSError("database is locked"))
        app, _, _ = build_app(store=store)

        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/worker/tick')
            body = await resp.json()

        assert resp.status == 200
        assert body['success'] is False
        assert 'database is locked' in body['error']

    @pytest.mark.asyncio
    async def test_warmup(self):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/warmup')
            body = await resp.json()

        assert resp.status == 200
        assert body['success'] is True


class TestNotificationEndpoints:

    @pytest.mark.asyncio
    async def test_test_notification_invalid_json(self):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post('/notifications/test', data='{not json',
                                     headers={'Content-Type': 'application/json'})

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_test_notification_missing_type(self):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post('/notifications/test', json={'settings': {}})
            body = await resp.json()

        assert resp.status == 400
        assert body['field'] == 'type'

    @pytest.mark.asyncio
    async def test_test_notification_disabled_channel(self):
        app, _, _ = build_app()
        with patch.object(WebhookChannel, 'deliver', new_callable=AsyncMock) as mock_deliver:
            async with TestClient(TestServer(app)) as client:
                resp = await client.post('/notifications/test', json={
                    'type': 'webhook',
                    'settings': {'webhook_enabled': False, 'webhook_url': 'https://hooks.example.com'},
                })

        assert resp.status == 400
        mock_deliver.assert_not_called()

    @pytest.mark.asyncio
    async def test_test_notification_unsupported_type(self):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post('/notifications/test', json={'type': 'pager', 'settings': {}})

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_test_notification_non_string_type(self):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post('/notifications/test', json={'type': ['webhook'], 'settings': {}})
            body = await resp.json()

        assert resp.status == 400
        assert body['field'] == 'type'

    @pytest.mark.asyncio
    async def test_test_notification_sent(self):
        app, _, _ = build_app()
        with patch.object(WebhookChannel, 'deliver', new_callable=AsyncMock,
                          return_value=True) as mock_deliver:
            async with TestClient(TestServer(app)) as client:
                resp = await client.post('/notifications/test', json={
                    'type': 'webhook',
                    'settings': {'webhook_enabled': True, 'webhook_url': 'https://hooks.example.com'},
                })
                body = await resp.json()

        assert resp.status == 200
        assert body['success'] is True
        assert body['delivered'] is True
        assert body['channels']['webhook']['status'] == 'delivered'
        payload = mock_deliver.call_args.args[1]
        assert payload['project'] == 'Test Project'
        assert payload['previousStatus'] == 'UNKNOWN'
        assert payload['status'] == 'UP'
        assert payload['test'] is True

    @pytest.mark.asyncio
    async def test_test_notification_delivery_failed(self):
        app, _, _ = build_app()
        with patch.object(WebhookChannel, 'deliver', new_callable=AsyncMock, return_value=False):
            async with TestClient(TestServer(app)) as client:
                resp = await client.post('/notifications/test', json={
                    'type': 'webhook',
                    'settings': {'webhook_enabled': True, 'webhook_url': 'https://hooks.example.com'},
                })
                body = await resp.json()

        assert resp.status == 200
        assert body['delivered'] is False
        assert body['channels']['webhook']['status'] == 'failed'

    @pytest.mark.asyncio
    async def test_settings_round_trip(self):
        app, pipeline, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post('/notifications/settings', json={
                'type': 'chat',
                'settings': {'chat_enabled': True, 'chat_webhook_url': 'https://chat.example.com/hook',
                             'display_name': 'Ops Bot'},
            })
            assert resp.status == 200

            resp = await client.get('/notifications/settings')
            body = await resp.json()

        assert body['success'] is True
        chat = body['settings']['chat']
        assert chat['enabled'] is True
        assert chat['destination'] == 'https://chat.example.com/hook'
        assert chat['display_name'] == 'Ops Bot'
        assert (await pipeline.get_channel_configs())['chat'].enabled is True

    @pytest.mark.asyncio
    async def test_update_settings_invalid(self):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post('/notifications/settings', json={'type': 'chat', 'settings': 'x'})

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_update_settings_non_string_type(self):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post('/notifications/settings', json={'type': {'name': 'chat'}, 'settings': {}})
            body = await resp.json()

        assert resp.status == 400
        assert body['field'] == 'type'


class TestCheckEndpoint:

    @pytest.mark.asyncio
    async def test_missing_project_id(self):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/check')
            body = await resp.json()

        assert resp.status == 400
        assert body['field'] == 'projectId'

    @pytest.mark.asyncio
    async def test_unknown_project(self):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/check', params={'projectId': 'ghost'})
            body = await resp.json()

        assert resp.status == 404
        assert body['success'] is False

    @pytest.mark.asyncio
    async def test_disabled_project(self):
        store = MemoryStore()
        await store.upsert_project(Project('old', 'https://old.example.com', enabled=False))
        app, _, _ = build_app(store=store)

        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/check', params={'projectId': 'old'})

        assert resp.status == 400
        assert await store.count_probes('old') == 0

    @pytest.mark.asyncio
    async def test_check_records_and_notifies(self):
        app, pipeline, store = build_app(ProbeOutcome.FAILURE)
        await pipeline.sync_config([Project('api', 'https://api.example.com')])
        await pipeline.update_channel_settings(ChannelConfig(
            channel_type='webhook', enabled=True, destination='https://hooks.example.com'
        ))

        with patch.object(WebhookChannel, 'deliver', new_callable=AsyncMock,
                          return_value=True) as mock_deliver:
            async with TestClient(TestServer(app)) as client:
                resp = await client.get('/check', params={'projectId': 'api'})
                body = await resp.json()

        assert resp.status == 200
        assert body['success'] is True
        assert body['project_id'] == 'api'
        assert body['outcome'] == 'failure'
        assert body['transition']['new_status'] == 'DOWN'
        assert body['dispatch']['channels']['webhook']['status'] == 'delivered'
        assert await store.count_probes('api') == 1
        mock_deliver.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_silent_check_skips_notifications(self):
        app, pipeline, store = build_app()
        await pipeline.sync_config([Project('api', 'https://api.example.com')])
        await pipeline.update_channel_settings(ChannelConfig(
            channel_type='webhook', enabled=True, destination='https://hooks.example.com'
        ))

        with patch.object(WebhookChannel, 'deliver', new_callable=AsyncMock) as mock_deliver:
            async with TestClient(TestServer(app)) as client:
                resp = await client.post('/check', json={'projectId': 'api', 'silent': True})
                body = await resp.json()

        assert resp.status == 200
        assert body['transition']['new_status'] == 'UP'
        assert body['dispatch'] is None
        assert (await store.get_state('api')).last_status.value == 'UP'
        mock_deliver.assert_not_called()


class TestHistoryEndpoint:

    @pytest.mark.asyncio
    async def test_missing_project_id(self):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/history')
            body = await resp.json()

        assert resp.status == 400
        assert body['field'] == 'projectId'

    @pytest.mark.asyncio
    @pytest.mark.parametrize('params', [
        {'projectId': 'api', 'limit': 'abc'},
        {'projectId': 'api', 'limit': '0'},
        {'projectId': 'api', 'since': 'yesterday'},
    ])
    async def test_invalid_parameters(self, params):
        app, _, _ = build_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/history', params=params)

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_history_newest_first(self):
        store = MemoryStore()
        base = datetime(2024, 5, 1, tzinfo=timezone.utc)
        for minutes in range(5):
            await store.append_probe(ProbeResult(
                url='https://api.example.com', outcome=ProbeOutcome.SUCCESS, project_id='api',
                status_code=200, latency_ms=50, timestamp=base + timedelta(minutes=minutes)
            ))
        app, _, _ = build_app(store=store)

        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/history', params={
                'projectId': 'api', 'limit': '2', 'since': '2024-05-01T00:01:00Z'
            })
            body = await resp.json()

        assert resp.status == 200
        assert body['count'] == 2
        assert [r['timestamp'] for r in body['history']] == [
            (base + timedelta(minutes=4)).isoformat(),
            (base + timedelta(minutes=3)).isoformat(),
        ]

    @pytest.mark.asyncio
    async def test_store_failure(self):
        store = MemoryStore()
        store.get_history = AsyncMock(side_effect=OSError("disk I/O error"))
        app, _, _ = build_app(store=store)

        async with TestClient(TestServer(app)) as client:
            resp = await client.get('/history', params={'projectId': 'api'})

        assert resp.status == 500
