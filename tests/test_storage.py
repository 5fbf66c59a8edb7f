"""测试监控数据存储（内存与SQLite）"""

from datetime import datetime, timedelta, timezone

import pytest

from bot_keeper.models.monitor import (
    Project, ProbeResult, ProbeOutcome, ProbeErrorType, ProjectState, ProjectStatus,
    ChannelConfig
)
from bot_keeper.storage import MemoryStore, SQLiteStore, create_store

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


async def open_store(kind, tmp_path):
    if kind == 'memory':
        store = MemoryStore()
    else:
        store = SQLiteStore(str(tmp_path / 'monitor.db'))
    await store.initialize()
    return store


def make_result(project_id, seconds, outcome=ProbeOutcome.SUCCESS, latency=100):
    return ProbeResult(
        url='https://example.com',
        outcome=outcome,
        project_id=project_id,
        status_code=200 if outcome == ProbeOutcome.SUCCESS else None,
        latency_ms=latency,
        error_type=None if outcome == ProbeOutcome.SUCCESS else ProbeErrorType.TIMEOUT,
        method='HEAD',
        timestamp=BASE_TIME + timedelta(seconds=seconds)
    )


STORE_KINDS = ['memory', 'sqlite']


class TestMonitorStore:
    """两种存储实现的共同行为"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize('kind', STORE_KINDS)
    async def test_projects(self, kind, tmp_path):
        store = await open_store(kind, tmp_path)
        try:
            await store.upsert_project(Project('a', 'https://a.example.com', 'A'))
            await store.upsert_project(Project('b', 'https://b.example.com', 'B', enabled=False))
            await store.upsert_project(Project('a', 'https://a2.example.com', 'A2'))

            all_projects = await store.list_projects()
            enabled = await store.list_projects(enabled_only=True)
            project_a = await store.get_project('a')

            assert {p.id for p in all_projects} == {'a', 'b'}
            assert [p.id for p in enabled] == ['a']
            assert project_a.url == 'https://a2.example.com'
            assert project_a.name == 'A2'
            assert await store.get_project('missing') is None
        finally:
            await store.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize('kind', STORE_KINDS)
    async def test_state_upsert_keeps_one_row(self, kind, tmp_path):
        store = await open_store(kind, tmp_path)
        try:
            assert await store.get_state('p1') is None

            await store.upsert_state(ProjectState('p1', ProjectStatus.ONLINE, BASE_TIME, 0))
            await store.upsert_state(ProjectState('p1', ProjectStatus.OFFLINE,
                                                  BASE_TIME + timedelta(minutes=1), 2))

            state = await store.get_state('p1')
            assert state.last_status == ProjectStatus.OFFLINE
            assert state.last_checked == BASE_TIME + timedelta(minutes=1)
            assert state.consecutive_failures == 2
        finally:
            await store.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize('kind', STORE_KINDS)
    async def test_history_newest_first(self, kind, tmp_path):
        store = await open_store(kind, tmp_path)
        try:
            for seconds in (0, 60, 120):
                await store.append_probe(make_result('p1', seconds))
            await store.append_probe(make_result('p1', 180, ProbeOutcome.FAILURE, latency=None))
            await store.append_probe(make_result('other', 30))

            history = await store.get_history('p1')

            assert await store.count_probes('p1') == 4
            assert [r.timestamp for r in history] == [
                BASE_TIME + timedelta(seconds=s) for s in (180, 120, 60, 0)
            ]
            assert history[0].outcome == ProbeOutcome.FAILURE
            assert history[0].error_type == ProbeErrorType.TIMEOUT
            assert history[1].status_code == 200
        finally:
            await store.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize('kind', STORE_KINDS)
    async def test_history_since_and_limit(self, kind, tmp_path):
        store = await open_store(kind, tmp_path)
        try:
            for seconds in range(0, 600, 60):
                await store.append_probe(make_result('p1', seconds))

            recent = await store.get_history('p1', since=BASE_TIME + timedelta(seconds=300))
            limited = await store.get_history('p1', limit=3)

            assert len(recent) == 5
            assert all(r.timestamp >= BASE_TIME + timedelta(seconds=300) for r in recent)
            assert [r.timestamp for r in limited] == [
                BASE_TIME + timedelta(seconds=s) for s in (540, 480, 420)
            ]
        finally:
            await store.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize('kind', STORE_KINDS)
    async def test_channel_settings(self, kind, tmp_path):
        store = await open_store(kind, tmp_path)
        try:
            await store.upsert_channel_settings(ChannelConfig(
                'webhook', enabled=True, destination='https://hooks.example.com',
                options={'timeout': 5}
            ))
            await store.upsert_channel_settings(ChannelConfig('email', enabled=False))
            await store.upsert_channel_settings(ChannelConfig(
                'webhook', enabled=True, destination='https://hooks2.example.com', notify_on_up=False
            ))

            settings = await store.get_channel_settings()

            assert set(settings) == {'webhook', 'email'}
            assert settings['webhook'].destination == 'https://hooks2.example.com'
            assert settings['webhook'].notify_on_up is False
            assert settings['webhook'].options == {}
            assert settings['email'].enabled is False
        finally:
            await store.close()


class TestSQLiteStore:

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path):
        db_path = str(tmp_path / 'monitor.db')
        store = SQLiteStore(db_path)
        await store.initialize()
        await store.upsert_state(ProjectState('p1', ProjectStatus.ONLINE, BASE_TIME, 0))
        await store.append_probe(make_result('p1', 0))
        await store.close()

        reopened = SQLiteStore(db_path)
        await reopened.initialize()
        try:
            state = await reopened.get_state('p1')
            assert state.last_status == ProjectStatus.ONLINE
            assert await reopened.count_probes('p1') == 1
        finally:
            await reopened.close()

    @pytest.mark.asyncio
    async def test_use_before_initialize(self, tmp_path):
        store = SQLiteStore(str(tmp_path / 'monitor.db'))

        with pytest.raises(RuntimeError):
            await store.get_state('p1')


class TestCreateStore:

    def test_memory_by_default(self):
        assert isinstance(create_store(None), MemoryStore)
        assert isinstance(create_store(':memory:'), MemoryStore)

    def test_sqlite_for_path(self, tmp_path):
        store = create_store(str(tmp_path / 'x.db'))
        assert isinstance(store, SQLiteStore)
