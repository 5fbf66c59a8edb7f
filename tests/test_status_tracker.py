"""测试状态跟踪器"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from bot_keeper.models.monitor import (
    Project, ProbeResult, ProbeOutcome, ProbeErrorType, ProjectState, ProjectStatus
)
from bot_keeper.services.status_tracker import StatusTracker
from bot_keeper.storage import MemoryStore
from bot_keeper.utils.exceptions import PersistenceError, ErrorCode

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def success(seconds=0, latency=120):
    return ProbeResult(
        url='https://example.com', outcome=ProbeOutcome.SUCCESS, status_code=200,
        latency_ms=latency, method='HEAD', timestamp=BASE_TIME + timedelta(seconds=seconds)
    )


def failure(seconds=0):
    return ProbeResult(
        url='https://example.com', outcome=ProbeOutcome.FAILURE,
        error_message='GET 连接失败: refused', error_type=ProbeErrorType.CONNECTION,
        method='GET', timestamp=BASE_TIME + timedelta(seconds=seconds)
    )


class FailingStore(MemoryStore):
    """指定操作抛出异常的存储"""

    def __init__(self, failing_operation):
        super().__init__()
        self.failing_operation = failing_operation

    async def get_state(self, project_id):
        if self.failing_operation == 'get_state':
            raise OSError("disk I/O error")
        return await super().get_state(project_id)

    async def append_probe(self, result):
        if self.failing_operation == 'append_probe':
            raise OSError("disk I/O error")
        await super().append_probe(result)

    async def upsert_state(self, state):
        if self.failing_operation == 'upsert_state':
            raise OSError("database is locked")
        await super().upsert_state(state)


class TestStatusTracker:
    """测试StatusTracker类"""

    @pytest.mark.asyncio
    async def test_first_observation_is_transition(self):
        tracker = StatusTracker(MemoryStore())
        project = Project('p1', 'https://example.com', 'Example')

        event = await tracker.record('p1', success(), project)

        assert event is not None
        assert event.previous_status == ProjectStatus.UNKNOWN
        assert event.new_status == ProjectStatus.ONLINE
        assert event.project_name == 'Example'
        assert event.latency_ms == 120
        assert event.timestamp == BASE_TIME

    @pytest.mark.asyncio
    async def test_unchanged_status_has_no_event(self):
        store = MemoryStore()
        await store.upsert_state(ProjectState('p1', ProjectStatus.ONLINE, BASE_TIME, 0))
        tracker = StatusTracker(store)

        event = await tracker.record('p1', success(seconds=60))

        assert event is None
        state = await store.get_state('p1')
        assert state.last_status == ProjectStatus.ONLINE
        assert state.last_checked == BASE_TIME + timedelta(seconds=60)

    @pytest.mark.asyncio
    async def test_single_failure_flips_offline(self):
        store = MemoryStore()
        await store.upsert_state(ProjectState('p1', ProjectStatus.ONLINE, BASE_TIME, 0))
        tracker = StatusTracker(store)

        event = await tracker.record('p1', failure(seconds=60))

        assert event.previous_status == ProjectStatus.ONLINE
        assert event.new_status == ProjectStatus.OFFLINE
        assert event.is_down
        assert 'refused' in event.error_message

    @pytest.mark.asyncio
    async def test_consecutive_failures(self):
        store = MemoryStore()
        tracker = StatusTracker(store)

        events = [await tracker.record('p1', failure(seconds=i * 60)) for i in range(3)]

        assert events[0] is not None
        assert events[1] is None and events[2] is None
        assert (await tracker.get_state('p1')).consecutive_failures == 3

        await tracker.record('p1', success(seconds=300))
        state = await tracker.get_state('p1')
        assert state.consecutive_failures == 0
        assert state.last_status == ProjectStatus.ONLINE

    @pytest.mark.asyncio
    async def test_history_appended_every_time(self):
        store = MemoryStore()
        tracker = StatusTracker(store)

        await tracker.record('p1', success(seconds=0))
        await tracker.record('p1', success(seconds=60))

        history = await tracker.get_history('p1')
        assert len(history) == 2
        assert all(r.project_id == 'p1' for r in history)
        assert history[0].timestamp > history[1].timestamp

    @pytest.mark.asyncio
    async def test_unknown_project_state(self):
        tracker = StatusTracker(MemoryStore())

        state = await tracker.get_state('never-checked')

        assert state.last_status == ProjectStatus.UNKNOWN
        assert state.last_checked is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize('operation,code', [
        ('get_state', ErrorCode.STATE_READ_ERROR),
        ('append_probe', ErrorCode.HISTORY_APPEND_ERROR),
        ('upsert_state', ErrorCode.STATE_WRITE_ERROR),
    ])
    async def test_persistence_errors(self, operation, code):
        tracker = StatusTracker(FailingStore(operation))

        with pytest.raises(PersistenceError) as exc_info:
            await tracker.record('p1', success())

        assert exc_info.value.error_code == code
        assert exc_info.value.details['project_id'] == 'p1'
        assert isinstance(exc_info.value.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_failed_state_write_emits_no_event(self):
        """状态写入失败时不产生事件，下一轮仍以旧状态为基准"""
        store = FailingStore('upsert_state')
        tracker = StatusTracker(store)

        with pytest.raises(PersistenceError):
            await tracker.record('p1', failure())

        store.failing_operation = None
        event = await tracker.record('p1', failure(seconds=60))
        assert event is not None
        assert event.previous_status == ProjectStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_concurrent_records_same_project(self):
        store = MemoryStore()
        tracker = StatusTracker(store)

        await asyncio.gather(*(tracker.record('p1', failure(seconds=i)) for i in range(5)))

        state = await tracker.get_state('p1')
        assert state.consecutive_failures == 5
        assert await store.count_probes('p1') == 5

    @pytest.mark.asyncio
    async def test_project_stats(self):
        tracker = StatusTracker(MemoryStore())
        await tracker.record('p1', success(seconds=0, latency=100))
        await tracker.record('p1', success(seconds=60, latency=300))
        await tracker.record('p1', failure(seconds=120))
        await tracker.record('p1', success(seconds=180, latency=200))

        stats = await tracker.get_project_stats('p1')

        assert stats['total_probes'] == 4
        assert stats['successful_probes'] == 3
        assert stats['failed_probes'] == 1
        assert stats['uptime_percentage'] == 75.0
        assert stats['average_latency_ms'] == 200.0
        assert stats['current_status'] == 'online'

    @pytest.mark.asyncio
    async def test_project_stats_empty(self):
        stats = await StatusTracker(MemoryStore()).get_project_stats('p1')

        assert stats['total_probes'] == 0
        assert stats['uptime_percentage'] == 0
        assert stats['average_latency_ms'] is None
        assert stats['current_status'] == 'unknown'
