"""SQLite 存储实现（aiosqlite）"""

import json
from datetime import datetime, timezone
from typing import Dict, List, Optional

import aiosqlite

from .base import MonitorStore
from ..models.monitor import (
    Project, ProbeResult, ProbeOutcome, ProbeErrorType, ProjectState,
    ProjectStatus, ChannelConfig
)
from ..utils.log_manager import get_logger

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS projects (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    url             TEXT NOT NULL,
    enabled         INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS probe_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id      TEXT NOT NULL,
    url             TEXT NOT NULL,
    outcome         TEXT NOT NULL,
    status_code     INTEGER,
    latency_ms      INTEGER,
    error_message   TEXT,
    error_type      TEXT,
    method          TEXT,
    checked_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_probe_history_project
    ON probe_history (project_id, checked_at);

CREATE TABLE IF NOT EXISTS project_state (
    project_id           TEXT PRIMARY KEY,
    last_status          TEXT NOT NULL DEFAULT 'unknown',
    last_checked         TEXT,
    consecutive_failures INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS channel_settings (
    channel_type    TEXT PRIMARY KEY,
    enabled         INTEGER NOT NULL DEFAULT 0,
    destination     TEXT NOT NULL DEFAULT '',
    display_name    TEXT,
    notify_on_up    INTEGER NOT NULL DEFAULT 1,
    notify_on_down  INTEGER NOT NULL DEFAULT 1,
    options         TEXT NOT NULL DEFAULT '{}'
);
"""

# 定长格式，保证字符串比较与时间先后一致
_TS_FORMAT = '%Y-%m-%dT%H:%M:%S.%f+00:00'


def _to_text(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _from_text(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)


class SQLiteStore(MonitorStore):
    """基于 SQLite 的监控数据存储"""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self.logger = get_logger('storage.sqlite')

    async def initialize(self) -> None:
        if self._db is not None:
            return
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()
        self.logger.info(f"SQLite 存储已初始化: {self.db_path}")

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("SQLite 存储尚未初始化")
        return self._db

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def list_projects(self, enabled_only: bool = False) -> List[Project]:
        sql = "SELECT * FROM projects"
        if enabled_only:
            sql += " WHERE enabled = 1"
        sql += " ORDER BY id"
        async with self.db.execute(sql) as cur:
            return [self._row_to_project(row) for row in await cur.fetchall()]

    async def get_project(self, project_id: str) -> Optional[Project]:
        async with self.db.execute("SELECT * FROM projects WHERE id = ?", (project_id,)) as cur:
            row = await cur.fetchone()
            return self._row_to_project(row) if row else None

    async def upsert_project(self, project: Project) -> None:
        await self.db.execute(
            "INSERT INTO projects (id, name, url, enabled) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name = excluded.name, url = excluded.url, "
            "enabled = excluded.enabled",
            (project.id, project.name, project.url, int(project.enabled)),
        )
        await self.db.commit()

    @staticmethod
    def _row_to_project(row: aiosqlite.Row) -> Project:
        return Project(id=row['id'], url=row['url'], name=row['name'], enabled=bool(row['enabled']))

    # ------------------------------------------------------------------
    # Project state
    # ------------------------------------------------------------------

    async def get_state(self, project_id: str) -> Optional[ProjectState]:
        async with self.db.execute(
            "SELECT * FROM project_state WHERE project_id = ?", (project_id,)
        ) as cur:
            row = await cur.fetchone()
        if not row:
            return None
        return ProjectState(
            project_id=row['project_id'],
            last_status=ProjectStatus(row['last_status']),
            last_checked=_from_text(row['last_checked']),
            consecutive_failures=row['consecutive_failures'],
        )

    async def upsert_state(self, state: ProjectState) -> None:
        await self.db.execute(
            "INSERT INTO project_state (project_id, last_status, last_checked, consecutive_failures) "
            "VALUES (?, ?, ?, ?) "
            "ON CONFLICT(project_id) DO UPDATE SET last_status = excluded.last_status, "
            "last_checked = excluded.last_checked, "
            "consecutive_failures = excluded.consecutive_failures",
            (state.project_id, state.last_status.value, _to_text(state.last_checked),
             state.consecutive_failures),
        )
        await self.db.commit()

    # ------------------------------------------------------------------
    # Probe history
    # ------------------------------------------------------------------

    async def append_probe(self, result: ProbeResult) -> None:
        await self.db.execute(
            "INSERT INTO probe_history (project_id, url, outcome, status_code, latency_ms, "
            "error_message, error_type, method, checked_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                result.project_id,
                result.url,
                result.outcome.value,
                result.status_code,
                result.latency_ms,
                result.error_message,
                result.error_type.value if result.error_type else None,
                result.method,
                _to_text(result.timestamp),
            ),
        )
        await self.db.commit()

    async def get_history(self, project_id: str, since: Optional[datetime] = None,
                          limit: Optional[int] = None) -> List[ProbeResult]:
        sql = "SELECT * FROM probe_history WHERE project_id = ?"
        params: list = [project_id]
        if since is not None:
            sql += " AND checked_at >= ?"
            params.append(_to_text(since))
        sql += " ORDER BY checked_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        async with self.db.execute(sql, params) as cur:
            rows = await cur.fetchall()

        return [
            ProbeResult(
                url=row['url'],
                outcome=ProbeOutcome(row['outcome']),
                project_id=row['project_id'],
                status_code=row['status_code'],
                latency_ms=row['latency_ms'],
                error_message=row['error_message'],
                error_type=ProbeErrorType(row['error_type']) if row['error_type'] else None,
                method=row['method'],
                timestamp=_from_text(row['checked_at']),
            )
            for row in rows
        ]

    async def count_probes(self, project_id: str) -> int:
        async with self.db.execute(
            "SELECT COUNT(*) AS n FROM probe_history WHERE project_id = ?", (project_id,)
        ) as cur:
            row = await cur.fetchone()
            return int(row['n'])

    # ------------------------------------------------------------------
    # Channel settings
    # ------------------------------------------------------------------

    async def get_channel_settings(self) -> Dict[str, ChannelConfig]:
        async with self.db.execute("SELECT * FROM channel_settings") as cur:
            rows = await cur.fetchall()
        return {
            row['channel_type']: ChannelConfig(
                channel_type=row['channel_type'],
                enabled=bool(row['enabled']),
                destination=row['destination'],
                display_name=row['display_name'],
                notify_on_up=bool(row['notify_on_up']),
                notify_on_down=bool(row['notify_on_down']),
                options=json.loads(row['options'] or '{}'),
            )
            for row in rows
        }

    async def upsert_channel_settings(self, config: ChannelConfig) -> None:
        await self.db.execute(
            "INSERT INTO channel_settings (channel_type, enabled, destination, display_name, "
            "notify_on_up, notify_on_down, options) VALUES (?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(channel_type) DO UPDATE SET enabled = excluded.enabled, "
            "destination = excluded.destination, display_name = excluded.display_name, "
            "notify_on_up = excluded.notify_on_up, notify_on_down = excluded.notify_on_down, "
            "options = excluded.options",
            (
                config.channel_type,
                int(config.enabled),
                config.destination,
                config.display_name,
                int(config.notify_on_up),
                int(config.notify_on_down),
                json.dumps(config.options),
            ),
        )
        await self.db.commit()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            self.logger.info("SQLite 存储已关闭")
