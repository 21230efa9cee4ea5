"""SQLite-backed store for single-host deployments.

Every call opens its own connection on a worker thread, so the event loop never
blocks on disk I/O. Timestamps are stored as UTC epoch seconds.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import structlog

from ..errors import StorageError, StorageUnavailableError
from ..models import AlertLog, HealthSample, Incident, Project, ReliabilityScore, Service
from ..notifications.rules import AlertRule


logger = structlog.get_logger(__name__)

SCHEMA_VERSION = 2

T = TypeVar("T")


def _to_ts(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _from_ts(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise StorageUnavailableError("Missing database path")
    try:
        Path(p).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    except (OSError, sqlite3.Error) as e:
        raise StorageUnavailableError(f"Cannot open database {p}: {e}") from e
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000;")
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.Error:
        logger.debug("WAL journal mode unavailable", path=p)
    return conn


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS projects (
          id TEXT PRIMARY KEY,
          name TEXT NOT NULL,
          owner_email TEXT
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS services (
          id TEXT PRIMARY KEY,
          name TEXT NOT NULL,
          url TEXT NOT NULL,
          project_id TEXT,
          metrics_url TEXT,
          grp TEXT NOT NULL DEFAULT 'Default',
          owner_email TEXT,
          active INTEGER NOT NULL DEFAULT 1,
          slo_target REAL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS health_samples (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          service_id TEXT NOT NULL,
          ts REAL NOT NULL,
          status TEXT NOT NULL, -- ok|degraded|down
          latency_ms REAL NOT NULL DEFAULT 0,
          cpu_percent REAL NOT NULL DEFAULT 0,
          memory_mb REAL NOT NULL DEFAULT 0,
          response_code INTEGER NOT NULL DEFAULT 0,
          error_count INTEGER NOT NULL DEFAULT 0
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS incidents (
          id TEXT PRIMARY KEY,
          service_id TEXT NOT NULL,
          type TEXT NOT NULL, -- down|latency|error_rate
          severity TEXT NOT NULL,
          started_at_ts REAL NOT NULL,
          ended_at_ts REAL,
          resolved INTEGER NOT NULL DEFAULT 0,
          details TEXT NOT NULL DEFAULT ''
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS reliability_scores (
          service_id TEXT PRIMARY KEY,
          uptime_percent REAL NOT NULL,
          p50_latency_ms REAL NOT NULL,
          p95_latency_ms REAL NOT NULL,
          p99_latency_ms REAL NOT NULL,
          error_rate_percent REAL NOT NULL,
          slo_target_percent REAL NOT NULL,
          status TEXT NOT NULL, -- PASS|FAIL
          last_calculated_ts REAL NOT NULL,
          sample_count INTEGER NOT NULL DEFAULT 0
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_samples_service_ts ON health_samples(service_id, ts);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_incidents_service ON incidents(service_id, started_at_ts);")


def _apply_v2(conn: sqlite3.Connection) -> None:
    """
    v2 adds alert rules and the alert log, and enforces one open incident per
    (service, type) at the database level.
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS alert_rules (
          service_id TEXT PRIMARY KEY,
          enabled INTEGER NOT NULL DEFAULT 1,
          rule_json TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS alert_logs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          service_id TEXT NOT NULL,
          channel TEXT NOT NULL,
          message TEXT NOT NULL,
          ts REAL NOT NULL,
          success INTEGER NOT NULL,
          error TEXT
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_alert_logs_service ON alert_logs(service_id, ts);")
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_incidents_one_open "
        "ON incidents(service_id, type) WHERE resolved = 0;"
    )


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return

    if cur == 0:
        _apply_v1(conn)
        _apply_v2(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return

    if cur == 1:
        _apply_v2(conn)
        conn.execute("UPDATE schema_meta SET v=? WHERE k='version'", (str(SCHEMA_VERSION),))
        return

    raise StorageError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _row_to_service(r: sqlite3.Row) -> Service:
    return Service(
        id=str(r["id"]),
        name=str(r["name"]),
        url=str(r["url"]),
        project_id=r["project_id"],
        metrics_url=r["metrics_url"],
        group=str(r["grp"]),
        owner_email=r["owner_email"],
        active=bool(r["active"]),
        slo_target=r["slo_target"],
    )


def _row_to_sample(r: sqlite3.Row) -> HealthSample:
    return HealthSample(
        service_id=str(r["service_id"]),
        timestamp=_from_ts(r["ts"]),
        status=str(r["status"]),
        latency_ms=float(r["latency_ms"]),
        cpu_percent=float(r["cpu_percent"]),
        memory_mb=float(r["memory_mb"]),
        response_code=int(r["response_code"]),
    )


def _row_to_incident(r: sqlite3.Row) -> Incident:
    return Incident(
        id=str(r["id"]),
        service_id=str(r["service_id"]),
        type=str(r["type"]),
        severity=str(r["severity"]),
        started_at=_from_ts(r["started_at_ts"]),
        ended_at=_from_ts(r["ended_at_ts"]),
        resolved=bool(r["resolved"]),
        details=str(r["details"] or ""),
    )


def _row_to_score(r: sqlite3.Row) -> ReliabilityScore:
    return ReliabilityScore(
        service_id=str(r["service_id"]),
        uptime_percent=float(r["uptime_percent"]),
        p50_latency_ms=float(r["p50_latency_ms"]),
        p95_latency_ms=float(r["p95_latency_ms"]),
        p99_latency_ms=float(r["p99_latency_ms"]),
        error_rate_percent=float(r["error_rate_percent"]),
        slo_target_percent=float(r["slo_target_percent"]),
        status=str(r["status"]),
        last_calculated=_from_ts(r["last_calculated_ts"]),
        sample_count=int(r["sample_count"]),
    )


class SQLiteStore:
    """Implements every store protocol on one SQLite file."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._schema_ready = False
        self._schema_lock = threading.Lock()

    def _run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        conn = _connect(self.db_path)
        try:
            if not self._schema_ready:
                with self._schema_lock:
                    _ensure_schema_conn(conn)
                    self._schema_ready = True
            return fn(conn)
        except sqlite3.OperationalError as e:
            raise StorageUnavailableError(str(e)) from e
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    async def _call(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        return await asyncio.to_thread(self._run, fn)

    async def initialize(self) -> None:
        await self._call(lambda conn: None)

    # --- registry ---
    async def save_project(self, project: Project) -> None:
        def op(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT INTO projects (id, name, owner_email) VALUES (?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET name=excluded.name, owner_email=excluded.owner_email",
                (project.id, project.name, project.owner_email),
            )

        await self._call(op)

    async def save_service(self, service: Service) -> None:
        def op(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT INTO services (id, name, url, project_id, metrics_url, grp, owner_email, active, slo_target)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  name=excluded.name, url=excluded.url, project_id=excluded.project_id,
                  metrics_url=excluded.metrics_url, grp=excluded.grp, owner_email=excluded.owner_email,
                  active=excluded.active, slo_target=excluded.slo_target
                """,
                (
                    service.id,
                    service.name,
                    service.url,
                    service.project_id,
                    service.metrics_url,
                    service.group,
                    service.owner_email,
                    1 if service.active else 0,
                    service.slo_target,
                ),
            )

        await self._call(op)

    async def list_active(self) -> list[Service]:
        rows = await self._call(
            lambda conn: conn.execute("SELECT * FROM services WHERE active=1 ORDER BY name").fetchall()
        )
        return [_row_to_service(r) for r in rows]

    async def list_all(self) -> list[Service]:
        rows = await self._call(lambda conn: conn.execute("SELECT * FROM services ORDER BY name").fetchall())
        return [_row_to_service(r) for r in rows]

    async def get_by_id(self, service_id: str) -> Service | None:
        row = await self._call(
            lambda conn: conn.execute("SELECT * FROM services WHERE id=?", (service_id,)).fetchone()
        )
        return _row_to_service(row) if row else None

    async def get_project(self, project_id: str) -> Project | None:
        row = await self._call(
            lambda conn: conn.execute("SELECT * FROM projects WHERE id=?", (project_id,)).fetchone()
        )
        if not row:
            return None
        return Project(id=str(row["id"]), name=str(row["name"]), owner_email=row["owner_email"])

    # --- samples ---
    async def append(self, sample: HealthSample) -> None:
        def op(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT INTO health_samples
                  (service_id, ts, status, latency_ms, cpu_percent, memory_mb, response_code, error_count)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    sample.service_id,
                    _to_ts(sample.timestamp),
                    sample.status,
                    sample.latency_ms,
                    sample.cpu_percent,
                    sample.memory_mb,
                    sample.response_code,
                    sample.error_count,
                ),
            )

        await self._call(op)

    async def latest_for(self, service_id: str) -> HealthSample | None:
        row = await self._call(
            lambda conn: conn.execute(
                "SELECT * FROM health_samples WHERE service_id=? ORDER BY ts DESC, id DESC LIMIT 1",
                (service_id,),
            ).fetchone()
        )
        return _row_to_sample(row) if row else None

    async def range_for(self, service_id: str, since: datetime) -> list[HealthSample]:
        rows = await self._call(
            lambda conn: conn.execute(
                "SELECT * FROM health_samples WHERE service_id=? AND ts>=? ORDER BY ts ASC, id ASC",
                (service_id, _to_ts(since)),
            ).fetchall()
        )
        return [_row_to_sample(r) for r in rows]

    async def count_for(self, service_id: str) -> int:
        row = await self._call(
            lambda conn: conn.execute(
                "SELECT COUNT(*) AS n FROM health_samples WHERE service_id=?", (service_id,)
            ).fetchone()
        )
        return int(row["n"]) if row else 0

    # --- incidents ---
    async def find_open(self, service_id: str, incident_type: str) -> Incident | None:
        row = await self._call(
            lambda conn: conn.execute(
                "SELECT * FROM incidents WHERE service_id=? AND type=? AND resolved=0 LIMIT 1",
                (service_id, incident_type),
            ).fetchone()
        )
        return _row_to_incident(row) if row else None

    async def create(self, incident: Incident) -> Incident:
        incident_id = incident.id or str(uuid.uuid4())

        def op(conn: sqlite3.Connection) -> None:
            try:
                conn.execute(
                    """
                    INSERT INTO incidents
                      (id, service_id, type, severity, started_at_ts, ended_at_ts, resolved, details)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        incident_id,
                        incident.service_id,
                        incident.type,
                        incident.severity,
                        _to_ts(incident.started_at),
                        _to_ts(incident.ended_at) if incident.ended_at else None,
                        1 if incident.resolved else 0,
                        incident.details,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise StorageError(
                    f"Open {incident.type} incident already exists for {incident.service_id}"
                ) from e

        await self._call(op)
        return Incident(
            id=incident_id,
            service_id=incident.service_id,
            type=incident.type,
            severity=incident.severity,
            started_at=incident.started_at,
            ended_at=incident.ended_at,
            resolved=incident.resolved,
            details=incident.details,
        )

    async def resolve(self, incident_id: str, ended_at: datetime) -> None:
        def op(conn: sqlite3.Connection) -> None:
            cur = conn.execute(
                "UPDATE incidents SET resolved=1, ended_at_ts=? WHERE id=?",
                (_to_ts(ended_at), incident_id),
            )
            if cur.rowcount == 0:
                raise StorageError(f"Unknown incident {incident_id}")

        await self._call(op)

    async def list_for(self, service_id: str) -> list[Incident]:
        rows = await self._call(
            lambda conn: conn.execute(
                "SELECT * FROM incidents WHERE service_id=? ORDER BY started_at_ts ASC", (service_id,)
            ).fetchall()
        )
        return [_row_to_incident(r) for r in rows]

    # --- alert rules and logs ---
    async def save_alert_rule(self, rule: AlertRule) -> None:
        def op(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT INTO alert_rules (service_id, enabled, rule_json) VALUES (?, ?, ?) "
                "ON CONFLICT(service_id) DO UPDATE SET enabled=excluded.enabled, rule_json=excluded.rule_json",
                (rule.service_id, 1 if rule.enabled else 0, rule.model_dump_json()),
            )

        await self._call(op)

    async def find_enabled_for(self, service_id: str) -> AlertRule | None:
        row = await self._call(
            lambda conn: conn.execute(
                "SELECT rule_json FROM alert_rules WHERE service_id=? AND enabled=1", (service_id,)
            ).fetchone()
        )
        if not row:
            return None
        return AlertRule.model_validate_json(row["rule_json"])

    async def append_log(self, log: AlertLog) -> None:
        def op(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT INTO alert_logs (service_id, channel, message, ts, success, error) VALUES (?, ?, ?, ?, ?, ?)",
                (log.service_id, log.channel, log.message, _to_ts(log.timestamp), 1 if log.success else 0, log.error),
            )

        await self._call(op)

    async def logs_for(self, service_id: str) -> list[AlertLog]:
        rows = await self._call(
            lambda conn: conn.execute(
                "SELECT * FROM alert_logs WHERE service_id=? ORDER BY ts ASC, id ASC", (service_id,)
            ).fetchall()
        )
        return [
            AlertLog(
                service_id=str(r["service_id"]),
                channel=str(r["channel"]),
                message=str(r["message"]),
                timestamp=_from_ts(r["ts"]),
                success=bool(r["success"]),
                error=r["error"],
            )
            for r in rows
        ]

    # --- reliability ---
    async def upsert(self, score: ReliabilityScore) -> ReliabilityScore:
        values: tuple[Any, ...] = (
            score.service_id,
            score.uptime_percent,
            score.p50_latency_ms,
            score.p95_latency_ms,
            score.p99_latency_ms,
            score.error_rate_percent,
            score.slo_target_percent,
            score.status,
            _to_ts(score.last_calculated),
            score.sample_count,
        )

        def op(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT INTO reliability_scores
                  (service_id, uptime_percent, p50_latency_ms, p95_latency_ms, p99_latency_ms,
                   error_rate_percent, slo_target_percent, status, last_calculated_ts, sample_count)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(service_id) DO UPDATE SET
                  uptime_percent=excluded.uptime_percent,
                  p50_latency_ms=excluded.p50_latency_ms,
                  p95_latency_ms=excluded.p95_latency_ms,
                  p99_latency_ms=excluded.p99_latency_ms,
                  error_rate_percent=excluded.error_rate_percent,
                  slo_target_percent=excluded.slo_target_percent,
                  status=excluded.status,
                  last_calculated_ts=excluded.last_calculated_ts,
                  sample_count=excluded.sample_count
                """,
                values,
            )

        await self._call(op)
        return score

    async def get_score(self, service_id: str) -> ReliabilityScore | None:
        row = await self._call(
            lambda conn: conn.execute(
                "SELECT * FROM reliability_scores WHERE service_id=?", (service_id,)
            ).fetchone()
        )
        return _row_to_score(row) if row else None
