"""Diagnostic counters for assembly, with an optional sqlite sink."""
from __future__ import annotations

import csv
import json
import re
import sqlite3
from dataclasses import dataclass, fields
from datetime import datetime, timedelta, timezone
from pathlib import Path


_RANGE_RE = re.compile(r"^\s*(\d+)\s*([mhd])\s*$")
_RANGE_UNITS = {"m": "minutes", "h": "hours", "d": "days"}

# Expected outcomes, one per envelope; kept in memory only.
_MEMORY_ONLY_COUNTERS = frozenset({"applied", "filtered"})


def _timestamp(delta: timedelta = timedelta(0)) -> str:
    """UTC ISO timestamp, optionally shifted back by *delta*."""
    return (datetime.now(timezone.utc) - delta).isoformat()


def _window(time_range: str) -> timedelta:
    """Parse a window such as ``30m`` or ``6h``. Unparseable means one day."""
    match = _RANGE_RE.match(time_range)
    if match is None:
        return timedelta(days=1)
    return timedelta(**{_RANGE_UNITS[match.group(2)]: int(match.group(1))})


@dataclass
class AssemblyStats:
    """In-memory counters for the non-fatal failure modes."""
    applied: int = 0
    filtered: int = 0
    unrouted: int = 0
    malformed_fields: int = 0
    orphaned_tool_uses: int = 0
    unknown_kinds: int = 0
    duplicate_tool_uses: int = 0
    unmatched_tool_results: int = 0
    late_command_updates: int = 0

    def as_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class TelemetryCollector:
    """Persists counter increments as rows of a sqlite ``metrics`` table.

    Each row carries a UTC timestamp, the counter name, the increment and
    a JSON tag map (``session_id`` for assembly counters).
    """

    _COLUMNS = ("timestamp", "metric_type", "value", "tags_json")

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS metrics ("
                " id INTEGER PRIMARY KEY AUTOINCREMENT,"
                " timestamp TEXT NOT NULL,"
                " metric_type TEXT NOT NULL,"
                " value REAL NOT NULL,"
                " tags_json TEXT NOT NULL DEFAULT '{}')"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_metrics_type_ts ON metrics(metric_type, timestamp)"
            )

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _rows(self, where: str, params: tuple) -> list[sqlite3.Row]:
        query = f"SELECT {', '.join(self._COLUMNS)} FROM metrics WHERE {where} ORDER BY timestamp"
        with self._connect() as conn:
            return conn.execute(query, params).fetchall()

    def record_metric(
        self,
        metric_type: str,
        value: float,
        tags: dict | None = None,
    ) -> None:
        row = (_timestamp(), metric_type, float(value), json.dumps(tags or {}, sort_keys=True))
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO metrics({', '.join(self._COLUMNS)}) VALUES (?, ?, ?, ?)", row,
            )

    def get_summary(self, time_range: str = "24h") -> dict:
        """Totals per metric type, overall and per session."""
        totals: dict[str, float] = {}
        by_session: dict[str, dict[str, float]] = {}
        for row in self._rows("timestamp >= ?", (_timestamp(_window(time_range)),)):
            name = row["metric_type"]
            session_id = str(json.loads(row["tags_json"] or "{}").get("session_id") or "unknown")
            per_session = by_session.setdefault(session_id, {})
            totals[name] = totals.get(name, 0.0) + row["value"]
            per_session[name] = per_session.get(name, 0.0) + row["value"]
        return {"totals": totals, "by_session": by_session}

    def export_csv(self, metric_type: str, output_path: Path) -> None:
        rows = self._rows("metric_type = ?", (metric_type,))
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(self._COLUMNS)
            writer.writerows(tuple(row) for row in rows)


class StatsRecorder:
    """Increments AssemblyStats and mirrors failure counters to telemetry."""

    def __init__(
        self,
        stats: AssemblyStats | None = None,
        collector: TelemetryCollector | None = None,
    ) -> None:
        self.stats = stats if stats is not None else AssemblyStats()
        self._collector = collector

    def incr(self, counter: str, session_id: str | None = None, amount: int = 1) -> None:
        setattr(self.stats, counter, getattr(self.stats, counter) + amount)
        if self._collector is not None and counter not in _MEMORY_ONLY_COUNTERS:
            self._collector.record_metric(counter, amount, {"session_id": session_id})
