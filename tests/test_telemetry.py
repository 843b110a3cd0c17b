"""Tests for assembly counters and the sqlite sink."""
from __future__ import annotations

import csv

from chatloom.engine.telemetry import AssemblyStats, StatsRecorder, TelemetryCollector


def test_stats_as_dict_lists_every_counter():
    stats = AssemblyStats(filtered=2)
    data = stats.as_dict()
    assert data["filtered"] == 2
    assert set(data) >= {"applied", "orphaned_tool_uses", "unknown_kinds"}


def test_recorder_mirrors_failures_only(tmp_path):
    collector = TelemetryCollector(tmp_path / "telemetry.sqlite3")
    recorder = StatsRecorder(collector=collector)

    recorder.incr("applied", "a")
    recorder.incr("filtered", "b")
    recorder.incr("unmatched_tool_results", "b")
    recorder.incr("unmatched_tool_results", "b")
    recorder.incr("orphaned_tool_uses", "a")

    assert recorder.stats.applied == 1
    assert recorder.stats.filtered == 1
    summary = collector.get_summary("1h")
    assert summary["totals"] == {"unmatched_tool_results": 2.0, "orphaned_tool_uses": 1.0}
    assert summary["by_session"]["b"] == {"unmatched_tool_results": 2.0}


def test_export_csv(tmp_path):
    collector = TelemetryCollector(tmp_path / "telemetry.sqlite3")
    collector.record_metric("unknown_kinds", 1, {"session_id": "a"})
    out = tmp_path / "out" / "unknown.csv"

    collector.export_csv("unknown_kinds", out)

    with out.open(encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert rows[0] == ["timestamp", "metric_type", "value", "tags_json"]
    assert rows[1][1] == "unknown_kinds"
    assert "session_id" in rows[1][3]


def test_summary_for_unknown_range_defaults_to_a_day(tmp_path):
    collector = TelemetryCollector(tmp_path / "telemetry.sqlite3")
    collector.record_metric("unknown_kinds", 1)
    summary = collector.get_summary("whenever")
    assert summary["totals"] == {"unknown_kinds": 1.0}
    assert summary["by_session"] == {"unknown": {"unknown_kinds": 1.0}}
