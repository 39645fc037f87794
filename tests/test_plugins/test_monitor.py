"""Tests for plugin operation metrics."""

from __future__ import annotations

import pytest

from scaffoldkit.plugins.monitor import OperationType, PerformanceThresholds, PluginMonitor

pytestmark = pytest.mark.unit


class TestPluginMonitor:
    def test_start_and_end(self):
        monitor = PluginMonitor()
        op = monitor.start_operation("demo", OperationType.INITIALIZE, source="test")
        assert monitor.stats()["active_operations"] == 1

        monitor.end_operation(op)
        metrics = monitor.metrics("demo")
        assert len(metrics) == 1
        assert metrics[0].success
        assert metrics[0].metadata == {"source": "test"}
        assert monitor.stats() == {"plugins": 1, "operations": 1, "active_operations": 0}

    def test_disabled(self):
        monitor = PluginMonitor(enabled=False)
        op = monitor.start_operation("demo", OperationType.INITIALIZE)
        monitor.end_operation(op)
        assert op == ""
        assert monitor.report("demo") is None

    def test_unknown_operation_id_ignored(self):
        monitor = PluginMonitor()
        monitor.end_operation("nope")
        assert monitor.stats()["operations"] == 0

    def test_history_bounded(self):
        monitor = PluginMonitor(max_history=3)
        for _ in range(5):
            monitor.end_operation(monitor.start_operation("demo", OperationType.GET_TEMPLATES))
        assert len(monitor.metrics("demo")) == 3

    async def test_track_records_failure(self):
        monitor = PluginMonitor()
        with pytest.raises(RuntimeError):
            async with monitor.track("demo", OperationType.GENERATE_SCAFFOLD):
                raise RuntimeError("broken")
        metric = monitor.metrics("demo")[0]
        assert not metric.success
        assert metric.error == "broken"

    async def test_track_soft_failure(self):
        monitor = PluginMonitor()
        async with monitor.track("demo", OperationType.GENERATE_SCAFFOLD) as handle:
            handle.success = False
            handle.error = "result said no"
        report = monitor.report("demo")
        assert report.success_rate == 0.0
        assert report.last_error == "result said no"

    def test_report(self):
        monitor = PluginMonitor()
        for index in range(12):
            op = monitor.start_operation("demo", OperationType.GET_TEMPLATES)
            monitor.end_operation(op, success=index != 0, error="first" if index == 0 else None)

        report = monitor.report("demo")
        assert report.total_operations == 12
        assert report.operations[0].operation is OperationType.GET_TEMPLATES
        assert report.operations[0].count == 12
        categories = {r.category for r in report.recommendations}
        assert "reliability" in categories
        assert "scalability" in categories
        assert {t.metric for t in report.trends} >= {"success_rate"}

    def test_threshold_warning_logged(self, plugin_context):
        thresholds = PerformanceThresholds(max_initialization_time=0.0)
        monitor = PluginMonitor(plugin_context.logger, thresholds=thresholds)
        op = monitor.start_operation("demo", OperationType.INITIALIZE)
        monitor._active[op].started_at -= 1.0
        monitor.end_operation(op)
        assert any(r.message == "Performance threshold exceeded" for r in plugin_context.logger.records)

    def test_clear(self):
        monitor = PluginMonitor()
        monitor.end_operation(monitor.start_operation("a", OperationType.CLEANUP))
        monitor.end_operation(monitor.start_operation("b", OperationType.CLEANUP))
        monitor.clear("a")
        assert monitor.metrics("a") == []
        monitor.clear()
        assert monitor.stats()["plugins"] == 0
