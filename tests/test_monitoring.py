"""Tests for the Cloud Monitoring metrics source and metric fetching."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions
from google.cloud import monitoring_v3

from cloudsql_autoscaler.errors import AnalyzerError
from cloudsql_autoscaler.monitoring import (
    CPU_UTILIZATION,
    MEMORY_USAGE,
    MEMORY_UTILIZATION,
    NETWORK_CONNECTIONS,
    POSTGRES_CONNECTIONS,
    CloudMonitoringSource,
    connections_metric,
    fetch_instance_metrics,
)

from conftest import FIXED_NOW, make_instance, make_stream

START = FIXED_NOW - timedelta(hours=1)


def time_series(points):
    return monitoring_v3.TimeSeries({
        "points": [
            {"interval": {"end_time": {"seconds": int(ts.timestamp())}}, "value": value}
            for ts, value in points
        ]
    })


# ═══════════════════════════════════════════════════════════════════════
# CloudMonitoringSource
# ═══════════════════════════════════════════════════════════════════════


class TestCloudMonitoringSource:
    def setup_method(self):
        self.client = MagicMock()
        self.source = CloudMonitoringSource("test-project", client=self.client)

    def test_fetch_reads_points(self):
        t1 = datetime(2026, 1, 15, 11, 0, tzinfo=timezone.utc)
        t2 = datetime(2026, 1, 15, 11, 5, tzinfo=timezone.utc)
        self.client.list_time_series.return_value = [
            time_series([(t1, {"double_value": 0.42}), (t2, {"int64_value": 7})])
        ]

        data = self.source.fetch("db-1", CPU_UTILIZATION, START, FIXED_NOW, timedelta(minutes=5))

        assert data == {t1: pytest.approx(0.42), t2: 7.0}

    def test_fetch_builds_filter(self):
        self.client.list_time_series.return_value = []
        self.source.fetch("db-1", MEMORY_UTILIZATION, START, FIXED_NOW, timedelta(minutes=5))

        request = self.client.list_time_series.call_args.kwargs["request"]
        assert request["name"] == "projects/test-project"
        assert 'resource.type = "cloudsql_database"' in request["filter"]
        assert 'resource.labels.database_id = "test-project:db-1"' in request["filter"]
        assert f'metric.type = "{MEMORY_UTILIZATION}"' in request["filter"]
        assert request["aggregation"].per_series_aligner == monitoring_v3.Aggregation.Aligner.ALIGN_MEAN

    def test_missing_metric_is_empty(self):
        self.client.list_time_series.side_effect = exceptions.NotFound("no such metric")
        assert self.source.fetch("db-1", POSTGRES_CONNECTIONS, START, FIXED_NOW, timedelta(minutes=5)) == {}

    def test_api_error_raises(self):
        self.client.list_time_series.side_effect = exceptions.PermissionDenied("denied")
        with pytest.raises(AnalyzerError):
            self.source.fetch("db-1", CPU_UTILIZATION, START, FIXED_NOW, timedelta(minutes=5))


# ═══════════════════════════════════════════════════════════════════════
# fetch_instance_metrics
# ═══════════════════════════════════════════════════════════════════════


class TestFetchInstanceMetrics:
    def test_connections_metric_by_engine(self):
        assert connections_metric(make_instance(database_version="POSTGRES_15")) == POSTGRES_CONNECTIONS
        assert connections_metric(make_instance(database_version="MYSQL_8_0")) == NETWORK_CONNECTIONS
        assert connections_metric(make_instance(database_version="SQLSERVER_2019_STANDARD")) == NETWORK_CONNECTIONS

    def test_aligns_all_streams(self, metrics_source):
        metrics_source.set_utilization("db-1", [0.5, 0.6], [0.7, 0.8])
        metrics_source.streams[("db-1", MEMORY_USAGE)] = make_stream([1024 ** 3, 2 * 1024 ** 3])
        metrics_source.streams[("db-1", POSTGRES_CONNECTIONS)] = make_stream([3, 4])

        series = fetch_instance_metrics(metrics_source, make_instance("db-1"), START, FIXED_NOW,
                                        timedelta(minutes=5))

        assert series.cpu_utilization == pytest.approx([50.0, 60.0])
        assert series.memory_percent == pytest.approx([70.0, 80.0])
        assert series.memory_usage_gb == [1.0, 2.0]
        assert series.connections == [3, 4]

    def test_cpu_failure_is_fatal(self, metrics_source):
        metrics_source.errors[("db-1", CPU_UTILIZATION)] = RuntimeError("boom")
        with pytest.raises(AnalyzerError, match="CPU"):
            fetch_instance_metrics(metrics_source, make_instance("db-1"), START, FIXED_NOW, timedelta(minutes=5))

    def test_memory_failure_is_fatal(self, metrics_source):
        metrics_source.set_utilization("db-1", [0.5])
        metrics_source.errors[("db-1", MEMORY_UTILIZATION)] = RuntimeError("boom")
        with pytest.raises(AnalyzerError, match="memory"):
            fetch_instance_metrics(metrics_source, make_instance("db-1"), START, FIXED_NOW, timedelta(minutes=5))

    def test_optional_metric_failures_are_tolerated(self, metrics_source):
        metrics_source.set_utilization("db-1", [0.5, 0.5])
        metrics_source.errors[("db-1", MEMORY_USAGE)] = RuntimeError("boom")
        metrics_source.errors[("db-1", POSTGRES_CONNECTIONS)] = RuntimeError("boom")

        series = fetch_instance_metrics(metrics_source, make_instance("db-1"), START, FIXED_NOW,
                                        timedelta(minutes=5))

        assert len(series) == 2
        assert series.memory_usage_gb == [0.0, 0.0]
        assert series.connections == [0, 0]
