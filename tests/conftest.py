"""Pytest configuration, in-memory collaborators and builders."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from cloudsql_autoscaler.config import AutoscalerConfig  # noqa: E402
from cloudsql_autoscaler.errors import AnalyzerError  # noqa: E402
from cloudsql_autoscaler.instances import InstanceDescriptor  # noqa: E402
from cloudsql_autoscaler.machine_types import CATALOG, Edition  # noqa: E402
from cloudsql_autoscaler.metrics_window import MetricSeries, MetricsSummary  # noqa: E402
from cloudsql_autoscaler.monitoring import CPU_UTILIZATION, MEMORY_UTILIZATION  # noqa: E402

FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return FIXED_NOW


# ═══════════════════════════════════════════════════════════════════════
# Builders
# ═══════════════════════════════════════════════════════════════════════


def make_instance(name="db-1", machine_type="db-n1-standard-4", edition=Edition.ENTERPRISE, **kwargs):
    try:
        mt = CATALOG.get(machine_type)
        kwargs.setdefault("current_cpu", mt.cpu)
        kwargs.setdefault("current_memory_gb", mt.memory_gb)
    except LookupError:
        pass
    kwargs.setdefault("database_version", "POSTGRES_15")
    return InstanceDescriptor(name=name, project="test-project", machine_type=machine_type,
                              edition=edition, **kwargs)


def make_summary(cpu_p95=60.0, memory_p95_pct=60.0, data_points=2016, **kwargs):
    return MetricsSummary(cpu_p95=cpu_p95, memory_p95_pct=memory_p95_pct, data_points=data_points, **kwargs)


def make_series(cpu, memory=None, start=None, step=timedelta(minutes=5)):
    start = start or FIXED_NOW - step * len(cpu)
    memory = memory if memory is not None else [50.0] * len(cpu)
    series = MetricSeries()
    for i, (c, m) in enumerate(zip(cpu, memory)):
        series.add(start + step * i, cpu=c, memory_percent=m)
    return series


def make_stream(values, start=None, step=timedelta(minutes=5)):
    """A {timestamp: value} mapping as a metrics source returns it."""
    start = start or FIXED_NOW - step * len(values)
    return {start + step * i: v for i, v in enumerate(values)}


def make_config(**kwargs):
    kwargs.setdefault("project_id", "test-project")
    return AutoscalerConfig(**kwargs)


# ═══════════════════════════════════════════════════════════════════════
# Fakes
# ═══════════════════════════════════════════════════════════════════════


class FakeMetricsSource:
    def __init__(self):
        self.streams = {}
        self.errors = {}
        self.calls = []

    def set_utilization(self, instance, cpu_fractions, memory_fractions=None):
        self.streams[(instance, CPU_UTILIZATION)] = make_stream(cpu_fractions)
        if memory_fractions is None:
            memory_fractions = [0.5] * len(cpu_fractions)
        self.streams[(instance, MEMORY_UTILIZATION)] = make_stream(memory_fractions)

    def fetch(self, instance_id, metric_type, start, end, alignment):
        self.calls.append((instance_id, metric_type, start, end, alignment))
        err = self.errors.get((instance_id, metric_type))
        if err is not None:
            raise err
        return dict(self.streams.get((instance_id, metric_type), {}))


class FakeInstanceController:
    def __init__(self, instances=()):
        self.instances = {i.name: i for i in instances}
        self.operations = {}
        self.update_errors = {}
        self.list_error = None
        self.operations_error = None
        self.updates = []

    def get(self, name):
        if name not in self.instances:
            raise AnalyzerError(f"instance {name} not found")
        return self.instances[name]

    def list_instances(self):
        if self.list_error is not None:
            raise self.list_error
        return list(self.instances.values())

    def recent_operations(self, name, limit=10):
        if self.operations_error is not None:
            raise self.operations_error
        return list(self.operations.get(name, []))[:limit]

    def update_tier(self, name, tier, cancel_event=None):
        err = self.update_errors.get(name)
        if err is not None:
            raise err
        self.updates.append((name, tier))


class RecordingMetricsReporter:
    registry = None

    def __init__(self):
        self.durations = []
        self.completions = 0
        self.errors = []
        self.counts = []
        self.operations = []
        self.utilization = []

    def record_cycle_duration(self, seconds):
        self.durations.append(seconds)

    def record_cycle_completion(self):
        self.completions += 1

    def record_error(self, error_type):
        self.errors.append(error_type)

    def record_instance_counts(self, total, analyzed, scalable):
        self.counts.append((total, analyzed, scalable))

    def record_scaling_operation(self, instance, result):
        self.operations.append((instance, result))

    def record_instance_utilization(self, instance, project, cpu, memory):
        self.utilization.append((instance, project, cpu, memory))


class RecordingEventPublisher:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


@pytest.fixture
def metrics_source():
    return FakeMetricsSource()


@pytest.fixture
def reporter():
    return RecordingMetricsReporter()
