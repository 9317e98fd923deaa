import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List


@dataclass
class MetricSeries:
    """Metric samples aligned on a shared, ascending set of timestamps.

    Every list has the same length; index i of each list belongs to timestamps[i].
    CPU and memory utilization are percentages (0-100), memory usage is in GB.
    """

    timestamps: List[datetime] = field(default_factory=list)
    cpu_utilization: List[float] = field(default_factory=list)
    memory_percent: List[float] = field(default_factory=list)
    memory_usage_gb: List[float] = field(default_factory=list)
    connections: List[int] = field(default_factory=list)

    def add(self, timestamp, cpu=0.0, memory_percent=0.0, memory_gb=0.0, connections=0):
        if self.timestamps and timestamp <= self.timestamps[-1]:
            raise ValueError(f"samples must be added in ascending order ({timestamp} <= {self.timestamps[-1]})")
        self.timestamps.append(timestamp)
        self.cpu_utilization.append(cpu)
        self.memory_percent.append(memory_percent)
        self.memory_usage_gb.append(memory_gb)
        self.connections.append(connections)

    def __len__(self):
        return len(self.timestamps)

    @classmethod
    def align(cls, cpu, memory_percent=None, memory_bytes=None, connections=None):
        """Align independently sampled streams onto the CPU stream's timestamps.

        Each stream is a {timestamp: value} mapping as returned by a metrics source.
        Utilization fractions become percentages, bytes become GB, and samples
        missing from a secondary stream default to zero.
        """
        memory_percent = memory_percent or {}
        memory_bytes = memory_bytes or {}
        connections = connections or {}

        series = cls()
        for ts in sorted(cpu):
            series.timestamps.append(ts)
            series.cpu_utilization.append(cpu[ts] * 100)
            series.memory_percent.append(memory_percent.get(ts, 0.0) * 100)
            series.memory_usage_gb.append(memory_bytes.get(ts, 0.0) / 1024 / 1024 / 1024)
            series.connections.append(int(connections.get(ts, 0)))
        return series

    def get_stats(self):
        return summarize(self)


@dataclass(frozen=True)
class MetricsSummary:
    cpu_avg: float = 0.0
    cpu_p95: float = 0.0
    cpu_p99: float = 0.0
    cpu_max: float = 0.0
    memory_avg_gb: float = 0.0
    memory_p95_gb: float = 0.0
    memory_p99_gb: float = 0.0
    memory_max_gb: float = 0.0
    memory_avg_pct: float = 0.0
    memory_p95_pct: float = 0.0
    memory_p99_pct: float = 0.0
    connections_avg: float = 0.0
    connections_max: int = 0
    period: timedelta = timedelta(0)
    data_points: int = 0


def calculate_average(values):
    if not values:
        return 0
    return sum(values) / len(values)

def calculate_max(values):
    if not values:
        return 0
    return max(values)

def calculate_percentile(values, percentile):
    """Percentile with linear interpolation between order statistics."""
    if not values:
        return 0
    sorted_vals = sorted(values)
    rank = (percentile / 100) * (len(sorted_vals) - 1)
    lower = int(math.floor(rank))
    upper = int(math.ceil(rank))
    if upper >= len(sorted_vals):
        return sorted_vals[-1]
    weight = rank - lower
    return sorted_vals[lower] * (1 - weight) + sorted_vals[upper] * weight

def summarize(series):
    if not series.timestamps:
        return MetricsSummary()

    cpu = series.cpu_utilization
    mem_gb = series.memory_usage_gb
    mem_pct = series.memory_percent

    return MetricsSummary(
        cpu_avg=calculate_average(cpu),
        cpu_p95=calculate_percentile(cpu, 95),
        cpu_p99=calculate_percentile(cpu, 99),
        cpu_max=calculate_max(cpu),
        memory_avg_gb=calculate_average(mem_gb),
        memory_p95_gb=calculate_percentile(mem_gb, 95),
        memory_p99_gb=calculate_percentile(mem_gb, 99),
        memory_max_gb=calculate_max(mem_gb),
        memory_avg_pct=calculate_average(mem_pct),
        memory_p95_pct=calculate_percentile(mem_pct, 95),
        memory_p99_pct=calculate_percentile(mem_pct, 99),
        connections_avg=calculate_average([float(c) for c in series.connections]),
        connections_max=calculate_max(series.connections),
        period=series.timestamps[-1] - series.timestamps[0],
        data_points=len(series.timestamps),
    )
