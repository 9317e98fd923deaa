from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta

from . import config as defaults
from .machine_types import CATALOG, MachineTypeNotFound, get_scaling_constraints
from .timeutil import now_utc

DEFAULT_WINDOW_HOUR = 2  # 2 AM when there is no history
WINDOW_LENGTH = timedelta(hours=2)


@dataclass(frozen=True)
class ScalingWindow:
    start: datetime
    end: datetime

    @property
    def duration(self):
        return self.end - self.start


def check_scaling_constraints(instance, metrics, cfg, now=None):
    """Advisory warnings for an analysis; never blocks a decision."""
    now = now or now_utc()
    warnings = []

    expected = cfg.expected_data_points()
    if expected > 0:
        completeness = metrics.data_points / expected * 100
        if completeness < defaults.MIN_DATA_COMPLETENESS:
            warnings.append(
                f"Limited metrics data available ({completeness:.0f}% complete). "
                "Recommendations may be less accurate."
            )

    if instance.last_scaled_time is not None:
        since = now - instance.last_scaled_time
        if since < cfg.cooldown_period:
            warnings.append(
                f"Instance was scaled recently ({since.total_seconds() / 60:.0f} minutes ago). "
                "Consider waiting for cooldown period."
            )

    if instance.high_availability:
        warnings.append(
            "Instance has high availability enabled. Scaling will affect both primary and standby instances."
        )

    if instance.backup_enabled:
        warnings.append("Instance has backups enabled. Avoid scaling during backup windows.")

    if instance.state and instance.state != "RUNNABLE":
        warnings.append(f"Instance is in state {instance.state}; scaling requires a RUNNABLE instance.")

    return warnings


def find_lowest_usage_hour(series):
    if not series.timestamps:
        return DEFAULT_WINDOW_HOUR

    hourly = defaultdict(list)
    for ts, cpu in zip(series.timestamps, series.cpu_utilization):
        hourly[ts.hour].append(cpu)

    lowest_hour = DEFAULT_WINDOW_HOUR
    lowest_avg = 100.0
    for hour in sorted(hourly):
        usages = hourly[hour]
        avg = sum(usages) / len(usages)
        if avg < lowest_avg:
            lowest_avg = avg
            lowest_hour = hour
    return lowest_hour


def get_optimal_scaling_window(series, constraints, now=None):
    now = now or now_utc()

    # Any time works when scaling does not take the instance down
    if not constraints.downtime_on_scale:
        return ScalingWindow(start=now, end=now + timedelta(hours=24))

    hour = find_lowest_usage_hour(series)
    start = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if start < now:
        start += timedelta(days=1)
    return ScalingWindow(start=start, end=start + WINDOW_LENGTH)


def estimate_downtime(instance, current_type, target_type, catalog=CATALOG):
    constraints = get_scaling_constraints(instance.edition)
    if not constraints.downtime_on_scale:
        return timedelta(0)

    # Larger machines take longer to restart
    cpus = []
    for name in (current_type, target_type):
        try:
            cpus.append(catalog.get(name).cpu)
        except MachineTypeNotFound:
            cpus.append(0)
    return timedelta(minutes=5) + max(cpus) * timedelta(seconds=30)
