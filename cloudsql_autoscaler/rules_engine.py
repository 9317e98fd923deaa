from dataclasses import dataclass
from typing import Optional

from . import config as defaults
from .errors import AutoscalerError
from .machine_types import CATALOG, MachineTypeError, get_scaling_constraints
from .metrics_window import MetricsSummary
from .timeutil import format_duration, now_utc, round_to_minute


class ScalingValidationError(AutoscalerError):
    pass


@dataclass(frozen=True)
class ScalingDecision:
    should_scale: bool
    current_type: str
    recommended_type: str = ""
    reason: str = ""
    direction: str = ""             # "up", "down" or "" when not scaling
    downtime_expected: bool = False
    downtime_reason: str = ""
    estimated_savings: float = 0.0  # monthly; positive means cheaper
    metrics: Optional[MetricsSummary] = None


def estimate_cost_savings(current_type, recommended_type, catalog=CATALOG):
    current = catalog.get(current_type)
    recommended = catalog.get(recommended_type)

    current_monthly = (current.cpu * defaults.CPU_HOURLY_RATE
                       + current.memory_gb * defaults.MEMORY_HOURLY_RATE) * 24 * 30
    recommended_monthly = (recommended.cpu * defaults.CPU_HOURLY_RATE
                           + recommended.memory_gb * defaults.MEMORY_HOURLY_RATE) * 24 * 30
    return current_monthly - recommended_monthly


class RulesEngine:
    def __init__(self, cfg, catalog=CATALOG, clock=now_utc):
        self.cfg = cfg
        self.catalog = catalog
        self.clock = clock

    def analyze_instance(self, instance, metrics):
        if metrics.data_points < defaults.MIN_DATA_POINTS:
            return ScalingDecision(
                should_scale=False,
                current_type=instance.machine_type,
                reason="Insufficient metrics data for analysis",
                metrics=metrics,
            )

        scale_up = self.should_scale_up(metrics)
        scale_down = self.should_scale_down(metrics)

        if not scale_up and not scale_down:
            return ScalingDecision(
                should_scale=False,
                current_type=instance.machine_type,
                reason=(f"Current utilization is within target range "
                        f"(CPU: {metrics.cpu_p95:.1f}%, Memory: {metrics.memory_p95_pct:.1f}%)"),
                metrics=metrics,
            )

        # Scale-up wins if a threshold configuration makes both true
        direction = "up" if scale_up else "down"
        try:
            if scale_up:
                target = self.catalog.next_larger(instance.machine_type)
            else:
                target = self.catalog.next_smaller(instance.machine_type)
        except MachineTypeError as e:
            return ScalingDecision(
                should_scale=False,
                current_type=instance.machine_type,
                reason=f"Cannot scale {direction}: {e}",
                metrics=metrics,
            )

        label = "High" if scale_up else "Low"
        reason = (f"{label} resource utilization detected "
                  f"(CPU P95: {metrics.cpu_p95:.1f}%, Memory P95: {metrics.memory_p95_pct:.1f}%)")

        downtime, downtime_reason = self.check_downtime(instance, scale_up)

        return ScalingDecision(
            should_scale=True,
            current_type=instance.machine_type,
            recommended_type=target,
            reason=reason,
            direction=direction,
            downtime_expected=downtime,
            downtime_reason=downtime_reason,
            estimated_savings=estimate_cost_savings(instance.machine_type, target, self.catalog),
            metrics=metrics,
        )

    def should_scale_up(self, metrics):
        limit = self.cfg.scale_up_threshold * 100
        return metrics.cpu_p95 > limit or metrics.memory_p95_pct > limit

    def should_scale_down(self, metrics):
        # Both CPU and memory have to be low
        limit = self.cfg.scale_down_threshold * 100
        return metrics.cpu_p95 < limit and metrics.memory_p95_pct < limit

    def check_downtime(self, instance, is_upscale):
        constraints = get_scaling_constraints(instance.edition)
        if constraints.downtime_on_scale:
            return True, "Enterprise edition requires downtime for all scaling operations"

        if instance.last_scaled_time is None:
            return False, ""

        since_last = self.clock() - instance.last_scaled_time
        if is_upscale:
            min_interval = constraints.min_upscale_interval
            action = "Scaling"
        else:
            min_interval = constraints.min_downscale_interval
            action = "Downscaling"

        if since_last < min_interval:
            wait = round_to_minute(min_interval - since_last)
            return True, (f"{action} within {format_duration(min_interval)} of last operation "
                          f"would cause downtime. Wait {format_duration(wait)} more")
        return False, ""


def validate_scaling_decision(decision, force):
    """Final gate before a decision is applied."""
    if not decision.should_scale:
        return
    if decision.downtime_expected and not force:
        raise ScalingValidationError(
            f"scaling operation would cause downtime: {decision.downtime_reason}. Use --force to proceed"
        )
    if decision.current_type == decision.recommended_type:
        raise ScalingValidationError("recommended type is the same as current type")
