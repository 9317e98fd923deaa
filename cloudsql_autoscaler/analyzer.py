"""Per-instance and project-wide scaling analysis.

The analyzer ties together the instance controller, the metrics source and the
rules engine. It never mutates an instance unless apply_scaling is called with
dry-run disabled.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from . import config as defaults
from .constraints import (
    ScalingWindow,
    check_scaling_constraints,
    estimate_downtime,
    get_optimal_scaling_window,
)
from .errors import AnalyzerError, ScalingError
from .instances import InstanceDescriptor, last_scaling_time
from .machine_types import CATALOG, get_scaling_constraints
from .metrics_window import MetricSeries, MetricsSummary, summarize
from .monitoring import fetch_instance_metrics
from .rules_engine import RulesEngine, ScalingDecision, ScalingValidationError, validate_scaling_decision
from .timeutil import now_utc

RECENT_OPERATIONS_LIMIT = 10


@dataclass
class AnalysisResult:
    instance: InstanceDescriptor
    decision: ScalingDecision
    summary: MetricsSummary
    warnings: List[str] = field(default_factory=list)
    scaling_window: Optional[ScalingWindow] = None
    downtime_estimate: timedelta = timedelta(0)
    analyzed_at: Optional[datetime] = None
    series: MetricSeries = field(default_factory=MetricSeries, repr=False)


@dataclass
class ScalingOperation:
    instance: str
    current_type: str
    target_type: str
    direction: str
    priority: int
    reason: str = ""
    downtime_expected: bool = False
    estimated_savings: float = 0.0
    scaling_window: Optional[ScalingWindow] = None


@dataclass
class ScalingPlan:
    project_id: str
    operations: List[ScalingOperation] = field(default_factory=list)

    @property
    def total_estimated_savings(self):
        return sum(op.estimated_savings for op in self.operations)


def calculate_priority(result):
    metrics = result.summary
    decision = result.decision
    priority = 0

    if metrics.cpu_p95 > defaults.CRITICAL_UTILIZATION or metrics.memory_p95_pct > defaults.CRITICAL_UTILIZATION:
        priority += 50
    elif metrics.cpu_p95 > defaults.HIGH_UTILIZATION or metrics.memory_p95_pct > defaults.HIGH_UTILIZATION:
        priority += 30

    if not decision.downtime_expected:
        priority += 20

    if decision.estimated_savings > defaults.SAVINGS_PRIORITY_THRESHOLD:
        priority += 10

    return priority


@dataclass
class ProjectAnalysisResult:
    project_id: str
    results: List[AnalysisResult] = field(default_factory=list)
    total_instances: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    analyzed_at: Optional[datetime] = None

    @property
    def analyzed_instances(self):
        return len(self.results)

    def scalable_instances(self):
        return [r for r in self.results if r.decision.should_scale]

    def scale_up_instances(self):
        return [r for r in self.scalable_instances() if r.decision.direction == "up"]

    def scale_down_instances(self):
        return [r for r in self.scalable_instances() if r.decision.direction == "down"]

    @property
    def total_estimated_savings(self):
        return sum(r.decision.estimated_savings for r in self.scalable_instances())

    def generate_scaling_plan(self):
        operations = [
            ScalingOperation(
                instance=r.instance.name,
                current_type=r.decision.current_type,
                target_type=r.decision.recommended_type,
                direction=r.decision.direction,
                priority=calculate_priority(r),
                reason=r.decision.reason,
                downtime_expected=r.decision.downtime_expected,
                estimated_savings=r.decision.estimated_savings,
                scaling_window=r.scaling_window,
            )
            for r in self.scalable_instances()
        ]
        # sorted() is stable, so equal priorities keep discovery order
        operations = sorted(operations, key=lambda op: op.priority, reverse=True)
        return ScalingPlan(project_id=self.project_id, operations=operations)


class Analyzer:
    def __init__(self, cfg, instances, metrics_source, rules_engine=None, catalog=CATALOG, clock=now_utc):
        self.cfg = cfg
        self.instances = instances
        self.metrics_source = metrics_source
        self.catalog = catalog
        self.clock = clock
        self.rules_engine = rules_engine or RulesEngine(cfg, catalog=catalog, clock=clock)

    @property
    def project_id(self):
        return self.cfg.project_id

    def analyze_instance(self, name):
        try:
            instance = self.instances.get(name)
        except AnalyzerError:
            raise
        except Exception as e:
            raise AnalyzerError(f"failed to get instance {name}: {e}") from e

        last_scaled = self._last_scaled_time(name)
        if last_scaled is not None:
            instance = replace(instance, last_scaled_time=last_scaled)

        end = self.clock()
        start = end - self.cfg.metrics_period
        series = fetch_instance_metrics(self.metrics_source, instance, start, end, self.cfg.metrics_interval)
        summary = summarize(series)

        decision = self.rules_engine.analyze_instance(instance, summary)
        warnings = check_scaling_constraints(instance, summary, self.cfg, now=end)

        window = None
        downtime = timedelta(0)
        if decision.should_scale:
            constraints = get_scaling_constraints(instance.edition)
            window = get_optimal_scaling_window(series, constraints, now=end)
            downtime = estimate_downtime(instance, decision.current_type, decision.recommended_type, self.catalog)

        return AnalysisResult(
            instance=instance,
            decision=decision,
            summary=summary,
            warnings=warnings,
            scaling_window=window,
            downtime_estimate=downtime,
            analyzed_at=end,
            series=series,
        )

    def _last_scaled_time(self, name):
        # Best effort: an unreadable operation log means "unknown", not a failure
        try:
            operations = self.instances.recent_operations(name, RECENT_OPERATIONS_LIMIT)
        except Exception as e:
            print(f"Could not read operations for {name}: {e}", flush=True)
            return None
        return last_scaling_time(operations)

    def analyze_all_instances(self, cancel_event=None):
        if self.cfg.instances:
            names = list(dict.fromkeys(self.cfg.instances))
        else:
            try:
                names = [i.name for i in self.instances.list_instances()]
            except AnalyzerError:
                raise
            except Exception as e:
                raise AnalyzerError(f"failed to list instances: {e}") from e

        project = ProjectAnalysisResult(
            project_id=self.project_id,
            total_instances=len(names),
            analyzed_at=self.clock(),
        )
        for name in names:
            if cancel_event is not None and cancel_event.is_set():
                print(f"Analysis cancelled after {project.analyzed_instances} instance(s)", flush=True)
                break
            try:
                project.results.append(self.analyze_instance(name))
            except Exception as e:
                print(f"Failed to analyze instance {name}: {e}", flush=True)
                project.failures[name] = str(e)
        return project

    def apply_scaling(self, name, decision, cancel_event=None):
        if not decision.should_scale:
            raise ScalingError(f"no scaling recommended for instance {name}")

        try:
            validate_scaling_decision(decision, self.cfg.force)
        except ScalingValidationError as e:
            raise ScalingError(f"scaling validation failed for {name}: {e}") from e

        if self.cfg.dry_run:
            print(f"[DRY RUN] Would scale {name} from {decision.current_type} to {decision.recommended_type}",
                  flush=True)
            return False

        try:
            self.instances.update_tier(name, decision.recommended_type, cancel_event=cancel_event)
        except ScalingError:
            raise
        except Exception as e:
            raise ScalingError(f"failed to scale instance {name}: {e}") from e
        return True
