"""Tests for per-instance and project-wide analysis, the scaling plan and apply."""

import threading
from datetime import timedelta

import pytest

from cloudsql_autoscaler.analyzer import (
    AnalysisResult,
    Analyzer,
    ProjectAnalysisResult,
    calculate_priority,
)
from cloudsql_autoscaler.errors import AnalyzerError, ScalingError
from cloudsql_autoscaler.instances import OperationRecord
from cloudsql_autoscaler.machine_types import Edition
from cloudsql_autoscaler.monitoring import CPU_UTILIZATION
from cloudsql_autoscaler.rules_engine import ScalingDecision

from conftest import (
    FIXED_NOW,
    FakeInstanceController,
    FakeMetricsSource,
    fixed_clock,
    make_config,
    make_instance,
    make_summary,
)


def make_result(name, cpu_p95=50.0, memory_p95_pct=50.0, should_scale=True, direction="up",
                downtime=False, savings=0.0):
    decision = ScalingDecision(
        should_scale=should_scale,
        current_type="db-n1-standard-4",
        recommended_type="db-n1-standard-8" if should_scale else "",
        direction=direction if should_scale else "",
        downtime_expected=downtime,
        estimated_savings=savings,
    )
    return AnalysisResult(
        instance=make_instance(name),
        decision=decision,
        summary=make_summary(cpu_p95=cpu_p95, memory_p95_pct=memory_p95_pct),
    )


# ═══════════════════════════════════════════════════════════════════════
# Per-instance analysis
# ═══════════════════════════════════════════════════════════════════════


class TestAnalyzeInstance:
    def setup_method(self):
        self.controller = FakeInstanceController([
            make_instance("busy-db"),
            make_instance("quiet-db"),
            make_instance("plus-db", edition=Edition.ENTERPRISE_PLUS),
        ])
        self.source = FakeMetricsSource()
        self.source.set_utilization("busy-db", [0.95] * 20, [0.4] * 20)
        self.source.set_utilization("quiet-db", [0.6] * 5)
        self.source.set_utilization("plus-db", [0.95] * 20)
        self.analyzer = Analyzer(make_config(), self.controller, self.source, clock=fixed_clock)

    def test_scale_up_recommendation(self):
        result = self.analyzer.analyze_instance("busy-db")

        assert result.decision.should_scale is True
        assert result.decision.recommended_type == "db-n1-standard-8"
        assert result.summary.data_points == 20
        assert result.downtime_estimate == timedelta(minutes=9)
        assert result.scaling_window is not None
        assert result.analyzed_at == FIXED_NOW
        assert any("Limited metrics data" in w for w in result.warnings)

    def test_fetches_lookback_period(self):
        self.analyzer.analyze_instance("busy-db")
        _, metric, start, end, alignment = self.source.calls[0]
        assert metric == CPU_UTILIZATION
        assert end - start == timedelta(days=7)
        assert alignment == timedelta(minutes=5)

    def test_insufficient_data_has_no_window(self):
        result = self.analyzer.analyze_instance("quiet-db")
        assert result.decision.should_scale is False
        assert result.scaling_window is None
        assert result.downtime_estimate == timedelta(0)

    def test_last_scaled_time_from_operations(self):
        self.controller.operations["plus-db"] = [
            OperationRecord("op-1", "UPDATE", "DONE", insert_time=FIXED_NOW - timedelta(minutes=10)),
        ]
        result = self.analyzer.analyze_instance("plus-db")

        assert result.instance.last_scaled_time == FIXED_NOW - timedelta(minutes=10)
        assert result.decision.downtime_expected is True
        assert result.decision.downtime_reason.endswith("Wait 20m0s more")

    def test_unreadable_operations_are_tolerated(self):
        self.controller.operations_error = RuntimeError("forbidden")
        result = self.analyzer.analyze_instance("plus-db")
        assert result.instance.last_scaled_time is None
        assert result.decision.downtime_expected is False

    def test_unknown_instance(self):
        with pytest.raises(AnalyzerError):
            self.analyzer.analyze_instance("nope")


# ═══════════════════════════════════════════════════════════════════════
# Project analysis
# ═══════════════════════════════════════════════════════════════════════


class TestAnalyzeAllInstances:
    def setup_method(self):
        self.controller = FakeInstanceController([make_instance("a"), make_instance("b"), make_instance("c")])
        self.source = FakeMetricsSource()
        self.source.set_utilization("a", [0.95] * 20)
        self.source.set_utilization("c", [0.6] * 20, [0.6] * 20)
        self.source.errors[("b", CPU_UTILIZATION)] = RuntimeError("backend unavailable")

    def test_continues_past_failures(self):
        analyzer = Analyzer(make_config(), self.controller, self.source, clock=fixed_clock)
        project = analyzer.analyze_all_instances()

        assert project.total_instances == 3
        assert project.analyzed_instances == 2
        assert list(project.failures) == ["b"]
        assert [r.instance.name for r in project.scalable_instances()] == ["a"]
        assert [r.instance.name for r in project.scale_up_instances()] == ["a"]
        assert project.scale_down_instances() == []

    def test_configured_instances_only(self):
        analyzer = Analyzer(make_config(instances=["c"]), self.controller, self.source, clock=fixed_clock)
        project = analyzer.analyze_all_instances()
        assert project.total_instances == 1
        assert [r.instance.name for r in project.results] == ["c"]

    def test_list_failure(self):
        self.controller.list_error = RuntimeError("permission denied")
        analyzer = Analyzer(make_config(), self.controller, self.source, clock=fixed_clock)
        with pytest.raises(AnalyzerError):
            analyzer.analyze_all_instances()

    def test_cancelled(self):
        cancel = threading.Event()
        cancel.set()
        analyzer = Analyzer(make_config(), self.controller, self.source, clock=fixed_clock)
        project = analyzer.analyze_all_instances(cancel_event=cancel)
        assert project.results == []
        assert project.total_instances == 3


# ═══════════════════════════════════════════════════════════════════════
# Priority and plan
# ═══════════════════════════════════════════════════════════════════════


class TestScalingPlan:
    def test_priority_scores(self):
        assert calculate_priority(make_result("x", cpu_p95=95, downtime=True)) == 50
        assert calculate_priority(make_result("x", memory_p95_pct=85, downtime=True)) == 30
        assert calculate_priority(make_result("x", cpu_p95=20, memory_p95_pct=20)) == 20
        assert calculate_priority(make_result("x", cpu_p95=95, savings=150.0)) == 80

    def test_plan_orders_by_priority(self):
        project = ProjectAnalysisResult(project_id="test-project", results=[
            make_result("b", cpu_p95=85, downtime=True),
            make_result("a", cpu_p95=95, downtime=True),
        ])
        plan = project.generate_scaling_plan()
        assert [op.instance for op in plan.operations] == ["a", "b"]
        assert [op.priority for op in plan.operations] == [50, 30]

    def test_ties_keep_discovery_order(self):
        project = ProjectAnalysisResult(project_id="test-project", results=[
            make_result("first", cpu_p95=85),
            make_result("skip", should_scale=False),
            make_result("second", cpu_p95=85),
        ])
        plan = project.generate_scaling_plan()
        assert [op.instance for op in plan.operations] == ["first", "second"]

    def test_savings_totals(self):
        project = ProjectAnalysisResult(project_id="test-project", results=[
            make_result("a", direction="down", savings=100.0),
            make_result("b", savings=-40.0),
        ])
        assert project.total_estimated_savings == pytest.approx(60.0)
        assert project.generate_scaling_plan().total_estimated_savings == pytest.approx(60.0)


# ═══════════════════════════════════════════════════════════════════════
# Apply
# ═══════════════════════════════════════════════════════════════════════


class TestApplyScaling:
    def setup_method(self):
        self.controller = FakeInstanceController([make_instance("a")])
        self.decision = ScalingDecision(
            should_scale=True, current_type="db-n1-standard-4", recommended_type="db-n1-standard-8", direction="up"
        )

    def analyzer(self, **cfg):
        return Analyzer(make_config(**cfg), self.controller, FakeMetricsSource(), clock=fixed_clock)

    def test_dry_run_does_not_update(self):
        assert self.analyzer(dry_run=True).apply_scaling("a", self.decision) is False
        assert self.controller.updates == []

    def test_applies_when_not_dry_run(self):
        assert self.analyzer(dry_run=False).apply_scaling("a", self.decision) is True
        assert self.controller.updates == [("a", "db-n1-standard-8")]

    def test_nothing_to_apply(self):
        with pytest.raises(ScalingError, match="no scaling recommended"):
            self.analyzer(dry_run=False).apply_scaling("a", ScalingDecision(False, "db-n1-standard-4"))

    def test_downtime_requires_force(self):
        decision = ScalingDecision(True, "db-n1-standard-4", "db-n1-standard-8", downtime_expected=True)
        with pytest.raises(ScalingError, match="validation failed"):
            self.analyzer(dry_run=False).apply_scaling("a", decision)
        assert self.analyzer(dry_run=False, force=True).apply_scaling("a", decision) is True

    def test_controller_failure(self):
        self.controller.update_errors["a"] = RuntimeError("operation timed out")
        with pytest.raises(ScalingError, match="operation timed out"):
            self.analyzer(dry_run=False).apply_scaling("a", self.decision)
