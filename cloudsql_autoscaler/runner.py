import time
import traceback

from .errors import DaemonError, wrap_error
from .events import NullEventPublisher, build_scaling_event
from .reporting import NullMetricsReporter


class AutoscalingRunner:
    """Runs one autoscaling cycle: analyze the project, then apply the plan."""

    def __init__(self, analyzer, cfg, metrics=None, events=None):
        self.analyzer = analyzer
        self.cfg = cfg
        self.metrics = metrics or NullMetricsReporter()
        self.events = events or NullEventPublisher()
        self.last_result = None

    def run_cycle(self, cancel_event=None):
        start = time.monotonic()
        try:
            return self._run(cancel_event)
        except DaemonError:
            raise
        except Exception as e:
            # Faults are recorded and surfaced as DaemonError
            print(f"Unexpected fault in autoscaling cycle: {e}", flush=True)
            traceback.print_exc()
            self.metrics.record_error("fault")
            raise DaemonError("run_cycle", e, phase="running") from e
        finally:
            self.metrics.record_cycle_duration(time.monotonic() - start)
            self.metrics.record_cycle_completion()

    def _run(self, cancel_event):
        print(f"Starting autoscaling cycle for project {self.cfg.project_id}", flush=True)
        try:
            result = self.analyzer.analyze_all_instances(cancel_event=cancel_event)
        except Exception as e:
            self.metrics.record_error("analysis_error")
            raise wrap_error("analyze_instances", e) from e

        self.last_result = result
        scalable = result.scalable_instances()
        self.metrics.record_instance_counts(result.total_instances, result.analyzed_instances, len(scalable))
        for r in result.results:
            self.metrics.record_instance_utilization(
                r.instance.name, result.project_id, r.summary.cpu_p95, r.summary.memory_p95_pct
            )
        for name in result.failures:
            self.metrics.record_error("instance_analysis_error")

        print(f"Analyzed {result.analyzed_instances}/{result.total_instances} instances, "
              f"{len(scalable)} need scaling", flush=True)

        if self.cfg.dry_run:
            for r in scalable:
                print(f"   [DRY RUN] {r.instance.name}: {r.decision.current_type} -> "
                      f"{r.decision.recommended_type} ({r.decision.reason})", flush=True)
                self.events.publish(build_scaling_event(result.project_id, r))
            return result

        err = self._apply(result, scalable, cancel_event)
        if err is not None:
            raise wrap_error("apply_scaling", err) from err
        return result

    def _apply(self, result, scalable, cancel_event):
        by_name = {r.instance.name: r for r in scalable}
        succeeded = 0
        last_err = None

        for op in result.generate_scaling_plan().operations:
            if cancel_event is not None and cancel_event.is_set():
                break
            r = by_name[op.instance]
            try:
                self.analyzer.apply_scaling(op.instance, r.decision, cancel_event=cancel_event)
            except Exception as e:
                print(f"Failed to scale instance {op.instance}: {e}", flush=True)
                self.metrics.record_error("scaling_failed")
                self.metrics.record_scaling_operation(op.instance, "failed")
                self.events.publish(build_scaling_event(result.project_id, r, applied=False, error=e))
                last_err = e
                continue
            succeeded += 1
            self.metrics.record_scaling_operation(op.instance, "success")
            self.events.publish(build_scaling_event(result.project_id, r, applied=True))

        print(f"Scaling complete: {succeeded}/{len(scalable)} succeeded", flush=True)
        return last_err
