from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class NullMetricsReporter:
    """Discards everything; used when metrics are disabled."""

    registry = None

    def record_cycle_duration(self, seconds):
        pass

    def record_cycle_completion(self):
        pass

    def record_error(self, error_type):
        pass

    def record_instance_counts(self, total, analyzed, scalable):
        pass

    def record_scaling_operation(self, instance, result):
        pass

    def record_instance_utilization(self, instance, project, cpu, memory):
        pass


class PrometheusMetricsReporter:
    """Autoscaler metrics on a registry owned by this reporter.

    Nothing is registered on the prometheus_client default registry, so several
    reporters can live in one process.
    """

    def __init__(self, registry=None):
        self.registry = registry or CollectorRegistry()

        self.cycle_duration = Gauge(
            "cloudsql_autoscaler_cycle_duration_seconds",
            "Duration of the last autoscaling cycle",
            registry=self.registry,
        )
        self.cycles = Counter(
            "cloudsql_autoscaler_cycles",
            "Completed autoscaling cycles",
            registry=self.registry,
        )
        self.errors = Counter(
            "cloudsql_autoscaler_errors",
            "Autoscaler errors by type",
            ["error_type"],
            registry=self.registry,
        )
        self.instances_total = Gauge(
            "cloudsql_autoscaler_instances_total",
            "Instances found in the project",
            registry=self.registry,
        )
        self.instances_analyzed = Gauge(
            "cloudsql_autoscaler_instances_analyzed",
            "Instances analyzed in the last cycle",
            registry=self.registry,
        )
        self.instances_scalable = Gauge(
            "cloudsql_autoscaler_instances_scalable",
            "Instances that need scaling",
            registry=self.registry,
        )
        self.scaling_operations = Counter(
            "cloudsql_autoscaler_scaling_operations",
            "Scaling operations by instance and result",
            ["instance", "result"],
            registry=self.registry,
        )
        self.cpu_utilization = Gauge(
            "cloudsql_autoscaler_instance_cpu_utilization",
            "CPU utilization P95 (percent)",
            ["instance", "project"],
            registry=self.registry,
        )
        self.memory_utilization = Gauge(
            "cloudsql_autoscaler_instance_memory_utilization",
            "Memory utilization P95 (percent)",
            ["instance", "project"],
            registry=self.registry,
        )

    def record_cycle_duration(self, seconds):
        self.cycle_duration.set(seconds)

    def record_cycle_completion(self):
        self.cycles.inc()

    def record_error(self, error_type):
        self.errors.labels(error_type=error_type).inc()

    def record_instance_counts(self, total, analyzed, scalable):
        self.instances_total.set(total)
        self.instances_analyzed.set(analyzed)
        self.instances_scalable.set(scalable)

    def record_scaling_operation(self, instance, result):
        self.scaling_operations.labels(instance=instance, result=result).inc()

    def record_instance_utilization(self, instance, project, cpu, memory):
        self.cpu_utilization.labels(instance=instance, project=project).set(cpu)
        self.memory_utilization.labels(instance=instance, project=project).set(memory)

    def render(self):
        return generate_latest(self.registry)
