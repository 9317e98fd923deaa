from datetime import datetime, timezone

from google.api_core import exceptions
from google.cloud import monitoring_v3

from .errors import AnalyzerError
from .metrics_window import MetricSeries

CPU_UTILIZATION = "cloudsql.googleapis.com/database/cpu/utilization"
MEMORY_UTILIZATION = "cloudsql.googleapis.com/database/memory/utilization"
MEMORY_USAGE = "cloudsql.googleapis.com/database/memory/usage"
POSTGRES_CONNECTIONS = "cloudsql.googleapis.com/database/postgresql/num_backends"
NETWORK_CONNECTIONS = "cloudsql.googleapis.com/database/network/connections"


def connections_metric(instance):
    if instance.engine == "postgresql":
        return POSTGRES_CONNECTIONS
    return NETWORK_CONNECTIONS


class CloudMonitoringSource:
    """Reads Cloud SQL time series from Cloud Monitoring."""

    def __init__(self, project_id, client=None):
        self.project_id = project_id
        self.client = client or monitoring_v3.MetricServiceClient()
        self.project_name = f"projects/{project_id}"

    def fetch(self, instance_id, metric_type, start, end, alignment):
        """Return {timestamp: value} for one metric.

        A metric the instance does not report yields an empty mapping.
        """
        interval = monitoring_v3.TimeInterval(
            {
                "end_time": {"seconds": int(end.timestamp())},
                "start_time": {"seconds": int(start.timestamp())},
            }
        )
        aggregation = monitoring_v3.Aggregation(
            {
                "alignment_period": {"seconds": int(alignment.total_seconds())},
                "per_series_aligner": monitoring_v3.Aggregation.Aligner.ALIGN_MEAN,
                "cross_series_reducer": monitoring_v3.Aggregation.Reducer.REDUCE_MEAN,
            }
        )
        filter_str = (
            f'resource.type = "cloudsql_database" '
            f'AND resource.labels.database_id = "{self.project_id}:{instance_id}" '
            f'AND metric.type = "{metric_type}"'
        )

        data = {}
        try:
            results = self.client.list_time_series(
                request={
                    "name": self.project_name,
                    "filter": filter_str,
                    "interval": interval,
                    "view": monitoring_v3.ListTimeSeriesRequest.TimeSeriesView.FULL,
                    "aggregation": aggregation,
                }
            )
            for result in results:
                for point in result.points:
                    ts = _to_utc(point.interval.end_time)
                    data[ts] = _extract_value(point.value)
        except exceptions.NotFound:
            return {}
        except exceptions.GoogleAPIError as e:
            raise AnalyzerError(f"error reading {metric_type} for {instance_id}: {e}") from e
        return data


def _to_utc(value):
    return datetime.fromtimestamp(value.timestamp(), tz=timezone.utc)


def _extract_value(value):
    if "double_value" in value:
        return value.double_value
    if "int64_value" in value:
        return float(value.int64_value)
    return 0.0


def fetch_instance_metrics(source, instance, start, end, interval):
    """Fetch and align the metrics one analysis needs.

    CPU and memory utilization are required; memory bytes and connection counts
    vary by engine and are skipped when they cannot be read.
    """
    try:
        cpu = source.fetch(instance.name, CPU_UTILIZATION, start, end, interval)
    except AnalyzerError:
        raise
    except Exception as e:
        raise AnalyzerError(f"failed to fetch CPU metrics: {e}") from e

    try:
        memory = source.fetch(instance.name, MEMORY_UTILIZATION, start, end, interval)
    except AnalyzerError:
        raise
    except Exception as e:
        raise AnalyzerError(f"failed to fetch memory metrics: {e}") from e

    try:
        memory_bytes = source.fetch(instance.name, MEMORY_USAGE, start, end, interval)
    except Exception as e:
        print(f"Memory usage metric unavailable for {instance.name}: {e}", flush=True)
        memory_bytes = {}

    try:
        connections = source.fetch(instance.name, connections_metric(instance), start, end, interval)
    except Exception as e:
        print(f"Connections metric unavailable for {instance.name}: {e}", flush=True)
        connections = {}

    return MetricSeries.align(cpu, memory, memory_bytes, connections)
