"""Right-sizes Cloud SQL instances from Cloud Monitoring utilization."""

__version__ = "0.1.0"
