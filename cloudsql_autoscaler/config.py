import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import List, Optional

from .errors import DaemonError, InvalidConfigError
from .timeutil import parse_duration

# Scaling thresholds (fraction of capacity, compared against P95)
SCALE_UP_THRESHOLD = 0.8      # Scale up if CPU or memory P95 > 80%
SCALE_DOWN_THRESHOLD = 0.5    # Scale down if CPU and memory P95 < 50%

# Target utilization after a resize
CPU_TARGET_UTILIZATION = 0.7
MEMORY_TARGET_UTILIZATION = 0.8

# Telemetry window
METRICS_PERIOD = timedelta(days=7)
METRICS_INTERVAL = timedelta(minutes=5)
MIN_DATA_POINTS = 10
MIN_DATA_COMPLETENESS = 80    # percent of expected samples

# Safety limits
MIN_STABLE_DURATION = timedelta(hours=1)
COOLDOWN_PERIOD = timedelta(minutes=30)

# Daemon
DAEMON_INTERVAL = timedelta(minutes=5)
HTTP_PORT = 8080
HTTP_SHUTDOWN_GRACE_SECONDS = 10
OPERATION_POLL_SECONDS = 5

# Cost model ($ per unit-hour)
CPU_HOURLY_RATE = 0.0475
MEMORY_HOURLY_RATE = 0.0080

# Priority scoring
CRITICAL_UTILIZATION = 90
HIGH_UTILIZATION = 80
SAVINGS_PRIORITY_THRESHOLD = 100

PROFILES = ("default", "conservative", "aggressive")


@dataclass
class AutoscalerConfig:
    project_id: str = ""
    instances: List[str] = field(default_factory=list)

    metrics_period: timedelta = METRICS_PERIOD
    metrics_interval: timedelta = METRICS_INTERVAL

    cpu_target_utilization: float = CPU_TARGET_UTILIZATION
    memory_target_utilization: float = MEMORY_TARGET_UTILIZATION
    scale_up_threshold: float = SCALE_UP_THRESHOLD
    scale_down_threshold: float = SCALE_DOWN_THRESHOLD

    min_stable_duration: timedelta = MIN_STABLE_DURATION
    cooldown_period: timedelta = COOLDOWN_PERIOD

    dry_run: bool = True
    force: bool = False
    default_edition: str = "ENTERPRISE"

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ
        cfg = cls()
        cfg.project_id = env.get("GCP_PROJECT") or env.get("GOOGLE_CLOUD_PROJECT", "")
        instances = env.get("AUTOSCALER_INSTANCES", "")
        cfg.instances = list(dict.fromkeys(i.strip() for i in instances.split(",") if i.strip()))

        if env.get("AUTOSCALER_METRICS_PERIOD"):
            cfg.metrics_period = parse_duration(env["AUTOSCALER_METRICS_PERIOD"])
        if env.get("AUTOSCALER_METRICS_INTERVAL"):
            cfg.metrics_interval = parse_duration(env["AUTOSCALER_METRICS_INTERVAL"])
        if env.get("AUTOSCALER_SCALE_UP_THRESHOLD"):
            cfg.scale_up_threshold = float(env["AUTOSCALER_SCALE_UP_THRESHOLD"])
        if env.get("AUTOSCALER_SCALE_DOWN_THRESHOLD"):
            cfg.scale_down_threshold = float(env["AUTOSCALER_SCALE_DOWN_THRESHOLD"])
        if env.get("AUTOSCALER_COOLDOWN"):
            cfg.cooldown_period = parse_duration(env["AUTOSCALER_COOLDOWN"])

        cfg.dry_run = env.get("AUTOSCALER_DRY_RUN", "true").lower() in ("1", "true", "yes")
        cfg.force = env.get("AUTOSCALER_FORCE", "false").lower() in ("1", "true", "yes")
        cfg.default_edition = env.get("AUTOSCALER_EDITION", cfg.default_edition)
        return cfg

    def expected_data_points(self):
        interval = self.metrics_interval.total_seconds()
        if interval <= 0:
            return 0
        return int(self.metrics_period.total_seconds() // interval)


def apply_profile(cfg, profile):
    if profile not in PROFILES:
        raise InvalidConfigError(f"unknown profile {profile!r} (expected one of {', '.join(PROFILES)})")
    if profile == "conservative":
        return replace(
            cfg,
            scale_up_threshold=0.9,
            scale_down_threshold=0.3,
            min_stable_duration=timedelta(hours=2),
            metrics_period=timedelta(days=14),
        )
    if profile == "aggressive":
        return replace(
            cfg,
            scale_up_threshold=0.7,
            scale_down_threshold=0.6,
            min_stable_duration=timedelta(minutes=30),
            metrics_period=timedelta(days=3),
        )
    return replace(cfg)


@dataclass
class DaemonSettings:
    interval: timedelta = DAEMON_INTERVAL
    http_port: int = HTTP_PORT
    http_enabled: bool = True
    metrics_enabled: bool = False
    events_topic: Optional[str] = None
    event_log_name: Optional[str] = None

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ
        settings = cls()
        if env.get("AUTOSCALER_INTERVAL"):
            settings.interval = parse_duration(env["AUTOSCALER_INTERVAL"])
        settings.http_port = int(env.get("PORT", HTTP_PORT))
        settings.metrics_enabled = env.get("AUTOSCALER_METRICS", "false").lower() in ("1", "true", "yes")
        settings.events_topic = env.get("EVENT_TOPIC") or None
        settings.event_log_name = env.get("EVENT_LOG") or None
        return settings


def validate_daemon_config(cfg, settings):
    if cfg is None or settings is None:
        raise DaemonError("validate", InvalidConfigError("configuration is required"), phase="config")
    if not cfg.project_id:
        raise DaemonError("validate", InvalidConfigError("project ID is required"), phase="config")
    if settings.interval.total_seconds() <= 0:
        raise DaemonError("validate", InvalidConfigError(f"interval must be positive, got {settings.interval}"), phase="config")
    if not 1 <= settings.http_port <= 65535:
        raise DaemonError("validate", InvalidConfigError(f"invalid HTTP port {settings.http_port}"), phase="config")
