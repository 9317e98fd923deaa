"""Command line entry point: cloudsql-autoscaler analyze|daemon"""

import argparse
import os
import sys

import google.auth
from google.auth.exceptions import DefaultCredentialsError

from .analyzer import Analyzer
from .config import PROFILES, AutoscalerConfig, DaemonSettings, apply_profile
from .daemon import Daemon
from .errors import AnalyzerError, DaemonError, InvalidConfigError
from .events import create_event_publisher
from .monitoring import CloudMonitoringSource
from .report import (
    describe_failure,
    describe_result,
    mark_applied,
    mark_dry_run,
    mark_failed,
    print_analysis_report,
    print_project_summary,
    render_json,
    render_table,
)
from .sql_admin import SqlAdminController
from .timeutil import parse_duration


def log(msg):
    # stdout is reserved for the table / JSON output
    print(msg, file=sys.stderr, flush=True)


def build_parser():
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--project", help="GCP project ID (default: GCP_PROJECT or ADC project)")
    common.add_argument(
        "--instance", action="append", default=[],
        help="Instance to analyze; repeat for several (default: every instance in the project)"
    )
    common.add_argument(
        "--dry-run", action=argparse.BooleanOptionalAction, default=None,
        help="Only report recommendations (default: on)"
    )
    common.add_argument("--force", action="store_true", help="Apply scaling even when downtime is expected")
    common.add_argument("--profile", choices=PROFILES, default="default", help="Threshold profile")
    common.add_argument("--output", choices=("table", "json"), default="table", help="Output format")
    common.add_argument("--details", action="store_true", help="Print a detailed report for every analyzed instance")

    parser = argparse.ArgumentParser(
        prog="cloudsql-autoscaler",
        description="Cloud SQL autoscaler - right-size instances from Cloud Monitoring metrics"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("analyze", parents=[common], help="Analyze instances once and optionally apply scaling")

    daemon = sub.add_parser("daemon", parents=[common], help="Run the autoscaling loop until stopped")
    daemon.add_argument("--interval", type=parse_duration, default=None, help="Cycle interval, e.g. 5m")
    daemon.add_argument("--http-port", type=int, default=None, help="Health/status port (default: PORT or 8080)")
    daemon.add_argument("--no-http", action="store_true", help="Disable the HTTP side-channel")
    daemon.add_argument("--enable-metrics", action="store_true", help="Expose Prometheus metrics on /metrics")
    daemon.add_argument("--events-topic", default=None, help="Pub/Sub topic for scaling events")
    daemon.add_argument("--event-log", default=None, help="Cloud Logging log name for scaling events")
    return parser


def resolve_project_id(project, environ=None):
    env = os.environ if environ is None else environ
    project = project or env.get("GCP_PROJECT") or env.get("GOOGLE_CLOUD_PROJECT")
    if project:
        return project
    try:
        _, project = google.auth.default()
    except DefaultCredentialsError as e:
        raise InvalidConfigError(f"project ID is required and could not be detected: {e}") from e
    if not project:
        raise InvalidConfigError("project ID is required (use --project or set GCP_PROJECT)")
    return project


def build_config(args, environ=None):
    cfg = AutoscalerConfig.from_env(environ)
    cfg.project_id = resolve_project_id(args.project, environ)
    if args.instance:
        cfg.instances = list(dict.fromkeys(args.instance))
    if args.dry_run is not None:
        cfg.dry_run = args.dry_run
    if args.force:
        cfg.force = True
    return apply_profile(cfg, args.profile)


def build_analyzer(cfg):
    controller = SqlAdminController(cfg.project_id, default_edition=cfg.default_edition)
    source = CloudMonitoringSource(cfg.project_id)
    return Analyzer(cfg, controller, source)


def run_analyze(args, cfg, analyzer, out=None):
    out = out or sys.stdout
    if cfg.instances:
        log(f"Analyzing {len(cfg.instances)} specified instance(s)...")
    else:
        log(f"Analyzing all instances in project {cfg.project_id}...")

    try:
        project = analyzer.analyze_all_instances()
    except AnalyzerError as e:
        log(f"Error: failed to analyze instances: {e}")
        return 1

    log(f"Total instances: {project.total_instances}, Analyzed: {project.analyzed_instances}, "
        f"Need scaling: {len(project.scalable_instances())}")

    results, rows, by_name = [], [], {}
    for r in project.results:
        record, row = describe_result(r)
        results.append(record)
        rows.append(row)
        by_name[r.instance.name] = (r, record, row)
    for name, error in project.failures.items():
        record, row = describe_failure(name, error)
        results.append(record)
        rows.append(row)

    has_errors = bool(project.failures)
    for op in project.generate_scaling_plan().operations:
        r, record, row = by_name[op.instance]
        if cfg.dry_run:
            mark_dry_run(row)
            continue
        log(f"Applying scaling for {op.instance} from {op.current_type} to {op.target_type}...")
        try:
            analyzer.apply_scaling(op.instance, r.decision)
        except Exception as e:
            log(f"  Failed: {e}")
            mark_failed(record, row, e)
            has_errors = True
            continue
        log("  Success")
        mark_applied(record, row)

    if args.output == "json":
        render_json(cfg.project_id, results, project.total_instances, project.analyzed_instances,
                    args.profile, cfg.dry_run, out=out)
    else:
        render_table(rows, out=out)
        print_project_summary(project)
        if args.details:
            for r in project.results:
                print_analysis_report(r)

    if has_errors:
        log("Error: some instances had errors")
        return 1
    return 0


def build_settings(args, environ=None):
    settings = DaemonSettings.from_env(environ)
    if args.interval is not None:
        settings.interval = args.interval
    if args.http_port is not None:
        settings.http_port = args.http_port
    if args.no_http:
        settings.http_enabled = False
    if args.enable_metrics:
        settings.metrics_enabled = True
    settings.events_topic = args.events_topic or settings.events_topic
    settings.event_log_name = args.event_log or settings.event_log_name
    return settings


def run_daemon(args, cfg, analyzer, environ=None, signal_source=None):
    try:
        settings = build_settings(args, environ)
    except ValueError as e:
        log(f"Error: invalid daemon settings: {e}")
        return 1
    events = create_event_publisher(cfg.project_id, settings.events_topic, settings.event_log_name)
    try:
        daemon = Daemon(cfg, settings, analyzer, signal_source=signal_source, events=events)
        daemon.start()
    except DaemonError as e:
        log(f"Error: {e}")
        return 1
    return 0


def main(argv=None, analyzer_factory=build_analyzer):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        cfg = build_config(args)
    except (InvalidConfigError, ValueError) as e:
        log(f"Error: {e}")
        return 1

    analyzer = analyzer_factory(cfg)
    if args.command == "daemon":
        return run_daemon(args, cfg, analyzer)
    return run_analyze(args, cfg, analyzer)


if __name__ == "__main__":
    sys.exit(main())
