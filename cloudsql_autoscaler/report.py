import json
import sys

from tabulate import tabulate

from .timeutil import format_duration, now_iso, now_utc, round_to_minute

TABLE_HEADERS = ["Instance", "Current Type", "Resources", "Action", "Recommended", "Status", "Warning"]


def output_result(name):
    return {
        "instance": name,
        "current_type": "",
        "current_cpu": 0,
        "current_memory_gb": 0.0,
        "recommended_type": "",
        "action": "",
        "reason": "",
        "downtime_warning": "",
        "estimated_downtime": "",
        "warnings": [],
        "metrics": {},
        "applied": False,
        "error": "",
        "timestamp": now_iso(),
    }


def table_row(name):
    row = dict.fromkeys(TABLE_HEADERS, "")
    row["Instance"] = name
    return row


def metrics_record(summary):
    return {
        "cpu_avg": round(summary.cpu_avg, 2),
        "cpu_p95": round(summary.cpu_p95, 2),
        "cpu_p99": round(summary.cpu_p99, 2),
        "cpu_max": round(summary.cpu_max, 2),
        "memory_avg_pct": round(summary.memory_avg_pct, 2),
        "memory_p95_pct": round(summary.memory_p95_pct, 2),
        "memory_p99_pct": round(summary.memory_p99_pct, 2),
        "memory_max_gb": round(summary.memory_max_gb, 2),
        "connections_avg": round(summary.connections_avg, 2),
        "connections_max": summary.connections_max,
        "data_points": summary.data_points,
    }


def describe_result(result):
    """Output record and table row for one analyzed instance, before any apply."""
    instance = result.instance
    decision = result.decision

    out = output_result(instance.name)
    out["current_type"] = instance.machine_type
    out["current_cpu"] = instance.current_cpu
    out["current_memory_gb"] = instance.current_memory_gb
    out["reason"] = decision.reason
    out["warnings"] = list(result.warnings)
    out["metrics"] = metrics_record(result.summary)

    row = table_row(instance.name)
    row["Current Type"] = instance.machine_type
    row["Resources"] = f"{instance.current_cpu} CPU, {instance.current_memory_gb:.1f} GB"

    if decision.should_scale:
        action = "SCALE_UP" if decision.direction == "up" else "SCALE_DOWN"
        out["action"] = action.lower()
        out["recommended_type"] = decision.recommended_type
        row["Action"] = action
        row["Recommended"] = decision.recommended_type
        if decision.downtime_expected:
            out["downtime_warning"] = decision.downtime_reason
            out["estimated_downtime"] = format_duration(result.downtime_estimate)
            row["Warning"] = "Downtime expected"
    else:
        out["action"] = "no_action"
        row["Action"] = "NONE"
        row["Status"] = "OK"

    if result.warnings and not row["Warning"]:
        row["Warning"] = f"{len(result.warnings)} warning(s)"
    return out, row


def describe_failure(name, error):
    out = output_result(name)
    out["action"] = "error"
    out["reason"] = "Failed to analyze instance"
    out["error"] = str(error)

    row = table_row(name)
    row["Action"] = "ERROR"
    row["Status"] = "Failed"
    row["Warning"] = "Analysis failed"
    return out, row


def mark_dry_run(row):
    row["Status"] = "DRY-RUN"


def mark_applied(out, row):
    out["applied"] = True
    row["Status"] = "SUCCESS"


def mark_failed(out, row, error):
    out["error"] = str(error)
    row["Status"] = "FAILED"
    row["Warning"] = "Scaling failed"


def render_table(rows, out=None):
    out = out or sys.stdout
    table = [[row.get(h, "") for h in TABLE_HEADERS] for row in rows]
    print(tabulate(table, headers=TABLE_HEADERS, tablefmt="simple", disable_numparse=True), file=out)


def render_json(project_id, results, total, analyzed, profile, dry_run, out=None):
    out = out or sys.stdout
    summary = {
        "project_id": project_id,
        "total_instances": total,
        "analyzed_instances": analyzed,
        "scaling_results": results,
        "profile": profile,
        "dry_run": dry_run,
        "timestamp": now_iso(),
    }
    print(json.dumps(summary, indent=2), file=out)


def print_project_summary(project, out=None):
    out = out or sys.stderr
    print(f"Project: {project.project_id}", file=out)
    print(f"Total Instances: {project.total_instances}", file=out)
    print(f"Analyzed: {project.analyzed_instances}", file=out)

    scalable = project.scalable_instances()
    print(f"Instances Needing Scaling: {len(scalable)}\n", file=out)
    if not scalable:
        print("No instances require scaling at this time.", file=out)

    for title, group in (("Scale Up", project.scale_up_instances()), ("Scale Down", project.scale_down_instances())):
        if not group:
            continue
        print(f"Instances to {title} ({len(group)}):", file=out)
        for r in group:
            print(f"  - {r.instance.name}: {r.decision.current_type} -> {r.decision.recommended_type} "
                  f"(CPU P95: {r.summary.cpu_p95:.1f}%, Memory P95: {r.summary.memory_p95_pct:.1f}%)", file=out)
            if r.decision.direction == "down" and r.decision.estimated_savings > 0:
                print(f"    Estimated monthly savings: ${r.decision.estimated_savings:.2f}", file=out)
            if r.decision.downtime_expected:
                print(f"    WARNING: {r.decision.downtime_reason}", file=out)
                if r.downtime_estimate:
                    print(f"    Estimated downtime: {format_duration(r.downtime_estimate)}", file=out)
            if r.scaling_window is not None:
                print(f"    Suggested window: {r.scaling_window.start:%Y-%m-%d %H:%M} - "
                      f"{r.scaling_window.end:%H:%M} UTC", file=out)
        print("", file=out)

    total = project.total_estimated_savings
    if total > 0:
        print(f"Total Estimated Monthly Savings: ${total:.2f}", file=out)
    elif total < 0:
        print(f"Total Estimated Monthly Cost Increase: ${-total:.2f}", file=out)

    flagged = [r for r in project.results if r.warnings]
    if flagged:
        print("\nWarnings:", file=out)
        for r in flagged:
            for warning in r.warnings:
                print(f"  - {r.instance.name}: {warning}", file=out)


def print_analysis_report(result, out=None, now=None):
    """Detailed per-instance report: configuration, metrics, recommendation, warnings."""
    out = out or sys.stderr
    instance = result.instance
    summary = result.summary
    decision = result.decision

    print("\n=== Cloud SQL Instance Analysis Report ===", file=out)
    print(f"Instance: {instance.name}", file=out)
    print(f"Project: {instance.project}", file=out)
    if result.analyzed_at is not None:
        print(f"Analyzed at: {result.analyzed_at.isoformat()}", file=out)

    print("\nCurrent Configuration:", file=out)
    print(f"  Machine Type: {instance.machine_type}", file=out)
    print(f"  Edition: {instance.edition.value}", file=out)
    print(f"  CPU: {instance.current_cpu} vCPUs", file=out)
    print(f"  Memory: {instance.current_memory_gb:.1f} GB", file=out)
    if instance.region:
        print(f"  Region: {instance.region}", file=out)
    if instance.zone:
        print(f"  Zone: {instance.zone}", file=out)
    if instance.last_scaled_time is not None:
        ago = round_to_minute((now or now_utc()) - instance.last_scaled_time)
        print(f"  Last Scaled: {instance.last_scaled_time.isoformat()} ({format_duration(ago)} ago)", file=out)

    print(f"\nMetrics Summary (Period: {format_duration(summary.period)}):", file=out)
    print(f"  Data Points: {summary.data_points}", file=out)
    print(f"  CPU Utilization: avg {summary.cpu_avg:.1f}%, P95 {summary.cpu_p95:.1f}%, "
          f"P99 {summary.cpu_p99:.1f}%, max {summary.cpu_max:.1f}%", file=out)
    print(f"  Memory Utilization: avg {summary.memory_avg_pct:.1f}% ({summary.memory_avg_gb:.1f} GB), "
          f"P95 {summary.memory_p95_pct:.1f}% ({summary.memory_p95_gb:.1f} GB), "
          f"P99 {summary.memory_p99_pct:.1f}% ({summary.memory_p99_gb:.1f} GB), "
          f"max {summary.memory_max_gb:.1f} GB", file=out)
    print(f"  Connections: avg {summary.connections_avg:.1f}, max {summary.connections_max}", file=out)

    print("\nScaling Recommendation:", file=out)
    if decision.should_scale:
        print(f"  Action: SCALE_{decision.direction.upper()}", file=out)
        print(f"  Recommended Type: {decision.recommended_type}", file=out)
        print(f"  Reason: {decision.reason}", file=out)
        if decision.estimated_savings > 0:
            print(f"  Estimated Monthly Savings: ${decision.estimated_savings:.2f}", file=out)
        elif decision.estimated_savings < 0:
            print(f"  Estimated Monthly Cost Increase: ${-decision.estimated_savings:.2f}", file=out)
        if decision.downtime_expected:
            print(f"  Downtime Expected: {decision.downtime_reason}", file=out)
            if result.downtime_estimate:
                print(f"  Estimated Downtime: {format_duration(result.downtime_estimate)}", file=out)
        else:
            print("  No Downtime Expected", file=out)
        if result.scaling_window is not None:
            print(f"  Scaling Window: {result.scaling_window.start.isoformat()} - "
                  f"{result.scaling_window.end.isoformat()}", file=out)
    else:
        print("  Action: NO SCALING NEEDED", file=out)
        print(f"  Reason: {decision.reason}", file=out)

    if result.warnings:
        print("\nWarnings:", file=out)
        for warning in result.warnings:
            print(f"  - {warning}", file=out)
