from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .machine_types import CATALOG, Edition, MachineTypeNotFound
from .timeutil import parse_iso


@dataclass(frozen=True)
class InstanceDescriptor:
    """Snapshot of one Cloud SQL instance, taken once per analysis."""

    name: str
    project: str
    machine_type: str
    edition: Edition = Edition.ENTERPRISE
    state: str = "RUNNABLE"
    database_version: str = ""
    region: str = ""
    zone: str = ""
    high_availability: bool = False
    backup_enabled: bool = False
    last_scaled_time: Optional[datetime] = None
    current_cpu: int = 0
    current_memory_gb: float = 0.0
    max_connections: int = 0

    @property
    def engine(self):
        version = self.database_version.upper()
        if version.startswith("POSTGRES"):
            return "postgresql"
        if version.startswith("MYSQL"):
            return "mysql"
        if version.startswith("SQLSERVER"):
            return "sqlserver"
        return ""


@dataclass(frozen=True)
class OperationRecord:
    name: str
    operation_type: str
    status: str
    target_id: str = ""
    insert_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: str = ""


def descriptor_from_api(item, project, default_edition=Edition.ENTERPRISE):
    """Build an InstanceDescriptor from a Cloud SQL Admin API instance resource."""
    settings = item.get("settings") or {}
    tier = settings.get("tier", "")

    # Unknown tiers are kept; the rules engine reports them as a non-scaling outcome
    try:
        mt = CATALOG.get(tier)
        cpu, memory_gb = mt.cpu, mt.memory_gb
    except MachineTypeNotFound:
        cpu, memory_gb = 0, 0.0

    max_connections = 0
    for flag in settings.get("databaseFlags") or []:
        if flag.get("name") == "max_connections":
            try:
                max_connections = int(flag.get("value", 0))
            except (TypeError, ValueError):
                max_connections = 0

    return InstanceDescriptor(
        name=item.get("name", ""),
        project=item.get("project") or project,
        machine_type=tier,
        edition=Edition.parse(settings.get("edition") or default_edition),
        state=item.get("state", ""),
        database_version=item.get("databaseVersion", ""),
        region=item.get("region", ""),
        zone=item.get("gceZone", ""),
        high_availability=settings.get("availabilityType") == "REGIONAL",
        backup_enabled=bool((settings.get("backupConfiguration") or {}).get("enabled", False)),
        current_cpu=cpu,
        current_memory_gb=memory_gb,
        max_connections=max_connections,
    )


def operation_from_api(op):
    error = ""
    errors = (op.get("error") or {}).get("errors") or []
    if errors:
        error = "; ".join(e.get("message") or e.get("code", "") for e in errors)
    return OperationRecord(
        name=op.get("name", ""),
        operation_type=op.get("operationType", ""),
        status=op.get("status", ""),
        target_id=op.get("targetId", ""),
        insert_time=parse_iso(op.get("insertTime")),
        end_time=parse_iso(op.get("endTime")),
        error=error,
    )


def last_scaling_time(operations):
    """Most recent completed UPDATE operation, or None when there is none.

    The operation log does not say which settings an UPDATE touched, so any
    completed update counts as a scaling event.
    """
    latest = None
    for op in operations:
        if op.operation_type != "UPDATE" or op.status != "DONE" or op.error:
            continue
        if op.insert_time is None:
            continue
        if latest is None or op.insert_time > latest:
            latest = op.insert_time
    return latest
