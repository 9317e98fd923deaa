import threading

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from . import config as defaults
from .errors import AnalyzerError, OperationCancelled, ScalingError
from .instances import descriptor_from_api, operation_from_api
from .timeutil import now_iso


class SqlAdminController:
    """Reads and resizes Cloud SQL instances through the SQL Admin API."""

    def __init__(self, project_id, service=None, credentials=None,
                 poll_interval=defaults.OPERATION_POLL_SECONDS, default_edition="ENTERPRISE"):
        self.project_id = project_id
        self.default_edition = default_edition
        self.service = service or build("sqladmin", "v1", credentials=credentials, cache_discovery=False)
        self.poll_interval = poll_interval

    def get(self, name):
        try:
            item = self.service.instances().get(project=self.project_id, instance=name).execute()
        except HttpError as e:
            raise AnalyzerError(f"failed to get instance {name}: {e}") from e
        return descriptor_from_api(item, self.project_id, self.default_edition)

    def list_instances(self):
        instances = []
        try:
            request = self.service.instances().list(project=self.project_id)
            while request is not None:
                response = request.execute()
                for item in response.get("items", []):
                    instances.append(descriptor_from_api(item, self.project_id, self.default_edition))
                request = self.service.instances().list_next(previous_request=request, previous_response=response)
        except HttpError as e:
            raise AnalyzerError(f"failed to list instances in {self.project_id}: {e}") from e
        return instances

    def recent_operations(self, name, limit=10):
        try:
            response = self.service.operations().list(
                project=self.project_id, instance=name, maxResults=limit
            ).execute()
        except HttpError as e:
            raise AnalyzerError(f"failed to list operations for {name}: {e}") from e
        return [operation_from_api(op) for op in response.get("items", [])]

    def update_tier(self, name, tier, cancel_event=None):
        """Patch the instance tier and block until the operation completes."""
        print(f"", flush=True)
        print(f"━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━", flush=True)
        print(f"SCALING INSTANCE {name}", flush=True)
        print(f"━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━", flush=True)
        print(f"Target tier: {tier}", flush=True)
        print(f"Time: {now_iso()}", flush=True)

        body = {"settings": {"tier": tier}}
        try:
            operation = self.service.instances().patch(
                project=self.project_id, instance=name, body=body
            ).execute()
        except HttpError as e:
            raise ScalingError(f"failed to update instance {name}: {e}") from e

        print(f"   Operation: {operation.get('name')}", flush=True)
        self._wait_for_operation(operation.get("name"), cancel_event or threading.Event())
        print(f"Instance {name} is now {tier}", flush=True)

    def _wait_for_operation(self, operation_name, cancel_event):
        while True:
            try:
                op = self.service.operations().get(project=self.project_id, operation=operation_name).execute()
            except HttpError as e:
                raise ScalingError(f"failed to poll operation {operation_name}: {e}") from e

            if op.get("status") == "DONE":
                record = operation_from_api(op)
                if record.error:
                    raise ScalingError(f"operation {operation_name} failed: {record.error}")
                return record

            if cancel_event.wait(self.poll_interval):
                raise OperationCancelled(f"stopped waiting for operation {operation_name}")
