import json

from google.cloud import logging_v2, pubsub_v1

from .timeutil import format_duration, now_iso


def build_scaling_event(project_id, result, applied=False, error=None):
    decision = result.decision
    return {
        "timestamp": now_iso(),
        "source": "cloudsql-autoscaler",
        "event_type": "scaling_event",
        "severity": "ERROR" if error else ("NOTICE" if applied else "INFO"),
        "project": project_id,
        "instance": result.instance.name,
        "action": decision.direction or "none",
        "current_type": decision.current_type,
        "recommended_type": decision.recommended_type,
        "reason": decision.reason,
        "downtime_expected": decision.downtime_expected,
        "estimated_downtime": format_duration(result.downtime_estimate),
        "warnings": list(result.warnings),
        "estimated_savings": round(decision.estimated_savings, 2),
        "applied": applied,
        "error": str(error) if error else "",
    }


class NullEventPublisher:
    def publish(self, event):
        pass


class EventPublisher:
    """Ships scaling events to a Pub/Sub topic and/or a Cloud Logging log."""

    def __init__(self, project_id, topic=None, log_name=None, publisher=None, logging_client=None):
        self.publisher = None
        self.event_path = None
        self.logger = None

        if topic:
            self.publisher = publisher or pubsub_v1.PublisherClient()
            self.event_path = self.publisher.topic_path(project_id, topic)
        if log_name:
            client = logging_client or logging_v2.Client(project=project_id)
            self.logger = client.logger(log_name)

    def publish(self, event):
        try:
            if self.publisher is not None:
                self.publisher.publish(self.event_path, json.dumps(event).encode("utf-8"))
            if self.logger is not None:
                self.logger.log_struct(event, severity=event.get("severity", "INFO"))
        except Exception as e:
            # Event delivery never fails a scaling cycle
            print(f"Failed to publish event for {event.get('instance')}: {e}", flush=True)
            return
        print("PUBLISHED EVENT:", event.get("instance"), event.get("action"), flush=True)


def create_event_publisher(project_id, topic=None, log_name=None):
    if not topic and not log_name:
        return NullEventPublisher()
    return EventPublisher(project_id, topic=topic, log_name=log_name)
