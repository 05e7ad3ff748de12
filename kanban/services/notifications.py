"""Notification dispatch for kanban workflow events.

Handles:
- Ordered, failure-isolated delivery of domain events to subscribers
- Log output for every event
- Webhook delivery to an external system
"""

import json
import threading
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import httpx
from jinja2 import Template

from kanban.common.logger import get_logger
from kanban.core.timeutil import utcnow

logger = get_logger(__name__)


class EventKind(str, Enum):
    """Domain events emitted by the approval engine."""
    KANBAN_CREATED = "KANBAN_CREATED"
    KANBAN_UPDATED = "KANBAN_UPDATED"
    KANBAN_APPROVED = "KANBAN_APPROVED"
    KANBAN_REJECTED = "KANBAN_REJECTED"
    STATUS_CHANGE = "STATUS_CHANGE"


@dataclass(frozen=True)
class DomainEvent:
    kind: EventKind
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=utcnow)
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def request_id(self) -> Optional[str]:
        request = self.payload.get("request") or {}
        return request.get("id")

    @property
    def actor_id(self) -> Optional[str]:
        actor = self.payload.get("actor") or {}
        return actor.get("user_id")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "event": self.kind.value,
            "timestamp": self.occurred_at.isoformat(),
            "data": self.payload,
        }


class EventSubscriber(ABC):
    """Receives every dispatched event, in dispatch order."""

    name = "subscriber"

    @abstractmethod
    def handle(self, event: DomainEvent) -> None:
        ...

    def close(self) -> None:
        """Release resources held by the subscriber."""


class NotificationDispatcher:
    """
    Best-effort event fan-out.

    Events are delivered on a worker thread, never on the caller's thread,
    so a slow or failing subscriber cannot hold up a state transition. Each
    subscriber failure is logged and the remaining subscribers still run.
    With the default single worker, events reach subscribers in the order
    ``notify`` was called.
    """

    def __init__(self, subscribers: Optional[Iterable[EventSubscriber]] = None, *, workers: int = 1):
        self._subscribers: List[EventSubscriber] = list(subscribers or [])
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="kanban-notify")
        self._pending: set = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def subscribers(self) -> List[EventSubscriber]:
        return list(self._subscribers)

    def subscribe(self, subscriber: EventSubscriber) -> None:
        self._subscribers.append(subscriber)

    def notify(self, kind: EventKind, payload: Dict[str, Any]) -> Optional[Future]:
        """
        Queue an event for delivery.

        Args:
            kind: Event kind
            payload: JSON-serializable event body

        Returns:
            Future completing when every subscriber has seen the event, or
            None if the dispatcher is closed
        """
        event = DomainEvent(kind=EventKind(kind), payload=payload)
        with self._lock:
            if self._closed:
                logger.warning(f"Dispatcher closed, dropping {event.kind.value} event")
                return None
            future = self._executor.submit(self._deliver, event)
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued events. Returns False if the timeout expired first."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self, wait_for_pending: bool = True) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=wait_for_pending)
        for subscriber in self._subscribers:
            try:
                subscriber.close()
            except Exception:
                logger.exception(f"Failed to close subscriber {subscriber.name}")

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _deliver(self, event: DomainEvent) -> None:
        for subscriber in self._subscribers:
            try:
                subscriber.handle(event)
            except Exception:
                logger.exception(
                    f"Subscriber {subscriber.name} failed on {event.kind.value} "
                    f"for request {event.request_id}"
                )


class LoggingSubscriber(EventSubscriber):
    name = "logging"

    def __init__(self, logger_name: str = "kanban.events"):
        self._logger = get_logger(logger_name)

    def handle(self, event: DomainEvent) -> None:
        payload = event.payload
        if event.kind == EventKind.STATUS_CHANGE:
            self._logger.info(
                f"Request {event.request_id}: {payload.get('from_status')} -> "
                f"{payload.get('to_status')} by {event.actor_id or 'system'}"
            )
        else:
            self._logger.info(f"{event.kind.value} request={event.request_id} actor={event.actor_id}")


# Webhook payload templates, selectable by name
WEBHOOK_TEMPLATES = {
    "slack": """{
  "text": "*{{ event }}* kanban {{ data.request.part_number }} x{{ data.request.quantity }}",
  "blocks": [
    {"type": "section", "text": {"type": "mrkdwn", "text": "*{{ event }}*\\nRequest {{ data.request.id }}"}},
    {"type": "section", "fields": [
      {"type": "mrkdwn", "text": "*Part:*\\n{{ data.request.part_number }}"},
      {"type": "mrkdwn", "text": "*Quantity:*\\n{{ data.request.quantity }}"},
      {"type": "mrkdwn", "text": "*Status:*\\n{{ data.request.status }}"},
      {"type": "mrkdwn", "text": "*By:*\\n{{ data.actor.user_id if data.actor else 'system' }}"}
    ]}
  ]
}""",
    "teams": """{
  "@type": "MessageCard",
  "@context": "http://schema.org/extensions",
  "summary": "{{ event }}",
  "sections": [{
    "activityTitle": "{{ event }}",
    "facts": [
      {"name": "Request", "value": "{{ data.request.id }}"},
      {"name": "Part", "value": "{{ data.request.part_number }}"},
      {"name": "Status", "value": "{{ data.request.status }}"}
    ],
    "markdown": true
  }]
}""",
}


class WebhookSubscriber(EventSubscriber):
    """
    POSTs each event as JSON to a configured URL.

    The payload is the event dict unless a Jinja2 template is configured;
    ``payload_template`` is either a key of ``WEBHOOK_TEMPLATES`` or template
    source rendering to JSON.
    """

    name = "webhook"

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30,
        payload_template: Optional[str] = None,
        app_name: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.app_name = app_name
        source = WEBHOOK_TEMPLATES.get(payload_template, payload_template) if payload_template else None
        self._template = Template(source) if source else None
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def build_payload(self, event: DomainEvent) -> Dict[str, Any]:
        context = event.to_dict()
        context["app"] = self.app_name
        if self._template is not None:
            try:
                return json.loads(self._template.render(**context))
            except Exception as e:
                logger.warning(f"Failed to render webhook template: {e}")
        return context

    def handle(self, event: DomainEvent) -> None:
        payload = self.build_payload(event)
        response = self._client.post(
            self.url,
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        logger.debug(f"Delivered {event.kind.value} webhook to {self.url}: {response.status_code}")

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
