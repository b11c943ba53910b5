"""Scoped event sink for variant and reconciliation events.

An ``EventSink`` is created by the caller and passed into the generator and
reconciliation jobs, so every test or request gets its own event log.
Listeners run synchronously; a failing listener is logged and recorded but
never breaks the operation that emitted the event. Events can also be posted
to webhook URLs.
"""

import logging
import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timezone

import httpx

logger = logging.getLogger(__name__)

VARIANT_CREATED = "variant.created"
INVENTORY_DRIFT_DETECTED = "inventory.drift.detected"
CONFIG_HASH_MISMATCH = "config.hash.mismatch"
GOVERNANCE_VIOLATION = "governance.violation"

WILDCARD = "*"

Listener = Callable[[dict], None]


class EventSink:
    def __init__(
        self,
        webhook_urls: list[str] | None = None,
        client: httpx.Client | None = None,
        keep_log: bool = True,
        max_events: int | None = None,
    ):
        self.webhook_urls = list(webhook_urls or [])
        self.keep_log = keep_log
        self.max_events = max_events
        self.events: list[dict] = []
        self.failed_events: list[dict] = []
        self.deliveries: list[dict] = []
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._client = client

    def subscribe(self, event_type: str, listener: Listener) -> None:
        self._listeners[event_type].append(listener)

    def unsubscribe(self, event_type: str, listener: Listener) -> None:
        if listener in self._listeners.get(event_type, []):
            self._listeners[event_type].remove(listener)

    def emit(self, event_type: str, payload: dict, entity: str = "", entity_id: str = "") -> dict:
        event = {
            "event_id": uuid.uuid4().hex,
            "type": event_type,
            "entity": entity,
            "entity_id": entity_id,
            "payload": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": "1.0",
        }
        if self.keep_log:
            self._record(self.events, event)

        for listener in [*self._listeners.get(event_type, []), *self._listeners.get(WILDCARD, [])]:
            try:
                listener(event)
            except Exception as e:
                logger.error("Event listener failed for %s: %s", event_type, e)
                self._record(self.failed_events, {"event": event, "error": str(e)})

        if self.webhook_urls:
            for delivery in self._deliver(event):
                self._record(self.deliveries, delivery)
        return event

    def of_type(self, event_type: str) -> list[dict]:
        return [e for e in self.events if e["type"] == event_type]

    def clear(self) -> None:
        """Drop the event log, failures and delivery results. Listeners stay subscribed."""
        self.events.clear()
        self.failed_events.clear()
        self.deliveries.clear()

    def _record(self, log: list, entry: dict) -> None:
        log.append(entry)
        # oldest entries go first once the bound is hit
        if self.max_events and len(log) > self.max_events:
            del log[: len(log) - self.max_events]

    def _deliver(self, event: dict) -> list[dict]:
        results = []
        client = self._client or httpx.Client(timeout=10.0)
        try:
            for url in self.webhook_urls:
                try:
                    resp = client.post(url, json=event)
                    results.append({"url": url, "status": resp.status_code, "success": resp.is_success})
                except Exception as e:
                    logger.error("Event webhook failed for %s: %s", url, e)
                    results.append({"url": url, "status": 0, "success": False, "error": str(e)})
        finally:
            if self._client is None:
                client.close()
        failed = [r for r in results if not r["success"]]
        if failed:
            self._record(self.failed_events, {"event": event, "error": "webhook delivery failed", "deliveries": failed})
        return results
