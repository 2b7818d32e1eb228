"""Webhook relay for registry notifications.

Registered webhooks receive a JSON POST for every notification whose
event name they subscribe to. Payloads are signed with HMAC-SHA256 when
the webhook has a secret and delivered via ``urllib.request``.

Storage is file-based JSON under the webhook directory; delivery history
keeps the most recent ``max_deliveries`` records.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
import urllib.error
import urllib.request
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from benefit_registry.events.notifications import (
    BENEFIT_EVENTS,
    Notification,
    NotificationBus,
)

logger = logging.getLogger(__name__)

EVENT_HEADER = "X-Benefit-Event"
SIGNATURE_HEADER = "X-Benefit-Signature"

# Oldest delivery records are dropped beyond this many
MAX_DELIVERIES = 500


@dataclass
class Webhook:
    """A registered outbound webhook."""

    id: str
    name: str
    url: str
    events: list[str] = field(default_factory=list)
    secret: str = ""
    active: bool = True
    created_at: str = ""
    updated_at: str = ""


@dataclass
class WebhookDelivery:
    """Record of a single delivery attempt."""

    id: str
    webhook_id: str
    event: str
    payload: dict[str, Any] = field(default_factory=dict)
    response_status: int = 0
    response_body: str = ""
    success: bool = False
    delivered_at: str = ""
    duration_ms: int = 0


class WebhookManager:
    """Manages webhooks with file-based JSON persistence."""

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        timeout: float = 10.0,
        max_deliveries: int = MAX_DELIVERIES,
    ) -> None:
        self._base_dir = Path(base_dir) if base_dir else Path.home() / ".benefit_registry" / "webhooks"
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._hooks_file = self._base_dir / "webhooks.json"
        self._deliveries_file = self._base_dir / "deliveries.json"
        self.timeout = timeout
        self.max_deliveries = max_deliveries

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _load(path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        data = json.loads(path.read_text(encoding="utf-8"))
        return data if isinstance(data, list) else []

    @staticmethod
    def _save(path: Path, data: list[dict[str, Any]]) -> None:
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    @staticmethod
    def _webhook_from_dict(d: dict[str, Any]) -> Webhook:
        return Webhook(**{k: v for k, v in d.items() if k in Webhook.__dataclass_fields__})

    @staticmethod
    def _delivery_from_dict(d: dict[str, Any]) -> WebhookDelivery:
        return WebhookDelivery(
            **{k: v for k, v in d.items() if k in WebhookDelivery.__dataclass_fields__}
        )

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def register_webhook(
        self,
        url: str,
        events: Optional[list[str]] = None,
        secret: str = "",
        name: str = "",
        active: bool = True,
    ) -> Webhook:
        """Register a new webhook. ``events`` defaults to every benefit event."""
        events = list(events) if events else list(BENEFIT_EVENTS)
        unknown = [e for e in events if e not in BENEFIT_EVENTS]
        if unknown:
            raise ValueError(f"Unknown webhook events: {', '.join(unknown)}")

        now = datetime.now(timezone.utc).isoformat()
        wh = Webhook(
            id=uuid.uuid4().hex[:16],
            name=name or url,
            url=url,
            events=events,
            secret=secret,
            active=active,
            created_at=now,
            updated_at=now,
        )
        hooks = self._load(self._hooks_file)
        hooks.append(asdict(wh))
        self._save(self._hooks_file, hooks)
        return wh

    def get_webhook(self, webhook_id: str) -> Optional[Webhook]:
        for d in self._load(self._hooks_file):
            if d.get("id") == webhook_id:
                return self._webhook_from_dict(d)
        return None

    def list_webhooks(self) -> list[Webhook]:
        return [self._webhook_from_dict(d) for d in self._load(self._hooks_file)]

    def update_webhook(self, webhook_id: str, **kwargs: Any) -> Webhook:
        hooks = self._load(self._hooks_file)
        for d in hooks:
            if d.get("id") == webhook_id:
                for k, v in kwargs.items():
                    if k in Webhook.__dataclass_fields__ and k != "id":
                        d[k] = v
                d["updated_at"] = datetime.now(timezone.utc).isoformat()
                self._save(self._hooks_file, hooks)
                return self._webhook_from_dict(d)
        raise ValueError(f"Webhook {webhook_id} not found")

    def delete_webhook(self, webhook_id: str) -> bool:
        hooks = self._load(self._hooks_file)
        remaining = [d for d in hooks if d.get("id") != webhook_id]
        if len(remaining) == len(hooks):
            return False
        self._save(self._hooks_file, remaining)
        return True

    def toggle_webhook(self, webhook_id: str, active: bool) -> Webhook:
        return self.update_webhook(webhook_id, active=active)

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    def connect(self, bus: NotificationBus) -> Callable[[], None]:
        """Relay every notification on ``bus``; returns the unsubscribe function."""
        return bus.subscribe(self.handle_notification)

    def handle_notification(self, notification: Notification) -> None:
        self.fire_webhook(notification.event, notification.to_payload())

    @staticmethod
    def _compute_signature(payload_bytes: bytes, secret: str) -> str:
        mac = hmac.new(secret.encode("utf-8"), payload_bytes, hashlib.sha256)
        return f"sha256={mac.hexdigest()}"

    def fire_webhook(self, event: str, payload: dict[str, Any]) -> list[WebhookDelivery]:
        """Send ``payload`` to every active webhook subscribed to ``event``."""
        hooks = [w for w in self.list_webhooks() if w.active and event in w.events]
        if not hooks:
            return []

        results = [self._deliver(wh, event, payload) for wh in hooks]
        self._record_deliveries(results)
        return results

    def _record_deliveries(self, new: list[WebhookDelivery]) -> None:
        deliveries = self._load(self._deliveries_file)
        deliveries.extend(asdict(d) for d in new)
        self._save(self._deliveries_file, deliveries[-self.max_deliveries:])

    def _deliver(self, wh: Webhook, event: str, payload: dict[str, Any]) -> WebhookDelivery:
        body = json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json", EVENT_HEADER: event}
        if wh.secret:
            headers[SIGNATURE_HEADER] = self._compute_signature(body, wh.secret)

        start = time.monotonic()
        status = 0
        resp_body = ""
        try:
            req = urllib.request.Request(wh.url, data=body, headers=headers, method="POST")
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                status = resp.status
                resp_body = resp.read().decode("utf-8", errors="replace")[:2000]
        except urllib.error.HTTPError as exc:
            status = exc.code
            resp_body = str(exc)[:2000]
        except (urllib.error.URLError, OSError, ValueError) as exc:
            resp_body = str(exc)[:2000]

        success = 200 <= status < 300
        if not success:
            logger.warning("Webhook %s delivery of %s failed: %s", wh.id, event, resp_body or status)

        return WebhookDelivery(
            id=uuid.uuid4().hex[:16],
            webhook_id=wh.id,
            event=event,
            payload=payload,
            response_status=status,
            response_body=resp_body,
            success=success,
            delivered_at=datetime.now(timezone.utc).isoformat(),
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    # ------------------------------------------------------------------
    # Delivery history
    # ------------------------------------------------------------------

    def get_deliveries(
        self, webhook_id: Optional[str] = None, limit: int = 100
    ) -> list[WebhookDelivery]:
        """Return delivery records, optionally for one webhook, newest first."""
        deliveries = [self._delivery_from_dict(d) for d in self._load(self._deliveries_file)]
        if webhook_id:
            deliveries = [d for d in deliveries if d.webhook_id == webhook_id]
        deliveries.sort(key=lambda d: d.delivered_at, reverse=True)
        return deliveries[:limit]

    def retry_delivery(self, delivery_id: str) -> WebhookDelivery:
        """Replay a previous delivery's event and payload."""
        for d in self._load(self._deliveries_file):
            if d.get("id") == delivery_id:
                original = self._delivery_from_dict(d)
                wh = self.get_webhook(original.webhook_id)
                if wh is None:
                    raise ValueError(f"Webhook {original.webhook_id} not found")
                delivery = self._deliver(wh, original.event, original.payload)
                self._record_deliveries([delivery])
                return delivery
        raise ValueError(f"Delivery {delivery_id} not found")
