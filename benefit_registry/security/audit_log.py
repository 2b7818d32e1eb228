"""Audit logging for registry mutations.

Every attach, update and remove attempt is written as one JSON line to a
daily file under the audit directory, whether it succeeded or was
rejected. Rejections carry the error kind.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    """A single audit log entry."""

    id: str
    timestamp: str
    actor: str
    action: str
    resource_type: str
    resource_id: str
    details: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error_kind: str = ""


class AuditLogger:
    """File-based JSONL audit logger.

    Defaults to ``~/.benefit_registry/audit_logs/`` when no directory is given.
    """

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self._base_dir = Path(base_dir) if base_dir else Path.home() / ".benefit_registry" / "audit_logs"
        self._base_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _log_file_for_date(self, dt: datetime) -> Path:
        return self._base_dir / f"{dt.strftime('%Y-%m-%d')}.jsonl"

    def _read_all_entries(self) -> list[AuditEntry]:
        entries: list[AuditEntry] = []
        for path in sorted(self._base_dir.glob("*.jsonl")):
            for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
                if not line.strip():
                    continue
                try:
                    entries.append(AuditEntry(**json.loads(line)))
                except (json.JSONDecodeError, TypeError):
                    logger.warning("Skipping malformed audit line %s:%d", path.name, lineno)
        return entries

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def log_event(
        self,
        actor: str,
        action: str,
        resource_type: str,
        resource_id: str,
        details: Optional[dict[str, Any]] = None,
        success: bool = True,
        error_kind: str = "",
    ) -> AuditEntry:
        """Record an audit event and return the created entry."""
        now = datetime.now(timezone.utc)
        entry = AuditEntry(
            id=uuid.uuid4().hex[:16],
            timestamp=now.isoformat(),
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
            success=success,
            error_kind=error_kind,
        )
        with self._log_file_for_date(now).open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(asdict(entry)) + "\n")
        return entry

    def get_events(
        self,
        *,
        actor: Optional[str] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        success: Optional[bool] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int = 200,
    ) -> list[AuditEntry]:
        """Return filtered audit events, newest first."""
        entries = self._read_all_entries()

        if actor:
            entries = [e for e in entries if e.actor == actor]
        if action:
            entries = [e for e in entries if e.action == action]
        if resource_type:
            entries = [e for e in entries if e.resource_type == resource_type]
        if success is not None:
            entries = [e for e in entries if e.success == success]
        if start_date:
            entries = [e for e in entries if e.timestamp >= start_date]
        if end_date:
            entries = [e for e in entries if e.timestamp <= end_date]

        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    def get_events_for_resource(
        self, resource_type: str, resource_id: str
    ) -> list[AuditEntry]:
        """Return all events for a specific resource, newest first."""
        result = [
            e
            for e in self._read_all_entries()
            if e.resource_type == resource_type and e.resource_id == resource_id
        ]
        result.sort(key=lambda e: e.timestamp, reverse=True)
        return result

    def export_events(self, fmt: str = "json", *, limit: int = 10000, **filters: Any) -> str:
        """Export audit events as ``json`` or ``csv``."""
        entries = self.get_events(limit=limit, **filters)

        if fmt == "csv":
            lines = ["id,timestamp,actor,action,resource_type,resource_id,success,error_kind"]
            for e in entries:
                lines.append(
                    f"{e.id},{e.timestamp},{e.actor},{e.action},{e.resource_type},"
                    f"{e.resource_id},{e.success},{e.error_kind}"
                )
            return "\n".join(lines)

        return json.dumps([asdict(e) for e in entries], indent=2)
