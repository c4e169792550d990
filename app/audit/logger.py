"""
Audit Logger — Structured JSON-lines security audit trail.

Records every escalation, every report or evidence failure, capacity alerts
and other significant state transitions of the violation pipeline.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

from app.config import settings
from app.models.processing_models import SecurityAuditEntry

logger = logging.getLogger("examguard.audit")


class AuditLogger:
    """Writes structured security audit entries to a JSON-lines file."""

    def __init__(self, log_path: str | None = None) -> None:
        self.log_path = Path(log_path or settings.audit_log_path)

    def log_security_event(
        self,
        action: str,
        severity: str,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append one security audit entry."""
        entry = SecurityAuditEntry(
            action=action,
            severity=severity,
            description=description,
            metadata=metadata or {},
        )
        self.log(entry)

    def log(self, entry: SecurityAuditEntry) -> None:
        """Append an audit entry to the log file."""
        record = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            **entry.model_dump(mode="json"),
        }

        try:
            with open(self.log_path, "a") as f:
                f.write(json.dumps(record, default=str) + "\n")
        except OSError as e:
            logger.error(f"Failed to write audit log: {e}")

    def read_recent(self, count: int = 50) -> list[dict]:
        """Read the most recent N audit entries."""
        if not self.log_path.exists():
            return []

        entries: list[dict] = []
        try:
            with open(self.log_path) as f:
                for line in f:
                    line = line.strip()
                    if line:
                        try:
                            entries.append(json.loads(line))
                        except json.JSONDecodeError:
                            continue
        except OSError:
            return []

        return entries[-count:]
