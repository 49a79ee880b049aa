"""Audit trail for resource changes (signed JSON lines).

Each event carries the full, unfiltered representation of the affected
resource. Secrets (passwords, signed tokens) are redacted before writing.
"""
from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import logging
from pathlib import Path
from typing import Any, Literal, Optional

from .access import AccessAwareFilter

logger = logging.getLogger(__name__)

AUDIT_LOG_FILENAME = "events.jsonl"
REDACTED_FIELDS = frozenset({"token", "password"})

AuditAction = Literal[
    "create", "update", "patch", "delete", "login", "login_failure", "revoke", "terminate", "password_reset",
]


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: ("[redacted]" if key in REDACTED_FIELDS and item is not None else _redact(item))
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


class AuditLog:
    """Appends HMAC-SHA256 signed events to ``<directory>/events.jsonl``.

    Args:
        directory: Target directory, created with 0700 permissions
        signing_key: HMAC key; events are written unsigned when empty
    """

    def __init__(self, directory: Path | str, signing_key: str = ""):
        self.directory = Path(directory)
        self.file = self.directory / AUDIT_LOG_FILENAME
        self._signing_key = signing_key.strip().encode("utf-8")

    def _ensure_dir(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.directory.chmod(0o700)

    def _sign(self, event: dict[str, Any]) -> str:
        if not self._signing_key:
            return ""
        # Canonical JSON representation for signing
        canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
        return hmac.new(self._signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()

    def record(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: Any,
        *,
        operator: str = "system",
        representation: Any = None,
        success: bool = True,
    ) -> dict[str, Any]:
        """Append one event and return it (including its signature).

        Args:
            action: What happened
            resource_type: Entity type name (User, Role, ...)
            resource_id: Identifier of the affected resource
            operator: Username of the caller, or "system"
            representation: Unfiltered representation after the change
            success: Whether the operation succeeded
        """
        self._ensure_dir()
        event = {
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "action": action,
            "resource_type": resource_type,
            "resource_id": str(resource_id) if resource_id is not None else None,
            "operator": operator,
            "success": success,
            "representation": _redact(AccessAwareFilter().serialize(representation)),
        }
        signature = self._sign(event)
        if signature:
            event["signature"] = signature

        # Append to JSONL file (one JSON object per line)
        with self.file.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")
        self.file.chmod(0o600)
        return event

    def safe_record(self, action: AuditAction, resource_type: str, resource_id: Any, **kwargs) -> bool:
        """Like ``record`` but never raises; audit failures must not break requests.

        Returns:
            True if the event was written
        """
        try:
            self.record(action, resource_type, resource_id, **kwargs)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to write audit event {action} {resource_type}/{resource_id}: {e}")
            return False

    def verify(self) -> tuple[int, int]:
        """Verify all signatures in the audit log.

        Returns:
            Tuple of (total_events, valid_signatures)
        """
        if not self.file.exists():
            return 0, 0

        total = 0
        valid = 0
        with self.file.open("r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                total += 1
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                stored_sig = event.pop("signature", "")
                if stored_sig and hmac.compare_digest(stored_sig, self._sign(event)):
                    valid += 1
        return total, valid


def verify_audit_log(directory: Path | str, signing_key: str) -> tuple[int, int]:
    return AuditLog(directory, signing_key).verify()


def current_operator(principal: Optional[Any]) -> str:
    return principal.username if principal is not None else "system"
