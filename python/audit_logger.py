"""
Compliance Audit Logging Module

Structured JSON logging for the events a compliance reviewer must be
able to reconstruct afterwards:
- Status transitions (accepted and rejected)
- Stale-write conflicts between officers
- Failed watchlist lookups
- Officer actions (assignment, score edits, enhanced DD, documents)

User-provided text is sanitized before it is written.
"""

import logging
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field as dataclass_field

from text_utils import sanitize_for_logging


@dataclass
class AuditEvent:
    """Structured audit event for logging"""
    event_type: str  # e.g., STATUS_TRANSITION, STALE_WRITE, OFFICER_ACTION
    severity: str  # INFO, WARNING, ERROR
    screening_id: str = ""
    actor: str = ""
    action: str = ""
    source: str = ""
    request_id: str = ""
    user_id: str = ""
    source_ip: str = ""
    additional_context: Dict[str, Any] = dataclass_field(default_factory=dict)
    timestamp: str = dataclass_field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            'timestamp': self.timestamp,
            'event_type': self.event_type,
            'severity': self.severity,
            'screening_id': self.screening_id,
            'actor': self.actor,
            'action': self.action,
            'source': self.source,
            'request_id': self.request_id,
            'user_id': self.user_id,
            'source_ip': self.source_ip,
            'context': self.additional_context
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class ComplianceAuditLogger:
    """Writes compliance audit events as one JSON document per line

    Events go to a dedicated ``compliance_audit`` logger, backed by
    ``compliance_audit.log`` and optionally the console. The last events
    are also kept in memory so the API and tests can inspect them.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        log_level: int = logging.INFO,
        enable_console: bool = False,
        enable_file: bool = True,
        history_size: int = 200
    ):
        """Initialize audit logger

        Args:
            log_dir: Directory for log files
            log_level: Minimum log level to record
            enable_console: Also output to console
            enable_file: Write to compliance_audit.log
            history_size: Number of recent events kept in memory
        """
        self.log_dir = Path(log_dir)

        self.logger = logging.getLogger('compliance_audit')
        self.logger.setLevel(log_level)
        self.logger.handlers.clear()
        self.logger.propagate = False

        formatter = logging.Formatter('%(asctime)s - AUDIT - %(levelname)s - %(message)s')

        if enable_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.log_dir / "compliance_audit.log", encoding='utf-8')
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        if enable_console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(log_level)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

        if not self.logger.handlers:
            self.logger.addHandler(logging.NullHandler())

        self._history_size = history_size
        self._recent: List[AuditEvent] = []

        self._request_id: str = ""
        self._user_id: str = ""
        self._source_ip: str = ""

    def set_request_context(
        self,
        request_id: Optional[str] = None,
        user_id: str = "",
        source_ip: str = ""
    ) -> str:
        """Set context for the current request

        Returns:
            The request ID being used
        """
        self._request_id = request_id or f"REQ-{uuid.uuid4().hex[:8]}"
        self._user_id = user_id
        self._source_ip = source_ip
        return self._request_id

    def clear_request_context(self) -> None:
        self._request_id = ""
        self._user_id = ""
        self._source_ip = ""

    @property
    def recent_events(self) -> List[AuditEvent]:
        return list(self._recent)

    def _sanitize(self, text: Any, max_length: int = 200) -> str:
        if text is None or text == "":
            return ""
        sanitized = sanitize_for_logging(text)
        if len(sanitized) > max_length:
            return sanitized[:max_length] + "...(truncated)"
        return sanitized

    def _sanitize_context(self, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Sanitize every value of a context dictionary

        Nested dicts are sanitized recursively; scalars pass through.
        """
        if not context:
            return {}

        sanitized: Dict[str, Any] = {}
        for key, value in context.items():
            safe_key = self._sanitize(str(key), max_length=100) if key else "unknown"
            if value is None or isinstance(value, (bool, int, float)):
                sanitized[safe_key] = value
            elif isinstance(value, dict):
                sanitized[safe_key] = self._sanitize_context(value)
            elif isinstance(value, (list, tuple)):
                sanitized[safe_key] = [
                    item if isinstance(item, (bool, int, float, type(None)))
                    else self._sanitize(item)
                    for item in value
                ]
            else:
                sanitized[safe_key] = self._sanitize(value)
        return sanitized

    def _emit(self, event: AuditEvent) -> None:
        self._recent.append(event)
        if len(self._recent) > self._history_size:
            del self._recent[0]

        if event.severity == "ERROR":
            self.logger.error(event.to_json())
        elif event.severity == "WARNING":
            self.logger.warning(event.to_json())
        else:
            self.logger.info(event.to_json())

    def log_event(
        self,
        event_type: str,
        severity: str = "INFO",
        screening_id: str = "",
        actor: str = "",
        action: str = "",
        source: str = "",
        additional_context: Optional[Dict[str, Any]] = None
    ) -> AuditEvent:
        """Log an arbitrary audit event and return it"""
        event = AuditEvent(
            event_type=event_type,
            severity=severity,
            screening_id=self._sanitize(screening_id, max_length=100),
            actor=self._sanitize(actor, max_length=100),
            action=action,
            source=source,
            request_id=self._request_id,
            user_id=self._user_id,
            source_ip=self._source_ip,
            additional_context=self._sanitize_context(additional_context)
        )
        self._emit(event)
        return event

    def log_transition(
        self,
        screening_id: str,
        actor: str,
        from_status: str,
        to_status: str,
        reason: str = "",
        version: Optional[int] = None
    ) -> AuditEvent:
        return self.log_event(
            event_type="STATUS_TRANSITION",
            screening_id=screening_id,
            actor=actor,
            action=f"{from_status}->{to_status}",
            source="compliance_workflow",
            additional_context={
                'from_status': from_status,
                'to_status': to_status,
                'reason': reason,
                'version': version
            }
        )

    def log_transition_rejected(
        self,
        screening_id: str,
        actor: str,
        from_status: str,
        to_status: str,
        error_code: str,
        missing_items: Optional[List[str]] = None
    ) -> AuditEvent:
        return self.log_event(
            event_type="TRANSITION_REJECTED",
            severity="WARNING",
            screening_id=screening_id,
            actor=actor,
            action=f"{from_status}->{to_status}",
            source="compliance_workflow",
            additional_context={
                'error_code': error_code,
                'missing_items': missing_items or []
            }
        )

    def log_stale_write(
        self,
        screening_id: str,
        actor: str,
        expected_version: int,
        actual_version: int
    ) -> AuditEvent:
        return self.log_event(
            event_type="STALE_WRITE",
            severity="WARNING",
            screening_id=screening_id,
            actor=actor,
            source="screening_repository",
            additional_context={
                'expected_version': expected_version,
                'actual_version': actual_version
            }
        )

    def log_lookup_failure(
        self,
        list_name: str,
        reason: str,
        entity_name: str = "",
        screening_id: str = ""
    ) -> AuditEvent:
        return self.log_event(
            event_type="WATCHLIST_LOOKUP_FAILED",
            severity="WARNING",
            screening_id=screening_id,
            source="watchlist_screener",
            additional_context={
                'list_name': list_name,
                'reason': reason,
                'entity_name': self._sanitize(entity_name, max_length=50)
            }
        )

    def log_officer_action(
        self,
        screening_id: str,
        actor: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ) -> AuditEvent:
        return self.log_event(
            event_type="OFFICER_ACTION",
            screening_id=screening_id,
            actor=actor,
            action=action,
            source="screening_service",
            additional_context=details
        )


# Global audit logger instance
_audit_logger: Optional[ComplianceAuditLogger] = None


def get_audit_logger(
    log_dir: str = "logs",
    enable_console: bool = False,
    enable_file: bool = True
) -> ComplianceAuditLogger:
    """Get or create the global audit logger instance"""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = ComplianceAuditLogger(
            log_dir=log_dir,
            enable_console=enable_console,
            enable_file=enable_file
        )
    return _audit_logger


def reset_audit_logger() -> None:
    """Reset the global audit logger (for testing)"""
    global _audit_logger
    _audit_logger = None
