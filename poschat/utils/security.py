"""Security helpers: PII masking, prompt sanitization and best-effort audit logging."""
import json
import re
import time
from typing import Any, Dict

from .logger import get_logger

_CARD_OR_PHONE = re.compile(r"\b\d{10,19}\b")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_INJECTION_MARKERS = re.compile(
    r"(ignore (all )?(previous|prior) instructions|disregard the system prompt)",
    re.IGNORECASE,
)

MAX_PROMPT_LENGTH = 16000


def mask_pii(text: str) -> str:
    # Long digit runs are phone or card numbers
    return _CARD_OR_PHONE.sub("[REDACTED]", text or "")


def sanitize_prompt(text: str, max_length: int = MAX_PROMPT_LENGTH) -> str:
    """Strip control characters and obvious injection phrases, then cap the length."""
    cleaned = _CONTROL_CHARS.sub("", text or "")
    cleaned = _INJECTION_MARKERS.sub("[FILTERED]", cleaned)
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]
    return cleaned


class AuditLogger:
    """Writes structured audit events as JSON lines on the ``poschat.audit`` logger.

    Auditing never interferes with a customer turn: serialization or handler
    failures are reported on the package logger and dropped.
    """

    def __init__(self, name: str = "audit"):
        self.logger = get_logger(name)

    def log_event(self, event_type: str, **fields: Any) -> None:
        record: Dict[str, Any] = {"event": event_type, "ts": time.time()}
        for key, value in fields.items():
            record[key] = mask_pii(value) if isinstance(value, str) else value
        try:
            self.logger.info(json.dumps(record, default=str))
        except Exception as e:
            get_logger().debug(f"[AUDIT] dropped event {event_type}: {e}")

    def log_model_interaction(self, prompt: str, success: bool, latency_ms: float, error: str = None) -> None:
        self.log_event(
            "model_interaction",
            prompt_preview=sanitize_prompt(prompt, max_length=200),
            success=success,
            latency_ms=round(latency_ms, 1),
            error=error,
        )
