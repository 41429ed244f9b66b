from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from .yaml_store import ReservationYamlRepository

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"([a-zA-Z0-9._%+-]+)@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")
REDACTED_KEYS = frozenset({"password", "token", "email", "authorization"})
CENSOR = "[redacted]"

EVENT_TYPES = {
    "reservations.create": "RESERVATION_CREATED",
    "reservations.update": "RESERVATION_UPDATED",
    "reservations.delete": "RESERVATION_DELETED",
}


def mask_emails(value: Any) -> Any:
    if isinstance(value, str):
        return _EMAIL_RE.sub("***@***", value)
    if isinstance(value, (list, tuple)):
        return [mask_emails(item) for item in value]
    if isinstance(value, dict):
        return {key: mask_emails(item) for key, item in value.items()}
    return value


def redact(payload: dict[str, Any]) -> dict[str, Any]:
    """Censor sensitive keys at any depth and mask e-mail addresses elsewhere."""
    cleaned: dict[str, Any] = {}
    for key, value in payload.items():
        if str(key).lower() in REDACTED_KEYS:
            cleaned[key] = CENSOR
        elif isinstance(value, dict):
            cleaned[key] = redact(value)
        else:
            cleaned[key] = mask_emails(value)
    return cleaned


class AuditLogger:
    """Writes reservation mutations to the store's event log and to ``logging``."""

    def __init__(self, repository: ReservationYamlRepository | None = None) -> None:
        self._repository = repository

    def emit(
        self,
        action: str,
        reservation_id: str,
        actor_id: str,
        ip_address: str,
        event_time: datetime | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        event = redact(
            {
                "action": action,
                "reservation_id": reservation_id,
                "actor_id": actor_id,
                "ip_address": ip_address,
                **extra,
            }
        )
        logger.info(
            "%s reservation=%s actor=%s ip=%s",
            event["action"],
            event["reservation_id"],
            event["actor_id"],
            event["ip_address"],
        )
        if self._repository is not None:
            self._repository.log_event(EVENT_TYPES.get(action, action.upper()), event, event_time)
        return event
