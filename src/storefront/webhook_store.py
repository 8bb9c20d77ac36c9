"""Webhook event ledger for storefront."""

import json
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import Settings
from .errors import OrderValidationError
from .models import _utc_now

WEBHOOK_EVENTS_DIR = "webhook_events"
_EVENT_ID_RE = re.compile(r"[A-Za-z0-9_-]+")


@dataclass
class WebhookEvent:
    """A received provider event."""

    event_id: str
    provider: str
    event_type: str
    processed: bool
    received_at: str
    processed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "provider": self.provider,
            "event_type": self.event_type,
            "processed": self.processed,
            "received_at": self.received_at,
            "processed_at": self.processed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WebhookEvent":
        return cls(
            event_id=data["event_id"],
            provider=data["provider"],
            event_type=data["event_type"],
            processed=data.get("processed", False),
            received_at=data.get("received_at", ""),
            processed_at=data.get("processed_at"),
        )


class WebhookEventStore:
    """Remembers which provider events were already handled."""

    def __init__(self, config_dir: Path | None = None):
        """
        Initialize WebhookEventStore.

        Args:
            config_dir: Override data directory (for testing).
        """
        self.config_dir = config_dir or Settings.from_env().data_dir
        self.events_dir = self.config_dir / WEBHOOK_EVENTS_DIR

    def _event_path(self, event_id: str) -> Path:
        # Event ids name files directly, so only a safe alphabet is accepted.
        if not _EVENT_ID_RE.fullmatch(event_id):
            raise OrderValidationError(f"unsupported event id {event_id!r}", field="event")
        return self.events_dir / f"{event_id}.json"

    def _write(self, event: WebhookEvent) -> None:
        self.events_dir.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=self.events_dir, prefix=".event_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(event.to_dict(), f, indent=2)
                f.write("\n")
            os.replace(temp_path, self._event_path(event.event_id))
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    def get(self, event_id: str) -> WebhookEvent | None:
        """Get a recorded event, or None if it was never seen."""
        path = self._event_path(event_id)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return WebhookEvent.from_dict(json.load(f))

    def record(self, event_id: str, provider: str, event_type: str) -> bool:
        """
        Record an incoming event.

        Returns:
            False if the event was already processed and should be skipped,
            True if it should be (re)processed.
        """
        existing = self.get(event_id)
        if existing is not None and existing.processed:
            return False

        self._write(
            WebhookEvent(
                event_id=event_id,
                provider=provider,
                event_type=event_type,
                processed=False,
                received_at=existing.received_at if existing else _utc_now(),
            )
        )
        return True

    def mark_processed(self, event_id: str) -> None:
        """Flag a recorded event as fully handled."""
        event = self.get(event_id)
        if event is None:
            return
        event.processed = True
        event.processed_at = _utc_now()
        self._write(event)
