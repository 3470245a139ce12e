"""JSONL event logging for memory pipeline observability."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    user_id: str | None = None
    conversation_id: str | None = None
    category_id: str | None = None
    stage: str | None = None
    count: int | None = None
    duration_ms: float | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class EventLog:
    """Writes memory pipeline events in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "memory.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".mneme" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file."""
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")

    def log(
        self,
        event: str,
        *,
        user_id: str | None = None,
        conversation_id: str | None = None,
        category_id: str | None = None,
        stage: str | None = None,
        count: int | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            user_id=user_id,
            conversation_id=conversation_id,
            category_id=category_id,
            stage=stage,
            count=count,
            duration_ms=duration_ms,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_extraction(
        self,
        user_id: str,
        count: int,
        *,
        conversation_id: str | None = None,
        types: list[str] | None = None,
    ) -> None:
        """Log the entities extracted from one message."""
        self.log(
            "extraction",
            user_id=user_id,
            conversation_id=conversation_id,
            count=count,
            types=types or [],
        )

    def log_assignment(
        self,
        user_id: str,
        category_id: str,
        *,
        category_name: str,
        confidence: float,
        fact_type: str,
    ) -> None:
        """Log a fact routed into a category."""
        self.log(
            "assignment",
            user_id=user_id,
            category_id=category_id,
            category_name=category_name,
            confidence=confidence,
            fact_type=fact_type,
        )

    def log_embedding_refresh(
        self,
        user_id: str,
        *,
        refreshed: int,
        skipped: int,
        failed: int,
        duration_ms: float | None = None,
    ) -> None:
        """Log one embedding refresh pass."""
        self.log(
            "embedding_refresh",
            user_id=user_id,
            duration_ms=duration_ms,
            refreshed=refreshed,
            skipped=skipped,
            failed=failed,
        )

    def log_retrieval(
        self,
        user_id: str,
        stage: str | None,
        count: int,
        *,
        duration_ms: float | None = None,
    ) -> None:
        """Log which retrieval stage answered a query."""
        self.log(
            "retrieval",
            user_id=user_id,
            stage=stage,
            count=count,
            duration_ms=duration_ms,
        )

    def log_error(
        self,
        error: str,
        *,
        user_id: str | None = None,
        context: str | None = None,
    ) -> None:
        """Log a degraded operation."""
        self.log("error", user_id=user_id, error=error, context=context)


# Global event log instance
_event_log: EventLog | None = None


def get_event_log() -> EventLog:
    """Get the global event log instance."""
    global _event_log
    if _event_log is None:
        _event_log = EventLog()
    return _event_log


def configure_event_log(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> EventLog:
    """Configure and return the global event log."""
    global _event_log
    _event_log = EventLog(log_dir=log_dir, max_size_mb=max_size_mb)
    return _event_log


def reset_event_log() -> None:
    """Reset the global event log (for testing)."""
    global _event_log
    _event_log = None
