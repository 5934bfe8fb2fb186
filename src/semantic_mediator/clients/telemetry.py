"""Telemetry collaborator: debug sessions, event log and error log.

The resolver treats telemetry as fire-and-forget. Implementations may fail;
the resolver logs and ignores those failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import uuid4

logger = logging.getLogger(__name__)


class Telemetry(Protocol):
    """Protocol for the monitoring collaborator."""

    async def open_session(self, context: dict[str, Any]) -> str:
        """Open a debug session and return its id."""
        ...

    async def close_session(self, session_id: str) -> None:
        """Close a debug session."""
        ...

    async def log_event(self, event: dict[str, Any]) -> None:
        """Record a transformation event."""
        ...

    async def log_error(self, error: BaseException, context: dict[str, Any]) -> None:
        """Record an error together with its context."""
        ...


@dataclass
class DebugSession:
    """An open or closed debug session."""

    session_id: str
    context: dict[str, Any]
    started_at: datetime
    ended_at: datetime | None = None
    events: list[dict[str, Any]] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class LoggingTelemetry:
    """Telemetry that keeps an in-process session ledger and mirrors to logging."""

    def __init__(self) -> None:
        self._sessions: dict[str, DebugSession] = {}
        self._errors: list[dict[str, Any]] = []

    async def open_session(self, context: dict[str, Any]) -> str:
        session_id = str(uuid4())
        self._sessions[session_id] = DebugSession(
            session_id=session_id,
            context=dict(context),
            started_at=datetime.now(UTC),
        )
        logger.debug("Opened debug session %s: %s", session_id, context)
        return session_id

    async def close_session(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning("Close requested for unknown debug session %s", session_id)
            return
        session.ended_at = datetime.now(UTC)
        logger.debug(
            "Closed debug session %s (%d events)", session_id, len(session.events)
        )

    async def log_event(self, event: dict[str, Any]) -> None:
        session = self._sessions.get(str(event.get("debug_session_id")))
        if session is not None:
            session.events.append(dict(event))
        logger.info("Transformation event: %s", event.get("type", "unknown"))

    async def log_error(self, error: BaseException, context: dict[str, Any]) -> None:
        self._errors.append({
            "error": str(error),
            "error_type": type(error).__name__,
            "context": dict(context),
            "timestamp": datetime.now(UTC).isoformat(),
        })
        logger.error("Error during %s: %s", context.get("operation", "unknown"), error)

    def get_session(self, session_id: str) -> DebugSession | None:
        """Look up a debug session by id."""
        return self._sessions.get(session_id)

    @property
    def errors(self) -> list[dict[str, Any]]:
        """Errors recorded so far, oldest first."""
        return list(self._errors)
