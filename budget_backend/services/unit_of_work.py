from __future__ import annotations

from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from budget_backend.core.errors import ConflictError
from budget_backend.core.events import EventSink
from budget_backend.core.logging import get_logger

logger = get_logger(__name__)

_UOW_KEY = "budget_backend.unit_of_work"


class UnitOfWork:
    """One atomic database unit plus the events it will publish.

    Units are re-entrant per session: a unit opened while another one is active
    joins it, and only the outermost unit commits. Buffered events reach the
    sink after a successful commit and are dropped on rollback.
    """

    def __init__(self, db: Session, events: EventSink) -> None:
        self.db = db
        self.events = events
        self._outer: UnitOfWork | None = None
        self._pending: list[tuple[str, Any]] = []

    def __enter__(self) -> "UnitOfWork":
        active = self.db.info.get(_UOW_KEY)
        if active is not None:
            self._outer = active
        else:
            self.db.info[_UOW_KEY] = self
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._outer is not None:
            return False

        self.db.info.pop(_UOW_KEY, None)
        if exc_type is not None:
            self.db.rollback()
            self._pending.clear()
            return False

        try:
            self.db.commit()
        except IntegrityError as err:
            self.db.rollback()
            self._pending.clear()
            logger.info("unit_of_work.conflict", error=str(err.orig))
            raise ConflictError("A record with the same unique key already exists") from err
        except Exception:
            self.db.rollback()
            self._pending.clear()
            raise

        pending, self._pending = self._pending, []
        for name, payload in pending:
            self.events.emit(name, payload)
        return False

    def emit(self, event_name: str, payload: Any) -> None:
        """Queue an event; it is published once the outermost unit commits."""
        if self._outer is not None:
            self._outer.emit(event_name, payload)
        else:
            self._pending.append((event_name, payload))
