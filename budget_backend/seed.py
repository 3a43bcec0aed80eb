from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from .core.config import settings
from .core.database import SessionLocal
from .core.events import NullEventSink
from .core.logging import configure_logging, get_logger
from .models import User, UserProfile
from .services import CategoryService, UnitOfWork

logger = get_logger(__name__)


def seed() -> None:
    """Create the demo user and its system categories if missing."""
    db: Session = SessionLocal()
    try:
        with UnitOfWork(db, NullEventSink()):
            user = db.scalar(select(User).filter_by(email="demo@example.com"))
            if not user:
                user = User(email="demo@example.com", is_active=True)
                db.add(user)
                db.flush()
                db.add(UserProfile(user_id=user.id, display_name="Demo", base_currency=settings.DEFAULT_CURRENCY))
                db.flush()
            CategoryService(db, NullEventSink()).ensure_system_categories(user_id=user.id)
        logger.info("seed.done", user_id=user.id)
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging()
    seed()
