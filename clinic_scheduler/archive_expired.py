"""Archive availability windows that ended more than the grace period ago.

Usage:
    python -m clinic_scheduler.archive_expired
"""
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduler.core import config
from clinic_scheduler.core.civil_time import civil_now
from clinic_scheduler.database import SessionLocal
from clinic_scheduler.models import appointment, availability, clinic, consultation, user  # noqa: F401
from clinic_scheduler.services.availability_windows import archive_expired_windows

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(level=config.LOG_LEVEL)

    db = SessionLocal()
    try:
        archived = archive_expired_windows(db, civil_now())
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Archiving expired duty hours failed.")
        sys.exit(1)
    finally:
        db.close()

    print(f"Archived {archived} availability window(s).")


if __name__ == "__main__":
    main()
