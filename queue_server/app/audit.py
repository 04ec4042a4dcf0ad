# queue_server/app/audit.py
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import AuditLog

logger = logging.getLogger(__name__)


def record(db: Session, entity_id: int, action: str, user: str = "system",
           details: str = "", entity: str = "token") -> None:
    """Best-effort audit row. Call after the main change is committed."""
    try:
        db.add(AuditLog(entity=entity, entity_id=entity_id, action=action,
                        user=user, details=details))
        db.commit()
    except SQLAlchemyError:
        db.rollback()  # don't fail the operation if audit fails
        logger.warning("audit write failed for %s %s (%s)", entity, entity_id, action,
                       exc_info=True)
