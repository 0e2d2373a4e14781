import json

from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.audit_log import AuditLog
from utils.log import get_logger
from utils.request_context import client_ip, user_agent

logger = get_logger(__name__)


def log_event(action: str, user_id=None, entity=None, entity_id=None, metadata=None):
    row = AuditLog(
        user_id=user_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=client_ip(),
        user_agent=user_agent() or None,
        metadata_json=json.dumps(metadata, default=str) if metadata else None
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        # the trail must never turn a handled request into a 500
        db.session.rollback()
        logger.exception("audit_write_failed", action=action, user_id=user_id)
