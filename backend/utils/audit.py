# backend/utils/audit.py
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import Store, StoreError
from models.log import SecurityEvent, SecurityEventType

logger = logging.getLogger(__name__)


# Request metadata attached to security events
@dataclass(frozen=True)
class ClientInfo:
    ip: Optional[str] = None
    user_agent: Optional[str] = None


NO_CLIENT = ClientInfo()


def write_log(db: Session, *, account_id, event_type, success=True, client: ClientInfo = NO_CLIENT, detail=None, meta=None):
    entry = SecurityEvent(
        account_id=account_id,
        event_type=SecurityEventType(event_type).value,
        success=bool(success),
        ip_address=client.ip,
        user_agent=client.user_agent[:256] if client.user_agent else None,
        detail=detail,
        meta=meta or {},
    )
    db.add(entry)
    db.flush()
    return entry


class AccessAudit:
    """Append-only security event log.

    Recording is best-effort: a failure is logged here and never reaches the
    operation that triggered it.
    """

    def __init__(self, store: Store):
        self.store = store

    def record(self, event_type, *, account_id=None, success=True, client: ClientInfo = NO_CLIENT,
               detail=None, meta=None, db: Optional[Session] = None) -> bool:
        try:
            if db is not None:
                # Savepoint so a failed insert leaves the caller's transaction intact
                with db.begin_nested():
                    write_log(db, account_id=account_id, event_type=event_type, success=success,
                              client=client, detail=detail, meta=meta)
            else:
                with self.store.unit_of_work() as own:
                    write_log(own, account_id=account_id, event_type=event_type, success=success,
                              client=client, detail=detail, meta=meta)
            return True
        except (SQLAlchemyError, StoreError, ValueError):
            logger.exception(f"Failed to record security event {event_type} for account {account_id}")
            return False

    def recent(self, account_id: Optional[int] = None, limit: int = 100,
               event_type: Optional[str] = None) -> List[SecurityEvent]:
        def _query(db: Session):
            query = db.query(SecurityEvent)
            if account_id is not None:
                query = query.filter(SecurityEvent.account_id == account_id)
            if event_type:
                query = query.filter(SecurityEvent.event_type == event_type)
            return query.order_by(SecurityEvent.created_at.desc(), SecurityEvent.id.desc()).limit(limit).all()

        return self.store.read(_query)
