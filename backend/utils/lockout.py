# backend/utils/lockout.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from database import Store
from models.accounts import Account
from models.log import SecurityEventType
from utils.audit import AccessAudit, ClientInfo, NO_CLIENT
from utils.errors import NotFound

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    # Naive UTC, matching what the DateTime columns store
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SecuritySessionGuard:
    """Failed-attempt counting and time-boxed lockout.

    Unlocked -> (max_attempts consecutive failures) -> Locked(until) -> (time passes) -> Unlocked.
    Expiry is lazy: a lockout timestamp in the past simply reads as unlocked.
    The next failure after an expired lockout counts from zero again.
    """

    def __init__(self, store: Store, audit: AccessAudit, max_attempts: int = 5, lockout_minutes: int = 15,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.audit = audit
        self.max_attempts = max_attempts
        self.lockout_duration = timedelta(minutes=lockout_minutes)
        self.clock = clock

    def is_locked(self, account: Account) -> bool:
        return account.locked_until is not None and account.locked_until > self.clock()

    def _load_for_update(self, db: Session, account_id: int) -> Account:
        # Re-read inside the caller's transaction so concurrent attempts never lose an update
        account = (
            db.query(Account)
            .filter(Account.id == account_id)
            .populate_existing()
            .with_for_update(of=Account)
            .first()
        )
        if account is None:
            raise NotFound(f"Account {account_id} not found")
        return account

    def record_failure(self, account_id: int, client: ClientInfo = NO_CLIENT, db: Optional[Session] = None) -> Account:
        if db is None:
            with self.store.unit_of_work() as own:
                return self.record_failure(account_id, client, db=own)

        account = self._load_for_update(db, account_id)
        if self.is_locked(account):
            # Another attempt locked it first; this one does not count
            self.audit.record(SecurityEventType.FAILED_LOGIN, account_id=account.id, success=False,
                              client=client, detail="Account locked", db=db)
            return account
        if account.locked_until is not None:
            # An expired lockout starts a fresh count
            self.clear(account)

        account.failed_attempts = (account.failed_attempts or 0) + 1
        self.audit.record(SecurityEventType.FAILED_LOGIN, account_id=account.id, success=False,
                          client=client, detail="Invalid password",
                          meta={"failed_attempts": account.failed_attempts}, db=db)

        if account.failed_attempts >= self.max_attempts:
            account.locked_until = self.clock() + self.lockout_duration
            logger.warning(f"Account {account.id} locked until {account.locked_until.isoformat()}")
            self.audit.record(SecurityEventType.ACCOUNT_LOCKED, account_id=account.id, success=False,
                              client=client, detail=f"Locked after {account.failed_attempts} failed attempts",
                              meta={"locked_until": account.locked_until.isoformat()}, db=db)
        db.flush()
        return account

    def record_success(self, account_id: int, client: ClientInfo = NO_CLIENT, db: Optional[Session] = None) -> Account:
        if db is None:
            with self.store.unit_of_work() as own:
                return self.record_success(account_id, client, db=own)

        account = self._load_for_update(db, account_id)
        account.failed_attempts = 0
        account.locked_until = None
        account.last_login = self.clock()
        self.audit.record(SecurityEventType.LOGIN, account_id=account.id, success=True,
                          client=client, detail="Successful login", db=db)
        db.flush()
        return account

    def clear(self, account: Account) -> None:
        account.failed_attempts = 0
        account.locked_until = None
