# backend/utils/authz.py
import logging

from database import Store
from models.accounts import Account
from models.log import SecurityEventType
from utils.audit import AccessAudit, ClientInfo, NO_CLIENT
from utils.errors import Unauthorized

logger = logging.getLogger(__name__)


def require_admin(store: Store, audit: AccessAudit, admin_id, action: str, client: ClientInfo = NO_CLIENT) -> Account:
    """Single authorization gate for admin-only operations.

    Runs before the operation opens its write transaction, so a rejected
    caller never reaches a mutating step. Rejections are logged as
    ``unauthorized`` security events.
    """
    admin = store.read(lambda db: db.query(Account).filter(Account.id == admin_id).first()) if admin_id else None
    if admin is None or not admin.is_admin:
        logger.warning(f"Rejected {action} by account {admin_id}: admin role required")
        audit.record(SecurityEventType.UNAUTHORIZED, account_id=admin.id if admin else None, success=False,
                     client=client, detail=f"Admin role required for {action}",
                     meta={"action": action, "caller_id": admin_id})
        raise Unauthorized(f"Insufficient privileges for {action}")
    return admin
