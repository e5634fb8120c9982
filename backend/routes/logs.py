# backend/routes/logs.py
from fastapi import APIRouter, Depends, Query, Request
from typing import List, Optional, Any
from datetime import datetime
from pydantic import BaseModel

from models.accounts import Account
from models.log import SecurityEvent
from utils.authz import require_admin
from utils.services import Services, client_info, get_services
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/logs", tags=["Logs"])


class LogResponse(BaseModel):
    id: int
    account_id: Optional[int] = None
    event_type: str
    success: bool
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    detail: Optional[str] = None
    created_at: Optional[datetime] = None
    meta: Optional[Any] = None

    class Config:
        from_attributes = True


class LogPage(BaseModel):
    items: List[LogResponse]
    total: int
    page: int
    page_size: int


def _parse_day(value: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    if not value:
        return None
    # A bare date on the upper bound covers the whole day
    if end_of_day and len(value) == 10:
        value += " 23:59:59"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@router.get("", response_model=LogPage)
def get_logs(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    event_type: Optional[str] = Query(None, description="Filter by event type"),
    account_id: Optional[int] = Query(None, description="Filter by account ID"),
    success: Optional[bool] = Query(None, description="Filter by outcome"),
    date_from: Optional[str] = Query(None, description="From date (YYYY-MM-DD)"),
    date_to: Optional[str] = Query(None, description="To date (YYYY-MM-DD)"),
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    require_admin(services.store, services.audit, current_user.id, "security log access", client_info(request))

    dt_from = _parse_day(date_from)
    dt_to = _parse_day(date_to, end_of_day=True)

    def _query(db):
        query = db.query(SecurityEvent)

        if event_type:
            query = query.filter(SecurityEvent.event_type == event_type)
        if account_id is not None:
            query = query.filter(SecurityEvent.account_id == account_id)
        if success is not None:
            query = query.filter(SecurityEvent.success == success)
        if dt_from:
            query = query.filter(SecurityEvent.created_at >= dt_from)
        if dt_to:
            query = query.filter(SecurityEvent.created_at <= dt_to)

        # Newest first
        query = query.order_by(SecurityEvent.created_at.desc(), SecurityEvent.id.desc())

        total = query.count()
        items = query.offset((page - 1) * page_size).limit(page_size).all()
        return total, [LogResponse.model_validate(item) for item in items]

    total, items = services.store.read(_query)
    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
    }


# Security events for a single account, most recent first
@router.get("/accounts/{target_id}", response_model=List[LogResponse])
def get_account_logs(
    target_id: int,
    limit: int = Query(100, ge=1, le=500),
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.identity.security_log(current_user.id, target_id, limit)
