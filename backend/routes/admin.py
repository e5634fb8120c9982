# backend/routes/admin.py
from fastapi import APIRouter, Depends, Query, Request
from typing import List, Literal, Optional
from pydantic import BaseModel

from models.accounts import Account
from schemas.account import (
    AccountCreate, AccountCreated, AccountResponse, AdminResetRequest, AdminResetResponse, PasswordResetIssued,
)
from schemas.consistency import CascadeDeleteResult
from utils.services import Services, client_info, get_services
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/admin", tags=["Admin"])

# Admin checks live in the service layer, so every rejection is audited the same way


# Schema for paginated account list response
class PaginatedAccountsResponse(BaseModel):
    items: List[AccountResponse]
    total: int
    page: int
    page_size: int


# Retrieve accounts with filtering, sorting, and pagination (Admin only)
@router.get("/accounts", response_model=PaginatedAccountsResponse)
def get_all_accounts(
    q: Optional[str] = Query(None, description="Search by username, name or email"),
    role: Optional[str] = Query(None, description="Filter by role"),
    locked: Optional[bool] = Query(None, description="Only locked / unlocked accounts"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    sort_by: Literal["id", "username", "name", "role", "created_at"] = "id",
    order: Literal["asc", "desc"] = "asc",
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    items, total = services.identity.search_accounts(
        current_user.id, q=q, role=role, locked=locked, sort_by=sort_by, order=order,
        page=page, page_size=page_size,
    )
    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
    }


# Create an account; a temporary password is generated when none is given
@router.post("/accounts", response_model=AccountCreated, status_code=201)
def create_account(
    payload: AccountCreate,
    request: Request,
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.identity.create_account(payload, created_by_admin_id=current_user.id, client=client_info(request))


# Reset another account's password and force a change on next login
@router.post("/accounts/{account_id}/reset-password", response_model=AdminResetResponse)
def reset_password(
    account_id: int,
    payload: AdminResetRequest,
    request: Request,
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.identity.admin_reset_password(current_user.id, account_id, payload.new_password,
                                                  client_info(request))


# Issue a single-use reset token for the account owner
@router.post("/accounts/{account_id}/reset-token", response_model=PasswordResetIssued)
def issue_reset_token(
    account_id: int,
    request: Request,
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.identity.issue_reset_token(current_user.id, account_id, client_info(request))


# Delete an account together with its member, skills and orphaned lookups (Admin only)
@router.delete("/accounts/{account_id}", response_model=CascadeDeleteResult)
def delete_account(
    account_id: int,
    request: Request,
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.identity.delete_account_with_cascade(account_id, current_user.id, client_info(request))
