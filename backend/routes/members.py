# backend/routes/members.py
from fastapi import APIRouter, Depends, Request
from typing import List

from models.accounts import Account
from schemas.consistency import LinkageCheck, MemberDeleteResult
from schemas.member import MemberCreate, MemberCreated, MemberOut, MemberUpdate
from utils.services import Services, client_info, get_services
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/members", tags=["Members"])


@router.get("", response_model=List[MemberOut])
def list_members(current_user: Account = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.members.list_members()


@router.get("/{member_id}", response_model=MemberOut)
def get_member(member_id: int, current_user: Account = Depends(get_current_user),
               services: Services = Depends(get_services)):
    return services.members.get_member(member_id)


# Register a member; by default an account with generated credentials is created alongside (Admin only)
@router.post("", response_model=MemberCreated, status_code=201)
def create_member(
    payload: MemberCreate,
    request: Request,
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.members.create_member(payload, created_by_admin_id=current_user.id, client=client_info(request))


@router.put("/{member_id}", response_model=MemberOut)
def update_member(
    member_id: int,
    payload: MemberUpdate,
    request: Request,
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.members.update_member(member_id, payload, current_user.id, client_info(request))


# Only members without an account; linked members go through the account cascade delete
@router.delete("/{member_id}", response_model=MemberDeleteResult)
def delete_member(
    member_id: int,
    request: Request,
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.members.delete_member(member_id, current_user.id, client_info(request))


@router.get("/{member_id}/linkage/{account_id}", response_model=LinkageCheck)
def check_linkage(member_id: int, account_id: int, current_user: Account = Depends(get_current_user),
                  services: Services = Depends(get_services)):
    return services.engine.validate_linkage(member_id, account_id)
