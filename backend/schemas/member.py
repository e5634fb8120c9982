from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional


# Shared member profile fields; lookups are passed by name and resolved get-or-create
class MemberBase(BaseModel):
    name: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    passout_batch: Optional[str] = None
    branch: Optional[str] = None
    industry: Optional[str] = None
    company: Optional[str] = None
    # None leaves the stored skills untouched on update
    skills: Optional[List[str]] = None
    photo: Optional[str] = None
    membership_id: Optional[str] = None
    membership_type: Optional[str] = "Member"


class MemberCreate(MemberBase):
    create_account: bool = True


class MemberUpdate(MemberBase):
    pass


class MemberOut(MemberBase):
    id: int
    skills: List[str] = Field(default_factory=list)
    account_id: Optional[int] = None


class MemberCreated(BaseModel):
    success: bool = True
    member_id: int
    account_created: bool = False
    account_id: Optional[int] = None
    username: Optional[str] = None
    temporary_password: Optional[str] = None
