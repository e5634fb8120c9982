from datetime import datetime
from pydantic import BaseModel, EmailStr, Field
from typing import Any, Dict, List, Literal, Optional


# Per-account preferences; every field is optional so the same model doubles as a sparse patch
class AccountSettings(BaseModel):
    theme: Optional[Literal["light", "dark", "auto"]] = None
    profile_visibility: Optional[Literal["public", "members", "private"]] = Field(None, alias="profileVisibility")
    email_notifications: Optional[bool] = Field(None, alias="emailNotifications")
    language: Optional[str] = Field(None, min_length=2, max_length=10)

    class Config:
        populate_by_name = True

    @classmethod
    def from_blob(cls, blob: Optional[Dict[str, Any]]) -> "AccountSettings":
        if not isinstance(blob, dict):
            return cls()
        known = {k: v for k, v in blob.items() if k in ("theme", "profileVisibility", "emailNotifications", "language")}
        return cls.model_validate(known)

    def to_blob(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def merged(self, patch: "AccountSettings") -> "AccountSettings":
        # Keys absent from the patch keep their current value
        changes = patch.model_dump(exclude_none=True)
        return self.model_copy(update=changes)

    def with_defaults(self) -> "AccountSettings":
        return AccountSettings(
            theme=self.theme or "light",
            profile_visibility=self.profile_visibility or "public",
            email_notifications=self.email_notifications is not False,
            language=self.language or "en",
        )


# Schema for login requests; the identifier is a username or an email
class LoginRequest(BaseModel):
    identifier: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


# Public profile returned after a successful login
class AccountProfile(BaseModel):
    id: int
    username: str
    name: str
    email: Optional[str] = None
    role: str
    member_id: Optional[int] = None
    first_login: bool
    phone: Optional[str] = None
    address: Optional[str] = None
    passout_batch: Optional[str] = None
    branch: Optional[str] = None
    industry: Optional[str] = None
    company: Optional[str] = None
    membership_id: Optional[str] = None
    membership_type: Optional[str] = None
    photo: Optional[str] = None
    settings: AccountSettings


class AuthResponse(BaseModel):
    success: bool
    user: Optional[AccountProfile] = None
    error: Optional[str] = None
    lockedUntil: Optional[datetime] = None
    access_token: Optional[str] = None
    token_type: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: Optional[str] = None
    new_password: str


class ChangeUsernameRequest(BaseModel):
    new_username: str


# Omitted fields keep their current value
class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None


class AdminResetRequest(BaseModel):
    new_password: Optional[str] = None


class AdminResetResponse(BaseModel):
    success: bool = True
    temporaryPassword: str
    message: str


# Schema for admin-created accounts; a password is generated when omitted
class AccountCreate(BaseModel):
    username: str
    name: str
    email: Optional[EmailStr] = None
    role: Literal["admin", "member"] = "member"
    password: Optional[str] = None
    member_id: Optional[int] = None


class AccountCreated(BaseModel):
    success: bool = True
    account_id: int
    username: str
    temporary_password: Optional[str] = None
    system_generated: bool
    message: str = "Account created successfully"


# Output schema for the admin account list
class AccountResponse(BaseModel):
    id: int
    username: str
    name: str
    email: Optional[str] = None
    role: str
    first_login: bool
    username_changed: bool
    failed_attempts: int
    is_locked: bool = False
    system_generated: bool = False
    member_id: Optional[int] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class SettingsResponse(BaseModel):
    success: bool = True
    settings: AccountSettings


class AvailabilityResponse(BaseModel):
    available: bool


# Issued to an admin, who hands the token to the account owner out of band
class PasswordResetIssued(BaseModel):
    success: bool = True
    token: str
    expires_at: datetime
    message: str = "Reset token issued"


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str


class PasswordCheck(BaseModel):
    password: str


class StrengthReport(BaseModel):
    valid: bool
    score: int
    requirements: Dict[str, bool]
    unmetRequirements: List[str]
    strength: str
