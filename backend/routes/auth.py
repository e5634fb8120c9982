# backend/routes/auth.py
from fastapi import APIRouter, Depends, Query, Request

from models.accounts import Account
from schemas.account import (
    AccountProfile, AccountSettings, AuthResponse, AvailabilityResponse, ChangePasswordRequest,
    ChangeUsernameRequest, LoginRequest, MessageResponse, PasswordCheck, PasswordResetConfirm, ProfileUpdate,
    SettingsResponse, StrengthReport,
)
from utils.errors import AccountLocked, InvalidCredentials
from utils.services import Services, client_info, get_services
from utils.tokenJWT import create_access_token, get_current_user

router = APIRouter(prefix="/auth", tags=["Auth"])


# Authenticate with username or email and issue a JWT token
@router.post("/login", response_model=AuthResponse)
def login(payload: LoginRequest, request: Request, services: Services = Depends(get_services)):
    result = services.identity.authenticate(payload.identifier, payload.password, client_info(request))

    if not result.success:
        if result.locked_until is not None:
            raise AccountLocked(result.locked_until)
        raise InvalidCredentials(result.error)

    access_token = create_access_token(data={"sub": str(result.user.id), "role": result.user.role})
    return AuthResponse(success=True, user=result.user, access_token=access_token, token_type="bearer")


# Retrieve current authenticated account with its member profile
@router.get("/me", response_model=AccountProfile)
def me(current_user: Account = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.identity.get_profile(current_user.id)


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.identity.change_password(current_user.id, payload.current_password, payload.new_password,
                                             client_info(request))


# Usernames can be changed exactly once
@router.post("/change-username", response_model=MessageResponse)
def change_username(
    payload: ChangeUsernameRequest,
    request: Request,
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.identity.change_username(current_user.id, payload.new_username, client_info(request))


@router.get("/settings", response_model=SettingsResponse)
def get_settings(current_user: Account = Depends(get_current_user), services: Services = Depends(get_services)):
    profile = services.identity.get_profile(current_user.id)
    return SettingsResponse(settings=profile.settings)


# Partial update; omitted keys keep their stored value
@router.put("/settings", response_model=SettingsResponse)
def update_settings(
    payload: AccountSettings,
    request: Request,
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    merged = services.identity.update_settings(current_user.id, payload, client_info(request))
    return SettingsResponse(settings=merged)


# Name and email; omitted fields keep their current value
@router.put("/profile", response_model=AccountProfile)
def update_profile(
    payload: ProfileUpdate,
    request: Request,
    current_user: Account = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.identity.update_profile(current_user.id, payload.name, payload.email, client_info(request))


@router.get("/check-username", response_model=AvailabilityResponse)
def check_username(username: str = Query(..., min_length=1), services: Services = Depends(get_services)):
    return AvailabilityResponse(available=services.identity.is_username_available(username))


@router.get("/check-email", response_model=AvailabilityResponse)
def check_email(email: str = Query(..., min_length=3), services: Services = Depends(get_services)):
    return AvailabilityResponse(available=services.identity.is_email_available(email))


# Score a candidate password against the policy without storing anything
@router.post("/password-strength", response_model=StrengthReport)
def password_strength(payload: PasswordCheck, services: Services = Depends(get_services)):
    return StrengthReport(**services.vault.validate_strength(payload.password).to_dict())


# Redeem an admin-issued reset token
@router.post("/password-reset/confirm", response_model=MessageResponse)
def confirm_password_reset(payload: PasswordResetConfirm, request: Request,
                           services: Services = Depends(get_services)):
    return services.identity.reset_password_with_token(payload.token, payload.new_password, client_info(request))
