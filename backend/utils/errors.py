"""Typed failures raised by the identity and consistency core.

Every error carries a stable ``code`` and the HTTP status the API maps it to,
so routes never inspect message text.
"""
from datetime import datetime
from typing import List, Optional


class IdentityError(Exception):
    code = "IDENTITY_ERROR"
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code}


class NotFound(IdentityError):
    code = "NOT_FOUND"
    http_status = 404


class InvalidCredentials(IdentityError):
    code = "INVALID_CREDENTIALS"
    http_status = 401

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class AccountLocked(IdentityError):
    code = "ACCOUNT_LOCKED"
    http_status = 423

    def __init__(self, locked_until: datetime):
        super().__init__("Account is temporarily locked. Please try again later.")
        self.locked_until = locked_until

    def to_response(self) -> dict:
        payload = super().to_response()
        payload["lockedUntil"] = self.locked_until.isoformat()
        return payload


class WeakPassword(IdentityError):
    code = "WEAK_PASSWORD"

    def __init__(self, unmet: List[str]):
        super().__init__("Password does not meet security requirements: " + ", ".join(unmet))
        self.unmet = list(unmet)

    def to_response(self) -> dict:
        payload = super().to_response()
        payload["unmetRequirements"] = self.unmet
        return payload


class InvalidUsername(IdentityError):
    code = "INVALID_USERNAME"


class UsernameTaken(IdentityError):
    code = "USERNAME_TAKEN"
    http_status = 409

    def __init__(self, message: str = "Username is already taken"):
        super().__init__(message)


class EmailTaken(IdentityError):
    code = "EMAIL_TAKEN"
    http_status = 409

    def __init__(self, message: str = "Email address is already in use"):
        super().__init__(message)


class UsernameAlreadyChanged(IdentityError):
    code = "USERNAME_ALREADY_CHANGED"
    http_status = 409

    def __init__(self, message: str = "Username can only be changed once"):
        super().__init__(message)


class Unauthorized(IdentityError):
    code = "UNAUTHORIZED"
    http_status = 403

    def __init__(self, message: str = "Admin access required"):
        super().__init__(message)


class CannotDeleteSelf(IdentityError):
    code = "CANNOT_DELETE_SELF"

    def __init__(self, message: str = "You cannot delete your own account"):
        super().__init__(message)


class InvalidResetToken(IdentityError):
    code = "INVALID_RESET_TOKEN"

    def __init__(self, message: str = "Reset token is invalid or has expired"):
        super().__init__(message)


class MemberHasAccount(IdentityError):
    code = "MEMBER_HAS_ACCOUNT"
    http_status = 409

    def __init__(self, account_id: int, username: str):
        super().__init__("Cannot delete member with associated account. Use the account cascade delete instead.")
        self.account_id = account_id
        self.username = username

    def to_response(self) -> dict:
        payload = super().to_response()
        payload.update({"hasAccount": True, "accountId": self.account_id, "username": self.username})
        return payload


class MemberAlreadyLinked(IdentityError):
    code = "MEMBER_ALREADY_LINKED"
    http_status = 409

    def __init__(self, member_id: int, account_id: Optional[int]):
        super().__init__(f"Member {member_id} is already linked to account {account_id}")
        self.member_id = member_id
        self.account_id = account_id
