# backend/utils/identity.py
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple, Union

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from database import DuplicateKeyError, Store
from models.accounts import Account, Role
from models.log import SecurityEvent, SecurityEventType
from models.member import Member
from models.reset_token import PasswordResetToken
from schemas.account import (
    AccountCreate, AccountCreated, AccountProfile, AccountResponse, AccountSettings,
    AdminResetResponse, MessageResponse, PasswordResetIssued,
)
from schemas.consistency import CascadeDeleteResult
from utils.audit import AccessAudit, ClientInfo, NO_CLIENT
from utils.authz import require_admin
from utils.consistency import ConsistencyEngine
from utils.errors import (
    EmailTaken, InvalidCredentials, InvalidResetToken, InvalidUsername, NotFound,
    UsernameAlreadyChanged, UsernameTaken, WeakPassword,
)
from utils.hashing import CredentialVault
from utils.lockout import SecuritySessionGuard, utcnow
from utils.usernames import generate_username, is_valid_username

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
ACCOUNT_LOCKED = "Account is temporarily locked. Please try again later."
USERNAME_RULES = "Username must be 3-20 characters long and contain only letters, numbers, and underscores"


# Outcome of a login attempt; failures are values, not exceptions, so the lockout time can travel with them
@dataclass
class AuthResult:
    success: bool
    user: Optional[AccountProfile] = None
    error: Optional[str] = None
    code: Optional[str] = None
    locked_until: Optional[datetime] = None

    @classmethod
    def invalid(cls) -> "AuthResult":
        return cls(success=False, error=INVALID_CREDENTIALS, code=InvalidCredentials.code)

    @classmethod
    def locked(cls, until: datetime) -> "AuthResult":
        return cls(success=False, error=ACCOUNT_LOCKED, code="ACCOUNT_LOCKED", locked_until=until)


# Freshly generated password with its hash, computed before any write lock is taken
@dataclass(frozen=True)
class Credentials:
    password: str
    password_hash: str
    salt: str
    system_generated: bool


class IdentityManager:
    """Authentication and credential lifecycle for accounts.

    Composes the credential vault, the lockout guard and the audit log. Every
    write runs inside one store unit of work; bcrypt work happens before the
    unit of work opens so it never holds the write lock.
    """

    def __init__(self, store: Store, vault: CredentialVault, guard: SecuritySessionGuard, audit: AccessAudit,
                 engine: ConsistencyEngine, reset_token_hours: int = 24, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.vault = vault
        self.guard = guard
        self.audit = audit
        self.engine = engine
        self.reset_token_ttl = timedelta(hours=reset_token_hours)
        self.clock = clock
        self._dummy_hash: Optional[str] = None

    # ----- helpers -----

    def _get(self, db: Session, account_id: int, for_update: bool = False) -> Account:
        query = db.query(Account).filter(Account.id == account_id)
        if for_update:
            query = query.populate_existing().with_for_update(of=Account)
        account = query.first()
        if account is None:
            raise NotFound("Account not found")
        return account

    def _load(self, account_id: int) -> Account:
        return self.store.read(lambda db: self._get(db, account_id))

    def _require_strong(self, password: str) -> None:
        strength = self.vault.validate_strength(password)
        if not strength.valid:
            raise WeakPassword(strength.unmet)

    def issue_credentials(self, password: Optional[str] = None, length: int = 12) -> Credentials:
        system_generated = password is None
        if system_generated:
            password = self.vault.generate_secure_password(length)
        self._require_strong(password)
        password_hash, salt = self.vault.hash(password)
        return Credentials(password=password, password_hash=password_hash, salt=salt,
                           system_generated=system_generated)

    def _burn_verify(self, password: str) -> None:
        # Unknown identifiers still cost one bcrypt check
        if self._dummy_hash is None:
            self._dummy_hash = self.vault.hash(self.vault.generate_secure_password())[0]
        self.vault.verify(password, self._dummy_hash)

    def _profile(self, db: Session, account: Account) -> AccountProfile:
        member = db.query(Member).filter(Member.id == account.member_id).first() if account.member_id else None
        settings = AccountSettings.from_blob(account.settings_json).with_defaults()
        profile = AccountProfile(
            id=account.id,
            username=account.username,
            name=account.name,
            email=account.email,
            role=account.role,
            member_id=account.member_id,
            first_login=bool(account.first_login),
            settings=settings,
        )
        if member is not None:
            # Member data wins over stale copies on the account
            profile.email = member.email or account.email
            profile.phone = member.phone
            profile.address = member.address
            profile.passout_batch = member.passout_batch
            profile.branch = member.branch.name if member.branch else None
            profile.industry = member.industry.name if member.industry else None
            profile.company = member.company.name if member.company else None
            profile.membership_id = member.membership_id
            profile.membership_type = member.membership_type
            profile.photo = member.photo
        return profile

    # ----- authentication -----

    def authenticate(self, identifier: str, password: str, client: ClientInfo = NO_CLIENT) -> AuthResult:
        identifier = (identifier or "").strip()
        account = self.store.read(
            lambda db: db.query(Account)
            .filter(or_(Account.username == identifier, func.lower(Account.email) == identifier.lower()))
            .first()
        )

        if account is None:
            self._burn_verify(password)
            self.audit.record(SecurityEventType.FAILED_LOGIN, account_id=None, success=False, client=client,
                              detail="Unknown identifier", meta={"identifier": identifier})
            return AuthResult.invalid()

        # A locked account does not consume another attempt
        if self.guard.is_locked(account):
            self.audit.record(SecurityEventType.FAILED_LOGIN, account_id=account.id, success=False,
                              client=client, detail="Account locked")
            return AuthResult.locked(account.locked_until)

        password_ok = self.vault.verify(password, account.password_hash)

        with self.store.unit_of_work() as db:
            if not password_ok:
                locked_before = self.guard.is_locked(self._get(db, account.id, for_update=True))
                current = self.guard.record_failure(account.id, client, db=db)
                if locked_before:
                    return AuthResult.locked(current.locked_until)
                return AuthResult.invalid()

            # Re-check inside the transaction: a concurrent failure may have just locked it
            current = self._get(db, account.id, for_update=True)
            if self.guard.is_locked(current):
                self.audit.record(SecurityEventType.FAILED_LOGIN, account_id=current.id, success=False,
                                  client=client, detail="Account locked", db=db)
                return AuthResult.locked(current.locked_until)

            current = self.guard.record_success(account.id, client, db=db)
            profile = self._profile(db, current)

        logger.info(f"Account {account.id} logged in")
        return AuthResult(success=True, user=profile)

    def get_profile(self, account_id: int) -> AccountProfile:
        return self.store.read(lambda db: self._profile(db, self._get(db, account_id)))

    # ----- credential changes -----

    def change_password(self, account_id: int, current_password: Optional[str], new_password: str,
                        client: ClientInfo = NO_CLIENT) -> MessageResponse:
        account = self._load(account_id)

        # The forced first-login change is the only one that skips the current password
        if not account.first_login:
            if not self.vault.verify(current_password or "", account.password_hash):
                self.audit.record(SecurityEventType.PASSWORD_CHANGE, account_id=account.id, success=False,
                                  client=client, detail="Current password is incorrect")
                raise InvalidCredentials("Current password is incorrect")

        strength = self.vault.validate_strength(new_password)
        if not strength.valid:
            self.audit.record(SecurityEventType.PASSWORD_CHANGE, account_id=account.id, success=False,
                              client=client, detail="Rejected: password does not meet requirements")
            raise WeakPassword(strength.unmet)

        password_hash, salt = self.vault.hash(new_password)

        with self.store.unit_of_work() as db:
            account = self._get(db, account_id, for_update=True)
            account.password_hash = password_hash
            account.salt = salt
            account.first_login = False
            account.system_generated = False
            account.password_last_changed = self.clock()
            self.audit.record(SecurityEventType.PASSWORD_CHANGE, account_id=account.id, success=True,
                              client=client, detail="Password changed successfully", db=db)

        return MessageResponse(message="Password changed successfully")

    def change_username(self, account_id: int, new_username: str, client: ClientInfo = NO_CLIENT) -> MessageResponse:
        new_username = (new_username or "").strip()
        try:
            with self.store.unit_of_work() as db:
                account = self._get(db, account_id, for_update=True)

                # One change per account, whatever the requested value
                if account.username_changed:
                    raise UsernameAlreadyChanged()
                if not is_valid_username(new_username):
                    raise InvalidUsername(USERNAME_RULES)
                taken = (
                    db.query(Account.id)
                    .filter(Account.username == new_username, Account.id != account.id)
                    .first()
                )
                if taken:
                    raise UsernameTaken()

                old_username = account.username
                account.username = new_username
                account.username_changed = True
                db.flush()
                self.audit.record(SecurityEventType.USERNAME_CHANGE, account_id=account.id, success=True,
                                  client=client, detail=f"Username changed to {new_username}",
                                  meta={"from": old_username, "to": new_username}, db=db)
        except DuplicateKeyError as exc:
            raise UsernameTaken() from exc

        return MessageResponse(message="Username changed successfully")

    def update_settings(self, account_id: int, partial: Union[AccountSettings, dict],
                        client: ClientInfo = NO_CLIENT) -> AccountSettings:
        patch = partial if isinstance(partial, AccountSettings) else AccountSettings.model_validate(partial)
        with self.store.unit_of_work() as db:
            account = self._get(db, account_id, for_update=True)
            merged = AccountSettings.from_blob(account.settings_json).merged(patch)
            account.settings_json = merged.to_blob()
            self.audit.record(SecurityEventType.SETTINGS_UPDATE, account_id=account.id, success=True,
                              client=client, detail="Settings updated",
                              meta={"changed": sorted(patch.model_dump(by_alias=True, exclude_none=True))}, db=db)
        return merged

    def update_profile(self, account_id: int, name: Optional[str] = None, email: Optional[str] = None,
                       client: ClientInfo = NO_CLIENT) -> AccountProfile:
        """Self-service name and email change.

        Omitted fields keep their value. The linked member, when there is one,
        gets the same name and email so the profile reads back consistently.
        """
        name = (name or "").strip() or None
        email = (email or "").strip() or None
        try:
            with self.store.unit_of_work() as db:
                account = self._get(db, account_id, for_update=True)
                if email is not None:
                    taken = (
                        db.query(Account.id)
                        .filter(func.lower(Account.email) == email.lower(), Account.id != account.id)
                        .first()
                    )
                    if taken:
                        raise EmailTaken()

                changed = {}
                if name is not None and name != account.name:
                    changed["name"] = {"from": account.name, "to": name}
                    account.name = name
                if email is not None and email != account.email:
                    changed["email"] = {"from": account.email, "to": email}
                    account.email = email

                if account.member_id is not None:
                    member = db.query(Member).filter(Member.id == account.member_id).first()
                    if member is not None:
                        member.name = account.name
                        if email is not None:
                            member.email = email
                db.flush()

                self.audit.record(SecurityEventType.PROFILE_UPDATE, account_id=account.id, success=True,
                                  client=client, detail="Profile updated", meta={"changed": changed}, db=db)
                profile = self._profile(db, account)
        except DuplicateKeyError as exc:
            raise EmailTaken() from exc

        return profile

    def admin_reset_password(self, admin_id: int, target_id: int, new_password: Optional[str] = None,
                             client: ClientInfo = NO_CLIENT) -> AdminResetResponse:
        require_admin(self.store, self.audit, admin_id, "password reset", client)
        self._load(target_id)
        credentials = self.issue_credentials(new_password)

        with self.store.unit_of_work() as db:
            target = self._get(db, target_id, for_update=True)
            target.password_hash = credentials.password_hash
            target.salt = credentials.salt
            target.first_login = True
            target.system_generated = credentials.system_generated
            target.password_last_changed = self.clock()
            self.guard.clear(target)
            self.audit.record(SecurityEventType.PASSWORD_RESET, account_id=target.id, success=True, client=client,
                              detail=f"Password reset by admin ID: {admin_id}", meta={"admin_id": admin_id}, db=db)

        return AdminResetResponse(
            temporaryPassword=credentials.password,
            message="Password reset successfully. User must change password on next login.",
        )

    # ----- account creation -----

    def _insert_account(self, db: Session, *, username: str, name: str, email: Optional[str], role: str,
                        credentials: Credentials, member_id: Optional[int]) -> Account:
        if db.query(Account.id).filter(Account.username == username).first():
            raise UsernameTaken()
        if email and db.query(Account.id).filter(func.lower(Account.email) == email.lower()).first():
            raise EmailTaken()

        account = Account(
            username=username,
            name=name,
            email=email or None,
            role=Role(role).value,
            password_hash=credentials.password_hash,
            salt=credentials.salt,
            system_generated=credentials.system_generated,
            first_login=True,
            username_changed=False,
            failed_attempts=0,
        )
        db.add(account)
        db.flush()
        if member_id is not None:
            self.engine.link_member(db, account, member_id)
            db.flush()
        return account

    def create_account(self, data: Union[AccountCreate, dict], created_by_admin_id: Optional[int] = None,
                       client: ClientInfo = NO_CLIENT) -> AccountCreated:
        if not isinstance(data, AccountCreate):
            data = AccountCreate.model_validate(data)
        if created_by_admin_id is not None:
            require_admin(self.store, self.audit, created_by_admin_id, "account creation", client)
        if not is_valid_username(data.username):
            raise InvalidUsername(USERNAME_RULES)

        credentials = self.issue_credentials(data.password)
        try:
            with self.store.unit_of_work() as db:
                account = self._insert_account(db, username=data.username, name=data.name, email=data.email,
                                               role=data.role, credentials=credentials, member_id=data.member_id)
                detail = (f"Account created by admin ID: {created_by_admin_id}" if created_by_admin_id
                          else "Account created")
                self.audit.record(SecurityEventType.ACCOUNT_CREATED, account_id=account.id, success=True,
                                  client=client, detail=detail, meta={"created_by": created_by_admin_id}, db=db)
                account_id, username = account.id, account.username
        except DuplicateKeyError as exc:
            raise UsernameTaken("Username or email is already in use") from exc

        logger.info(f"Created account {username} (ID {account_id})")
        return AccountCreated(
            account_id=account_id,
            username=username,
            temporary_password=credentials.password if credentials.system_generated else None,
            system_generated=credentials.system_generated,
        )

    def create_account_from_member(self, member_id: int, name: str, email: Optional[str] = None,
                                   db: Optional[Session] = None, credentials: Optional[Credentials] = None,
                                   created_by_admin_id: Optional[int] = None) -> AccountCreated:
        """Provision a member account with a generated username and password.

        Pass ``db`` to join an open unit of work (the member registry does this
        so member and account commit together), and pre-computed
        ``credentials`` to keep hashing out of that transaction.
        """
        if credentials is None:
            credentials = self.issue_credentials(length=10)
        if db is None:
            with self.store.unit_of_work() as own:
                return self.create_account_from_member(member_id, name, email, db=own, credentials=credentials,
                                                       created_by_admin_id=created_by_admin_id)

        existing = [row.username for row in db.query(Account.username).all()]
        try:
            username = generate_username(name, existing)
        except ValueError as exc:
            raise InvalidUsername(str(exc)) from exc

        account = self._insert_account(db, username=username, name=name, email=email, role=Role.MEMBER.value,
                                       credentials=credentials, member_id=member_id)
        self.audit.record(SecurityEventType.ACCOUNT_CREATED, account_id=account.id, success=True,
                          detail=f"Account provisioned for member ID: {member_id}",
                          meta={"member_id": member_id, "created_by": created_by_admin_id}, db=db)
        return AccountCreated(
            account_id=account.id,
            username=username,
            temporary_password=credentials.password,
            system_generated=credentials.system_generated,
        )

    def ensure_default_admin(self, username: str = "admin", email: Optional[str] = None) -> Optional[AccountCreated]:
        has_admin = self.store.read(
            lambda db: db.query(Account.id).filter(Account.role == Role.ADMIN.value).first() is not None
        )
        if has_admin:
            return None
        result = self.create_account(
            AccountCreate(username=username, name="System Administrator", email=email, role=Role.ADMIN.value)
        )
        logger.warning(
            f"Default admin '{result.username}' created; temporary password: {result.temporary_password} "
            "(change it on first login)"
        )
        return result

    # ----- availability -----

    def is_username_available(self, username: str, exclude_id: Optional[int] = None) -> bool:
        def _query(db: Session) -> bool:
            query = db.query(Account.id).filter(Account.username == username)
            if exclude_id is not None:
                query = query.filter(Account.id != exclude_id)
            return query.first() is None

        return self.store.read(_query)

    def is_email_available(self, email: str, exclude_id: Optional[int] = None) -> bool:
        def _query(db: Session) -> bool:
            query = db.query(Account.id).filter(func.lower(Account.email) == (email or "").lower())
            if exclude_id is not None:
                query = query.filter(Account.id != exclude_id)
            return query.first() is None

        return self.store.read(_query)

    # ----- admin views -----

    def search_accounts(self, admin_id: int, q: Optional[str] = None, role: Optional[str] = None,
                        locked: Optional[bool] = None, sort_by: str = "id", order: str = "asc",
                        page: int = 1, page_size: Optional[int] = None) -> Tuple[List[AccountResponse], int]:
        """Filtered, sorted page of accounts plus the total match count."""
        require_admin(self.store, self.audit, admin_id, "account listing")
        sort_columns = {
            "id": Account.id,
            "username": Account.username,
            "name": Account.name,
            "role": Account.role,
            "created_at": Account.created_at,
        }
        column = sort_columns.get(sort_by, Account.id)

        def _query(db: Session) -> Tuple[List[AccountResponse], int]:
            query = db.query(Account)

            # Free text over username, name and email
            if q:
                like = f"%{q.lower()}%"
                query = query.filter(or_(Account.username.ilike(like), Account.name.ilike(like),
                                         Account.email.ilike(like)))
            if role:
                query = query.filter(Account.role.ilike(role))
            if locked is not None:
                now = self.clock()
                if locked:
                    query = query.filter(Account.locked_until > now)
                else:
                    query = query.filter(or_(Account.locked_until.is_(None), Account.locked_until <= now))

            total = query.count()
            # id breaks ties so pages never overlap
            query = query.order_by(*(c.asc() if order == "asc" else c.desc() for c in (column, Account.id)))
            if page_size is not None:
                query = query.offset((page - 1) * page_size).limit(page_size)

            items = []
            for account in query.all():
                item = AccountResponse.model_validate(account)
                item.is_locked = self.guard.is_locked(account)
                items.append(item)
            return items, total

        return self.store.read(_query)

    def list_accounts(self, admin_id: int) -> List[AccountResponse]:
        return self.search_accounts(admin_id, sort_by="created_at", order="desc")[0]

    def security_log(self, admin_id: int, target_id: Optional[int] = None, limit: int = 100) -> List[SecurityEvent]:
        require_admin(self.store, self.audit, admin_id, "security log access")
        return self.audit.recent(account_id=target_id, limit=limit)

    # ----- password reset tokens -----

    def issue_reset_token(self, admin_id: int, target_id: int, client: ClientInfo = NO_CLIENT) -> PasswordResetIssued:
        require_admin(self.store, self.audit, admin_id, "reset token issue", client)
        token = self.vault.generate_token()
        expires_at = self.clock() + self.reset_token_ttl

        with self.store.unit_of_work() as db:
            target = self._get(db, target_id)
            db.add(PasswordResetToken(account_id=target.id, token_digest=self.vault.token_digest(token),
                                      expires_at=expires_at, used=False))
            self.audit.record(SecurityEventType.PASSWORD_RESET_REQUEST, account_id=target.id, success=True,
                              client=client, detail=f"Reset token issued by admin ID: {admin_id}", db=db)

        return PasswordResetIssued(token=token, expires_at=expires_at)

    def reset_password_with_token(self, token: str, new_password: str, client: ClientInfo = NO_CLIENT) -> MessageResponse:
        self._require_strong(new_password)
        password_hash, salt = self.vault.hash(new_password)
        digest = self.vault.token_digest(token or "")

        with self.store.unit_of_work() as db:
            record = (
                db.query(PasswordResetToken)
                .filter(PasswordResetToken.token_digest == digest)
                .with_for_update()
                .first()
            )
            if record is None or record.used or record.expires_at <= self.clock():
                raise InvalidResetToken()

            account = self._get(db, record.account_id, for_update=True)
            account.password_hash = password_hash
            account.salt = salt
            account.first_login = False
            account.system_generated = False
            account.password_last_changed = self.clock()
            self.guard.clear(account)
            record.used = True
            self.audit.record(SecurityEventType.PASSWORD_RESET, account_id=account.id, success=True,
                              client=client, detail="Password reset with token", db=db)

        return MessageResponse(message="Password has been reset")

    # ----- deletion -----

    def delete_account_with_cascade(self, account_id: int, admin_id: int,
                                    client: ClientInfo = NO_CLIENT) -> CascadeDeleteResult:
        return self.engine.cascade_delete_account(account_id, admin_id, client)
