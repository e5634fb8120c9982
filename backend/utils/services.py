# backend/utils/services.py
from dataclasses import dataclass

from fastapi import Request

from config import Settings
from database import Store
from utils.audit import AccessAudit, ClientInfo
from utils.consistency import ConsistencyEngine
from utils.hashing import CredentialVault
from utils.identity import IdentityManager
from utils.lockout import SecuritySessionGuard
from utils.members import MemberRegistry


# Everything a request handler needs, wired once per application
@dataclass
class Services:
    store: Store
    vault: CredentialVault
    audit: AccessAudit
    guard: SecuritySessionGuard
    engine: ConsistencyEngine
    identity: IdentityManager
    members: MemberRegistry


def build_services(store: Store, settings: Settings) -> Services:
    vault = CredentialVault(rounds=settings.BCRYPT_ROUNDS)
    audit = AccessAudit(store)
    guard = SecuritySessionGuard(store, audit, max_attempts=settings.MAX_FAILED_ATTEMPTS,
                                 lockout_minutes=settings.LOCKOUT_MINUTES)
    engine = ConsistencyEngine(store, audit)
    identity = IdentityManager(store, vault, guard, audit, engine,
                               reset_token_hours=settings.RESET_TOKEN_EXPIRE_HOURS)
    members = MemberRegistry(store, audit, identity, engine)
    return Services(store=store, vault=vault, audit=audit, guard=guard, engine=engine,
                    identity=identity, members=members)


def get_services(request: Request) -> Services:
    return request.app.state.services


def client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
