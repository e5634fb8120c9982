# backend/utils/members.py
import logging
from typing import Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from database import Store
from models.accounts import Account
from models.log import SecurityEventType
from models.lookups import Branch, Company, Industry, Skill
from models.member import Member, MemberSkill
from schemas.consistency import MemberDeleteResult
from schemas.member import MemberCreate, MemberCreated, MemberOut, MemberUpdate
from utils.audit import AccessAudit, ClientInfo, NO_CLIENT
from utils.authz import require_admin
from utils.consistency import ConsistencyEngine
from utils.errors import MemberHasAccount, NotFound
from utils.identity import IdentityManager

logger = logging.getLogger(__name__)


def get_or_create_lookup(db: Session, model, name: Optional[str]):
    """Return the id of the lookup row named ``name``, inserting it if missing."""
    name = (name or "").strip()
    if not name:
        return None
    row = db.query(model).filter(model.name == name).first()
    if row is None:
        row = model(name=name)
        db.add(row)
        db.flush()
    return row.id


def set_member_skills(db: Session, member: Member, names: Optional[Iterable[str]]) -> int:
    # Replace the member's skill links with the given (deduplicated) set
    wanted = []
    for name in names or []:
        name = (name or "").strip()
        if name and name not in wanted:
            wanted.append(name)

    db.query(MemberSkill).filter(MemberSkill.member_id == member.id).delete(synchronize_session=False)
    for name in wanted:
        db.add(MemberSkill(member_id=member.id, skill_id=get_or_create_lookup(db, Skill, name)))
    db.flush()
    return len(wanted)


def to_member_out(db: Session, member: Member) -> MemberOut:
    account = db.query(Account.id).filter(Account.member_id == member.id).first()
    return MemberOut(
        id=member.id,
        name=member.name,
        email=member.email,
        phone=member.phone,
        address=member.address,
        passout_batch=member.passout_batch,
        branch=member.branch.name if member.branch else None,
        industry=member.industry.name if member.industry else None,
        company=member.company.name if member.company else None,
        skills=member.skill_names,
        photo=member.photo,
        membership_id=member.membership_id,
        membership_type=member.membership_type,
        account_id=account.id if account else None,
    )


class MemberRegistry:
    """Member profiles and the lookup rows they reference.

    Creating a member may provision its account in the same transaction;
    deleting or editing one reclaims any lookup it was the last user of.
    """

    def __init__(self, store: Store, audit: AccessAudit, identity: IdentityManager, engine: ConsistencyEngine):
        self.store = store
        self.audit = audit
        self.identity = identity
        self.engine = engine

    def _get(self, db: Session, member_id: int) -> Member:
        member = db.query(Member).filter(Member.id == member_id).first()
        if member is None:
            raise NotFound("Member not found")
        return member

    def _apply(self, db: Session, member: Member, data: Union[MemberCreate, MemberUpdate]) -> None:
        member.name = data.name
        member.email = data.email
        member.phone = data.phone
        member.address = data.address
        member.passout_batch = data.passout_batch
        member.branch_id = get_or_create_lookup(db, Branch, data.branch)
        member.industry_id = get_or_create_lookup(db, Industry, data.industry)
        member.company_id = get_or_create_lookup(db, Company, data.company)
        member.photo = data.photo
        member.membership_id = data.membership_id or None
        member.membership_type = data.membership_type or "Member"

    def create_member(self, data: Union[MemberCreate, dict], created_by_admin_id: Optional[int] = None,
                      client: ClientInfo = NO_CLIENT) -> MemberCreated:
        if not isinstance(data, MemberCreate):
            data = MemberCreate.model_validate(data)
        if created_by_admin_id is not None:
            require_admin(self.store, self.audit, created_by_admin_id, "member creation", client)

        # bcrypt runs before the write lock is taken
        credentials = self.identity.issue_credentials(length=10) if data.create_account else None

        with self.store.unit_of_work() as db:
            member = Member()
            self._apply(db, member, data)
            db.add(member)
            db.flush()
            set_member_skills(db, member, data.skills)

            account = None
            if credentials is not None:
                account = self.identity.create_account_from_member(
                    member.id, data.name, data.email, db=db, credentials=credentials,
                    created_by_admin_id=created_by_admin_id,
                )
            member_id = member.id

        logger.info(f"Created member {member_id}" + (f" with account {account.username}" if account else ""))
        return MemberCreated(
            member_id=member_id,
            account_created=account is not None,
            account_id=account.account_id if account else None,
            username=account.username if account else None,
            temporary_password=account.temporary_password if account else None,
        )

    def update_member(self, member_id: int, data: Union[MemberUpdate, dict], admin_id: int,
                      client: ClientInfo = NO_CLIENT) -> MemberOut:
        if not isinstance(data, MemberUpdate):
            data = MemberUpdate.model_validate(data)
        require_admin(self.store, self.audit, admin_id, "member update", client)

        with self.store.unit_of_work() as db:
            member = self._get(db, member_id)
            previous = {
                "branch_id": member.branch_id,
                "industry_id": member.industry_id,
                "company_id": member.company_id,
            }
            self._apply(db, member, data)
            if data.skills is not None:
                set_member_skills(db, member, data.skills)
            db.flush()

            # Lookups this edit dropped may now be unreferenced
            released = {key: value for key, value in previous.items() if value != getattr(member, key)}
            self.engine.reclaim_member_lookups(db, **released)
            db.flush()
            db.expire(member)
            return to_member_out(db, member)

    def delete_member(self, member_id: int, admin_id: int, client: ClientInfo = NO_CLIENT) -> MemberDeleteResult:
        """Delete a member that has no account.

        Members with an account must go through the account cascade delete,
        so the pair is never split.
        """
        require_admin(self.store, self.audit, admin_id, "member deletion", client)

        with self.store.unit_of_work() as db:
            member = self._get(db, member_id)
            owner = db.query(Account.id, Account.username).filter(Account.member_id == member.id).first()
            if owner is not None:
                raise MemberHasAccount(owner.id, owner.username)

            name = member.name
            lookup_ids = {
                "branch_id": member.branch_id,
                "industry_id": member.industry_id,
                "company_id": member.company_id,
            }
            skill_links_removed = (
                db.query(MemberSkill).filter(MemberSkill.member_id == member.id).delete(synchronize_session=False)
            )
            db.query(Member).filter(Member.id == member.id).delete(synchronize_session=False)
            db.flush()
            lookups = self.engine.reclaim_member_lookups(db, **lookup_ids)

            self.audit.record(SecurityEventType.MEMBER_DELETED, account_id=admin_id, success=True, client=client,
                              detail=f"Deleted member {name} (ID: {member_id})",
                              meta={"member_id": member_id, "lookups_removed": lookups.model_dump()}, db=db)
            report = self.engine.check_consistency(db=db)

        logger.info(f"Admin {admin_id} deleted member {member_id}")
        return MemberDeleteResult(
            deletedMember=name,
            skillLinksRemoved=skill_links_removed,
            lookupsRemoved=lookups,
            consistencyCheck=report,
        )

    def get_member(self, member_id: int) -> MemberOut:
        return self.store.read(lambda db: to_member_out(db, self._get(db, member_id)))

    def list_members(self) -> List[MemberOut]:
        return self.store.read(
            lambda db: [to_member_out(db, member) for member in db.query(Member).order_by(Member.name).all()]
        )

