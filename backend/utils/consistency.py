"""Relational invariants between accounts, members and lookup tables.

Invariants:
    - every account with a member_id points at an existing member
    - a member is linked to at most one account
    - once a sweep has run, no branch/industry/company/skill/blog tag is left unreferenced
    - no junction row references a missing member, blog, skill or tag

Consistency problems found by ``check_consistency`` are only reported, never
repaired implicitly; ``cleanup_orphaned_lookups`` and the cascade delete are
the explicit repair paths.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import exists, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import Store, StoreError
from models.accounts import Account
from models.blog import Blog, BlogTag, BlogTagRelation
from models.log import SecurityEventType
from models.lookups import Branch, Company, Industry, Skill
from models.member import Member, MemberSkill
from schemas.consistency import (
    CascadeDeleteResult, CleanupResult, ConsistencyIssue, ConsistencyReport,
    ConsistencyStatistics, HealthReport, LinkageCheck,
)
from utils.audit import AccessAudit, ClientInfo, NO_CLIENT
from utils.authz import require_admin
from utils.errors import CannotDeleteSelf, MemberAlreadyLinked, NotFound
from utils.lockout import utcnow

logger = logging.getLogger(__name__)

MISSING_MEMBER_RECORDS = "MISSING_MEMBER_RECORDS"
ORPHANED_MEMBER_RECORDS = "ORPHANED_MEMBER_RECORDS"
DUPLICATE_MEMBER_LINKS = "DUPLICATE_MEMBER_LINKS"

RECOMMENDATIONS = {
    MISSING_MEMBER_RECORDS: "Create missing member records or unlink accounts from non-existent members",
    ORPHANED_MEMBER_RECORDS: "Create accounts for orphaned members or delete unused member records",
    DUPLICATE_MEMBER_LINKS: "Fix duplicate member linkages so each member belongs to exactly one account",
}

# Lookup tables referenced directly from members, keyed by CleanupResult field
MEMBER_LOOKUPS = (
    ("branches_removed", Branch, Member.branch_id),
    ("industries_removed", Industry, Member.industry_id),
    ("companies_removed", Company, Member.company_id),
)


class ConsistencyEngine:
    def __init__(self, store: Store, audit: AccessAudit, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.audit = audit
        self.clock = clock

    # ----- invariant scan -----

    def check_consistency(self, db: Optional[Session] = None) -> ConsistencyReport:
        """Read-only scan of the account/member invariants. Never raises."""
        if db is not None:
            return self._scan(db)
        try:
            return self.store.read(self._scan)
        except (SQLAlchemyError, StoreError) as exc:
            logger.error(f"Consistency check failed: {exc}")
            return ConsistencyReport(status="ERROR", checked_at=self.clock(), error=str(exc))

    def _scan(self, db: Session) -> ConsistencyReport:
        issues = []
        try:
            # Accounts pointing at a member that no longer exists
            dangling = (
                db.query(Account.id, Account.username, Account.member_id)
                .outerjoin(Member, Account.member_id == Member.id)
                .filter(Account.member_id.isnot(None), Member.id.is_(None))
                .all()
            )
            if dangling:
                issues.append(ConsistencyIssue(
                    type=MISSING_MEMBER_RECORDS,
                    count=len(dangling),
                    details=[f"Account {row.username} references missing member ID {row.member_id}" for row in dangling],
                ))

            # Members nobody logs in as
            unowned = (
                db.query(Member.id, Member.name)
                .filter(~exists().where(Account.member_id == Member.id))
                .order_by(Member.id)
                .all()
            )
            if unowned:
                issues.append(ConsistencyIssue(
                    type=ORPHANED_MEMBER_RECORDS,
                    count=len(unowned),
                    details=[f"Member {row.name} (ID: {row.id}) has no account" for row in unowned],
                ))

            # Members claimed by more than one account
            duplicates = (
                db.query(Account.member_id, func.count(Account.id).label("account_count"))
                .filter(Account.member_id.isnot(None))
                .group_by(Account.member_id)
                .having(func.count(Account.id) > 1)
                .all()
            )
            if duplicates:
                issues.append(ConsistencyIssue(
                    type=DUPLICATE_MEMBER_LINKS,
                    count=len(duplicates),
                    details=[f"Member ID {row.member_id} linked to {row.account_count} accounts" for row in duplicates],
                ))

            total_accounts = db.query(func.count(Account.id)).scalar() or 0
            linked = db.query(func.count(Account.id)).filter(Account.member_id.isnot(None)).scalar() or 0
            statistics = ConsistencyStatistics(
                total_accounts=total_accounts,
                total_members=db.query(func.count(Member.id)).scalar() or 0,
                linked_accounts=linked,
                unlinked_accounts=total_accounts - linked,
            )
        except SQLAlchemyError as exc:
            logger.error(f"Consistency check failed: {exc}")
            return ConsistencyReport(status="ERROR", checked_at=self.clock(), error=str(exc))

        status = "PASSED" if not issues else "FAILED"
        if issues:
            logger.warning(f"Consistency check found {len(issues)} issue type(s): {[i.type for i in issues]}")
        return ConsistencyReport(status=status, issues=issues, statistics=statistics, checked_at=self.clock())

    # ----- linkage -----

    def validate_linkage(self, member_id: int, account_id: int) -> LinkageCheck:
        def _check(db: Session) -> LinkageCheck:
            member = db.query(Member).filter(Member.id == member_id).first()
            account = db.query(Account).filter(Account.id == account_id).first()
            issues = []
            if member is None:
                issues.append(f"Member ID {member_id} not found")
            if account is None:
                issues.append(f"Account ID {account_id} not found")
            if member is not None and account is not None:
                if account.member_id != member.id:
                    issues.append(
                        f"Account {account.username} member_id ({account.member_id}) doesn't match member ID ({member.id})"
                    )
                others = (
                    db.query(func.count(Account.id))
                    .filter(Account.member_id == member.id, Account.id != account.id)
                    .scalar()
                )
                if others:
                    issues.append(f"Member ID {member.id} is also linked to {others} other account(s)")
            return LinkageCheck(valid=not issues, issues=issues)

        return self.store.read(_check)

    def link_member(self, db: Session, account: Account, member_id: int) -> None:
        """Unlinked -> Linked. Relinking to a different account needs an explicit unlink first."""
        member = db.query(Member).filter(Member.id == member_id).first()
        if member is None:
            raise NotFound(f"Member {member_id} not found")
        owner = (
            db.query(Account.id)
            .filter(Account.member_id == member_id, Account.id != account.id)
            .first()
        )
        if owner is not None:
            raise MemberAlreadyLinked(member_id, owner.id)
        if account.member_id is not None and account.member_id != member_id:
            raise MemberAlreadyLinked(account.member_id, account.id)
        account.member_id = member_id

    @staticmethod
    def unlink_member(account: Account) -> Optional[int]:
        previous = account.member_id
        account.member_id = None
        return previous

    # ----- orphan reclamation -----

    def reclaim_member_lookups(self, db: Session, branch_id=None, industry_id=None, company_id=None) -> CleanupResult:
        """Delete the given lookup rows if no member references them any more."""
        result = CleanupResult()
        candidates = {
            "branches_removed": branch_id,
            "industries_removed": industry_id,
            "companies_removed": company_id,
        }
        for field, model, column in MEMBER_LOOKUPS:
            lookup_id = candidates[field]
            if lookup_id is None:
                continue
            still_used = db.query(func.count(Member.id)).filter(column == lookup_id).scalar()
            if not still_used:
                removed = db.query(model).filter(model.id == lookup_id).delete(synchronize_session=False)
                setattr(result, field, removed)
                if removed:
                    logger.info(f"Removed orphaned {model.__tablename__} row {lookup_id}")
        result.skills_removed = self._remove_unused_skills(db)
        return result

    @staticmethod
    def _remove_unused_skills(db: Session, dry_run: bool = False) -> int:
        unused = [
            row.id for row in db.query(Skill.id).filter(~exists().where(MemberSkill.skill_id == Skill.id)).all()
        ]
        if unused and not dry_run:
            db.query(Skill).filter(Skill.id.in_(unused)).delete(synchronize_session=False)
            logger.info(f"Removed {len(unused)} orphaned skill(s)")
        return len(unused)

    def cleanup_orphaned_lookups(self, dry_run: bool = False) -> CleanupResult:
        """Sweep every lookup and junction table for unreferenced rows.

        Junction rows pointing at missing parents go first so the lookups they
        were holding on to are reclaimed in the same pass. Running it twice in
        a row removes nothing the second time.
        """
        def _sweep(db: Session) -> CleanupResult:
            result = CleanupResult(dry_run=dry_run)

            broken_skill_links = [
                row.id for row in db.query(MemberSkill.id).filter(
                    ~exists().where(Member.id == MemberSkill.member_id)
                    | ~exists().where(Skill.id == MemberSkill.skill_id)
                ).all()
            ]
            broken_tag_links = [
                row.id for row in db.query(BlogTagRelation.id).filter(
                    ~exists().where(Blog.id == BlogTagRelation.blog_id)
                    | ~exists().where(BlogTag.id == BlogTagRelation.tag_id)
                ).all()
            ]
            result.member_skills_removed = len(broken_skill_links)
            result.blog_tag_relations_removed = len(broken_tag_links)
            if not dry_run:
                if broken_skill_links:
                    db.query(MemberSkill).filter(MemberSkill.id.in_(broken_skill_links)).delete(synchronize_session=False)
                if broken_tag_links:
                    db.query(BlogTagRelation).filter(BlogTagRelation.id.in_(broken_tag_links)).delete(synchronize_session=False)
                db.flush()

            for field, model, column in MEMBER_LOOKUPS:
                unused = [row.id for row in db.query(model.id).filter(~exists().where(column == model.id)).all()]
                setattr(result, field, len(unused))
                if unused and not dry_run:
                    db.query(model).filter(model.id.in_(unused)).delete(synchronize_session=False)

            result.skills_removed = self._remove_unused_skills(db, dry_run=dry_run)

            unused_tags = [
                row.id for row in db.query(BlogTag.id).filter(~exists().where(BlogTagRelation.tag_id == BlogTag.id)).all()
            ]
            result.blog_tags_removed = len(unused_tags)
            if unused_tags and not dry_run:
                db.query(BlogTag).filter(BlogTag.id.in_(unused_tags)).delete(synchronize_session=False)
            return result

        if dry_run:
            result = self.store.read(_sweep)
        else:
            result = self.store.run(_sweep)
        logger.info(f"Orphan sweep {'(dry run) ' if dry_run else ''}finished: {result.total} row(s)")
        return result

    # ----- cascade delete -----

    def cascade_delete_account(self, account_id: int, acting_admin_id: int,
                               client: ClientInfo = NO_CLIENT) -> CascadeDeleteResult:
        """Delete an account, its member, the member's skill links and every lookup left unreferenced.

        All of it commits together or not at all. The returned result carries a
        consistency report taken inside the same transaction, after the deletes.
        """
        require_admin(self.store, self.audit, acting_admin_id, "cascade delete", client)
        if account_id == acting_admin_id:
            raise CannotDeleteSelf()

        logger.info(f"Admin {acting_admin_id} initiating cascading delete for account {account_id}")
        try:
            with self.store.unit_of_work() as db:
                result = self._cascade(db, account_id, acting_admin_id, client)
        except (StoreError, SQLAlchemyError):
            logger.exception(f"Cascading delete of account {account_id} rolled back")
            self.audit.record(SecurityEventType.CASCADE_DELETE, account_id=acting_admin_id, success=False,
                              client=client, detail=f"Cascade delete of account {account_id} rolled back",
                              meta={"target_account_id": account_id})
            raise
        logger.info(f"Cascading delete of account {account_id} committed; consistency {result.consistencyCheck.status}")
        return result

    def _cascade(self, db: Session, account_id: int, acting_admin_id: int, client: ClientInfo) -> CascadeDeleteResult:
        # 1. Load the account and its member
        account = (
            db.query(Account)
            .filter(Account.id == account_id)
            .with_for_update(of=Account)
            .first()
        )
        if account is None:
            raise NotFound(f"Account with ID {account_id} not found")
        member = None
        if account.member_id is not None:
            member = (
                db.query(Member)
                .filter(Member.id == account.member_id)
                .with_for_update(of=Member)
                .first()
            )

        deleted_account = {"id": account.id, "username": account.username, "name": account.name}
        deleted_member = None
        skill_links_removed = 0
        lookups = CleanupResult()

        if member is not None:
            deleted_member = {"id": member.id, "name": member.name, "email": member.email}
            lookup_ids = {
                "branch_id": member.branch_id,
                "industry_id": member.industry_id,
                "company_id": member.company_id,
            }

            # 2. Skill links
            skill_links_removed = (
                db.query(MemberSkill).filter(MemberSkill.member_id == member.id).delete(synchronize_session=False)
            )

            # 3. Member row; the account is unlinked first so the foreign key never dangles
            self.unlink_member(account)
            db.flush()
            db.query(Member).filter(Member.id == member.id).delete(synchronize_session=False)

        # 4. Account row
        db.query(Account).filter(Account.id == account.id).delete(synchronize_session=False)
        db.flush()

        # 5 + 6. Lookups the member was the last user of, then unused skills
        if member is not None:
            lookups = self.reclaim_member_lookups(db, **lookup_ids)
            db.flush()

        # 7. Audit record in a savepoint; a failure here does not undo the cascade
        self.audit.record(
            SecurityEventType.CASCADE_DELETE,
            account_id=acting_admin_id,
            success=True,
            client=client,
            detail=f"Deleted account {deleted_account['username']}"
                   + (f" and member {deleted_member['name']}" if deleted_member else ""),
            meta={
                "deleted_account": deleted_account,
                "deleted_member": deleted_member,
                "skill_links_removed": skill_links_removed,
                "lookups_removed": lookups.model_dump(),
            },
            db=db,
        )

        # 8. Re-verify the invariants against the post-cascade state
        report = self._scan(db)
        if not report.passed:
            logger.warning(f"Consistency check after cascade delete of account {account_id}: {report.status}")

        return CascadeDeleteResult(
            deletedAccount=deleted_account["username"],
            deletedMember=deleted_member["name"] if deleted_member else None,
            skillLinksRemoved=skill_links_removed,
            lookupsRemoved=lookups,
            consistencyCheck=report,
        )

    # ----- reporting -----

    def health_report(self) -> HealthReport:
        report = self.check_consistency()
        deletions = [
            {
                "id": event.id,
                "admin_id": event.account_id,
                "success": event.success,
                "detail": event.detail,
                "created_at": event.created_at,
            }
            for event in self.audit.recent(event_type=SecurityEventType.CASCADE_DELETE.value, limit=10)
        ]
        recommendations = [RECOMMENDATIONS[issue.type] for issue in report.issues if issue.type in RECOMMENDATIONS]
        if report.status == "ERROR":
            recommendations.append("Consistency scan could not complete; check database connectivity")
        if not recommendations:
            recommendations.append("System data consistency is healthy - no action required")
        return HealthReport(
            generated_at=self.clock(),
            dataConsistency=report,
            recentDeletions=deletions,
            recommendations=recommendations,
        )
