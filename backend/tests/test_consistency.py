"""Cascade deletes, orphan reclamation and the invariant scan."""

import pytest
from sqlalchemy.exc import SQLAlchemyError

import utils.audit as audit_module
from conftest import MEMBER_PASSWORD
from database import DuplicateKeyError, ForeignKeyViolation, StoreError
from models.accounts import Account
from models.blog import Blog, BlogTag, BlogTagRelation
from models.log import SecurityEvent, SecurityEventType
from models.lookups import Branch, Company, Industry, Skill
from models.member import Member, MemberSkill
from utils.errors import CannotDeleteSelf, MemberAlreadyLinked, MemberHasAccount, NotFound, Unauthorized


def _names(services, model):
    return services.store.read(lambda db: sorted(row.name for row in db.query(model).all()))


@pytest.fixture
def bob(services, admin):
    return services.members.create_member(
        {
            "name": "Bob Stone",
            "email": "bob@example.org",
            "branch": "Robotics",
            "industry": "Software",
            "company": "Acme",
            "skills": ["Rust", "Python"],
        },
        created_by_admin_id=admin.account_id,
    )


@pytest.fixture
def alice(services, admin):
    return services.members.create_member(
        {
            "name": "Alice Wong",
            "email": "alice@example.org",
            "branch": "Mechanical",
            "industry": "Software",
            "company": "Acme",
            "skills": ["Python"],
        },
        created_by_admin_id=admin.account_id,
    )


class TestMemberRegistry:
    def test_member_gets_an_account_with_generated_credentials(self, services, bob):
        assert bob.account_created is True
        assert bob.username == "bobs"
        assert 10 <= len(bob.temporary_password) <= 12

        result = services.identity.authenticate("bobs", bob.temporary_password)
        assert result.success
        assert result.user.branch == "Robotics"
        assert result.user.email == "bob@example.org"

        member = services.members.get_member(bob.member_id)
        assert member.account_id == bob.account_id
        assert member.skills == ["Python", "Rust"]

    def test_generated_usernames_do_not_collide(self, services, admin, bob):
        twin = services.members.create_member({"name": "Bob Smith"}, created_by_admin_id=admin.account_id)

        assert twin.username == "bobs1"

    def test_member_without_account_fails_the_scan(self, services, admin):
        loner = services.members.create_member({"name": "Lone Member", "create_account": False},
                                               created_by_admin_id=admin.account_id)

        report = services.engine.check_consistency()
        assert report.status == "FAILED"
        assert [issue.type for issue in report.issues] == ["ORPHANED_MEMBER_RECORDS"]

        services.members.delete_member(loner.member_id, admin.account_id)
        assert services.engine.check_consistency().status == "PASSED"

    def test_member_with_account_cannot_be_deleted_directly(self, services, admin, bob):
        with pytest.raises(MemberHasAccount) as exc_info:
            services.members.delete_member(bob.member_id, admin.account_id)

        assert exc_info.value.username == "bobs"
        assert services.members.get_member(bob.member_id).name == "Bob Stone"

    def test_update_reclaims_dropped_lookups(self, services, admin, bob, alice):
        services.members.update_member(
            bob.member_id,
            {"name": "Bob Stone", "email": "bob@example.org", "branch": "Mechanical", "industry": "Software",
             "company": "Acme", "skills": ["Python"]},
            admin.account_id,
        )

        assert "Robotics" not in _names(services, Branch)
        assert "Rust" not in _names(services, Skill)
        assert services.members.get_member(bob.member_id).branch == "Mechanical"

    def test_update_without_skills_keeps_existing_skills(self, services, admin, bob):
        updated = services.members.update_member(
            bob.member_id,
            {"name": "Bob Stone", "phone": "123", "branch": "Robotics", "industry": "Software", "company": "Acme"},
            admin.account_id,
        )

        assert updated.phone == "123"
        assert updated.skills == ["Python", "Rust"]
        assert _names(services, Skill) == ["Python", "Rust"]

    def test_update_with_empty_skills_clears_them(self, services, admin, bob):
        updated = services.members.update_member(
            bob.member_id,
            {"name": "Bob Stone", "branch": "Robotics", "industry": "Software", "company": "Acme", "skills": []},
            admin.account_id,
        )

        assert updated.skills == []
        assert _names(services, Skill) == []

    def test_linking_a_taken_member_is_rejected(self, services, admin, bob):
        def _relink(db):
            account = db.query(Account).filter(Account.id == admin.account_id).one()
            services.engine.link_member(db, account, bob.member_id)

        with pytest.raises(MemberAlreadyLinked):
            services.store.run(_relink)


class TestCascadeDelete:
    def test_cascade_removes_member_skills_and_orphaned_lookups(self, services, admin, bob, alice):
        result = services.identity.delete_account_with_cascade(bob.account_id, admin.account_id)

        assert result.deletedAccount == "bobs"
        assert result.deletedMember == "Bob Stone"
        assert result.skillLinksRemoved == 2
        assert result.lookupsRemoved.branches_removed == 1
        assert result.lookupsRemoved.skills_removed == 1
        assert result.consistencyCheck.status == "PASSED"

        assert _names(services, Branch) == ["Mechanical"]
        assert _names(services, Industry) == ["Software"]
        assert _names(services, Company) == ["Acme"]
        assert _names(services, Skill) == ["Python"]
        assert services.store.read(lambda db: db.query(Member).filter(Member.id == bob.member_id).first()) is None
        assert services.store.read(lambda db: db.query(MemberSkill).count()) == 1

        events = services.audit.recent(event_type=SecurityEventType.CASCADE_DELETE.value)
        assert len(events) == 1
        assert events[0].account_id == admin.account_id
        assert events[0].success is True

    def test_cascade_requires_admin_and_changes_nothing(self, services, admin, bob, alice):
        with pytest.raises(Unauthorized):
            services.identity.delete_account_with_cascade(alice.account_id, bob.account_id)

        assert "Robotics" in _names(services, Branch)
        assert services.members.get_member(alice.member_id).account_id == alice.account_id
        assert services.audit.recent(event_type=SecurityEventType.CASCADE_DELETE.value) == []

    def test_admin_cannot_delete_self(self, services, admin):
        with pytest.raises(CannotDeleteSelf):
            services.identity.delete_account_with_cascade(admin.account_id, admin.account_id)

    def test_missing_account(self, services, admin):
        with pytest.raises(NotFound):
            services.identity.delete_account_with_cascade(9999, admin.account_id)

    def test_account_without_member(self, services, admin, member_account):
        result = services.identity.delete_account_with_cascade(member_account.account_id, admin.account_id)

        assert result.deletedMember is None
        assert services.identity.authenticate("carol", MEMBER_PASSWORD).success is False

    def test_security_events_outlive_the_deleted_account(self, services, admin, bob):
        services.identity.authenticate("bobs", bob.temporary_password)
        services.identity.delete_account_with_cascade(bob.account_id, admin.account_id)

        remaining = services.store.read(
            lambda db: db.query(SecurityEvent).filter(SecurityEvent.account_id == bob.account_id).count()
        )
        assert remaining >= 2

    def test_failure_mid_cascade_rolls_everything_back(self, monkeypatch, services, admin, bob):
        def broken_reclaim(db, **lookup_ids):
            raise SQLAlchemyError("simulated failure after the deletes")

        monkeypatch.setattr(services.engine, "reclaim_member_lookups", broken_reclaim)

        with pytest.raises(StoreError):
            services.identity.delete_account_with_cascade(bob.account_id, admin.account_id)

        assert services.identity.authenticate("bobs", bob.temporary_password).success is True
        assert services.members.get_member(bob.member_id).account_id == bob.account_id
        assert services.store.read(lambda db: db.query(MemberSkill).count()) == 2
        assert "Robotics" in _names(services, Branch)
        assert "Rust" in _names(services, Skill)

        events = services.audit.recent(event_type=SecurityEventType.CASCADE_DELETE.value)
        assert len(events) == 1
        assert events[0].success is False

    def test_audit_failure_does_not_undo_the_cascade(self, monkeypatch, services, admin, bob):
        def broken_write_log(*args, **kwargs):
            raise SQLAlchemyError("log table unavailable")

        monkeypatch.setattr(audit_module, "write_log", broken_write_log)

        result = services.identity.delete_account_with_cascade(bob.account_id, admin.account_id)

        assert result.deletedAccount == "bobs"
        assert result.consistencyCheck.status == "PASSED"
        assert services.store.read(lambda db: db.query(Account).filter(Account.id == bob.account_id).first()) is None
        assert services.store.read(lambda db: db.query(Member).filter(Member.id == bob.member_id).first()) is None
        assert _names(services, Branch) == []


class TestCleanup:
    def _seed_orphans(self, services):
        def _seed(db):
            db.add_all([Branch(name="Orphan Branch"), Industry(name="Orphan Industry"),
                        Company(name="Orphan Co"), Skill(name="Cobol"), BlogTag(name="unused")])
            blog = Blog(title="Hello", content="...", author="root")
            tag = BlogTag(name="news")
            db.add_all([blog, tag])
            db.flush()
            db.add(BlogTagRelation(blog_id=blog.id, tag_id=tag.id))

        services.store.run(_seed)

    def test_dry_run_counts_without_deleting(self, services, admin, bob):
        self._seed_orphans(services)

        preview = services.engine.cleanup_orphaned_lookups(dry_run=True)

        assert preview.dry_run is True
        assert preview.branches_removed == 1
        assert preview.skills_removed == 1
        assert preview.blog_tags_removed == 1
        assert preview.total == 5
        assert "Orphan Branch" in _names(services, Branch)

    def test_cleanup_is_idempotent(self, services, admin, bob):
        self._seed_orphans(services)

        first = services.engine.cleanup_orphaned_lookups()
        second = services.engine.cleanup_orphaned_lookups()

        assert first.total == 5
        assert second.total == 0
        assert _names(services, Branch) == ["Robotics"]
        assert _names(services, Skill) == ["Python", "Rust"]
        assert _names(services, BlogTag) == ["news"]


class TestLinkage:
    def test_validate_linkage(self, services, admin, bob, alice):
        assert services.engine.validate_linkage(bob.member_id, bob.account_id).valid is True

        mismatch = services.engine.validate_linkage(bob.member_id, alice.account_id)
        assert mismatch.valid is False
        assert len(mismatch.issues) == 1

        missing = services.engine.validate_linkage(9999, bob.account_id)
        assert missing.valid is False

    def test_health_report(self, services, admin, bob):
        services.identity.delete_account_with_cascade(bob.account_id, admin.account_id)

        report = services.engine.health_report()
        assert report.dataConsistency.status == "PASSED"
        assert len(report.recentDeletions) == 1
        assert report.recommendations == ["System data consistency is healthy - no action required"]


class TestStoreErrors:
    def test_unique_violation_is_typed(self, services):
        services.store.run(lambda db: db.add(Branch(name="Robotics")))

        with pytest.raises(DuplicateKeyError):
            services.store.run(lambda db: db.add(Branch(name="Robotics")))

    def test_foreign_key_violation_is_typed_and_rolled_back(self, services):
        def _bad(db):
            db.add(Skill(name="Go"))
            db.flush()
            db.add(MemberSkill(member_id=9999, skill_id=1))

        with pytest.raises(ForeignKeyViolation):
            services.store.run(_bad)

        assert _names(services, Skill) == []
