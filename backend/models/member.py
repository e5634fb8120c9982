# backend/models/member.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from database import Base


# Represents a member profile with personal, academic and professional details
class Member(Base):
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)

    # Personal information
    name = Column(String, nullable=False)
    email = Column(String, nullable=True, index=True)
    phone = Column(String, nullable=True)
    address = Column(String, nullable=True)

    # Academic and professional information
    passout_batch = Column(String, nullable=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=True, index=True)
    industry_id = Column(Integer, ForeignKey("industries.id"), nullable=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True, index=True)

    # Membership information
    photo = Column(String, nullable=True)
    membership_id = Column(String, unique=True, nullable=True, index=True)
    membership_type = Column(String, nullable=True, default="Member")

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    branch = relationship("Branch", lazy="joined")
    industry = relationship("Industry", lazy="joined")
    company = relationship("Company", lazy="joined")
    skill_links = relationship("MemberSkill", back_populates="member", passive_deletes=True)

    @property
    def skill_names(self):
        return sorted(link.skill.name for link in self.skill_links if link.skill is not None)


# Junction row linking a member to one of their skills
class MemberSkill(Base):
    __tablename__ = "member_skills"

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    skill_id = Column(Integer, ForeignKey("skills.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())

    member = relationship("Member", back_populates="skill_links")
    skill = relationship("Skill", lazy="joined")

    __table_args__ = (
        # A member lists each skill at most once
        UniqueConstraint("member_id", "skill_id", name="uq_member_skill"),
    )
