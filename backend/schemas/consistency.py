from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Optional


class ConsistencyIssue(BaseModel):
    type: str
    count: int
    details: List[str] = Field(default_factory=list)


class ConsistencyStatistics(BaseModel):
    total_accounts: int = 0
    total_members: int = 0
    linked_accounts: int = 0
    unlinked_accounts: int = 0


# Result of a full account/member invariant scan
class ConsistencyReport(BaseModel):
    status: str  # PASSED, FAILED or ERROR
    issues: List[ConsistencyIssue] = Field(default_factory=list)
    statistics: ConsistencyStatistics = Field(default_factory=ConsistencyStatistics)
    checked_at: datetime
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status == "PASSED"


# Rows removed (or, on a dry run, that would be removed) by an orphan sweep
class CleanupResult(BaseModel):
    branches_removed: int = 0
    industries_removed: int = 0
    companies_removed: int = 0
    skills_removed: int = 0
    blog_tags_removed: int = 0
    member_skills_removed: int = 0
    blog_tag_relations_removed: int = 0
    dry_run: bool = False

    @property
    def total(self) -> int:
        return (self.branches_removed + self.industries_removed + self.companies_removed
                + self.skills_removed + self.blog_tags_removed + self.member_skills_removed
                + self.blog_tag_relations_removed)


class LinkageCheck(BaseModel):
    valid: bool
    issues: List[str] = Field(default_factory=list)


class CascadeDeleteResult(BaseModel):
    success: bool = True
    deletedAccount: str
    deletedMember: Optional[str] = None
    skillLinksRemoved: int = 0
    lookupsRemoved: CleanupResult = Field(default_factory=CleanupResult)
    consistencyCheck: ConsistencyReport
    message: str = "Account and associated data deleted successfully"


class MemberDeleteResult(BaseModel):
    success: bool = True
    deletedMember: str
    skillLinksRemoved: int = 0
    lookupsRemoved: CleanupResult = Field(default_factory=CleanupResult)
    consistencyCheck: ConsistencyReport
    message: str = "Member deleted successfully"


class HealthReport(BaseModel):
    generated_at: datetime
    dataConsistency: ConsistencyReport
    recentDeletions: List[dict] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
