from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class PersistenceStatus(str, Enum):
    SCORED = "scored"
    SCORED_NOT_PERSISTED = "scored_not_persisted"


class RepoReference(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)


class RepoMetadata(BaseModel):
    """
    Immutable snapshot of a repository's public signals.

    `age_in_days` and `last_push_days_ago` are relative to the moment the
    snapshot was taken and are never recomputed downstream.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Name of the repository")
    owner: str = Field(..., description="Login name of the repository owner")
    stars: int = Field(..., ge=0, description="Total number of stargazers")
    forks: int = Field(..., ge=0, description="Total number of forks")
    age_in_days: int = Field(..., ge=0, description="Days since the repository was created")
    last_push_days_ago: int = Field(..., ge=0, description="Days since the last push")
    contributors_count: int = Field(..., ge=0, description="Number of contributors, anonymous included")
    recent_commit_count: int = Field(..., ge=0, description="Commits in the trailing 30 days")
    has_readme: bool = Field(..., description="Whether GitHub serves a README for the repository")
    readme_content: Optional[str] = Field(default=None, description="Decoded README text, if any")

    description: Optional[str] = None
    watchers: int = Field(default=0, ge=0)
    open_issues: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None
    pushed_at: Optional[datetime] = None
    default_branch: Optional[str] = None


class ContentFlag(BaseModel):
    """A single concern raised by free-text analysis of repository documentation."""
    model_config = ConfigDict(frozen=True)

    category: str
    message: str
    severity: Severity


class ScoreFactors(BaseModel):
    """Per-dimension deductions, kept alongside the final score for auditing."""
    model_config = ConfigDict(frozen=True)

    age: int = 0
    stars: int = 0
    forks: int = 0
    activity: int = 0
    contributors: int = 0
    readme: int = 0
    content_penalty: int = 0

    @property
    def total(self) -> int:
        return (
            self.age + self.stars + self.forks + self.activity
            + self.contributors + self.readme + self.content_penalty
        )


class ScoreResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(..., ge=0, le=100)
    factors: ScoreFactors


class ScanDraft(BaseModel):
    """A completed scan that has not been given an identity yet."""
    model_config = ConfigDict(frozen=True)

    repo_url: str
    repo_name: str
    owner: str
    score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    stars: int = Field(..., ge=0)
    forks: int = Field(..., ge=0)
    age_in_days: int = Field(..., ge=0)
    contributors: int = Field(..., ge=0)
    flags_count: int = Field(..., ge=0)
    agent_name: Optional[str] = None


class StoredScan(ScanDraft):
    """
    Persisted leaderboard record. Holds a reduced projection of the metadata,
    never the full snapshot. Written once and never mutated.
    """
    id: str = Field(..., description="owner-repo-epochms, unique per write")
    scanned_at: datetime = Field(..., description="UTC insertion timestamp")


class AppendReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    scanned_at: datetime


class ScanPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    entries: List[StoredScan] = Field(default_factory=list)
    total: int = Field(default=0, ge=0, description="Lifetime scan count, survives eviction")
    has_more: bool = False


class RepoSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    owner: str
    stars: int
    forks: int
    age_in_days: int
    last_push_days_ago: int
    contributors_count: int
    has_readme: bool

    @classmethod
    def from_metadata(cls, metadata: RepoMetadata) -> "RepoSummary":
        return cls(
            name=metadata.name,
            owner=metadata.owner,
            stars=metadata.stars,
            forks=metadata.forks,
            age_in_days=metadata.age_in_days,
            last_push_days_ago=metadata.last_push_days_ago,
            contributors_count=metadata.contributors_count,
            has_readme=metadata.has_readme,
        )


class ScanResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    flags: List[ContentFlag] = Field(default_factory=list)
    repo: RepoSummary


class ScanOutcome(BaseModel):
    """What the orchestrator hands back: the result plus whether it reached the ledger."""
    model_config = ConfigDict(frozen=True)

    result: ScanResult
    persistence: PersistenceStatus
    receipt: Optional[AppendReceipt] = None

    @property
    def persisted(self) -> bool:
        return self.persistence is PersistenceStatus.SCORED
