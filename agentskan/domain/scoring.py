"""
Additive-penalty risk scoring.

Every repository starts at 100 (safest) and loses points for each weak
signal. The result is clamped to [0, 100] and banded into a RiskLevel.
Nothing in here performs I/O.
"""
from typing import Iterable

from agentskan.domain.models import (
    ContentFlag,
    RepoMetadata,
    RiskLevel,
    ScoreFactors,
    ScoreResult,
    Severity,
)

BASE_SCORE = 100
MIN_SCORE = 0
MAX_SCORE = 100

LOW_RISK_THRESHOLD = 70
MEDIUM_RISK_THRESHOLD = 40

# Content flags can never take more than this off the baseline on their own
CONTENT_PENALTY_FLOOR = -50

SEVERITY_PENALTIES = {
    Severity.HIGH: -15,
    Severity.MEDIUM: -8,
    Severity.LOW: -3,
}

# (exclusive upper bound, penalty), checked in ascending order
AGE_BANDS = ((7, -25), (30, -15), (90, -10), (180, -5))
STAR_BANDS = ((1, -15), (10, -10), (50, -5), (100, -3))
FORK_BANDS = ((1, -10), (5, -5))
CONTRIBUTOR_BANDS = ((2, -15), (3, -10), (5, -5))

NO_RECENT_COMMITS_PENALTY = -15
# (days since last push strictly greater than, penalty), most severe first
STALE_PUSH_BANDS = ((60, -10), (30, -5))

MISSING_README_PENALTY = -10


def _band_penalty(value: int, bands) -> int:
    for upper, penalty in bands:
        if value < upper:
            return penalty
    return 0


def _activity_penalty(recent_commit_count: int, last_push_days_ago: int) -> int:
    # Both checks describe the same "inactive repo" condition, so the harsher
    # one wins instead of the two being added together.
    commits_candidate = NO_RECENT_COMMITS_PENALTY if recent_commit_count == 0 else 0

    push_candidate = 0
    for threshold, penalty in STALE_PUSH_BANDS:
        if last_push_days_ago > threshold:
            push_candidate = penalty
            break

    return min(commits_candidate, push_candidate)


def content_penalty(flags: Iterable[ContentFlag]) -> int:
    total = sum(SEVERITY_PENALTIES[Severity(flag.severity)] for flag in flags)
    return max(total, CONTENT_PENALTY_FLOOR)


def compute_score(metadata: RepoMetadata, flags: Iterable[ContentFlag]) -> ScoreResult:
    """
    Scores a repository snapshot together with its content flags.

    Args:
        metadata (RepoMetadata): Signals collected from GitHub.
        flags (Iterable[ContentFlag]): Concerns raised by README analysis.
            Duplicates each count.

    Returns:
        ScoreResult: The clamped score and the per-dimension breakdown.
    """
    if not isinstance(metadata, RepoMetadata):
        raise TypeError("compute_score requires a complete RepoMetadata record.")

    factors = ScoreFactors(
        age=_band_penalty(metadata.age_in_days, AGE_BANDS),
        stars=_band_penalty(metadata.stars, STAR_BANDS),
        forks=_band_penalty(metadata.forks, FORK_BANDS),
        activity=_activity_penalty(metadata.recent_commit_count, metadata.last_push_days_ago),
        contributors=_band_penalty(metadata.contributors_count, CONTRIBUTOR_BANDS),
        readme=0 if metadata.has_readme else MISSING_README_PENALTY,
        content_penalty=content_penalty(flags),
    )

    score = max(MIN_SCORE, min(MAX_SCORE, BASE_SCORE + factors.total))
    return ScoreResult(score=score, factors=factors)


def classify(score: int) -> RiskLevel:
    if score >= LOW_RISK_THRESHOLD:
        return RiskLevel.LOW
    if score >= MEDIUM_RISK_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH
