import base64
import binascii
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from agentskan.domain.models import ContentFlag, RepoMetadata, Severity

SECONDS_PER_DAY = 60 * 60 * 24
LAST_PAGE_PATTERN = re.compile(r'[?&]page=(\d+)>; rel="last"')


def _parse_github_datetime(raw_date: str) -> datetime:
    return datetime.fromisoformat(raw_date.replace("Z", "+00:00"))


def _days_between(earlier: datetime, now: datetime) -> int:
    return max(int((now - earlier).total_seconds() // SECONDS_PER_DAY), 0)


class GitHubTranslator:
    """
    Anti-corruption layer that translates raw GitHub REST JSON responses into RepoMetadata instances.
    """

    @staticmethod
    def to_domain(
        raw_repo: Dict[str, Any],
        contributors_count: int = 0,
        recent_commit_count: int = 0,
        has_readme: bool = False,
        readme_content: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RepoMetadata:
        """
        Transforms a raw `GET /repos/{owner}/{repo}` payload into a RepoMetadata.

        Args:
            raw_repo (Dict[str, Any]): The raw JSON body from GitHub's REST API.
            contributors_count (int): Result of the contributors lookup.
            recent_commit_count (int): Commits in the trailing 30 days.
            has_readme (bool): Whether GitHub serves a README.
            readme_content (Optional[str]): Decoded README text.
            now (Optional[datetime]): Reference instant for the age fields.

        Returns:
            RepoMetadata: The snapshot, with age fields relative to `now`.
        """
        now = now or datetime.now(timezone.utc)
        owner_data = raw_repo.get('owner')
        if not isinstance(owner_data, dict):
            owner_data = {}

        raw_created = raw_repo.get('created_at')
        raw_pushed = raw_repo.get('pushed_at') or raw_created
        if not raw_created:
            raise ValueError("created_at is required to build RepoMetadata.")
        created_at = _parse_github_datetime(raw_created)
        pushed_at = _parse_github_datetime(raw_pushed)

        return RepoMetadata(
            name=raw_repo.get('name', ''),
            owner=owner_data.get('login', ''),
            description=raw_repo.get('description'),
            stars=raw_repo.get('stargazers_count', 0),
            forks=raw_repo.get('forks_count', 0),
            watchers=raw_repo.get('watchers_count', 0),
            open_issues=raw_repo.get('open_issues_count', 0),
            created_at=created_at,
            pushed_at=pushed_at,
            default_branch=raw_repo.get('default_branch'),
            age_in_days=_days_between(created_at, now),
            last_push_days_ago=_days_between(pushed_at, now),
            contributors_count=contributors_count,
            recent_commit_count=recent_commit_count,
            has_readme=has_readme,
            readme_content=readme_content,
        )

    @staticmethod
    def count_from_link_header(link_header: Optional[str]) -> Optional[int]:
        """
        With `per_page=1`, the page number of the rel="last" link equals the
        number of items. Returns None when there is no such link.
        """
        if not link_header:
            return None
        match = LAST_PAGE_PATTERN.search(link_header)
        return int(match.group(1)) if match else None

    @staticmethod
    def decode_readme(raw_readme: Dict[str, Any]) -> Optional[str]:
        content = raw_readme.get('content')
        if not content:
            return None
        try:
            return base64.b64decode(content).decode('utf-8', errors='replace')
        except (binascii.Error, ValueError):
            return None


class ContentFlagTranslator:
    """
    Translates the README classifier's JSON flags into ContentFlag instances,
    dropping entries that do not have the expected shape.
    """

    @staticmethod
    def to_domain(raw_flag: Any) -> Optional[ContentFlag]:
        if not isinstance(raw_flag, dict):
            return None

        category = raw_flag.get('category')
        message = raw_flag.get('message')
        severity = str(raw_flag.get('severity', '')).strip().lower()

        if not category or not message:
            return None
        try:
            return ContentFlag(category=str(category), message=str(message), severity=Severity(severity))
        except ValueError:
            return None
