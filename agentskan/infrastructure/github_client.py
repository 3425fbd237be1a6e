import aiohttp
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from agentskan.domain.exceptions import (
    RateLimitExceededException,
    UpstreamException,
    UpstreamNotFoundException,
)
from agentskan.domain.models import RepoMetadata
from agentskan.infrastructure.acl import GitHubTranslator

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=30, connect=10)
RECENT_COMMIT_WINDOW = timedelta(days=30)
COMMITS_PAGE_SIZE = 100


class GitHubRestClient:
    """
    Client for the GitHub REST API.
    Collects the public signals the scoring engine needs for one repository.

    Only the main repository lookup is fatal; contributor, commit and README
    lookups degrade to zero/absent when they fail.
    """

    def __init__(self, token: Optional[str] = None, api_url: str = GITHUB_API_BASE):
        self.headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "AgentSkan/1.0",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self.api_url = api_url.rstrip("/")

    async def fetch_repo_metadata(
        self,
        session: aiohttp.ClientSession,
        owner: str,
        repo: str,
    ) -> RepoMetadata:
        """
        Fetches a repository snapshot from GitHub.

        Raises:
            UpstreamNotFoundException: If the repository does not exist.
            RateLimitExceededException: If the REST rate limit is exhausted.
            UpstreamException: For any other failure of the main lookup.
        """
        now = datetime.now(timezone.utc)
        raw_repo = await self._fetch_repo(session, owner, repo)

        contributors_count, recent_commit_count, readme = await asyncio.gather(
            self._fetch_contributors_count(session, owner, repo),
            self._fetch_recent_commit_count(session, owner, repo, now),
            self._fetch_readme(session, owner, repo),
        )
        has_readme, readme_content = readme

        try:
            return GitHubTranslator.to_domain(
                raw_repo,
                contributors_count=contributors_count,
                recent_commit_count=recent_commit_count,
                has_readme=has_readme,
                readme_content=readme_content,
                now=now,
            )
        except (ValueError, TypeError, AttributeError) as e:
            raise UpstreamException(f"Malformed repository payload from GitHub: {e}") from e

    async def _fetch_repo(self, session: aiohttp.ClientSession, owner: str, repo: str) -> Dict[str, Any]:
        url = f"{self.api_url}/repos/{owner}/{repo}"
        try:
            async with session.get(url, headers=self.headers, timeout=REQUEST_TIMEOUT) as response:
                if response.status == 404:
                    raise UpstreamNotFoundException(owner, repo)

                if response.status in {403, 429} and response.headers.get("X-RateLimit-Remaining") == "0":
                    reset_epoch = response.headers.get("X-RateLimit-Reset")
                    reset_at = (
                        datetime.fromtimestamp(int(reset_epoch), tz=timezone.utc).isoformat()
                        if reset_epoch and reset_epoch.isdigit() else "unknown"
                    )
                    logger.warning(f"GitHub rate limit exhausted. Resets at {reset_at}.")
                    raise RateLimitExceededException(reset_at=reset_at)

                if response.status != 200:
                    raise UpstreamException(f"GitHub API error: {response.status}")

                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Request for {owner}/{repo} failed: {e}")
            raise UpstreamException(f"Failed to fetch repository: {e}") from e

        if not isinstance(data, dict):
            raise UpstreamException("Malformed repository payload from GitHub.")
        return data

    async def _fetch_contributors_count(self, session: aiohttp.ClientSession, owner: str, repo: str) -> int:
        url = f"{self.api_url}/repos/{owner}/{repo}/contributors"
        params = {"per_page": "1", "anon": "true"}
        try:
            async with session.get(url, headers=self.headers, params=params, timeout=REQUEST_TIMEOUT) as response:
                if response.status != 200:
                    return 0

                link_header = response.headers.get("Link")
                if link_header:
                    count = GitHubTranslator.count_from_link_header(link_header)
                    return count if count is not None else 1

                # 204 No Content for empty repositories; otherwise a single page
                contributors = await response.json(content_type=None)
                return len(contributors) if isinstance(contributors, list) else 0
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Contributors lookup for {owner}/{repo} failed: {e}")
            return 0

    async def _fetch_recent_commit_count(
        self, session: aiohttp.ClientSession, owner: str, repo: str, now: datetime
    ) -> int:
        url = f"{self.api_url}/repos/{owner}/{repo}/commits"
        since = (now - RECENT_COMMIT_WINDOW).strftime("%Y-%m-%dT%H:%M:%SZ")
        params = {"since": since, "per_page": str(COMMITS_PAGE_SIZE)}
        try:
            async with session.get(url, headers=self.headers, params=params, timeout=REQUEST_TIMEOUT) as response:
                if response.status != 200:
                    return 0
                commits = await response.json()
                return len(commits) if isinstance(commits, list) else 0
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Commit lookup for {owner}/{repo} failed: {e}")
            return 0

    async def _fetch_readme(self, session: aiohttp.ClientSession, owner: str, repo: str):
        url = f"{self.api_url}/repos/{owner}/{repo}/readme"
        try:
            async with session.get(url, headers=self.headers, timeout=REQUEST_TIMEOUT) as response:
                if response.status != 200:
                    return False, None
                raw_readme = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"README lookup for {owner}/{repo} failed: {e}")
            return False, None

        if not isinstance(raw_readme, dict):
            return True, None
        return True, GitHubTranslator.decode_readme(raw_readme)
