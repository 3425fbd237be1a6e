"""
Collaborator contracts consumed by the application layer.

Infrastructure adapters implement these; tests substitute fakes.
"""
from typing import List, Optional, Protocol

import aiohttp

from agentskan.domain.models import ContentFlag, RepoMetadata


class MetadataProvider(Protocol):
    async def fetch_repo_metadata(
        self, session: aiohttp.ClientSession, owner: str, repo: str
    ) -> RepoMetadata:
        """Raises UpstreamNotFoundException or UpstreamException on failure."""
        ...


class FlagAnalyzer(Protocol):
    async def analyze_readme(
        self, session: aiohttp.ClientSession, readme_content: Optional[str]
    ) -> List[ContentFlag]:
        """
        Raises FlagAnalysisUnavailableException on failure. Callers treat any
        exception from an analyzer as "no flags".
        """
        ...


class LedgerStore(Protocol):
    """
    Key/value store with sorted-index and counter primitives.

    Range bounds are inclusive and follow Redis conventions (-1 is the last
    element). Implementations translate backend errors into
    PersistenceUnavailableException.
    """

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def zadd(self, index: str, member: str, score: float) -> None: ...

    async def zrange(self, index: str, start: int, stop: int, desc: bool = False) -> List[str]: ...

    async def zremrangebyrank(self, index: str, start: int, stop: int) -> int: ...

    async def zcard(self, index: str) -> int: ...

    async def incr(self, key: str) -> int: ...

    async def get_counter(self, key: str) -> int: ...
